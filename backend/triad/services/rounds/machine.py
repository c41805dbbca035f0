"""Round state machine for a Triad Trials table.

Everything in this module is pure: ``apply`` takes the current
``RoundState`` and an event and returns a ``Transition`` holding the next
state, the system messages to post and the points awarded. Persistence,
chat and socket fan-out live in ``store``.

Phase pipeline::

    waiting -> subject-selection -> discussion -> answering -> evaluation
            -> subject-selection (next round) | finished
"""

from copy import deepcopy
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from triad.errors import TransitionError
from .scoring import award_points

PHASE_WAITING = 'waiting'
PHASE_SUBJECT = 'subject-selection'
PHASE_DISCUSSION = 'discussion'
PHASE_ANSWERING = 'answering'
PHASE_EVALUATION = 'evaluation'
PHASE_FINISHED = 'finished'
PHASES = (PHASE_WAITING, PHASE_SUBJECT, PHASE_DISCUSSION, PHASE_ANSWERING, PHASE_EVALUATION, PHASE_FINISHED)

ROLE_JUDGE = 'judge'
ROLE_PLAYER1 = 'player1'
ROLE_PLAYER2 = 'player2'
ROLE_SPECTATOR = 'spectator'
PLAYER_ROLES = (ROLE_PLAYER1, ROLE_PLAYER2)

JUDGE_HUMAN = 'human'
JUDGE_AI = 'ai'

_ROLE_LABELS = {
    ROLE_JUDGE: 'the Judge',
    ROLE_PLAYER1: 'Player 1',
    ROLE_PLAYER2: 'Player 2',
}


@dataclass
class Seat:
    user_id: int
    username: str
    role: str


@dataclass
class Evaluation:
    score: int
    justification: str


@dataclass
class RoundState:
    phase: str
    judge_type: str
    max_rounds: int
    current_round: int = 0
    seats: List[Seat] = field(default_factory=list)
    scores: Dict[int, int] = field(default_factory=dict)
    judge_id: Optional[int] = None
    subject: Optional[str] = None
    answer: Optional[str] = None
    evaluation: Optional[Evaluation] = None

    @property
    def required_seats(self) -> int:
        return 3 if self.judge_type == JUDGE_HUMAN else 2

    @property
    def is_full(self) -> bool:
        return len(self.seats) >= self.required_seats

    def seat_of(self, user_id) -> Optional[Seat]:
        for seat in self.seats:
            if seat.user_id == user_id:
                return seat
        return None

    def role_taken(self, role: str) -> bool:
        return any(s.role == role for s in self.seats)


# ---- Events ----

@dataclass
class Join:
    user_id: int
    username: str


@dataclass
class Leave:
    user_id: int


@dataclass
class SubmitSubject:
    user_id: int
    subject: str
    generated: bool = False


@dataclass
class EndDiscussion:
    user_id: Optional[int] = None  # None: ended by the discussion timer


@dataclass
class SubmitAnswer:
    user_id: Optional[int]  # None: the AI judge
    answer: str


@dataclass
class RecordEvaluation:
    score: int
    justification: str


@dataclass
class EvaluationFailed:
    reason: str = ''


@dataclass
class Transition:
    previous_phase: str
    state: RoundState
    messages: List[str] = field(default_factory=list)
    awarded: Dict[int, int] = field(default_factory=dict)
    abandoned: bool = False

    @property
    def finished(self) -> bool:
        return self.previous_phase != PHASE_FINISHED and self.state.phase == PHASE_FINISHED

    @property
    def completed_normally(self) -> bool:
        """True when the game ran out of rounds rather than being abandoned."""
        return self.finished and not self.abandoned


def _require_phase(state: RoundState, *phases: str) -> None:
    if state.phase not in phases:
        raise TransitionError(f"Not allowed during the '{state.phase}' phase", 409)


def _require_seat(state: RoundState, user_id) -> Seat:
    seat = state.seat_of(user_id)
    if seat is None:
        raise TransitionError('You are not seated at this game', 403)
    return seat


def _next_role(state: RoundState) -> str:
    if state.judge_type == JUDGE_HUMAN and not state.role_taken(ROLE_JUDGE):
        return ROLE_JUDGE
    if not state.role_taken(ROLE_PLAYER1):
        return ROLE_PLAYER1
    return ROLE_PLAYER2


def _on_join(state: RoundState, event: Join, t: Transition) -> None:
    if state.seat_of(event.user_id) is not None:
        return
    if state.phase != PHASE_WAITING or state.is_full:
        raise TransitionError('This game is full or already in progress', 403)

    role = _next_role(state)
    state.seats.append(Seat(user_id=event.user_id, username=event.username, role=role))
    state.scores.setdefault(event.user_id, 0)
    if role == ROLE_JUDGE:
        state.judge_id = event.user_id
    message = f"{event.username} joined as {_ROLE_LABELS[role]}."

    if state.is_full:
        state.phase = PHASE_SUBJECT
        state.current_round = 1
        state.subject = None
        state.answer = None
        state.evaluation = None
        message += ' Game starting! Round 1 begins.'
    t.messages.append(message)


def _on_leave(state: RoundState, event: Leave, t: Transition) -> None:
    seat = state.seat_of(event.user_id)
    if seat is None:
        raise TransitionError('You are not in this game', 404)
    state.seats.remove(seat)
    state.scores.pop(seat.user_id, None)
    if seat.role == ROLE_JUDGE:
        state.judge_id = None
    if state.phase == PHASE_FINISHED:
        # stats were recorded when the game ended
        return
    if state.phase == PHASE_WAITING:
        t.messages.append(f"{seat.username} left the game.")
    else:
        state.phase = PHASE_FINISHED
        t.abandoned = True
        t.messages.append(f"{seat.username} left the game. The trial has ended.")


def _on_subject(state: RoundState, event: SubmitSubject, t: Transition) -> None:
    _require_phase(state, PHASE_SUBJECT)
    seat = _require_seat(state, event.user_id)
    subject = (event.subject or '').strip()
    if state.judge_type == JUDGE_HUMAN:
        if seat.role != ROLE_JUDGE:
            raise TransitionError('Only the judge can set the subject', 403)
        if event.generated:
            raise TransitionError('A human judge must write the subject', 400)
    elif not event.generated:
        raise TransitionError('The AI judge selects the subject for this game', 400)
    if not subject:
        raise TransitionError('Please enter a subject', 400)

    state.subject = subject
    state.phase = PHASE_DISCUSSION
    prefix = 'AI Subject' if event.generated else 'Subject'
    t.messages.append(f'{prefix} for Round {state.current_round}: "{subject}". Players, discuss!')


def _on_end_discussion(state: RoundState, event: EndDiscussion, t: Transition) -> None:
    _require_phase(state, PHASE_DISCUSSION)
    if event.user_id is not None:
        _require_seat(state, event.user_id)
    state.phase = PHASE_ANSWERING
    who = 'Judge' if state.judge_type == JUDGE_HUMAN else 'AI'
    t.messages.append(f'Discussion ended. Waiting for the final answer from the {who}.')


def _on_answer(state: RoundState, event: SubmitAnswer, t: Transition) -> None:
    _require_phase(state, PHASE_ANSWERING)
    if state.judge_type == JUDGE_HUMAN:
        seat = _require_seat(state, event.user_id)
        if seat.role != ROLE_JUDGE:
            raise TransitionError('Only the judge can submit the final answer', 403)
    elif event.user_id is not None:
        raise TransitionError('The AI judge gives the final answer for this game', 403)
    answer = (event.answer or '').strip()
    if not answer:
        raise TransitionError('Please enter the final answer', 400)

    state.answer = answer
    state.evaluation = None
    state.phase = PHASE_EVALUATION
    if state.judge_type == JUDGE_HUMAN:
        t.messages.append('The Judge has submitted the final answer. Evaluating...')
    else:
        t.messages.append('The AI Judge has settled on a final answer. Evaluating...')


def _advance_round(state: RoundState, t: Transition) -> None:
    next_round = state.current_round + 1
    if next_round > state.max_rounds:
        state.phase = PHASE_FINISHED
        t.messages.append(f'Game Over! Final Scores: {format_scores(state)}')
        return
    state.current_round = next_round
    state.phase = PHASE_SUBJECT
    state.subject = None
    state.answer = None
    t.messages.append(f'Round {next_round} begins! Waiting for the subject.')


def _on_evaluation(state: RoundState, event: RecordEvaluation, t: Transition) -> None:
    _require_phase(state, PHASE_EVALUATION)
    score = max(1, min(100, int(event.score)))
    state.evaluation = Evaluation(score=score, justification=event.justification)
    t.awarded = award_points(state, score)
    for user_id, points in t.awarded.items():
        state.scores[user_id] = state.scores.get(user_id, 0) + points
    t.messages.append('Scores updated.')
    _advance_round(state, t)


def _on_evaluation_failed(state: RoundState, event: EvaluationFailed, t: Transition) -> None:
    # From answering when the AI judge could not settle on an answer at all
    _require_phase(state, PHASE_ANSWERING, PHASE_EVALUATION)
    state.evaluation = None
    t.messages.append('AI evaluation failed. Moving to next round.')
    _advance_round(state, t)


_HANDLERS = {
    Join: _on_join,
    Leave: _on_leave,
    SubmitSubject: _on_subject,
    EndDiscussion: _on_end_discussion,
    SubmitAnswer: _on_answer,
    RecordEvaluation: _on_evaluation,
    EvaluationFailed: _on_evaluation_failed,
}


def apply(state: RoundState, event) -> Transition:
    """Apply ``event`` to a copy of ``state``; the input is never mutated."""
    handler = _HANDLERS.get(type(event))
    if handler is None:
        raise TypeError(f'Unknown round event: {event!r}')
    nxt = deepcopy(state)
    transition = Transition(previous_phase=state.phase, state=nxt)
    handler(nxt, event, transition)
    return transition


def format_scores(state: RoundState) -> str:
    parts = [f'{seat.username}: {state.scores.get(seat.user_id, 0)}' for seat in state.seats]
    return ', '.join(parts) if parts else 'no players'


def winners(state: RoundState) -> List[int]:
    """User ids holding the top score; ties share the win."""
    if not state.seats:
        return []
    best = max(state.scores.get(s.user_id, 0) for s in state.seats)
    return [s.user_id for s in state.seats if state.scores.get(s.user_id, 0) == best]
