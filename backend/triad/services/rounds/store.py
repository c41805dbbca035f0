import time

from flask import current_app

from triad import db, socketio
from triad.models import Game, Player, User, STATUS_WAITING, STATUS_PLAYING, STATUS_FINISHED
from triad.services import chat
from . import machine
from .machine import RoundState, Seat, Evaluation
from .scheduler import discussion_duration, schedule_discussion_timer


def status_for(phase: str) -> str:
    if phase == machine.PHASE_WAITING:
        return STATUS_WAITING
    if phase == machine.PHASE_FINISHED:
        return STATUS_FINISHED
    return STATUS_PLAYING


def get_game_for_update(game_id: int) -> Game:
    """Fetch a game row, locking it where the backend supports row locks."""
    return Game.query.filter_by(id=game_id).with_for_update().populate_existing().first_or_404()


def load_state(game: Game) -> RoundState:
    evaluation = None
    if game.evaluation_score is not None:
        evaluation = Evaluation(score=game.evaluation_score, justification=game.evaluation_justification or '')
    return RoundState(
        phase=game.phase,
        judge_type=game.judge_type,
        max_rounds=game.max_rounds,
        current_round=game.current_round or 0,
        seats=[Seat(user_id=p.user_id, username=p.user.username, role=p.role) for p in game.players],
        scores={p.user_id: p.score or 0 for p in game.players},
        judge_id=game.judge_id,
        subject=game.current_subject,
        answer=game.current_answer,
        evaluation=evaluation,
    )


def save_state(game: Game, state: RoundState) -> None:
    """Write ``state`` back onto the game row and its seats (not committed)."""
    game.phase = state.phase
    game.status = status_for(state.phase)
    game.current_round = state.current_round
    game.judge_id = state.judge_id
    game.current_subject = state.subject
    game.current_answer = state.answer
    game.evaluation_score = state.evaluation.score if state.evaluation else None
    game.evaluation_justification = state.evaluation.justification if state.evaluation else None
    if state.phase != machine.PHASE_DISCUSSION:
        game.phase_deadline = None
    game.revision = (game.revision or 0) + 1

    seated = {s.user_id: s for s in state.seats}
    for player in list(game.players):
        seat = seated.pop(player.user_id, None)
        if seat is None:
            game.players.remove(player)
            continue
        player.role = seat.role
        player.score = state.scores.get(player.user_id, 0)
    for seat in seated.values():
        game.players.append(Player(user_id=seat.user_id, role=seat.role, score=state.scores.get(seat.user_id, 0)))
    db.session.add(game)


def record_results(state: RoundState) -> None:
    """Bump games played and won for everyone seated at a finished game."""
    winner_ids = set(machine.winners(state))
    for seat in state.seats:
        user = db.session.get(User, seat.user_id)
        if user is None:
            continue
        user.games_played = (user.games_played or 0) + 1
        if seat.user_id in winner_ids:
            user.games_won = (user.games_won or 0) + 1
        db.session.add(user)


def broadcast_state(game: Game) -> None:
    socketio.emit('state_update', {'game_id': game.id, 'revision': game.revision},
                  to=chat.room_for(game.id), namespace='/ws')


def apply_event(game: Game, event) -> machine.Transition:
    """Run ``event`` through the phase machine and persist the outcome."""
    transition = machine.apply(load_state(game), event)
    save_state(game, transition.state)
    entered_discussion = (game.phase == machine.PHASE_DISCUSSION
                          and transition.previous_phase != machine.PHASE_DISCUSSION)
    duration = discussion_duration(current_app)
    if entered_discussion and duration > 0:
        game.phase_deadline = time.time() + duration
    if transition.completed_normally:
        record_results(transition.state)

    messages = [chat.post_system_message(game, text, commit=False) for text in transition.messages]
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        f"[phase] game={game.id} {transition.previous_phase} -> {game.phase} "
        f"round={game.current_round} event={type(event).__name__} revision={game.revision}"
    )
    if transition.awarded:
        current_app.logger.info(f"[score] game={game.id} round={game.current_round} awarded={transition.awarded}")

    chat.emit_messages(messages)
    broadcast_state(game)

    if entered_discussion:
        schedule_discussion_timer(current_app._get_current_object(), game.id, game.current_round)
    return transition
