import pytest

from triad.errors import TransitionError
from triad.services.rounds import machine
from triad.services.rounds.machine import (
    RoundState, Join, Leave, SubmitSubject, EndDiscussion, SubmitAnswer,
    RecordEvaluation, EvaluationFailed, apply,
)
from triad.services.rounds.scoring import points_for, round_half_up


def _human_table(max_rounds=2):
    state = RoundState(phase='waiting', judge_type='human', max_rounds=max_rounds)
    for uid, name in [(1, 'judy'), (2, 'alice'), (3, 'bob')]:
        state = apply(state, Join(uid, name)).state
    return state


def _ai_table(max_rounds=1):
    state = RoundState(phase='waiting', judge_type='ai', max_rounds=max_rounds)
    for uid, name in [(2, 'alice'), (3, 'bob')]:
        state = apply(state, Join(uid, name)).state
    return state


def _to_evaluation(state, user_id=1, answer='Naples, 1889'):
    state = apply(state, SubmitSubject(user_id, 'The history of pizza')).state
    state = apply(state, EndDiscussion(2)).state
    return apply(state, SubmitAnswer(user_id, answer)).state


def test_roles_assigned_in_join_order_and_game_starts_when_full():
    state = RoundState(phase='waiting', judge_type='human', max_rounds=3)
    t = apply(state, Join(1, 'judy'))
    assert t.state.seats[0].role == 'judge'
    assert t.state.judge_id == 1
    assert t.messages == ['judy joined as the Judge.']
    assert t.state.phase == 'waiting'

    t = apply(t.state, Join(2, 'alice'))
    assert t.state.seat_of(2).role == 'player1'

    t = apply(t.state, Join(3, 'bob'))
    assert t.state.seat_of(3).role == 'player2'
    assert t.state.phase == 'subject-selection'
    assert t.state.current_round == 1
    assert t.messages == ['bob joined as Player 2. Game starting! Round 1 begins.']


def test_apply_does_not_mutate_input_state():
    state = RoundState(phase='waiting', judge_type='human', max_rounds=3)
    apply(state, Join(1, 'judy'))
    assert state.seats == []
    assert state.judge_id is None


def test_ai_table_needs_only_two_players():
    state = _ai_table()
    assert [s.role for s in state.seats] == ['player1', 'player2']
    assert state.judge_id is None
    assert state.phase == 'subject-selection'


def test_join_full_table_is_rejected_and_rejoin_is_noop():
    state = _human_table()
    with pytest.raises(TransitionError) as err:
        apply(state, Join(4, 'carl'))
    assert err.value.status_code == 403
    again = apply(state, Join(2, 'alice'))
    assert again.messages == []
    assert again.state == state


def test_seat_freed_in_waiting_is_reused():
    state = RoundState(phase='waiting', judge_type='human', max_rounds=3)
    state = apply(state, Join(1, 'judy')).state
    state = apply(state, Join(2, 'alice')).state
    state = apply(state, Leave(1)).state
    assert state.judge_id is None
    t = apply(state, Join(5, 'erin'))
    assert t.state.seat_of(5).role == 'judge'


def test_only_judge_sets_subject_for_human_judge():
    state = _human_table()
    with pytest.raises(TransitionError) as err:
        apply(state, SubmitSubject(2, 'Cats'))
    assert err.value.status_code == 403
    with pytest.raises(TransitionError):
        apply(state, SubmitSubject(1, '   '))
    t = apply(state, SubmitSubject(1, '  Cats  '))
    assert t.state.subject == 'Cats'
    assert t.state.phase == 'discussion'
    assert t.messages == ['Subject for Round 1: "Cats". Players, discuss!']


def test_ai_subject_must_be_generated():
    state = _ai_table()
    with pytest.raises(TransitionError):
        apply(state, SubmitSubject(2, 'Typed by hand'))
    t = apply(state, SubmitSubject(3, 'Volcanoes', generated=True))
    assert t.messages == ['AI Subject for Round 1: "Volcanoes". Players, discuss!']


def test_events_out_of_phase_are_rejected():
    state = _human_table()
    for event in (EndDiscussion(1), SubmitAnswer(1, 'x'), RecordEvaluation(50, 'ok')):
        with pytest.raises(TransitionError) as err:
            apply(state, event)
        assert err.value.status_code == 409


def test_timer_can_end_discussion_but_spectators_cannot():
    state = apply(_human_table(), SubmitSubject(1, 'Cats')).state
    with pytest.raises(TransitionError):
        apply(state, EndDiscussion(99))
    t = apply(state, EndDiscussion(None))
    assert t.state.phase == 'answering'
    assert t.messages == ['Discussion ended. Waiting for the final answer from the Judge.']


def test_human_judge_answer_scores_the_judge_and_advances_round():
    state = _to_evaluation(_human_table())
    assert state.phase == 'evaluation'
    assert state.answer == 'Naples, 1889'

    t = apply(state, RecordEvaluation(85, 'Accurate'))
    assert t.awarded == {1: 9}
    assert t.state.scores == {1: 9, 2: 0, 3: 0}
    assert t.state.phase == 'subject-selection'
    assert t.state.current_round == 2
    assert t.state.subject is None and t.state.answer is None
    assert t.state.evaluation.score == 85
    assert t.messages == ['Scores updated.', 'Round 2 begins! Waiting for the subject.']


def test_ai_judge_splits_points_between_players():
    state = apply(_ai_table(), SubmitSubject(2, 'Volcanoes', generated=True)).state
    state = apply(state, EndDiscussion(3)).state
    with pytest.raises(TransitionError):
        apply(state, SubmitAnswer(2, 'players cannot answer for the AI'))
    state = apply(state, SubmitAnswer(None, 'Magma rises')).state
    t = apply(state, RecordEvaluation(70, 'Mostly right'))
    assert t.awarded == {2: 4, 3: 4}
    assert t.state.phase == 'finished'
    assert t.finished and t.completed_normally
    assert t.messages[-1] == 'Game Over! Final Scores: alice: 4, bob: 4'


def test_evaluation_score_is_clamped():
    state = _to_evaluation(_human_table())
    assert apply(state, RecordEvaluation(250, 'wow')).state.evaluation.score == 100
    assert apply(state, RecordEvaluation(-3, 'no')).state.evaluation.score == 1


def test_failed_evaluation_moves_on_without_points():
    state = _to_evaluation(_human_table(max_rounds=1))
    t = apply(state, EvaluationFailed('timeout'))
    assert t.awarded == {}
    assert t.state.phase == 'finished'
    assert t.state.current_round == 1
    assert t.messages[0] == 'AI evaluation failed. Moving to next round.'


def test_leaving_mid_game_ends_it_as_abandoned():
    state = apply(_human_table(), SubmitSubject(1, 'Cats')).state
    t = apply(state, Leave(3))
    assert t.state.phase == 'finished'
    assert t.finished and t.abandoned
    assert not t.completed_normally
    assert t.messages == ['bob left the game. The trial has ended.']


def test_leaving_a_finished_game_only_frees_the_seat():
    state = apply(_human_table(), SubmitSubject(1, 'Cats')).state
    state = apply(state, Leave(3)).state
    t = apply(state, Leave(2))
    assert t.state.phase == 'finished'
    assert [s.username for s in t.state.seats] == ['judy']
    assert 2 not in t.state.scores
    assert t.messages == []
    assert not t.finished


def test_leave_unknown_user():
    with pytest.raises(TransitionError) as err:
        apply(_human_table(), Leave(42))
    assert err.value.status_code == 404


def test_winners_share_ties():
    state = _ai_table()
    state.scores = {2: 5, 3: 5}
    assert machine.winners(state) == [2, 3]
    state.scores = {2: 6, 3: 5}
    assert machine.winners(state) == [2]


@pytest.mark.parametrize('score,points', [(1, 0), (5, 1), (44, 4), (45, 5), (100, 10)])
def test_points_round_half_up(score, points):
    assert points_for(score) == points


def test_round_half_up_differs_from_bankers_rounding():
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
