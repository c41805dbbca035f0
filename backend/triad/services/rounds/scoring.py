import math


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (2.5 -> 3, not 2)."""
    return int(math.floor(value + 0.5))


def points_for(accuracy_score: int) -> int:
    """Convert a 1-100 accuracy score into round points (0-10)."""
    return round_half_up(accuracy_score / 10)


def award_points(state, accuracy_score: int) -> dict:
    """Work out the points for the current round.

    A human judge renders the final answer and takes all the points. With an
    AI judge the two players share them, each getting half rounded up.
    """
    points = points_for(accuracy_score)
    if state.judge_type == 'human':
        if state.judge_id is None:
            return {}
        return {state.judge_id: points}
    share = round_half_up(points / 2)
    return {s.user_id: share for s in state.seats if s.role in ('player1', 'player2')}
