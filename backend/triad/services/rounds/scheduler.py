import time
from typing import Set, Tuple

from triad import db, socketio
from triad.errors import GameError
from triad.models import Game
from . import machine


_scheduled_keys: Set[Tuple[int, str, int]] = set()


def discussion_duration(app) -> int:
    return int(app.config.get('DISCUSSION_DURATION_SEC', 0) or 0)


def schedule_discussion_timer(app, game_id: int, round_idx: int) -> None:
    """Schedule the automatic end of a discussion whose deadline is already saved.

    - No-ops when DISCUSSION_DURATION_SEC is 0, and in TESTING mode unless
      ENABLE_SCHEDULER_IN_TESTS is set (then it runs synchronously)
    - Ensures a single timer per (game_id, phase, round)
    """
    duration = discussion_duration(app)
    if duration <= 0:
        return
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return

    key = (game_id, machine.PHASE_DISCUSSION, round_idx)
    if key in _scheduled_keys:
        app.logger.info(f"[timer-skip] game={game_id} round={round_idx} already scheduled")
        return
    _scheduled_keys.add(key)
    app.logger.info(f"[timer-set] game={game_id} round={round_idx} duration={duration}s")

    def _worker(gid: int, expected_round: int, delay: int):
        time.sleep(delay)
        with app.app_context():
            _scheduled_keys.discard((gid, machine.PHASE_DISCUSSION, expected_round))
            g = Game.query.filter_by(id=gid).with_for_update().first()
            if not g:
                return
            app.logger.info(
                f"[timer-fire] game={gid} expected_round={expected_round} actual_phase={g.phase} actual_round={g.current_round}"
            )
            if g.phase != machine.PHASE_DISCUSSION or int(g.current_round or 0) != expected_round:
                app.logger.info(f"[timer-abort] game={gid} phase/round moved on")
                db.session.rollback()
                return
            from .flow import end_discussion
            try:
                end_discussion(g, None)
            except GameError as exc:
                db.session.rollback()
                app.logger.info(f"[timer-abort] game={gid} {exc.message}")

    if app.config.get('TESTING'):
        _worker(game_id, round_idx, duration)
        # The worker committed through its own app context session
        db.session.expire_all()
    else:
        socketio.start_background_task(_worker, game_id, round_idx, duration)
