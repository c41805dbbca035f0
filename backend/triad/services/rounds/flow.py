"""Player-facing round actions that may involve the AI oracle."""

from flask import current_app

from triad import db
from triad.errors import OracleError, TransitionError
from triad.models import MESSAGE_AI_JUDGE
from triad.services import chat
from triad.services.oracle import get_oracle
from . import machine
from .store import apply_event


def select_subject(game, user, subject=None, topic=None):
    """Set the round subject: typed by a human judge, generated for an AI judge."""
    if game.judge_type == machine.JUDGE_HUMAN:
        return apply_event(game, machine.SubmitSubject(user_id=user.id, subject=subject or ''))

    # Validate before spending an AI call
    if game.phase != machine.PHASE_SUBJECT:
        raise TransitionError(f"Not allowed during the '{game.phase}' phase", 409)
    if game.seat_of(user.id) is None:
        raise TransitionError('You are not seated at this game', 403)
    generated = get_oracle().generate_subject(topic=topic)
    return apply_event(game, machine.SubmitSubject(user_id=user.id, subject=generated, generated=True))


def end_discussion(game, user_id):
    """Close the discussion; with an AI judge also produce and score its answer."""
    transition = apply_event(game, machine.EndDiscussion(user_id=user_id))
    if game.judge_type != machine.JUDGE_AI:
        return transition

    try:
        answer = get_oracle().consolidate_answer(game.current_subject or '', chat.transcript(game))
    except OracleError as exc:
        current_app.logger.warning(f"[oracle] consolidation failed game={game.id}: {exc.message}")
        return apply_event(game, machine.EvaluationFailed(reason=exc.message))
    except Exception as exc:
        return _unexpected_failure(game, 'consolidation', exc)
    apply_event(game, machine.SubmitAnswer(user_id=None, answer=answer))
    return evaluate(game)


def submit_answer(game, user, answer):
    apply_event(game, machine.SubmitAnswer(user_id=user.id, answer=answer))
    return evaluate(game)


def evaluate(game):
    """Score the committed answer and advance the round.

    The game is already persisted in the evaluation phase, so clients see
    it while the oracle is working.
    """
    try:
        result = get_oracle().evaluate_accuracy(game.current_subject or '', game.current_answer or '')
    except OracleError as exc:
        current_app.logger.warning(f"[oracle] evaluation failed game={game.id} round={game.current_round}: {exc.message}")
        return apply_event(game, machine.EvaluationFailed(reason=exc.message))
    except Exception as exc:
        return _unexpected_failure(game, 'evaluation', exc)

    chat.post_system_message(
        game,
        f"AI Evaluation: Score {result.score}/100. Justification: {result.justification}",
        kind=MESSAGE_AI_JUDGE,
    )
    return apply_event(game, machine.RecordEvaluation(score=result.score, justification=result.justification))


def _unexpected_failure(game, step, exc):
    """Log an unexpected oracle crash and skip the round."""
    db.session.rollback()
    current_app.logger.error(f"[oracle] {step} crashed game={game.id}: {exc!r}", exc_info=True)
    return apply_event(game, machine.EvaluationFailed(reason=str(exc)))
