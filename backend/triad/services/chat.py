"""Append-only chat feed attached to each game."""

from flask import current_app

from triad import db, socketio
from triad.errors import ChatError
from triad.models import Message, MESSAGE_USER, MESSAGE_SYSTEM, MESSAGE_AI_JUDGE
from triad.services.rounds.machine import PHASE_DISCUSSION

SENDER_NAMES = {
    MESSAGE_SYSTEM: 'System',
    MESSAGE_AI_JUDGE: 'AI Judge',
}


def room_for(game_id) -> str:
    return f"game:{game_id}"


def _emit(message: Message) -> None:
    socketio.emit('chat_message', message.to_dict(), to=room_for(message.game_id), namespace='/ws')


def post_system_message(game, text: str, kind: str = MESSAGE_SYSTEM, commit: bool = True):
    """Append a System or AI Judge line. With ``commit=False`` the caller commits and emits."""
    if not text:
        return None
    message = Message(game_id=game.id, sender_id=None, sender_username=SENDER_NAMES[kind], kind=kind, text=text,
                      round=game.current_round)
    db.session.add(message)
    if commit:
        db.session.commit()
        _emit(message)
    return message


def emit_messages(messages) -> None:
    for message in messages:
        if message is not None:
            _emit(message)


def post_message(game, user, text) -> Message:
    if game.phase != PHASE_DISCUSSION:
        raise ChatError('Chat is only active during discussion', 409)
    if game.seat_of(user.id) is None:
        raise ChatError('Spectators cannot chat', 403)
    text = (text or '').strip() if isinstance(text, str) else ''
    if not text:
        raise ChatError('Message text is required', 400)
    max_len = int(current_app.config.get('MAX_MESSAGE_LENGTH', 500))
    if len(text) > max_len:
        raise ChatError(f'Messages are limited to {max_len} characters', 400)

    message = Message(game_id=game.id, sender_id=user.id, sender_username=user.username, kind=MESSAGE_USER, text=text,
                      round=game.current_round)
    db.session.add(message)
    db.session.commit()
    _emit(message)
    return message


def list_messages(game, limit=None, after_id=None):
    """Latest ``limit`` messages, oldest first."""
    if limit is None:
        limit = int(current_app.config.get('MESSAGE_HISTORY_LIMIT', 100))
    query = Message.query.filter_by(game_id=game.id)
    if after_id is not None:
        query = query.filter(Message.id > after_id)
    latest = query.order_by(Message.id.desc()).limit(limit).all()
    return list(reversed(latest))


def transcript(game) -> str:
    """Plain-text discussion log for the current round, as fed to the AI judge."""
    rows = (Message.query
            .filter_by(game_id=game.id, round=game.current_round, kind=MESSAGE_USER)
            .order_by(Message.id.asc())
            .all())
    lines = [f"{m.sender_username}: {m.text}" for m in rows]
    return '\n'.join(lines)
