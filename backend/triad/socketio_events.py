from typing import Any, Dict

from flask import request, current_app
from flask_login import current_user
from flask_socketio import join_room, leave_room, emit

from triad import socketio
from triad.errors import GameError
from triad.models import Game
from triad.services import chat

NAMESPACE = '/ws'

# sid -> {'game_id', 'user_id', 'username'} for sockets that joined a game room
_sid_to_ctx: Dict[str, Dict[str, Any]] = {}


def _get_sid() -> str:
    return request.sid  # type: ignore[attr-defined]


def _game_id_from(data):
    try:
        return int((data or {}).get('game_id'))
    except (TypeError, ValueError):
        return None


def presence_for(game_id: int):
    """Connected viewers of a game, one entry per user even with several tabs."""
    seen = {}
    for ctx in _sid_to_ctx.values():
        if ctx['game_id'] == game_id and ctx['user_id'] is not None:
            seen.setdefault(ctx['user_id'], ctx['username'])
    return [{'user_id': uid, 'username': name} for uid, name in sorted(seen.items())]


def _broadcast_presence(game_id: int) -> None:
    socketio.emit('presence', {'game_id': game_id, 'users': presence_for(game_id)},
                  to=chat.room_for(game_id), namespace=NAMESPACE)


def _drop_sid(sid: str) -> None:
    ctx = _sid_to_ctx.pop(sid, None)
    if ctx:
        _broadcast_presence(ctx['game_id'])


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(*args):
    _drop_sid(_get_sid())


def handle_join_game(data):
    game_id = _game_id_from(data)
    if game_id is None:
        emit('error', {'message': 'game_id is required'})
        return
    if Game.query.filter_by(id=game_id).first() is None:
        emit('error', {'message': 'Game not found'})
        return

    sid = _get_sid()
    previous = _sid_to_ctx.get(sid)
    if previous and previous['game_id'] != game_id:
        leave_room(chat.room_for(previous['game_id']))
        _drop_sid(sid)

    room = chat.room_for(game_id)
    join_room(room)
    authenticated = current_user.is_authenticated
    _sid_to_ctx[sid] = {
        'game_id': game_id,
        'user_id': current_user.id if authenticated else None,
        'username': current_user.username if authenticated else None,
    }
    emit('joined', {'room': room})
    _broadcast_presence(game_id)


def handle_leave_game(data):
    game_id = _game_id_from(data)
    if game_id is None:
        emit('error', {'message': 'game_id is required'})
        return
    room = chat.room_for(game_id)
    leave_room(room)
    emit('left', {'room': room})
    ctx = _sid_to_ctx.get(_get_sid())
    if ctx and ctx['game_id'] == game_id:
        _drop_sid(_get_sid())


def handle_send_message(data):
    if not current_user.is_authenticated:
        emit('error', {'message': 'Authentication required'})
        return
    game_id = _game_id_from(data)
    game = Game.query.filter_by(id=game_id).first() if game_id is not None else None
    if game is None:
        emit('error', {'message': 'Game not found'})
        return
    try:
        chat.post_message(game, current_user, (data or {}).get('text'))
    except GameError as exc:
        current_app.logger.info(f"[chat] rejected game={game_id} user={current_user.id}: {exc.message}")
        emit('error', {'message': exc.message})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on the '/ws' namespace."""
    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=NAMESPACE)
    socketio.on_event('join_game', handle_join_game, namespace=NAMESPACE)
    socketio.on_event('leave_game', handle_leave_game, namespace=NAMESPACE)
    socketio.on_event('send_message', handle_send_message, namespace=NAMESPACE)
    socketio.on_event('ping', handle_ping, namespace=NAMESPACE)
