from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user
from triad import db
from triad.errors import TransitionError
from triad.models import Game, Player, Message, JUDGE_TYPES, JUDGE_HUMAN, STATUSES, STATUS_WAITING, STATUS_FINISHED
from triad.services import chat
from triad.services.rounds import flow, machine
from triad.services.rounds.store import apply_event, get_game_for_update

games = Blueprint('games', __name__)

MATCH_CANDIDATES = 10


def _state_payload(game):
    payload = game.to_dict(viewer_id=current_user.id)
    payload['durations'] = {
        'discussion': int(current_app.config.get('DISCUSSION_DURATION_SEC', 0)),
    }
    return payload


def _int_arg(value, default=None):
    try:
        return int(value) if value is not None else default
    except (TypeError, ValueError):
        return default


@games.route('', methods=['POST'])
@login_required
def create_game():
    """
    Creates a new table and seats the creator (as judge for a human-judged game).
    """
    data = request.get_json(silent=True) or {}
    judge_type = data.get('judge_type') or JUDGE_HUMAN
    if judge_type not in JUDGE_TYPES:
        return jsonify({'error': f"judge_type must be one of {', '.join(JUDGE_TYPES)}"}), 400

    limit = int(current_app.config.get('MAX_ROUNDS_LIMIT', 10))
    max_rounds = _int_arg(data.get('max_rounds'), int(current_app.config.get('MAX_ROUNDS', 3)))
    if max_rounds is None or not 1 <= max_rounds <= limit:
        return jsonify({'error': f'max_rounds must be between 1 and {limit}'}), 400

    name = data.get('name')
    if name is not None and (not isinstance(name, str) or not name.strip() or len(name.strip()) > 64):
        return jsonify({'error': 'Game name must be 1-64 characters'}), 400

    new_game = Game(name=name.strip() if name else None, judge_type=judge_type,
                    max_rounds=max_rounds, creator_id=current_user.id)
    db.session.add(new_game)
    db.session.commit()
    current_app.logger.info(f"[create] game={new_game.id} judge_type={judge_type} max_rounds={max_rounds} by user={current_user.id}")

    apply_event(new_game, machine.Join(user_id=current_user.id, username=current_user.username))
    return jsonify(_state_payload(new_game)), 201


@games.route('', methods=['GET'])
@login_required
def list_games():
    """
    Lobby listing with name search and status / judge filters.
    Finished games are hidden unless explicitly asked for.
    """
    search = (request.args.get('search') or '').strip()
    status = request.args.get('status') or 'all'
    judge_type = request.args.get('judge_type') or 'all'

    query = Game.query
    if status == 'all':
        query = query.filter(Game.status != STATUS_FINISHED)
    elif status in STATUSES:
        query = query.filter(Game.status == status)
    else:
        return jsonify({'error': f'Unknown status filter: {status}'}), 400
    if judge_type != 'all':
        if judge_type not in JUDGE_TYPES:
            return jsonify({'error': f'Unknown judge filter: {judge_type}'}), 400
        query = query.filter(Game.judge_type == judge_type)
    if search:
        query = query.filter(Game.name.ilike(f'%{search}%'))

    rows = query.order_by(Game.created_at.desc(), Game.id.desc()).limit(50).all()
    return jsonify([g.to_summary() for g in rows])


@games.route('/mine', methods=['GET'])
@login_required
def my_games():
    """
    Returns the unfinished games the current user is seated at.
    """
    rows = (Game.query.join(Player)
            .filter(Player.user_id == current_user.id, Game.status != STATUS_FINISHED)
            .order_by(Game.id.desc())
            .all())
    return jsonify([g.to_summary() for g in rows])


@games.route('/match', methods=['POST'])
@login_required
def find_match():
    """
    Joins the first waiting game with a free seat that the user is not already in.
    """
    candidates = (Game.query.filter_by(status=STATUS_WAITING)
                  .order_by(Game.created_at.asc(), Game.id.asc())
                  .limit(MATCH_CANDIDATES)
                  .all())
    for candidate in candidates:
        if len(candidate.players) < candidate.max_players and candidate.seat_of(current_user.id) is None:
            game = get_game_for_update(candidate.id)
            try:
                apply_event(game, machine.Join(user_id=current_user.id, username=current_user.username))
            except TransitionError as exc:
                # filled up since the scan
                db.session.rollback()
                current_app.logger.info(f"[match] skip game={candidate.id}: {exc.message}")
                continue
            current_app.logger.info(f"[match] user={current_user.id} matched game={game.id}")
            return jsonify(_state_payload(game))
    return jsonify({'error': 'No suitable games available. Try creating one!'}), 404


@games.route('/<int:game_id>/join', methods=['POST'])
@login_required
def join_game(game_id):
    game = get_game_for_update(game_id)
    if game.seat_of(current_user.id) is None:
        apply_event(game, machine.Join(user_id=current_user.id, username=current_user.username))
    return jsonify(_state_payload(game))


@games.route('/<int:game_id>/leave', methods=['POST'])
@login_required
def leave_game(game_id):
    """
    Frees the user's seat. A game that never started is deleted once its
    last seat is empty.
    """
    game = get_game_for_update(game_id)
    apply_event(game, machine.Leave(user_id=current_user.id))

    if game.phase == machine.PHASE_WAITING and not game.players:
        Message.query.filter_by(game_id=game.id).delete(synchronize_session=False)
        db.session.delete(game)
        db.session.commit()
        current_app.logger.info(f"[leave] game={game_id} deleted after last player left")
    return jsonify({'message': 'You have left the game.'})


@games.route('/<int:game_id>/state', methods=['GET'])
@login_required
def get_game_state(game_id):
    game = Game.query.filter_by(id=game_id).first_or_404()
    return jsonify(_state_payload(game))


@games.route('/<int:game_id>/subject', methods=['POST'])
@login_required
def submit_subject(game_id):
    data = request.get_json(silent=True) or {}
    subject = data.get('subject')
    topic = data.get('topic')
    if subject is not None and not isinstance(subject, str):
        return jsonify({'error': 'subject must be a string'}), 400
    if topic is not None and not isinstance(topic, str):
        return jsonify({'error': 'topic must be a string'}), 400

    game = get_game_for_update(game_id)
    flow.select_subject(game, current_user, subject=subject, topic=(topic or '').strip() or None)
    return jsonify(_state_payload(game))


@games.route('/<int:game_id>/discussion/end', methods=['POST'])
@login_required
def end_discussion(game_id):
    game = get_game_for_update(game_id)
    flow.end_discussion(game, current_user.id)
    return jsonify(_state_payload(game))


@games.route('/<int:game_id>/answer', methods=['POST'])
@login_required
def submit_answer(game_id):
    data = request.get_json(silent=True) or {}
    answer = data.get('answer')
    if not isinstance(answer, str):
        return jsonify({'error': 'answer is required'}), 400

    game = get_game_for_update(game_id)
    flow.submit_answer(game, current_user, answer)
    return jsonify(_state_payload(game))


@games.route('/<int:game_id>/messages', methods=['GET'])
@login_required
def get_messages(game_id):
    game = Game.query.filter_by(id=game_id).first_or_404()
    history_limit = int(current_app.config.get('MESSAGE_HISTORY_LIMIT', 100))
    limit = _int_arg(request.args.get('limit'), history_limit)
    limit = max(1, min(limit, history_limit))
    after_id = _int_arg(request.args.get('after'))
    return jsonify([m.to_dict() for m in chat.list_messages(game, limit=limit, after_id=after_id)])


@games.route('/<int:game_id>/messages', methods=['POST'])
@login_required
def send_message(game_id):
    data = request.get_json(silent=True) or {}
    game = Game.query.filter_by(id=game_id).first_or_404()
    message = chat.post_message(game, current_user, data.get('text'))
    return jsonify(message.to_dict()), 201
