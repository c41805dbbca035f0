from datetime import datetime, timezone
from triad import db, bcrypt
from flask_login import UserMixin
import random
import string

JUDGE_HUMAN = 'human'
JUDGE_AI = 'ai'
JUDGE_TYPES = (JUDGE_HUMAN, JUDGE_AI)

STATUS_WAITING = 'waiting'
STATUS_PLAYING = 'playing'
STATUS_FINISHED = 'finished'
STATUSES = (STATUS_WAITING, STATUS_PLAYING, STATUS_FINISHED)

MESSAGE_USER = 'user'
MESSAGE_SYSTEM = 'system'
MESSAGE_AI_JUDGE = 'ai-judge'


def _utcnow():
    return datetime.now(timezone.utc)


def _isoformat(value):
    return value.isoformat() if value else None


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(20), unique=True, nullable=False, index=True)
    email = db.Column(db.String(254), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(128), nullable=False)
    avatar_url = db.Column(db.String(512), nullable=True)
    games_played = db.Column(db.Integer, default=0, nullable=False)
    games_won = db.Column(db.Integer, default=0, nullable=False)
    join_date = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    @property
    def win_rate(self):
        if not self.games_played:
            return 0
        return round(100 * (self.games_won or 0) / self.games_played)

    @property
    def display_avatar(self):
        return self.avatar_url or f'https://i.pravatar.cc/150?u={self.id}'

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'avatar_url': self.display_avatar,
            'games_played': self.games_played or 0,
            'games_won': self.games_won or 0,
            'win_rate': self.win_rate,
            'join_date': _isoformat(self.join_date),
        }


class Player(db.Model):
    """One occupied seat at a game table."""
    __tablename__ = 'player'
    __table_args__ = (db.UniqueConstraint('game_id', 'user_id', name='uq_player_game_user'),)
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    role = db.Column(db.String(16), nullable=False)  # judge, player1, player2
    score = db.Column(db.Integer, default=0, nullable=False)
    joined_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    game = db.relationship('Game', back_populates='players')
    user = db.relationship('User')

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'username': self.user.username if self.user else None,
            'avatar_url': self.user.display_avatar if self.user else None,
            'role': self.role,
            'score': self.score or 0,
        }


def generate_game_name():
    return 'Trial ' + ''.join(random.choices(string.ascii_lowercase + string.digits, k=4))


class Game(db.Model):
    __tablename__ = 'game'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), default=STATUS_WAITING, nullable=False, index=True)
    phase = db.Column(db.String(32), default='waiting', nullable=False)
    judge_type = db.Column(db.String(8), default=JUDGE_HUMAN, nullable=False)
    judge_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    creator_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    current_round = db.Column(db.Integer, default=0, nullable=False)
    max_rounds = db.Column(db.Integer, default=3, nullable=False)
    current_subject = db.Column(db.Text, nullable=True)
    current_answer = db.Column(db.Text, nullable=True)
    evaluation_score = db.Column(db.Integer, nullable=True)
    evaluation_justification = db.Column(db.Text, nullable=True)
    phase_deadline = db.Column(db.Float, nullable=True)
    revision = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    last_updated = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=True)
    players = db.relationship('Player', back_populates='game', order_by='Player.id',
                              cascade='all, delete-orphan')
    messages = db.relationship('Message', back_populates='game', lazy='dynamic', passive_deletes=True)

    def __init__(self, **kwargs):
        super(Game, self).__init__(**kwargs)
        if not self.name:
            self.name = generate_game_name()

    @property
    def max_players(self):
        return 3 if self.judge_type == JUDGE_HUMAN else 2

    def seat_of(self, user_id):
        for p in self.players:
            if p.user_id == user_id:
                return p
        return None

    def to_summary(self):
        """Lobby row: enough to render the table and the join button."""
        return {
            'id': self.id,
            'name': self.name,
            'status': self.status,
            'judge_type': self.judge_type,
            'player_count': len(self.players),
            'max_players': self.max_players,
            'player_ids': [p.user_id for p in self.players],
            'created_at': _isoformat(self.created_at),
        }

    def to_dict(self, viewer_id=None):
        seat = self.seat_of(viewer_id) if viewer_id is not None else None
        evaluation = None
        if self.evaluation_score is not None:
            evaluation = {
                'score': self.evaluation_score,
                'justification': self.evaluation_justification,
            }
        return {
            'id': self.id,
            'name': self.name,
            'status': self.status,
            'phase': self.phase,
            'judge_type': self.judge_type,
            'judge_id': self.judge_id,
            'creator_id': self.creator_id,
            'current_round': self.current_round,
            'max_rounds': self.max_rounds,
            'max_players': self.max_players,
            'players': [p.to_dict() for p in self.players],
            'scores': {str(p.user_id): p.score or 0 for p in self.players},
            'current_subject': self.current_subject,
            'current_answer': self.current_answer,
            'evaluation_result': evaluation,
            'phase_deadline': self.phase_deadline,
            'revision': self.revision,
            'viewer_role': seat.role if seat else 'spectator',
            'created_at': _isoformat(self.created_at),
            'last_updated': _isoformat(self.last_updated),
        }


class Message(db.Model):
    __tablename__ = 'message'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False, index=True)
    sender_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    sender_username = db.Column(db.String(64), nullable=False)
    kind = db.Column(db.String(16), default=MESSAGE_USER, nullable=False)
    round = db.Column(db.Integer, nullable=True)
    text = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    game = db.relationship('Game', back_populates='messages')

    def to_dict(self):
        return {
            'id': self.id,
            'game_id': self.game_id,
            'sender_id': self.sender_id,
            'sender_username': self.sender_username,
            'kind': self.kind,
            'round': self.round,
            'text': self.text,
            'timestamp': _isoformat(self.created_at),
        }
