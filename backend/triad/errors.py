from flask import jsonify
from werkzeug.exceptions import HTTPException


class GameError(Exception):
    """Base class for domain failures that map onto an HTTP response."""

    status_code = 400

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'error': self.message}


class TransitionError(GameError):
    """An event that is not legal for the current phase, role or seat."""


class ChatError(GameError):
    pass


class OracleError(GameError):
    """The AI service failed or answered with something unusable."""

    status_code = 502


def register_error_handlers(flask_app):
    @flask_app.errorhandler(GameError)
    def handle_game_error(exc):
        flask_app.logger.info(f"[error] {exc.__class__.__name__} status={exc.status_code} message={exc.message}")
        return jsonify(exc.to_dict()), exc.status_code

    @flask_app.errorhandler(HTTPException)
    def handle_http_error(exc):
        return jsonify({'error': exc.description}), exc.code
