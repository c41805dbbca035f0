import re

from flask import Blueprint, request, jsonify, current_app
from flask_login import login_user, logout_user, login_required, current_user
from sqlalchemy import or_
from triad import db
from triad.models import User

main = Blueprint('main', __name__)

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
USERNAME_MIN, USERNAME_MAX = 3, 20
PASSWORD_MIN = 6


def validate_username(value, errors):
    if not isinstance(value, str) or not (USERNAME_MIN <= len(value.strip()) <= USERNAME_MAX):
        errors.append({'field': 'username', 'message': f'Username must be {USERNAME_MIN}-{USERNAME_MAX} characters'})
        return None
    return value.strip()


def validate_email(value, errors):
    if not isinstance(value, str) or not EMAIL_RE.match(value.strip()):
        errors.append({'field': 'email', 'message': 'Invalid email address'})
        return None
    return value.strip().lower()


def validate_password(value, errors):
    if not isinstance(value, str) or len(value) < PASSWORD_MIN:
        errors.append({'field': 'password', 'message': f'Password must be at least {PASSWORD_MIN} characters'})
        return None
    return value


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the Triad Trials game server!'})


@main.route('/api/auth/signup', methods=['POST'])
def signup():
    data = request.get_json(silent=True) or {}
    errors = []
    username = validate_username(data.get('username'), errors)
    email = validate_email(data.get('email'), errors)
    password = validate_password(data.get('password'), errors)
    if errors:
        return jsonify({'error': 'Invalid input', 'errors': errors}), 400

    existing = User.query.filter(or_(User.username == username, User.email == email)).first()
    if existing:
        message = 'Username already taken' if existing.username == username else 'Email already in use'
        return jsonify({'error': message}), 409

    user = User(username=username, email=email)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    current_app.logger.info(f"[auth] signup user={user.id} username={user.username}")
    login_user(user)
    return jsonify({'message': 'Signup successful', 'user': user.to_dict()}), 201


@main.route('/api/auth/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    username = data.get('username')
    password = data.get('password')
    if not isinstance(username, str) or not isinstance(password, str):
        return jsonify({'error': 'Invalid input'}), 400

    user = User.query.filter_by(username=username.strip()).first()
    if user and user.check_password(password):
        login_user(user, remember=True)
        return jsonify({'message': 'Login successful', 'user': user.to_dict()})
    return jsonify({'error': 'Invalid username or password'}), 401


@main.route('/api/auth/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'message': 'Logged out successfully.'})


@main.route('/api/auth/me')
@login_required
def me():
    return jsonify({'user': current_user.to_dict()})
