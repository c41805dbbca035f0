from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user
from triad import db
from triad.main import validate_username, validate_email
from triad.models import User

users = Blueprint('users', __name__)

UPDATABLE_FIELDS = {'username', 'email', 'avatar_url'}


@users.route('/<string:username>', methods=['GET'])
@login_required
def get_user(username):
    """
    Returns a user's public profile (never the password hash).
    """
    user = User.query.filter_by(username=username).first()
    if not user:
        return jsonify({'error': 'User not found'}), 404
    return jsonify({'message': 'User found', 'user': user.to_dict()})


@users.route('/<string:username>', methods=['PUT', 'PATCH'])
@login_required
def update_user(username):
    """
    Updates the logged-in user's own profile. Changing the email requires
    the current password.
    """
    user = User.query.filter_by(username=username).first()
    if not user:
        return jsonify({'error': 'User not found'}), 404
    if user.id != current_user.id:
        return jsonify({'error': 'You can only edit your own profile'}), 403

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'Invalid update data'}), 400
    current_password = data.pop('current_password', None)
    unknown = sorted(set(data) - UPDATABLE_FIELDS)
    if unknown:
        return jsonify({'error': 'Invalid update data', 'errors': [{'field': f, 'message': 'Unknown field'} for f in unknown]}), 400
    if not data:
        return jsonify({'error': 'No update data provided'}), 400

    errors = []
    updates = {}
    if 'username' in data:
        updates['username'] = validate_username(data['username'], errors)
    if 'email' in data:
        updates['email'] = validate_email(data['email'], errors)
    if 'avatar_url' in data:
        avatar = data['avatar_url']
        if avatar is not None and (not isinstance(avatar, str) or not avatar.startswith(('http://', 'https://'))):
            errors.append({'field': 'avatar_url', 'message': 'Avatar must be an http(s) URL'})
        updates['avatar_url'] = avatar or None
    if errors:
        return jsonify({'error': 'Invalid update data', 'errors': errors}), 400

    changes = {k: v for k, v in updates.items() if getattr(user, k) != v}
    if not changes:
        return jsonify({'message': 'No changes detected', 'user': user.to_dict()})

    if 'username' in changes and User.query.filter_by(username=changes['username']).first():
        return jsonify({'error': 'New username is already taken'}), 409
    if 'email' in changes:
        if not current_password or not user.check_password(current_password):
            return jsonify({'error': 'Re-enter your current password to change your email'}), 403
        if User.query.filter_by(email=changes['email']).first():
            return jsonify({'error': 'New email is already in use'}), 409

    for key, value in changes.items():
        setattr(user, key, value)
    db.session.commit()
    return jsonify({'message': 'Profile updated successfully', 'user': user.to_dict()})
