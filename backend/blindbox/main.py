from flask import Blueprint, request, jsonify, current_app
from blindbox import bcrypt

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the Blind Box snapshot server!'})

@main.route('/api/teacher/verify', methods=['POST'])
def verify_teacher():
    """Password gate in front of the teacher console. Claimants are never checked."""
    data = request.get_json(silent=True) or {}
    password = data.get('password')
    if not password:
        return jsonify({'error': 'Password is required'}), 400
    pw_hash = current_app.config.get('TEACHER_PASSWORD_HASH')
    if pw_hash and bcrypt.check_password_hash(pw_hash, password):
        return jsonify({'ok': True})
    current_app.logger.info("[teacher-verify] rejected")
    return jsonify({'ok': False, 'error': 'Invalid password'}), 401
