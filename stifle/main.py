from flask import Blueprint, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from stifle import db

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the Stifle sync server!'})

@main.route('/health')
def health():
    try:
        db.session.execute(text('SELECT 1'))
    except SQLAlchemyError as exc:
        db.session.rollback()
        return jsonify({'ok': False, 'error': f'DB health check failed: {exc}'}), 500
    return jsonify({'ok': True})
