from flask import Blueprint, jsonify

from .state import get_state

bp = Blueprint('duochat', __name__)


@bp.route('/health')
def health():
    state = get_state()
    return jsonify({
        'status': 'ok',
        'online': state.sessions.online(),
        'messages': len(state.store),
    })
