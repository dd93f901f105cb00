from flask_socketio import join_room, leave_room, emit
from stifle import socketio


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def _room_for(data):
    user_id = (data or {}).get('user_id')
    try:
        return f"user:{int(user_id)}"
    except (TypeError, ValueError):
        return None


def handle_subscribe(data):
    """Join the fact feed for one user: streak_update and score_update."""
    room = _room_for(data)
    if not room:
        emit('error', {'message': 'user_id is required'})
        return
    join_room(room)
    emit('subscribed', {'room': room})


def handle_unsubscribe(data):
    room = _room_for(data)
    if not room:
        emit('error', {'message': 'user_id is required'})
        return
    leave_room(room)
    emit('unsubscribed', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    socketio.on_event('connect', handle_connect, namespace='/ws')
    socketio.on_event('subscribe', handle_subscribe, namespace='/ws')
    socketio.on_event('unsubscribe', handle_unsubscribe, namespace='/ws')
    socketio.on_event('ping', handle_ping, namespace='/ws')

    if testing:
        # Test-only mirror on default namespace
        socketio.on_event('connect', handle_connect, namespace='/')
        socketio.on_event('subscribe', handle_subscribe, namespace='/')
        socketio.on_event('unsubscribe', handle_unsubscribe, namespace='/')
        socketio.on_event('ping', handle_ping, namespace='/')
