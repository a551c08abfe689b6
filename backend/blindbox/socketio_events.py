from flask_socketio import join_room, leave_room, emit
from blindbox.models import RoomSnapshot


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_subscribe(data):
    """Join the room's broadcast and deliver the current snapshot right away."""
    room_id = (data or {}).get('room_id')
    if not room_id:
        emit('error', {'message': 'room_id is required'})
        return
    room = f"room:{room_id}"
    join_room(room)
    emit('subscribed', {'room': room})
    record = RoomSnapshot.for_room(room_id)
    if record:
        emit('snapshot', {'room_id': room_id, 'snapshot': record.to_dict()})


def handle_unsubscribe(data):
    room_id = (data or {}).get('room_id')
    if not room_id:
        emit('error', {'message': 'room_id is required'})
        return
    room = f"room:{room_id}"
    leave_room(room)
    emit('unsubscribed', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    from blindbox import socketio

    namespaces = ['/ws', '/'] if testing else ['/ws']
    for namespace in namespaces:
        socketio.on_event('connect', handle_connect, namespace=namespace)
        socketio.on_event('subscribe', handle_subscribe, namespace=namespace)
        socketio.on_event('unsubscribe', handle_unsubscribe, namespace=namespace)
        socketio.on_event('ping', handle_ping, namespace=namespace)
