from flask import Blueprint, Response, jsonify, request, current_app
from blindbox import db, socketio
from blindbox.models import RoomSnapshot
from blindbox.services.export import export_csv, export_filename
from blindbox.sync.model import Snapshot


rooms = Blueprint('rooms', __name__)


def _broadcast(event: str, payload: dict, room_id: str) -> None:
    socketio.emit(event, payload, to=f"room:{room_id}", namespace='/ws')


@rooms.route('/<string:room_id>/snapshot', methods=['GET'])
def get_snapshot(room_id):
    record = RoomSnapshot.for_room(room_id)
    if not record:
        return jsonify({'error': 'No snapshot for this room'}), 404
    return jsonify(record.to_dict())


@rooms.route('/<string:room_id>/snapshot', methods=['PUT', 'POST'])
def put_snapshot(room_id):
    """
    Replaces the room's snapshot wholesale. No claim arbitration happens here:
    whatever arrives last is what every client sees next.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'Snapshot must be a JSON object'}), 400

    record = RoomSnapshot.for_room(room_id)
    if not record:
        record = RoomSnapshot(room_id=room_id)
    record.replace(data)
    db.session.add(record)
    db.session.commit()

    session = data.get('session')
    phase = session.get('phase') if isinstance(session, dict) else None
    current_app.logger.info(f"[snapshot-put] room={room_id} phase={phase} updated_at={record.updated_at}")
    _broadcast('snapshot', {'room_id': room_id, 'snapshot': data}, room_id)
    return jsonify({'ok': True, 'updatedAt': record.updated_at})


@rooms.route('/<string:room_id>/snapshot', methods=['DELETE'])
def clear_snapshot(room_id):
    record = RoomSnapshot.for_room(room_id)
    if record:
        db.session.delete(record)
        db.session.commit()
    current_app.logger.info(f"[snapshot-clear] room={room_id} existed={record is not None}")
    _broadcast('snapshot_cleared', {'room_id': room_id}, room_id)
    return jsonify({'ok': True})


@rooms.route('/<string:room_id>/export.csv', methods=['GET'])
def export_results(room_id):
    record = RoomSnapshot.for_room(room_id)
    if not record:
        return jsonify({'error': 'No snapshot for this room'}), 404
    body = export_csv(Snapshot.from_dict(record.to_dict()))
    return Response(
        body.encode('utf-8'),
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename="{export_filename()}"'},
    )
