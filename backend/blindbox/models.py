from blindbox import db
from blindbox.sync.model import now_ms
import json


class RoomSnapshot(db.Model):
    """The shared snapshot of one room, stored wholesale as JSON text."""
    __tablename__ = 'room_snapshot'
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.String(128), unique=True, nullable=False, index=True)
    payload = db.Column(db.Text, nullable=False)
    updated_at = db.Column(db.BigInteger, nullable=False, default=now_ms)

    @classmethod
    def for_room(cls, room_id):
        return cls.query.filter_by(room_id=room_id).first()

    def replace(self, data):
        self.payload = json.dumps(data, ensure_ascii=False)
        self.updated_at = now_ms()

    def to_dict(self):
        try:
            return json.loads(self.payload)
        except ValueError:
            return {}
