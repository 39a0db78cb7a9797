from datetime import datetime
from models.db import db

ROOM_TYPES = ("single", "double", "triple")

# housekeeping status values
HOUSEKEEPING_CLEAN = "clean"
HOUSEKEEPING_DIRTY = "dirty"
HOUSEKEEPING_MAINTENANCE = "maintenance"

class Room(db.Model):
    __tablename__ = "rooms"

    id = db.Column(db.Integer, primary_key=True)
    room_number = db.Column(db.String(20), unique=True, nullable=False, index=True)

    type = db.Column(db.String(20), nullable=False)
    price = db.Column(db.Numeric(12, 2), nullable=False)  # per night
    capacity = db.Column(db.Integer, nullable=False, default=1)
    floor_number = db.Column(db.Integer, nullable=False, default=0)

    # housekeeping owns this one
    status = db.Column(db.String(20), nullable=False, default=HOUSEKEEPING_CLEAN)
    # administrative flag, independent of dates
    reservable = db.Column(db.Boolean, nullable=False, default=True)
    # maintained by the availability ledger for the public listing
    availability = db.Column(db.Boolean, nullable=False, default=True)

    # bumped by the ledger to take the row lock before an overlap check
    lock_version = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    @property
    def is_bookable(self):
        return self.reservable and self.status == HOUSEKEEPING_CLEAN
