from decimal import Decimal

from models import db
from models.user import Role
from models.room import Room

DEFAULT_ROLES = ["CUSTOMER", "RECEPTIONIST", "ADMIN", "SUPER_ADMIN"]

# (room_number, type, nightly price, capacity, floor) for a fresh install
DEMO_ROOMS = [
    ("101", "single", "800", 1, 1),
    ("102", "double", "1200", 2, 1),
    ("103", "double", "1200", 2, 1),
    ("201", "triple", "1600", 3, 2),
    ("202", "double", "1300", 2, 2),
]

def seed_roles():
    existing = {r.name for r in Role.query.all()}
    for name in DEFAULT_ROLES:
        if name not in existing:
            db.session.add(Role(name=name))
    db.session.commit()

def seed_rooms(rows=DEMO_ROOMS):
    """Insert catalog rooms that are missing by room number. Returns how many were added."""
    existing = {number for (number,) in db.session.query(Room.room_number).all()}
    added = 0
    for number, room_type, price, capacity, floor in rows:
        if number in existing:
            continue
        db.session.add(Room(room_number=number, type=room_type, price=Decimal(price),
                            capacity=capacity, floor_number=floor))
        added += 1
    db.session.commit()
    return added
