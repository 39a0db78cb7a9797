"""
Room availability ledger.

Occupancy is not stored separately: it is derived from the bookings that
currently hold a room. A booking holds its room for [check_in, check_out)
while it is confirmed/completed, or pending with an unexpired hold, and has
not been released.

Every write goes through reserve()/release(), which first take the room row
lock (a no-op UPDATE of rooms.lock_version). That lock is held until the
caller commits, so the overlap check and the insert happen as one unit.
"""
from datetime import datetime, timedelta

import sqlalchemy as sa
from flask import current_app

from models import db
from models.room import Room, HOUSEKEEPING_CLEAN
from models.booking import Booking, PENDING, CONFIRMED, COMPLETED
from services.errors import RoomNotFound, RoomNotReservable, RoomUnavailable, BookingNotFound


def ranges_overlap(a_start, a_end, b_start, b_end) -> bool:
    # half-open ranges: checkout day N and check-in day N do not clash
    return a_start < b_end and b_start < a_end


def hold_duration() -> timedelta:
    return timedelta(minutes=current_app.config.get("BOOKING_HOLD_MINUTES", 30))


def _holds_room(now):
    return sa.and_(
        Booking.released_at.is_(None),
        sa.or_(
            Booking.status.in_((CONFIRMED, COMPLETED)),
            sa.and_(Booking.status == PENDING, Booking.hold_expires_at > now),
        ),
    )


def overlapping_bookings(room_id, check_in, check_out, now=None, exclude_booking_id=None):
    now = now or datetime.utcnow()
    q = Booking.query.filter(
        Booking.room_id == room_id,
        Booking.check_in < check_out,
        Booking.check_out > check_in,
        _holds_room(now),
    )
    if exclude_booking_id is not None:
        q = q.filter(Booking.id != exclude_booking_id)
    return q


def is_available(room_id, check_in, check_out, now=None, exclude_booking_id=None) -> bool:
    room = db.session.get(Room, room_id)
    if room is None or not room.is_bookable:
        return False
    if check_in >= check_out:
        return False
    clash = overlapping_bookings(room_id, check_in, check_out, now, exclude_booking_id).first()
    return clash is None


def available_rooms(check_in, check_out, guests=1, now=None):
    now = now or datetime.utcnow()
    clash = sa.exists().where(
        Booking.room_id == Room.id,
        Booking.check_in < check_out,
        Booking.check_out > check_in,
        _holds_room(now),
    )
    return (
        Room.query
        .filter(
            Room.reservable.is_(True),
            Room.status == HOUSEKEEPING_CLEAN,
            Room.capacity >= guests,
            ~clash,
        )
        .order_by(Room.room_number.asc())
        .all()
    )


def lock_room(room_id) -> Room:
    result = db.session.execute(
        sa.update(Room)
        .where(Room.id == room_id)
        .values(lock_version=Room.lock_version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise RoomNotFound(room_id=room_id)
    return db.session.get(Room, room_id, populate_existing=True)


def refresh_room_availability(room: Room, now=None) -> None:
    """The catalog flag: false while any hold on the room has not ended yet."""
    now = now or datetime.utcnow()
    held = (
        Booking.query
        .filter(
            Booking.room_id == room.id,
            Booking.check_out > now.date(),
            _holds_room(now),
        )
        .first()
    )
    room.availability = held is None


def reserve(room_id, check_in, check_out, booking: Booking, now=None) -> Booking:
    """
    Claim [check_in, check_out) on the room for `booking`.

    Works for new bookings (added to the session) and for existing pending
    ones whose hold is being renewed. Does not commit; raises with the
    transaction still open, the caller rolls back.
    """
    now = now or datetime.utcnow()
    room = lock_room(room_id)

    if not room.is_bookable:
        raise RoomNotReservable(room_id=room.id, housekeeping=room.status, reservable=room.reservable)

    clash = overlapping_bookings(room.id, check_in, check_out, now, exclude_booking_id=booking.id).first()
    if clash is not None:
        raise RoomUnavailable(room_id=room.id)

    booking.room_id = room.id
    booking.check_in = check_in
    booking.check_out = check_out
    booking.released_at = None
    if booking.status == PENDING:
        booking.hold_expires_at = now + hold_duration()

    if booking.id is None:
        db.session.add(booking)
    db.session.flush()

    refresh_room_availability(room, now)
    return booking


def release(room_id, booking_id, now=None) -> bool:
    """Give the booking's dates back. Releasing twice is a no-op (returns False)."""
    now = now or datetime.utcnow()
    booking = db.session.get(Booking, booking_id)
    if booking is None or booking.room_id != room_id:
        raise BookingNotFound(booking_id=booking_id)

    if booking.released_at is not None:
        return False

    room = lock_room(room_id)
    booking.released_at = now
    db.session.flush()
    refresh_room_availability(room, now)
    return True
