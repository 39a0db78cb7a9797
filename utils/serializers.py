from datetime import date


def parse_date(value):
    """YYYY-MM-DD (a full ISO datetime is cut to its date); None when missing or malformed."""
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def _money(value):
    return float(value) if value is not None else None


def _iso(value):
    return value.isoformat() if value else None


def room_to_dict(r):
    return {
        "id": r.id,
        "roomNumber": r.room_number,
        "type": r.type,
        "price": _money(r.price),
        "capacity": r.capacity,
        "floorNumber": r.floor_number,
        "status": r.status,
        "reservable": r.reservable,
        "availability": r.availability,
    }


# field names follow the frontend's booking contract
def booking_to_dict(b, include_user=False):
    out = {
        "id": b.id,
        "user": b.user_id,
        "room": room_to_dict(b.room) if b.room else b.room_id,
        "checkIn": _iso(b.check_in),
        "checkOut": _iso(b.check_out),
        "guests": b.guests,
        "totalPrice": _money(b.total_price),
        "status": b.status,
        "paymentStatus": b.payment_status,
        "paymentId": b.payment_ref,
        "refundAmount": _money(b.refund_amount),
        "needsReview": b.needs_review,
        "holdExpiresAt": _iso(b.hold_expires_at),
        "cancelledAt": _iso(b.cancelled_at),
        "createdAt": _iso(b.created_at),
        "updatedAt": _iso(b.updated_at),
    }
    if include_user and b.user is not None:
        out["user"] = {
            "id": b.user.id,
            "firstName": b.user.first_name,
            "lastName": b.user.last_name,
            "email": b.user.email,
            "phoneNumber": b.user.phone_number,
        }
    return out
