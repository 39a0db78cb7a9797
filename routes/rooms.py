from flask import Blueprint, request, jsonify

from models import db
from models.room import Room
from services import ledger
from utils.serializers import parse_date, room_to_dict

rooms_bp = Blueprint("rooms", __name__, url_prefix="/rooms")


def _range_from_args():
    check_in = parse_date(request.args.get("checkIn"))
    check_out = parse_date(request.args.get("checkOut"))
    if check_in is None or check_out is None:
        return None, None, (jsonify(error="checkIn and checkOut are required (YYYY-MM-DD)"), 400)
    if check_in >= check_out:
        return None, None, (jsonify(error="checkOut must be after checkIn"), 400)
    return check_in, check_out, None


# public: rooms a guest could book for these dates
@rooms_bp.get("/available")
def list_available_rooms():
    check_in, check_out, failure = _range_from_args()
    if failure:
        return failure
    guests = request.args.get("guests", type=int) or 1

    rooms = ledger.available_rooms(check_in, check_out, guests=guests)
    return jsonify([room_to_dict(r) for r in rooms]), 200


@rooms_bp.get("/<int:room_id>/availability")
def room_availability(room_id: int):
    check_in, check_out, failure = _range_from_args()
    if failure:
        return failure

    room = db.session.get(Room, room_id)
    if not room:
        return jsonify(error="Room not found"), 404

    return jsonify(
        room=room_to_dict(room),
        checkIn=check_in.isoformat(),
        checkOut=check_out.isoformat(),
        available=ledger.is_available(room.id, check_in, check_out),
    ), 200
