from datetime import datetime, time
from decimal import Decimal, ROUND_HALF_UP

from models.booking import PAYMENT_COMPLETED

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def check_in_moment(booking, check_in_hour: int = 14) -> datetime:
    return datetime.combine(booking.check_in, time(hour=check_in_hour))


def compute_refund(booking, cancel_time: datetime, fee_percent=5, check_in_hour: int = 14) -> Decimal:
    """
    How much of a completed payment goes back to the guest.

    Before the stay starts the cancellation fee is kept and the rest is
    refunded. Once check-in time has passed the guest is a no-show and
    nothing is refunded. Unpaid bookings never owe anything.
    """
    if booking.payment_status != PAYMENT_COMPLETED:
        return ZERO

    if cancel_time >= check_in_moment(booking, check_in_hour):
        return ZERO

    total = Decimal(booking.total_price)
    keep = Decimal(100) - Decimal(fee_percent)
    refund = (total * keep / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_UP)
    return max(refund, ZERO)
