from .db import db
from .user import User, Role, user_roles
from .audit_log import AuditLog
from .session import Session
from .room import Room
from .booking import Booking
from .payment import Payment
