import hashlib
import secrets
from datetime import datetime, timedelta
from flask import request, current_app

from models import db
from models.session import Session

def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()

def create_session(user_id: int) -> str:
    """
    Stores a session the same way the auth service does and returns the raw
    cookie token. Used by the CLI and the test-suite; login itself lives in
    the auth service.
    """
    raw_token = secrets.token_urlsafe(32)

    lifetime = current_app.config.get("SESSION_LIFETIME_SECONDS", 28800)
    row = Session(
        user_id=user_id,
        token_hash=_hash_token(raw_token),
        expires_at=datetime.utcnow() + timedelta(seconds=lifetime),
    )
    db.session.add(row)
    db.session.commit()
    return raw_token

def get_session_from_request():
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "meseret_session")
    raw_token = request.cookies.get(cookie_name)
    if not raw_token:
        return None

    token_hash = _hash_token(raw_token)
    now = datetime.utcnow()

    sess = Session.query.filter_by(token_hash=token_hash).first()
    idle_seconds = current_app.config.get("IDLE_TIMEOUT_SECONDS", 1200)
    if not sess or not sess.is_live(now, idle_seconds):
        return None

    sess.last_seen_at = now
    db.session.commit()

    return sess
