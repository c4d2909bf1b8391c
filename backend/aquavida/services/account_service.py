# Overview: Service-layer operations for user accounts; credentials, lock-out counters and refresh tokens.

"""
Account Service

Token issuance (JWT, cookies) happens outside this package. What lives here
is the state a User row owns:

- password hash (bcrypt)
- lock-out counters: MAX_FAILED_LOGINS consecutive failures lock the account
  for LOCKOUT_HOURS; a failure after the lock expired starts a new count
- a bounded set of refresh tokens, stored as SHA-256 digests, capped at
  MAX_REFRESH_TOKENS with oldest-first eviction and pruned after
  REFRESH_TOKEN_TTL_DAYS
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timedelta

import bcrypt
from flask import current_app

from ..errors import ForbiddenError, ValidationError
from ..extensions import db
from ..models import RefreshToken, User
from ..permissions import Role
from ..time_utils import utcnow
from ..validation import require_fields, validate_email
from . import entity_store
from .concurrency import run_with_retry


MIN_PASSWORD_LENGTH = 8


# =============================================================================
# CREDENTIALS
# =============================================================================

def hash_password(password: str) -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=12))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


def create_user(data: dict) -> User:
    require_fields(data, ["email", "name"])
    try:
        role = Role.parse(data.get("role", Role.GUARDIAN.value))
    except ValueError as exc:
        raise ValidationError(str(exc), field="role") from exc
    user = User(
        email=validate_email(data["email"]),
        name=data["name"],
        phone=data.get("phone"),
        role=role.value,
        password_hash=hash_password(data["password"]) if data.get("password") else "",
    )
    entity_store.save(user)
    current_app.logger.info("Created %s account %s", role.value, user.id)
    return user


def set_password(user_id: int, password: str) -> User:
    """Replace the password; every refresh token is revoked."""
    user = entity_store.get(User, user_id)
    user.password_hash = hash_password(password)
    user.refresh_tokens = []
    return entity_store.save(user)


# =============================================================================
# LOCK-OUT
# =============================================================================

def is_locked(user: User, *, now: datetime | None = None) -> bool:
    now = now or utcnow()
    return user.locked_until is not None and user.locked_until > now


def record_failed_login(user: User, *, now: datetime | None = None) -> User:
    """
    Count a failed login. Does not commit.

    If a previous lock has expired, the count restarts at 1. Reaching
    MAX_FAILED_LOGINS sets locked_until = now + LOCKOUT_HOURS.
    """
    now = now or utcnow()
    if user.locked_until is not None and user.locked_until <= now:
        user.failed_login_attempts = 0
        user.locked_until = None
    user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
    if user.failed_login_attempts >= current_app.config["MAX_FAILED_LOGINS"]:
        user.locked_until = now + timedelta(hours=current_app.config["LOCKOUT_HOURS"])
        current_app.logger.warning("Account %s locked until %s", user.id, user.locked_until.isoformat())
    return user


def record_successful_login(user: User, *, now: datetime | None = None) -> User:
    user.failed_login_attempts = 0
    user.locked_until = None
    user.last_login_at = now or utcnow()
    return user


def authenticate(email: str, password: str, *, now: datetime | None = None) -> User | None:
    """
    Check credentials and update the lock-out counters.

    Returns the user on success, None on bad credentials.

    Raises:
        ForbiddenError: account is inactive or currently locked
    """
    now = now or utcnow()

    def _op():
        user = db.session.query(User).filter_by(email=(email or "").strip().lower()).first()
        if user is None:
            return None
        if not user.is_active:
            raise ForbiddenError("Account is inactive", user_id=user.id)
        if is_locked(user, now=now):
            raise ForbiddenError("Account is temporarily locked", user_id=user.id)
        if not verify_password(password, user.password_hash):
            record_failed_login(user, now=now)
            db.session.commit()
            return None
        record_successful_login(user, now=now)
        db.session.commit()
        return user

    return run_with_retry(_op)


# =============================================================================
# REFRESH TOKENS
# =============================================================================

def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def add_refresh_token(user_id: int, token: str, *, now: datetime | None = None) -> RefreshToken:
    """Store a token digest, evicting the oldest tokens beyond MAX_REFRESH_TOKENS."""
    cap = current_app.config["MAX_REFRESH_TOKENS"]

    def _op():
        user = entity_store.get(User, user_id, for_update=True)
        record = RefreshToken(token_hash=hash_token(token), created_at=now or utcnow())
        tokens = list(user.refresh_tokens) + [record]
        user.refresh_tokens = tokens[-cap:]
        db.session.commit()
        return record

    return run_with_retry(_op)


def has_refresh_token(user: User, token: str) -> bool:
    digest = hash_token(token)
    return any(t.token_hash == digest for t in user.refresh_tokens)


def remove_refresh_token(user_id: int, token: str) -> bool:
    user = entity_store.get(User, user_id)
    digest = hash_token(token)
    remaining = [t for t in user.refresh_tokens if t.token_hash != digest]
    if len(remaining) == len(user.refresh_tokens):
        return False
    user.refresh_tokens = remaining
    entity_store.save(user)
    return True


def prune_refresh_tokens(user_id: int, *, now: datetime | None = None) -> int:
    """Drop tokens older than REFRESH_TOKEN_TTL_DAYS. Returns how many were removed."""
    cutoff = (now or utcnow()) - timedelta(days=current_app.config["REFRESH_TOKEN_TTL_DAYS"])
    user = entity_store.get(User, user_id)
    remaining = [t for t in user.refresh_tokens if t.created_at > cutoff]
    removed = len(user.refresh_tokens) - len(remaining)
    if removed:
        user.refresh_tokens = remaining
        entity_store.save(user)
    return removed
