from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class User(db.Model):
    """
    Login identity for staff and guardians.

    ROLE: one of admin / teacher / guardian (see permissions.Role).
    Token issuance lives outside this package; the model owns the bcrypt
    password hash, the lock-out counters and the bounded set of refresh
    tokens (see account_service).
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    name = db.Column(db.String(128), nullable=False)
    phone = db.Column(db.String(32), nullable=True)

    role = db.Column(db.String(16), nullable=False, default="guardian", index=True)
    password_hash = db.Column(db.String(255), nullable=False, default="")

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Lock-out tracking
    failed_login_attempts = db.Column(db.Integer, nullable=False, default=0)
    locked_until = db.Column(db.DateTime(timezone=True), nullable=True)
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    refresh_tokens = db.relationship(
        "RefreshToken",
        backref="user",
        order_by="RefreshToken.id",
        cascade="all, delete-orphan",
        lazy=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "phone": self.phone,
            "role": self.role,
            "is_active": self.is_active,
            "failed_login_attempts": self.failed_login_attempts,
            "locked_until": to_utc_z(self.locked_until),
            "last_login_at": to_utc_z(self.last_login_at),
            "created_at": to_utc_z(self.created_at),
        }


class RefreshToken(db.Model):
    """
    Active refresh token for a user, stored as a SHA-256 digest.

    Raw tokens never hit the database. Insertion order (id) doubles as age
    for oldest-first eviction.
    """
    __tablename__ = "refresh_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
