from datetime import datetime, timedelta

import pytest

from aquavida.errors import DuplicateError, ForbiddenError, ValidationError
from aquavida.extensions import db
from aquavida.models import RefreshToken
from aquavida.services import account_service


T0 = datetime(2025, 3, 3, 9, 0)


@pytest.fixture
def member(db_session):
    return account_service.create_user({
        "email": "Joana@Example.com",
        "name": "Joana Lima",
        "role": "guardian",
        "password": "correct-horse",
    })


# =============================================================================
# CREDENTIALS
# =============================================================================

def test_create_user_hashes_password(member):
    assert member.email == "joana@example.com"
    assert member.password_hash.startswith("$2")
    assert account_service.verify_password("correct-horse", member.password_hash)
    assert not account_service.verify_password("wrong-horse", member.password_hash)


def test_create_user_rejects_unknown_role(db_session):
    with pytest.raises(ValidationError):
        account_service.create_user({"email": "x@example.com", "name": "X", "role": "janitor"})


def test_create_user_rejects_short_password(db_session):
    with pytest.raises(ValidationError):
        account_service.create_user({"email": "x@example.com", "name": "X", "password": "short"})


def test_duplicate_email(member):
    with pytest.raises(DuplicateError):
        account_service.create_user({"email": "joana@example.com", "name": "Other"})


def test_verify_password_with_malformed_hash():
    assert account_service.verify_password("anything", "not-a-bcrypt-hash") is False
    assert account_service.verify_password("anything", "") is False


# =============================================================================
# LOCK-OUT
# =============================================================================

def test_lockout_after_max_failures(member):
    for i in range(5):
        assert account_service.authenticate("joana@example.com", "nope", now=T0 + timedelta(minutes=i)) is None

    assert member.failed_login_attempts == 5
    assert member.locked_until == T0 + timedelta(minutes=4, hours=2)
    with pytest.raises(ForbiddenError):
        account_service.authenticate("joana@example.com", "correct-horse", now=T0 + timedelta(hours=1))


def test_failure_after_lock_expiry_restarts_count(member):
    for i in range(5):
        account_service.record_failed_login(member, now=T0)
    later = T0 + timedelta(hours=3)
    assert not account_service.is_locked(member, now=later)

    account_service.record_failed_login(member, now=later)

    assert member.failed_login_attempts == 1
    assert member.locked_until is None


def test_success_resets_counters(member):
    account_service.authenticate("joana@example.com", "nope", now=T0)
    user = account_service.authenticate("JOANA@example.com ", "correct-horse", now=T0 + timedelta(minutes=1))

    assert user.id == member.id
    assert user.failed_login_attempts == 0
    assert user.last_login_at == T0 + timedelta(minutes=1)


def test_authenticate_unknown_or_inactive(member):
    assert account_service.authenticate("nobody@example.com", "correct-horse") is None
    member.is_active = False
    db.session.commit()
    with pytest.raises(ForbiddenError):
        account_service.authenticate("joana@example.com", "correct-horse")


# =============================================================================
# REFRESH TOKENS
# =============================================================================

def test_token_cap_evicts_oldest(member):
    for i in range(6):
        account_service.add_refresh_token(member.id, f"token-{i}", now=T0 + timedelta(minutes=i))

    assert len(member.refresh_tokens) == 5
    assert not account_service.has_refresh_token(member, "token-0")
    assert account_service.has_refresh_token(member, "token-5")
    assert db.session.query(RefreshToken).filter_by(user_id=member.id).count() == 5


def test_tokens_are_stored_as_digests(member):
    record = account_service.add_refresh_token(member.id, "raw-token")
    assert record.token_hash == account_service.hash_token("raw-token")
    assert record.token_hash != "raw-token"


def test_remove_refresh_token(member):
    account_service.add_refresh_token(member.id, "a")
    assert account_service.remove_refresh_token(member.id, "a") is True
    assert account_service.remove_refresh_token(member.id, "a") is False


def test_prune_refresh_tokens(member):
    account_service.add_refresh_token(member.id, "old", now=T0)
    account_service.add_refresh_token(member.id, "new", now=T0 + timedelta(days=6))

    removed = account_service.prune_refresh_tokens(member.id, now=T0 + timedelta(days=8))

    assert removed == 1
    assert account_service.has_refresh_token(member, "new")
    assert not account_service.has_refresh_token(member, "old")


def test_set_password_revokes_tokens(member):
    account_service.add_refresh_token(member.id, "a")
    account_service.set_password(member.id, "another-secret")
    assert member.refresh_tokens == []
    assert account_service.verify_password("another-secret", member.password_hash)
