import re
from datetime import date, datetime

import pytest

from aquavida.errors import AlreadyCancelledError, AlreadySignedError, InvalidTransitionError, ValidationError
from aquavida.extensions import db
from aquavida.services import contract_service
from aquavida.services.contract_service import compute_end_date, content_hash, is_near_expiry, signature_status


@pytest.fixture
def contract(make_student, plan):
    student = make_student()
    return contract_service.create_contract({"student_id": student.id, "plan_id": plan.id})


def _fully_signed(contract, admin_user, guardian_user):
    contract_service.sign_as_guardian(contract.id, "sig-guardian", "10.0.0.1", signer_user_id=guardian_user.id)
    contract_service.sign_as_school(contract.id, admin_user.id, "director", "sig-school")
    return contract_service.activate(contract.id, actor_user_id=admin_user.id)


# =============================================================================
# PURE HELPERS
# =============================================================================

def test_compute_end_date():
    assert compute_end_date(date(2025, 3, 3), "annual") == date(2026, 3, 3)
    assert compute_end_date(date(2025, 1, 31), "monthly") == date(2025, 2, 28)
    assert compute_end_date(date(2025, 3, 3), "indefinite") is None
    assert compute_end_date(date(2025, 3, 3), "indefinite", 18) == date(2026, 9, 3)
    assert compute_end_date(date(2025, 3, 3), "annual", 6) == date(2025, 9, 3)


def test_content_hash_is_canonical():
    a = content_hash(1, 2, {"due_day": 10, "penalty_pct": 2.0}, {})
    b = content_hash(1, 2, {"penalty_pct": 2.0, "due_day": 10}, None)
    assert a == b
    assert len(a) == 64
    assert content_hash(1, 2, {"due_day": 11, "penalty_pct": 2.0}, {}) != a


def test_signature_status():
    assert signature_status({"signed": False}, {"signed": False}) == "pending"
    assert signature_status({"signed": True}, {}) == "partial_guardian"
    assert signature_status(None, {"signed": True}) == "partial_school"
    assert signature_status({"signed": True}, {"signed": True}) == "complete"


def test_is_near_expiry():
    today = date(2025, 3, 3)
    assert is_near_expiry(date(2025, 4, 2), today)
    assert not is_near_expiry(date(2025, 4, 3), today)
    assert not is_near_expiry(today, today)
    assert not is_near_expiry(None, today)


# =============================================================================
# CREATION
# =============================================================================

def test_create_contract(contract, plan, guardian_user):
    assert re.match(r"^CT\d{10}$", contract.contract_number)
    assert contract.status == "draft"
    assert contract.guardian_user_id == guardian_user.id
    assert contract.clauses["monthly_amount_cents"] == plan.price_cents
    assert contract.clauses["due_day"] == 10
    assert contract.contracting_party["student_name"] == "Student 1"
    assert contract.contracted_party["cnpj"] == "00.000.000/0001-00"
    assert contract.end_date == compute_end_date(contract.start_date, "annual")
    assert contract.content_hash == contract_service.hash_of(contract)
    assert [h.action for h in contract.history] == ["created"]


def test_clause_overrides_are_validated(make_student, plan):
    student = make_student()
    with pytest.raises(ValidationError):
        contract_service.create_contract({
            "student_id": student.id, "plan_id": plan.id, "clauses": {"payment_method": "barter"},
        })


def test_discontinued_plan_cannot_be_contracted(make_student, plan):
    plan.is_active = False
    db.session.commit()
    with pytest.raises(ValidationError):
        contract_service.create_contract({"student_id": make_student().id, "plan_id": plan.id})


def test_update_draft_rehashes(contract):
    before = contract.content_hash
    contract_service.update_draft(contract.id, {"clauses": {"due_day": 5}})
    assert contract.clauses["due_day"] == 5
    assert contract.content_hash != before
    assert contract_service.verify_integrity(contract.id).valid


# =============================================================================
# SIGNATURES / ACTIVATION
# =============================================================================

def test_activation_requires_both_signatures(contract, admin_user, guardian_user):
    contract_service.sign_as_guardian(
        contract.id, "sig-guardian", "10.0.0.1", {"lat": -23.5, "lng": -46.6},
        signer_user_id=guardian_user.id, now=datetime(2025, 3, 3, 10, 0),
    )
    assert contract.status == "awaiting_signature"

    with pytest.raises(InvalidTransitionError):
        contract_service.activate(contract.id)

    contract_service.sign_as_school(contract.id, admin_user.id, "director", "sig-school")
    assert contract.status == "signed"

    contract_service.activate(contract.id, actor_user_id=admin_user.id)
    assert contract.status == "active"
    assert contract.activated_at is not None
    assert [h.action for h in contract.history] == ["created", "guardian_signed", "school_signed", "activated"]
    assert contract.history[1].ip_address == "10.0.0.1"


def test_school_can_sign_first(contract, admin_user):
    contract_service.sign_as_school(contract.id, admin_user.id, "secretary", "sig-school")
    assert contract.status == "awaiting_signature"
    assert signature_status(contract.guardian_signature, contract.school_signature) == "partial_school"


def test_signing_twice(contract, guardian_user):
    contract_service.sign_as_guardian(contract.id, "sig", signer_user_id=guardian_user.id)
    with pytest.raises(AlreadySignedError):
        contract_service.sign_as_guardian(contract.id, "sig", signer_user_id=guardian_user.id)


def test_school_signer_role_is_checked(contract, admin_user):
    with pytest.raises(ValidationError):
        contract_service.sign_as_school(contract.id, admin_user.id, "lifeguard", "sig")


def test_cancelled_contract_cannot_be_signed(contract, guardian_user):
    contract_service.cancel(contract.id, "family gave up")
    with pytest.raises(InvalidTransitionError):
        contract_service.sign_as_guardian(contract.id, "sig", signer_user_id=guardian_user.id)


def test_signed_contract_cannot_be_edited(contract, guardian_user):
    contract_service.sign_as_guardian(contract.id, "sig", signer_user_id=guardian_user.id)
    with pytest.raises(InvalidTransitionError):
        contract_service.update_draft(contract.id, {"clauses": {"due_day": 5}})


# =============================================================================
# INTEGRITY
# =============================================================================

def test_hash_survives_status_changes(contract, admin_user, guardian_user):
    original = contract.content_hash
    _fully_signed(contract, admin_user, guardian_user)
    contract_service.suspend(contract.id, "unpaid")
    contract_service.resume(contract.id)
    assert contract.content_hash == original
    assert contract_service.verify_integrity(contract.id).valid


def test_tampered_clauses_fail_integrity(contract):
    clauses = dict(contract.clauses)
    clauses["monthly_amount_cents"] = 1
    contract.clauses = clauses
    db.session.commit()

    report = contract_service.verify_integrity(contract.id)

    assert report.valid is False
    assert report.stored_hash != report.computed_hash
    assert report.to_dict()["valid"] is False


# =============================================================================
# LIFECYCLE
# =============================================================================

def test_cancel_twice(contract):
    contract_service.cancel(contract.id, "moved away")
    assert contract.status == "cancelled"
    with pytest.raises(AlreadyCancelledError):
        contract_service.cancel(contract.id, "again")


def test_suspend_requires_active(contract):
    with pytest.raises(InvalidTransitionError):
        contract_service.suspend(contract.id, "unpaid")
    with pytest.raises(InvalidTransitionError):
        contract_service.resume(contract.id)


def test_expire_contracts(make_student, plan, admin_user, guardian_user):
    contract = contract_service.create_contract({
        "student_id": make_student().id, "plan_id": plan.id, "term_type": "monthly", "start_date": "2025-01-01",
    })
    _fully_signed(contract, admin_user, guardian_user)

    assert [c.id for c in contract_service.expiring_contracts(today=date(2025, 1, 20))] == [contract.id]
    assert contract_service.expire_contracts(today=date(2025, 2, 1)) == 0
    assert contract_service.expire_contracts(today=date(2025, 2, 2)) == 1
    assert contract.status == "expired"
    assert contract.history[-1].action == "expired"


def test_resume_after_end_date_expires(make_student, plan, admin_user, guardian_user):
    contract = contract_service.create_contract({
        "student_id": make_student().id, "plan_id": plan.id, "term_type": "monthly", "start_date": "2025-01-01",
    })
    _fully_signed(contract, admin_user, guardian_user)
    contract_service.suspend(contract.id, "unpaid", today=date(2025, 1, 15))

    contract_service.resume(contract.id, today=date(2025, 2, 10))

    assert contract.status == "expired"
    assert [h.action for h in contract.history][-2:] == ["resumed", "expired"]


def test_resume_within_term_stays_active(make_student, plan, admin_user, guardian_user):
    contract = contract_service.create_contract({
        "student_id": make_student().id, "plan_id": plan.id, "term_type": "monthly", "start_date": "2025-01-01",
    })
    _fully_signed(contract, admin_user, guardian_user)
    contract_service.suspend(contract.id, "unpaid", today=date(2025, 1, 15))

    contract_service.resume(contract.id, today=date(2025, 1, 20))

    assert contract.status == "active"
    assert contract.suspend_reason is None


def test_load_contract_applies_expiry(make_student, plan, admin_user, guardian_user):
    contract = contract_service.create_contract({
        "student_id": make_student().id, "plan_id": plan.id, "term_type": "monthly", "start_date": "2025-01-01",
    })
    _fully_signed(contract, admin_user, guardian_user)
    assert contract_service.load_contract(contract.id, today=date(2025, 3, 1)).status == "expired"


def test_contract_statistics(contract, make_student, plan):
    other = contract_service.create_contract({"student_id": make_student().id, "plan_id": plan.id})
    contract_service.cancel(other.id, "duplicate")

    stats = contract_service.contract_statistics()

    assert stats["total"] == 2
    assert stats["by_status"]["draft"] == 1
    assert stats["by_status"]["cancelled"] == 1
    assert stats["by_status"]["active"] == 0
    assert [c.id for c in contract_service.contracts_for_student(contract.student_id)] == [contract.id]
