# Overview: Service-layer operations for contracts; numbering, signatures, activation gate, integrity hash.

"""
Contract Service

LIFECYCLE:
    draft -> awaiting_signature -> signed -> active -> suspended | cancelled | expired
    suspended -> active
    any non-cancelled state -> cancelled

SIGNATURES:
    guardian_signature and school_signature are independent JSON blocks,
    each {"signed": bool, "signed_at", "signer_user_id", "signature", ...}.
    signature_status() derives pending / partial_guardian / partial_school /
    complete from the two blocks; activation requires complete.

INTEGRITY:
    content_hash = sha256 over the canonical JSON of
    {student, plan, clauses, specific_terms}. Status, signatures and history
    are outside the hashed content.
"""

from __future__ import annotations

import hashlib
import json
import secrets
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from flask import current_app

from ..errors import AlreadyCancelledError, AlreadySignedError, InvalidTransitionError, ValidationError
from ..extensions import db
from ..models import Contract, ContractHistory, Plan, Student, User
from ..time_utils import add_months, utcnow
from ..validation import coerce_date, require_choice, require_fields, require_int_range, require_percent
from . import entity_store
from .concurrency import run_with_retry
from .payment_service import METHOD_BANK_SLIP, VALID_METHODS
from .plan_service import effective_price_cents


# =============================================================================
# CONSTANTS
# =============================================================================

STATUS_DRAFT = "draft"
STATUS_AWAITING_SIGNATURE = "awaiting_signature"
STATUS_SIGNED = "signed"
STATUS_ACTIVE = "active"
STATUS_SUSPENDED = "suspended"
STATUS_CANCELLED = "cancelled"
STATUS_EXPIRED = "expired"

VALID_STATUSES = [
    STATUS_DRAFT,
    STATUS_AWAITING_SIGNATURE,
    STATUS_SIGNED,
    STATUS_ACTIVE,
    STATUS_SUSPENDED,
    STATUS_CANCELLED,
    STATUS_EXPIRED,
]

SIGNABLE_STATUSES = (STATUS_DRAFT, STATUS_AWAITING_SIGNATURE)

SIGNATURE_PENDING = "pending"
SIGNATURE_PARTIAL_GUARDIAN = "partial_guardian"
SIGNATURE_PARTIAL_SCHOOL = "partial_school"
SIGNATURE_COMPLETE = "complete"

CONTRACT_TYPES = ["enrollment", "renewal", "transfer"]

TERM_MONTHS = {
    "monthly": 1,
    "quarterly": 3,
    "semiannual": 6,
    "annual": 12,
    "indefinite": None,
}

SCHOOL_SIGNER_ROLES = ["director", "coordinator", "secretary", "admin"]

NEAR_EXPIRY_DAYS = 30
NUMBER_ATTEMPTS = 10


# =============================================================================
# DERIVED VALUES (pure)
# =============================================================================

def default_clauses(plan: Plan, *, due_day: int, today: date | None = None) -> dict:
    return {
        "monthly_amount_cents": effective_price_cents(plan, today=today),
        "due_day": due_day,
        "payment_method": METHOD_BANK_SLIP,
        "penalty_pct": 2.0,
        "interest_pct": 1.0,
        "adjustment_index": "IPCA",
        "adjustment_frequency": "annual",
        "cancellation_notice_days": 30,
    }


def compute_end_date(start_date: date, term_type: str, term_months: int | None = None) -> date | None:
    """start + term length in months; None for indefinite terms without an explicit count."""
    months = term_months if term_months is not None else TERM_MONTHS[term_type]
    if months is None:
        return None
    return add_months(start_date, months)


def content_hash(student_id, plan_id, clauses, specific_terms) -> str:
    payload = {
        "student": student_id,
        "plan": plan_id,
        "clauses": clauses or {},
        "specific_terms": specific_terms or {},
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_of(contract: Contract) -> str:
    return content_hash(contract.student_id, contract.plan_id, contract.clauses, contract.specific_terms)


def signature_status(guardian_signature: dict | None, school_signature: dict | None) -> str:
    guardian = bool((guardian_signature or {}).get("signed"))
    school = bool((school_signature or {}).get("signed"))
    if guardian and school:
        return SIGNATURE_COMPLETE
    if guardian:
        return SIGNATURE_PARTIAL_GUARDIAN
    if school:
        return SIGNATURE_PARTIAL_SCHOOL
    return SIGNATURE_PENDING


def is_expired(status: str, end_date: date | None, today: date) -> bool:
    return status == STATUS_ACTIVE and end_date is not None and end_date < today


def is_near_expiry(end_date: date | None, today: date, days: int = NEAR_EXPIRY_DAYS) -> bool:
    return end_date is not None and today < end_date <= today + timedelta(days=days)


@dataclass(frozen=True)
class IntegrityReport:
    valid: bool
    stored_hash: str
    computed_hash: str

    def to_dict(self) -> dict:
        return {"valid": self.valid, "stored_hash": self.stored_hash, "computed_hash": self.computed_hash}


# =============================================================================
# HELPERS
# =============================================================================

def _log(contract: Contract, action: str, *, from_status=None, to_status=None,
         actor_user_id=None, note=None, ip_address=None) -> None:
    contract.history.append(ContractHistory(
        occurred_at=utcnow(),
        actor_user_id=actor_user_id,
        action=action,
        from_status=from_status,
        to_status=to_status,
        note=note,
        ip_address=ip_address,
    ))


def generate_contract_number(year: int) -> str:
    """CT<year><6 random digits>, retried until unused."""
    for _ in range(NUMBER_ATTEMPTS):
        number = f"CT{year}{secrets.randbelow(10**6):06d}"
        exists = db.session.query(Contract.id).filter_by(contract_number=number).first()
        if exists is None:
            return number
    raise RuntimeError("Could not allocate a unique contract number")


def _validate_clauses(clauses: dict) -> dict:
    require_int_range("clauses.monthly_amount_cents", clauses.get("monthly_amount_cents"), 1)
    require_int_range("clauses.due_day", clauses.get("due_day"), 1, 31)
    require_choice("clauses.payment_method", clauses.get("payment_method"), VALID_METHODS)
    require_percent("clauses.penalty_pct", clauses.get("penalty_pct"))
    require_percent("clauses.interest_pct", clauses.get("interest_pct"))
    require_int_range("clauses.cancellation_notice_days", clauses.get("cancellation_notice_days"), 0)
    return clauses


def _contracting_party(student: Student, guardian: User | None) -> dict:
    block = dict(student.guardian or {})
    if guardian is not None:
        block.setdefault("name", guardian.name)
        block.setdefault("email", guardian.email)
        block.setdefault("phone", guardian.phone)
    block["student_name"] = student.name
    return block


def _apply_expiry(contract: Contract, today: date) -> bool:
    if not is_expired(contract.status, contract.end_date, today):
        return False
    contract.status = STATUS_EXPIRED
    _log(contract, "expired", from_status=STATUS_ACTIVE, to_status=STATUS_EXPIRED)
    return True


# =============================================================================
# CREATION / LOADING
# =============================================================================

def create_contract(data: dict, *, actor_user_id: int | None = None, today: date | None = None) -> Contract:
    """
    Draft a contract for a student and plan.

    Clauses start from the defaults (plan price, configured due day, bank
    slip, 2% penalty, 1% interest, yearly IPCA adjustment, 30-day notice)
    and are overridden by data["clauses"].
    """
    require_fields(data, ["student_id", "plan_id"])
    today = today or utcnow().date()
    student = entity_store.get(Student, data["student_id"])
    plan = entity_store.get(Plan, data["plan_id"])
    if not plan.is_active:
        raise ValidationError("Plan is discontinued", plan_id=plan.id)

    guardian_user_id = data.get("guardian_user_id", student.guardian_user_id)
    guardian = entity_store.get(User, guardian_user_id) if guardian_user_id is not None else None

    contract_type = require_choice("contract_type", data.get("contract_type", "enrollment"), CONTRACT_TYPES)
    term_type = require_choice("term_type", data.get("term_type", "annual"), list(TERM_MONTHS))
    term_months = data.get("term_months")
    if term_months is not None:
        term_months = require_int_range("term_months", term_months, 1, 120)
    start_date = coerce_date("start_date", data.get("start_date")) or today

    clauses = default_clauses(plan, due_day=current_app.config["DEFAULT_DUE_DAY"], today=today)
    clauses.update(data.get("clauses") or {})
    _validate_clauses(clauses)
    specific_terms = dict(data.get("specific_terms") or {})

    contract = Contract(
        contract_number=generate_contract_number(start_date.year),
        student_id=student.id,
        guardian_user_id=guardian_user_id,
        plan_id=plan.id,
        contract_type=contract_type,
        term_type=term_type,
        term_months=term_months,
        start_date=start_date,
        end_date=compute_end_date(start_date, term_type, term_months),
        contracting_party=data.get("contracting_party") or _contracting_party(student, guardian),
        contracted_party=dict(current_app.config["SCHOOL_PARTY"]),
        clauses=clauses,
        specific_terms=specific_terms,
        guardian_signature={"signed": False},
        school_signature={"signed": False},
        status=STATUS_DRAFT,
    )
    contract.content_hash = hash_of(contract)
    _log(contract, "created", to_status=STATUS_DRAFT, actor_user_id=actor_user_id)
    entity_store.save(contract)
    current_app.logger.info(
        "Created contract %s (%s) for student %s", contract.id, contract.contract_number, student.id,
    )
    return contract


def update_draft(contract_id: int, changes: dict, *, actor_user_id: int | None = None) -> Contract:
    """Edit clauses / specific terms while nobody has signed; the hash is recomputed."""
    unknown = set(changes) - {"clauses", "specific_terms"}
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")

    def _op():
        contract = entity_store.get(Contract, contract_id, for_update=True)
        if contract.status != STATUS_DRAFT:
            raise InvalidTransitionError("contract", contract.status, "edit")
        if "clauses" in changes:
            clauses = dict(contract.clauses or {})
            clauses.update(changes["clauses"] or {})
            contract.clauses = _validate_clauses(clauses)
        if "specific_terms" in changes:
            contract.specific_terms = dict(changes["specific_terms"] or {})
        contract.content_hash = hash_of(contract)
        _log(contract, "terms_updated", from_status=contract.status, to_status=contract.status,
             actor_user_id=actor_user_id)
        db.session.commit()
        return contract

    return run_with_retry(_op)


def refresh_expiry(contract: Contract, *, today: date | None = None) -> bool:
    """Lazy expiry: active with an end date in the past -> expired. Does not commit."""
    return _apply_expiry(contract, today or utcnow().date())


def load_contract(contract_id: int, *, today: date | None = None) -> Contract:
    def _op():
        contract = entity_store.get(Contract, contract_id, for_update=True)
        if refresh_expiry(contract, today=today):
            db.session.commit()
        return contract

    return run_with_retry(_op)


# =============================================================================
# SIGNATURES
# =============================================================================

def _after_signature(contract: Contract) -> None:
    if signature_status(contract.guardian_signature, contract.school_signature) == SIGNATURE_COMPLETE:
        contract.status = STATUS_SIGNED
    else:
        contract.status = STATUS_AWAITING_SIGNATURE


def sign_as_guardian(
    contract_id: int,
    signature: str,
    ip: str | None = None,
    geo: dict | None = None,
    *,
    signer_user_id: int | None = None,
    now: datetime | None = None,
) -> Contract:
    """
    Record the guardian's signature.

    Raises:
        AlreadySignedError: guardian block already signed
        InvalidTransitionError: contract no longer accepts signatures
    """
    if not signature:
        raise ValidationError("A signature payload is required")
    now = now or utcnow()

    def _op():
        contract = entity_store.get(Contract, contract_id, for_update=True)
        if (contract.guardian_signature or {}).get("signed"):
            raise AlreadySignedError("Guardian already signed this contract", contract_id=contract_id)
        if contract.status not in SIGNABLE_STATUSES:
            raise InvalidTransitionError("contract", contract.status, "sign")
        previous = contract.status
        contract.guardian_signature = {
            "signed": True,
            "signed_at": now.isoformat(),
            "signer_user_id": signer_user_id if signer_user_id is not None else contract.guardian_user_id,
            "ip": ip,
            "geo": geo,
            "signature": signature,
        }
        _after_signature(contract)
        _log(contract, "guardian_signed", from_status=previous, to_status=contract.status,
             actor_user_id=signer_user_id, ip_address=ip)
        db.session.commit()
        return contract

    contract = run_with_retry(_op)
    current_app.logger.info("Contract %s signed by guardian; status %s", contract_id, contract.status)
    return contract


def sign_as_school(
    contract_id: int,
    signer_user_id: int,
    role: str,
    signature: str,
    *,
    now: datetime | None = None,
) -> Contract:
    if not signature:
        raise ValidationError("A signature payload is required")
    require_choice("role", role, SCHOOL_SIGNER_ROLES)
    now = now or utcnow()

    def _op():
        contract = entity_store.get(Contract, contract_id, for_update=True)
        if (contract.school_signature or {}).get("signed"):
            raise AlreadySignedError("School already signed this contract", contract_id=contract_id)
        if contract.status not in SIGNABLE_STATUSES:
            raise InvalidTransitionError("contract", contract.status, "sign")
        previous = contract.status
        contract.school_signature = {
            "signed": True,
            "signed_at": now.isoformat(),
            "signer_user_id": signer_user_id,
            "signer_role": role,
            "signature": signature,
        }
        _after_signature(contract)
        _log(contract, "school_signed", from_status=previous, to_status=contract.status,
             actor_user_id=signer_user_id)
        db.session.commit()
        return contract

    contract = run_with_retry(_op)
    current_app.logger.info("Contract %s signed by school (%s); status %s", contract_id, role, contract.status)
    return contract


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

def activate(contract_id: int, *, actor_user_id: int | None = None, now: datetime | None = None) -> Contract:
    """
    signed -> active.

    Raises:
        InvalidTransitionError: both signatures are not present yet
    """
    def _op():
        contract = entity_store.get(Contract, contract_id, for_update=True)
        complete = signature_status(contract.guardian_signature, contract.school_signature) == SIGNATURE_COMPLETE
        if contract.status != STATUS_SIGNED or not complete:
            raise InvalidTransitionError(
                "contract", contract.status, "activate",
                message="Contract can only be activated once both parties have signed",
            )
        contract.status = STATUS_ACTIVE
        contract.activated_at = now or utcnow()
        _log(contract, "activated", from_status=STATUS_SIGNED, to_status=STATUS_ACTIVE,
             actor_user_id=actor_user_id)
        db.session.commit()
        return contract

    contract = run_with_retry(_op)
    current_app.logger.info("Contract %s activated", contract_id)
    return contract


def cancel(contract_id: int, reason: str, actor_user_id: int | None = None, *, now: datetime | None = None) -> Contract:
    if not reason:
        raise ValidationError("A cancellation reason is required")

    def _op():
        contract = entity_store.get(Contract, contract_id, for_update=True)
        if contract.status == STATUS_CANCELLED:
            raise AlreadyCancelledError("Contract is already cancelled", contract_id=contract_id)
        previous = contract.status
        contract.status = STATUS_CANCELLED
        contract.cancelled_at = now or utcnow()
        contract.cancel_reason = reason
        _log(contract, "cancelled", from_status=previous, to_status=STATUS_CANCELLED,
             actor_user_id=actor_user_id, note=reason)
        db.session.commit()
        return contract

    contract = run_with_retry(_op)
    current_app.logger.info("Contract %s cancelled: %s", contract_id, reason)
    return contract


def suspend(contract_id: int, reason: str, *, actor_user_id: int | None = None, today: date | None = None) -> Contract:
    today = today or utcnow().date()

    def _op():
        contract = entity_store.get(Contract, contract_id, for_update=True)
        _apply_expiry(contract, today)
        if contract.status != STATUS_ACTIVE:
            raise InvalidTransitionError("contract", contract.status, "suspend")
        contract.status = STATUS_SUSPENDED
        contract.suspend_reason = reason
        _log(contract, "suspended", from_status=STATUS_ACTIVE, to_status=STATUS_SUSPENDED,
             actor_user_id=actor_user_id, note=reason)
        db.session.commit()
        return contract

    return run_with_retry(_op)


def resume(contract_id: int, *, actor_user_id: int | None = None, today: date | None = None) -> Contract:
    """
    suspended -> active.

    A term that ended while suspended expires right after resuming.
    """
    today = today or utcnow().date()

    def _op():
        contract = entity_store.get(Contract, contract_id, for_update=True)
        if contract.status != STATUS_SUSPENDED:
            raise InvalidTransitionError("contract", contract.status, "resume")
        contract.status = STATUS_ACTIVE
        contract.suspend_reason = None
        _log(contract, "resumed", from_status=STATUS_SUSPENDED, to_status=STATUS_ACTIVE,
             actor_user_id=actor_user_id)
        _apply_expiry(contract, today)
        db.session.commit()
        return contract

    return run_with_retry(_op)


# =============================================================================
# INTEGRITY
# =============================================================================

def verify_integrity(contract_id: int) -> IntegrityReport:
    contract = entity_store.get(Contract, contract_id)
    computed = hash_of(contract)
    report = IntegrityReport(
        valid=computed == contract.content_hash,
        stored_hash=contract.content_hash,
        computed_hash=computed,
    )
    if not report.valid:
        current_app.logger.warning("Contract %s failed integrity check", contract_id)
    return report


# =============================================================================
# BULK / REPORTS
# =============================================================================

def expire_contracts(*, today: date | None = None) -> int:
    """Flip every active contract whose end date has passed. Returns the count."""
    today = today or utcnow().date()

    def _op():
        rows = entity_store.find(
            Contract,
            Contract.end_date.isnot(None),
            Contract.end_date < today,
            status=STATUS_ACTIVE,
        )
        count = sum(1 for c in rows if _apply_expiry(c, today))
        db.session.commit()
        return count

    count = run_with_retry(_op)
    current_app.logger.info("Expired %s contracts as of %s", count, today.isoformat())
    return count


def expiring_contracts(days: int = NEAR_EXPIRY_DAYS, *, today: date | None = None) -> list[Contract]:
    today = today or utcnow().date()
    return entity_store.find(
        Contract,
        Contract.end_date > today,
        Contract.end_date <= today + timedelta(days=days),
        order_by=Contract.end_date,
        status=STATUS_ACTIVE,
    )


def contracts_for_student(student_id: int) -> list[Contract]:
    return entity_store.find(Contract, order_by=Contract.start_date.desc(), student_id=student_id)


def contract_statistics() -> dict:
    rows = db.session.query(Contract.status, db.func.count(Contract.id)).group_by(Contract.status).all()
    by_status = {status: 0 for status in VALID_STATUSES}
    by_status.update({status: count for status, count in rows})
    return {"total": sum(by_status.values()), "by_status": by_status}
