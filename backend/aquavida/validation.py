from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Iterable

from .errors import ValidationError, ConflictError  # noqa: F401  (re-exported)


# Maximum amount: R$ 9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999

CPF_RE = re.compile(r"^\d{3}\.\d{3}\.\d{3}-\d{2}$")
CEP_RE = re.compile(r"^\d{5}-\d{3}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")
HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def require_fields(payload: dict, fields: Iterable[str]) -> None:
    missing = [f for f in fields if payload.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def require_choice(field: str, value: Any, choices: Iterable[str]) -> str:
    choices = list(choices)
    if value not in choices:
        raise ValidationError(f"{field} must be one of: {', '.join(choices)}", field=field, value=value)
    return value


def require_int_range(field: str, value: Any, low: int, high: int | None = None) -> int:
    # bool is an int subclass; reject it explicitly
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if value < low or (high is not None and value > high):
        bounds = f">= {low}" if high is None else f"between {low} and {high}"
        raise ValidationError(f"{field} must be {bounds}", field=field, value=value)
    return value


def require_score(field: str, value: Any) -> float | None:
    """0..10 sub-score; None means 'not assessed'."""
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field} must be a number")
    if value < 0 or value > 10:
        raise ValidationError(f"{field} must be between 0 and 10", field=field, value=value)
    return float(value)


def require_amount_cents(field: str, value: Any, *, allow_zero: bool = True) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer amount in cents")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValidationError(f"{field} must be {'>= 0' if allow_zero else '> 0'}")
    if value > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS}")
    return value


def require_percent(field: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field} must be a number")
    if value < 0 or value > 100:
        raise ValidationError(f"{field} must be between 0 and 100")
    return float(value)


def require_hhmm(field: str, value: Any) -> str:
    if not isinstance(value, str) or not HHMM_RE.match(value.strip()):
        raise ValidationError(f"{field} must be a time in HH:MM format", field=field, value=value)
    return value.strip()


def validate_cpf(value: str | None) -> str | None:
    """Format-only check (XXX.XXX.XXX-XX)."""
    if value is None:
        return None
    value = value.strip()
    if not CPF_RE.match(value):
        raise ValidationError("CPF must use the format XXX.XXX.XXX-XX", value=value)
    return value


def validate_cep(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    if not CEP_RE.match(value):
        raise ValidationError("CEP must use the format XXXXX-XXX", value=value)
    return value


def validate_email(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip().lower()
    if not EMAIL_RE.match(value):
        raise ValidationError("Invalid email address", value=value)
    return value


def coerce_date(field: str, value: Any) -> date | None:
    """Accept date, datetime or ISO-8601 strings."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 date")
    raise ValidationError(f"{field} must be a date")
