# backend/aquavida/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/aquavida.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///aquavida.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Billing
    MONTHLY_INTEREST_PCT = float(os.environ.get("AQUAVIDA_MONTHLY_INTEREST_PCT", "1"))
    DEFAULT_DUE_DAY = int(os.environ.get("AQUAVIDA_DEFAULT_DUE_DAY", "10"))

    # Scheduling: teacher working hours are advisory unless this is set
    ENFORCE_TEACHER_AVAILABILITY = _env_bool("AQUAVIDA_ENFORCE_TEACHER_AVAILABILITY", False)

    # Accounts
    MAX_REFRESH_TOKENS = 5
    REFRESH_TOKEN_TTL_DAYS = 7
    MAX_FAILED_LOGINS = 5
    LOCKOUT_HOURS = 2

    # Contracted party printed on every new contract
    SCHOOL_PARTY = {
        "name": "AquaVida Escola de Natação",
        "cnpj": "00.000.000/0001-00",
        "address": {
            "street": "Rua das Águas",
            "number": "123",
            "district": "Centro",
            "city": "São Paulo",
            "state": "SP",
        },
    }
