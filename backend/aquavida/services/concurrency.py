# Overview: Row locking and retry helpers for read-check-write operations.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..time_utils import utcnow


def lock_for_update(query):
    """
    SELECT ... FOR UPDATE on the aggregate row a capacity or state check reads.

    NOTE: SQLite ignores FOR UPDATE; there the version_id column on the
    locked aggregate is what rejects a lost update.
    """
    return query.with_for_update()


def touch(entity) -> None:
    """
    Mark a versioned aggregate dirty so its version_id is bumped on flush.

    Used when a child row (enrollment, roster line) changes but the parent
    row itself does not, so concurrent writers on the same parent still
    collide on the version check.
    """
    db.session.add(entity)
    if hasattr(entity, "updated_at"):
        entity.updated_at = utcnow()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run a unit of work, re-running it when the store reports a lost race.

    func must load, check and commit on its own, so a retry re-evaluates
    every rule against fresh rows. OperationalError (lock timeouts) and
    StaleDataError (version mismatch) are retried with exponential backoff;
    anything else, DomainError included, rolls back and propagates.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
