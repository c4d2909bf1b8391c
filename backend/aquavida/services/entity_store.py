# Overview: Persistence contract (get / find / save / delete) over Flask-SQLAlchemy.

"""
Entity store.

The domain services only need four things from persistence: load by id,
filtered/sorted/paginated lookup, upsert, and delete. Unique fields
(Student.cpf, Teacher.cpf, User.email, Contract.contract_number) are
enforced by the schema; a violation surfaces as DuplicateError.
"""

from __future__ import annotations

import math

from sqlalchemy.exc import IntegrityError

from ..errors import DuplicateError, NotFoundError
from ..extensions import db
from .concurrency import lock_for_update


def get(model, entity_id, *, for_update: bool = False):
    """Load one row or raise NotFoundError."""
    if entity_id is None:
        raise NotFoundError(f"{model.__name__} id is required", entity=model.__name__)
    query = db.session.query(model).filter(model.id == entity_id)
    if for_update:
        query = lock_for_update(query)
    entity = query.first()
    if entity is None:
        raise NotFoundError(f"{model.__name__} {entity_id} not found", entity=model.__name__, id=entity_id)
    return entity


def _query(model, criteria, filters, order_by):
    query = db.session.query(model)
    if criteria:
        query = query.filter(*criteria)
    if filters:
        query = query.filter_by(**filters)
    if order_by is not None:
        if isinstance(order_by, (list, tuple)):
            query = query.order_by(*order_by)
        else:
            query = query.order_by(order_by)
    else:
        query = query.order_by(model.id)
    return query


def find(model, *criteria, order_by=None, page: int | None = None, per_page: int | None = None, **filters) -> list:
    """
    Filtered lookup.

    criteria are SQLAlchemy expressions, filters are column=value pairs.
    Pagination is 1-based and applied only when page is given.
    """
    query = _query(model, criteria, filters, order_by)
    if page is not None:
        per_page = per_page or 20
        query = query.offset((max(page, 1) - 1) * per_page).limit(per_page)
    return query.all()


def paginate(model, *criteria, order_by=None, page: int = 1, per_page: int = 20, **filters) -> dict:
    query = _query(model, criteria, filters, order_by)
    total = query.order_by(None).count()
    page = max(page, 1)
    items = query.offset((page - 1) * per_page).limit(per_page).all()
    return {
        "items": items,
        "total": total,
        "page": page,
        "per_page": per_page,
        "pages": math.ceil(total / per_page) if per_page else 0,
    }


def save(entity, *, commit: bool = True):
    """Upsert. IntegrityError on a unique field is re-raised as DuplicateError."""
    db.session.add(entity)
    try:
        if commit:
            db.session.commit()
        else:
            db.session.flush()
    except IntegrityError as exc:
        db.session.rollback()
        raise DuplicateError(
            f"{type(entity).__name__} violates a uniqueness constraint",
            entity=type(entity).__name__,
            detail=str(exc.orig),
        ) from exc
    return entity


def delete(model, entity_id, *, commit: bool = True) -> None:
    entity = get(model, entity_id)
    db.session.delete(entity)
    if commit:
        db.session.commit()
