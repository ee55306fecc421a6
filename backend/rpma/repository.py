"""Persistence helpers for interventions and their steps."""

# purpose: isolate row access and storage-error translation from workflow rules
# inputs: SQLAlchemy session, intervention/step identifiers or ORM instances
# outputs: ORM rows (None when absent) and flushed writes
# status: production
# depends_on: rpma.models, rpma.errors

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator
from uuid import UUID

from sqlalchemy import exc as sa_exc
from sqlalchemy import text
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from . import models
from .errors import ConflictError, DatabaseError, PersistenceTimeoutError

logger = logging.getLogger(__name__)

_TIMEOUT_MARKERS = ("statement timeout", "canceling statement", "lock timeout", "database is locked")


def _is_timeout(error: sa_exc.DBAPIError) -> bool:
    message = str(getattr(error, "orig", error)).lower()
    return any(marker in message for marker in _TIMEOUT_MARKERS)


@contextmanager
def storage_errors(operation: str, **context) -> Iterator[None]:
    """Translate SQLAlchemy failures into workflow error kinds."""

    try:
        yield
    except StaleDataError as exc:
        raise ConflictError(
            f"{operation} conflicted with a concurrent update; reload and retry"
        ) from exc
    except sa_exc.IntegrityError as exc:
        raise ConflictError(f"{operation} conflicted with existing data") from exc
    except sa_exc.TimeoutError as exc:
        raise PersistenceTimeoutError(f"{operation} timed out waiting for a connection") from exc
    except sa_exc.OperationalError as exc:
        if _is_timeout(exc):
            raise PersistenceTimeoutError(f"{operation} timed out") from exc
        logger.exception("Storage failure during %s", operation, extra={"context": context})
        raise DatabaseError(f"{operation} failed") from exc
    except sa_exc.SQLAlchemyError as exc:
        logger.exception("Storage failure during %s", operation, extra={"context": context})
        raise DatabaseError(f"{operation} failed") from exc


def apply_statement_timeout(db: Session, timeout_seconds: float | None) -> None:
    """Bound every statement of the current transaction by the caller's timeout."""

    if not timeout_seconds or timeout_seconds <= 0:
        return
    bind = db.get_bind()
    if bind.dialect.name != "postgresql":
        # sqlite only supports the connect-level busy timeout configured in database.py
        return
    with storage_errors("apply statement timeout"):
        db.execute(text(f"SET LOCAL statement_timeout = {int(timeout_seconds * 1000)}"))


def get_intervention(db: Session, intervention_id: UUID) -> models.Intervention | None:
    with storage_errors("load intervention", intervention_id=str(intervention_id)):
        return (
            db.query(models.Intervention)
            .filter(models.Intervention.id == intervention_id)
            .first()
        )


def get_steps(db: Session, intervention_id: UUID) -> list[models.InterventionStep]:
    with storage_errors("load intervention steps", intervention_id=str(intervention_id)):
        return (
            db.query(models.InterventionStep)
            .filter(models.InterventionStep.intervention_id == intervention_id)
            .order_by(models.InterventionStep.step_number.asc())
            .all()
        )


def get_step(db: Session, step_id: UUID) -> models.InterventionStep | None:
    with storage_errors("load step", step_id=str(step_id)):
        return (
            db.query(models.InterventionStep)
            .filter(models.InterventionStep.id == step_id)
            .first()
        )


def get_user(db: Session, user_id: UUID) -> models.User | None:
    with storage_errors("load user", user_id=str(user_id)):
        return db.get(models.User, user_id)


def add_intervention(
    db: Session,
    intervention: models.Intervention,
    steps: list[models.InterventionStep],
) -> models.Intervention:
    with storage_errors("create intervention", task_id=intervention.task_id):
        db.add(intervention)
        db.flush()
        for step in steps:
            step.intervention_id = intervention.id
            db.add(step)
        db.flush()
    return intervention


def update_step(db: Session, step: models.InterventionStep) -> models.InterventionStep:
    with storage_errors("update step", step_id=str(step.id)):
        db.add(step)
        db.flush()
    return step


def update_intervention(db: Session, intervention: models.Intervention) -> models.Intervention:
    with storage_errors("update intervention", intervention_id=str(intervention.id)):
        db.add(intervention)
        db.flush()
    return intervention


def commit(db: Session) -> None:
    with storage_errors("commit"):
        db.commit()
