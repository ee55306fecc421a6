"""Utilities for recording intervention timeline events."""

from __future__ import annotations

from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import models
from .clock import utcnow
from .repository import storage_errors

# purpose: shareable helper for persisting intervention timeline events across services
# inputs: SQLAlchemy session, intervention instance, event metadata
# outputs: normalized InterventionEvent rows with sequential ordering
# status: production


def record_intervention_event(
    db: Session,
    intervention: models.Intervention,
    event_type: str,
    payload: dict[str, Any],
    actor: models.User | None = None,
    step: models.InterventionStep | None = None,
) -> models.InterventionEvent:
    """Persist a structured intervention event for timeline replay."""

    payload_dict = payload if isinstance(payload, dict) else {}
    with storage_errors("record intervention event", intervention_id=str(intervention.id), event_type=event_type):
        latest_sequence = (
            db.query(func.max(models.InterventionEvent.sequence))
            .filter(models.InterventionEvent.intervention_id == intervention.id)
            .scalar()
        )
    pending_sequences = [
        obj.sequence
        for obj in db.new
        if isinstance(obj, models.InterventionEvent) and obj.intervention_id == intervention.id
    ]
    next_sequence = max([latest_sequence or 0, *pending_sequences]) + 1
    event = models.InterventionEvent(
        intervention_id=intervention.id,
        step_id=getattr(step, "id", None),
        event_type=event_type,
        payload=payload_dict,
        actor_id=getattr(actor, "id", None),
        sequence=next_sequence,
        created_at=utcnow(),
    )
    db.add(event)
    return event


def list_intervention_events(
    db: Session,
    intervention_id,
    *,
    limit: int = 100,
) -> list[models.InterventionEvent]:
    with storage_errors("list intervention events", intervention_id=str(intervention_id)):
        return (
            db.query(models.InterventionEvent)
            .filter(models.InterventionEvent.intervention_id == intervention_id)
            .order_by(models.InterventionEvent.sequence.asc())
            .limit(limit)
            .all()
        )
