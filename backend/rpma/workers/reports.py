"""Celery worker handing finalized interventions to the report builder."""

from __future__ import annotations

import hashlib
import json
from typing import Any
from uuid import UUID

from celery.utils.log import get_task_logger
from sqlalchemy.orm import Session, joinedload

from .. import models
from ..database import SessionLocal
from ..eventlog import record_intervention_event
from ..statuses import InterventionStatus
from ..tasks import celery_app

# purpose: assemble the intervention + steps + photos snapshot consumed by report rendering
# inputs: identifier of a completed intervention
# outputs: JSON-serialisable snapshot and an intervention.report_snapshot_ready event
# status: production

_logger = get_task_logger(__name__)


def enqueue_intervention_report(intervention_id: UUID | str) -> None:
    """Dispatch a finalized intervention for asynchronous report packaging."""

    identifier = str(intervention_id)
    if celery_app.conf.task_always_eager:
        package_intervention_report(identifier)
    else:
        package_intervention_report.delay(identifier)


def _isoformat(value) -> str | None:
    return value.isoformat() if value is not None else None


def _step_snapshot(step: models.InterventionStep) -> dict[str, Any]:
    return {
        "id": str(step.id),
        "step_number": step.step_number,
        "step_name": step.step_name,
        "step_type": step.step_type,
        "status": step.step_status.value,
        "is_mandatory": step.is_mandatory,
        "photos": list(step.photo_urls or []),
        "photo_count": step.photo_count,
        "quality_checkpoints": list(step.quality_checkpoints or []),
        "validated_checkpoints": list(step.validated_checkpoints or []),
        "collected_data": step.collected_data or {},
        "measurements": step.measurements or {},
        "notes": step.notes,
        "approved_by": str(step.approved_by) if step.approved_by else None,
        "started_at": _isoformat(step.started_at),
        "completed_at": _isoformat(step.completed_at),
        "duration_seconds": step.duration_seconds,
    }


def build_report_snapshot(db: Session, intervention_id: UUID) -> dict[str, Any] | None:
    """Return the report payload for a completed intervention, or None when unavailable."""

    intervention = (
        db.query(models.Intervention)
        .options(joinedload(models.Intervention.steps), joinedload(models.Intervention.technician))
        .filter(models.Intervention.id == intervention_id)
        .first()
    )
    if intervention is None or intervention.status != InterventionStatus.COMPLETED:
        return None

    steps = sorted(intervention.steps, key=lambda step: step.step_number)
    technician = intervention.technician
    return {
        "intervention": {
            "id": str(intervention.id),
            "task_id": intervention.task_id,
            "intervention_type": intervention.intervention_type,
            "vehicle_plate": intervention.vehicle_plate,
            "technician": {
                "id": str(technician.id),
                "email": technician.email,
                "full_name": technician.full_name,
            }
            if technician
            else None,
            "quality_score": intervention.quality_score,
            "customer_satisfaction": intervention.customer_satisfaction,
            "final_observations": list(intervention.final_observations or []),
            "customer_comments": intervention.customer_comments,
            "started_at": _isoformat(intervention.started_at),
            "completed_at": _isoformat(intervention.completed_at),
            "actual_duration_minutes": intervention.actual_duration_minutes,
        },
        "steps": [_step_snapshot(step) for step in steps],
        "photo_total": sum(step.photo_count or 0 for step in steps),
    }


@celery_app.task(name="rpma.workers.reports.package_intervention_report")
def package_intervention_report(intervention_id: str) -> dict[str, Any] | None:
    db = SessionLocal()
    try:
        snapshot = build_report_snapshot(db, UUID(intervention_id))
        if snapshot is None:
            _logger.warning("Intervention %s is not ready for reporting", intervention_id)
            return None
        checksum = hashlib.sha256(
            json.dumps(snapshot, sort_keys=True, default=str).encode("utf-8")
        ).hexdigest()
        intervention = db.get(models.Intervention, UUID(intervention_id))
        record_intervention_event(
            db,
            intervention,
            "intervention.report_snapshot_ready",
            {"checksum": checksum, "step_count": len(snapshot["steps"])},
        )
        db.commit()
        _logger.info("Report snapshot for intervention %s ready (%s)", intervention_id, checksum)
        return snapshot
    finally:
        db.close()
