"""Workflow orchestrator for interventions and their checklist steps."""

from __future__ import annotations

import logging
import math
import os
from datetime import datetime
from typing import Any, Callable, Iterable, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from .. import models, repository, schemas
from ..clock import as_utc, utcnow
from ..errors import ConflictError, NotFoundError, WorkflowError, WorkflowValidationError
from ..eventlog import list_intervention_events, record_intervention_event
from ..rbac import ensure_intervention_access, ensure_supervisor
from ..statuses import (
    INTERVENTION_TRANSITIONS,
    InterventionStatus,
    StepStatus,
    UserRole,
)
from ..workers import reports
from . import finalization, progress, step_validation, templates

# purpose: compose access guard, gating rules and progress into persisted intervention operations
# inputs: request-scoped SQLAlchemy session, authenticated user, validated request schemas
# outputs: response schemas; WorkflowError subclasses on rejection
# status: production
# depends_on: rpma.repository, rpma.rbac, rpma.services.step_validation, rpma.services.progress

logger = logging.getLogger(__name__)

CONFLICT_RETRY_LIMIT = int(os.getenv("CONFLICT_RETRY_LIMIT", "1"))

ResultT = TypeVar("ResultT")


def _utcnow(now: datetime | None = None) -> datetime:
    return as_utc(now) or utcnow()


def _run_mutation(
    db: Session,
    operation: str,
    work: Callable[[], ResultT],
    *,
    timeout_seconds: float | None = None,
    context: dict[str, Any] | None = None,
) -> ResultT:
    """Run ``work`` and commit it, retrying once on an optimistic-lock conflict.

    ``work`` must re-read everything it touches, since a retry starts from a
    rolled-back session.
    """

    log_context = {"operation": operation, **(context or {})}
    attempt = 0
    while True:
        try:
            repository.apply_statement_timeout(db, timeout_seconds)
            result = work()
            repository.commit(db)
            return result
        except ConflictError:
            db.rollback()
            if attempt >= CONFLICT_RETRY_LIMIT:
                logger.warning("%s conflicted after %d retries", operation, attempt, extra={"context": log_context})
                raise
            attempt += 1
            logger.info("%s conflicted; retrying with a fresh read", operation, extra={"context": log_context})
        except WorkflowValidationError as exc:
            db.rollback()
            logger.info(
                "%s rejected by %s: %s",
                operation,
                exc.rule,
                exc,
                extra={"context": {**log_context, "rule": exc.rule, "step_number": exc.step_number}},
            )
            raise
        except WorkflowError:
            db.rollback()
            raise


def _load_intervention(db: Session, intervention_id: UUID, user: models.User) -> models.Intervention:
    intervention = repository.get_intervention(db, intervention_id)
    if intervention is None:
        raise NotFoundError("Intervention not found")
    ensure_intervention_access(intervention, user)
    return intervention


def _load_step(db: Session, step_id: UUID) -> models.InterventionStep:
    step = repository.get_step(db, step_id)
    if step is None:
        raise NotFoundError("Step not found")
    return step


def _merge_unique(existing: Iterable[Any] | None, additions: Iterable[Any]) -> list[Any]:
    merged = list(existing or [])
    for item in additions:
        if item not in merged:
            merged.append(item)
    return merged


def _apply_evidence(
    step: models.InterventionStep,
    *,
    collected_data: dict[str, Any] | None = None,
    photos: Iterable[str] = (),
    notes: str | None = None,
) -> None:
    """Merge technician evidence into the step without touching its status."""

    if collected_data:
        data = dict(step.collected_data or {})
        data.update(collected_data)
        step.collected_data = data
        checkpoints = collected_data.get("validated_checkpoints")
        if isinstance(checkpoints, list):
            step.validated_checkpoints = _merge_unique(
                step.validated_checkpoints, [str(name) for name in checkpoints]
            )
        measurements = collected_data.get("measurements")
        if isinstance(measurements, dict):
            step.measurements = {**(step.measurements or {}), **measurements}
        observations = collected_data.get("observations")
        if isinstance(observations, list):
            step.observations = [*(step.observations or []), *observations]
    photos = list(photos)
    if photos:
        step.photo_urls = _merge_unique(step.photo_urls, photos)
        step.photo_count = len(step.photo_urls)
    if notes is not None:
        step.notes = notes


def _enter_step_status(step: models.InterventionStep, target: StepStatus, now: datetime) -> None:
    if target == StepStatus.IN_PROGRESS:
        if step.started_at is None:
            step.started_at = now
    elif target == StepStatus.PAUSED:
        step.paused_at = now
    elif target == StepStatus.COMPLETED:
        step.completed_at = now
        started_at = as_utc(step.started_at)
        if started_at is not None:
            step.duration_seconds = max(int((now - started_at).total_seconds()), 0)
        step.required_photos_completed = True
        step.validation_errors = []
    elif target == StepStatus.FAILED:
        step.completed_at = None
    elif target == StepStatus.SKIPPED:
        step.completed_at = now
    elif target == StepStatus.REWORK:
        step.started_at = None
        step.completed_at = None
        step.paused_at = None
        step.duration_seconds = None
        step.required_photos_completed = False
        step.validation_score = None
        step.approved_by = None
        step.approved_at = None
        step.rejection_reason = None
    step.step_status = target


def _implied_target(step: models.InterventionStep, quality_check_passed: bool) -> StepStatus:
    current = StepStatus(step.step_status)
    if current in (StepStatus.PENDING, StepStatus.REWORK):
        return StepStatus.IN_PROGRESS
    if current == StepStatus.IN_PROGRESS:
        return StepStatus.COMPLETED if quality_check_passed else StepStatus.FAILED
    # every other state is refused by the step graph
    return StepStatus.COMPLETED


def _next_pending_step(
    steps: Iterable[models.InterventionStep], after: int
) -> models.InterventionStep | None:
    candidates = [
        step
        for step in steps
        if step.step_number > after and StepStatus(step.step_status) == StepStatus.PENDING
    ]
    return min(candidates, key=lambda step: step.step_number, default=None)


def _requirements_completed(step: models.InterventionStep, target: StepStatus) -> list[str]:
    completed: list[str] = []
    if step.photo_count:
        completed.append(f"photos_uploaded:{step.photo_count}")
    if step.notes:
        completed.append("notes_recorded")
    if step.quality_checkpoints and set(step.quality_checkpoints) <= set(step.validated_checkpoints or []):
        completed.append("quality_checkpoints_validated")
    if step.requires_supervisor_approval and step.approved_by is not None:
        completed.append("supervisor_approval")
    if target == StepStatus.COMPLETED:
        completed.append("quality_check_passed")
        completed.append(f"step_{step.step_number}_completed")
    return completed


def _transition_payload(
    step: models.InterventionStep, previous: StepStatus, target: StepStatus, **extra: Any
) -> dict[str, Any]:
    payload = {
        "step_number": step.step_number,
        "from": previous.value,
        "to": target.value,
    }
    payload.update({key: value for key, value in extra.items() if value is not None})
    return payload


def _persist_step_change(
    db: Session,
    intervention: models.Intervention,
    step: models.InterventionStep,
    steps: list[models.InterventionStep],
) -> None:
    progress.refresh_materialized_progress(intervention, steps)
    repository.update_step(db, step)
    repository.update_intervention(db, intervention)


def get_progress(
    db: Session,
    intervention_id: UUID,
    user: models.User,
    *,
    now: datetime | None = None,
    timeout_seconds: float | None = None,
) -> schemas.InterventionProgress:
    """Recompute progress from the step rows; never writes."""

    repository.apply_statement_timeout(db, timeout_seconds)
    intervention = _load_intervention(db, intervention_id, user)
    steps = repository.get_steps(db, intervention.id)
    return progress.compute_progress(intervention, steps, now=_utcnow(now))


def get_intervention(
    db: Session,
    intervention_id: UUID,
    user: models.User,
    *,
    timeout_seconds: float | None = None,
) -> schemas.InterventionOut:
    repository.apply_statement_timeout(db, timeout_seconds)
    intervention = _load_intervention(db, intervention_id, user)
    return schemas.InterventionOut.model_validate(intervention)


def list_steps(
    db: Session,
    intervention_id: UUID,
    user: models.User,
    *,
    timeout_seconds: float | None = None,
) -> list[schemas.InterventionStepOut]:
    repository.apply_statement_timeout(db, timeout_seconds)
    intervention = _load_intervention(db, intervention_id, user)
    return [
        schemas.InterventionStepOut.model_validate(step)
        for step in repository.get_steps(db, intervention.id)
    ]


def list_events(
    db: Session,
    intervention_id: UUID,
    user: models.User,
    *,
    limit: int = 100,
) -> list[schemas.InterventionEventOut]:
    intervention = _load_intervention(db, intervention_id, user)
    return [
        schemas.InterventionEventOut.model_validate(event)
        for event in list_intervention_events(db, intervention.id, limit=limit)
    ]


def advance_step(
    db: Session,
    intervention_id: UUID,
    step_id: UUID,
    payload: schemas.AdvanceStepRequest,
    user: models.User,
    *,
    now: datetime | None = None,
    timeout_seconds: float | None = None,
) -> schemas.AdvanceStepResponse:
    """Move a step one stage forward: start it, or complete/fail it."""

    moment = _utcnow(now)

    def work() -> schemas.AdvanceStepResponse:
        intervention = _load_intervention(db, intervention_id, user)
        step = _load_step(db, step_id)
        step_validation.ensure_step_belongs(intervention, step)
        step_validation.ensure_intervention_in_progress(intervention)
        steps = repository.get_steps(db, intervention.id)

        previous = StepStatus(step.step_status)
        has_completion_data = bool(payload.collected_data or payload.photos or payload.issues)
        if previous == StepStatus.PENDING and has_completion_data:
            raise WorkflowValidationError(
                "Step must be started before completion data can be provided",
                rule="completion_data",
                step_number=step.step_number,
                field="step_status",
            )

        target = _implied_target(step, payload.quality_check_passed)
        _apply_evidence(
            step,
            collected_data=payload.collected_data,
            photos=payload.photos,
            notes=payload.notes,
        )
        if target == StepStatus.FAILED and payload.issues:
            step.validation_errors = list(payload.issues)
            step.collected_data = {**(step.collected_data or {}), "issues": list(payload.issues)}

        step_validation.validate_step_transition(intervention, step, target, steps, now=moment)

        _enter_step_status(step, target, moment)
        _persist_step_change(db, intervention, step, steps)
        record_intervention_event(
            db,
            intervention,
            "step.transition",
            _transition_payload(
                step,
                previous,
                target,
                photo_count=step.photo_count,
                issues=list(payload.issues) or None,
            ),
            actor=user,
            step=step,
        )

        next_step = _next_pending_step(steps, step.step_number)
        return schemas.AdvanceStepResponse(
            step=schemas.InterventionStepOut.model_validate(step),
            next_step=schemas.InterventionStepOut.model_validate(next_step) if next_step else None,
            progress_percentage=intervention.completion_percentage,
            requirements_completed=_requirements_completed(step, target),
        )

    response = _run_mutation(
        db,
        "advance step",
        work,
        timeout_seconds=timeout_seconds,
        context={"intervention_id": str(intervention_id), "step_id": str(step_id)},
    )
    logger.info(
        "Step %s advanced to %s",
        response.step.step_number,
        response.step.step_status.value,
        extra={"context": {"intervention_id": str(intervention_id), "step_id": str(step_id)}},
    )
    return response


def save_step_progress(
    db: Session,
    step_id: UUID,
    payload: schemas.SaveStepProgressRequest,
    user: models.User,
    *,
    timeout_seconds: float | None = None,
) -> schemas.InterventionStepOut:
    """Autosave technician evidence; the step status is left untouched."""

    def work() -> schemas.InterventionStepOut:
        step = _load_step(db, step_id)
        intervention = _load_intervention(db, step.intervention_id, user)
        if payload.intervention_id is not None and payload.intervention_id != step.intervention_id:
            raise WorkflowValidationError(
                "Step does not belong to intervention",
                rule="step_ownership",
                step_number=step.step_number,
                field="intervention_id",
            )
        step_validation.ensure_not_terminal(intervention)

        _apply_evidence(
            step,
            collected_data=payload.collected_data,
            photos=payload.photos,
            notes=payload.notes,
        )
        repository.update_step(db, step)
        record_intervention_event(
            db,
            intervention,
            "step.progress_saved",
            {"step_number": step.step_number, "photo_count": step.photo_count},
            actor=user,
            step=step,
        )
        return schemas.InterventionStepOut.model_validate(step)

    return _run_mutation(
        db,
        "save step progress",
        work,
        timeout_seconds=timeout_seconds,
        context={"step_id": str(step_id)},
    )


def create_intervention(
    db: Session,
    payload: schemas.InterventionCreate,
    user: models.User,
    *,
    timeout_seconds: float | None = None,
) -> schemas.InterventionOut:
    ensure_supervisor(user, "create interventions")
    definitions = payload.steps if payload.steps else templates.default_step_definitions()

    def work() -> schemas.InterventionOut:
        if payload.technician_id is not None:
            _load_technician(db, payload.technician_id)
        intervention = models.Intervention(
            task_id=payload.task_id,
            technician_id=payload.technician_id,
            status=InterventionStatus.PENDING,
            intervention_type=payload.intervention_type,
            vehicle_plate=payload.vehicle_plate,
            scheduled_at=payload.scheduled_at,
            notes=payload.notes,
            current_step=0,
            completion_percentage=0.0,
            final_observations=[],
            created_by=user.id,
        )
        steps = [
            models.InterventionStep(
                step_number=number,
                step_status=StepStatus.PENDING,
                **definition.model_dump(),
            )
            for number, definition in enumerate(definitions, start=1)
        ]
        repository.add_intervention(db, intervention, steps)
        record_intervention_event(
            db,
            intervention,
            "intervention.created",
            {
                "task_id": intervention.task_id,
                "step_count": len(steps),
                "technician_id": str(payload.technician_id) if payload.technician_id else None,
            },
            actor=user,
        )
        return schemas.InterventionOut.model_validate(intervention)

    created = _run_mutation(
        db,
        "create intervention",
        work,
        timeout_seconds=timeout_seconds,
        context={"task_id": payload.task_id},
    )
    logger.info(
        "Intervention %s created with %d steps",
        created.id,
        len(definitions),
        extra={"context": {"task_id": payload.task_id, "actor_id": str(user.id)}},
    )
    return created


def _load_technician(db: Session, technician_id: UUID) -> models.User:
    technician = repository.get_user(db, technician_id)
    if technician is None or technician.is_active is False:
        raise NotFoundError("Technician not found")
    if UserRole(technician.role) != UserRole.TECHNICIAN:
        raise WorkflowValidationError(
            "Interventions can only be assigned to technicians",
            rule="technician_role",
            field="technician_id",
        )
    return technician


def assign_technician(
    db: Session,
    intervention_id: UUID,
    payload: schemas.AssignTechnicianRequest,
    user: models.User,
    *,
    timeout_seconds: float | None = None,
) -> schemas.InterventionOut:
    ensure_supervisor(user, "assign interventions")

    def work() -> schemas.InterventionOut:
        intervention = _load_intervention(db, intervention_id, user)
        step_validation.ensure_not_terminal(intervention)
        technician = _load_technician(db, payload.technician_id)
        previous = intervention.technician_id
        intervention.technician_id = technician.id
        repository.update_intervention(db, intervention)
        record_intervention_event(
            db,
            intervention,
            "intervention.assigned",
            {
                "technician_id": str(technician.id),
                "previous_technician_id": str(previous) if previous else None,
            },
            actor=user,
        )
        return schemas.InterventionOut.model_validate(intervention)

    return _run_mutation(
        db,
        "assign technician",
        work,
        timeout_seconds=timeout_seconds,
        context={"intervention_id": str(intervention_id)},
    )


def _change_intervention_status(
    db: Session,
    intervention_id: UUID,
    target: InterventionStatus,
    user: models.User,
    *,
    operation: str,
    allowed_from: frozenset[InterventionStatus] | None = None,
    reason: str | None = None,
    now: datetime | None = None,
    timeout_seconds: float | None = None,
) -> schemas.InterventionOut:
    moment = _utcnow(now)

    def work() -> schemas.InterventionOut:
        intervention = _load_intervention(db, intervention_id, user)
        previous = InterventionStatus(intervention.status)
        if allowed_from is not None and previous not in allowed_from:
            # start and resume share a target, so the source state tells them apart
            raise WorkflowValidationError(
                f"Cannot {operation} while it is {previous.label}",
                rule="status_transition",
                field="intervention_status",
                context={"from": previous.value, "to": target.value},
            )
        INTERVENTION_TRANSITIONS.check(previous, target)
        if target == InterventionStatus.IN_PROGRESS and intervention.started_at is None:
            intervention.started_at = moment
        elif target == InterventionStatus.PAUSED:
            intervention.paused_at = moment
        intervention.status = target
        repository.update_intervention(db, intervention)
        event_payload = {"from": previous.value, "to": target.value}
        if reason:
            event_payload["reason"] = reason
        record_intervention_event(db, intervention, "intervention.status_changed", event_payload, actor=user)
        return schemas.InterventionOut.model_validate(intervention)

    result = _run_mutation(
        db,
        operation,
        work,
        timeout_seconds=timeout_seconds,
        context={"intervention_id": str(intervention_id), "target": target.value},
    )
    logger.info(
        "Intervention %s moved to %s",
        intervention_id,
        target.label,
        extra={"context": {"actor_id": str(user.id), "reason": reason}},
    )
    return result


def start_intervention(
    db: Session,
    intervention_id: UUID,
    user: models.User,
    *,
    now: datetime | None = None,
    timeout_seconds: float | None = None,
) -> schemas.InterventionOut:
    return _change_intervention_status(
        db,
        intervention_id,
        InterventionStatus.IN_PROGRESS,
        user,
        operation="start intervention",
        allowed_from=frozenset({InterventionStatus.PENDING}),
        now=now,
        timeout_seconds=timeout_seconds,
    )


def pause_intervention(
    db: Session,
    intervention_id: UUID,
    user: models.User,
    *,
    reason: str | None = None,
    now: datetime | None = None,
    timeout_seconds: float | None = None,
) -> schemas.InterventionOut:
    return _change_intervention_status(
        db,
        intervention_id,
        InterventionStatus.PAUSED,
        user,
        operation="pause intervention",
        reason=reason,
        now=now,
        timeout_seconds=timeout_seconds,
    )


def resume_intervention(
    db: Session,
    intervention_id: UUID,
    user: models.User,
    *,
    now: datetime | None = None,
    timeout_seconds: float | None = None,
) -> schemas.InterventionOut:
    return _change_intervention_status(
        db,
        intervention_id,
        InterventionStatus.IN_PROGRESS,
        user,
        operation="resume intervention",
        allowed_from=frozenset({InterventionStatus.PAUSED}),
        now=now,
        timeout_seconds=timeout_seconds,
    )


def cancel_intervention(
    db: Session,
    intervention_id: UUID,
    user: models.User,
    *,
    reason: str | None = None,
    now: datetime | None = None,
    timeout_seconds: float | None = None,
) -> schemas.InterventionOut:
    return _change_intervention_status(
        db,
        intervention_id,
        InterventionStatus.CANCELLED,
        user,
        operation="cancel intervention",
        reason=reason,
        now=now,
        timeout_seconds=timeout_seconds,
    )


def transition_step(
    db: Session,
    intervention_id: UUID,
    step_id: UUID,
    payload: schemas.StepTransitionRequest,
    user: models.User,
    *,
    now: datetime | None = None,
    timeout_seconds: float | None = None,
) -> schemas.InterventionStepOut:
    """Pause, resume, skip or send a step back to rework."""

    moment = _utcnow(now)
    target = StepStatus(payload.target)

    def work() -> schemas.InterventionStepOut:
        intervention = _load_intervention(db, intervention_id, user)
        step = _load_step(db, step_id)
        steps = repository.get_steps(db, intervention.id)
        previous = StepStatus(step.step_status)

        step_validation.validate_step_transition(intervention, step, target, steps, now=moment)

        _enter_step_status(step, target, moment)
        _persist_step_change(db, intervention, step, steps)
        record_intervention_event(
            db,
            intervention,
            "step.transition",
            _transition_payload(step, previous, target, reason=payload.reason),
            actor=user,
            step=step,
        )
        return schemas.InterventionStepOut.model_validate(step)

    return _run_mutation(
        db,
        "transition step",
        work,
        timeout_seconds=timeout_seconds,
        context={"intervention_id": str(intervention_id), "step_id": str(step_id), "target": target.value},
    )


def review_step(
    db: Session,
    intervention_id: UUID,
    step_id: UUID,
    payload: schemas.StepReviewRequest,
    user: models.User,
    *,
    now: datetime | None = None,
    timeout_seconds: float | None = None,
) -> schemas.InterventionStepOut:
    """Record a supervisor approval or rejection on a gated step."""

    ensure_supervisor(user, "review steps")
    moment = _utcnow(now)

    def work() -> schemas.InterventionStepOut:
        intervention = _load_intervention(db, intervention_id, user)
        step = _load_step(db, step_id)
        step_validation.ensure_step_belongs(intervention, step)
        step_validation.ensure_not_terminal(intervention)
        if not step.requires_supervisor_approval:
            raise WorkflowValidationError(
                f"Step {step.step_number} does not require supervisor approval",
                rule="supervisor_approval",
                step_number=step.step_number,
                field="requires_supervisor_approval",
            )
        if payload.approved:
            step.approved_by = user.id
            step.approved_at = moment
            step.rejection_reason = None
        else:
            reason = (payload.rejection_reason or "").strip()
            if not reason:
                raise WorkflowValidationError(
                    "A rejection reason is required",
                    rule="supervisor_approval",
                    step_number=step.step_number,
                    field="rejection_reason",
                )
            step.approved_by = None
            step.approved_at = None
            step.rejection_reason = reason
        repository.update_step(db, step)
        record_intervention_event(
            db,
            intervention,
            "step.reviewed",
            {
                "step_number": step.step_number,
                "approved": payload.approved,
                "rejection_reason": step.rejection_reason,
            },
            actor=user,
            step=step,
        )
        return schemas.InterventionStepOut.model_validate(step)

    return _run_mutation(
        db,
        "review step",
        work,
        timeout_seconds=timeout_seconds,
        context={"intervention_id": str(intervention_id), "step_id": str(step_id)},
    )


def finalize_intervention(
    db: Session,
    intervention_id: UUID,
    payload: schemas.FinalizeInterventionRequest,
    user: models.User,
    *,
    now: datetime | None = None,
    timeout_seconds: float | None = None,
) -> schemas.InterventionOut:
    """Close an in-progress intervention and hand it to the report builder."""

    moment = _utcnow(now)

    def work() -> schemas.InterventionOut:
        intervention = _load_intervention(db, intervention_id, user)
        steps = repository.get_steps(db, intervention.id)
        if payload.quality_score is not None:
            intervention.quality_score = payload.quality_score
        if payload.customer_satisfaction is not None:
            intervention.customer_satisfaction = payload.customer_satisfaction
        if payload.final_observations:
            intervention.final_observations = list(payload.final_observations)
        if payload.customer_comments is not None:
            intervention.customer_comments = payload.customer_comments

        finalization.validate_finalization(intervention, steps)
        previous = InterventionStatus(intervention.status)
        INTERVENTION_TRANSITIONS.check(previous, InterventionStatus.COMPLETED)

        intervention.status = InterventionStatus.COMPLETED
        intervention.completed_at = moment
        started_at = as_utc(intervention.started_at)
        if started_at is not None:
            intervention.actual_duration_minutes = math.ceil(
                max((moment - started_at).total_seconds(), 0) / 60
            )
        progress.refresh_materialized_progress(intervention, steps)
        repository.update_intervention(db, intervention)
        record_intervention_event(
            db,
            intervention,
            "intervention.finalized",
            {
                "quality_score": intervention.quality_score,
                "customer_satisfaction": intervention.customer_satisfaction,
                "actual_duration_minutes": intervention.actual_duration_minutes,
            },
            actor=user,
        )
        return schemas.InterventionOut.model_validate(intervention)

    finalized = _run_mutation(
        db,
        "finalize intervention",
        work,
        timeout_seconds=timeout_seconds,
        context={"intervention_id": str(intervention_id)},
    )
    logger.info(
        "Intervention %s finalized",
        intervention_id,
        extra={"context": {"actor_id": str(user.id), "quality_score": finalized.quality_score}},
    )
    try:
        reports.enqueue_intervention_report(finalized.id)
    except Exception:
        # finalization is already committed; the report can be re-queued from the CLI
        logger.exception(
            "Report hand-off failed for intervention %s",
            intervention_id,
            extra={"context": {"intervention_id": str(intervention_id)}},
        )
    return finalized
