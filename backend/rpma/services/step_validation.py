"""Gating rules evaluated before any step status change."""

# purpose: decide whether a requested step transition is allowed and explain why not
# inputs: intervention row, target step, requested StepStatus, sibling steps, reference time
# outputs: None when allowed; WorkflowValidationError naming the failed rule otherwise
# status: production
# depends_on: rpma.statuses

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Sequence

from .. import models
from ..clock import as_utc, utcnow
from ..errors import WorkflowValidationError
from ..statuses import (
    FINISHED_STEP_STATUSES,
    INTERVENTION_TRANSITIONS,
    STEP_TRANSITIONS,
    InterventionStatus,
    StepStatus,
)

# transitions that begin, finish or bypass work on a step and therefore respect ordering
_SEQUENCED_TARGETS = frozenset({StepStatus.IN_PROGRESS, StepStatus.COMPLETED, StepStatus.SKIPPED})


def ensure_step_belongs(intervention: models.Intervention, step: models.InterventionStep) -> None:
    if step.intervention_id != intervention.id:
        raise WorkflowValidationError(
            "Step does not belong to intervention",
            rule="step_ownership",
            step_number=step.step_number,
            field="intervention_id",
            context={
                "intervention_id": str(intervention.id),
                "step_intervention_id": str(step.intervention_id),
            },
        )


def ensure_not_terminal(intervention: models.Intervention) -> None:
    """Reject any step mutation once the intervention is closed."""

    status = InterventionStatus(intervention.status)
    if INTERVENTION_TRANSITIONS.is_terminal(status):
        raise WorkflowValidationError(
            f"Intervention is {status.label}; its steps can no longer be modified",
            rule="intervention_terminal",
            field="intervention_status",
            context={"status": status.value},
        )


def ensure_intervention_in_progress(intervention: models.Intervention) -> None:
    ensure_not_terminal(intervention)
    status = InterventionStatus(intervention.status)
    if status == InterventionStatus.PAUSED:
        raise WorkflowValidationError(
            "Cannot advance steps on a paused intervention",
            rule="intervention_status",
            field="intervention_status",
            context={"status": status.value},
        )
    if status != InterventionStatus.IN_PROGRESS:
        raise WorkflowValidationError(
            f"Intervention is not in progress (status: {status.label})",
            rule="intervention_status",
            field="intervention_status",
            context={"status": status.value},
        )


def check_status_graph(step: models.InterventionStep, requested: StepStatus) -> None:
    current = StepStatus(step.step_status)
    STEP_TRANSITIONS.check(current, requested, step_number=step.step_number)
    if requested == StepStatus.SKIPPED and step.is_mandatory:
        raise WorkflowValidationError(
            f"Mandatory step {step.step_number} cannot be skipped",
            rule="skip_mandatory",
            step_number=step.step_number,
            field="is_mandatory",
        )


def check_sequencing(
    step: models.InterventionStep,
    requested: StepStatus,
    steps: Iterable[models.InterventionStep],
) -> None:
    if requested not in _SEQUENCED_TARGETS:
        return
    earlier = sorted(
        (
            other
            for other in steps
            if other.intervention_id == step.intervention_id
            and other.id != step.id
            and other.step_number < step.step_number
        ),
        key=lambda other: other.step_number,
    )
    for other in earlier:
        other_status = StepStatus(other.step_status)
        if other_status in FINISHED_STEP_STATUSES:
            continue
        raise WorkflowValidationError(
            f"Previous step not completed: step {other.step_number} ({other.step_name}) "
            f"is {other_status.label} and must be completed or skipped before step {step.step_number}",
            rule="sequencing",
            step_number=step.step_number,
            field="step_number",
            context={
                "blocking_step_number": other.step_number,
                "blocking_step_id": str(other.id),
                "blocking_step_status": other_status.value,
            },
        )


def check_photo_evidence(step: models.InterventionStep) -> None:
    if not step.requires_photos:
        return
    count = step.photo_count or 0
    minimum = step.min_photos_required or 0
    maximum = step.max_photos_allowed or 0
    if count < minimum:
        raise WorkflowValidationError(
            f"Required photos not uploaded: step {step.step_number} requires at least "
            f"{minimum} photo(s), {count} provided",
            rule="photos_min",
            step_number=step.step_number,
            field="photo_count",
            context={"required": minimum, "provided": count},
        )
    if maximum > 0 and count > maximum:
        raise WorkflowValidationError(
            f"Too many photos uploaded: step {step.step_number} allows at most "
            f"{maximum} photo(s), {count} provided",
            rule="photos_max",
            step_number=step.step_number,
            field="photo_count",
            context={"allowed": maximum, "provided": count},
        )


def check_quality_checkpoints(step: models.InterventionStep) -> None:
    checkpoints: Sequence[str] = step.quality_checkpoints or []
    if not checkpoints:
        return
    validated = set(step.validated_checkpoints or [])
    for checkpoint in checkpoints:
        if checkpoint not in validated:
            raise WorkflowValidationError(
                f"Quality checkpoints not validated: step {step.step_number} is missing '{checkpoint}'",
                rule="quality_checkpoints",
                step_number=step.step_number,
                field="validated_checkpoints",
                context={"missing_checkpoint": checkpoint},
            )


def check_minimum_duration(step: models.InterventionStep, now: datetime) -> None:
    required = step.estimated_duration_seconds
    if not required:
        return
    started_at = as_utc(step.started_at)
    if started_at is None:
        raise WorkflowValidationError(
            f"Step {step.step_number} has no start time; start it before completing",
            rule="duration",
            step_number=step.step_number,
            field="started_at",
        )
    elapsed = int((now - started_at).total_seconds())
    if elapsed < required:
        shortfall = required - elapsed
        raise WorkflowValidationError(
            f"Minimum step duration not reached: step {step.step_number} needs "
            f"{shortfall} more second(s) of work ({elapsed}/{required}s elapsed)",
            rule="duration",
            step_number=step.step_number,
            field="estimated_duration_seconds",
            context={"elapsed_seconds": elapsed, "required_seconds": required, "shortfall_seconds": shortfall},
        )


def check_supervisor_approval(step: models.InterventionStep) -> None:
    if not step.requires_supervisor_approval:
        return
    if step.rejection_reason:
        raise WorkflowValidationError(
            f"Supervisor approval rejected for step {step.step_number}: {step.rejection_reason}",
            rule="supervisor_approval",
            step_number=step.step_number,
            field="rejection_reason",
        )
    if step.approved_by is None:
        raise WorkflowValidationError(
            f"Supervisor approval required: step {step.step_number} has not been approved",
            rule="supervisor_approval",
            step_number=step.step_number,
            field="approved_by",
        )


def validate_step_transition(
    intervention: models.Intervention,
    step: models.InterventionStep,
    requested: StepStatus,
    steps: Iterable[models.InterventionStep],
    *,
    now: datetime | None = None,
) -> None:
    """Run every gate for ``step -> requested`` and stop at the first failure."""

    ensure_step_belongs(intervention, step)
    ensure_intervention_in_progress(intervention)

    check_status_graph(step, requested)
    check_sequencing(step, requested, steps)
    if requested != StepStatus.COMPLETED:
        return
    check_photo_evidence(step)
    check_quality_checkpoints(step)
    check_minimum_duration(step, as_utc(now) or utcnow())
    check_supervisor_approval(step)
