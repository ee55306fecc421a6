"""Derived progress metrics for interventions."""

# purpose: recompute current_step and completion figures from step rows on every read
# inputs: intervention row, its steps, reference time
# outputs: InterventionProgress schema and StepCompletionSummary
# status: production

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence

from .. import models, schemas
from ..clock import as_utc, utcnow
from ..statuses import FINISHED_STEP_STATUSES, InterventionStatus, StepStatus


@dataclass(frozen=True)
class StepCompletionSummary:
    total_steps: int
    completed_steps: int
    mandatory_total: int
    mandatory_completed: int
    incomplete_mandatory: list[int] = field(default_factory=list)


def summarize_steps(steps: Sequence[models.InterventionStep]) -> StepCompletionSummary:
    """Count finished and mandatory steps; only Completed satisfies a mandatory step."""

    completed = sum(1 for step in steps if StepStatus(step.step_status) in FINISHED_STEP_STATUSES)
    mandatory = [step for step in steps if step.is_mandatory]
    incomplete = sorted(
        step.step_number for step in mandatory if StepStatus(step.step_status) != StepStatus.COMPLETED
    )
    return StepCompletionSummary(
        total_steps=len(steps),
        completed_steps=completed,
        mandatory_total=len(mandatory),
        mandatory_completed=len(mandatory) - len(incomplete),
        incomplete_mandatory=incomplete,
    )


def completion_percentage(completed_steps: int, total_steps: int) -> float:
    if total_steps <= 0:
        return 0.0
    return min(max(completed_steps / total_steps * 100.0, 0.0), 100.0)


def estimate_remaining_minutes(
    steps: Sequence[models.InterventionStep],
    now: datetime,
) -> int:
    """Best-effort estimate; steps without a duration contribute nothing."""

    remaining_seconds = 0
    for step in steps:
        status = StepStatus(step.step_status)
        if status in FINISHED_STEP_STATUSES:
            continue
        estimated = step.estimated_duration_seconds or 0
        if status == StepStatus.IN_PROGRESS and step.started_at is not None:
            elapsed = (now - as_utc(step.started_at)).total_seconds()
            estimated = max(estimated - elapsed, 0)
        remaining_seconds += estimated
    return math.ceil(remaining_seconds / 60)


def compute_progress(
    intervention: models.Intervention,
    steps: Sequence[models.InterventionStep],
    *,
    now: datetime | None = None,
) -> schemas.InterventionProgress:
    reference = as_utc(now) or utcnow()
    owned = [step for step in steps if step.intervention_id == intervention.id]
    summary = summarize_steps(owned)
    return schemas.InterventionProgress(
        intervention_id=intervention.id,
        current_step=summary.completed_steps,
        total_steps=summary.total_steps,
        completed_steps=summary.completed_steps,
        completion_percentage=completion_percentage(summary.completed_steps, summary.total_steps),
        estimated_time_remaining=estimate_remaining_minutes(owned, reference),
        status=InterventionStatus(intervention.status),
    )


def refresh_materialized_progress(
    intervention: models.Intervention,
    steps: Sequence[models.InterventionStep],
) -> None:
    """Copy the derived counters onto the intervention row before it is persisted."""

    summary = summarize_steps(steps)
    intervention.current_step = summary.completed_steps
    intervention.completion_percentage = completion_percentage(
        summary.completed_steps, summary.total_steps
    )
