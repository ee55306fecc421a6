"""Preconditions for closing out an intervention."""

from __future__ import annotations

from typing import Sequence

from .. import models
from ..errors import WorkflowValidationError
from ..statuses import InterventionStatus
from .progress import summarize_steps

# purpose: gate the InProgress -> Completed intervention transition
# status: production


def validate_finalization(
    intervention: models.Intervention,
    steps: Sequence[models.InterventionStep],
) -> None:
    status = InterventionStatus(intervention.status)
    if status != InterventionStatus.IN_PROGRESS:
        raise WorkflowValidationError(
            "Only in-progress interventions can be finalized",
            rule="intervention_status",
            field="intervention_status",
            context={"status": status.value},
        )

    summary = summarize_steps([step for step in steps if step.intervention_id == intervention.id])
    if summary.total_steps == 0:
        raise WorkflowValidationError(
            "No steps found for intervention",
            rule="no_steps",
            field="steps",
        )
    if summary.incomplete_mandatory:
        raise WorkflowValidationError(
            f"Mandatory steps not completed: {summary.incomplete_mandatory}",
            rule="mandatory_steps",
            step_number=summary.incomplete_mandatory[0],
            field="step_status",
            context={"incomplete_steps": summary.incomplete_mandatory},
        )
    if intervention.quality_score is None:
        raise WorkflowValidationError(
            "Quality score is required",
            rule="quality_score",
            field="quality_score",
        )
