from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from rpma import models
from rpma.errors import WorkflowValidationError
from rpma.services.step_validation import validate_step_transition
from rpma.statuses import InterventionStatus, StepStatus

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _intervention(status=InterventionStatus.IN_PROGRESS) -> models.Intervention:
    return models.Intervention(id=uuid4(), task_id="T-100", status=status)


def _step(intervention, number, status=StepStatus.PENDING, **overrides) -> models.InterventionStep:
    fields = {
        "id": uuid4(),
        "intervention_id": intervention.id,
        "step_number": number,
        "step_name": f"Step {number}",
        "step_status": status,
        "is_mandatory": True,
        "requires_photos": False,
        "min_photos_required": 0,
        "max_photos_allowed": 0,
        "photo_count": 0,
        "quality_checkpoints": [],
        "validated_checkpoints": [],
        "requires_supervisor_approval": False,
        "estimated_duration_seconds": None,
        "started_at": None,
    }
    fields.update(overrides)
    return models.InterventionStep(**fields)


def _rejection(intervention, step, target, steps) -> WorkflowValidationError:
    with pytest.raises(WorkflowValidationError) as excinfo:
        validate_step_transition(intervention, step, target, steps, now=NOW)
    return excinfo.value


def test_completing_with_enough_photos_passes():
    intervention = _intervention()
    step = _step(
        intervention,
        1,
        StepStatus.IN_PROGRESS,
        requires_photos=True,
        min_photos_required=2,
        photo_count=2,
        started_at=NOW - timedelta(minutes=5),
    )
    validate_step_transition(intervention, step, StepStatus.COMPLETED, [step], now=NOW)


def test_sequencing_names_lowest_blocking_step():
    intervention = _intervention()
    first = _step(intervention, 1, StepStatus.IN_PROGRESS)
    second = _step(intervention, 2, StepStatus.PENDING)
    third = _step(intervention, 3, StepStatus.IN_PROGRESS)
    error = _rejection(intervention, third, StepStatus.COMPLETED, [first, second, third])
    assert error.rule == "sequencing"
    assert error.step_number == 3
    assert "step 1 (Step 1)" in str(error)
    assert error.context["blocking_step_number"] == 1


def test_skipped_previous_steps_do_not_block():
    intervention = _intervention()
    first = _step(intervention, 1, StepStatus.SKIPPED, is_mandatory=False)
    second = _step(intervention, 2, StepStatus.PENDING)
    validate_step_transition(intervention, second, StepStatus.IN_PROGRESS, [first, second], now=NOW)


def test_too_few_photos_rejected():
    intervention = _intervention()
    step = _step(
        intervention,
        1,
        StepStatus.IN_PROGRESS,
        requires_photos=True,
        min_photos_required=2,
        photo_count=1,
    )
    error = _rejection(intervention, step, StepStatus.COMPLETED, [step])
    assert error.rule == "photos_min"
    assert str(error).startswith("Required photos not uploaded")
    assert error.field == "photo_count"


def test_photo_ceiling_only_applies_when_positive():
    intervention = _intervention()
    capped = _step(
        intervention,
        1,
        StepStatus.IN_PROGRESS,
        requires_photos=True,
        max_photos_allowed=3,
        photo_count=4,
    )
    error = _rejection(intervention, capped, StepStatus.COMPLETED, [capped])
    assert error.rule == "photos_max"
    assert str(error).startswith("Too many photos uploaded")

    unlimited = _step(intervention, 1, StepStatus.IN_PROGRESS, requires_photos=True, photo_count=40)
    validate_step_transition(intervention, unlimited, StepStatus.COMPLETED, [unlimited], now=NOW)


def test_first_missing_checkpoint_reported():
    intervention = _intervention()
    step = _step(
        intervention,
        1,
        StepStatus.IN_PROGRESS,
        quality_checkpoints=["Edges sealed", "No bubbles"],
        validated_checkpoints=["Edges sealed"],
    )
    error = _rejection(intervention, step, StepStatus.COMPLETED, [step])
    assert error.rule == "quality_checkpoints"
    assert str(error).startswith("Quality checkpoints not validated")
    assert error.context == {"missing_checkpoint": "No bubbles"}


def test_minimum_duration_reports_shortfall():
    intervention = _intervention()
    step = _step(
        intervention,
        1,
        StepStatus.IN_PROGRESS,
        estimated_duration_seconds=600,
        started_at=NOW - timedelta(seconds=450),
    )
    error = _rejection(intervention, step, StepStatus.COMPLETED, [step])
    assert error.rule == "duration"
    assert error.context["shortfall_seconds"] == 150
    assert "150 more second(s)" in str(error)


def test_duration_accepts_naive_start_times():
    intervention = _intervention()
    step = _step(
        intervention,
        1,
        StepStatus.IN_PROGRESS,
        estimated_duration_seconds=60,
        started_at=(NOW - timedelta(seconds=61)).replace(tzinfo=None),
    )
    validate_step_transition(intervention, step, StepStatus.COMPLETED, [step], now=NOW)


def test_supervisor_approval_required_and_rejection_blocks():
    intervention = _intervention()
    step = _step(intervention, 1, StepStatus.IN_PROGRESS, requires_supervisor_approval=True)
    error = _rejection(intervention, step, StepStatus.COMPLETED, [step])
    assert error.rule == "supervisor_approval"
    assert error.field == "approved_by"

    step.approved_by = uuid4()
    step.rejection_reason = "Edge lifting on the hood"
    error = _rejection(intervention, step, StepStatus.COMPLETED, [step])
    assert error.field == "rejection_reason"

    step.rejection_reason = None
    validate_step_transition(intervention, step, StepStatus.COMPLETED, [step], now=NOW)


def test_checks_run_in_order():
    intervention = _intervention()
    step = _step(
        intervention,
        1,
        StepStatus.IN_PROGRESS,
        requires_photos=True,
        min_photos_required=1,
        quality_checkpoints=["Measured"],
        requires_supervisor_approval=True,
    )
    assert _rejection(intervention, step, StepStatus.COMPLETED, [step]).rule == "photos_min"
    step.photo_count = 1
    assert _rejection(intervention, step, StepStatus.COMPLETED, [step]).rule == "quality_checkpoints"
    step.validated_checkpoints = ["Measured"]
    assert _rejection(intervention, step, StepStatus.COMPLETED, [step]).rule == "supervisor_approval"


def test_mandatory_steps_cannot_be_skipped():
    intervention = _intervention()
    step = _step(intervention, 1)
    error = _rejection(intervention, step, StepStatus.SKIPPED, [step])
    assert error.rule == "skip_mandatory"

    optional = _step(intervention, 1, is_mandatory=False)
    validate_step_transition(intervention, optional, StepStatus.SKIPPED, [optional], now=NOW)


def test_graph_rejection_precedes_gates():
    intervention = _intervention()
    step = _step(intervention, 1, StepStatus.PENDING, requires_photos=True, min_photos_required=3)
    error = _rejection(intervention, step, StepStatus.COMPLETED, [step])
    assert error.rule == "status_transition"
    assert str(error) == "Cannot transition from Pending to Completed"


def test_preconditions():
    paused = _intervention(InterventionStatus.PAUSED)
    step = _step(paused, 1)
    error = _rejection(paused, step, StepStatus.IN_PROGRESS, [step])
    assert str(error) == "Cannot advance steps on a paused intervention"

    pending = _intervention(InterventionStatus.PENDING)
    error = _rejection(pending, _step(pending, 1), StepStatus.IN_PROGRESS, [])
    assert str(error).startswith("Intervention is not in progress")

    completed = _intervention(InterventionStatus.COMPLETED)
    error = _rejection(completed, _step(completed, 1), StepStatus.IN_PROGRESS, [])
    assert error.rule == "intervention_terminal"

    other = _intervention()
    error = _rejection(_intervention(), _step(other, 1), StepStatus.IN_PROGRESS, [])
    assert str(error) == "Step does not belong to intervention"
