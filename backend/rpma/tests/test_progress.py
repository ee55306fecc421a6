from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from rpma import models
from rpma.errors import WorkflowValidationError
from rpma.services.finalization import validate_finalization
from rpma.services.progress import compute_progress, summarize_steps
from rpma.statuses import InterventionStatus, StepStatus

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _intervention(**overrides) -> models.Intervention:
    fields = {"id": uuid4(), "task_id": "T-200", "status": InterventionStatus.IN_PROGRESS}
    fields.update(overrides)
    return models.Intervention(**fields)


def _steps(intervention, statuses, *, duration=None, mandatory=True):
    return [
        models.InterventionStep(
            id=uuid4(),
            intervention_id=intervention.id,
            step_number=number,
            step_name=f"Step {number}",
            step_status=status,
            is_mandatory=mandatory,
            estimated_duration_seconds=duration,
        )
        for number, status in enumerate(statuses, start=1)
    ]


def test_percentage_follows_finished_steps():
    intervention = _intervention()
    steps = _steps(intervention, [StepStatus.COMPLETED, StepStatus.IN_PROGRESS, StepStatus.PENDING])
    progress = compute_progress(intervention, steps, now=NOW)
    assert progress.current_step == 1
    assert progress.completed_steps == 1
    assert progress.total_steps == 3
    assert progress.completion_percentage == pytest.approx(100 / 3)
    assert progress.status == InterventionStatus.IN_PROGRESS


def test_skipped_counts_as_finished():
    intervention = _intervention()
    steps = _steps(intervention, [StepStatus.COMPLETED, StepStatus.SKIPPED])
    progress = compute_progress(intervention, steps, now=NOW)
    assert progress.completed_steps == 2
    assert progress.completion_percentage == 100.0


def test_no_steps_means_zero_percent():
    progress = compute_progress(_intervention(), [], now=NOW)
    assert progress.completion_percentage == 0.0
    assert progress.total_steps == 0
    assert progress.estimated_time_remaining == 0


def test_stored_counters_are_ignored():
    intervention = _intervention(current_step=7, completion_percentage=99.0)
    steps = _steps(intervention, [StepStatus.PENDING, StepStatus.PENDING])
    progress = compute_progress(intervention, steps, now=NOW)
    assert progress.current_step == 0
    assert progress.completion_percentage == 0.0


def test_remaining_time_subtracts_elapsed_and_rounds_up():
    intervention = _intervention()
    steps = _steps(
        intervention,
        [StepStatus.COMPLETED, StepStatus.IN_PROGRESS, StepStatus.PENDING],
        duration=600,
    )
    steps[1].started_at = NOW - timedelta(seconds=250)
    progress = compute_progress(intervention, steps, now=NOW)
    # 350 s left on step 2 plus 600 s for step 3
    assert progress.estimated_time_remaining == 16


def test_overrun_step_contributes_nothing():
    intervention = _intervention()
    steps = _steps(intervention, [StepStatus.IN_PROGRESS], duration=60)
    steps[0].started_at = NOW - timedelta(hours=2)
    assert compute_progress(intervention, steps, now=NOW).estimated_time_remaining == 0


def test_compute_progress_is_idempotent_for_fixed_time():
    intervention = _intervention()
    steps = _steps(intervention, [StepStatus.COMPLETED, StepStatus.IN_PROGRESS], duration=300)
    steps[1].started_at = NOW - timedelta(seconds=30)
    assert compute_progress(intervention, steps, now=NOW) == compute_progress(intervention, steps, now=NOW)


def test_summary_lists_incomplete_mandatory_steps():
    intervention = _intervention()
    steps = _steps(intervention, [StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED])
    steps[2].is_mandatory = False
    summary = summarize_steps(steps)
    assert summary.mandatory_total == 2
    assert summary.mandatory_completed == 1
    assert summary.incomplete_mandatory == [2]


def test_finalization_rules_in_order():
    pending = _intervention(status=InterventionStatus.PENDING)
    with pytest.raises(WorkflowValidationError, match="Only in-progress interventions can be finalized"):
        validate_finalization(pending, [])

    empty = _intervention(quality_score=90)
    with pytest.raises(WorkflowValidationError, match="No steps found for intervention"):
        validate_finalization(empty, [])

    unfinished = _intervention(quality_score=90)
    steps = _steps(unfinished, [StepStatus.COMPLETED, StepStatus.IN_PROGRESS, StepStatus.PENDING])
    with pytest.raises(WorkflowValidationError) as excinfo:
        validate_finalization(unfinished, steps)
    assert excinfo.value.rule == "mandatory_steps"
    assert excinfo.value.context == {"incomplete_steps": [2, 3]}

    unscored = _intervention()
    done = _steps(unscored, [StepStatus.COMPLETED] * 3)
    with pytest.raises(WorkflowValidationError, match="Quality score is required"):
        validate_finalization(unscored, done)

    unscored.quality_score = 95
    validate_finalization(unscored, done)


def test_skipped_optional_steps_allow_finalization():
    intervention = _intervention(quality_score=80)
    steps = _steps(intervention, [StepStatus.COMPLETED, StepStatus.SKIPPED])
    steps[1].is_mandatory = False
    validate_finalization(intervention, steps)
