"""Closed status sets and guarded transition tables for interventions and steps."""

# purpose: single source of truth for intervention and step state machines
# status: production
# depends_on: rpma.errors

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, Mapping, TypeVar

from .errors import WorkflowValidationError


class _LabelledStatus(str, Enum):
    @property
    def label(self) -> str:
        """Human-facing name used in validation messages (``in_progress`` -> ``InProgress``)."""

        return "".join(part.capitalize() for part in self.value.split("_"))


class InterventionStatus(_LabelledStatus):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class StepStatus(_LabelledStatus):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    REWORK = "rework"


class UserRole(str, Enum):
    ADMIN = "admin"
    SUPERVISOR = "supervisor"
    TECHNICIAN = "technician"
    VIEWER = "viewer"


StatusT = TypeVar("StatusT", bound=_LabelledStatus)


@dataclass(frozen=True)
class TransitionTable(Generic[StatusT]):
    """Explicit allow-list of edges for one state machine.

    Anything not listed is rejected, including self-transitions, so callers
    never get a silent no-op.
    """

    entity: str
    edges: Mapping[StatusT, frozenset[StatusT]]
    terminal: frozenset[StatusT] = field(default_factory=frozenset)

    def allows(self, current: StatusT, target: StatusT) -> bool:
        return target in self.edges.get(current, frozenset())

    def targets(self, current: StatusT) -> frozenset[StatusT]:
        return self.edges.get(current, frozenset())

    def is_terminal(self, status: StatusT) -> bool:
        return status in self.terminal

    def check(self, current: StatusT, target: StatusT, *, step_number: int | None = None) -> None:
        """Raise when ``current -> target`` is not an allowed edge."""

        if self.allows(current, target):
            return
        raise WorkflowValidationError(
            f"Cannot transition from {current.label} to {target.label}",
            rule="status_transition",
            step_number=step_number,
            field=f"{self.entity}_status",
            context={"from": current.value, "to": target.value},
        )


INTERVENTION_TRANSITIONS: TransitionTable[InterventionStatus] = TransitionTable(
    entity="intervention",
    edges={
        InterventionStatus.PENDING: frozenset(
            {InterventionStatus.IN_PROGRESS, InterventionStatus.CANCELLED}
        ),
        InterventionStatus.IN_PROGRESS: frozenset(
            {
                InterventionStatus.PAUSED,
                InterventionStatus.CANCELLED,
                InterventionStatus.COMPLETED,
            }
        ),
        InterventionStatus.PAUSED: frozenset({InterventionStatus.IN_PROGRESS}),
    },
    terminal=frozenset({InterventionStatus.COMPLETED, InterventionStatus.CANCELLED}),
)

STEP_TRANSITIONS: TransitionTable[StepStatus] = TransitionTable(
    entity="step",
    edges={
        StepStatus.PENDING: frozenset({StepStatus.IN_PROGRESS, StepStatus.SKIPPED}),
        StepStatus.IN_PROGRESS: frozenset(
            {StepStatus.PAUSED, StepStatus.COMPLETED, StepStatus.FAILED}
        ),
        StepStatus.PAUSED: frozenset({StepStatus.IN_PROGRESS}),
        StepStatus.COMPLETED: frozenset({StepStatus.REWORK}),
        StepStatus.FAILED: frozenset({StepStatus.REWORK}),
        StepStatus.REWORK: frozenset({StepStatus.IN_PROGRESS}),
    },
    terminal=frozenset({StepStatus.SKIPPED}),
)

# steps in these states no longer block later steps or count as remaining work
FINISHED_STEP_STATUSES = frozenset({StepStatus.COMPLETED, StepStatus.SKIPPED})
