"""Create intervention workflow tables."""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: str | Sequence[str] | None = None
branch_labels = None
depends_on = None

_INTERVENTION_STATUSES = ("pending", "in_progress", "paused", "completed", "cancelled")
_STEP_STATUSES = ("pending", "in_progress", "paused", "completed", "failed", "skipped", "rework")
_ROLES = ("admin", "supervisor", "technician", "viewer")


def _status_type(name: str, values: Sequence[str]) -> sa.Enum:
    return sa.Enum(*values, name=name, native_enum=False, length=32, create_constraint=True)


def upgrade() -> None:
    """Create users, sessions, interventions, steps and the event timeline."""

    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(), nullable=False, unique=True),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("role", _status_type("user_role", _ROLES), nullable=False, server_default="technician"),
        sa.Column("is_active", sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
    )

    op.create_table(
        "user_sessions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_user_sessions_token_hash", "user_sessions", ["token_hash"], unique=True)

    op.create_table(
        "interventions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("technician_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            "status",
            _status_type("intervention_status", _INTERVENTION_STATUSES),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("intervention_type", sa.String(), nullable=False, server_default="ppf"),
        sa.Column("vehicle_plate", sa.String(), nullable=True),
        sa.Column("current_step", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completion_percentage", sa.Float(), nullable=False, server_default="0"),
        sa.Column("quality_score", sa.Integer(), nullable=True),
        sa.Column("customer_satisfaction", sa.Integer(), nullable=True),
        sa.Column("final_observations", sa.JSON(), nullable=True),
        sa.Column("customer_comments", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paused_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_duration_minutes", sa.Integer(), nullable=True),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["technician_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"]),
        sa.CheckConstraint(
            "quality_score IS NULL OR (quality_score >= 0 AND quality_score <= 100)",
            name="ck_interventions_quality_score",
        ),
        sa.CheckConstraint(
            "customer_satisfaction IS NULL OR (customer_satisfaction >= 1 AND customer_satisfaction <= 10)",
            name="ck_interventions_customer_satisfaction",
        ),
        sa.CheckConstraint(
            "completion_percentage >= 0 AND completion_percentage <= 100",
            name="ck_interventions_completion_percentage",
        ),
    )
    op.create_index("ix_interventions_task_id", "interventions", ["task_id"])
    op.create_index("ix_interventions_technician_id", "interventions", ["technician_id"])

    op.create_table(
        "intervention_steps",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("intervention_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("step_number", sa.Integer(), nullable=False),
        sa.Column("step_name", sa.String(), nullable=False),
        sa.Column("step_type", sa.String(), nullable=False, server_default="inspection"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "step_status",
            _status_type("step_status", _STEP_STATUSES),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("is_mandatory", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("requires_photos", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("min_photos_required", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_photos_allowed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quality_checkpoints", sa.JSON(), nullable=True),
        sa.Column("requires_supervisor_approval", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("photo_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("photo_urls", sa.JSON(), nullable=True),
        sa.Column("required_photos_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("collected_data", sa.JSON(), nullable=True),
        sa.Column("measurements", sa.JSON(), nullable=True),
        sa.Column("observations", sa.JSON(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("validated_checkpoints", sa.JSON(), nullable=True),
        sa.Column("validation_errors", sa.JSON(), nullable=True),
        sa.Column("validation_score", sa.Integer(), nullable=True),
        sa.Column("approved_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paused_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("estimated_duration_seconds", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["intervention_id"], ["interventions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["approved_by"], ["users.id"]),
        sa.UniqueConstraint("intervention_id", "step_number", name="uq_intervention_steps_number"),
        sa.CheckConstraint("step_number >= 1", name="ck_intervention_steps_number"),
    )
    op.create_index("ix_intervention_steps_intervention_id", "intervention_steps", ["intervention_id"])

    op.create_table(
        "intervention_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("intervention_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("step_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["intervention_id"], ["interventions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["step_id"], ["intervention_steps.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["actor_id"], ["users.id"]),
    )
    op.create_index("ix_intervention_events_intervention_id", "intervention_events", ["intervention_id"])


def downgrade() -> None:
    """Drop intervention workflow tables."""

    op.drop_index("ix_intervention_events_intervention_id", table_name="intervention_events")
    op.drop_table("intervention_events")
    op.drop_index("ix_intervention_steps_intervention_id", table_name="intervention_steps")
    op.drop_table("intervention_steps")
    op.drop_index("ix_interventions_technician_id", table_name="interventions")
    op.drop_index("ix_interventions_task_id", table_name="interventions")
    op.drop_table("interventions")
    op.drop_index("ix_user_sessions_token_hash", table_name="user_sessions")
    op.drop_table("user_sessions")
    op.drop_table("users")
