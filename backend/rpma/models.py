import uuid
import sqlalchemy as sa
from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    JSON,
    Integer,
    Text,
    Float,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from .clock import utcnow
from .database import Base
from .statuses import InterventionStatus, StepStatus, UserRole


def _status_column(enum_cls, default):
    # stored as the snake_case value; the column type owns the string<->enum mapping
    return Column(
        sa.Enum(
            enum_cls,
            native_enum=False,
            length=32,
            validate_strings=True,
            values_callable=lambda members: [member.value for member in members],
        ),
        nullable=False,
        default=default,
    )


class User(Base):
    __tablename__ = "users"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=False)
    full_name = Column(String)
    role = Column(
        sa.Enum(
            UserRole,
            native_enum=False,
            length=32,
            validate_strings=True,
            values_callable=lambda members: [member.value for member in members],
        ),
        nullable=False,
        default=UserRole.TECHNICIAN,
    )
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    sessions = relationship("UserSession", back_populates="user", cascade="all, delete-orphan")

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class UserSession(Base):
    __tablename__ = "user_sessions"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # sha256 hex digest of the opaque bearer token
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    user = relationship("User", back_populates="sessions")


class Intervention(Base):
    __tablename__ = "interventions"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    task_id = Column(String, nullable=False, index=True)
    technician_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True)
    status = _status_column(InterventionStatus, InterventionStatus.PENDING)
    intervention_type = Column(String, nullable=False, default="ppf")
    vehicle_plate = Column(String)
    # materialized from the steps after every step mutation, never trusted on read
    current_step = Column(Integer, nullable=False, default=0)
    completion_percentage = Column(Float, nullable=False, default=0.0)
    quality_score = Column(Integer)
    customer_satisfaction = Column(Integer)
    final_observations = Column(JSON, default=list)
    customer_comments = Column(Text)
    notes = Column(Text)
    scheduled_at = Column(DateTime(timezone=True))
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    paused_at = Column(DateTime(timezone=True))
    actual_duration_minutes = Column(Integer)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    version = Column(Integer, nullable=False, default=1)

    steps = relationship(
        "InterventionStep",
        back_populates="intervention",
        cascade="all, delete-orphan",
        order_by="InterventionStep.step_number",
    )
    events = relationship(
        "InterventionEvent",
        back_populates="intervention",
        cascade="all, delete-orphan",
        order_by="InterventionEvent.sequence",
    )
    technician = relationship("User", foreign_keys=[technician_id])

    __table_args__ = (
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
    __mapper_args__ = {"version_id_col": version}


class InterventionStep(Base):
    __tablename__ = "intervention_steps"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    intervention_id = Column(
        UUID(as_uuid=True),
        ForeignKey("interventions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_number = Column(Integer, nullable=False)
    step_name = Column(String, nullable=False)
    step_type = Column(String, nullable=False, default="inspection")
    description = Column(Text)
    step_status = _status_column(StepStatus, StepStatus.PENDING)

    is_mandatory = Column(Boolean, nullable=False, default=True)
    requires_photos = Column(Boolean, nullable=False, default=False)
    min_photos_required = Column(Integer, nullable=False, default=0)
    # 0 means no upper bound
    max_photos_allowed = Column(Integer, nullable=False, default=0)
    quality_checkpoints = Column(JSON, default=list)
    requires_supervisor_approval = Column(Boolean, nullable=False, default=False)

    photo_count = Column(Integer, nullable=False, default=0)
    photo_urls = Column(JSON, default=list)
    required_photos_completed = Column(Boolean, nullable=False, default=False)
    collected_data = Column(JSON, default=dict)
    measurements = Column(JSON, default=dict)
    observations = Column(JSON, default=list)
    notes = Column(Text)
    validated_checkpoints = Column(JSON, default=list)
    validation_errors = Column(JSON, default=list)
    validation_score = Column(Integer)

    approved_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime(timezone=True))
    rejection_reason = Column(Text)

    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    paused_at = Column(DateTime(timezone=True))
    duration_seconds = Column(Integer)
    estimated_duration_seconds = Column(Integer)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    version = Column(Integer, nullable=False, default=1)

    intervention = relationship("Intervention", back_populates="steps")

    __table_args__ = (
        sa.UniqueConstraint("intervention_id", "step_number", name="uq_intervention_steps_number"),
        sa.CheckConstraint("step_number >= 1", name="ck_intervention_steps_number"),
    )
    __mapper_args__ = {"version_id_col": version}


class InterventionEvent(Base):
    __tablename__ = "intervention_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    intervention_id = Column(
        UUID(as_uuid=True),
        ForeignKey("interventions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_id = Column(UUID(as_uuid=True), ForeignKey("intervention_steps.id", ondelete="SET NULL"), nullable=True)
    event_type = Column(String, nullable=False)
    payload = Column(JSON, default=dict)
    actor_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    sequence = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    intervention = relationship("Intervention", back_populates="events")
    actor = relationship("User")
