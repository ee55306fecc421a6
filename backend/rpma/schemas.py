from datetime import datetime
from typing import Optional, Any, Dict, Literal, List
from pydantic import BaseModel, ConfigDict, Field
from uuid import UUID

from .statuses import InterventionStatus, StepStatus, UserRole


class UserOut(BaseModel):
    id: UUID
    email: str
    full_name: Optional[str] = None
    role: UserRole
    is_active: bool = True
    model_config = ConfigDict(from_attributes=True)


class StepDefinition(BaseModel):
    step_name: str
    step_type: Literal["inspection", "preparation", "installation", "finalization"] = "inspection"
    description: Optional[str] = None
    is_mandatory: bool = True
    requires_photos: bool = False
    min_photos_required: int = Field(default=0, ge=0)
    # 0 means unlimited
    max_photos_allowed: int = Field(default=0, ge=0)
    quality_checkpoints: List[str] = Field(default_factory=list)
    requires_supervisor_approval: bool = False
    estimated_duration_seconds: Optional[int] = Field(default=None, ge=0)


class InterventionCreate(BaseModel):
    task_id: str = Field(min_length=1)
    technician_id: Optional[UUID] = None
    vehicle_plate: Optional[str] = None
    intervention_type: Literal["ppf", "ceramic", "detailing", "other"] = "ppf"
    scheduled_at: Optional[datetime] = None
    notes: Optional[str] = None
    steps: Optional[List[StepDefinition]] = None


class InterventionOut(BaseModel):
    id: UUID
    task_id: str
    technician_id: Optional[UUID] = None
    status: InterventionStatus
    intervention_type: str
    vehicle_plate: Optional[str] = None
    current_step: int
    completion_percentage: float
    quality_score: Optional[int] = None
    customer_satisfaction: Optional[int] = None
    final_observations: Optional[List[str]] = None
    customer_comments: Optional[str] = None
    notes: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    actual_duration_minutes: Optional[int] = None
    created_by: Optional[UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int
    model_config = ConfigDict(from_attributes=True)


class InterventionStepOut(BaseModel):
    id: UUID
    intervention_id: UUID
    step_number: int
    step_name: str
    step_type: str
    description: Optional[str] = None
    step_status: StepStatus
    is_mandatory: bool
    requires_photos: bool
    min_photos_required: int
    max_photos_allowed: int
    quality_checkpoints: Optional[List[str]] = None
    requires_supervisor_approval: bool
    photo_count: int
    photo_urls: Optional[List[str]] = None
    required_photos_completed: bool
    collected_data: Optional[Dict[str, Any]] = None
    measurements: Optional[Dict[str, Any]] = None
    observations: Optional[List[Any]] = None
    notes: Optional[str] = None
    validated_checkpoints: Optional[List[str]] = None
    validation_errors: Optional[List[str]] = None
    validation_score: Optional[int] = None
    approved_by: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    estimated_duration_seconds: Optional[int] = None
    version: int
    model_config = ConfigDict(from_attributes=True)


class InterventionProgress(BaseModel):
    intervention_id: UUID
    current_step: int
    total_steps: int
    completed_steps: int
    completion_percentage: float = Field(ge=0, le=100)
    # minutes, rounded up
    estimated_time_remaining: int
    status: InterventionStatus


class AdvanceStepRequest(BaseModel):
    collected_data: Dict[str, Any] = Field(default_factory=dict)
    photos: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    quality_check_passed: bool = True
    issues: List[str] = Field(default_factory=list)


class AdvanceStepResponse(BaseModel):
    step: InterventionStepOut
    next_step: Optional[InterventionStepOut] = None
    progress_percentage: float
    requirements_completed: List[str] = Field(default_factory=list)


class SaveStepProgressRequest(BaseModel):
    intervention_id: Optional[UUID] = None
    collected_data: Dict[str, Any] = Field(default_factory=dict)
    notes: Optional[str] = None
    photos: List[str] = Field(default_factory=list)


class AssignTechnicianRequest(BaseModel):
    technician_id: UUID


class InterventionTransitionRequest(BaseModel):
    reason: Optional[str] = None


class StepTransitionRequest(BaseModel):
    target: Literal["paused", "in_progress", "skipped", "rework"]
    reason: Optional[str] = None


class StepReviewRequest(BaseModel):
    approved: bool
    rejection_reason: Optional[str] = None


class FinalizeInterventionRequest(BaseModel):
    quality_score: Optional[int] = Field(default=None, ge=0, le=100)
    customer_satisfaction: Optional[int] = Field(default=None, ge=1, le=10)
    final_observations: List[str] = Field(default_factory=list)
    customer_comments: Optional[str] = None


class InterventionEventOut(BaseModel):
    id: UUID
    intervention_id: UUID
    step_id: Optional[UUID] = None
    event_type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    actor_id: Optional[UUID] = None
    sequence: int
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)
