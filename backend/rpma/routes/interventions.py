"""Intervention workflow API routes."""

import os
from typing import Optional
from uuid import UUID

import sentry_sdk
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import get_current_user
from ..database import get_db
from ..errors import WorkflowError
from ..services import intervention_workflow

# purpose: expose the intervention workflow engine to technician and supervisor clients
# status: production
# depends_on: rpma.services.intervention_workflow

limiter = Limiter(key_func=get_remote_address)
testing = os.getenv("TESTING") == "1"


def rate_limit(limit: str):
    if testing:
        def wrapper(func):
            return func
        return wrapper
    return limiter.limit(limit)


router = APIRouter(prefix="/api/interventions", tags=["interventions"])


def request_timeout(x_request_timeout: Optional[float] = Header(default=None)) -> Optional[float]:
    """Seconds the caller is willing to wait on the database, from ``X-Request-Timeout``."""

    return x_request_timeout


def _http_error(db: Session, exc: WorkflowError) -> HTTPException:
    db.rollback()
    if exc.status_code >= 500:
        sentry_sdk.capture_exception(exc)
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


@router.post("", status_code=status.HTTP_201_CREATED, response_model=schemas.InterventionOut)
def create_intervention(
    payload: schemas.InterventionCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    timeout: Optional[float] = Depends(request_timeout),
):
    try:
        return intervention_workflow.create_intervention(db, payload, user, timeout_seconds=timeout)
    except WorkflowError as exc:
        raise _http_error(db, exc) from exc


@router.get("/{intervention_id}", response_model=schemas.InterventionOut)
def get_intervention(
    intervention_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    timeout: Optional[float] = Depends(request_timeout),
):
    try:
        return intervention_workflow.get_intervention(db, intervention_id, user, timeout_seconds=timeout)
    except WorkflowError as exc:
        raise _http_error(db, exc) from exc


@router.get("/{intervention_id}/steps", response_model=list[schemas.InterventionStepOut])
def list_steps(
    intervention_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    timeout: Optional[float] = Depends(request_timeout),
):
    try:
        return intervention_workflow.list_steps(db, intervention_id, user, timeout_seconds=timeout)
    except WorkflowError as exc:
        raise _http_error(db, exc) from exc


@router.get("/{intervention_id}/progress", response_model=schemas.InterventionProgress)
def get_progress(
    intervention_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    timeout: Optional[float] = Depends(request_timeout),
):
    try:
        return intervention_workflow.get_progress(db, intervention_id, user, timeout_seconds=timeout)
    except WorkflowError as exc:
        raise _http_error(db, exc) from exc


@router.get("/{intervention_id}/events", response_model=list[schemas.InterventionEventOut])
def list_events(
    intervention_id: UUID,
    limit: int = 100,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        return intervention_workflow.list_events(db, intervention_id, user, limit=min(max(limit, 1), 500))
    except WorkflowError as exc:
        raise _http_error(db, exc) from exc


@router.post("/{intervention_id}/assign", response_model=schemas.InterventionOut)
def assign_technician(
    intervention_id: UUID,
    payload: schemas.AssignTechnicianRequest,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    timeout: Optional[float] = Depends(request_timeout),
):
    try:
        return intervention_workflow.assign_technician(
            db, intervention_id, payload, user, timeout_seconds=timeout
        )
    except WorkflowError as exc:
        raise _http_error(db, exc) from exc


@router.post("/{intervention_id}/start", response_model=schemas.InterventionOut)
def start_intervention(
    intervention_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    timeout: Optional[float] = Depends(request_timeout),
):
    try:
        return intervention_workflow.start_intervention(db, intervention_id, user, timeout_seconds=timeout)
    except WorkflowError as exc:
        raise _http_error(db, exc) from exc


@router.post("/{intervention_id}/pause", response_model=schemas.InterventionOut)
def pause_intervention(
    intervention_id: UUID,
    payload: Optional[schemas.InterventionTransitionRequest] = None,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    timeout: Optional[float] = Depends(request_timeout),
):
    try:
        return intervention_workflow.pause_intervention(
            db,
            intervention_id,
            user,
            reason=payload.reason if payload else None,
            timeout_seconds=timeout,
        )
    except WorkflowError as exc:
        raise _http_error(db, exc) from exc


@router.post("/{intervention_id}/resume", response_model=schemas.InterventionOut)
def resume_intervention(
    intervention_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    timeout: Optional[float] = Depends(request_timeout),
):
    try:
        return intervention_workflow.resume_intervention(db, intervention_id, user, timeout_seconds=timeout)
    except WorkflowError as exc:
        raise _http_error(db, exc) from exc


@router.post("/{intervention_id}/cancel", response_model=schemas.InterventionOut)
def cancel_intervention(
    intervention_id: UUID,
    payload: Optional[schemas.InterventionTransitionRequest] = None,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    timeout: Optional[float] = Depends(request_timeout),
):
    try:
        return intervention_workflow.cancel_intervention(
            db,
            intervention_id,
            user,
            reason=payload.reason if payload else None,
            timeout_seconds=timeout,
        )
    except WorkflowError as exc:
        raise _http_error(db, exc) from exc


@router.post("/{intervention_id}/finalize", response_model=schemas.InterventionOut)
def finalize_intervention(
    intervention_id: UUID,
    payload: schemas.FinalizeInterventionRequest,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    timeout: Optional[float] = Depends(request_timeout),
):
    try:
        return intervention_workflow.finalize_intervention(
            db, intervention_id, payload, user, timeout_seconds=timeout
        )
    except WorkflowError as exc:
        raise _http_error(db, exc) from exc


@router.post(
    "/{intervention_id}/steps/{step_id}/advance",
    response_model=schemas.AdvanceStepResponse,
)
@rate_limit("120/minute")
def advance_step(
    request: Request,
    intervention_id: UUID,
    step_id: UUID,
    payload: schemas.AdvanceStepRequest,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    timeout: Optional[float] = Depends(request_timeout),
):
    try:
        return intervention_workflow.advance_step(
            db, intervention_id, step_id, payload, user, timeout_seconds=timeout
        )
    except WorkflowError as exc:
        raise _http_error(db, exc) from exc


@router.post(
    "/{intervention_id}/steps/{step_id}/transition",
    response_model=schemas.InterventionStepOut,
)
def transition_step(
    intervention_id: UUID,
    step_id: UUID,
    payload: schemas.StepTransitionRequest,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    timeout: Optional[float] = Depends(request_timeout),
):
    try:
        return intervention_workflow.transition_step(
            db, intervention_id, step_id, payload, user, timeout_seconds=timeout
        )
    except WorkflowError as exc:
        raise _http_error(db, exc) from exc


@router.post(
    "/{intervention_id}/steps/{step_id}/review",
    response_model=schemas.InterventionStepOut,
)
def review_step(
    intervention_id: UUID,
    step_id: UUID,
    payload: schemas.StepReviewRequest,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    timeout: Optional[float] = Depends(request_timeout),
):
    try:
        return intervention_workflow.review_step(
            db, intervention_id, step_id, payload, user, timeout_seconds=timeout
        )
    except WorkflowError as exc:
        raise _http_error(db, exc) from exc


@router.put("/steps/{step_id}/progress", response_model=schemas.InterventionStepOut)
@rate_limit("240/minute")
def save_step_progress(
    request: Request,
    step_id: UUID,
    payload: schemas.SaveStepProgressRequest,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    timeout: Optional[float] = Depends(request_timeout),
):
    try:
        return intervention_workflow.save_step_progress(db, step_id, payload, user, timeout_seconds=timeout)
    except WorkflowError as exc:
        raise _http_error(db, exc) from exc
