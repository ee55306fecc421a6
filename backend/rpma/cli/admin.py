"""CLI utilities for operators of the intervention service."""

# purpose: provision users and session tokens and re-queue report hand-offs without the HTTP surface
# status: production
# depends_on: rpma.database, rpma.auth, rpma.workers.reports

from __future__ import annotations

from datetime import timedelta
from uuid import UUID

import typer
from sqlalchemy.orm import Session

from .. import models
from ..auth import issue_session_token, revoke_session_token
from ..database import SessionLocal
from ..statuses import InterventionStatus, UserRole
from ..workers.reports import enqueue_intervention_report

app = typer.Typer(help="Intervention service maintenance commands")


def _find_user(session: Session, email: str) -> models.User:
    user = session.query(models.User).filter(models.User.email == email).first()
    if user is None:
        raise typer.BadParameter(f"No user with email {email}")
    return user


@app.command("create-user")
def create_user(
    email: str = typer.Option(..., help="Login email of the new user"),
    role: UserRole = typer.Option(UserRole.TECHNICIAN, help="Workflow role"),
    full_name: str = typer.Option("", help="Display name"),
) -> None:
    """Create a user account."""

    session = SessionLocal()
    try:
        if session.query(models.User).filter(models.User.email == email).first():
            raise typer.BadParameter(f"User {email} already exists")
        user = models.User(email=email, role=role, full_name=full_name or None)
        session.add(user)
        session.commit()
        typer.echo(f"Created {role.value} {email} ({user.id})")
    finally:
        session.close()


@app.command("issue-token")
def issue_token(
    email: str = typer.Option(..., help="Email of the user to authenticate"),
    ttl_hours: int = typer.Option(0, help="Session lifetime in hours; 0 uses SESSION_TTL_HOURS"),
) -> None:
    """Print a new bearer token for an active user."""

    session = SessionLocal()
    try:
        user = _find_user(session, email)
        if user.is_active is False:
            raise typer.BadParameter(f"User {email} is inactive")
        token = issue_session_token(
            session,
            user,
            ttl=timedelta(hours=ttl_hours) if ttl_hours > 0 else None,
        )
        typer.echo(token)
    finally:
        session.close()


@app.command("revoke-token")
def revoke_token(token: str = typer.Argument(..., help="Bearer token to revoke")) -> None:
    session = SessionLocal()
    try:
        if revoke_session_token(session, token):
            typer.echo("Session revoked")
        else:
            typer.echo("No active session for that token")
            raise typer.Exit(code=1)
    finally:
        session.close()


@app.command("requeue-report")
def requeue_report(intervention_id: str = typer.Argument(..., help="Completed intervention id")) -> None:
    """Dispatch the report hand-off again for a completed intervention."""

    try:
        identifier = UUID(intervention_id)
    except ValueError as exc:
        raise typer.BadParameter(f"{intervention_id} is not a valid id") from exc
    session = SessionLocal()
    try:
        intervention = session.get(models.Intervention, identifier)
        if intervention is None:
            raise typer.BadParameter(f"Intervention {intervention_id} not found")
        if intervention.status != InterventionStatus.COMPLETED:
            raise typer.BadParameter("Only completed interventions produce reports")
    finally:
        session.close()
    enqueue_intervention_report(identifier)
    typer.echo(f"Report queued for {intervention_id}")


if __name__ == "__main__":
    app()
