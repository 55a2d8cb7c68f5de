from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from app.core.auth_dependencies import get_current_actor, require_admin
from app.core.database import get_db
from app.schemas.booking_schema import ErrorResponse
from app.schemas.project_schema import ProjectOut, ProjectUpsert, ScheduleProposalOut, ScheduleWindowOut
from app.services.actors import Actor
from app.services.scheduling import build_schedule_proposal
from .responses import error_response
from . import crud

router = APIRouter(prefix="/projects", tags=["Projects"])


@router.put("/{project_id}", response_model=ProjectOut)
def upsert_project(
    project_id: UUID,
    payload: ProjectUpsert,
    db: Session = Depends(get_db),
    admin: Actor = Depends(require_admin),
):
    """Sync a project from the project directory (admin only)."""
    return crud.upsert_project(db, project_id, payload)


@router.get(
    "/{project_id}/schedule",
    response_model=ScheduleProposalOut,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def get_schedule_proposal(
    project_id: UUID,
    subproject_index: Optional[int] = Query(None, ge=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """First window at or after the earliest bookable date that the project's resources can take."""
    result = build_schedule_proposal(db, crud.get_project(db, project_id), subproject_index)
    if not result.ok:
        return error_response(result)
    proposal = result.value
    return ScheduleProposalOut(
        earliest_bookable=proposal["earliest_bookable"],
        execution_unit=proposal["execution_unit"],
        window=ScheduleWindowOut.model_validate(proposal["window"]),
        assigned_resources=proposal["assigned_resources"],
    )
