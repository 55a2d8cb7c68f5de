from typing import List
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session
from app.core.auth_dependencies import get_current_actor, require_admin
from app.core.database import get_db
from app.models.resource import Resource
from app.schemas.booking_schema import ErrorResponse
from app.schemas.resource_schema import BlockedRangeCreate, BlockedRangeOut, ResourceOut, ResourceUpsert
from app.services import blocking
from app.services.actors import Actor
from .responses import error_response
from . import crud

router = APIRouter(prefix="/resources", tags=["Resources"])


@router.put("/{resource_id}", response_model=ResourceOut)
def upsert_resource(
    resource_id: UUID,
    payload: ResourceUpsert,
    db: Session = Depends(get_db),
    admin: Actor = Depends(require_admin),
):
    """Sync a professional or employee from the user directory (admin only)."""
    return crud.upsert_resource(db, resource_id, payload)


@router.get("/{resource_id}/blocked-ranges", response_model=List[BlockedRangeOut])
def list_blocked_ranges(
    resource_id: UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    if db.get(Resource, resource_id) is None:
        raise HTTPException(status_code=404, detail="Resource not found")
    return crud.list_blocked_ranges(db, resource_id)


@router.post(
    "/{resource_id}/blocked-ranges",
    response_model=BlockedRangeOut,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def add_blocked_range(
    resource_id: UUID,
    payload: BlockedRangeCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    result = blocking.add_manual_block(db, resource_id, payload.start_date, payload.end_date, payload.reason, actor)
    if not result.ok:
        db.rollback()
        return error_response(result)
    db.commit()
    db.refresh(result.value)
    return result.value


@router.delete(
    "/{resource_id}/blocked-ranges/{range_id}",
    status_code=204,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def remove_blocked_range(
    resource_id: UUID,
    range_id: UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    result = blocking.remove_manual_block(db, resource_id, range_id, actor)
    if not result.ok:
        db.rollback()
        return error_response(result)
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
