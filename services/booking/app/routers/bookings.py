from typing import List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session
from app.core.auth_dependencies import get_current_actor
from app.core.database import get_db
from app.models.booking import BookingStatus, BookingType
from app.schemas.booking_schema import (
    AuthorizationOut,
    BookingCancelRequest,
    BookingCreate,
    BookingOperationOut,
    BookingOut,
    ErrorResponse,
    PaymentOut,
    PostBookingAnswers,
    QuoteCreate,
    QuoteResponse,
    RefundRequest,
    StatusUpdate,
)
from app.services import lifecycle, payments, state_machine
from app.services.actors import Actor
from .responses import build_context, error_response
from . import crud

router = APIRouter(prefix="/bookings", tags=["Bookings"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


def _operation_out(booking, warnings) -> BookingOperationOut:
    return BookingOperationOut(booking=BookingOut.model_validate(booking), warnings=list(warnings))


@router.post("/", response_model=BookingOut, status_code=201, responses=ERROR_RESPONSES)
def create_booking(
    payload: BookingCreate,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    ctx = build_context(request, db)
    result = state_machine.create_booking(ctx, actor, payload)
    if not result.ok:
        return error_response(result)
    return result.value


@router.get("/", response_model=List[BookingOut])
def list_bookings(
    status_param: Optional[str] = Query(None, alias="status"),
    booking_type: Optional[str] = Query(None),
    project_id: Optional[UUID] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    if status_param and status_param not in BookingStatus.ALL:
        raise HTTPException(400, "Invalid status")
    if booking_type and booking_type not in BookingType.ALL:
        raise HTTPException(400, "Invalid booking type")
    return crud.list_bookings(
        db,
        actor,
        status=status_param,
        booking_type=booking_type,
        project_id=project_id,
        limit=limit,
        offset=offset,
    )


@router.get("/{booking_id}", response_model=BookingOut, responses=ERROR_RESPONSES)
def get_booking(
    booking_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    result = state_machine.load_booking_for(build_context(request, db), booking_id, actor)
    if not result.ok:
        return error_response(result)
    return result.value


@router.post("/{booking_id}/quote", response_model=BookingOperationOut, responses=ERROR_RESPONSES)
def submit_quote(
    booking_id: UUID,
    payload: QuoteCreate,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    ctx = build_context(request, db)
    loaded = state_machine.load_booking_for(ctx, booking_id, actor)
    if not loaded.ok:
        return error_response(loaded)
    result = state_machine.submit_quote(ctx, loaded.value, actor, payload)
    if not result.ok:
        return error_response(result)
    return _operation_out(result.value, result.warnings)


@router.post("/{booking_id}/respond", responses=ERROR_RESPONSES)
def respond_to_quote(
    booking_id: UUID,
    payload: QuoteResponse,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    ctx = build_context(request, db)
    loaded = state_machine.load_booking_for(ctx, booking_id, actor)
    if not loaded.ok:
        return error_response(loaded)
    result = state_machine.respond_to_quote(ctx, loaded.value, actor, payload)
    if not result.ok:
        return error_response(result)

    decision = result.value
    body = _operation_out(decision.booking, result.warnings).model_dump(mode="json")
    if decision.authorization is not None:
        body["authorization"] = AuthorizationOut(**decision.authorization).model_dump(mode="json")
    return body


@router.patch("/{booking_id}/status", response_model=BookingOperationOut, responses=ERROR_RESPONSES)
def update_status(
    booking_id: UUID,
    payload: StatusUpdate,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    ctx = build_context(request, db)
    loaded = state_machine.load_booking_for(ctx, booking_id, actor)
    if not loaded.ok:
        return error_response(loaded)
    result = state_machine.update_status(ctx, loaded.value, actor, payload.status, note=payload.note)
    if not result.ok:
        return error_response(result)
    return _operation_out(result.value, result.warnings)


@router.post("/{booking_id}/cancel", response_model=BookingOperationOut, responses=ERROR_RESPONSES)
def cancel_booking(
    booking_id: UUID,
    payload: BookingCancelRequest,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    ctx = build_context(request, db)
    loaded = state_machine.load_booking_for(ctx, booking_id, actor)
    if not loaded.ok:
        return error_response(loaded)
    result = state_machine.cancel_booking(ctx, loaded.value, actor, reason=payload.reason)
    if not result.ok:
        return error_response(result)
    return _operation_out(result.value, result.warnings)


@router.post("/{booking_id}/payment-intent", response_model=AuthorizationOut, responses=ERROR_RESPONSES)
def create_payment_intent(
    booking_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    ctx = build_context(request, db)
    loaded = state_machine.load_booking_for(ctx, booking_id, actor)
    if not loaded.ok:
        return error_response(loaded)
    result = state_machine.request_authorization(ctx, loaded.value, actor)
    if not result.ok:
        return error_response(result)
    return result.value


@router.post("/{booking_id}/refund", response_model=PaymentOut, responses=ERROR_RESPONSES)
def refund_booking(
    booking_id: UUID,
    payload: RefundRequest,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    ctx = build_context(request, db)
    loaded = state_machine.load_booking_for(ctx, booking_id, actor)
    if not loaded.ok:
        return error_response(loaded)
    booking = loaded.value
    previous = booking.status
    result = payments.refund(ctx, booking, actor, amount=payload.amount, reason=payload.reason)
    if not result.ok:
        db.rollback()
        return error_response(result)
    db.commit()
    db.refresh(booking)
    lifecycle.announce_status_change(ctx, booking, previous, actor_id=actor.id)
    return booking.payment


@router.post("/{booking_id}/post-booking-answers", response_model=BookingOut, responses=ERROR_RESPONSES)
def submit_post_booking_answers(
    booking_id: UUID,
    payload: PostBookingAnswers,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    ctx = build_context(request, db)
    loaded = state_machine.load_booking_for(ctx, booking_id, actor)
    if not loaded.ok:
        return error_response(loaded)
    result = state_machine.submit_post_booking_answers(ctx, loaded.value, actor, payload)
    if not result.ok:
        return error_response(result)
    return result.value
