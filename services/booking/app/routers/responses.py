from fastapi import Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from app.services.context import BookingContext
from app.services.results import OperationResult, Outcome
from app.schemas.booking_schema import BookingConflict, ErrorResponse


STATUS_BY_OUTCOME = {
    Outcome.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    Outcome.AUTHORIZATION_ERROR: status.HTTP_403_FORBIDDEN,
    Outcome.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    Outcome.CONFLICT: status.HTTP_409_CONFLICT,
    Outcome.DEPENDENCY_FAILURE: status.HTTP_502_BAD_GATEWAY,
}


def error_response(result: OperationResult) -> JSONResponse:
    """Render a failed core result the same way for every endpoint."""
    payload = ErrorResponse(
        error=result.outcome.value,
        code=result.code,
        message=result.reason or "Request failed",
        conflicts=[BookingConflict(**conflict) for conflict in result.conflicts],
    )
    return JSONResponse(
        status_code=STATUS_BY_OUTCOME.get(result.outcome, status.HTTP_400_BAD_REQUEST),
        content=payload.model_dump(mode="json"),
    )


def build_context(request: Request, db: Session) -> BookingContext:
    state = request.app.state
    config = state.config
    return BookingContext(
        db=db,
        processor=state.payment_processor,
        publisher=getattr(state, "event_publisher", None),
        notifier=getattr(state, "notifier", None),
        commission_percent=config.payments.commission_percent,
        default_currency=config.payments.default_currency,
        environment=config.environment,
    )
