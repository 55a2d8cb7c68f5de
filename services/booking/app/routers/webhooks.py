import logging
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from app.core.database import get_db
from app.services import results, webhook_handlers
from app.services.payment_processor import WebhookSignatureError
from .responses import build_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


async def raw_body(request: Request) -> bytes:
    return await request.body()


@router.post("/stripe")
def stripe_webhook(request: Request, payload: bytes = Depends(raw_body), db: Session = Depends(get_db)):
    """Verify, deduplicate and apply a payment processor event.

    A 500 answer makes the processor redeliver; the failed claim is then
    picked up again. Runs in the worker threadpool; only the body read
    happens on the event loop.
    """
    signature = request.headers.get("stripe-signature")
    ctx = build_context(request, db)
    try:
        event = ctx.processor.construct_event(payload, signature)
    except WebhookSignatureError as exc:
        logger.warning("Rejected webhook: %s", exc)
        return JSONResponse(status_code=400, content={"received": False, "error": str(exc)})

    retention_days = request.app.state.config.webhooks.retention_days
    result = webhook_handlers.process_event(ctx, event, retention_days=retention_days)
    if result.outcome == results.Outcome.DUPLICATE:
        return {"received": True, "duplicate": True}
    if result.outcome == results.Outcome.VALIDATION_ERROR:
        return JSONResponse(status_code=400, content={"received": False, "error": result.reason})
    if not result.ok:
        return JSONResponse(status_code=500, content={"received": False, "error": result.reason})
    return {"received": True}
