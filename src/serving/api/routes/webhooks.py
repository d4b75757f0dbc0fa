"""
POS Webhook Endpoint

Receives signed POS notifications and hands the raw body to the
dispatcher. Status codes tell the POS whether to retry:
200 for applied / ignored deliveries, 400 for deliveries that will never
succeed, 500 for transient failures.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
import structlog

from src.database.connection import get_session_factory
from src.webhooks import WebhookDispatcher, WebhookStatus

logger = structlog.get_logger(__name__)
router = APIRouter()


def get_webhook_dispatcher() -> WebhookDispatcher:
    """Dispatcher bound to the global session factory"""
    return WebhookDispatcher(get_session_factory())


@router.post("/pos")
async def receive_pos_webhook(
    request: Request,
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
) -> JSONResponse:
    """
    Process one POS webhook delivery.

    The body is read as raw bytes; the signature covers them byte for byte.
    """
    raw_body = await request.body()

    try:
        outcome = await dispatcher.dispatch(request.headers, raw_body)
    except Exception as e:
        logger.error(
            "Webhook processing failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return JSONResponse({"status": "error", "error": "processing failed"}, status_code=500)

    if outcome.status == WebhookStatus.REJECTED:
        return JSONResponse({"status": "rejected", "error": outcome.reason}, status_code=400)

    body = {"status": "success" if outcome.status == WebhookStatus.APPLIED else "ignored"}
    if outcome.event_id:
        body["event_id"] = outcome.event_id
    return JSONResponse(body, status_code=200)
