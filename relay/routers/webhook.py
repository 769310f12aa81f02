import hmac
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from starlette.requests import ClientDisconnect

from relay.config import Settings
from relay.dependencies import get_pipeline, get_settings
from relay.logging_config import get_logger
from relay.schemas.webhook import WebhookAck
from relay.services.pipeline import MessagePipeline

logger = get_logger("webhook")

router = APIRouter()

SIGNATURE_HEADERS = ("X-Webhook-Signature", "X-Webhook-Secret")


def _get_request_signature(request: Request) -> Optional[str]:
    for header in SIGNATURE_HEADERS:
        value = request.headers.get(header)
        if value:
            return value.strip()
    return None


def verify_signature(expected: Optional[str], provided: Optional[str]) -> bool:
    """Shared-secret check; always passes when no secret is configured."""
    if not expected:
        return True
    if not provided:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


async def _read_json_object(request: Request) -> dict:
    try:
        payload = await request.json()
    except ClientDisconnect:
        logger.info("Webhook client disconnected during read")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Client disconnected")
    except ValueError as exc:
        raw = await request.body()
        logger.warning(
            "Webhook payload is not valid JSON",
            extra={"context": {"error": str(exc), "body_preview": raw[:200].decode("utf-8", "ignore")}},
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")

    if not isinstance(payload, dict):
        logger.warning("Webhook payload is not an object", extra={"context": {"type": type(payload).__name__}})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload format")
    return payload


@router.post("/webhook", response_model=WebhookAck)
async def handle_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    pipeline: MessagePipeline = Depends(get_pipeline),
):
    """Validate, acknowledge, and hand the body to a background pipeline task."""
    if not verify_signature(settings.webhook_secret, _get_request_signature(request)):
        logger.warning("Webhook signature rejected")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    payload = await _read_json_object(request)
    logger.info(
        "Webhook received",
        extra={"context": {"event": payload.get("event"), "payload_keys": list(payload.keys())[:20]}},
    )
    pipeline.schedule(payload)
    return WebhookAck(received=True)


@router.get("/webhook")
async def handle_webhook_check():
    """Answers platform UI reachability checks; real deliveries must use POST."""
    return {"ok": True, "message": "Use POST with JSON payload"}
