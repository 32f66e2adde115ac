"""Payment processor webhook handler.

Flow:
  raw body -> signature check (Stripe-Signature, raw bytes)
           -> JSON parse -> EventIngestor (one transaction per event)

Error taxonomy (retry storm prevention):
  (A) Signature missing / invalid / stale        -> 400 invalid_signature
  (B) Invalid JSON or malformed event            -> 400 invalid_input
  (C) Our misconfig (missing signing secret)     -> 500 webhook_provider_misconfig
  (D) Long-lived credential already exists       -> 409 conflict (rolled back)
  (E) Store unavailable after verification       -> 503 (rolled back, Retry-After)
Anything but 2xx makes the processor redeliver; 2xx means durably recorded.
"""

import json as _json
import logging
from typing import Callable

from fastapi import APIRouter, Depends, Header, Request
from starlette.concurrency import run_in_threadpool

from forkforge_api.auth.dependencies import get_clock, get_issuer
from forkforge_api.auth.issuer import Clock, CredentialIssuer
from forkforge_api.billing.ingestor import EventIngestor
from forkforge_api.billing.key_delivery import KeyDeliverySink, get_default_key_delivery_sink
from forkforge_api.billing.signature import verify_signature
from forkforge_api.config.env import get_webhook_secret, get_webhook_tolerance_seconds
from forkforge_api.db.session import get_uow_factory
from forkforge_api.errors import Internal, InvalidInput
from forkforge_api.schemas import WebhookAck
from forkforge_api.stores.base import UnitOfWork
from forkforge_api.utils.sanitize import payload_hash_bytes

router = APIRouter(prefix="/billing", tags=["billing"])
logger = logging.getLogger(__name__)


def get_key_delivery_sink() -> KeyDeliverySink:
    return get_default_key_delivery_sink()


def get_ingestor(
    uow_factory: Callable[[], UnitOfWork] = Depends(get_uow_factory),
    issuer: CredentialIssuer = Depends(get_issuer),
    key_sink: KeyDeliverySink = Depends(get_key_delivery_sink),
    clock: Clock = Depends(get_clock),
) -> EventIngestor:
    return EventIngestor(uow_factory, issuer, key_sink, clock=clock)


@router.post("/webhook", response_model=WebhookAck)
async def billing_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
    ingestor: EventIngestor = Depends(get_ingestor),
) -> WebhookAck:
    """Verify and ingest one payment processor event."""
    raw_body = await request.body()
    payload_hash = payload_hash_bytes(raw_body)

    try:
        shared_secret = get_webhook_secret()
    except ValueError:
        logger.error(
            "Webhook signing secret not configured",
            extra={"event": "webhook.misconfig", "payload_hash": payload_hash},
        )
        raise Internal(
            "Webhook signing secret not configured", code="webhook_provider_misconfig"
        ) from None

    verify_signature(
        raw_body,
        stripe_signature,
        shared_secret,
        tolerance=get_webhook_tolerance_seconds(),
    )

    try:
        event = _json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        raise InvalidInput("Webhook body is not valid JSON", code="invalid_json") from None
    if not isinstance(event, dict):
        raise InvalidInput("Webhook body must be a JSON object", code="invalid_json")

    event_id = event.get("id")
    event_type = event.get("type")
    if not isinstance(event_id, str) or not isinstance(event_type, str):
        raise InvalidInput("Event id and type are required")

    logger.info(
        "Webhook event received",
        extra={
            "event": "webhook.received",
            "event_id": event_id,
            "event_type": event_type,
            "payload_hash": payload_hash,
        },
    )

    result = await run_in_threadpool(ingestor.ingest, event_id, event_type, event)
    return WebhookAck(status=result.value)
