"""Idempotent ingestion of payment webhook events.

One event = one transaction:

    events.try_insert(event_id)   # dedup gate, first statement
    -> dispatch on event_type      # user upsert / status update / issue
    -> commit

If the gate loses (row already exists) the event was handled by an earlier
or concurrent delivery and nothing else runs. If any step after the gate
fails, the unit of work rolls back the gate row together with every other
write, so the processor's retry can complete the event.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from forkforge_api.auth.issuer import Clock, CredentialIssuer, utcnow
from forkforge_api.billing.key_delivery import KeyDeliverySink
from forkforge_api.errors import InvalidInput
from forkforge_api.stores.base import IssuedCredential, UnitOfWork

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"

PAID_STATUSES = frozenset({"paid", "no_payment_required"})

# Processor subscription status -> local subscription_status
_SUBSCRIPTION_STATUS_MAP = {
    "active": "active",
    "trialing": "active",
    "past_due": "past_due",
    "canceled": "cancelled",
    "unpaid": "cancelled",
}


class IngestResult(str, enum.Enum):
    PROCESSED = "processed"
    ALREADY_PROCESSED = "already_processed"
    IGNORED = "ignored"


@dataclass
class _Outcome:
    result: IngestResult
    issued: Optional[IssuedCredential] = None
    billing_ref: Optional[str] = None


def _event_object(payload: dict[str, Any]) -> dict[str, Any]:
    data = payload.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        raise InvalidInput("Event payload missing data.object")
    return obj


def _billing_ref(obj: dict[str, Any]) -> str:
    customer = obj.get("customer")
    if not isinstance(customer, str) or not customer:
        raise InvalidInput("Event payload missing data.object.customer")
    return customer


class EventIngestor:
    """Applies webhook events exactly once.

    Args:
        uow_factory: Opens one transaction per event
        issuer: Mints the credential for paid checkouts (joins the event's transaction)
        key_sink: Receives minted secrets after commit
        clock: Timestamp source for processed-event rows
    """

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        issuer: CredentialIssuer,
        key_sink: KeyDeliverySink,
        clock: Clock = utcnow,
    ):
        self._uow_factory = uow_factory
        self._issuer = issuer
        self._key_sink = key_sink
        self._clock = clock

    def ingest(self, event_id: str, event_type: str, payload: dict[str, Any]) -> IngestResult:
        """Process one webhook event.

        Returns:
            IngestResult.PROCESSED / ALREADY_PROCESSED / IGNORED

        Raises:
            InvalidInput: Recognised event with a malformed payload
            Conflict: Credential issuance hit the long-lived uniqueness constraint
            ExternalService: Store unavailable
        """
        if not event_id:
            raise InvalidInput("Event id is required")

        with self._uow_factory() as uow:
            if not uow.events.try_insert(event_id, self._clock()):
                logger.info(
                    "Webhook event already processed",
                    extra={
                        "event": "webhook.event.duplicate",
                        "event_id": event_id,
                        "event_type": event_type,
                    },
                )
                return IngestResult.ALREADY_PROCESSED

            outcome = self._dispatch(uow, event_type, payload)
            uow.commit()

        logger.info(
            "Webhook event processed",
            extra={
                "event": "webhook.event.processed",
                "event_id": event_id,
                "event_type": event_type,
                "result": outcome.result.value,
            },
        )

        # Only after commit: a rolled-back credential must never be delivered
        if outcome.issued is not None:
            self._deliver(outcome, event_id)

        return outcome.result

    def _deliver(self, outcome: _Outcome, event_id: str) -> None:
        # The event is already committed; a retry would be deduplicated and
        # never re-deliver, so the operator must revoke and reissue.
        try:
            self._key_sink.deliver(
                outcome.issued, billing_ref=outcome.billing_ref, event_id=event_id
            )
        except OSError:
            logger.error(
                "Key delivery failed; credential must be revoked and reissued",
                extra={
                    "event": "credential.delivery.failed",
                    "event_id": event_id,
                    "credential_id": outcome.issued.credential_id,
                },
                exc_info=True,
            )

    def _dispatch(self, uow: UnitOfWork, event_type: str, payload: dict[str, Any]) -> _Outcome:
        if event_type == CHECKOUT_COMPLETED:
            return self._checkout_completed(uow, payload)
        if event_type in (SUBSCRIPTION_CREATED, SUBSCRIPTION_UPDATED):
            return self._subscription_changed(uow, _event_object(payload))
        if event_type == SUBSCRIPTION_DELETED:
            return self._set_status(uow, _billing_ref(_event_object(payload)), "cancelled")
        if event_type == INVOICE_PAYMENT_FAILED:
            return self._set_status(uow, _billing_ref(_event_object(payload)), "past_due")

        logger.info(
            "Unhandled webhook event type",
            extra={"event": "webhook.event.ignored", "event_type": event_type},
        )
        return _Outcome(IngestResult.IGNORED)

    def _checkout_completed(self, uow: UnitOfWork, payload: dict[str, Any]) -> _Outcome:
        obj = _event_object(payload)
        payment_status = obj.get("payment_status")
        if payment_status not in PAID_STATUSES:
            logger.info(
                "Checkout not paid; no provisioning",
                extra={"event": "webhook.checkout.unpaid", "payment_status": payment_status},
            )
            return _Outcome(IngestResult.PROCESSED)

        billing_ref = _billing_ref(obj)
        user = uow.users.upsert_by_billing_ref(billing_ref)

        metadata = obj.get("metadata")
        tier = metadata.get("tier") if isinstance(metadata, dict) else None
        uow.users.update_subscription(
            user.id,
            status="active",
            tier=tier if isinstance(tier, str) and tier else None,
        )

        issued = self._issuer.issue(user.id, label="checkout", uow=uow)
        return _Outcome(IngestResult.PROCESSED, issued=issued, billing_ref=billing_ref)

    def _subscription_changed(self, uow: UnitOfWork, obj: dict[str, Any]) -> _Outcome:
        billing_ref = _billing_ref(obj)
        processor_status = obj.get("status")
        status = None
        if isinstance(processor_status, str):
            status = _SUBSCRIPTION_STATUS_MAP.get(processor_status)
        if status is None:
            # incomplete, paused, ...: transient, keep the current status
            logger.info(
                "Unmapped subscription status; status unchanged",
                extra={
                    "event": "webhook.subscription.status_unmapped",
                    "processor_status": processor_status,
                },
            )
            return _Outcome(IngestResult.PROCESSED)
        return self._set_status(uow, billing_ref, status)

    def _set_status(self, uow: UnitOfWork, billing_ref: str, status: str) -> _Outcome:
        user = uow.users.find_by_billing_ref(billing_ref)
        if user is None:
            logger.info(
                "Subscription event for unknown billing ref",
                extra={"event": "webhook.subscription.unknown_customer"},
            )
            return _Outcome(IngestResult.PROCESSED)

        uow.users.update_subscription(user.id, status=status)
        logger.info(
            "Subscription status updated",
            extra={
                "event": "subscription.status.updated",
                "owner_user_id": user.id,
                "subscription_status": status,
            },
        )
        return _Outcome(IngestResult.PROCESSED)
