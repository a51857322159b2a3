"""
Reconciliation engine.

Applies inbound provider notifications (webhooks or polling results) to the
payment ledger. Deliveries are assumed at-least-once and unordered, so every
step is idempotent per payment_id:

- finalized payments (paid/failed) only get their raw payload refreshed
- pending -> paid / failed happens through a compare-and-swap on status
- only the caller that wins pending -> paid materializes the order, and the
  unique constraint on orders.source_payment_id backs that up
"""
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from relay.errors import CorrelationError, StorageError
from relay.ledger import PaymentLedger
from relay.materializer import OrderMaterializer
from relay.models import FINAL_STATUSES, PaymentStatus
from relay.providers import Notification, ProviderAdapter, ProviderStatus, get_provider

logger = structlog.get_logger(__name__)

TARGET_STATUS = {
    ProviderStatus.PAID: PaymentStatus.PAID.value,
    ProviderStatus.FAILED: PaymentStatus.FAILED.value,
}


@dataclass
class ReconciliationResult:
    payment_id: Optional[str]
    status: Optional[str]
    transitioned: bool = False
    order_id: Optional[str] = None
    order_created: bool = False
    ignored: bool = False

    def as_dict(self) -> Dict[str, object]:
        return {
            "payment_id": self.payment_id,
            "status": self.status,
            "transitioned": self.transitioned,
            "order_id": self.order_id,
            "order_created": self.order_created,
            "ignored": self.ignored,
        }


class ReconciliationEngine:

    def __init__(self, providers: Dict[str, ProviderAdapter]):
        self.providers = providers

    def handle_webhook(
        self,
        session: Session,
        provider_name: str,
        payload: bytes,
        headers: Mapping[str, str],
    ) -> ReconciliationResult:
        """Verify, normalize and apply one webhook delivery."""
        adapter = get_provider(self.providers, provider_name)
        notification = adapter.parse_notification(payload, headers)

        if notification is None:
            logger.info("webhook_event_ignored", provider=provider_name)
            return ReconciliationResult(payment_id=None, status=None, ignored=True)

        return self.apply(session, provider_name, notification)

    def apply(self, session: Session, provider_name: str, notification: Notification) -> ReconciliationResult:
        """Apply a normalized notification as one atomic unit of work."""
        try:
            result = self._apply(session, provider_name, notification)
            session.commit()
        except CorrelationError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(
                "reconciliation_storage_failed",
                provider=provider_name,
                payment_id=notification.external_reference,
                error=str(e),
            )
            raise StorageError("Ledger update failed") from e

        logger.info("notification_applied", provider=provider_name, **result.as_dict())
        return result

    def _apply(self, session: Session, provider_name: str, notification: Notification) -> ReconciliationResult:
        ledger = PaymentLedger(session)
        payment_id = notification.external_reference

        if not payment_id:
            logger.warning("notification_missing_reference", provider=provider_name)
            raise CorrelationError("Notification carries no payment reference")

        payment = ledger.get(payment_id)
        if payment is None:
            logger.warning("notification_unknown_reference", provider=provider_name, payment_id=payment_id)
            raise CorrelationError(f"Unknown payment reference: {payment_id}")

        if payment.provider != provider_name:
            logger.warning(
                "notification_provider_mismatch",
                provider=provider_name,
                payment_provider=payment.provider,
                payment_id=payment_id,
            )
            raise CorrelationError(f"Payment {payment_id} does not belong to {provider_name}")

        ledger.record_raw(payment_id, notification.raw)

        if payment.status in FINAL_STATUSES:
            logger.info(
                "notification_for_final_payment",
                payment_id=payment_id,
                status=payment.status,
                provider_status=notification.provider_status.value,
            )
            return ReconciliationResult(payment_id=payment_id, status=payment.status, order_id=payment.order_id)

        target = TARGET_STATUS.get(notification.provider_status)
        if target is None:
            if notification.provider_status == ProviderStatus.OTHER:
                logger.warning(
                    "notification_unrecognized_status",
                    payment_id=payment_id,
                    status_token=notification.status_token,
                )
            return ReconciliationResult(payment_id=payment_id, status=payment.status, order_id=payment.order_id)

        if notification.provider_status == ProviderStatus.PAID:
            self._check_amount(payment, notification)

        transitioned = ledger.transition(payment_id, PaymentStatus.PENDING.value, target)

        order = None
        if transitioned and target == PaymentStatus.PAID.value:
            order = OrderMaterializer(session, ledger).materialize(payment_id)

        payment = ledger.get(payment_id)
        return ReconciliationResult(
            payment_id=payment_id,
            status=payment.status,
            transitioned=transitioned,
            order_id=payment.order_id,
            order_created=order is not None,
        )

    @staticmethod
    def _check_amount(payment, notification: Notification) -> None:
        amount_differs = notification.amount is not None and notification.amount != payment.amount
        currency_differs = (
            notification.currency is not None and notification.currency.lower() != payment.currency.lower()
        )
        if amount_differs or currency_differs:
            logger.warning(
                "notification_amount_mismatch",
                payment_id=payment.payment_id,
                expected_amount=payment.amount,
                expected_currency=payment.currency,
                notified_amount=notification.amount,
                notified_currency=notification.currency,
            )

    def poll(self, session: Session, payment_id: str) -> ReconciliationResult:
        """Ask the payment's provider for its status and apply the answer."""
        payment = PaymentLedger(session).get(payment_id)
        if payment is None:
            raise CorrelationError(f"Unknown payment reference: {payment_id}")

        current = ReconciliationResult(payment_id=payment_id, status=payment.status, order_id=payment.order_id)
        if payment.status in FINAL_STATUSES or not payment.provider_reference:
            return current

        adapter = get_provider(self.providers, payment.provider)
        notification = adapter.fetch_status(payment.provider_reference)
        if notification is None:
            logger.info("provider_status_unavailable", provider=payment.provider, payment_id=payment_id)
            return current

        # Polls correlate by our own record, whatever the provider echoes back.
        notification.external_reference = payment_id
        return self.apply(session, payment.provider, notification)
