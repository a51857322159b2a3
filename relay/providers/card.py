import json
from typing import Any, Dict, Mapping, Optional

import stripe
import structlog

from relay.errors import NotificationParseError, ProviderError, SignatureError
from relay.providers.base import (
    CustomerInfo,
    Notification,
    ProviderAdapter,
    ProviderHandle,
    ProviderStatus,
    header,
)

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "stripe-signature"

# Stripe rejects metadata values longer than this
METADATA_VALUE_LIMIT = 500

EVENT_STATUS = {
    "payment_intent.succeeded": ProviderStatus.PAID,
    "payment_intent.payment_failed": ProviderStatus.FAILED,
    "payment_intent.canceled": ProviderStatus.FAILED,
    "payment_intent.processing": ProviderStatus.PENDING,
    "payment_intent.created": ProviderStatus.PENDING,
    "payment_intent.requires_action": ProviderStatus.PENDING,
}

INTENT_STATUS = {
    "succeeded": ProviderStatus.PAID,
    "canceled": ProviderStatus.FAILED,
    "processing": ProviderStatus.PENDING,
    "requires_payment_method": ProviderStatus.PENDING,
    "requires_confirmation": ProviderStatus.PENDING,
    "requires_action": ProviderStatus.PENDING,
    "requires_capture": ProviderStatus.PENDING,
}


def _plain(obj: Any) -> Dict[str, Any]:
    # StripeObject renders itself as JSON
    if isinstance(obj, dict):
        return json.loads(json.dumps(obj, default=str))
    return json.loads(str(obj))


def _intent_notification(intent: Any, status: ProviderStatus, token: str, raw: Dict[str, Any]) -> Notification:
    metadata = intent.get("metadata") or {}
    return Notification(
        external_reference=metadata.get("payment_id"),
        provider_status=status,
        status_token=token,
        provider_reference=intent.get("id"),
        amount=intent.get("amount"),
        currency=intent.get("currency"),
        raw=raw,
    )


class CardGatewayAdapter(ProviderAdapter):
    """Stripe PaymentIntents."""

    name = "card"

    def __init__(self, api_key: str, webhook_secret: str):
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    def open_transaction(
        self,
        amount: int,
        currency: str,
        customer: CustomerInfo,
        external_reference: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> ProviderHandle:
        intent_metadata = dict(metadata or {})
        intent_metadata.update({
            "payment_id": external_reference,
            "name": customer.name,
            "phone": customer.phone,
            "address": customer.address,
            "email": customer.email,
        })
        intent_metadata = {key: str(value)[:METADATA_VALUE_LIMIT] for key, value in intent_metadata.items()}

        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=currency,
                metadata=intent_metadata,
                receipt_email=customer.email or None,
                automatic_payment_methods={"enabled": True},
                idempotency_key=external_reference,
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.error("card_transaction_open_failed", payment_id=external_reference, error=str(e))
            raise ProviderError(f"Card gateway rejected transaction: {e}") from e

        return ProviderHandle(provider_reference=intent.id, client_token=intent.client_secret)

    def verify_signature(self, payload: bytes, headers: Mapping[str, str]) -> Any:
        if not self.webhook_secret:
            raise SignatureError("Card webhook secret is not configured")

        signature = header(headers, SIGNATURE_HEADER)
        if not signature:
            raise SignatureError("Missing signature")

        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            raise NotificationParseError("Invalid payload") from e
        except stripe.SignatureVerificationError as e:
            raise SignatureError("Invalid signature") from e

    def parse_notification(self, payload: bytes, headers: Mapping[str, str]) -> Optional[Notification]:
        event = self.verify_signature(payload, headers)

        try:
            event_type = event["type"]
            intent = event["data"]["object"]
        except (KeyError, TypeError) as e:
            raise NotificationParseError("Event is missing type or data.object") from e

        if not event_type.startswith("payment_intent."):
            return None

        status = EVENT_STATUS.get(event_type, ProviderStatus.OTHER)
        return _intent_notification(intent, status, event_type, _plain(event))

    def fetch_status(self, provider_reference: str) -> Optional[Notification]:
        try:
            intent = stripe.PaymentIntent.retrieve(provider_reference, api_key=self.api_key)
        except stripe.StripeError as e:
            raise ProviderError(f"Card gateway status lookup failed: {e}") from e

        token = intent.get("status") or ""
        status = INTENT_STATUS.get(token, ProviderStatus.OTHER)
        return _intent_notification(intent, status, token, _plain(intent))
