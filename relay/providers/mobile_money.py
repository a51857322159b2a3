"""
Mobile-money adapters.

Both providers push JSON callbacks signed with an HMAC over the raw body.
Neither integration has a live transaction API behind it yet, so
`open_transaction` issues a local reference and client token that the
customer-facing app uses to start the phone prompt.
"""
import hmac
import json
import secrets
from typing import Any, Dict, Mapping, Optional

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


def _load_json(payload: bytes) -> Dict[str, Any]:
    try:
        body = json.loads(payload)
    except (ValueError, UnicodeDecodeError) as e:
        raise NotificationParseError("Invalid payload") from e
    if not isinstance(body, dict):
        raise NotificationParseError("Invalid payload")
    return body


def _as_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class HmacSignedAdapter(ProviderAdapter):
    signature_header: str = ""
    digest: str = "sha256"
    reference_prefix: str = ""
    requires_phone = True

    def __init__(self, secret: str):
        self.secret = secret

    def sign(self, payload: bytes) -> str:
        return hmac.new(self.secret.encode("utf-8"), payload, self.digest).hexdigest()

    def verify_signature(self, payload: bytes, headers: Mapping[str, str]) -> None:
        if not self.secret:
            raise SignatureError(f"{self.name} webhook secret is not configured")

        signature = header(headers, self.signature_header)
        if not signature:
            raise SignatureError("Missing signature")

        if not hmac.compare_digest(self.sign(payload), signature.strip().lower()):
            raise SignatureError("Invalid signature")

    def open_transaction(
        self,
        amount: int,
        currency: str,
        customer: CustomerInfo,
        external_reference: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> ProviderHandle:
        if not customer.phone:
            raise ProviderError(f"{self.name} requires a phone number")

        handle = ProviderHandle(
            provider_reference=f"{self.reference_prefix}{secrets.token_hex(12)}",
            client_token=secrets.token_urlsafe(24),
        )
        logger.info(
            "mobile_money_transaction_opened",
            provider=self.name,
            payment_id=external_reference,
            provider_reference=handle.provider_reference,
            amount=amount,
            currency=currency,
        )
        return handle


class MobileMoneyAAdapter(HmacSignedAdapter):
    """Callback: {externalId, financialTransactionId, status, amount, currency}."""

    name = "mobile_money_a"
    signature_header = "X-Callback-Signature"
    digest = "sha256"
    reference_prefix = "mma_"

    STATUS = {
        "SUCCESSFUL": ProviderStatus.PAID,
        "FAILED": ProviderStatus.FAILED,
        "REJECTED": ProviderStatus.FAILED,
        "TIMEOUT": ProviderStatus.FAILED,
        "PENDING": ProviderStatus.PENDING,
    }

    def parse_notification(self, payload: bytes, headers: Mapping[str, str]) -> Optional[Notification]:
        self.verify_signature(payload, headers)
        body = _load_json(payload)

        token = str(body.get("status") or "")
        return Notification(
            external_reference=body.get("externalId"),
            provider_status=self.STATUS.get(token.upper(), ProviderStatus.OTHER),
            status_token=token,
            provider_reference=body.get("financialTransactionId"),
            amount=_as_int(body.get("amount")),
            currency=(body.get("currency") or "").lower() or None,
            raw=body,
        )


class MobileMoneyBAdapter(HmacSignedAdapter):
    """Callback: {event, data: {reference, id, status, amount, currency}}."""

    name = "mobile_money_b"
    signature_header = "X-Signature"
    digest = "sha512"
    reference_prefix = "mmb_"

    STATUS = {
        "success": ProviderStatus.PAID,
        "failed": ProviderStatus.FAILED,
        "abandoned": ProviderStatus.FAILED,
        "reversed": ProviderStatus.FAILED,
        "pending": ProviderStatus.PENDING,
        "ongoing": ProviderStatus.PENDING,
        "processing": ProviderStatus.PENDING,
    }

    def parse_notification(self, payload: bytes, headers: Mapping[str, str]) -> Optional[Notification]:
        self.verify_signature(payload, headers)
        body = _load_json(payload)

        data = body.get("data")
        if not isinstance(data, dict):
            raise NotificationParseError("Callback is missing data")

        token = str(data.get("status") or "")
        provider_reference = data.get("id")
        return Notification(
            external_reference=data.get("reference"),
            provider_status=self.STATUS.get(token.lower(), ProviderStatus.OTHER),
            status_token=token,
            provider_reference=str(provider_reference) if provider_reference is not None else None,
            amount=_as_int(data.get("amount")),
            currency=(data.get("currency") or "").lower() or None,
            raw=body,
        )
