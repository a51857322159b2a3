from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from relay.config import Settings
from relay.currency import to_smallest_unit
from relay.errors import OrphanedTransactionError, UnknownProviderError, ValidationError
from relay.ledger import PaymentLedger
from relay.models import Payment, PaymentStatus, new_payment_id
from relay.providers import DEFAULT_PROVIDER, CustomerInfo, ProviderAdapter, get_provider

logger = structlog.get_logger(__name__)


@dataclass
class CheckoutResult:
    payment_id: str
    client_token: str
    provider: str
    amount: int
    currency: str


def _price(item: Dict[str, Any], index: int) -> Decimal:
    raw = item.get("price")
    if isinstance(raw, bool) or raw is None:
        raise ValidationError(f"Cart item {index} has no price")
    try:
        price = Decimal(str(raw).strip())
    except InvalidOperation:
        raise ValidationError(f"Cart item {index} has an invalid price") from None
    if not price.is_finite() or price <= 0:
        raise ValidationError(f"Cart item {index} must have a positive price")
    return price


def _quantity(item: Dict[str, Any], index: int) -> int:
    raw = item.get("quantity")
    if raw is None or raw == "" or raw == 0:
        return 1
    if isinstance(raw, bool):
        raise ValidationError(f"Cart item {index} has an invalid quantity")
    try:
        quantity = Decimal(str(raw).strip())
    except InvalidOperation:
        raise ValidationError(f"Cart item {index} has an invalid quantity") from None
    if not quantity.is_finite() or quantity != quantity.to_integral_value() or quantity <= 0:
        raise ValidationError(f"Cart item {index} must have a positive whole quantity")
    return int(quantity)


def snapshot_cart(cart: Any) -> List[Dict[str, Any]]:
    """Validate the cart and freeze it into the line items that get charged."""
    if not isinstance(cart, (list, tuple)) or len(cart) == 0:
        raise ValidationError("Cart is empty")

    snapshot = []
    for index, item in enumerate(cart):
        if not isinstance(item, dict):
            raise ValidationError(f"Cart item {index} is not an object")
        price = _price(item, index)
        snapshot.append({
            "id": item.get("id"),
            "title": item.get("title"),
            "price": str(price),
            "quantity": _quantity(item, index),
            "image": item.get("image"),
        })
    return snapshot


def cart_total(snapshot: Sequence[Dict[str, Any]]) -> Decimal:
    return sum((Decimal(line["price"]) * line["quantity"] for line in snapshot), Decimal(0))


class CheckoutOrchestrator:

    def __init__(self, providers: Dict[str, ProviderAdapter], settings: Settings):
        self.providers = providers
        self.settings = settings

    def _currency(self, currency: Optional[str]) -> str:
        code = (currency or self.settings.base_currency).strip().lower()
        if code not in (self.settings.base_currency, self.settings.alternate_currency):
            raise ValidationError(f"Unsupported currency: {code}")
        return code

    def create_checkout(
        self,
        session: Session,
        cart: Any,
        customer: CustomerInfo,
        currency: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> CheckoutResult:
        snapshot = snapshot_cart(cart)
        code = self._currency(currency)

        try:
            adapter = get_provider(self.providers, provider or DEFAULT_PROVIDER)
        except UnknownProviderError as e:
            raise ValidationError(str(e)) from e
        if adapter.requires_phone and not customer.phone:
            raise ValidationError(f"A phone number is required for {adapter.name}")

        amount = to_smallest_unit(
            cart_total(snapshot), code, self.settings.alternate_currency, self.settings.exchange_rate
        )
        if amount > self.settings.max_amount:
            raise ValidationError(f"Amount {amount} exceeds the maximum of {self.settings.max_amount}")
        payment_id = new_payment_id()

        handle = adapter.open_transaction(
            amount,
            code,
            customer,
            payment_id,
            metadata={"currency": code, "items": str(len(snapshot))},
        )

        try:
            PaymentLedger(session).insert(Payment(
                payment_id=payment_id,
                provider=adapter.name,
                provider_reference=handle.provider_reference,
                amount=amount,
                currency=code,
                status=PaymentStatus.PENDING.value,
                customer_name=customer.name or None,
                customer_phone=customer.phone or None,
                customer_email=customer.email or None,
                customer_address=customer.address or None,
                cart_snapshot=snapshot,
            ))
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(
                "orphaned_transaction",
                payment_id=payment_id,
                provider=adapter.name,
                provider_reference=handle.provider_reference,
                error=str(e),
            )
            raise OrphanedTransactionError(
                "Provider transaction opened but ledger write failed",
                provider=adapter.name,
                provider_reference=handle.provider_reference,
            ) from e

        logger.info("checkout_created", payment_id=payment_id, provider=adapter.name, amount=amount, currency=code)
        return CheckoutResult(
            payment_id=payment_id,
            client_token=handle.client_token,
            provider=adapter.name,
            amount=amount,
            currency=code,
        )
