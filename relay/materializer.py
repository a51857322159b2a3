from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from relay.ledger import PaymentLedger
from relay.models import Order, Payment, PaymentStatus

logger = structlog.get_logger(__name__)


def _contact(payment: Payment) -> str:
    return payment.customer_email or payment.customer_phone or "guest"


class OrderMaterializer:
    """Creates the durable order for a paid payment, at most once."""

    def __init__(self, session: Session, ledger: Optional[PaymentLedger] = None):
        self.session = session
        self.ledger = ledger or PaymentLedger(session)

    def materialize(self, payment_id: str) -> Optional[Order]:
        """Insert the order for `payment_id` and link it back to the payment.

        Returns None when the payment is not paid or already has an order.
        A unique-constraint rejection on `source_payment_id` means another
        invocation got there first; the existing order is returned instead.
        """
        payment = self.ledger.get(payment_id)
        if payment is None or payment.status != PaymentStatus.PAID.value or payment.order_id is not None:
            return None

        order = Order(
            source_payment_id=payment.payment_id,
            customer_contact=_contact(payment),
            customer_name=payment.customer_name,
            customer_phone=payment.customer_phone,
            customer_address=payment.customer_address,
            items=list(payment.cart_snapshot or []),
            total=payment.amount,
            currency=payment.currency,
            status="pending",
        )

        try:
            with self.session.begin_nested():
                self.session.add(order)
        except IntegrityError:
            logger.info("order_already_materialized", payment_id=payment_id)
            order = self.session.execute(
                select(Order).where(Order.source_payment_id == payment_id)
            ).scalar_one()

        self.ledger.attach_order(payment_id, order.order_id)
        logger.info("order_materialized", payment_id=payment_id, order_id=order.order_id)
        return order
