"""
Payment ledger: the single source of truth for payment lifecycle state.

Every status change goes through `transition`, a compare-and-swap on the
`status` column, so exactly one concurrent caller can move a payment out of
a given state no matter how many service instances share the database.
"""
from typing import Any, Optional

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from relay.models import Payment

logger = structlog.get_logger(__name__)


class PaymentLedger:
    """Ledger access bound to one unit-of-work session."""

    def __init__(self, session: Session):
        self.session = session

    def insert(self, payment: Payment) -> Payment:
        self.session.add(payment)
        self.session.flush()
        logger.info(
            "payment_recorded",
            payment_id=payment.payment_id,
            provider=payment.provider,
            amount=payment.amount,
            currency=payment.currency,
        )
        return payment

    def get(self, payment_id: str) -> Optional[Payment]:
        # Always reload: conditional updates bypass the identity map.
        return self.session.get(Payment, payment_id, populate_existing=True)

    def transition(self, payment_id: str, expected: str, new: str) -> bool:
        """Move `payment_id` from `expected` to `new` status.

        Returns True only for the caller whose update actually matched.
        """
        result = self.session.execute(
            update(Payment)
            .where(Payment.payment_id == payment_id, Payment.status == expected)
            .values(status=new)
            .execution_options(synchronize_session=False)
        )
        swapped = result.rowcount == 1
        if swapped:
            logger.info("payment_transitioned", payment_id=payment_id, from_status=expected, to_status=new)
        else:
            logger.info("payment_transition_skipped", payment_id=payment_id, expected=expected, wanted=new)
        return swapped

    def record_raw(self, payment_id: str, raw: Any) -> None:
        self.session.execute(
            update(Payment)
            .where(Payment.payment_id == payment_id)
            .values(provider_raw_data=raw)
            .execution_options(synchronize_session=False)
        )

    def attach_order(self, payment_id: str, order_id: str) -> bool:
        """Set the order back-reference once; never overwrites an existing one."""
        result = self.session.execute(
            update(Payment)
            .where(Payment.payment_id == payment_id, Payment.order_id.is_(None))
            .values(order_id=order_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
