import enum
import uuid

from sqlalchemy import JSON, BigInteger, Column, DateTime, ForeignKey, String, UniqueConstraint, func

from relay.database import Base


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    UNKNOWN = "unknown"


FINAL_STATUSES = (PaymentStatus.PAID.value, PaymentStatus.FAILED.value)


def new_payment_id() -> str:
    return f"pay_{uuid.uuid4().hex}"


def new_order_id() -> str:
    return f"ord_{uuid.uuid4().hex}"


class Payment(Base):
    __tablename__ = "payments"

    payment_id = Column(String, primary_key=True, default=new_payment_id)
    provider = Column(String, nullable=False)             # card | mobile_money_a | mobile_money_b
    provider_reference = Column(String, index=True)       # provider's own transaction id
    amount = Column(BigInteger, nullable=False)           # smallest currency unit
    currency = Column(String, nullable=False)
    status = Column(String, nullable=False, default=PaymentStatus.PENDING.value, index=True)

    customer_name = Column(String)
    customer_phone = Column(String)
    customer_email = Column(String)
    customer_address = Column(String)

    cart_snapshot = Column(JSON, nullable=False)
    provider_raw_data = Column(JSON)
    order_id = Column(String, unique=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("source_payment_id", name="uq_orders_source_payment_id"),
    )

    order_id = Column(String, primary_key=True, default=new_order_id)
    source_payment_id = Column(String, ForeignKey("payments.payment_id"), nullable=False)
    customer_contact = Column(String, nullable=False, default="guest")
    customer_name = Column(String)
    customer_phone = Column(String)
    customer_address = Column(String)
    items = Column(JSON, nullable=False)
    total = Column(BigInteger, nullable=False)            # smallest unit of `currency`
    currency = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending")  # fulfillment status
    created_at = Column(DateTime, server_default=func.now())
