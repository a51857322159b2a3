from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CheckoutRequest(BaseModel):
    # Line items stay loose here; the orchestrator owns cart validation.
    cart: List[Dict[str, Any]] = Field(default_factory=list)
    name: Optional[str] = ""
    phone: Optional[str] = ""
    address: Optional[str] = ""
    email: Optional[str] = ""
    currency: Optional[str] = None
    provider: Optional[str] = None


class CheckoutResponse(BaseModel):
    payment_id: str
    client_token: str
    provider: str
    amount: int
    currency: str


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    payment_id: str
    provider: str
    provider_reference: Optional[str] = None
    amount: int
    currency: str
    status: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    customer_address: Optional[str] = None
    cart_snapshot: List[Dict[str, Any]]
    order_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PaymentStatusResponse(BaseModel):
    status: str
    payment: PaymentOut
    amount_major: str


class ReconciliationOut(BaseModel):
    payment_id: Optional[str] = None
    status: Optional[str] = None
    transitioned: bool = False
    order_id: Optional[str] = None
    order_created: bool = False
    ignored: bool = False


class WebhookAck(ReconciliationOut):
    received: bool = True
