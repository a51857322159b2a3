from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from relay.auth import verify_token
from relay.currency import to_major_unit
from relay.database import get_db
from relay.errors import (
    CorrelationError,
    NotificationParseError,
    OrphanedTransactionError,
    ProviderError,
    SignatureError,
    StorageError,
    UnknownProviderError,
    ValidationError,
)
from relay.ledger import PaymentLedger
from relay.providers import CustomerInfo
from relay.schemas import (
    CheckoutRequest,
    CheckoutResponse,
    PaymentOut,
    PaymentStatusResponse,
    ReconciliationOut,
    WebhookAck,
)

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/")
def health():
    return {"ok": True, "now": datetime.now(timezone.utc).isoformat()}


@router.post("/checkout", response_model=CheckoutResponse)
def create_checkout(body: CheckoutRequest, request: Request, db: Session = Depends(get_db)):
    customer = CustomerInfo(
        name=body.name or "",
        phone=body.phone or "",
        email=body.email or "",
        address=body.address or "",
    )

    try:
        result = request.app.state.checkout.create_checkout(
            db, body.cart, customer, currency=body.currency, provider=body.provider
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ProviderError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except OrphanedTransactionError as e:
        raise HTTPException(
            status_code=500,
            detail={"error": str(e), "provider": e.provider, "provider_reference": e.provider_reference},
        )

    return CheckoutResponse(
        payment_id=result.payment_id,
        client_token=result.client_token,
        provider=result.provider,
        amount=result.amount,
        currency=result.currency,
    )


@router.get("/payment-status/{payment_id}", response_model=PaymentStatusResponse)
def payment_status(payment_id: str, request: Request, db: Session = Depends(get_db)):
    payment = PaymentLedger(db).get(payment_id)
    if payment is None:
        raise HTTPException(status_code=404, detail="Payment not found")

    settings = request.app.state.settings
    amount_major = to_major_unit(
        payment.amount, payment.currency, settings.alternate_currency, settings.exchange_rate
    )
    return PaymentStatusResponse(
        status=payment.status,
        payment=PaymentOut.model_validate(payment),
        amount_major=str(amount_major),
    )


@router.post("/payment-status/{payment_id}/refresh", response_model=ReconciliationOut)
def refresh_payment_status(
    payment_id: str,
    request: Request,
    db: Session = Depends(get_db),
    auth=Depends(verify_token),
):
    try:
        result = request.app.state.reconciler.poll(db, payment_id)
    except CorrelationError:
        raise HTTPException(status_code=404, detail="Payment not found")
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return ReconciliationOut(**result.as_dict())


async def _reconcile(request: Request, db: Session, provider: str) -> WebhookAck:
    payload = await request.body()

    try:
        result = await run_in_threadpool(
            request.app.state.reconciler.handle_webhook, db, provider, payload, request.headers
        )
    except UnknownProviderError:
        raise HTTPException(status_code=404, detail="Unknown provider")
    except SignatureError as e:
        logger.warning("webhook_signature_rejected", provider=provider, error=str(e))
        raise HTTPException(status_code=400, detail="Invalid signature")
    except NotificationParseError as e:
        logger.warning("webhook_payload_rejected", provider=provider, error=str(e))
        raise HTTPException(status_code=400, detail="Invalid payload")
    except CorrelationError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ProviderError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return WebhookAck(**result.as_dict())


@router.post("/webhook/{provider}", response_model=WebhookAck)
async def provider_webhook(provider: str, request: Request, db: Session = Depends(get_db)):
    return await _reconcile(request, db, provider)


@router.post("/webhook", response_model=WebhookAck)
async def card_webhook(request: Request, db: Session = Depends(get_db)):
    return await _reconcile(request, db, "card")
