import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import momo_a_body, sign_momo_a
from relay.errors import CorrelationError, SignatureError, UnknownProviderError
from relay.materializer import OrderMaterializer
from relay.models import Order, Payment
from relay.providers import Notification, ProviderStatus
from relay.reconciliation import ReconciliationEngine


def notification(payment_id, status=ProviderStatus.PAID, token="SUCCESSFUL"):
    return Notification(
        external_reference=payment_id,
        provider_status=status,
        status_token=token,
        provider_reference="mma-txn-1",
        raw={"externalId": payment_id, "status": token},
    )


@pytest.fixture
def engine(providers):
    return ReconciliationEngine(providers)


def _orders_for(factory, payment_id):
    db = factory()
    try:
        return db.query(Order).filter_by(source_payment_id=payment_id).all()
    finally:
        db.close()


def _payment(factory, payment_id):
    db = factory()
    try:
        return db.get(Payment, payment_id)
    finally:
        db.close()


@pytest.mark.parametrize("deliveries", [1, 2, 5])
def test_repeated_paid_notifications_create_one_order(engine, db_factory, make_payment, deliveries):
    payment_id = make_payment(db_factory, provider="mobile_money_a")

    results = []
    for _ in range(deliveries):
        db = db_factory()
        results.append(engine.apply(db, "mobile_money_a", notification(payment_id)))
        db.close()

    assert [r.transitioned for r in results] == [True] + [False] * (deliveries - 1)
    assert all(r.status == "paid" for r in results)
    orders = _orders_for(db_factory, payment_id)
    assert len(orders) == 1
    assert {r.order_id for r in results} == {orders[0].order_id}


def test_pending_notification_never_materializes(engine, db_factory, make_payment):
    payment_id = make_payment(db_factory, provider="mobile_money_a")

    db = db_factory()
    result = engine.apply(db, "mobile_money_a", notification(payment_id, ProviderStatus.PENDING, "PENDING"))
    db.close()

    assert result.status == "pending"
    assert result.order_id is None
    assert _orders_for(db_factory, payment_id) == []
    assert _payment(db_factory, payment_id).provider_raw_data == {"externalId": payment_id, "status": "PENDING"}


@pytest.mark.parametrize("final_status", ["paid", "failed"])
@pytest.mark.parametrize("incoming", [ProviderStatus.PAID, ProviderStatus.FAILED, ProviderStatus.PENDING])
def test_final_payments_are_immutable(engine, db_factory, make_payment, final_status, incoming):
    payment_id = make_payment(db_factory, provider="mobile_money_a", status=final_status, order_id=None)

    db = db_factory()
    result = engine.apply(db, "mobile_money_a", notification(payment_id, incoming, incoming.value))
    db.close()

    payment = _payment(db_factory, payment_id)
    assert result.transitioned is False
    assert result.order_created is False
    assert payment.status == final_status
    assert payment.order_id is None
    assert payment.provider_raw_data["status"] == incoming.value
    assert _orders_for(db_factory, payment_id) == []


def test_unknown_reference_touches_nothing(engine, db_factory, make_payment):
    payment_id = make_payment(db_factory, provider="mobile_money_a")

    db = db_factory()
    with pytest.raises(CorrelationError):
        engine.apply(db, "mobile_money_a", notification("pay_does_not_exist"))
    with pytest.raises(CorrelationError):
        engine.apply(db, "mobile_money_a", notification(None))
    db.close()

    db = db_factory()
    assert db.query(Payment).count() == 1
    assert db.query(Order).count() == 0
    db.close()
    assert _payment(db_factory, payment_id).provider_raw_data is None


def test_handle_webhook_verifies_before_parsing(engine, db_factory, make_payment):
    payment_id = make_payment(db_factory, provider="mobile_money_a")
    body = momo_a_body(payment_id)

    db = db_factory()
    with pytest.raises(SignatureError):
        engine.handle_webhook(db, "mobile_money_a", body, {})
    with pytest.raises(UnknownProviderError):
        engine.handle_webhook(db, "carrier_pigeon", body, sign_momo_a(body))
    result = engine.handle_webhook(db, "mobile_money_a", body, sign_momo_a(body))
    db.close()

    assert result.status == "paid"
    assert result.order_created is True


def test_concurrent_duplicate_paid_webhooks(engine, db_factory, make_payment):
    payment_id = make_payment(db_factory, provider="mobile_money_a")
    workers = 4
    barrier = threading.Barrier(workers)

    def deliver(_):
        db = db_factory()
        try:
            barrier.wait()
            return engine.apply(db, "mobile_money_a", notification(payment_id))
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(deliver, range(workers)))

    assert sum(r.transitioned for r in results) == 1
    assert sum(r.order_created for r in results) == 1
    assert all(r.status == "paid" for r in results)
    assert _payment(db_factory, payment_id).status == "paid"
    assert len(_orders_for(db_factory, payment_id)) == 1


def test_poll_without_provider_status_query_is_noop(engine, db_factory, make_payment):
    payment_id = make_payment(db_factory, provider="mobile_money_b")

    db = db_factory()
    result = engine.poll(db, payment_id)
    db.close()

    assert result.status == "pending"
    assert result.transitioned is False


def test_materializer_only_runs_for_paid_payments(db_factory, make_payment):
    payment_id = make_payment(db_factory, status="pending")

    db = db_factory()
    assert OrderMaterializer(db).materialize(payment_id) is None
    assert OrderMaterializer(db).materialize("pay_missing") is None
    db.close()
    assert _orders_for(db_factory, payment_id) == []


def test_unique_constraint_absorbs_duplicate_materialization(db_factory, make_payment):
    payment_id = make_payment(db_factory, status="paid")

    # An order exists but the payment was never linked to it.
    db = db_factory()
    db.add(Order(
        order_id="ord_existing",
        source_payment_id=payment_id,
        customer_contact="buyer@example.com",
        items=[],
        total=7000,
        currency="usd",
    ))
    db.commit()
    db.close()

    db = db_factory()
    order = OrderMaterializer(db).materialize(payment_id)
    db.commit()
    db.close()

    assert order.order_id == "ord_existing"
    assert _payment(db_factory, payment_id).order_id == "ord_existing"
    assert len(_orders_for(db_factory, payment_id)) == 1


def test_materializer_skips_payment_with_order(db_factory, make_payment):
    payment_id = make_payment(db_factory, status="paid", order_id="ord_linked")

    db = db_factory()
    assert OrderMaterializer(db).materialize(payment_id) is None
    db.close()


def test_paid_notification_with_mismatched_amount_is_logged(engine, db_factory, make_payment, mocker):
    payment_id = make_payment(db_factory, provider="mobile_money_a", amount=7000, currency="usd")
    logger = mocker.patch("relay.reconciliation.logger")
    paid = notification(payment_id)
    paid.amount = 100
    paid.currency = "ghs"

    db = db_factory()
    result = engine.apply(db, "mobile_money_a", paid)
    db.close()

    assert result.status == "paid"
    logger.warning.assert_any_call(
        "notification_amount_mismatch",
        payment_id=payment_id,
        expected_amount=7000,
        expected_currency="usd",
        notified_amount=100,
        notified_currency="ghs",
    )


def test_paid_notification_with_matching_amount_is_not_flagged(engine, db_factory, make_payment, mocker):
    payment_id = make_payment(db_factory, provider="mobile_money_a", amount=7000, currency="usd")
    logger = mocker.patch("relay.reconciliation.logger")
    paid = notification(payment_id)
    paid.amount = 7000
    paid.currency = "USD"

    db = db_factory()
    engine.apply(db, "mobile_money_a", paid)
    db.close()

    events = [c.args[0] for c in logger.warning.call_args_list]
    assert "notification_amount_mismatch" not in events
