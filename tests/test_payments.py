from io import BytesIO
from types import SimpleNamespace

import stripe

from tests.conftest import create_category, create_seller, login

SELLER_PHONE = "+912000000001"


def _configure(app_module, monkeypatch):
    monkeypatch.setitem(app_module.app.config, "STRIPE_SECRET_KEY", "sk_test")
    created = {}

    def fake_create(**kwargs):
        created.update(kwargs)
        return SimpleNamespace(id="cs_test_123", url="https://checkout.stripe.test/cs_test_123")

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    return created


def test_create_order_records_pending_payment(app_module, client, monkeypatch):
    created = _configure(app_module, monkeypatch)
    create_seller(app_module, SELLER_PHONE)
    login(client, app_module, SELLER_PHONE)

    resp = client.post("/api/payments/create-order")
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["sessionId"] == "cs_test_123"
    assert data["amount"] == 2500

    line = created["line_items"][0]
    assert line["price_data"]["unit_amount"] == 2500
    assert line["price_data"]["currency"] == "inr"

    with app_module.app.app_context():
        payment = app_module.db.session.get(app_module.Payment, data["paymentId"])
        assert payment.status == app_module.PaymentStatus.pending


def test_provider_failure_is_reported(app_module, client, monkeypatch):
    _configure(app_module, monkeypatch)

    def boom(**kwargs):
        raise stripe.StripeError("network")

    monkeypatch.setattr(stripe.checkout.Session, "create", boom)
    create_seller(app_module, SELLER_PHONE)
    login(client, app_module, SELLER_PHONE)

    resp = client.post("/api/payments/create-order")
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "Failed to create payment order"}


def test_paid_session_can_be_attached_to_one_listing(app_module, client, monkeypatch):
    _configure(app_module, monkeypatch)
    monkeypatch.setattr(
        stripe.checkout.Session, "retrieve",
        lambda session_id: SimpleNamespace(id=session_id, payment_status="paid", payment_intent="pi_1"),
    )
    create_seller(app_module, SELLER_PHONE)
    category = create_category(app_module)
    login(client, app_module, SELLER_PHONE)

    payment_id = client.post("/api/payments/create-order").get_json()["paymentId"]
    resp = client.post("/api/payments/verify", json={"sessionId": "cs_test_123"})
    assert resp.status_code == 200
    assert resp.get_json()["payment"]["status"] == "COMPLETED"

    def listing():
        return {
            "title": "Desk", "description": "Oak desk", "price": "4000", "condition": "Used",
            "category": str(category.id), "city": "Pune", "state": "Maharashtra", "pincode": "411001",
            "paymentId": str(payment_id),
            "images": [(BytesIO(b"\x89PNG0000"), "desk.png")],
        }

    assert client.post("/api/products", data=listing(), content_type="multipart/form-data").status_code == 201
    assert client.post("/api/products", data=listing(), content_type="multipart/form-data").status_code == 409


def test_unpaid_session_is_marked_failed(app_module, client, monkeypatch):
    _configure(app_module, monkeypatch)
    monkeypatch.setattr(
        stripe.checkout.Session, "retrieve",
        lambda session_id: SimpleNamespace(id=session_id, payment_status="unpaid"),
    )
    create_seller(app_module, SELLER_PHONE)
    login(client, app_module, SELLER_PHONE)

    payment_id = client.post("/api/payments/create-order").get_json()["paymentId"]
    resp = client.post("/api/payments/verify", json={"sessionId": "cs_test_123"})
    assert resp.status_code == 400

    assert client.get(f"/api/payments/{payment_id}").get_json()["payment"]["status"] == "FAILED"


def test_missing_stripe_key_is_a_dependency_error(app_module, client, monkeypatch):
    monkeypatch.setitem(app_module.app.config, "STRIPE_SECRET_KEY", None)
    create_seller(app_module, SELLER_PHONE)
    login(client, app_module, SELLER_PHONE)

    resp = client.post("/api/payments/create-order")
    assert resp.status_code == 500
