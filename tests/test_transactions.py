"""Tests for POS transactions: billing, payment, voids and daily sales."""
from __future__ import annotations

from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from app.extensions import db
from app.models import (Appointment, ClientLoyalty, Product, Promotion,
                        PromotionUsage, Transaction)


@pytest.fixture
def pos(make_branch, make_user, make_service, make_product):
    branch = make_branch()
    return SimpleNamespace(
        branch=branch,
        receptionist=make_user("receptionist", branch),
        stylist=make_user("stylist", branch, name="Bea Stylist"),
        client=make_user("client", name="Ana Client"),
        service=make_service(branch, "Haircut", price_cents=50000, duration_minutes=60),
        product=make_product(branch, "Shampoo", price_cents=25000, stock_quantity=10),
    )


@pytest.fixture
def stripe_mock():
    """Mock Stripe API calls."""
    with patch("app.routes_extended.stripe") as mock_stripe:
        mock_intent = MagicMock()
        mock_intent.id = "pi_test123"
        mock_intent.client_secret = "pi_test123_secret_abc"
        mock_intent.amount = 50000
        mock_intent.status = "succeeded"

        mock_stripe.PaymentIntent.create.return_value = mock_intent
        mock_stripe.PaymentIntent.retrieve.return_value = mock_intent
        mock_stripe.error.StripeError = Exception

        yield mock_stripe


def _open_bill(client, headers, pos, items=None, **extra):
    payload = {
        "branch_id": pos.branch.branch_id,
        "client_id": pos.client.user_id,
        "items": items
        or [{"type": "service", "service_id": pos.service.service_id, "stylist_id": pos.stylist.user_id}],
    }
    payload.update(extra)
    return client.post("/transactions", headers=headers, json=payload)


def _product_items(pos, quantity=2):
    return [{"type": "product", "product_id": pos.product.product_id, "quantity": quantity}]


def test_create_service_bill(client, pos, auth_header) -> None:
    response = _open_bill(client, auth_header(pos.receptionist), pos)
    data = response.get_json()["transaction"]

    assert response.status_code == 201
    assert data["status"] == "in_service"
    assert data["transaction_type"] == "service"
    assert data["subtotal_cents"] == 50000
    assert data["total_cents"] == 50000
    assert data["client_info"]["name"] == "Ana Client"
    assert data["items"][0]["stylist_name"] == "Bea Stylist"


def test_product_only_bill_is_product_type(client, pos, auth_header) -> None:
    response = _open_bill(client, auth_header(pos.receptionist), pos, items=_product_items(pos))
    data = response.get_json()["transaction"]

    assert response.status_code == 201
    assert data["transaction_type"] == "product"
    assert data["total_cents"] == 50000


def test_create_bill_checks_stock(client, pos, auth_header) -> None:
    response = _open_bill(client, auth_header(pos.receptionist), pos, items=_product_items(pos, quantity=11))

    assert response.status_code == 400
    assert response.get_json()["error"] == "validation_failed"


def test_create_bill_rejects_empty_items(client, pos, auth_header) -> None:
    response = client.post(
        "/transactions", headers=auth_header(pos.receptionist), json={"branch_id": pos.branch.branch_id, "items": []}
    )

    assert response.status_code == 400


def test_stylist_cannot_bill(client, pos, auth_header) -> None:
    response = _open_bill(client, auth_header(pos.stylist), pos)

    assert response.status_code == 403


def test_staff_of_other_branch_cannot_bill(client, pos, make_branch, make_user, auth_header) -> None:
    outsider = make_user("receptionist", make_branch("Other"))

    response = _open_bill(client, auth_header(outsider), pos)

    assert response.status_code == 403


def test_promotion_code_discount_and_usage(client, pos, auth_header) -> None:
    now = datetime.now()
    promotion = Promotion(
        branch_id=pos.branch.branch_id,
        code="SAVE10",
        title="Ten off",
        discount_type="percentage",
        discount_value=10,
        applicable_to="all",
        start_date=now - timedelta(days=1),
        end_date=now + timedelta(days=1),
        is_active=True,
        usage_type="one-time",
        usage_count=0,
    )
    db.session.add(promotion)
    db.session.commit()
    headers = auth_header(pos.receptionist)

    response = _open_bill(client, headers, pos, promotion_code="SAVE10")
    data = response.get_json()["transaction"]
    assert response.status_code == 201
    assert data["discount_cents"] == 5000
    assert data["total_cents"] == 45000

    response = client.post(
        f"/transactions/{data['id']}/pay",
        headers=headers,
        json={"payment_method": "cash", "amount_received_cents": 45000},
    )
    assert response.status_code == 200
    assert db.session.get(Promotion, promotion.promotion_id).usage_count == 1
    assert db.session.query(PromotionUsage).filter_by(client_id=pos.client.user_id).count() == 1

    response = _open_bill(client, headers, pos, promotion_code="SAVE10")
    assert response.status_code == 400
    assert response.get_json()["message"] == "You have already used this promotion"


def test_unknown_promotion_code(client, pos, auth_header) -> None:
    response = _open_bill(client, auth_header(pos.receptionist), pos, promotion_code="NOPE")

    assert response.status_code == 400
    assert response.get_json()["message"] == "Invalid promotion code"


def test_cash_payment_returns_change(client, pos, auth_header) -> None:
    headers = auth_header(pos.receptionist)
    tx_id = _open_bill(client, headers, pos).get_json()["transaction"]["id"]

    response = client.post(
        f"/transactions/{tx_id}/pay", headers=headers, json={"payment_method": "cash", "amount_received_cents": 40000}
    )
    assert response.status_code == 400

    response = client.post(
        f"/transactions/{tx_id}/pay", headers=headers, json={"payment_method": "cash", "amount_received_cents": 60000}
    )
    data = response.get_json()

    assert response.status_code == 200
    assert data["transaction"]["status"] == "paid"
    assert data["transaction"]["change_cents"] == 10000
    assert data["receipt"]["receipt_number"] == f"TX-{tx_id:06d}"

    response = client.post(
        f"/transactions/{tx_id}/pay", headers=headers, json={"payment_method": "cash", "amount_received_cents": 60000}
    )
    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_transition"


def test_service_payment_earns_no_loyalty(client, pos, auth_header) -> None:
    headers = auth_header(pos.receptionist)
    tx_id = _open_bill(client, headers, pos).get_json()["transaction"]["id"]

    client.post(f"/transactions/{tx_id}/pay", headers=headers, json={"payment_method": "digital"})

    assert db.session.get(Transaction, tx_id).loyalty_points_earned == 0
    assert db.session.query(ClientLoyalty).count() == 0


def test_product_payment_earns_loyalty_and_deducts_stock(client, pos, auth_header) -> None:
    headers = auth_header(pos.receptionist)
    tx_id = _open_bill(client, headers, pos, items=_product_items(pos)).get_json()["transaction"]["id"]

    response = client.post(
        f"/transactions/{tx_id}/pay", headers=headers, json={"payment_method": "cash", "amount_received_cents": 50000}
    )

    assert response.status_code == 200
    assert response.get_json()["transaction"]["loyalty_points_earned"] == 5
    loyalty = db.session.query(ClientLoyalty).filter_by(client_id=pos.client.user_id).one()
    assert loyalty.points_balance == 5
    assert loyalty.branch_id == pos.branch.branch_id
    assert db.session.get(Product, pos.product.product_id).stock_quantity == 8


def test_loyalty_disabled_branch_earns_nothing(client, pos, auth_header) -> None:
    pos.branch.loyalty_enabled = False
    db.session.commit()
    headers = auth_header(pos.receptionist)
    tx_id = _open_bill(client, headers, pos, items=_product_items(pos)).get_json()["transaction"]["id"]

    client.post(f"/transactions/{tx_id}/pay", headers=headers, json={"payment_method": "digital"})

    assert db.session.get(Transaction, tx_id).loyalty_points_earned == 0


def test_card_payment_verifies_intent(client, pos, auth_header, stripe_mock) -> None:
    headers = auth_header(pos.receptionist)
    tx_id = _open_bill(client, headers, pos).get_json()["transaction"]["id"]

    response = client.post(f"/transactions/{tx_id}/pay", headers=headers, json={"payment_method": "card"})
    assert response.status_code == 400

    response = client.post(
        f"/transactions/{tx_id}/pay",
        headers=headers,
        json={"payment_method": "card", "payment_intent_id": "pi_test123"},
    )

    assert response.status_code == 200
    assert response.get_json()["transaction"]["gateway_payment_id"] == "pi_test123"
    stripe_mock.PaymentIntent.retrieve.assert_called_once_with("pi_test123")


def test_card_payment_not_succeeded(client, pos, auth_header, stripe_mock) -> None:
    stripe_mock.PaymentIntent.retrieve.return_value.status = "requires_payment_method"
    headers = auth_header(pos.receptionist)
    tx_id = _open_bill(client, headers, pos).get_json()["transaction"]["id"]

    response = client.post(
        f"/transactions/{tx_id}/pay",
        headers=headers,
        json={"payment_method": "card", "payment_intent_id": "pi_test123"},
    )

    assert response.status_code == 400
    assert response.get_json()["error"] == "payment_error"
    assert db.session.get(Transaction, tx_id).status == "in_service"


def test_payment_intent_reused_conflicts(client, pos, auth_header, stripe_mock) -> None:
    headers = auth_header(pos.receptionist)
    first = _open_bill(client, headers, pos).get_json()["transaction"]["id"]
    second = _open_bill(client, headers, pos).get_json()["transaction"]["id"]
    body = {"payment_method": "card", "payment_intent_id": "pi_test123"}

    assert client.post(f"/transactions/{first}/pay", headers=headers, json=body).status_code == 200

    response = client.post(f"/transactions/{second}/pay", headers=headers, json=body)
    assert response.status_code == 409


def test_create_payment_intent(client, pos, auth_header, stripe_mock) -> None:
    headers = auth_header(pos.receptionist)
    tx_id = _open_bill(client, headers, pos).get_json()["transaction"]["id"]

    response = client.post(f"/transactions/{tx_id}/payment-intent", headers=headers)
    data = response.get_json()

    assert response.status_code == 200
    assert data == {"client_secret": "pi_test123_secret_abc", "payment_intent_id": "pi_test123"}
    kwargs = stripe_mock.PaymentIntent.create.call_args.kwargs
    assert kwargs["amount"] == 50000
    assert kwargs["currency"] == "php"
    assert kwargs["metadata"]["transaction_id"] == str(tx_id)


def test_payment_intent_gateway_error(client, pos, auth_header, stripe_mock) -> None:
    stripe_mock.PaymentIntent.create.side_effect = Exception("card network down")
    headers = auth_header(pos.receptionist)
    tx_id = _open_bill(client, headers, pos).get_json()["transaction"]["id"]

    response = client.post(f"/transactions/{tx_id}/payment-intent", headers=headers)

    assert response.status_code == 502
    assert response.get_json()["error"] == "payment_error"


def test_payment_intent_without_stripe_key(app, client, pos, auth_header) -> None:
    app.config["STRIPE_SECRET_KEY"] = None
    headers = auth_header(pos.receptionist)
    tx_id = _open_bill(client, headers, pos).get_json()["transaction"]["id"]

    response = client.post(f"/transactions/{tx_id}/payment-intent", headers=headers)

    assert response.status_code == 500
    assert response.get_json()["error"] == "server_error"


def test_paying_completes_in_progress_appointment(client, pos, auth_header) -> None:
    starts_at = datetime(2030, 1, 14, 10, 0)
    appointment = Appointment(
        branch_id=pos.branch.branch_id,
        stylist_id=pos.stylist.user_id,
        client_id=pos.client.user_id,
        starts_at=starts_at,
        ends_at=starts_at + timedelta(hours=1),
        status="in_progress",
    )
    db.session.add(appointment)
    db.session.commit()
    headers = auth_header(pos.receptionist)

    tx_id = _open_bill(client, headers, pos, appointment_id=appointment.appointment_id).get_json()["transaction"]["id"]
    response = client.post(f"/transactions/{tx_id}/pay", headers=headers, json={"payment_method": "digital"})

    assert response.status_code == 200
    refreshed = db.session.get(Appointment, appointment.appointment_id)
    assert refreshed.status == "completed"
    assert refreshed.history[-1].action == "status_changed_to_completed"


def test_paying_leaves_scheduled_appointment_alone(client, pos, auth_header) -> None:
    starts_at = datetime(2030, 1, 14, 10, 0)
    appointment = Appointment(
        branch_id=pos.branch.branch_id,
        stylist_id=pos.stylist.user_id,
        client_id=pos.client.user_id,
        starts_at=starts_at,
        ends_at=starts_at + timedelta(hours=1),
        status="scheduled",
    )
    db.session.add(appointment)
    db.session.commit()
    headers = auth_header(pos.receptionist)

    tx_id = _open_bill(client, headers, pos, appointment_id=appointment.appointment_id).get_json()["transaction"]["id"]
    response = client.post(f"/transactions/{tx_id}/pay", headers=headers, json={"payment_method": "digital"})

    assert response.status_code == 200
    assert db.session.get(Appointment, appointment.appointment_id).status == "scheduled"


def test_void_reverses_loyalty_and_stock(client, pos, auth_header) -> None:
    headers = auth_header(pos.receptionist)
    tx_id = _open_bill(client, headers, pos, items=_product_items(pos)).get_json()["transaction"]["id"]
    client.post(f"/transactions/{tx_id}/pay", headers=headers, json={"payment_method": "digital"})

    response = client.post(f"/transactions/{tx_id}/void", headers=headers, json={})
    assert response.status_code == 400

    response = client.post(
        f"/transactions/{tx_id}/void", headers=headers, json={"reason": "Wrong item", "notes": "Customer returned it"}
    )
    data = response.get_json()["transaction"]

    assert response.status_code == 200
    assert data["status"] == "voided"
    assert data["void_reason"] == "Wrong item"
    assert data["voided_by"] == pos.receptionist.user_id
    assert db.session.get(Product, pos.product.product_id).stock_quantity == 10
    assert db.session.query(ClientLoyalty).one().points_balance == 0

    response = client.post(f"/transactions/{tx_id}/void", headers=headers, json={"reason": "Again"})
    assert response.status_code == 400
    assert response.get_json()["message"] == "Transaction is already voided"


def test_void_never_drives_points_negative(client, pos, auth_header) -> None:
    headers = auth_header(pos.receptionist)
    tx_id = _open_bill(client, headers, pos, items=_product_items(pos)).get_json()["transaction"]["id"]
    client.post(f"/transactions/{tx_id}/pay", headers=headers, json={"payment_method": "digital"})
    loyalty = db.session.query(ClientLoyalty).one()
    loyalty.points_balance = 2
    db.session.commit()

    client.post(f"/transactions/{tx_id}/void", headers=headers, json={"reason": "Refund"})

    assert db.session.query(ClientLoyalty).one().points_balance == 0


def test_list_branch_transactions_view_models(client, pos, auth_header) -> None:
    headers = auth_header(pos.receptionist)
    first = _open_bill(client, headers, pos).get_json()["transaction"]["id"]
    _open_bill(client, headers, pos, items=_product_items(pos, 1))
    client.post(f"/transactions/{first}/pay", headers=headers, json={"payment_method": "digital"})

    response = client.get(f"/branches/{pos.branch.branch_id}/transactions", headers=headers)
    data = response.get_json()

    assert response.status_code == 200
    assert data["pagination"]["total"] == 2
    row = next(r for r in data["transactions"] if r["id"] == first)
    assert row["status"] == "Paid"
    assert row["customer_name"] == "Ana Client"
    assert row["stylist_name"] == "Bea Stylist"
    assert row["commission_cents"] == 7500

    response = client.get(f"/branches/{pos.branch.branch_id}/transactions?status=paid", headers=headers)
    assert [r["id"] for r in response.get_json()["transactions"]] == [first]

    response = client.get(f"/branches/{pos.branch.branch_id}/transactions?search=bea", headers=headers)
    assert [r["id"] for r in response.get_json()["transactions"]] == [first]

    response = client.get(f"/branches/{pos.branch.branch_id}/transactions?status=bogus", headers=headers)
    assert response.status_code == 400


def test_get_transaction_and_client_history(client, pos, auth_header) -> None:
    headers = auth_header(pos.receptionist)
    tx_id = _open_bill(client, headers, pos).get_json()["transaction"]["id"]

    response = client.get(f"/transactions/{tx_id}", headers=headers)
    data = response.get_json()
    assert response.status_code == 200
    assert data["receipt"]["customer"] == "Ana Client"
    assert data["transaction"]["commission_cents"] == 7500

    response = client.get(f"/clients/{pos.client.user_id}/transactions", headers=auth_header(pos.client))
    assert [t["id"] for t in response.get_json()["transactions"]] == [tx_id]


def test_daily_sales_summary(client, pos, auth_header) -> None:
    headers = auth_header(pos.receptionist)
    first = _open_bill(client, headers, pos).get_json()["transaction"]["id"]
    second = _open_bill(client, headers, pos, items=_product_items(pos)).get_json()["transaction"]["id"]
    _open_bill(client, headers, pos)
    client.post(f"/transactions/{first}/pay", headers=headers, json={"payment_method": "digital"})
    client.post(
        f"/transactions/{second}/pay", headers=headers, json={"payment_method": "cash", "amount_received_cents": 50000}
    )

    response = client.get(f"/branches/{pos.branch.branch_id}/sales/daily", headers=headers)
    data = response.get_json()

    assert response.status_code == 200
    assert data["count"] == 2
    assert data["revenue_cents"] == 100000
    assert data["average_cents"] == 50000
    assert data["by_payment_method"]["cash"] == {"count": 1, "total_cents": 50000}

    response = client.get(f"/branches/{pos.branch.branch_id}/sales/daily?date=2000-01-01", headers=headers)
    assert response.get_json()["count"] == 0


def _promotion(pos, code, usage_type="one-time", max_uses=None):
    now = datetime.now()
    promotion = Promotion(
        branch_id=pos.branch.branch_id,
        code=code,
        title=code,
        discount_type="percentage",
        discount_value=10,
        applicable_to="all",
        start_date=now - timedelta(days=1),
        end_date=now + timedelta(days=1),
        is_active=True,
        usage_type=usage_type,
        max_uses=max_uses,
        usage_count=0,
    )
    db.session.add(promotion)
    db.session.commit()
    return promotion


def test_one_time_promotion_checked_again_at_payment(client, pos, auth_header) -> None:
    promotion = _promotion(pos, "ONCE")
    headers = auth_header(pos.receptionist)
    first = _open_bill(client, headers, pos, promotion_code="ONCE").get_json()["transaction"]["id"]
    second = _open_bill(client, headers, pos, promotion_code="ONCE").get_json()["transaction"]["id"]
    pay = {"payment_method": "cash", "amount_received_cents": 45000}

    response = client.post(f"/transactions/{first}/pay", headers=headers, json=pay)
    assert response.status_code == 200

    response = client.post(f"/transactions/{second}/pay", headers=headers, json=pay)
    assert response.status_code == 409
    assert response.get_json()["message"] == "You have already used this promotion"

    assert db.session.get(Promotion, promotion.promotion_id).usage_count == 1
    assert db.session.query(PromotionUsage).count() == 1
    assert db.session.get(Transaction, second).status == "in_service"


def test_repeating_promotion_cap_checked_at_payment(client, pos, make_user, auth_header) -> None:
    promotion = _promotion(pos, "FIRSTONLY", usage_type="repeating", max_uses=1)
    headers = auth_header(pos.receptionist)
    other = make_user("client")
    first = _open_bill(client, headers, pos, promotion_code="FIRSTONLY").get_json()["transaction"]["id"]
    second = _open_bill(
        client, headers, pos, promotion_code="FIRSTONLY", client_id=other.user_id
    ).get_json()["transaction"]["id"]

    response = client.post(f"/transactions/{first}/pay", headers=headers, json={"payment_method": "digital"})
    assert response.status_code == 200

    response = client.post(f"/transactions/{second}/pay", headers=headers, json={"payment_method": "digital"})
    assert response.status_code == 409
    assert response.get_json()["message"] == "This promotion has reached its maximum usage limit"
    assert db.session.get(Promotion, promotion.promotion_id).usage_count == 1
