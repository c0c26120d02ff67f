"""Tests for branch inventory, promotion codes and bank deposit reconciliation."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from app.extensions import db
from app.models import Deposit, Product, Promotion


def _promotion_payload(**overrides):
    today = datetime.now().date()
    payload = {
        "code": "SUMMER20",
        "title": "Summer sale",
        "discount_type": "percentage",
        "discount_value": 20,
        "start_date": (today - timedelta(days=1)).isoformat(),
        "end_date": (today + timedelta(days=30)).isoformat(),
    }
    payload.update(overrides)
    return payload


def test_list_products_is_public(client, make_branch, make_product) -> None:
    branch = make_branch()
    make_product(branch, "Shampoo")
    retired = make_product(branch, "Old Gel")
    retired.is_active = False
    db.session.commit()

    response = client.get(f"/branches/{branch.branch_id}/products")
    assert [p["name"] for p in response.get_json()["products"]] == ["Shampoo"]

    response = client.get(f"/branches/{branch.branch_id}/products?include_inactive=true")
    assert len(response.get_json()["products"]) == 2


def test_inventory_controller_manages_products(client, make_branch, make_user, auth_header) -> None:
    branch = make_branch()
    controller = make_user("inventoryController", branch)
    headers = auth_header(controller)

    response = client.post(
        f"/branches/{branch.branch_id}/products",
        headers=headers,
        json={"name": "Conditioner", "price_cents": 30000, "stock_quantity": 5, "category": "hair"},
    )
    assert response.status_code == 201
    product_id = response.get_json()["product"]["id"]

    response = client.put(f"/products/{product_id}", headers=headers, json={"stock_quantity": 15})
    assert response.status_code == 200
    assert response.get_json()["product"]["stock_quantity"] == 15

    response = client.put(f"/products/{product_id}", headers=headers, json={"price_cents": -1})
    assert response.status_code == 400

    response = client.delete(f"/products/{product_id}", headers=headers)
    assert response.status_code == 200
    assert db.session.get(Product, product_id).is_active is False


def test_create_product_requires_name_and_price(client, make_branch, make_user, auth_header) -> None:
    branch = make_branch()
    admin = make_user("systemAdmin")

    response = client.post(f"/branches/{branch.branch_id}/products", headers=auth_header(admin), json={"name": "X"})

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_payload"


def test_receptionist_cannot_manage_products(client, make_branch, make_user, make_product, auth_header) -> None:
    branch = make_branch()
    product = make_product(branch)
    receptionist = make_user("receptionist", branch)

    response = client.put(f"/products/{product.product_id}", headers=auth_header(receptionist), json={"name": "Y"})

    assert response.status_code == 403


def test_low_stock_products(client, make_branch, make_user, make_product, auth_header) -> None:
    branch = make_branch()
    make_product(branch, "Plenty", stock_quantity=50)
    make_product(branch, "Scarce", stock_quantity=3)
    make_product(branch, "Empty", stock_quantity=0)
    receptionist = make_user("receptionist", branch)

    response = client.get(f"/branches/{branch.branch_id}/products/low-stock?threshold=5", headers=auth_header(receptionist))
    data = response.get_json()

    assert response.status_code == 200
    assert data["threshold"] == 5
    assert [p["name"] for p in data["products"]] == ["Empty", "Scarce"]


def test_create_promotion_and_duplicate_code(client, make_branch, make_user, auth_header) -> None:
    branch = make_branch()
    manager = make_user("branchManager", branch)
    headers = auth_header(manager)

    response = client.post(f"/branches/{branch.branch_id}/promotions", headers=headers, json=_promotion_payload())
    data = response.get_json()["promotion"]

    assert response.status_code == 201
    assert data["usage_type"] == "repeating"
    assert data["end_date"].endswith("23:59:59")

    response = client.post(f"/branches/{branch.branch_id}/promotions", headers=headers, json=_promotion_payload())
    assert response.status_code == 409


def test_promotion_validation_rules(client, make_branch, make_user, auth_header) -> None:
    branch = make_branch()
    headers = auth_header(make_user("systemAdmin"))
    url = f"/branches/{branch.branch_id}/promotions"

    response = client.post(url, headers=headers, json=_promotion_payload(discount_value=150))
    assert response.status_code == 400
    assert response.get_json()["message"] == "percentage discounts cannot exceed 100"

    response = client.post(url, headers=headers, json=_promotion_payload(start_date="2030-02-01", end_date="2030-01-01"))
    assert response.status_code == 400

    response = client.post(url, headers=headers, json={"code": "X"})
    assert response.status_code == 400
    assert response.get_json()["message"].startswith("missing fields:")


def test_stylist_cannot_create_promotion(client, make_branch, make_user, auth_header) -> None:
    branch = make_branch()
    stylist = make_user("stylist", branch)

    response = client.post(
        f"/branches/{branch.branch_id}/promotions", headers=auth_header(stylist), json=_promotion_payload()
    )

    assert response.status_code == 403


def test_active_promotions_hide_expired_and_exhausted(client, make_branch) -> None:
    branch = make_branch()
    now = datetime.now()

    def _add(code, **fields):
        values = {
            "branch_id": branch.branch_id,
            "code": code,
            "title": code,
            "discount_type": "fixed",
            "discount_value": 5000,
            "start_date": now - timedelta(days=1),
            "end_date": now + timedelta(days=1),
            "is_active": True,
            "usage_count": 0,
        }
        values.update(fields)
        db.session.add(Promotion(**values))

    _add("LIVE")
    _add("OLD", end_date=now - timedelta(hours=1))
    _add("OFF", is_active=False)
    _add("MAXED", max_uses=2, usage_count=2)
    db.session.commit()

    response = client.get(f"/branches/{branch.branch_id}/promotions/active")

    assert [p["code"] for p in response.get_json()["promotions"]] == ["LIVE"]


def test_validate_promotion_code(client, make_branch, make_user, auth_header) -> None:
    branch = make_branch()
    manager = make_user("branchManager", branch)
    client.post(
        f"/branches/{branch.branch_id}/promotions",
        headers=auth_header(manager),
        json=_promotion_payload(code="SVC", applicable_to="services", discount_value=10),
    )

    response = client.post(
        "/promotions/validate",
        json={
            "code": "SVC",
            "branch_id": branch.branch_id,
            "subtotal_cents": 80000,
            "items": [
                {"type": "service", "service_id": 1, "price_cents": 50000, "quantity": 1},
                {"type": "product", "product_id": 1, "price_cents": 30000, "quantity": 1},
            ],
        },
    )
    data = response.get_json()
    assert response.status_code == 200
    assert data["valid"] is True
    assert data["discount_cents"] == 5000

    response = client.post("/promotions/validate", json={"code": "NOPE", "branch_id": branch.branch_id})
    assert response.get_json() == {"valid": False, "message": "Invalid promotion code"}


def test_update_and_deactivate_promotion(client, make_branch, make_user, auth_header) -> None:
    branch = make_branch()
    headers = auth_header(make_user("branchManager", branch))
    promotion_id = client.post(
        f"/branches/{branch.branch_id}/promotions", headers=headers, json=_promotion_payload()
    ).get_json()["promotion"]["id"]

    response = client.put(f"/promotions/{promotion_id}", headers=headers, json={"title": "Bigger sale", "max_uses": 50})
    assert response.status_code == 200
    assert response.get_json()["promotion"]["max_uses"] == 50

    response = client.delete(f"/promotions/{promotion_id}", headers=headers)
    assert response.get_json()["promotion"]["is_active"] is False


def _sell(client, headers, branch, service):
    response = client.post(
        "/transactions",
        headers=headers,
        json={"branch_id": branch.branch_id, "items": [{"type": "service", "service_id": service.service_id}]},
    )
    return response.get_json()["transaction"]["id"]


def test_deposit_reconciliation(client, make_branch, make_user, make_service, auth_header) -> None:
    branch = make_branch()
    service = make_service(branch, price_cents=50000)
    receptionist = make_user("receptionist", branch)
    headers = auth_header(receptionist)
    _sell(client, headers, branch, service)
    _sell(client, headers, branch, service)
    voided = _sell(client, headers, branch, service)
    client.post(f"/transactions/{voided}/void", headers=headers, json={"reason": "Mistake"})
    today = datetime.now(timezone.utc).date().isoformat()
    url = f"/branches/{branch.branch_id}/deposits"

    response = client.post(url, headers=headers, json={"deposit_date": today, "amount_cents": 100050})
    data = response.get_json()
    assert response.status_code == 201
    assert data["deposit"]["daily_sales_cents"] == 100000
    assert data["validation"]["status"] == "match"

    response = client.post(url, headers=headers, json={"deposit_date": today, "amount_cents": 95000})
    assert response.get_json()["validation"]["status"] == "manual_review"
    assert response.get_json()["validation"]["difference_cents"] == -5000

    response = client.post(url, headers=headers, json={"deposit_date": today, "amount_cents": 50000})
    assert response.get_json()["validation"]["status"] == "mismatch"

    response = client.get(f"{url}?status=pending", headers=headers)
    assert len(response.get_json()["deposits"]) == 3


def test_deposit_requires_date_and_amount(client, make_branch, make_user, auth_header) -> None:
    branch = make_branch()
    receptionist = make_user("receptionist", branch)

    response = client.post(
        f"/branches/{branch.branch_id}/deposits", headers=auth_header(receptionist), json={"amount_cents": 100}
    )

    assert response.status_code == 400


def test_manager_reviews_deposit_once(client, make_branch, make_user, auth_header) -> None:
    branch = make_branch()
    receptionist = make_user("receptionist", branch)
    manager = make_user("branchManager", branch)
    deposit_id = client.post(
        f"/branches/{branch.branch_id}/deposits",
        headers=auth_header(receptionist),
        json={"deposit_date": "2030-01-14", "amount_cents": 0},
    ).get_json()["deposit"]["id"]
    url = f"/deposits/{deposit_id}/review"

    assert client.put(url, headers=auth_header(receptionist), json={"status": "approved"}).status_code == 403
    assert client.put(url, headers=auth_header(manager), json={"status": "maybe"}).status_code == 400

    response = client.put(url, headers=auth_header(manager), json={"status": "approved", "notes": "Checked"})
    assert response.status_code == 200
    deposit = db.session.get(Deposit, deposit_id)
    assert deposit.status == "approved"
    assert deposit.reviewed_by == manager.user_id

    response = client.put(url, headers=auth_header(manager), json={"status": "rejected"})
    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_transition"
