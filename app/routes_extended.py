"""Point-of-sale, loyalty, promotion, deposit, report and notification routes."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import stripe
from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from . import permissions as perms
from .auth import forbidden, require_user
from .extensions import db
from .models import (Appointment, Branch, ClientLoyalty, Deposit, Notification,
                     Product, Promotion, PromotionUsage, Service, Transaction,
                     TransactionItem, User)
from .pos import (PAYMENT_METHODS, TRANSACTION_STATUS, TRANSACTION_TYPES,
                  calculate_commission, calculate_promotion_discount,
                  calculate_totals, loyalty_points_for, promotion_error,
                  receipt_data, transaction_view_model,
                  validate_deposit_amount)
from .routes import _page_args
from .scheduling import is_valid_status_transition, parse_date

bp_ext = Blueprint("api_ext", __name__)


def _day_bounds(day) -> tuple[datetime, datetime]:
    start = datetime.combine(day, datetime.min.time())
    return start, start + timedelta(days=1)


def _date_range_args():
    """Parse ``date_from`` / ``date_to`` into datetime bounds (inclusive days)."""
    start = end = None
    if request.args.get("date_from"):
        start = _day_bounds(parse_date(request.args["date_from"]))[0]
    if request.args.get("date_to"):
        end = _day_bounds(parse_date(request.args["date_to"]))[1]
    return start, end


def _bad_request(message: str, code: str = "invalid_payload"):
    return jsonify({"error": code, "message": message}), 400


def _get_loyalty(client_id: int, branch_id: int, create: bool = False) -> ClientLoyalty | None:
    loyalty = ClientLoyalty.query.filter_by(client_id=client_id, branch_id=branch_id).first()
    if loyalty is None and create:
        loyalty = ClientLoyalty(client_id=client_id, branch_id=branch_id, points_balance=0)
        db.session.add(loyalty)
    return loyalty


# --- Transactions / POS ---

def _build_items(branch_id: int, raw_items) -> tuple[list[TransactionItem] | None, str | None]:
    if not isinstance(raw_items, list) or not raw_items:
        return None, "items must be a non-empty list"

    items: list[TransactionItem] = []
    wanted_stock: dict[int, int] = {}
    for raw in raw_items:
        if not isinstance(raw, dict):
            return None, "each item must be an object"
        try:
            quantity = int(raw.get("quantity") or 1)
        except (TypeError, ValueError):
            return None, "quantity must be an integer"
        if quantity <= 0:
            return None, "quantity must be positive"

        item_type = raw.get("type")
        if item_type == "service":
            service = db.session.get(Service, raw.get("service_id")) if raw.get("service_id") else None
            if service is None or service.branch_id != branch_id or not service.is_active:
                return None, f"service {raw.get('service_id')} is not available at this branch"
            stylist = db.session.get(User, raw.get("stylist_id")) if raw.get("stylist_id") else None
            if raw.get("stylist_id") and (stylist is None or stylist.role != perms.STYLIST):
                return None, f"stylist {raw.get('stylist_id')} not found"
            items.append(
                TransactionItem(
                    item_type="service",
                    service_id=service.service_id,
                    name=service.name,
                    unit_price_cents=service.price_cents,
                    quantity=quantity,
                    stylist_id=stylist.user_id if stylist else None,
                    stylist_name=stylist.name if stylist else None,
                    duration_minutes=service.duration_minutes,
                )
            )
        elif item_type == "product":
            product = db.session.get(Product, raw.get("product_id")) if raw.get("product_id") else None
            if product is None or product.branch_id != branch_id or not product.is_active:
                return None, f"product {raw.get('product_id')} is not available at this branch"
            wanted_stock[product.product_id] = wanted_stock.get(product.product_id, 0) + quantity
            if wanted_stock[product.product_id] > product.stock_quantity:
                return None, f"insufficient stock for {product.name}: {product.stock_quantity} available"
            items.append(
                TransactionItem(
                    item_type="product",
                    product_id=product.product_id,
                    name=product.name,
                    unit_price_cents=product.price_cents,
                    quantity=quantity,
                )
            )
        else:
            return None, "item type must be 'service' or 'product'"
    return items, None


@bp_ext.post("/transactions")
def create_transaction() -> tuple[dict[str, object], int]:
    """Open a POS bill for services or products.
    ---
    tags:
      - Transactions
    parameters:
      - in: body
        name: body
        required: true
        schema:
          properties:
            branch_id:
              type: integer
            transaction_type:
              type: string
              enum: [service, product]
            client_id:
              type: integer
            client_info:
              type: object
            appointment_id:
              type: integer
            items:
              type: array
            promotion_code:
              type: string
    responses:
      201:
        description: Transaction created in service
      400:
        description: Validation failed
      403:
        description: Caller cannot bill at this branch
      404:
        description: Branch, client or appointment not found
    """
    user, error = require_user()
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    branch = db.session.get(Branch, payload.get("branch_id")) if payload.get("branch_id") else None
    if branch is None:
        return jsonify({"error": "not_found", "message": "branch not found"}), 404

    if not perms.can_bill(user.role) or not perms.can_access_branch_data(user, branch.branch_id):
        return forbidden("You cannot create transactions at this branch")

    items, message = _build_items(branch.branch_id, payload.get("items"))
    if message:
        return jsonify({"error": "validation_failed", "message": message}), 400

    transaction_type = payload.get("transaction_type") or (
        "product" if all(i.item_type == "product" for i in items) else "service"
    )
    if transaction_type not in TRANSACTION_TYPES:
        return _bad_request("transaction_type must be 'service' or 'product'")

    client = None
    if payload.get("client_id"):
        client = db.session.get(User, payload["client_id"])
        if client is None or client.role != perms.CLIENT:
            return jsonify({"error": "not_found", "message": "client not found"}), 404

    appointment = None
    if payload.get("appointment_id"):
        appointment = db.session.get(Appointment, payload["appointment_id"])
        if appointment is None or appointment.branch_id != branch.branch_id:
            return jsonify({"error": "not_found", "message": "appointment not found"}), 404
        if client is None and appointment.client_id:
            client = appointment.client

    client_info = client.client_info() if client else {}
    extra_info = payload.get("client_info") or {}
    if isinstance(extra_info, dict):
        client_info.update({k: v for k, v in extra_info.items() if v not in (None, "")})
    if not client_info.get("name") and appointment is not None:
        client_info["name"] = appointment.display_client_name

    item_dicts = [
        {
            "type": i.item_type,
            "service_id": i.service_id,
            "product_id": i.product_id,
            "price_cents": i.unit_price_cents,
            "quantity": i.quantity,
        }
        for i in items
    ]
    subtotal = sum(d["price_cents"] * d["quantity"] for d in item_dicts)

    promotion = None
    discount = 0
    code = (payload.get("promotion_code") or "").strip()
    if code:
        promotion = Promotion.query.filter_by(branch_id=branch.branch_id, code=code).first()
        used = bool(
            promotion
            and client
            and PromotionUsage.query.filter_by(promotion_id=promotion.promotion_id, client_id=client.user_id).first()
        )
        message = promotion_error(promotion, datetime.now(), client.user_id if client else None, used)
        if message:
            return jsonify({"error": "validation_failed", "message": message}), 400
        discount = calculate_promotion_discount(
            promotion,
            subtotal,
            [d for d in item_dicts if d["type"] == "service"],
            [d for d in item_dicts if d["type"] == "product"],
        )

    tax_rate = current_app.config["DEFAULT_TAX_RATE"]
    totals = calculate_totals(item_dicts, discount, tax_rate)

    tx = Transaction(
        branch_id=branch.branch_id,
        client_id=client.user_id if client else None,
        client_info=client_info,
        appointment_id=appointment.appointment_id if appointment else None,
        transaction_type=transaction_type,
        status="in_service",
        promotion_id=promotion.promotion_id if promotion else None,
        notes=(payload.get("notes") or "").strip() or None,
        created_by=user.user_id,
        items=items,
        **totals,
    )

    try:
        db.session.add(tx)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to create transaction", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    current_app.logger.info("Transaction %s opened at branch %s", tx.transaction_id, branch.branch_id)
    return jsonify({"transaction": tx.to_dict()}), 201


@bp_ext.get("/branches/<int:branch_id>/transactions")
def list_branch_transactions(branch_id: int) -> tuple[dict[str, object], int]:
    """List a branch's transactions as POS view-models, newest first."""
    user, error = require_user()
    if error:
        return error
    if not perms.can_access_branch_data(user, branch_id) or user.role == perms.STYLIST:
        return forbidden()

    query = Transaction.query.filter(Transaction.branch_id == branch_id)

    status = request.args.get("status")
    if status:
        if status not in TRANSACTION_STATUS:
            return _bad_request(f"unknown status: {status}", "invalid_status")
        query = query.filter(Transaction.status == status)

    tx_type = request.args.get("type")
    if tx_type:
        query = query.filter(Transaction.transaction_type == tx_type)

    try:
        start, end = _date_range_args()
    except ValueError:
        return _bad_request("dates must be in YYYY-MM-DD format")
    if start:
        query = query.filter(Transaction.created_at >= start)
    if end:
        query = query.filter(Transaction.created_at < end)

    page, limit = _page_args()
    try:
        rows = query.order_by(Transaction.created_at.desc(), Transaction.transaction_id.desc()).all()
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to list transactions", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    rate = current_app.config["COMMISSION_RATE"]
    views = [transaction_view_model(tx, rate) for tx in rows]

    # Search runs over the derived names, like the POS screen does
    search = (request.args.get("search") or "").strip().lower()
    if search:
        views = [
            v
            for v in views
            if search in v["customer_name"].lower()
            or search in v["service_name"].lower()
            or search in v["stylist_name"].lower()
            or search in str(v["id"])
        ]

    total = len(views)
    page_rows = views[(page - 1) * limit : page * limit]
    return (
        jsonify(
            {
                "transactions": page_rows,
                "pagination": {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit},
            }
        ),
        200,
    )


def _load_branch_transaction(user, transaction_id: int):
    tx = db.session.get(Transaction, transaction_id)
    if tx is None:
        return None, (jsonify({"error": "not_found", "message": "Transaction not found"}), 404)
    if tx.client_id == user.user_id:
        return tx, None
    if not perms.can_access_branch_data(user, tx.branch_id) or user.role == perms.STYLIST:
        return None, forbidden()
    return tx, None


@bp_ext.get("/transactions/<int:transaction_id>")
def get_transaction(transaction_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error

    tx, error = _load_branch_transaction(user, transaction_id)
    if error:
        return error

    data = tx.to_dict()
    data["commission_cents"] = calculate_commission(tx.total_cents, current_app.config["COMMISSION_RATE"])
    return jsonify({"transaction": data, "receipt": receipt_data(tx, tx.branch)}), 200


@bp_ext.get("/clients/<int:client_id>/transactions")
def list_client_transactions(client_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error
    if user.user_id != client_id and not perms.has_permission(user.role, "manageClients") \
            and user.role not in perms.GLOBAL_ROLES:
        return forbidden()

    try:
        rows = (
            Transaction.query.filter(Transaction.client_id == client_id)
            .order_by(Transaction.created_at.desc(), Transaction.transaction_id.desc())
            .all()
        )
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to list client transactions", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"transactions": [tx.to_dict() for tx in rows]}), 200


def _complete_linked_appointment(tx: Transaction, user) -> None:
    appointment = tx.appointment
    if appointment is None or appointment.status == "completed":
        return
    if not is_valid_status_transition(appointment.status, "completed"):
        current_app.logger.warning(
            "Transaction %s paid but appointment %s cannot move from %s to completed",
            tx.transaction_id,
            appointment.appointment_id,
            appointment.status,
        )
        return
    appointment.status = "completed"
    appointment.add_history("status_changed_to_completed", user.user_id, f"Paid via transaction {tx.transaction_id}")
    if appointment.client_id:
        db.session.add(
            Notification(
                recipient_id=appointment.client_id,
                recipient_role=perms.CLIENT,
                appointment_id=appointment.appointment_id,
                notification_type="appointment_completed",
                title="Appointment Completed",
                message=f"Thank you for visiting {tx.branch.name}. Your appointment is complete.",
            )
        )


@bp_ext.post("/transactions/<int:transaction_id>/pay")
def pay_transaction(transaction_id: int) -> tuple[dict[str, object], int]:
    """Settle an open bill.
    ---
    tags:
      - Transactions
    parameters:
      - in: body
        name: body
        required: true
        schema:
          properties:
            payment_method:
              type: string
              enum: [cash, card, digital]
            amount_received_cents:
              type: integer
            payment_intent_id:
              type: string
              description: Stripe payment intent ID for card payments
    responses:
      200:
        description: Transaction paid
      400:
        description: Invalid payment or transaction not in service
      409:
        description: Stock ran out, promotion limit reached or payment intent already used
      502:
        description: Payment gateway error
    """
    user, error = require_user()
    if error:
        return error

    tx = db.session.get(Transaction, transaction_id)
    if tx is None:
        return jsonify({"error": "not_found", "message": "Transaction not found"}), 404
    if not perms.can_bill(user.role) or not perms.can_access_branch_data(user, tx.branch_id):
        return forbidden()

    if tx.status != "in_service":
        return _bad_request(f"Cannot pay a transaction with status '{tx.status}'", "invalid_transition")

    # Promotion limits are re-checked at payment time
    if tx.promotion is not None:
        used = bool(
            tx.client_id
            and PromotionUsage.query.filter_by(promotion_id=tx.promotion_id, client_id=tx.client_id).first()
        )
        message = promotion_error(tx.promotion, datetime.now(), tx.client_id, used)
        if message:
            current_app.logger.warning(
                "Promotion %s rejected at payment of transaction %s: %s", tx.promotion_id, transaction_id, message
            )
            return jsonify({"error": "conflict", "message": message}), 409

    payload = request.get_json(silent=True) or {}
    method = payload.get("payment_method")
    if method not in PAYMENT_METHODS:
        return _bad_request("payment_method must be one of: cash, card, digital")

    if method == "cash":
        try:
            received = int(payload.get("amount_received_cents"))
        except (TypeError, ValueError):
            return _bad_request("amount_received_cents is required for cash payments")
        if received < tx.total_cents:
            return _bad_request(
                f"Amount received ({received}) is less than the total ({tx.total_cents})", "validation_failed"
            )
        tx.amount_received_cents = received
        tx.change_cents = received - tx.total_cents
    elif method == "card":
        intent_id = payload.get("payment_intent_id")
        if not intent_id:
            return _bad_request("payment_intent_id is required for card payments")

        stripe_key = current_app.config.get("STRIPE_SECRET_KEY")
        if not stripe_key:
            current_app.logger.warning("Stripe secret key not configured")
            return jsonify({"error": "server_error", "message": "Card payments are not currently available."}), 500

        stripe.api_key = stripe_key
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id)
        except stripe.error.StripeError as exc:
            current_app.logger.exception("Stripe API error while retrieving payment intent", exc_info=exc)
            return jsonify({"error": "payment_error", "message": "Failed to retrieve payment intent"}), 502

        if intent.status != "succeeded":
            return _bad_request(f"Payment has not succeeded (status: {intent.status})", "payment_error")
        if not intent.amount or int(intent.amount) < tx.total_cents:
            return _bad_request("Payment amount does not cover the total", "payment_error")

        tx.gateway_payment_id = intent_id
        tx.amount_received_cents = int(intent.amount)
        tx.change_cents = 0
    else:
        tx.amount_received_cents = tx.total_cents
        tx.change_cents = 0

    tx.payment_method = method
    tx.status = "paid"
    tx.paid_at = datetime.now(timezone.utc)

    try:
        for item in tx.products:
            product = db.session.get(Product, item.product_id)
            if product is None or product.stock_quantity < item.quantity:
                db.session.rollback()
                return jsonify({"error": "conflict", "message": f"Insufficient stock for {item.name}"}), 409
            product.stock_quantity -= item.quantity

        # Loyalty is earned on retail purchases only
        if tx.transaction_type == "product" and tx.client_id:
            points = loyalty_points_for(tx.total_cents, tx.branch.loyalty_config())
            if points:
                loyalty = _get_loyalty(tx.client_id, tx.branch_id, create=True)
                loyalty.points_balance = (loyalty.points_balance or 0) + points
                tx.loyalty_points_earned = points

        if tx.appointment_id:
            _complete_linked_appointment(tx, user)

        if tx.promotion is not None:
            tx.promotion.usage_count = (tx.promotion.usage_count or 0) + 1
            db.session.add(
                PromotionUsage(
                    promotion_id=tx.promotion_id, client_id=tx.client_id, transaction_id=tx.transaction_id
                )
            )

        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        current_app.logger.warning("Duplicate payment intent %s for transaction %s", tx.gateway_payment_id, transaction_id)
        return jsonify({"error": "conflict", "message": "Payment intent already used"}), 409
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to record payment", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    current_app.logger.info(
        "Transaction %s paid by %s (%s cents, %s loyalty points)",
        transaction_id,
        method,
        tx.total_cents,
        tx.loyalty_points_earned,
    )
    return jsonify({"transaction": tx.to_dict(), "receipt": receipt_data(tx, tx.branch)}), 200


@bp_ext.post("/transactions/<int:transaction_id>/payment-intent")
def create_transaction_payment_intent(transaction_id: int) -> tuple[dict[str, object], int]:
    """Create a Stripe PaymentIntent for a bill's total.
    ---
    tags:
      - Transactions
    responses:
      200:
        description: Client secret and payment intent ID
      400:
        description: Transaction not payable
      502:
        description: Payment gateway error
    """
    user, error = require_user()
    if error:
        return error

    tx = db.session.get(Transaction, transaction_id)
    if tx is None:
        return jsonify({"error": "not_found", "message": "Transaction not found"}), 404
    if not perms.can_bill(user.role) or not perms.can_access_branch_data(user, tx.branch_id):
        return forbidden()
    if tx.status != "in_service":
        return _bad_request(f"Cannot pay a transaction with status '{tx.status}'", "invalid_transition")
    if tx.total_cents <= 0:
        return _bad_request("Transaction total must be positive for card payments")

    stripe_key = current_app.config.get("STRIPE_SECRET_KEY")
    if not stripe_key:
        current_app.logger.warning("Stripe secret key not configured")
        return jsonify({"error": "server_error", "message": "Card payments are not currently available."}), 500

    stripe.api_key = stripe_key
    try:
        intent = stripe.PaymentIntent.create(
            amount=int(tx.total_cents),
            currency=current_app.config["STRIPE_CURRENCY"],
            metadata={
                "transaction_id": str(tx.transaction_id),
                "branch_id": str(tx.branch_id),
                "client_id": str(tx.client_id) if tx.client_id else "",
            },
        )
    except stripe.error.StripeError as exc:
        current_app.logger.exception("Stripe API error while creating payment intent", exc_info=exc)
        return jsonify({"error": "payment_error", "message": "An error occurred while processing the payment."}), 502

    return jsonify({"client_secret": intent.client_secret, "payment_intent_id": intent.id}), 200


@bp_ext.post("/transactions/<int:transaction_id>/void")
def void_transaction(transaction_id: int) -> tuple[dict[str, object], int]:
    """Void a bill and reverse what payment did."""
    user, error = require_user()
    if error:
        return error

    tx = db.session.get(Transaction, transaction_id)
    if tx is None:
        return jsonify({"error": "not_found", "message": "Transaction not found"}), 404
    if not perms.can_bill(user.role) or not perms.can_access_branch_data(user, tx.branch_id):
        return forbidden()

    if tx.status == "voided":
        return _bad_request("Transaction is already voided", "invalid_transition")

    payload = request.get_json(silent=True) or {}
    reason = (payload.get("reason") or "").strip()
    if not reason:
        return _bad_request("reason is required to void a transaction")

    was_paid = tx.status == "paid"
    try:
        if was_paid:
            if tx.loyalty_points_earned and tx.client_id:
                loyalty = _get_loyalty(tx.client_id, tx.branch_id)
                if loyalty is not None:
                    loyalty.points_balance = max(0, loyalty.points_balance - tx.loyalty_points_earned)
            for item in tx.products:
                product = db.session.get(Product, item.product_id)
                if product is not None:
                    product.stock_quantity += item.quantity

        tx.status = "voided"
        tx.void_reason = reason[:255]
        tx.void_notes = (payload.get("notes") or "").strip() or None
        tx.voided_by = user.user_id
        tx.voided_at = datetime.now(timezone.utc)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to void transaction", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    current_app.logger.info("Transaction %s voided by %s: %s", transaction_id, user.user_id, reason)
    return jsonify({"transaction": tx.to_dict()}), 200


@bp_ext.get("/branches/<int:branch_id>/sales/daily")
def daily_sales(branch_id: int) -> tuple[dict[str, object], int]:
    """Summary of paid transactions for one day (defaults to today)."""
    user, error = require_user()
    if error:
        return error
    if not perms.can_access_branch_data(user, branch_id) or user.role == perms.STYLIST:
        return forbidden()

    try:
        day = parse_date(request.args["date"]) if request.args.get("date") else datetime.now(timezone.utc).date()
    except ValueError:
        return _bad_request("date must be in YYYY-MM-DD format")

    start, end = _day_bounds(day)
    try:
        rows = Transaction.query.filter(
            Transaction.branch_id == branch_id,
            Transaction.status == "paid",
            Transaction.paid_at >= start,
            Transaction.paid_at < end,
        ).all()
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to compute daily sales", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    by_method: dict[str, dict[str, int]] = {}
    for tx in rows:
        entry = by_method.setdefault(tx.payment_method or "cash", {"count": 0, "total_cents": 0})
        entry["count"] += 1
        entry["total_cents"] += tx.total_cents

    revenue = sum(tx.total_cents for tx in rows)
    return (
        jsonify(
            {
                "branch_id": branch_id,
                "date": day.isoformat(),
                "count": len(rows),
                "revenue_cents": revenue,
                "discount_cents": sum(tx.discount_cents for tx in rows),
                "tax_cents": sum(tx.tax_cents for tx in rows),
                "average_cents": revenue // len(rows) if rows else 0,
                "by_payment_method": by_method,
            }
        ),
        200,
    )


# --- Products ---

def _apply_product_fields(product: Product, payload: dict) -> str | None:
    if "name" in payload:
        name = (payload.get("name") or "").strip()
        if not name:
            return "name cannot be empty"
        product.name = name
    for field in ("sku", "category"):
        if field in payload:
            setattr(product, field, (payload.get(field) or "").strip() or None)
    for field in ("price_cents", "stock_quantity"):
        if field in payload:
            try:
                value = int(payload.get(field))
            except (TypeError, ValueError):
                return f"{field} must be an integer"
            if value < 0:
                return f"{field} cannot be negative"
            setattr(product, field, value)
    if "is_active" in payload:
        product.is_active = bool(payload.get("is_active"))
    return None


def _can_manage_products(user, branch_id: int) -> bool:
    return perms.can_manage_inventory(user.role) and perms.can_access_branch_data(user, branch_id)


@bp_ext.get("/branches/<int:branch_id>/products")
def list_products(branch_id: int) -> tuple[dict[str, object], int]:
    query = Product.query.filter(Product.branch_id == branch_id)
    if request.args.get("include_inactive", "false").lower() != "true":
        query = query.filter(Product.is_active.is_(True))

    category = request.args.get("category")
    if category:
        query = query.filter(Product.category == category)

    try:
        products = query.order_by(Product.name.asc()).all()
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch products", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"products": [p.to_dict() for p in products]}), 200


@bp_ext.get("/branches/<int:branch_id>/products/low-stock")
def low_stock_products(branch_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error
    if not perms.can_access_branch_data(user, branch_id):
        return forbidden()

    threshold = request.args.get("threshold", default=10, type=int)
    try:
        products = (
            Product.query.filter(
                Product.branch_id == branch_id,
                Product.is_active.is_(True),
                Product.stock_quantity <= threshold,
            )
            .order_by(Product.stock_quantity.asc())
            .all()
        )
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch low stock products", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"threshold": threshold, "products": [p.to_dict() for p in products]}), 200


@bp_ext.post("/branches/<int:branch_id>/products")
def create_product(branch_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error
    if db.session.get(Branch, branch_id) is None:
        return jsonify({"error": "not_found", "message": "branch not found"}), 404
    if not _can_manage_products(user, branch_id):
        return forbidden()

    payload = request.get_json(silent=True) or {}
    if not (payload.get("name") or "").strip() or payload.get("price_cents") is None:
        return _bad_request("name and price_cents are required")

    product = Product(branch_id=branch_id, stock_quantity=0, is_active=True)
    message = _apply_product_fields(product, payload)
    if message:
        return _bad_request(message)

    try:
        db.session.add(product)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to create product", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"product": product.to_dict()}), 201


@bp_ext.put("/products/<int:product_id>")
def update_product(product_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error

    product = db.session.get(Product, product_id)
    if product is None:
        return jsonify({"error": "not_found", "message": "product not found"}), 404
    if not _can_manage_products(user, product.branch_id):
        return forbidden()

    message = _apply_product_fields(product, request.get_json(silent=True) or {})
    if message:
        return _bad_request(message)

    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to update product", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"product": product.to_dict()}), 200


@bp_ext.delete("/products/<int:product_id>")
def delete_product(product_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error

    product = db.session.get(Product, product_id)
    if product is None:
        return jsonify({"error": "not_found", "message": "product not found"}), 404
    if not _can_manage_products(user, product.branch_id):
        return forbidden()

    product.is_active = False
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to delete product", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"message": "Product deactivated", "product": product.to_dict()}), 200


# --- Clients & loyalty ---

def _can_view_client(user, client_id: int) -> bool:
    return (
        user.user_id == client_id
        or user.role in perms.GLOBAL_ROLES
        or perms.has_permission(user.role, "manageClients")
    )


def _loyalty_summary(client_id: int) -> dict[str, object]:
    rows = ClientLoyalty.query.filter_by(client_id=client_id).all()
    return {
        "branches": [row.to_dict() for row in rows],
        "total_points": sum(row.points_balance for row in rows),
    }


@bp_ext.get("/clients")
def search_clients() -> tuple[dict[str, object], int]:
    """Search clients by name, email or phone."""
    user, error = require_user()
    if error:
        return error
    if not perms.has_permission(user.role, "manageClients") and user.role not in perms.GLOBAL_ROLES:
        return forbidden()

    query = User.query.filter(User.role == perms.CLIENT)

    search = (request.args.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(User.name.ilike(pattern), User.email.ilike(pattern), User.phone.ilike(pattern)))

    branch_id = request.args.get("branch_id", type=int)
    if branch_id:
        # Clients who booked or bought at the branch
        booked = db.session.query(Appointment.client_id).filter(Appointment.branch_id == branch_id)
        bought = db.session.query(Transaction.client_id).filter(Transaction.branch_id == branch_id)
        query = query.filter(or_(User.user_id.in_(booked), User.user_id.in_(bought)))

    page, limit = _page_args()
    try:
        total = query.count()
        clients = query.order_by(User.name.asc()).offset((page - 1) * limit).limit(limit).all()
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to search clients", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return (
        jsonify(
            {
                "clients": [c.client_info() for c in clients],
                "pagination": {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit},
            }
        ),
        200,
    )


@bp_ext.get("/clients/<int:client_id>")
def get_client_profile(client_id: int) -> tuple[dict[str, object], int]:
    """Client profile with per-branch loyalty and paid service history."""
    user, error = require_user()
    if error:
        return error
    if not _can_view_client(user, client_id):
        return forbidden()

    client = db.session.get(User, client_id)
    if client is None or client.role != perms.CLIENT:
        return jsonify({"error": "not_found", "message": "client not found"}), 404

    try:
        history = (
            Transaction.query.filter(Transaction.client_id == client_id, Transaction.status == "paid")
            .order_by(Transaction.paid_at.desc())
            .all()
        )
        loyalty = _loyalty_summary(client_id)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to load client profile", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    service_history = [
        {
            "transaction_id": tx.transaction_id,
            "branch_id": tx.branch_id,
            "date": tx.paid_at.isoformat() if tx.paid_at else None,
            "services": [item.name for item in tx.services],
            "stylists": sorted({item.stylist_name for item in tx.services if item.stylist_name}),
            "total_cents": tx.total_cents,
        }
        for tx in history
    ]
    return (
        jsonify(
            {
                "client": client.client_info(),
                "loyalty": loyalty,
                "service_history": service_history,
                "total_spent_cents": sum(tx.total_cents for tx in history),
            }
        ),
        200,
    )


@bp_ext.get("/clients/<int:client_id>/loyalty")
def get_client_loyalty(client_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error
    if not _can_view_client(user, client_id):
        return forbidden()

    try:
        summary = _loyalty_summary(client_id)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch loyalty", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"client_id": client_id, **summary}), 200


@bp_ext.post("/clients/<int:client_id>/loyalty/redeem")
def redeem_loyalty_points(client_id: int) -> tuple[dict[str, object], int]:
    """Spend loyalty points held at one branch.
    ---
    tags:
      - Loyalty
    parameters:
      - in: body
        name: body
        required: true
        schema:
          properties:
            branch_id:
              type: integer
            points:
              type: integer
    responses:
      200:
        description: Points redeemed
      400:
        description: Invalid amount or insufficient points
    """
    user, error = require_user()
    if error:
        return error
    if not _can_view_client(user, client_id):
        return forbidden()

    payload = request.get_json(silent=True) or {}
    try:
        branch_id = int(payload.get("branch_id"))
        points = int(payload.get("points"))
    except (TypeError, ValueError):
        return _bad_request("branch_id and points are required")
    if points <= 0:
        return _bad_request("points must be positive")

    try:
        loyalty = _get_loyalty(client_id, branch_id)
        available = loyalty.points_balance if loyalty else 0
        if available < points:
            return (
                jsonify(
                    {
                        "error": "validation_failed",
                        "message": (
                            "Insufficient loyalty points for this branch. "
                            f"Available: {available}, Required: {points}"
                        ),
                    }
                ),
                400,
            )
        loyalty.points_balance = available - points
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to redeem loyalty points", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    current_app.logger.info("Client %s redeemed %s points at branch %s", client_id, points, branch_id)
    return jsonify({"client_id": client_id, "branch_id": branch_id, "points_balance": loyalty.points_balance}), 200


# --- Promotions ---

def _parse_promotion_dates(payload: dict, promotion: Promotion) -> str | None:
    for field in ("start_date", "end_date"):
        if field in payload:
            raw = payload.get(field) or ""
            try:
                value = datetime.fromisoformat(raw) if "T" in raw else _day_bounds(parse_date(raw))[0]
            except ValueError:
                return f"{field} must be a date (YYYY-MM-DD) or ISO datetime"
            if field == "end_date" and "T" not in raw:
                # Date-only end dates cover the whole day
                value = value + timedelta(days=1) - timedelta(seconds=1)
            setattr(promotion, field, value.replace(tzinfo=None))
    if promotion.start_date and promotion.end_date and promotion.start_date > promotion.end_date:
        return "start_date must be before end_date"
    return None


def _apply_promotion_fields(promotion: Promotion, payload: dict) -> str | None:
    for field in ("code", "title"):
        if field in payload:
            value = (payload.get(field) or "").strip()
            if not value:
                return f"{field} cannot be empty"
            setattr(promotion, field, value)
    if "description" in payload:
        promotion.description = (payload.get("description") or "").strip() or None

    if "discount_type" in payload:
        if payload["discount_type"] not in ("percentage", "fixed"):
            return "discount_type must be 'percentage' or 'fixed'"
        promotion.discount_type = payload["discount_type"]
    if "discount_value" in payload:
        try:
            value = int(payload.get("discount_value"))
        except (TypeError, ValueError):
            return "discount_value must be an integer"
        if value <= 0:
            return "discount_value must be positive"
        promotion.discount_value = value
    if promotion.discount_type == "percentage" and (promotion.discount_value or 0) > 100:
        return "percentage discounts cannot exceed 100"

    if "applicable_to" in payload:
        if payload["applicable_to"] not in ("all", "services", "products", "specific"):
            return "applicable_to must be all, services, products or specific"
        promotion.applicable_to = payload["applicable_to"]
    for field in ("specific_service_ids", "specific_product_ids"):
        if field in payload:
            ids = payload.get(field) or []
            if not isinstance(ids, list) or not all(isinstance(i, int) for i in ids):
                return f"{field} must be a list of integers"
            setattr(promotion, field, ids)

    if "usage_type" in payload:
        if payload["usage_type"] not in ("one-time", "repeating"):
            return "usage_type must be 'one-time' or 'repeating'"
        promotion.usage_type = payload["usage_type"]
    if "max_uses" in payload:
        max_uses = payload.get("max_uses")
        if max_uses is not None and (not isinstance(max_uses, int) or max_uses <= 0):
            return "max_uses must be a positive integer"
        promotion.max_uses = max_uses
    if "is_active" in payload:
        promotion.is_active = bool(payload.get("is_active"))

    return _parse_promotion_dates(payload, promotion)


def _can_manage_branch_promotions(user, branch_id: int) -> bool:
    return perms.can_manage_promotions(user.role) and perms.can_access_branch_data(user, branch_id)


@bp_ext.post("/branches/<int:branch_id>/promotions")
def create_promotion(branch_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error
    if db.session.get(Branch, branch_id) is None:
        return jsonify({"error": "not_found", "message": "branch not found"}), 404
    if not _can_manage_branch_promotions(user, branch_id):
        return forbidden()

    payload = request.get_json(silent=True) or {}
    required = ("code", "title", "discount_type", "discount_value", "start_date", "end_date")
    missing = [f for f in required if payload.get(f) in (None, "")]
    if missing:
        return _bad_request(f"missing fields: {', '.join(missing)}")

    promotion = Promotion(
        branch_id=branch_id,
        applicable_to="all",
        usage_type="repeating",
        usage_count=0,
        is_active=True,
        specific_service_ids=[],
        specific_product_ids=[],
    )
    message = _apply_promotion_fields(promotion, payload)
    if message:
        return _bad_request(message)

    try:
        db.session.add(promotion)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"error": "conflict", "message": "promotion code already exists for this branch"}), 409
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to create promotion", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"promotion": promotion.to_dict()}), 201


@bp_ext.get("/branches/<int:branch_id>/promotions")
def list_promotions(branch_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error
    if not perms.can_access_branch_data(user, branch_id):
        return forbidden()

    try:
        promotions = (
            Promotion.query.filter(Promotion.branch_id == branch_id)
            .order_by(Promotion.start_date.desc())
            .all()
        )
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to list promotions", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"promotions": [p.to_dict() for p in promotions]}), 200


@bp_ext.get("/branches/<int:branch_id>/promotions/active")
def list_active_promotions(branch_id: int) -> tuple[dict[str, object], int]:
    """Promotions a customer could use right now. Public."""
    now = datetime.now()
    try:
        promotions = Promotion.query.filter(
            Promotion.branch_id == branch_id,
            Promotion.is_active.is_(True),
            Promotion.start_date <= now,
            Promotion.end_date >= now,
        ).all()
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to list active promotions", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    usable = [p for p in promotions if not (p.max_uses and (p.usage_count or 0) >= p.max_uses)]
    return jsonify({"promotions": [p.to_dict() for p in usable]}), 200


@bp_ext.put("/promotions/<int:promotion_id>")
def update_promotion(promotion_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error

    promotion = db.session.get(Promotion, promotion_id)
    if promotion is None:
        return jsonify({"error": "not_found", "message": "promotion not found"}), 404
    if not _can_manage_branch_promotions(user, promotion.branch_id):
        return forbidden()

    message = _apply_promotion_fields(promotion, request.get_json(silent=True) or {})
    if message:
        db.session.rollback()
        return _bad_request(message)

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"error": "conflict", "message": "promotion code already exists for this branch"}), 409
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to update promotion", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"promotion": promotion.to_dict()}), 200


@bp_ext.delete("/promotions/<int:promotion_id>")
def delete_promotion(promotion_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error

    promotion = db.session.get(Promotion, promotion_id)
    if promotion is None:
        return jsonify({"error": "not_found", "message": "promotion not found"}), 404
    if not _can_manage_branch_promotions(user, promotion.branch_id):
        return forbidden()

    promotion.is_active = False
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to deactivate promotion", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"promotion": promotion.to_dict()}), 200


@bp_ext.post("/promotions/validate")
def validate_promotion_code() -> tuple[dict[str, object], int]:
    """Check a code and estimate its discount for a subtotal."""
    payload = request.get_json(silent=True) or {}
    code = (payload.get("code") or "").strip()
    branch_id = payload.get("branch_id")
    if not code or not branch_id:
        return _bad_request("code and branch_id are required")

    client_id = payload.get("client_id")
    try:
        promotion = Promotion.query.filter_by(branch_id=branch_id, code=code).first()
        used = bool(
            promotion
            and client_id
            and PromotionUsage.query.filter_by(promotion_id=promotion.promotion_id, client_id=client_id).first()
        )
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to validate promotion", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    message = promotion_error(promotion, datetime.now(), client_id, used)
    if message:
        return jsonify({"valid": False, "message": message}), 200

    items = payload.get("items") or []
    services = [i for i in items if isinstance(i, dict) and i.get("type") == "service"]
    products = [i for i in items if isinstance(i, dict) and i.get("type") == "product"]
    try:
        subtotal = int(payload.get("subtotal_cents") or 0)
    except (TypeError, ValueError):
        return _bad_request("subtotal_cents must be an integer")
    discount = calculate_promotion_discount(promotion, subtotal, services, products)

    return jsonify({"valid": True, "promotion": promotion.to_dict(), "discount_cents": discount}), 200


# --- Deposits ---

def _daily_sales_cents(branch_id: int, day) -> int:
    start, end = _day_bounds(day)
    rows = Transaction.query.filter(
        Transaction.branch_id == branch_id,
        Transaction.status != "voided",
        Transaction.created_at >= start,
        Transaction.created_at < end,
    ).all()
    return sum(tx.total_cents for tx in rows)


@bp_ext.post("/branches/<int:branch_id>/deposits")
def create_deposit(branch_id: int) -> tuple[dict[str, object], int]:
    """Record a bank deposit and reconcile it with the day's sales."""
    user, error = require_user()
    if error:
        return error
    if db.session.get(Branch, branch_id) is None:
        return jsonify({"error": "not_found", "message": "branch not found"}), 404
    if not perms.can_bill(user.role) or not perms.can_access_branch_data(user, branch_id):
        return forbidden()

    payload = request.get_json(silent=True) or {}
    try:
        deposit_date = parse_date(payload.get("deposit_date"))
        amount = int(payload.get("amount_cents"))
    except (TypeError, ValueError):
        return _bad_request("deposit_date (YYYY-MM-DD) and amount_cents are required")
    if amount < 0:
        return _bad_request("amount_cents cannot be negative")

    try:
        sales = _daily_sales_cents(branch_id, deposit_date)
        result = validate_deposit_amount(amount, sales)
        deposit = Deposit(
            branch_id=branch_id,
            deposit_date=deposit_date,
            amount_cents=amount,
            daily_sales_cents=sales,
            difference_cents=result["difference_cents"],
            validation_status=result["status"],
            reference_number=(payload.get("reference_number") or "").strip() or None,
            notes=(payload.get("notes") or "").strip() or None,
            status="pending",
            submitted_by=user.user_id,
        )
        db.session.add(deposit)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to record deposit", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    if result["status"] != "match":
        current_app.logger.warning("Deposit %s for branch %s: %s", deposit.deposit_id, branch_id, result["message"])
    return jsonify({"deposit": deposit.to_dict(), "validation": result}), 201


@bp_ext.get("/branches/<int:branch_id>/deposits")
def list_deposits(branch_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error
    if not perms.can_access_branch_data(user, branch_id) or not (
        perms.can_bill(user.role) or perms.can_view_reports(user.role)
    ):
        return forbidden()

    query = Deposit.query.filter(Deposit.branch_id == branch_id)
    status = request.args.get("status")
    if status:
        query = query.filter(Deposit.status == status)

    try:
        deposits = query.order_by(Deposit.deposit_date.desc(), Deposit.deposit_id.desc()).all()
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to list deposits", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"deposits": [d.to_dict() for d in deposits]}), 200


@bp_ext.put("/deposits/<int:deposit_id>/review")
def review_deposit(deposit_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error

    deposit = db.session.get(Deposit, deposit_id)
    if deposit is None:
        return jsonify({"error": "not_found", "message": "deposit not found"}), 404
    if user.role not in perms.MANAGEMENT_ROLES or not perms.can_access_branch_data(user, deposit.branch_id):
        return forbidden()

    payload = request.get_json(silent=True) or {}
    decision = payload.get("status")
    if decision not in ("approved", "rejected"):
        return _bad_request("status must be 'approved' or 'rejected'", "invalid_status")
    if deposit.status != "pending":
        return _bad_request(f"Deposit already {deposit.status}", "invalid_transition")

    deposit.status = decision
    deposit.reviewed_by = user.user_id
    deposit.reviewed_at = datetime.now(timezone.utc)
    deposit.review_notes = (payload.get("notes") or "").strip() or None

    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to review deposit", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    current_app.logger.info("Deposit %s %s by %s", deposit_id, decision, user.user_id)
    return jsonify({"deposit": deposit.to_dict()}), 200


# --- Reports ---

def _report_branch_ids(user):
    """Branch ids the caller may report on, or None for all branches."""
    requested = request.args.get("branch_id", type=int)
    if user.role in perms.GLOBAL_ROLES:
        return [requested] if requested else None
    visible = [
        b.branch_id for b in Branch.query.all() if perms.can_view_branch(user.role, b, user.user_id)
    ]
    if user.branch_id and user.branch_id not in visible:
        visible.append(user.branch_id)
    if requested:
        return [requested] if requested in visible else []
    return visible


@bp_ext.get("/reports/revenue")
def revenue_report() -> tuple[dict[str, object], int]:
    """Revenue over paid transactions with per-branch, type, method and stylist breakdowns.
    ---
    tags:
      - Reports
    parameters:
      - name: branch_id
        in: query
        type: integer
      - name: date_from
        in: query
        type: string
      - name: date_to
        in: query
        type: string
    responses:
      200:
        description: Revenue summary
      403:
        description: Caller cannot view reports
    """
    user, error = require_user()
    if error:
        return error
    if not perms.can_view_reports(user.role):
        return forbidden()

    try:
        start, end = _date_range_args()
    except ValueError:
        return _bad_request("dates must be in YYYY-MM-DD format")

    query = Transaction.query.filter(Transaction.status == "paid")
    branch_ids = _report_branch_ids(user)
    if branch_ids is not None:
        query = query.filter(Transaction.branch_id.in_(branch_ids))
    if start:
        query = query.filter(Transaction.paid_at >= start)
    if end:
        query = query.filter(Transaction.paid_at < end)

    try:
        rows = query.all()
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to build revenue report", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    rate = current_app.config["COMMISSION_RATE"]
    by_branch: dict[str, int] = {}
    by_type: dict[str, int] = {}
    by_method: dict[str, int] = {}
    by_stylist: dict[str, dict[str, object]] = {}
    for tx in rows:
        by_branch[str(tx.branch_id)] = by_branch.get(str(tx.branch_id), 0) + tx.total_cents
        by_type[tx.transaction_type] = by_type.get(tx.transaction_type, 0) + tx.total_cents
        method = tx.payment_method or "cash"
        by_method[method] = by_method.get(method, 0) + tx.total_cents
        for item in tx.services:
            if not item.stylist_id:
                continue
            entry = by_stylist.setdefault(
                str(item.stylist_id),
                {"stylist_name": item.stylist_name, "revenue_cents": 0, "commission_cents": 0, "services": 0},
            )
            entry["revenue_cents"] += item.line_total_cents
            entry["commission_cents"] = calculate_commission(entry["revenue_cents"], rate)
            entry["services"] += item.quantity

    revenue = sum(tx.total_cents for tx in rows)
    return (
        jsonify(
            {
                "total_revenue_cents": revenue,
                "transaction_count": len(rows),
                "average_cents": revenue // len(rows) if rows else 0,
                "discount_cents": sum(tx.discount_cents for tx in rows),
                "tax_cents": sum(tx.tax_cents for tx in rows),
                "by_branch": by_branch,
                "by_type": by_type,
                "by_payment_method": by_method,
                "by_stylist": by_stylist,
            }
        ),
        200,
    )


@bp_ext.get("/reports/appointments")
def appointments_report() -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error
    if not perms.can_view_reports(user.role):
        return forbidden()

    try:
        start, end = _date_range_args()
    except ValueError:
        return _bad_request("dates must be in YYYY-MM-DD format")

    query = Appointment.query
    branch_ids = _report_branch_ids(user)
    if branch_ids is not None:
        query = query.filter(Appointment.branch_id.in_(branch_ids))
    if start:
        query = query.filter(Appointment.starts_at >= start)
    if end:
        query = query.filter(Appointment.starts_at < end)

    try:
        rows = query.all()
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to build appointment report", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    by_status: dict[str, int] = {}
    by_branch: dict[str, int] = {}
    for appt in rows:
        by_status[appt.status] = by_status.get(appt.status, 0) + 1
        by_branch[str(appt.branch_id)] = by_branch.get(str(appt.branch_id), 0) + 1

    total = len(rows)
    return (
        jsonify(
            {
                "total": total,
                "by_status": by_status,
                "by_branch": by_branch,
                "completion_rate": round(by_status.get("completed", 0) / total, 4) if total else 0,
                "cancellation_rate": round(by_status.get("cancelled", 0) / total, 4) if total else 0,
            }
        ),
        200,
    )


@bp_ext.get("/reports/loyalty")
def loyalty_report() -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error
    if not perms.can_view_reports(user.role):
        return forbidden()

    query = ClientLoyalty.query
    branch_ids = _report_branch_ids(user)
    if branch_ids is not None:
        query = query.filter(ClientLoyalty.branch_id.in_(branch_ids))

    try:
        rows = query.all()
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to build loyalty report", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    by_branch: dict[str, dict[str, int]] = {}
    for row in rows:
        entry = by_branch.setdefault(str(row.branch_id), {"points_outstanding": 0, "clients": 0})
        entry["points_outstanding"] += row.points_balance
        if row.points_balance > 0:
            entry["clients"] += 1

    return (
        jsonify(
            {
                "points_outstanding": sum(row.points_balance for row in rows),
                "clients": len({row.client_id for row in rows if row.points_balance > 0}),
                "by_branch": by_branch,
            }
        ),
        200,
    )


# --- Notifications ---

@bp_ext.get("/notifications")
def get_notifications() -> tuple[dict[str, object], int]:
    """Get the caller's notifications with pagination.
    ---
    tags:
      - Notifications
    parameters:
      - name: page
        in: query
        type: integer
        default: 1
      - name: limit
        in: query
        type: integer
        default: 20
        maximum: 50
      - name: unread_only
        in: query
        type: boolean
        default: false
    responses:
      200:
        description: List of notifications with pagination
      401:
        description: Authentication required
    """
    user, error = require_user()
    if error:
        return error

    page, limit = _page_args(default_limit=20, max_limit=50)
    unread_only = request.args.get("unread_only", "false").lower() == "true"

    query = Notification.query.filter(Notification.recipient_id == user.user_id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))

    try:
        total = query.count()
        notifications = (
            query.order_by(Notification.created_at.desc(), Notification.notification_id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
            .all()
        )
        unread = Notification.query.filter(
            Notification.recipient_id == user.user_id,
            Notification.is_read.is_(False),
        ).count()
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch notifications", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return (
        jsonify(
            {
                "notifications": [n.to_dict() for n in notifications],
                "pagination": {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit},
                "unread_count": unread,
            }
        ),
        200,
    )


@bp_ext.put("/notifications/<int:notification_id>/read")
def mark_notification_read(notification_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error

    try:
        notification = db.session.get(Notification, notification_id)
        if notification is None or notification.recipient_id != user.user_id:
            return jsonify({"error": "not_found", "message": "notification not found"}), 404

        notification.is_read = True
        db.session.commit()
        return jsonify({"notification": notification.to_dict()}), 200
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to mark notification read", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp_ext.put("/notifications/read-all")
def mark_all_notifications_read() -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error

    try:
        updated = Notification.query.filter(
            Notification.recipient_id == user.user_id,
            Notification.is_read.is_(False),
        ).update({"is_read": True})
        db.session.commit()
        return jsonify({"message": f"{updated} notifications marked as read", "updated": updated}), 200
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to mark notifications read", exc_info=exc)
        return jsonify({"error": "database_error"}), 500
