"""Point-of-sale arithmetic and view-model derivations.

All money values are integer cents. Items are dicts shaped like
``TransactionItem.to_dict()``: ``type``, ``service_id`` / ``product_id``,
``price_cents``, ``quantity`` and ``duration_minutes``.
"""
from __future__ import annotations

from datetime import datetime

TRANSACTION_STATUS = ("in_service", "paid", "voided")
TRANSACTION_TYPES = ("service", "product")
PAYMENT_METHODS = ("cash", "card", "digital")

DEFAULT_COMMISSION_RATE = 0.15
DEFAULT_AMOUNT_PER_POINT_CENTS = 10000

# Deposit reconciliation thresholds, in cents
DEPOSIT_TOLERANCE_CENTS = 100
DEPOSIT_MISMATCH_CENTS = 10000

_STATUS_LABELS = {
    "in_service": "In Service",
    "paid": "Paid",
    "voided": "Voided",
    # legacy values
    "pending": "In Service",
    "completed": "Paid",
    "cancelled": "Voided",
    "refunded": "Voided",
}


def _line_total(item: dict) -> int:
    return int(item.get("price_cents") or 0) * int(item.get("quantity") or 1)


def calculate_totals(items, discount_cents: int = 0, tax_rate: float = 0) -> dict[str, int]:
    """Return subtotal, discount, tax and total in cents.

    The discount never takes the taxable amount below zero.
    """
    subtotal = sum(_line_total(item) for item in items)
    discount = max(0, min(int(discount_cents or 0), subtotal))
    taxable = subtotal - discount
    tax = int(round(taxable * float(tax_rate or 0) / 100))
    return {
        "subtotal_cents": subtotal,
        "discount_cents": discount,
        "tax_cents": tax,
        "total_cents": taxable + tax,
    }


def calculate_commission(total_cents: int, rate: float = DEFAULT_COMMISSION_RATE) -> int:
    return int(round((total_cents or 0) * rate))


def calculate_duration(items) -> str:
    if not items:
        return "0 mins"
    minutes = sum(int(item.get("duration_minutes") or 0) for item in items)
    return f"{minutes} mins" if minutes > 0 else "30 mins"


def map_transaction_status(status) -> str:
    if not status:
        return "In Service"
    return _STATUS_LABELS.get(str(status).lower(), status)


def determine_customer_type(client_info) -> str:
    if not client_info:
        return "New"
    if client_info.get("is_vip"):
        return "VIP"
    if client_info.get("is_regular"):
        return "Regular"
    return "New"


def loyalty_points_for(total_cents: int, loyalty_config) -> int:
    """Points earned for a paid bill under a branch's loyalty settings."""
    if not loyalty_config or not loyalty_config.get("enabled"):
        return 0
    per_point = int(loyalty_config.get("amount_per_point_cents") or DEFAULT_AMOUNT_PER_POINT_CENTS)
    if per_point <= 0 or total_cents <= 0:
        return 0
    return total_cents // per_point


def calculate_promotion_discount(promotion, subtotal_cents: int, services=(), products=()) -> int:
    """Discount in cents a promotion grants on a bill."""
    scope = promotion.applicable_to
    if scope == "all":
        applicable = subtotal_cents
    elif scope == "services":
        applicable = sum(_line_total(s) for s in services)
    elif scope == "products":
        applicable = sum(_line_total(p) for p in products)
    elif scope == "specific":
        service_ids = set(promotion.specific_service_ids or [])
        product_ids = set(promotion.specific_product_ids or [])
        applicable = sum(_line_total(s) for s in services if s.get("service_id") in service_ids)
        applicable += sum(_line_total(p) for p in products if p.get("product_id") in product_ids)
    else:
        applicable = 0

    if promotion.discount_type == "percentage":
        return int(round(applicable * promotion.discount_value / 100))
    return min(int(promotion.discount_value), applicable)


def promotion_error(promotion, now: datetime, client_id=None, used_by_client: bool = False):
    """Return why a promotion cannot be applied, or ``None``."""
    if promotion is None:
        return "Invalid promotion code"
    if not promotion.is_active:
        return "This promotion is no longer active"
    if now < promotion.start_date:
        return f"This promotion starts on {promotion.start_date.date().isoformat()}"
    if now > promotion.end_date:
        return "This promotion has expired"
    if promotion.usage_type == "one-time":
        if not client_id:
            return "Client ID is required for one-time use promotions"
        if used_by_client:
            return "You have already used this promotion"
    if promotion.usage_type == "repeating" and promotion.max_uses:
        if (promotion.usage_count or 0) >= promotion.max_uses:
            return "This promotion has reached its maximum usage limit"
    return None


def validate_deposit_amount(
    deposit_cents: int,
    daily_sales_cents: int,
    tolerance_cents: int = DEPOSIT_TOLERANCE_CENTS,
) -> dict[str, object]:
    difference = deposit_cents - daily_sales_cents
    gap = abs(difference)
    if gap <= tolerance_cents:
        status, message = "match", "Amount matches daily sales"
    elif gap > DEPOSIT_MISMATCH_CENTS:
        status, message = "mismatch", f"Significant difference: {gap / 100:.2f}"
    else:
        status, message = "manual_review", f"Minor difference: {gap / 100:.2f} - requires review"
    return {
        "is_valid": status == "match",
        "difference_cents": difference,
        "status": status,
        "message": message,
    }


def transaction_view_model(tx, commission_rate: float = DEFAULT_COMMISSION_RATE) -> dict[str, object]:
    """Flatten a transaction into the POS list row."""
    client_info = tx.client_info or {}
    items = [item.to_dict() for item in tx.items]
    services = [item for item in items if item["type"] == "service"]
    first_service = services[0] if services else {}
    return {
        "id": tx.transaction_id,
        "type": tx.transaction_type,
        "customer_name": client_info.get("name") or "Unknown Customer",
        "service_name": first_service.get("name") or "Service",
        "stylist_name": first_service.get("stylist_name") or "Unknown Stylist",
        "appointment_id": tx.appointment_id,
        "amount_cents": tx.total_cents,
        "commission_cents": calculate_commission(tx.total_cents, commission_rate),
        "status": map_transaction_status(tx.status),
        "original_status": tx.status,
        "date": tx.created_at.isoformat() if tx.created_at else None,
        "payment_method": tx.payment_method or "cash",
        "duration": calculate_duration(services),
        "customer_type": determine_customer_type(client_info),
        "items": [
            {"name": item["name"], "price_cents": item["price_cents"], "quantity": item["quantity"]}
            for item in items
        ],
    }


def receipt_data(tx, branch=None) -> dict[str, object]:
    """Structured receipt for a transaction."""
    return {
        "receipt_number": f"TX-{tx.transaction_id:06d}",
        "branch": {
            "name": branch.name if branch else None,
            "address": branch.address if branch else None,
            "contact_number": branch.contact_number if branch else None,
        },
        "customer": (tx.client_info or {}).get("name") or "Walk-in",
        "items": [
            {
                "name": item.name,
                "quantity": item.quantity,
                "unit_price_cents": item.unit_price_cents,
                "line_total_cents": item.line_total_cents,
            }
            for item in tx.items
        ],
        "subtotal_cents": tx.subtotal_cents,
        "discount_cents": tx.discount_cents,
        "tax_cents": tx.tax_cents,
        "total_cents": tx.total_cents,
        "payment_method": tx.payment_method,
        "amount_received_cents": tx.amount_received_cents,
        "change_cents": tx.change_cents,
        "loyalty_points_earned": tx.loyalty_points_earned,
        "paid_at": tx.paid_at.isoformat() if tx.paid_at else None,
    }
