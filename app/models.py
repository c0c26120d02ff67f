"""Database models for the salon branch backend."""
from __future__ import annotations

from datetime import datetime, timezone

from .extensions import db


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _iso(value) -> str | None:
    return value.isoformat() if value else None


USER_ROLES = (
    "systemAdmin",
    "operationalManager",
    "branchAdmin",
    "branchManager",
    "receptionist",
    "inventoryController",
    "stylist",
    "client",
)


class User(db.Model):
    __tablename__ = "users"

    user_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    role = db.Column(
        db.Enum(
            *USER_ROLES,
            name="user_role",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="client",
    )
    phone = db.Column(db.String(30))
    address = db.Column(db.String(200))
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.branch_id"), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    # Customer tier flags used for the POS customer type
    is_vip = db.Column(db.Boolean, nullable=False, default=False)
    is_regular = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    branch = db.relationship("Branch", foreign_keys=[branch_id])
    auth_account = db.relationship("AuthAccount", back_populates="user", uselist=False)

    def to_dict_basic(self) -> dict[str, object]:
        return {
            "id": self.user_id,
            "user_id": self.user_id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "phone": self.phone,
            "branch_id": self.branch_id,
            "is_active": bool(self.is_active),
        }

    def client_info(self) -> dict[str, object]:
        return {
            "id": self.user_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "is_vip": bool(self.is_vip),
            "is_regular": bool(self.is_regular),
        }


class AuthAccount(db.Model):
    __tablename__ = "auth_accounts"

    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), primary_key=True)
    password_hash = db.Column(db.String(255), nullable=False)
    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    user = db.relationship("User", back_populates="auth_account")


class Branch(db.Model):
    """A salon location with its own hours, staff and loyalty settings."""

    __tablename__ = "branches"

    branch_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    address = db.Column(db.String(255))
    city = db.Column(db.String(100))
    contact_number = db.Column(db.String(30))
    email = db.Column(db.String(255))
    # {"monday": {"open": "09:00", "close": "18:00", "is_open": true}, ...}
    operating_hours = db.Column(db.JSON, nullable=True, default=dict)
    capacity = db.Column(db.Integer, nullable=False, default=10)
    branch_admin_id = db.Column(
        db.Integer,
        db.ForeignKey("users.user_id", use_alter=True, name="fk_branch_admin"),
        nullable=True,
    )
    manager_id = db.Column(
        db.Integer,
        db.ForeignKey("users.user_id", use_alter=True, name="fk_branch_manager"),
        nullable=True,
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    loyalty_enabled = db.Column(db.Boolean, nullable=False, default=True)
    amount_per_point_cents = db.Column(db.Integer, nullable=False, default=10000)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    def loyalty_config(self) -> dict[str, object]:
        return {
            "enabled": bool(self.loyalty_enabled),
            "amount_per_point_cents": self.amount_per_point_cents,
        }

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.branch_id,
            "branch_id": self.branch_id,
            "name": self.name,
            "address": self.address,
            "city": self.city,
            "contact_number": self.contact_number,
            "email": self.email,
            "operating_hours": self.operating_hours or {},
            "capacity": self.capacity,
            "branch_admin_id": self.branch_admin_id,
            "manager_id": self.manager_id,
            "is_active": bool(self.is_active),
            "loyalty": self.loyalty_config(),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Service(db.Model):
    """Services offered by a branch."""

    __tablename__ = "services"

    service_id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.branch_id"), nullable=False)
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)
    category = db.Column(db.String(100))
    price_cents = db.Column(db.Integer, nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    branch = db.relationship("Branch")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.service_id,
            "branch_id": self.branch_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "price_cents": self.price_cents,
            "price": self.price_cents / 100.0,
            "duration_minutes": self.duration_minutes,
            "is_active": bool(self.is_active),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class StylistSchedule(db.Model):
    """Weekly availability of a stylist, one row per working day."""

    __tablename__ = "stylist_schedules"
    __table_args__ = (
        db.UniqueConstraint("stylist_id", "day_of_week", name="uq_stylist_day"),
    )

    schedule_id = db.Column(db.Integer, primary_key=True)
    stylist_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.branch_id"), nullable=False)
    day_of_week = db.Column(db.String(10), nullable=False)  # monday..sunday
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    stylist = db.relationship("User")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.schedule_id,
            "stylist_id": self.stylist_id,
            "stylist_name": self.stylist.name if self.stylist else None,
            "branch_id": self.branch_id,
            "day_of_week": self.day_of_week,
            "start_time": self.start_time.strftime("%H:%M") if self.start_time else None,
            "end_time": self.end_time.strftime("%H:%M") if self.end_time else None,
        }


class AppointmentService(db.Model):
    """Service booked on an appointment, priced at booking time."""

    __tablename__ = "appointment_services"

    appointment_id = db.Column(
        db.Integer, db.ForeignKey("appointments.appointment_id"), primary_key=True
    )
    service_id = db.Column(db.Integer, db.ForeignKey("services.service_id"), primary_key=True)
    price_cents = db.Column(db.Integer, nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False)

    service = db.relationship("Service")

    def to_dict(self) -> dict[str, object]:
        return {
            "service_id": self.service_id,
            "name": self.service.name if self.service else None,
            "price_cents": self.price_cents,
            "duration_minutes": self.duration_minutes,
        }


class AppointmentHistory(db.Model):
    __tablename__ = "appointment_history"

    history_id = db.Column(db.Integer, primary_key=True)
    appointment_id = db.Column(
        db.Integer, db.ForeignKey("appointments.appointment_id"), nullable=False
    )
    action = db.Column(db.String(100), nullable=False)
    performed_by = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    notes = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "action": self.action,
            "by": self.performed_by,
            "timestamp": _iso(self.created_at),
            "notes": self.notes,
        }


class Appointment(db.Model):
    """Client appointment with a stylist at a branch."""

    __tablename__ = "appointments"

    appointment_id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.branch_id"), nullable=False)
    stylist_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    # Registered clients are linked; walk-ins only carry the contact fields
    client_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    client_name = db.Column(db.String(100))
    client_phone = db.Column(db.String(30))
    client_email = db.Column(db.String(255))
    client_address = db.Column(db.String(200))
    is_new_client = db.Column(db.Boolean, nullable=False, default=False)
    starts_at = db.Column(db.DateTime, nullable=False)
    ends_at = db.Column(db.DateTime, nullable=False)
    status = db.Column(
        db.Enum(
            "scheduled",
            "confirmed",
            "in_progress",
            "completed",
            "cancelled",
            name="appointment_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="scheduled",
    )
    notes = db.Column(db.Text)
    created_by = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    branch = db.relationship("Branch")
    stylist = db.relationship("User", foreign_keys=[stylist_id])
    client = db.relationship("User", foreign_keys=[client_id])
    services = db.relationship(
        "AppointmentService",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    history = db.relationship(
        "AppointmentHistory",
        cascade="all, delete-orphan",
        order_by="AppointmentHistory.history_id",
    )

    @property
    def service_ids(self) -> list[int]:
        return [item.service_id for item in self.services]

    @property
    def duration_minutes(self) -> int:
        return sum(item.duration_minutes for item in self.services)

    @property
    def display_client_name(self) -> str:
        if self.client_name:
            return self.client_name
        if self.client:
            return self.client.name
        return "Unknown Client"

    def client_info(self) -> dict[str, object]:
        return {
            "id": self.client_id,
            "name": self.display_client_name,
            "phone": self.client_phone or (self.client.phone if self.client else None),
            "email": self.client_email or (self.client.email if self.client else None),
            "address": self.client_address,
        }

    def add_history(self, action: str, by: int | None, notes: str | None = None) -> None:
        self.history.append(AppointmentHistory(action=action, performed_by=by, notes=notes))

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.appointment_id,
            "branch_id": self.branch_id,
            "branch_name": self.branch.name if self.branch else None,
            "stylist_id": self.stylist_id,
            "stylist_name": self.stylist.name if self.stylist else None,
            "client_id": self.client_id,
            "client_info": self.client_info(),
            "is_new_client": bool(self.is_new_client),
            "appointment_date": self.starts_at.date().isoformat() if self.starts_at else None,
            "appointment_time": self.starts_at.strftime("%H:%M") if self.starts_at else None,
            "starts_at": _iso(self.starts_at),
            "ends_at": _iso(self.ends_at),
            "service_ids": self.service_ids,
            "services": [item.to_dict() for item in self.services],
            "duration_minutes": self.duration_minutes,
            "status": self.status,
            "notes": self.notes,
            "created_by": self.created_by,
            "history": [entry.to_dict() for entry in self.history],
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Notification(db.Model):
    """Stored notification; delivery is left to the mobile client."""

    __tablename__ = "notifications"

    notification_id = db.Column(db.Integer, primary_key=True)
    recipient_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    recipient_role = db.Column(db.String(30), nullable=False, default="client")
    appointment_id = db.Column(
        db.Integer, db.ForeignKey("appointments.appointment_id"), nullable=True
    )
    notification_type = db.Column(
        db.Enum(
            "appointment_created",
            "appointment_confirmed",
            "appointment_cancelled",
            "appointment_completed",
            "appointment_rescheduled",
            "appointment_updated",
            name="notification_type",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
    )
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    is_read = db.Column(db.Boolean, nullable=False, server_default="0")
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.notification_id,
            "recipient_id": self.recipient_id,
            "recipient_role": self.recipient_role,
            "appointment_id": self.appointment_id,
            "type": self.notification_type,
            "title": self.title,
            "message": self.message,
            "is_read": bool(self.is_read),
            "created_at": _iso(self.created_at),
        }


class LeaveRequest(db.Model):
    """Staff leave request, approved or denied by branch management."""

    __tablename__ = "leave_requests"

    leave_id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.branch_id"), nullable=False)
    leave_type = db.Column(
        db.Enum(
            "personal",
            "sick",
            "vacation",
            "emergency",
            "other",
            name="leave_type",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="personal",
    )
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    is_full_day = db.Column(db.Boolean, nullable=False, default=True)
    start_time = db.Column(db.Time)
    end_time = db.Column(db.Time)
    reason = db.Column(db.Text, nullable=False)
    notes = db.Column(db.Text)
    status = db.Column(
        db.Enum(
            "pending",
            "approved",
            "denied",
            "cancelled",
            name="leave_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="pending",
    )
    approved_by = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    approved_at = db.Column(db.DateTime)
    denied_by = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    denied_reason = db.Column(db.Text)
    created_by = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    history = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    employee = db.relationship("User", foreign_keys=[employee_id])

    def add_history(self, action: str, by: int | None, notes: str | None = None) -> None:
        # JSON columns only track reassignment
        self.history = [
            *(self.history or []),
            {"action": action, "by": by, "timestamp": utc_now().isoformat(), "notes": notes},
        ]

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.leave_id,
            "employee_id": self.employee_id,
            "employee_name": self.employee.name if self.employee else None,
            "branch_id": self.branch_id,
            "leave_type": self.leave_type,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "is_full_day": bool(self.is_full_day),
            "start_time": self.start_time.strftime("%H:%M") if self.start_time else None,
            "end_time": self.end_time.strftime("%H:%M") if self.end_time else None,
            "reason": self.reason,
            "notes": self.notes,
            "status": self.status,
            "approved_by": self.approved_by,
            "approved_at": _iso(self.approved_at),
            "denied_by": self.denied_by,
            "denied_reason": self.denied_reason,
            "history": self.history or [],
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Product(db.Model):
    """Retail product stocked at a branch and sold over the POS."""

    __tablename__ = "products"

    product_id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.branch_id"), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    sku = db.Column(db.String(64))
    category = db.Column(db.String(100))
    price_cents = db.Column(db.Integer, nullable=False)
    stock_quantity = db.Column(db.Integer, nullable=False, server_default="0")
    is_active = db.Column(db.Boolean, nullable=False, server_default="1")
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.product_id,
            "branch_id": self.branch_id,
            "name": self.name,
            "sku": self.sku,
            "category": self.category,
            "price_cents": self.price_cents,
            "price": self.price_cents / 100.0,
            "stock_quantity": self.stock_quantity,
            "is_active": bool(self.is_active),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class ClientLoyalty(db.Model):
    """Loyalty points a client holds at one branch."""

    __tablename__ = "client_loyalty"
    __table_args__ = (
        db.UniqueConstraint("client_id", "branch_id", name="uq_client_branch_loyalty"),
    )

    client_loyalty_id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.branch_id"), nullable=False)
    client_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    points_balance = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    branch = db.relationship("Branch")

    def to_dict(self) -> dict[str, object]:
        return {
            "branch_id": self.branch_id,
            "branch_name": self.branch.name if self.branch else None,
            "client_id": self.client_id,
            "points_balance": self.points_balance,
            "updated_at": _iso(self.updated_at),
        }


class Promotion(db.Model):
    """Discount code offered by a branch."""

    __tablename__ = "promotions"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "code", name="uq_branch_promotion_code"),
    )

    promotion_id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.branch_id"), nullable=False)
    code = db.Column(db.String(50), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    discount_type = db.Column(
        db.Enum("percentage", "fixed", name="discount_type", native_enum=False, validate_strings=True),
        nullable=False,
    )
    # Percent for "percentage", cents for "fixed"
    discount_value = db.Column(db.Integer, nullable=False)
    applicable_to = db.Column(
        db.Enum(
            "all",
            "services",
            "products",
            "specific",
            name="promotion_scope",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="all",
    )
    specific_service_ids = db.Column(db.JSON, nullable=False, default=list)
    specific_product_ids = db.Column(db.JSON, nullable=False, default=list)
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, server_default="1")
    usage_type = db.Column(
        db.Enum("one-time", "repeating", name="promotion_usage", native_enum=False, validate_strings=True),
        nullable=False,
        default="repeating",
    )
    max_uses = db.Column(db.Integer, nullable=True)
    usage_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.promotion_id,
            "branch_id": self.branch_id,
            "code": self.code,
            "title": self.title,
            "description": self.description,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "applicable_to": self.applicable_to,
            "specific_service_ids": self.specific_service_ids or [],
            "specific_product_ids": self.specific_product_ids or [],
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "is_active": bool(self.is_active),
            "usage_type": self.usage_type,
            "max_uses": self.max_uses,
            "usage_count": self.usage_count,
        }


class PromotionUsage(db.Model):
    __tablename__ = "promotion_usages"

    usage_id = db.Column(db.Integer, primary_key=True)
    promotion_id = db.Column(db.Integer, db.ForeignKey("promotions.promotion_id"), nullable=False)
    client_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    transaction_id = db.Column(
        db.Integer, db.ForeignKey("transactions.transaction_id"), nullable=True
    )
    used_at = db.Column(db.DateTime, nullable=False, default=utc_now)


class TransactionItem(db.Model):
    __tablename__ = "transaction_items"

    item_id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(
        db.Integer, db.ForeignKey("transactions.transaction_id"), nullable=False
    )
    item_type = db.Column(
        db.Enum("service", "product", name="transaction_item_type", native_enum=False, validate_strings=True),
        nullable=False,
    )
    service_id = db.Column(db.Integer, db.ForeignKey("services.service_id"), nullable=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.product_id"), nullable=True)
    name = db.Column(db.String(200), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    stylist_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    stylist_name = db.Column(db.String(100))
    duration_minutes = db.Column(db.Integer)

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * (self.quantity or 1)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.item_id,
            "type": self.item_type,
            "service_id": self.service_id,
            "product_id": self.product_id,
            "name": self.name,
            "price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "line_total_cents": self.line_total_cents,
            "stylist_id": self.stylist_id,
            "stylist_name": self.stylist_name,
            "duration_minutes": self.duration_minutes,
        }


class Transaction(db.Model):
    """Point-of-sale bill for services or products at a branch."""

    __tablename__ = "transactions"

    transaction_id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.branch_id"), nullable=False)
    client_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    client_info = db.Column(db.JSON, nullable=False, default=dict)
    appointment_id = db.Column(
        db.Integer, db.ForeignKey("appointments.appointment_id"), nullable=True
    )
    transaction_type = db.Column(
        db.Enum("service", "product", name="transaction_type", native_enum=False, validate_strings=True),
        nullable=False,
    )
    status = db.Column(
        db.Enum(
            "in_service",
            "paid",
            "voided",
            name="transaction_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="in_service",
    )
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    promotion_id = db.Column(db.Integer, db.ForeignKey("promotions.promotion_id"), nullable=True)
    payment_method = db.Column(
        db.Enum("cash", "card", "digital", name="payment_method", native_enum=False, validate_strings=True),
        nullable=True,
    )
    amount_received_cents = db.Column(db.Integer)
    change_cents = db.Column(db.Integer)
    # Track payment gateway identifier (Stripe payment intent id)
    gateway_payment_id = db.Column(db.String(255), nullable=True, unique=True)
    loyalty_points_earned = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text)
    created_by = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    paid_at = db.Column(db.DateTime)
    void_reason = db.Column(db.String(255))
    void_notes = db.Column(db.Text)
    voided_by = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    voided_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    branch = db.relationship("Branch")
    appointment = db.relationship("Appointment")
    promotion = db.relationship("Promotion")
    items = db.relationship(
        "TransactionItem",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TransactionItem.item_id",
    )

    @property
    def services(self) -> list[TransactionItem]:
        return [item for item in self.items if item.item_type == "service"]

    @property
    def products(self) -> list[TransactionItem]:
        return [item for item in self.items if item.item_type == "product"]

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.transaction_id,
            "branch_id": self.branch_id,
            "client_id": self.client_id,
            "client_info": self.client_info or {},
            "appointment_id": self.appointment_id,
            "transaction_type": self.transaction_type,
            "status": self.status,
            "items": [item.to_dict() for item in self.items],
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "total": self.total_cents / 100.0,
            "promotion_id": self.promotion_id,
            "payment_method": self.payment_method,
            "amount_received_cents": self.amount_received_cents,
            "change_cents": self.change_cents,
            "gateway_payment_id": self.gateway_payment_id,
            "loyalty_points_earned": self.loyalty_points_earned,
            "notes": self.notes,
            "created_by": self.created_by,
            "paid_at": _iso(self.paid_at),
            "void_reason": self.void_reason,
            "void_notes": self.void_notes,
            "voided_by": self.voided_by,
            "voided_at": _iso(self.voided_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Deposit(db.Model):
    """Daily bank deposit reconciled against the branch's sales."""

    __tablename__ = "deposits"

    deposit_id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.branch_id"), nullable=False)
    deposit_date = db.Column(db.Date, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    daily_sales_cents = db.Column(db.Integer, nullable=False)
    difference_cents = db.Column(db.Integer, nullable=False)
    validation_status = db.Column(
        db.Enum("match", "manual_review", "mismatch", name="deposit_validation", native_enum=False, validate_strings=True),
        nullable=False,
    )
    reference_number = db.Column(db.String(100))
    notes = db.Column(db.Text)
    status = db.Column(
        db.Enum("pending", "approved", "rejected", name="deposit_status", native_enum=False, validate_strings=True),
        nullable=False,
        server_default="pending",
    )
    submitted_by = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    reviewed_at = db.Column(db.DateTime)
    review_notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.deposit_id,
            "branch_id": self.branch_id,
            "deposit_date": _iso(self.deposit_date),
            "amount_cents": self.amount_cents,
            "daily_sales_cents": self.daily_sales_cents,
            "difference_cents": self.difference_cents,
            "validation_status": self.validation_status,
            "reference_number": self.reference_number,
            "notes": self.notes,
            "status": self.status,
            "submitted_by": self.submitted_by,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": _iso(self.reviewed_at),
            "review_notes": self.review_notes,
            "created_at": _iso(self.created_at),
        }
