"""HTTP routes for the salon branch backend."""
from __future__ import annotations

import secrets
from datetime import date, datetime, timedelta, timezone

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import or_, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import aliased
from werkzeug.security import check_password_hash, generate_password_hash

from . import permissions as perms
from .auth import build_token, forbidden, require_user
from .extensions import db
from .models import (Appointment, AppointmentService, AuthAccount, Branch,
                     LeaveRequest, Notification, Service, StylistSchedule, User)
from .scheduling import (ACTIVE_STATUSES, APPOINTMENT_STATUS,
                         DEFAULT_OPERATING_HOURS, LEAVE_STATUS, WEEKDAYS,
                         available_slots, check_branch_hours,
                         check_stylist_availability, date_ranges_overlap,
                         find_conflicts, format_time_12h,
                         is_valid_status_transition, leave_blocks, parse_date,
                         parse_id, parse_time, sanitize_appointment_data,
                         validate_appointment_data, validate_client_info,
                         validate_leave_data)

bp = Blueprint("api", __name__)


def register_routes(app) -> None:
    from .routes_extended import bp_ext

    app.register_blueprint(bp)
    app.register_blueprint(bp_ext)


def _page_args(default_limit: int = 20, max_limit: int = 100) -> tuple[int, int]:
    try:
        page = max(1, int(request.args.get("page", 1)))
        limit = min(max_limit, max(1, int(request.args.get("limit", default_limit))))
    except ValueError:
        page, limit = 1, default_limit
    return page, limit


def _validation_failed(errors: list[str], status: int = 400):
    return (
        jsonify({"error": "validation_failed", "message": errors[0], "errors": errors}),
        status,
    )


@bp.get("/health")
def health_check() -> tuple[dict[str, str], int]:
    """
    Expose a simple uptime check endpoint.
    ---
    tags:
      - Health
    responses:
      200:
        description: Service is healthy and running.
    """
    return jsonify({"status": "ok"}), 200


@bp.get("/db-health")
def database_health() -> tuple[dict[str, str], int]:
    """Check connectivity to the configured database.
    ---
    tags:
      - Health
    responses:
      200:
        description: Database connection is ok.
      500:
        description: Database connection failed.
    """
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        current_app.logger.exception("Database health check failed", exc_info=exc)
        return jsonify({"database": "error", "error": "database_error"}), 500
    return jsonify({"database": "ok"}), 200


# --- Authentication ---

@bp.post("/auth/register")
def register_user() -> tuple[dict[str, object], int]:
    """Register a new client account.
    ---
    tags:
      - Authentication
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            name:
              type: string
            email:
              type: string
            password:
              type: string
            phone:
              type: string
          required:
            - name
            - email
            - password
    responses:
      201:
        description: Client registered, returns access token
      400:
        description: Invalid payload
      409:
        description: Email already in use
      500:
        description: Server error
    """
    payload = request.get_json(silent=True) or {}

    name = (payload.get("name") or "").strip()
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""
    phone = (payload.get("phone") or "").strip() or None

    if not name or not email or not password:
        return (
            jsonify({"error": "invalid_payload", "message": "name, email, and password are required"}),
            400,
        )

    # Staff accounts are created by administrators through POST /users
    if (payload.get("role") or "client") != perms.CLIENT:
        return jsonify({"error": "invalid_payload", "message": "only client accounts can self-register"}), 400

    if User.query.filter_by(email=email).first():
        return jsonify({"error": "conflict", "message": "email address is already in use"}), 409

    try:
        new_user = User(name=name, email=email, role=perms.CLIENT, phone=phone)
        db.session.add(new_user)
        db.session.flush()  # Get the new user_id before creating the AuthAccount

        db.session.add(AuthAccount(user_id=new_user.user_id, password_hash=generate_password_hash(password)))
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to register new user", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    token = build_token({"user_id": new_user.user_id, "role": new_user.role})
    return jsonify({"token": token, "user": new_user.to_dict_basic()}), 201


@bp.post("/auth/login")
def login() -> tuple[dict[str, object], int]:
    """Authenticate a user by email/password and return an access token.
    ---
    tags:
      - Authentication
    responses:
      200:
        description: Login successful, returns access token
      400:
        description: Missing email or password
      401:
        description: Invalid credentials
      403:
        description: Account disabled
    """
    payload = request.get_json(silent=True) or {}

    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""

    if not email or not password:
        return (
            jsonify({"error": "invalid_payload", "message": "email and password are required"}),
            400,
        )

    record = (
        db.session.query(User, AuthAccount)
        .join(AuthAccount, AuthAccount.user_id == User.user_id)
        .filter(User.email == email)
        .first()
    )

    if not record:
        return jsonify({"error": "unauthorized", "message": "invalid email or password"}), 401

    user, auth_account = record

    if not check_password_hash(auth_account.password_hash, password):
        current_app.logger.warning("Failed login attempt for %s", email)
        return jsonify({"error": "unauthorized", "message": "invalid email or password"}), 401

    if not user.is_active:
        return jsonify({"error": "forbidden", "message": "account is disabled"}), 403

    if not perms.is_valid_role(user.role):
        return jsonify({"error": "forbidden", "message": f"invalid user role: {user.role}"}), 403

    auth_account.last_login_at = datetime.now(timezone.utc)

    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to update last login timestamp", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    token = build_token({"user_id": user.user_id, "role": user.role})

    user_data = user.to_dict_basic()
    user_data["role_display_name"] = perms.role_display_name(user.role)
    user_data["available_roles"] = perms.available_roles(user.role)
    user_data["permissions"] = list(perms.ROLE_PERMISSIONS.get(user.role, ()))

    return jsonify({"token": token, "user": user_data}), 200


@bp.get("/auth/me")
def get_me() -> tuple[dict[str, object], int]:
    """Return the authenticated user."""
    user, error = require_user()
    if error:
        return error

    user_data = user.to_dict_basic()
    user_data["role_display_name"] = perms.role_display_name(user.role)
    user_data["permissions"] = list(perms.ROLE_PERMISSIONS.get(user.role, ()))
    return jsonify({"user": user_data}), 200


# --- Users & staff ---

@bp.post("/users")
def create_user() -> tuple[dict[str, object], int]:
    """Create a staff or client account (administrators only).
    ---
    tags:
      - Users
    responses:
      201:
        description: User created
      400:
        description: Invalid payload
      403:
        description: Caller cannot manage users of this role
      409:
        description: Email already in use
    """
    user, error = require_user()
    if error:
        return error

    if not perms.has_permission(user.role, "manageUsers"):
        return forbidden()

    payload = request.get_json(silent=True) or {}
    name = (payload.get("name") or "").strip()
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""
    role = payload.get("role") or perms.CLIENT
    branch_id = payload.get("branch_id")

    if not name or not email or not password:
        return (
            jsonify({"error": "invalid_payload", "message": "name, email, and password are required"}),
            400,
        )

    if not perms.is_valid_role(role):
        return jsonify({"error": "invalid_payload", "message": f"unknown role: {role}"}), 400

    if not perms.can_manage_user(user.role, role):
        return forbidden(f"cannot create users with role {role}")

    if branch_id is not None and db.session.get(Branch, branch_id) is None:
        return jsonify({"error": "not_found", "message": "branch not found"}), 404

    if User.query.filter_by(email=email).first():
        return jsonify({"error": "conflict", "message": "email address is already in use"}), 409

    try:
        new_user = User(
            name=name,
            email=email,
            role=role,
            phone=(payload.get("phone") or "").strip() or None,
            branch_id=branch_id,
        )
        db.session.add(new_user)
        db.session.flush()
        db.session.add(AuthAccount(user_id=new_user.user_id, password_hash=generate_password_hash(password)))
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to create user", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    current_app.logger.info("User %s created %s account %s", user.user_id, role, new_user.user_id)
    return jsonify({"user": new_user.to_dict_basic()}), 201


@bp.get("/users")
def list_users() -> tuple[dict[str, object], int]:
    """List users with optional role and branch filters."""
    user, error = require_user()
    if error:
        return error

    if not (perms.has_permission(user.role, "manageUsers") or perms.has_permission(user.role, "manageStaff")):
        return forbidden()

    page, limit = _page_args()
    query = User.query

    role = request.args.get("role")
    if role:
        query = query.filter(User.role == role)

    branch_id = request.args.get("branch_id", type=int)
    if user.role not in perms.GLOBAL_ROLES:
        # Branch staff managers only see their own branch
        branch_id = user.branch_id
    if branch_id:
        query = query.filter(User.branch_id == branch_id)

    try:
        total = query.count()
        users = query.order_by(User.name.asc()).offset((page - 1) * limit).limit(limit).all()
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to list users", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return (
        jsonify(
            {
                "users": [u.to_dict_basic() for u in users],
                "pagination": {
                    "page": page,
                    "limit": limit,
                    "total": total,
                    "pages": (total + limit - 1) // limit,
                },
            }
        ),
        200,
    )


@bp.put("/users/<int:user_id>")
def update_user(user_id: int) -> tuple[dict[str, object], int]:
    """Update name, phone, branch and active flag of a user."""
    actor, error = require_user()
    if error:
        return error

    target = db.session.get(User, user_id)
    if target is None:
        return jsonify({"error": "not_found", "message": "user not found"}), 404

    is_self = actor.user_id == target.user_id
    if not is_self:
        if not perms.has_permission(actor.role, "manageUsers") and not perms.has_permission(actor.role, "manageStaff"):
            return forbidden()
        if not perms.can_manage_user(actor.role, target.role):
            return forbidden("cannot manage a user with a higher role")

    payload = request.get_json(silent=True) or {}

    if "name" in payload:
        name = (payload.get("name") or "").strip()
        if not name:
            return jsonify({"error": "invalid_payload", "message": "name cannot be empty"}), 400
        target.name = name[:100]
    if "phone" in payload:
        target.phone = (payload.get("phone") or "").strip() or None
    if "address" in payload:
        target.address = (payload.get("address") or "").strip()[:200] or None

    # Only managers move staff between branches or disable accounts
    if not is_self or actor.role in perms.GLOBAL_ROLES:
        if "branch_id" in payload:
            branch_id = payload.get("branch_id")
            if branch_id is not None and db.session.get(Branch, branch_id) is None:
                return jsonify({"error": "not_found", "message": "branch not found"}), 404
            target.branch_id = branch_id
        if "is_active" in payload:
            target.is_active = bool(payload.get("is_active"))

    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to update user", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"user": target.to_dict_basic()}), 200


@bp.put("/users/<int:user_id>/role")
def change_user_role(user_id: int) -> tuple[dict[str, object], int]:
    """Change a user's role, checked against the role hierarchy."""
    actor, error = require_user()
    if error:
        return error

    if not perms.has_permission(actor.role, "manageRoles") and not perms.has_permission(actor.role, "manageUsers"):
        return forbidden()

    target = db.session.get(User, user_id)
    if target is None:
        return jsonify({"error": "not_found", "message": "user not found"}), 404

    new_role = (request.get_json(silent=True) or {}).get("role")
    if not perms.is_valid_role(new_role):
        return jsonify({"error": "invalid_payload", "message": "a valid role is required"}), 400

    if not perms.can_manage_user(actor.role, target.role) or not perms.can_manage_user(actor.role, new_role):
        return forbidden("role change exceeds your access level")

    old_role = target.role
    target.role = new_role

    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to change user role", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    current_app.logger.info("User %s role changed %s -> %s by %s", user_id, old_role, new_role, actor.user_id)
    return jsonify({"user": target.to_dict_basic()}), 200


# --- Branches ---

def _validate_operating_hours(hours) -> str | None:
    if not isinstance(hours, dict):
        return "operating_hours must be an object keyed by weekday"
    for day, value in hours.items():
        if day not in WEEKDAYS:
            return f"unknown weekday: {day}"
        if not isinstance(value, dict):
            return f"hours for {day} must be an object"
        if not value.get("is_open"):
            continue
        try:
            open_at, close_at = parse_time(value.get("open")), parse_time(value.get("close"))
        except ValueError:
            return f"hours for {day} must use HH:MM"
        if open_at >= close_at:
            return f"opening time must be before closing time on {day}"
    return None


def _apply_branch_fields(branch: Branch, payload: dict) -> str | None:
    for field in ("name", "address", "city", "contact_number", "email"):
        if field in payload:
            value = (payload.get(field) or "").strip() or None
            if field == "name" and not value:
                return "name cannot be empty"
            setattr(branch, field, value)

    if "operating_hours" in payload:
        hours = payload.get("operating_hours") or {}
        message = _validate_operating_hours(hours)
        if message:
            return message
        branch.operating_hours = hours

    if "capacity" in payload:
        try:
            capacity = int(payload.get("capacity"))
        except (TypeError, ValueError):
            return "capacity must be an integer"
        if capacity < 1:
            return "capacity must be positive"
        branch.capacity = capacity

    for field in ("branch_admin_id", "manager_id"):
        if field in payload:
            staff_id = payload.get(field)
            if staff_id is not None and db.session.get(User, staff_id) is None:
                return f"{field} does not reference a user"
            setattr(branch, field, staff_id)
    return None


@bp.post("/branches")
def create_branch() -> tuple[dict[str, object], int]:
    """Create a branch (system administrators only).
    ---
    tags:
      - Branches
    responses:
      201:
        description: Branch created with default operating hours unless given
      400:
        description: Invalid payload
      403:
        description: Not a system administrator
    """
    user, error = require_user()
    if error:
        return error
    if not perms.can_manage_branch(user.role):
        return forbidden()

    payload = request.get_json(silent=True) or {}
    if not (payload.get("name") or "").strip():
        return jsonify({"error": "invalid_payload", "message": "name is required"}), 400

    branch = Branch(operating_hours=dict(DEFAULT_OPERATING_HOURS), is_active=True)
    message = _apply_branch_fields(branch, payload)
    if message:
        return jsonify({"error": "invalid_payload", "message": message}), 400

    try:
        db.session.add(branch)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to create branch", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    current_app.logger.info("Branch %s created by %s", branch.branch_id, user.user_id)
    return jsonify({"branch": branch.to_dict()}), 201


@bp.get("/branches")
def list_branches() -> tuple[dict[str, object], int]:
    """List or search branches visible to the caller.
    ---
    tags:
      - Branches
    parameters:
      - name: search
        in: query
        type: string
      - name: city
        in: query
        type: string
      - name: is_active
        in: query
        type: boolean
    responses:
      200:
        description: Branches the caller can view
    """
    user, error = require_user()
    if error:
        return error

    query = Branch.query

    search = (request.args.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(Branch.name.ilike(pattern), Branch.address.ilike(pattern), Branch.city.ilike(pattern))
        )

    city = request.args.get("city")
    if city:
        query = query.filter(Branch.city.ilike(city))

    is_active = request.args.get("is_active")
    if is_active is not None:
        query = query.filter(Branch.is_active.is_(is_active.lower() == "true"))

    try:
        branches = query.order_by(Branch.name.asc()).all()
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to list branches", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    visible = [b for b in branches if perms.can_view_branch(user.role, b, user.user_id)]
    return jsonify({"branches": [b.to_dict() for b in visible], "total": len(visible)}), 200


@bp.get("/branches/stats")
def branch_stats() -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error
    if user.role not in perms.GLOBAL_ROLES:
        return forbidden()

    try:
        total = Branch.query.count()
        active = Branch.query.filter(Branch.is_active.is_(True)).count()
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to compute branch stats", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"total": total, "active": active, "inactive": total - active}), 200


@bp.get("/branches/<int:branch_id>")
def get_branch(branch_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error

    branch = db.session.get(Branch, branch_id)
    if branch is None:
        return jsonify({"error": "not_found", "message": "branch not found"}), 404

    # Staff and clients may read their own branch details
    if not (
        perms.can_view_branch(user.role, branch, user.user_id)
        or user.branch_id == branch_id
        or user.role == perms.CLIENT
    ):
        return forbidden()

    return jsonify({"branch": branch.to_dict()}), 200


@bp.put("/branches/<int:branch_id>")
def update_branch(branch_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error

    branch = db.session.get(Branch, branch_id)
    if branch is None:
        return jsonify({"error": "not_found", "message": "branch not found"}), 404

    can_edit = perms.can_manage_branch(user.role) or (
        perms.has_permission(user.role, "branchSettings") and perms.can_view_branch(user.role, branch, user.user_id)
    )
    if not can_edit:
        return forbidden()

    payload = request.get_json(silent=True) or {}
    # Branch admins cannot reassign branch leadership
    if not perms.can_manage_branch(user.role):
        payload.pop("branch_admin_id", None)
        payload.pop("manager_id", None)

    message = _apply_branch_fields(branch, payload)
    if message:
        return jsonify({"error": "invalid_payload", "message": message}), 400

    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to update branch", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"branch": branch.to_dict()}), 200


def _set_branch_active(branch_id: int, active: bool):
    user, error = require_user()
    if error:
        return error
    if not perms.can_manage_branch(user.role):
        return forbidden()

    branch = db.session.get(Branch, branch_id)
    if branch is None:
        return jsonify({"error": "not_found", "message": "branch not found"}), 404

    branch.is_active = active
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to toggle branch status", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    current_app.logger.info("Branch %s %s by %s", branch_id, "activated" if active else "deactivated", user.user_id)
    return jsonify({"branch": branch.to_dict()}), 200


@bp.put("/branches/<int:branch_id>/activate")
def activate_branch(branch_id: int):
    return _set_branch_active(branch_id, True)


@bp.put("/branches/<int:branch_id>/deactivate")
def deactivate_branch(branch_id: int):
    return _set_branch_active(branch_id, False)


@bp.put("/branches/<int:branch_id>/loyalty-settings")
def update_loyalty_settings(branch_id: int) -> tuple[dict[str, object], int]:
    """Enable or disable loyalty and set the spend needed per point."""
    user, error = require_user()
    if error:
        return error

    branch = db.session.get(Branch, branch_id)
    if branch is None:
        return jsonify({"error": "not_found", "message": "branch not found"}), 404

    if not (perms.can_manage_branch(user.role) or (
        perms.has_permission(user.role, "branchSettings") and perms.can_access_branch_data(user, branch_id)
    )):
        return forbidden()

    payload = request.get_json(silent=True) or {}
    if "enabled" in payload:
        branch.loyalty_enabled = bool(payload.get("enabled"))
    if "amount_per_point_cents" in payload:
        try:
            amount = int(payload.get("amount_per_point_cents"))
        except (TypeError, ValueError):
            amount = 0
        if amount <= 0:
            return jsonify({"error": "invalid_payload", "message": "amount_per_point_cents must be positive"}), 400
        branch.amount_per_point_cents = amount

    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to update loyalty settings", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"loyalty": branch.loyalty_config()}), 200


# --- Services ---

def _can_manage_branch_catalog(user, branch_id: int) -> bool:
    if user.role == perms.SYSTEM_ADMIN:
        return True
    return user.role in (perms.BRANCH_ADMIN, perms.BRANCH_MANAGER) and perms.can_access_branch_data(user, branch_id)


def _apply_service_fields(service: Service, payload: dict) -> str | None:
    if "name" in payload:
        name = (payload.get("name") or "").strip()
        if not name:
            return "name cannot be empty"
        service.name = name
    for field in ("description", "category"):
        if field in payload:
            setattr(service, field, (payload.get(field) or "").strip() or None)
    if "price_cents" in payload:
        try:
            price = int(payload.get("price_cents"))
        except (TypeError, ValueError):
            return "price_cents must be an integer"
        if price < 0:
            return "price_cents cannot be negative"
        service.price_cents = price
    if "duration_minutes" in payload:
        try:
            duration = int(payload.get("duration_minutes"))
        except (TypeError, ValueError):
            return "duration_minutes must be an integer"
        if duration <= 0:
            return "duration_minutes must be positive"
        service.duration_minutes = duration
    if "is_active" in payload:
        service.is_active = bool(payload.get("is_active"))
    return None


@bp.get("/branches/<int:branch_id>/services")
def list_services(branch_id: int) -> tuple[dict[str, object], int]:
    """List services of a branch. Public for booking screens."""
    if db.session.get(Branch, branch_id) is None:
        return jsonify({"error": "not_found", "message": "branch not found"}), 404

    query = Service.query.filter(Service.branch_id == branch_id)
    if request.args.get("include_inactive", "false").lower() != "true":
        query = query.filter(Service.is_active.is_(True))

    category = request.args.get("category")
    if category:
        query = query.filter(Service.category == category)

    try:
        services = query.order_by(Service.name.asc()).all()
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to list services", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"services": [s.to_dict() for s in services]}), 200


@bp.post("/branches/<int:branch_id>/services")
def create_service(branch_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error

    if db.session.get(Branch, branch_id) is None:
        return jsonify({"error": "not_found", "message": "branch not found"}), 404
    if not _can_manage_branch_catalog(user, branch_id):
        return forbidden()

    payload = request.get_json(silent=True) or {}
    missing = [f for f in ("name", "price_cents", "duration_minutes") if payload.get(f) in (None, "")]
    if missing:
        return jsonify({"error": "invalid_payload", "message": f"missing fields: {', '.join(missing)}"}), 400

    service = Service(branch_id=branch_id)
    message = _apply_service_fields(service, payload)
    if message:
        return jsonify({"error": "invalid_payload", "message": message}), 400

    try:
        db.session.add(service)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to create service", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"service": service.to_dict()}), 201


@bp.get("/services/<int:service_id>")
def get_service(service_id: int) -> tuple[dict[str, object], int]:
    service = db.session.get(Service, service_id)
    if service is None:
        return jsonify({"error": "not_found", "message": "service not found"}), 404
    return jsonify({"service": service.to_dict()}), 200


@bp.put("/services/<int:service_id>")
def update_service(service_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error

    service = db.session.get(Service, service_id)
    if service is None:
        return jsonify({"error": "not_found", "message": "service not found"}), 404
    if not _can_manage_branch_catalog(user, service.branch_id):
        return forbidden()

    message = _apply_service_fields(service, request.get_json(silent=True) or {})
    if message:
        return jsonify({"error": "invalid_payload", "message": message}), 400

    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to update service", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"service": service.to_dict()}), 200


@bp.delete("/services/<int:service_id>")
def delete_service(service_id: int) -> tuple[dict[str, object], int]:
    """Retire a service. Booked appointments keep their snapshot."""
    user, error = require_user()
    if error:
        return error

    service = db.session.get(Service, service_id)
    if service is None:
        return jsonify({"error": "not_found", "message": "service not found"}), 404
    if not _can_manage_branch_catalog(user, service.branch_id):
        return forbidden()

    service.is_active = False
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to delete service", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"message": "Service deactivated", "service": service.to_dict()}), 200


# --- Stylist schedules ---

def _load_stylist(stylist_id: int):
    stylist = db.session.get(User, stylist_id)
    if stylist is None or stylist.role != perms.STYLIST:
        return None
    return stylist


def _can_manage_schedule(user, stylist) -> bool:
    if user.role in perms.GLOBAL_ROLES:
        return True
    if user.role in (perms.BRANCH_ADMIN, perms.BRANCH_MANAGER):
        return perms.can_access_branch_data(user, stylist.branch_id)
    return False


def _parse_schedule_row(entry: dict) -> tuple[dict | None, str | None]:
    day = (entry.get("day_of_week") or "").strip().lower()
    if day not in WEEKDAYS:
        return None, "day_of_week must be a weekday name"
    try:
        start_time = parse_time(entry.get("start_time"))
        end_time = parse_time(entry.get("end_time"))
    except ValueError:
        return None, "start_time and end_time must be in HH:MM format"
    if start_time >= end_time:
        return None, "start_time must be before end_time"
    return {"day_of_week": day, "start_time": start_time, "end_time": end_time}, None


@bp.get("/stylists/<int:stylist_id>/schedules")
def get_stylist_schedule(stylist_id: int) -> tuple[dict[str, object], int]:
    stylist = _load_stylist(stylist_id)
    if stylist is None:
        return jsonify({"error": "not_found", "message": "stylist not found"}), 404

    rows = StylistSchedule.query.filter_by(stylist_id=stylist_id).all()
    rows.sort(key=lambda s: WEEKDAYS.index(s.day_of_week))
    return jsonify({"schedules": [r.to_dict() for r in rows]}), 200


@bp.post("/stylists/<int:stylist_id>/schedules")
def upsert_stylist_schedule_day(stylist_id: int) -> tuple[dict[str, object], int]:
    """Create or replace the stylist's hours for one weekday."""
    user, error = require_user()
    if error:
        return error

    stylist = _load_stylist(stylist_id)
    if stylist is None:
        return jsonify({"error": "not_found", "message": "stylist not found"}), 404
    if not _can_manage_schedule(user, stylist):
        return forbidden()
    if stylist.branch_id is None:
        return jsonify({"error": "invalid_payload", "message": "stylist is not assigned to a branch"}), 400

    values, message = _parse_schedule_row(request.get_json(silent=True) or {})
    if message:
        return jsonify({"error": "invalid_payload", "message": message}), 400

    row = StylistSchedule.query.filter_by(stylist_id=stylist_id, day_of_week=values["day_of_week"]).first()
    created = row is None
    if created:
        row = StylistSchedule(stylist_id=stylist_id, branch_id=stylist.branch_id, day_of_week=values["day_of_week"])
        db.session.add(row)
    row.start_time = values["start_time"]
    row.end_time = values["end_time"]
    row.branch_id = stylist.branch_id

    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to save stylist schedule", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"schedule": row.to_dict()}), 201 if created else 200


@bp.put("/stylists/<int:stylist_id>/schedules")
def replace_stylist_schedule(stylist_id: int) -> tuple[dict[str, object], int]:
    """Replace the whole week. Days left out become days off."""
    user, error = require_user()
    if error:
        return error

    stylist = _load_stylist(stylist_id)
    if stylist is None:
        return jsonify({"error": "not_found", "message": "stylist not found"}), 404
    if not _can_manage_schedule(user, stylist):
        return forbidden()
    if stylist.branch_id is None:
        return jsonify({"error": "invalid_payload", "message": "stylist is not assigned to a branch"}), 400

    entries = (request.get_json(silent=True) or {}).get("schedules")
    if not isinstance(entries, list):
        return jsonify({"error": "invalid_payload", "message": "schedules must be a list"}), 400

    rows = []
    for entry in entries:
        values, message = _parse_schedule_row(entry if isinstance(entry, dict) else {})
        if message:
            return jsonify({"error": "invalid_payload", "message": message}), 400
        if any(r.day_of_week == values["day_of_week"] for r in rows):
            return jsonify({"error": "invalid_payload", "message": f"duplicate day: {values['day_of_week']}"}), 400
        rows.append(StylistSchedule(stylist_id=stylist_id, branch_id=stylist.branch_id, **values))

    try:
        StylistSchedule.query.filter_by(stylist_id=stylist_id).delete()
        db.session.add_all(rows)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to replace stylist schedule", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    rows.sort(key=lambda s: WEEKDAYS.index(s.day_of_week))
    return jsonify({"schedules": [r.to_dict() for r in rows]}), 200


@bp.delete("/stylists/<int:stylist_id>/schedules")
def delete_stylist_schedule(stylist_id: int) -> tuple[dict[str, object], int]:
    """Delete one weekday (``?day=monday``) or the whole week."""
    user, error = require_user()
    if error:
        return error

    stylist = _load_stylist(stylist_id)
    if stylist is None:
        return jsonify({"error": "not_found", "message": "stylist not found"}), 404
    if not _can_manage_schedule(user, stylist):
        return forbidden()

    query = StylistSchedule.query.filter_by(stylist_id=stylist_id)
    day = request.args.get("day")
    if day:
        if day.lower() not in WEEKDAYS:
            return jsonify({"error": "invalid_payload", "message": "day must be a weekday name"}), 400
        query = query.filter_by(day_of_week=day.lower())

    try:
        deleted = query.delete()
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to delete stylist schedule", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"deleted": deleted}), 200


@bp.get("/branches/<int:branch_id>/schedules")
def list_branch_schedules(branch_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error
    if not perms.can_access_branch_data(user, branch_id):
        return forbidden()

    rows = (
        StylistSchedule.query.filter_by(branch_id=branch_id)
        .join(User, User.user_id == StylistSchedule.stylist_id)
        .order_by(User.name.asc())
        .all()
    )
    rows.sort(key=lambda s: (s.stylist.name, WEEKDAYS.index(s.day_of_week)))
    return jsonify({"schedules": [r.to_dict() for r in rows]}), 200


# --- Appointments ---

_NOTIFICATION_TITLES = {
    "appointment_created": "Appointment Booked",
    "appointment_confirmed": "Appointment Confirmed",
    "appointment_cancelled": "Appointment Cancelled",
    "appointment_completed": "Appointment Completed",
    "appointment_rescheduled": "Appointment Rescheduled",
    "appointment_updated": "Appointment Updated",
}

_STATUS_NOTIFICATIONS = {
    "confirmed": "appointment_confirmed",
    "cancelled": "appointment_cancelled",
    "completed": "appointment_completed",
}


def _notify_client(appointment: Appointment, notification_type: str) -> None:
    """Queue a stored notification for a registered client."""
    if not appointment.client_id:
        return

    when = f"{appointment.starts_at.date().isoformat()} at {format_time_12h(appointment.starts_at.time())}"
    branch_name = appointment.branch.name if appointment.branch else "the salon"
    messages = {
        "appointment_created": f"Your appointment on {when} at {branch_name} has been booked.",
        "appointment_confirmed": f"Your appointment on {when} at {branch_name} is confirmed.",
        "appointment_cancelled": f"Your appointment on {when} at {branch_name} has been cancelled.",
        "appointment_completed": f"Thank you for visiting {branch_name}. Your appointment on {when} is complete.",
        "appointment_rescheduled": f"Your appointment at {branch_name} has been moved to {when}.",
        "appointment_updated": f"Your appointment on {when} at {branch_name} has been updated.",
    }
    db.session.add(
        Notification(
            recipient_id=appointment.client_id,
            recipient_role=perms.CLIENT,
            appointment_id=appointment.appointment_id,
            notification_type=notification_type,
            title=_NOTIFICATION_TITLES[notification_type],
            message=messages[notification_type],
        )
    )


def _booking_error(branch: Branch, stylist_id: int, starts_at: datetime, ends_at: datetime, exclude_id=None):
    """Return an error response when the slot cannot be booked."""
    duration = int((ends_at - starts_at).total_seconds() // 60)
    day = starts_at.date()

    message = check_branch_hours(branch.operating_hours, day, starts_at.time(), duration)
    if message:
        return _validation_failed([message])

    schedules = StylistSchedule.query.filter_by(stylist_id=stylist_id).all()
    message = check_stylist_availability(schedules, day, starts_at.time(), ends_at.time())
    if message:
        return _validation_failed([message])

    leaves = LeaveRequest.query.filter(
        LeaveRequest.employee_id == stylist_id,
        LeaveRequest.status == "approved",
        LeaveRequest.start_date <= day,
        LeaveRequest.end_date >= day,
    ).all()
    if leave_blocks(leaves, day, starts_at.time(), ends_at.time()):
        return jsonify({"error": "conflict", "message": "Stylist is on leave at this time"}), 409

    candidates = Appointment.query.filter(
        Appointment.stylist_id == stylist_id,
        Appointment.status.in_(ACTIVE_STATUSES),
        Appointment.starts_at < ends_at,
        Appointment.ends_at > starts_at,
    ).all()
    if find_conflicts(candidates, starts_at, ends_at, exclude_id):
        return jsonify({"error": "conflict", "message": "Time slot conflicts with another appointment"}), 409

    return None


def _load_services(branch_id: int, service_ids: list[int]):
    if not service_ids:
        return None
    services = Service.query.filter(
        Service.service_id.in_(service_ids),
        Service.branch_id == branch_id,
        Service.is_active.is_(True),
    ).all()
    if len(services) != len(service_ids):
        return None
    by_id = {s.service_id: s for s in services}
    return [by_id[i] for i in service_ids]


@bp.post("/appointments")
def create_appointment() -> tuple[dict[str, object], int]:
    """Book an appointment for a registered or walk-in client.
    ---
    tags:
      - Appointments
    parameters:
      - in: body
        name: body
        required: true
        schema:
          properties:
            appointment_date:
              type: string
              example: "2030-01-15"
            appointment_time:
              type: string
              example: "10:30"
            branch_id:
              type: integer
            stylist_id:
              type: integer
            service_ids:
              type: array
              items:
                type: integer
            client_id:
              type: integer
            is_new_client:
              type: boolean
            client_name:
              type: string
            client_info:
              type: object
            notes:
              type: string
    responses:
      201:
        description: Appointment created
      400:
        description: Validation failed
      403:
        description: Caller cannot book appointments
      404:
        description: Branch, stylist, client or service not found
      409:
        description: Time slot conflict or stylist on leave
      500:
        description: Database error
    """
    user, error = require_user()
    if error:
        return error

    if not (perms.can_create_appointment(user.role) or perms.can_book_appointment(user.role)):
        return forbidden("You cannot create appointments")

    payload = request.get_json(silent=True) or {}
    if user.role == perms.CLIENT:
        # Clients can only book for themselves
        payload["client_id"] = user.user_id
        payload["is_new_client"] = False

    errors, warnings = validate_appointment_data(payload, datetime.now())
    if errors:
        current_app.logger.warning("Rejected appointment payload: %s", errors)
        return _validation_failed(errors)

    data = sanitize_appointment_data(payload)
    try:
        for field in ("branch_id", "stylist_id", "client_id"):
            if data.get(field) is not None:
                data[field] = int(data[field])
    except (TypeError, ValueError):
        return _validation_failed(["branch_id, stylist_id and client_id must be integers"])

    try:
        branch = db.session.get(Branch, data["branch_id"])
        if branch is None or not branch.is_active:
            return jsonify({"error": "not_found", "message": "branch not found"}), 404

        if user.role in perms.BRANCH_STAFF_ROLES and not perms.can_access_branch_data(user, branch.branch_id):
            return forbidden("You can only book appointments at your branch")

        stylist = _load_stylist(data["stylist_id"])
        if stylist is None or not stylist.is_active:
            return jsonify({"error": "not_found", "message": "stylist not found"}), 404
        if stylist.branch_id != branch.branch_id:
            return _validation_failed(["Stylist does not work at this branch"])

        services = _load_services(branch.branch_id, data["service_ids"])
        if services is None:
            return _validation_failed(["One or more services are unavailable at this branch"])

        client = None
        if not data.get("is_new_client"):
            client = db.session.get(User, data["client_id"])
            if client is None or client.role != perms.CLIENT:
                return jsonify({"error": "not_found", "message": "client not found"}), 404

        starts_at = datetime.combine(parse_date(data["appointment_date"]), parse_time(data["appointment_time"]))
        ends_at = starts_at + timedelta(minutes=sum(s.duration_minutes for s in services))

        booking_error = _booking_error(branch, stylist.user_id, starts_at, ends_at)
        if booking_error:
            return booking_error

        info = data.get("client_info") or {}
        appointment = Appointment(
            branch_id=branch.branch_id,
            stylist_id=stylist.user_id,
            client_id=client.user_id if client else None,
            client_name=info.get("name") or data.get("client_name") or (client.name if client else None),
            client_phone=info.get("phone") or (client.phone if client else None),
            client_email=info.get("email") or (client.email if client else None),
            client_address=info.get("address") or None,
            is_new_client=bool(data.get("is_new_client")),
            starts_at=starts_at,
            ends_at=ends_at,
            status="scheduled",
            notes=data.get("notes") or None,
            created_by=user.user_id,
        )
        for service in services:
            appointment.services.append(
                AppointmentService(
                    service_id=service.service_id,
                    price_cents=service.price_cents,
                    duration_minutes=service.duration_minutes,
                )
            )
        appointment.add_history("created", user.user_id, "Appointment created")
        db.session.add(appointment)
        db.session.flush()

        _notify_client(appointment, "appointment_created")
        db.session.commit()

    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to create appointment", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    current_app.logger.info(
        "Appointment %s booked with stylist %s at %s", appointment.appointment_id, stylist.user_id, starts_at
    )
    return jsonify({"appointment": appointment.to_dict(), "warnings": warnings}), 201


def _filtered_appointment_query(user):
    """Base query with list filters and the caller's visibility applied.

    Returns ``(query, error_response)``.
    """
    query = Appointment.query

    if user.role == perms.STYLIST:
        query = query.filter(Appointment.stylist_id == user.user_id)
    elif user.role == perms.CLIENT:
        query = query.filter(Appointment.client_id == user.user_id)
    elif user.role not in perms.FRONT_DESK_ROLES:
        return None, forbidden("You cannot view appointments")

    for arg, column in (
        ("branch_id", Appointment.branch_id),
        ("stylist_id", Appointment.stylist_id),
        ("client_id", Appointment.client_id),
    ):
        value = request.args.get(arg, type=int)
        if value:
            query = query.filter(column == value)

    status = request.args.get("status")
    if status:
        statuses = [s for s in status.split(",") if s]
        invalid = [s for s in statuses if s not in APPOINTMENT_STATUS]
        if invalid:
            return None, (jsonify({"error": "invalid_status", "message": f"unknown status: {invalid[0]}"}), 400)
        query = query.filter(Appointment.status.in_(statuses))

    try:
        date_from = request.args.get("date_from")
        if date_from:
            query = query.filter(Appointment.starts_at >= datetime.combine(parse_date(date_from), datetime.min.time()))
        date_to = request.args.get("date_to")
        if date_to:
            query = query.filter(
                Appointment.starts_at < datetime.combine(parse_date(date_to) + timedelta(days=1), datetime.min.time())
            )
    except ValueError:
        return None, (jsonify({"error": "invalid_payload", "message": "dates must be in YYYY-MM-DD format"}), 400)

    search = (request.args.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        stylist_user = aliased(User)
        query = query.join(stylist_user, stylist_user.user_id == Appointment.stylist_id).filter(
            or_(
                Appointment.client_name.ilike(pattern),
                Appointment.notes.ilike(pattern),
                stylist_user.name.ilike(pattern),
            )
        )

    return query, None


@bp.get("/appointments")
def list_appointments() -> tuple[dict[str, object], int]:
    """List appointments with filters and cursor paging.
    ---
    tags:
      - Appointments
    parameters:
      - name: page_size
        in: query
        type: integer
        default: 20
        maximum: 100
      - name: after
        in: query
        type: integer
        description: id of the last appointment already seen
    responses:
      200:
        description: A page of appointments ordered by start time
    """
    user, error = require_user()
    if error:
        return error

    query, error = _filtered_appointment_query(user)
    if error:
        return error

    try:
        page_size = min(100, max(1, int(request.args.get("page_size", 20))))
    except ValueError:
        page_size = 20

    try:
        after = request.args.get("after", type=int)
        if after:
            cursor = db.session.get(Appointment, after)
            if cursor is None:
                return jsonify({"error": "invalid_payload", "message": "unknown cursor"}), 400
            query = query.filter(
                or_(
                    Appointment.starts_at > cursor.starts_at,
                    (Appointment.starts_at == cursor.starts_at) & (Appointment.appointment_id > cursor.appointment_id),
                )
            )

        rows = (
            query.order_by(Appointment.starts_at.asc(), Appointment.appointment_id.asc())
            .limit(page_size + 1)
            .all()
        )
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to list appointments", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    has_more = len(rows) > page_size
    rows = rows[:page_size]
    visible = [a for a in rows if perms.can_view_appointment(user.role, a, user.user_id)]

    return (
        jsonify(
            {
                "appointments": [a.to_dict() for a in visible],
                "next_cursor": rows[-1].appointment_id if has_more and rows else None,
                "has_more": has_more,
            }
        ),
        200,
    )


@bp.get("/appointments/stats")
def appointment_stats() -> tuple[dict[str, object], int]:
    """Counts per status, branch and stylist over the filtered set."""
    user, error = require_user()
    if error:
        return error

    query, error = _filtered_appointment_query(user)
    if error:
        return error

    try:
        rows = query.all()
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to compute appointment stats", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    by_status = {status: 0 for status in APPOINTMENT_STATUS}
    by_branch: dict[str, int] = {}
    by_stylist: dict[str, int] = {}
    for appt in rows:
        by_status[appt.status] = by_status.get(appt.status, 0) + 1
        by_branch[str(appt.branch_id)] = by_branch.get(str(appt.branch_id), 0) + 1
        by_stylist[str(appt.stylist_id)] = by_stylist.get(str(appt.stylist_id), 0) + 1

    return (
        jsonify({"total": len(rows), "by_status": by_status, "by_branch": by_branch, "by_stylist": by_stylist}),
        200,
    )


def _load_visible_appointment(user, appointment_id: int):
    appointment = db.session.get(Appointment, appointment_id)
    if appointment is None:
        return None, (jsonify({"error": "not_found", "message": "Appointment not found"}), 404)
    if not perms.can_view_appointment(user.role, appointment, user.user_id):
        return None, forbidden("You cannot view this appointment")
    return appointment, None


@bp.get("/appointments/<int:appointment_id>")
def get_appointment(appointment_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error

    appointment, error = _load_visible_appointment(user, appointment_id)
    if error:
        return error
    return jsonify({"appointment": appointment.to_dict()}), 200


def _status_change_error(user, appointment: Appointment, new_status: str):
    """Role and transition checks for a status change."""
    if new_status not in APPOINTMENT_STATUS:
        return jsonify({"error": "invalid_status", "message": f"unknown status: {new_status}"}), 400

    own_stylist = appointment.stylist_id == user.user_id
    if new_status == "completed":
        if not perms.can_complete_appointment(user.role) or (user.role == perms.STYLIST and not own_stylist):
            return forbidden("You cannot complete this appointment")
    elif user.role == perms.STYLIST:
        if not own_stylist or new_status != "in_progress":
            return forbidden("Stylists can only start or complete their own appointments")
    elif user.role == perms.CLIENT:
        if appointment.client_id != user.user_id or new_status != "cancelled":
            return forbidden("Clients can only cancel their own appointments")
    elif not perms.can_update_appointment(user.role, appointment, user.user_id):
        return forbidden("You cannot update this appointment")

    if new_status != appointment.status and not is_valid_status_transition(appointment.status, new_status):
        return (
            jsonify(
                {
                    "error": "invalid_transition",
                    "message": f"Cannot change status from {appointment.status} to {new_status}",
                }
            ),
            400,
        )
    return None


def _change_status(user, appointment_id: int, new_status, notes=None):
    appointment, error = _load_visible_appointment(user, appointment_id)
    if error:
        return error

    error = _status_change_error(user, appointment, new_status)
    if error:
        current_app.logger.warning(
            "Rejected status change of appointment %s to %s by %s", appointment_id, new_status, user.user_id
        )
        return error

    if notes and not isinstance(notes, str):
        return _validation_failed(["notes must be a string"])
    notes = (notes or "").strip()[:500] or None
    try:
        if new_status == appointment.status:
            appointment.add_history("updated", user.user_id, notes or f"Status already {new_status}")
        else:
            old_status = appointment.status
            appointment.status = new_status
            appointment.add_history(f"status_changed_to_{new_status}", user.user_id, notes)
            if new_status in _STATUS_NOTIFICATIONS:
                _notify_client(appointment, _STATUS_NOTIFICATIONS[new_status])
            current_app.logger.info(
                "Appointment %s moved %s -> %s by %s", appointment_id, old_status, new_status, user.user_id
            )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to update appointment status", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"appointment": appointment.to_dict()}), 200


@bp.put("/appointments/<int:appointment_id>/status")
def update_appointment_status(appointment_id: int) -> tuple[dict[str, object], int]:
    """Move an appointment through its status flow.
    ---
    tags:
      - Appointments
    responses:
      200:
        description: Status updated
      400:
        description: Invalid status or transition
      403:
        description: Role not allowed to make this change
      404:
        description: Appointment not found
    """
    user, error = require_user()
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    if not payload.get("status"):
        return jsonify({"error": "invalid_payload", "message": "status is required"}), 400
    return _change_status(user, appointment_id, payload["status"], payload.get("notes"))


@bp.post("/appointments/<int:appointment_id>/cancel")
def cancel_appointment(appointment_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error

    reason = (request.get_json(silent=True) or {}).get("reason")
    return _change_status(user, appointment_id, "cancelled", reason)


@bp.post("/appointments/<int:appointment_id>/complete")
def complete_appointment(appointment_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error

    notes = (request.get_json(silent=True) or {}).get("notes")
    return _change_status(user, appointment_id, "completed", notes)


@bp.put("/appointments/<int:appointment_id>")
def update_appointment(appointment_id: int) -> tuple[dict[str, object], int]:
    """Edit notes, services, stylist or time of an appointment.

    Rescheduling is re-validated against hours, schedule, leave and other
    bookings, ignoring the appointment being moved.
    """
    user, error = require_user()
    if error:
        return error

    appointment, error = _load_visible_appointment(user, appointment_id)
    if error:
        return error
    if not perms.can_update_appointment(user.role, appointment, user.user_id):
        return forbidden("You cannot update this appointment")

    payload = request.get_json(silent=True) or {}
    new_status = payload.get("status")
    if new_status and new_status != appointment.status:
        error = _status_change_error(user, appointment, new_status)
        if error:
            return error

    schedule_fields = ("appointment_date", "appointment_time", "stylist_id", "service_ids")
    reschedule = any(field in payload for field in schedule_fields)
    if reschedule and user.role == perms.STYLIST:
        return forbidden("Stylists cannot reschedule or reassign appointments")
    if reschedule and appointment.status not in ACTIVE_STATUSES:
        return (
            jsonify(
                {
                    "error": "invalid_transition",
                    "message": f"Cannot reschedule an appointment with status '{appointment.status}'",
                }
            ),
            400,
        )

    notes = payload.get("notes")
    if notes and not isinstance(notes, str):
        return _validation_failed(["notes must be a string"])
    if notes and len(notes) > 500:
        payload["notes"] = notes.strip()[:500]

    if "service_ids" in payload:
        raw_ids = payload.get("service_ids")
        if not isinstance(raw_ids, list) or not raw_ids:
            return _validation_failed(["service_ids is required and must be a non-empty array"])
        try:
            for raw in raw_ids:
                parse_id(raw)
        except ValueError:
            return _validation_failed(["service_ids must contain only integer ids"])

    try:
        moved = False
        if reschedule:
            try:
                new_date = parse_date(payload.get("appointment_date") or appointment.starts_at.date().isoformat())
                new_time = parse_time(payload.get("appointment_time") or appointment.starts_at.strftime("%H:%M"))
                stylist_id = int(payload.get("stylist_id") or appointment.stylist_id)
            except (TypeError, ValueError) as exc:
                return _validation_failed([str(exc)])

            stylist = _load_stylist(stylist_id)
            if stylist is None or not stylist.is_active:
                return jsonify({"error": "not_found", "message": "stylist not found"}), 404
            if stylist.branch_id != appointment.branch_id:
                return _validation_failed(["Stylist does not work at this branch"])

            if "service_ids" in payload:
                service_ids = sanitize_appointment_data({"service_ids": payload["service_ids"]})["service_ids"]
                services = _load_services(appointment.branch_id, service_ids)
                if services is None:
                    return _validation_failed(["One or more services are unavailable at this branch"])
                duration = sum(s.duration_minutes for s in services)
            else:
                services = None
                duration = appointment.duration_minutes

            starts_at = datetime.combine(new_date, new_time)
            if starts_at <= datetime.now():
                return _validation_failed(["Appointment must be scheduled in the future"])
            ends_at = starts_at + timedelta(minutes=duration)

            booking_error = _booking_error(appointment.branch, stylist_id, starts_at, ends_at, appointment_id)
            if booking_error:
                return booking_error

            moved = starts_at != appointment.starts_at or stylist_id != appointment.stylist_id
            appointment.starts_at = starts_at
            appointment.ends_at = ends_at
            appointment.stylist_id = stylist_id
            if services is not None:
                appointment.services = [
                    AppointmentService(
                        service_id=s.service_id, price_cents=s.price_cents, duration_minutes=s.duration_minutes
                    )
                    for s in services
                ]

        if "notes" in payload:
            appointment.notes = (payload.get("notes") or "").strip() or None

        status_changed = bool(new_status) and new_status != appointment.status
        if reschedule or "notes" in payload or not status_changed:
            appointment.add_history("updated", user.user_id, "Rescheduled" if moved else "Appointment updated")

        if status_changed:
            appointment.status = new_status
            appointment.add_history(f"status_changed_to_{new_status}", user.user_id, payload.get("history_notes"))
            if new_status in _STATUS_NOTIFICATIONS:
                _notify_client(appointment, _STATUS_NOTIFICATIONS[new_status])

        if moved:
            _notify_client(appointment, "appointment_rescheduled")

        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to update appointment", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"appointment": appointment.to_dict()}), 200


@bp.put("/appointments/<int:appointment_id>/client")
def update_appointment_client(appointment_id: int) -> tuple[dict[str, object], int]:
    """Replace the client contact details stored on an appointment."""
    user, error = require_user()
    if error:
        return error

    appointment, error = _load_visible_appointment(user, appointment_id)
    if error:
        return error
    if not perms.can_update_appointment(user.role, appointment, user.user_id):
        return forbidden("You cannot update this appointment")

    info = (request.get_json(silent=True) or {}).get("client_info")
    if not isinstance(info, dict):
        return jsonify({"error": "invalid_payload", "message": "client_info is required"}), 400

    errors = validate_client_info(info)
    if errors:
        return _validation_failed(errors)
    info = sanitize_appointment_data({"client_info": info})["client_info"]

    appointment.client_name = info["name"]
    appointment.client_phone = info["phone"] or None
    appointment.client_email = info["email"] or None
    appointment.client_address = info["address"] or None
    appointment.add_history("client_info_updated", user.user_id, "Client information updated")

    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to update appointment client", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"appointment": appointment.to_dict()}), 200


@bp.post("/appointments/<int:appointment_id>/client")
def register_appointment_client(appointment_id: int) -> tuple[dict[str, object], int]:
    """Turn a walk-in client into a registered client and link it."""
    user, error = require_user()
    if error:
        return error
    if not perms.has_permission(user.role, "manageClients") and user.role != perms.SYSTEM_ADMIN:
        return forbidden()

    appointment, error = _load_visible_appointment(user, appointment_id)
    if error:
        return error
    if appointment.client_id:
        return jsonify({"error": "conflict", "message": "appointment already has a registered client"}), 409

    payload = request.get_json(silent=True) or {}
    name = (payload.get("name") or appointment.client_name or "").strip()
    email = (payload.get("email") or appointment.client_email or "").strip().lower()
    if not name or not email:
        return jsonify({"error": "invalid_payload", "message": "client name and email are required"}), 400

    errors = validate_client_info({"name": name, "email": email, "phone": appointment.client_phone})
    if errors:
        return _validation_failed(errors)

    if User.query.filter_by(email=email).first():
        return jsonify({"error": "conflict", "message": "email address is already in use"}), 409

    try:
        client = User(
            name=name[:100],
            email=email,
            role=perms.CLIENT,
            phone=appointment.client_phone,
            address=appointment.client_address,
        )
        db.session.add(client)
        db.session.flush()
        # Clients set their own password through a reset
        password = payload.get("password") or secrets.token_urlsafe(16)
        db.session.add(AuthAccount(user_id=client.user_id, password_hash=generate_password_hash(password)))

        appointment.client_id = client.user_id
        appointment.client_email = email
        appointment.is_new_client = False
        appointment.add_history("client_created", user.user_id, f"Client account {client.user_id} created")
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"error": "conflict", "message": "email address is already in use"}), 409
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to register appointment client", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"client": client.to_dict_basic(), "appointment": appointment.to_dict()}), 201


@bp.get("/stylists/<int:stylist_id>/availability")
def stylist_availability(stylist_id: int) -> tuple[dict[str, object], int]:
    """Available start times for a stylist on a date.
    ---
    tags:
      - Appointments
    parameters:
      - name: date
        in: query
        type: string
        required: true
      - name: duration_minutes
        in: query
        type: integer
        default: 30
    responses:
      200:
        description: HH:MM start times
      400:
        description: Invalid date or duration
      404:
        description: Stylist not found
    """
    stylist = _load_stylist(stylist_id)
    if stylist is None or stylist.branch_id is None:
        return jsonify({"error": "not_found", "message": "stylist not found"}), 404

    try:
        target_date = parse_date(request.args.get("date"))
    except ValueError:
        return jsonify({"error": "invalid_payload", "message": "date (YYYY-MM-DD) is required"}), 400

    duration = request.args.get("duration_minutes", default=30, type=int)
    if not duration or duration <= 0:
        return jsonify({"error": "invalid_payload", "message": "duration_minutes must be positive"}), 400

    try:
        branch = db.session.get(Branch, stylist.branch_id)
        schedules = StylistSchedule.query.filter_by(stylist_id=stylist_id).all()
        day_start = datetime.combine(target_date, datetime.min.time())
        appointments = Appointment.query.filter(
            Appointment.stylist_id == stylist_id,
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.starts_at < day_start + timedelta(days=1),
            Appointment.ends_at > day_start,
        ).all()
        leaves = LeaveRequest.query.filter(
            LeaveRequest.employee_id == stylist_id,
            LeaveRequest.status == "approved",
            LeaveRequest.start_date <= target_date,
            LeaveRequest.end_date >= target_date,
        ).all()
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to check availability", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    slots = available_slots(
        target_date,
        duration,
        operating_hours=branch.operating_hours if branch else None,
        schedules=schedules,
        appointments=appointments,
        leaves=leaves,
        step_minutes=current_app.config["SLOT_MINUTES"],
        now=datetime.now(),
    )
    return jsonify({"stylist_id": stylist_id, "date": target_date.isoformat(), "available_slots": slots}), 200


# --- Leave requests ---

def _can_decide_leave(user, leave: LeaveRequest) -> bool:
    return perms.can_manage_leave(user.role) and perms.can_access_branch_data(user, leave.branch_id)


@bp.post("/leave-requests")
def create_leave_request() -> tuple[dict[str, object], int]:
    """File a leave request for yourself, or for staff you manage."""
    user, error = require_user()
    if error:
        return error
    if user.role == perms.CLIENT:
        return forbidden()

    payload = request.get_json(silent=True) or {}
    payload.setdefault("employee_id", user.user_id)

    try:
        employee = db.session.get(User, parse_id(payload.get("employee_id")))
    except ValueError:
        return _validation_failed(["Employee ID must be an integer"])
    if employee is None or employee.role == perms.CLIENT:
        return jsonify({"error": "not_found", "message": "employee not found"}), 404

    if employee.user_id != user.user_id and not (
        perms.can_manage_leave(user.role) and perms.can_access_branch_data(user, employee.branch_id)
    ):
        return forbidden("You can only request leave for yourself")

    payload.setdefault("branch_id", employee.branch_id)
    errors, cleaned = validate_leave_data(payload, date.today())
    if errors:
        return _validation_failed(errors)

    branch_id = cleaned["branch_id"]
    if employee.branch_id is not None and branch_id != employee.branch_id:
        return _validation_failed(["Leave must be filed against the employee's branch"])
    if db.session.get(Branch, branch_id) is None:
        return jsonify({"error": "not_found", "message": "branch not found"}), 404
    if not perms.can_access_branch_data(user, branch_id):
        return forbidden("You cannot file leave for this branch")

    notes = payload.get("notes")
    if notes and not isinstance(notes, str):
        return _validation_failed(["notes must be a string"])

    try:
        approved = LeaveRequest.query.filter(
            LeaveRequest.employee_id == employee.user_id,
            LeaveRequest.status == "approved",
        ).all()
        for existing in approved:
            if date_ranges_overlap(existing.start_date, existing.end_date, cleaned["start_date"], cleaned["end_date"]):
                return (
                    jsonify(
                        {
                            "error": "conflict",
                            "message": (
                                "Overlapping approved leave found: "
                                f"{existing.start_date.isoformat()} to {existing.end_date.isoformat()}"
                            ),
                        }
                    ),
                    409,
                )

        leave = LeaveRequest(
            employee_id=employee.user_id,
            branch_id=branch_id,
            leave_type=cleaned["leave_type"],
            start_date=cleaned["start_date"],
            end_date=cleaned["end_date"],
            is_full_day=cleaned["is_full_day"],
            start_time=cleaned.get("start_time"),
            end_time=cleaned.get("end_time"),
            reason=cleaned["reason"],
            notes=(notes or "").strip() or None,
            status="pending",
            created_by=user.user_id,
            history=[],
        )
        leave.add_history("created", user.user_id, "Leave request created")
        db.session.add(leave)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to create leave request", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"leave_request": leave.to_dict()}), 201


def _load_leave(leave_id: int):
    leave = db.session.get(LeaveRequest, leave_id)
    if leave is None:
        return None, (jsonify({"error": "not_found", "message": "Leave request not found"}), 404)
    return leave, None


@bp.put("/leave-requests/<int:leave_id>/approve")
def approve_leave_request(leave_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error

    leave, error = _load_leave(leave_id)
    if error:
        return error
    if not _can_decide_leave(user, leave):
        return forbidden()

    if leave.status != "pending":
        return jsonify({"error": "invalid_transition", "message": "Only pending leave requests can be approved"}), 400

    notes = str((request.get_json(silent=True) or {}).get("notes") or "").strip() or None
    try:
        leave.status = "approved"
        leave.approved_by = user.user_id
        leave.approved_at = datetime.now(timezone.utc)
        leave.add_history("approved", user.user_id, notes)

        pending = LeaveRequest.query.filter(
            LeaveRequest.employee_id == leave.employee_id,
            LeaveRequest.status == "pending",
            LeaveRequest.leave_id != leave.leave_id,
        ).all()
        cancelled = 0
        for other in pending:
            if date_ranges_overlap(other.start_date, other.end_date, leave.start_date, leave.end_date):
                other.status = "cancelled"
                other.add_history(
                    "cancelled", user.user_id, "Cancelled due to leave approval for overlapping period"
                )
                cancelled += 1
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to approve leave request", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    current_app.logger.info("Leave %s approved by %s (%s overlapping cancelled)", leave_id, user.user_id, cancelled)
    return jsonify({"leave_request": leave.to_dict(), "cancelled_overlapping": cancelled}), 200


@bp.put("/leave-requests/<int:leave_id>/deny")
def deny_leave_request(leave_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error

    leave, error = _load_leave(leave_id)
    if error:
        return error
    if not _can_decide_leave(user, leave):
        return forbidden()

    if leave.status != "pending":
        return jsonify({"error": "invalid_transition", "message": "Only pending leave requests can be denied"}), 400

    reason = str((request.get_json(silent=True) or {}).get("reason") or "").strip()
    if not reason:
        return jsonify({"error": "invalid_payload", "message": "reason is required to deny leave"}), 400

    leave.status = "denied"
    leave.denied_by = user.user_id
    leave.denied_reason = reason
    leave.add_history("denied", user.user_id, reason)

    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to deny leave request", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    current_app.logger.info("Leave %s denied by %s", leave_id, user.user_id)
    return jsonify({"leave_request": leave.to_dict()}), 200


@bp.put("/leave-requests/<int:leave_id>/cancel")
def cancel_leave_request(leave_id: int) -> tuple[dict[str, object], int]:
    user, error = require_user()
    if error:
        return error

    leave, error = _load_leave(leave_id)
    if error:
        return error
    if leave.employee_id != user.user_id and not _can_decide_leave(user, leave):
        return forbidden()

    if leave.status == "cancelled":
        return jsonify({"error": "invalid_transition", "message": "Leave request is already cancelled"}), 400
    if leave.status == "approved" and leave.start_date <= date.today():
        return jsonify({"error": "invalid_transition", "message": "Cannot cancel leave that has already started"}), 400

    notes = str((request.get_json(silent=True) or {}).get("notes") or "").strip() or None
    leave.status = "cancelled"
    leave.add_history("cancelled", user.user_id, notes)

    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel leave request", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"leave_request": leave.to_dict()}), 200


@bp.get("/leave-requests")
def list_leave_requests() -> tuple[dict[str, object], int]:
    """List leave by branch (managers) or by employee."""
    user, error = require_user()
    if error:
        return error

    query = LeaveRequest.query
    branch_id = request.args.get("branch_id", type=int)
    employee_id = request.args.get("employee_id", type=int)

    if perms.can_manage_leave(user.role):
        if branch_id:
            if not perms.can_access_branch_data(user, branch_id):
                return forbidden()
            query = query.filter(LeaveRequest.branch_id == branch_id)
        elif user.role not in perms.GLOBAL_ROLES:
            query = query.filter(LeaveRequest.branch_id == user.branch_id)
        if employee_id:
            query = query.filter(LeaveRequest.employee_id == employee_id)
    elif user.role == perms.CLIENT:
        return forbidden()
    else:
        query = query.filter(LeaveRequest.employee_id == user.user_id)

    status = request.args.get("status")
    if status:
        if status not in LEAVE_STATUS:
            return jsonify({"error": "invalid_status", "message": f"unknown status: {status}"}), 400
        query = query.filter(LeaveRequest.status == status)

    try:
        leaves = query.order_by(LeaveRequest.start_date.desc(), LeaveRequest.leave_id.desc()).all()
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to list leave requests", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"leave_requests": [l.to_dict() for l in leaves]}), 200


@bp.get("/leave-requests/stats")
def leave_stats() -> tuple[dict[str, object], int]:
    """Leave counts per status and type for a branch over a date range."""
    user, error = require_user()
    if error:
        return error
    if not perms.can_manage_leave(user.role):
        return forbidden()

    branch_id = request.args.get("branch_id", type=int) or user.branch_id
    if not branch_id or not perms.can_access_branch_data(user, branch_id):
        return forbidden()

    query = LeaveRequest.query.filter(LeaveRequest.branch_id == branch_id)
    try:
        if request.args.get("date_from"):
            query = query.filter(LeaveRequest.end_date >= parse_date(request.args["date_from"]))
        if request.args.get("date_to"):
            query = query.filter(LeaveRequest.start_date <= parse_date(request.args["date_to"]))
    except ValueError:
        return jsonify({"error": "invalid_payload", "message": "dates must be in YYYY-MM-DD format"}), 400

    try:
        leaves = query.all()
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to compute leave stats", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    today = date.today()
    stats = {"total": len(leaves), "by_type": {}, "by_status": {}, "upcoming": 0, "active": 0}
    for leave in leaves:
        stats["by_type"][leave.leave_type] = stats["by_type"].get(leave.leave_type, 0) + 1
        stats["by_status"][leave.status] = stats["by_status"].get(leave.status, 0) + 1
        if leave.status == "approved":
            if leave.start_date > today:
                stats["upcoming"] += 1
            elif leave.start_date <= today <= leave.end_date:
                stats["active"] += 1

    return jsonify({"branch_id": branch_id, "statistics": stats}), 200
