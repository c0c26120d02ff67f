"""Shared pytest fixtures: app, client, tokens and model factories."""
from __future__ import annotations

import sys
from datetime import time
from pathlib import Path

import pytest

# Ensure the project root is available on sys.path so tests can import the app package.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app import create_app  # noqa: E402
from app.auth import build_token  # noqa: E402
from app.extensions import db  # noqa: E402
from app.models import (AuthAccount, Branch, Product, Service,  # noqa: E402
                        StylistSchedule, User)
from app.scheduling import DEFAULT_OPERATING_HOURS  # noqa: E402
from werkzeug.security import generate_password_hash  # noqa: E402

# A Monday well in the future; default hours are 09:00-18:00 on Mondays.
FUTURE_MONDAY = "2030-01-14"


@pytest.fixture
def app():
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "SECRET_KEY": "test-secret",
            "STRIPE_SECRET_KEY": "sk_test_dummy",
        }
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_header(app):
    def _header(user: User) -> dict[str, str]:
        token = build_token({"user_id": user.user_id, "role": user.role})
        return {"Authorization": f"Bearer {token}"}

    return _header


@pytest.fixture
def make_branch(app):
    def _make(name: str = "Main Branch", **fields) -> Branch:
        fields.setdefault("operating_hours", dict(DEFAULT_OPERATING_HOURS))
        branch = Branch(name=name, **fields)
        db.session.add(branch)
        db.session.commit()
        return branch

    return _make


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def _make(role: str = "client", branch: Branch | None = None, password: str | None = None, **fields) -> User:
        counter["n"] += 1
        fields.setdefault("name", f"{role.title()} {counter['n']}")
        fields.setdefault("email", f"{role.lower()}{counter['n']}@example.com")
        user = User(role=role, branch_id=branch.branch_id if branch else None, **fields)
        db.session.add(user)
        db.session.flush()
        if password:
            db.session.add(AuthAccount(user_id=user.user_id, password_hash=generate_password_hash(password)))
        db.session.commit()
        return user

    return _make


@pytest.fixture
def make_service(app):
    def _make(branch: Branch, name: str = "Haircut", price_cents: int = 50000, duration_minutes: int = 60) -> Service:
        service = Service(
            branch_id=branch.branch_id,
            name=name,
            price_cents=price_cents,
            duration_minutes=duration_minutes,
            is_active=True,
        )
        db.session.add(service)
        db.session.commit()
        return service

    return _make


@pytest.fixture
def make_product(app):
    def _make(branch: Branch, name: str = "Shampoo", price_cents: int = 25000, stock_quantity: int = 20) -> Product:
        product = Product(
            branch_id=branch.branch_id,
            name=name,
            price_cents=price_cents,
            stock_quantity=stock_quantity,
            is_active=True,
        )
        db.session.add(product)
        db.session.commit()
        return product

    return _make


@pytest.fixture
def make_schedule(app):
    def _make(stylist: User, day: str = "monday", start: time = time(9, 0), end: time = time(17, 0)):
        row = StylistSchedule(
            stylist_id=stylist.user_id,
            branch_id=stylist.branch_id,
            day_of_week=day,
            start_time=start,
            end_time=end,
        )
        db.session.add(row)
        db.session.commit()
        return row

    return _make
