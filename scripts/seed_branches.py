#!/usr/bin/env python3
"""Seed the database with demo branches, staff, services and products."""
import sys
from datetime import time
from pathlib import Path

# Add the parent directory to the path so we can import the app
sys.path.insert(0, str(Path(__file__).parent.parent))

from werkzeug.security import generate_password_hash

from app import create_app
from app import permissions as perms
from app.extensions import db
from app.models import AuthAccount, Branch, Product, Service, StylistSchedule, User
from app.scheduling import DEFAULT_OPERATING_HOURS

DEMO_PASSWORD = "password123"

SAMPLE_BRANCHES = [
    {"name": "Makati Branch", "city": "Makati", "address": "123 Ayala Ave", "contact_number": "02-8123-4567"},
    {"name": "Quezon City Branch", "city": "Quezon City", "address": "45 Tomas Morato", "contact_number": "02-8765-4321"},
]

SAMPLE_SERVICES = [
    {"name": "Haircut", "category": "hair", "price_cents": 50000, "duration_minutes": 60},
    {"name": "Hair Color", "category": "color", "price_cents": 250000, "duration_minutes": 120},
    {"name": "Manicure", "category": "nails", "price_cents": 30000, "duration_minutes": 45},
]

SAMPLE_PRODUCTS = [
    {"name": "Moisturizing Shampoo", "category": "Hair Care", "price_cents": 45000, "stock_quantity": 40},
    {"name": "Deep Conditioning Mask", "category": "Hair Care", "price_cents": 80000, "stock_quantity": 15},
    {"name": "Styling Gel", "category": "Styling", "price_cents": 25000, "stock_quantity": 8},
]

WORK_DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday")


def _user(name: str, email: str, role: str, branch: Branch | None = None) -> User:
    user = User.query.filter_by(email=email).first()
    if user is None:
        user = User(name=name, email=email, role=role, branch_id=branch.branch_id if branch else None)
        db.session.add(user)
        db.session.flush()
        db.session.add(AuthAccount(user_id=user.user_id, password_hash=generate_password_hash(DEMO_PASSWORD)))
    return user


def seed_branches():
    """Add demo branches with a full staff roster."""
    app = create_app()

    with app.app_context():
        if Branch.query.first() is not None:
            print("Branches already exist; skipping seed.")
            return

        _user("System Admin", "admin@example.com", perms.SYSTEM_ADMIN)
        _user("Operations Lead", "ops@example.com", perms.OPERATIONAL_MANAGER)
        _user("Demo Client", "client@example.com", perms.CLIENT)

        for index, fields in enumerate(SAMPLE_BRANCHES, start=1):
            branch = Branch(operating_hours=dict(DEFAULT_OPERATING_HOURS), **fields)
            db.session.add(branch)
            db.session.flush()

            branch.branch_admin_id = _user(f"Branch Admin {index}", f"branchadmin{index}@example.com", perms.BRANCH_ADMIN, branch).user_id
            branch.manager_id = _user(f"Branch Manager {index}", f"manager{index}@example.com", perms.BRANCH_MANAGER, branch).user_id
            _user(f"Receptionist {index}", f"reception{index}@example.com", perms.RECEPTIONIST, branch)
            _user(f"Inventory {index}", f"inventory{index}@example.com", perms.INVENTORY_CONTROLLER, branch)

            for n in (1, 2):
                stylist = _user(f"Stylist {index}-{n}", f"stylist{index}{n}@example.com", perms.STYLIST, branch)
                for day in WORK_DAYS:
                    db.session.add(
                        StylistSchedule(
                            stylist_id=stylist.user_id,
                            branch_id=branch.branch_id,
                            day_of_week=day,
                            start_time=time(9, 0),
                            end_time=time(17, 0),
                        )
                    )

            for service in SAMPLE_SERVICES:
                db.session.add(Service(branch_id=branch.branch_id, is_active=True, **service))
            for product in SAMPLE_PRODUCTS:
                db.session.add(Product(branch_id=branch.branch_id, is_active=True, **product))

            print(f"Seeded {branch.name}")

        db.session.commit()
        print(f"Done. Every demo account uses the password '{DEMO_PASSWORD}'.")


if __name__ == "__main__":
    seed_branches()
