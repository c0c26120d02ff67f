"""Create a staff or client login, or reset its password, for local development."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure the project root is on sys.path so ``app`` can be imported when the script is executed directly.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app import create_app
from app import permissions as perms
from app.extensions import db
from app.models import AuthAccount, Branch, User


def set_password(email: str, password: str, role: str = perms.CLIENT, branch_id: int | None = None) -> None:
    app = create_app()

    with app.app_context():
        if branch_id is not None and db.session.get(Branch, branch_id) is None:
            print(f"Error: branch {branch_id} does not exist")
            return
        if role in perms.BRANCH_STAFF_ROLES and branch_id is None:
            print(f"Error: role '{role}' needs --branch-id")
            return

        user = User.query.filter_by(email=email.lower()).first()
        if user is None:
            user = User(
                name=perms.role_display_name(role),
                email=email.lower(),
                role=role,
                branch_id=branch_id,
            )
            db.session.add(user)
            db.session.flush()
            print(f"Created new {role} user: {email}")
        else:
            if user.role != role:
                print(f"Updating user role from '{user.role}' to '{role}'")
                user.role = role
            if branch_id is not None:
                user.branch_id = branch_id

        account = AuthAccount.query.filter_by(user_id=user.user_id).first()
        if account is None:
            account = AuthAccount(user_id=user.user_id)
            db.session.add(account)
            print(f"Created auth account for user: {email}")

        account.password_hash = generate_password_hash(password)
        db.session.commit()

        print(f"Password for {role} user '{email}' has been set successfully.")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Set a user password for local testing.")
    parser.add_argument("email", help="User email address")
    parser.add_argument("password", help="Plain-text password to hash and store")
    parser.add_argument("--role", choices=perms.ROLES, default=perms.CLIENT, help="User role (default: client)")
    parser.add_argument("--branch-id", type=int, default=None, help="Branch for staff roles")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    set_password(args.email, args.password, args.role, args.branch_id)


if __name__ == "__main__":
    main()
