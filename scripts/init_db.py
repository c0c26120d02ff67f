#!/usr/bin/env python3
"""Create the salon database tables, optionally dropping them first."""
import argparse
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app import create_app
from app.extensions import db


def init_database(reset: bool = False):
    app = create_app()
    with app.app_context():
        if reset:
            db.drop_all()
            print("Dropped existing tables")
        db.create_all()
        print(f"Database tables initialized at {app.config['SQLALCHEMY_DATABASE_URI']}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Initialize the salon database.")
    parser.add_argument("--reset", action="store_true", help="Drop all tables before creating them")
    init_database(parser.parse_args().reset)
