#!/usr/bin/env python3
"""
Database initialization script
Creates all tables and optionally seeds a demo club night
"""

import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Load .env file
from dotenv import load_dotenv
load_dotenv()

from gamenight.models import Base, engine, SessionLocal, Member, session_scope
from gamenight.services.lifecycle import GameNightLifecycle
from gamenight.services.wallet import CoinWallet
from datetime import date
import logging
from sqlalchemy import text, inspect

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

DEMO_MEMBERS = ["Ada", "Brook", "Cato", "Dana", "Emil", "Fern"]
DEMO_COINS = 1000


def init_database(drop_existing: bool = False):
    """
    Initialize database tables

    Args:
        drop_existing: If True, drops all tables first (DANGER: data loss!)
    """
    logger.info("Initializing game-night database...")

    if drop_existing:
        logger.warning("Dropping all existing tables!")
        response = input("Are you sure? This will delete all data. Type 'yes' to confirm: ")
        if response.lower() != 'yes':
            logger.info("Aborted.")
            return False

        Base.metadata.drop_all(bind=engine)
        logger.info("Existing tables dropped")

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")

    inspector = inspect(engine)
    tables = inspector.get_table_names()
    logger.info("Tables: %s", ", ".join(tables))

    return True


def seed_test_data():
    """Add demo members with funded wallets and tonight's game night"""
    logger.info("Seeding demo data...")

    wallet = CoinWallet()
    try:
        with session_scope(SessionLocal) as db:
            for name in DEMO_MEMBERS:
                member = Member(name=name, rating=1200)
                db.add(member)
                db.flush()
                wallet.deposit(db, member.id, DEMO_COINS, f"seed:{member.id}")

        night_id = GameNightLifecycle(SessionLocal).create_night(date.today())
        logger.info(
            "Demo data seeded: %d members with %d coins each, night %d",
            len(DEMO_MEMBERS), DEMO_COINS, night_id,
        )
    except Exception as e:
        logger.error("Error seeding data: %s", e)


def check_connection():
    """Test database connection"""
    try:
        db = SessionLocal()
        db.execute(text("SELECT 1"))
        db.close()
        logger.info("Database connection successful")
        return True
    except Exception as e:
        logger.error("Database connection failed: %s", e)
        return False


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Initialize game-night database")
    parser.add_argument("--drop", action="store_true", help="Drop existing tables (DANGER!)")
    parser.add_argument("--seed", action="store_true", help="Seed demo data")
    parser.add_argument("--check", action="store_true", help="Only check connection")

    args = parser.parse_args()

    if args.check:
        check_connection()
    else:
        if check_connection():
            if init_database(drop_existing=args.drop) and args.seed:
                seed_test_data()

            logger.info("Database initialization complete!")
        else:
            logger.error("Cannot initialize database - connection failed")
            sys.exit(1)
