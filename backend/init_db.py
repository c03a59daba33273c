#!/usr/bin/env python3
"""
Initialize database tables for FleetGuard
"""

import sys

from sqlalchemy.exc import SQLAlchemyError

from fleetguard.core.error_handling.exceptions import DatabaseException
from fleetguard.database import init_db
from fleetguard.config import settings


def create_tables():
    """Create all database tables"""
    try:
        print(f"Creating database tables in {settings.database_url}...")
        init_db()
        print("Database tables created successfully")
        return True
    except (DatabaseException, SQLAlchemyError) as e:
        print(f"Error creating tables: {e}")
        return False


if __name__ == "__main__":
    success = create_tables()
    sys.exit(0 if success else 1)
