from sqlalchemy.orm import declarative_base
from fleetguard.config import settings
from fleetguard.core.database.connection_manager import DatabaseConnectionManager, ConnectionPoolConfig

connection_manager = DatabaseConnectionManager(settings.database_url, ConnectionPoolConfig())

Base = declarative_base()


def init_db(manager: DatabaseConnectionManager = None):
    """Create all tables"""
    from fleetguard.models import scan, website  # noqa: F401

    Base.metadata.create_all(bind=(manager or connection_manager).engine)


def get_db_health():
    """Get database health status"""
    return connection_manager.health_check()
