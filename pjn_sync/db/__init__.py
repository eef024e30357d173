# pjn_sync/db/__init__.py

"""
Database Module

Contains SQLAlchemy models, Pydantic schemas, database configuration and the
repository the services persist through.
"""

from pjn_sync.db.database import Base, engine, SessionLocal, get_db
from pjn_sync.db import models, schemas
from pjn_sync.db.repository import PjnRepository

__all__ = [
    'Base',
    'engine',
    'SessionLocal',
    'get_db',
    'models',
    'schemas',
    'PjnRepository',
]
