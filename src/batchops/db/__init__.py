"""Database persistence layer: SQLAlchemy 2.x async ORM."""

from batchops.db.models import Base, UserRecord
from batchops.db.repository import UserRepository
from batchops.db.session import create_async_engine, get_session_factory
from batchops.db.soft_delete import SoftDeleteStore

__all__ = [
    "Base",
    "SoftDeleteStore",
    "UserRecord",
    "UserRepository",
    "create_async_engine",
    "get_session_factory",
]
