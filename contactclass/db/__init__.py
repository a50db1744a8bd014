"""Database layer for contactclass with async SQLAlchemy."""

from contactclass.db.connection import close_db, get_session, get_session_factory, init_db
from contactclass.db.models import ActivityModel, Base, CacheEntryModel, JobModel, JobRowModel

__all__ = [
    "Base",
    "JobModel",
    "JobRowModel",
    "CacheEntryModel",
    "ActivityModel",
    "get_session",
    "get_session_factory",
    "init_db",
    "close_db",
]
