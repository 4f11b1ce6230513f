from .base import Base
from .session import create_database_engine, create_session_factory, create_schema, drop_schema
from .repositories import SQLAlchemyRepository

__all__ = [
    "Base",
    "create_database_engine",
    "create_session_factory",
    "create_schema",
    "drop_schema",
    "SQLAlchemyRepository",
]
