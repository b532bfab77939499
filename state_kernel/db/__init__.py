"""Database layer - engine, base classes, types, and immutability."""

from state_kernel.db.base import Base, EntityBase, UUIDString
from state_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    run_in_transaction,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "create_tables",
    "run_in_transaction",
    "session_scope",
    "Base",
    "EntityBase",
    "UUIDString",
]
