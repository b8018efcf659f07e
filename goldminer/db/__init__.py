"""Database utilities and session management."""

from goldminer.db.base import Base, BaseModel, String50, String100, String255, String500, utcnow
from goldminer.db.session import (
    AsyncSessionLocal,
    create_engine,
    create_session_factory,
    engine,
)

__all__ = [
    # Base classes
    "Base",
    "BaseModel",
    "utcnow",
    # String types
    "String50",
    "String100",
    "String255",
    "String500",
    # Session management
    "engine",
    "AsyncSessionLocal",
    "create_engine",
    "create_session_factory",
]
