"""
Database module for the task graph engine.
Provides the transactional persistence port with async SQLAlchemy.
"""

from .connection import Database, is_conflict_error
from .codec import PayloadCodec, IdentityCodec, set_payload_codec, get_payload_codec
from .models import Base, UserModel, GraphModel, NodeModel, EdgeModel, TaskModel

__all__ = [
    "Database",
    "is_conflict_error",
    "PayloadCodec",
    "IdentityCodec",
    "set_payload_codec",
    "get_payload_codec",
    "Base",
    "UserModel",
    "GraphModel",
    "NodeModel",
    "EdgeModel",
    "TaskModel",
]
