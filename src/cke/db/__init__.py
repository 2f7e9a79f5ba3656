"""CKE storage layer: element model, SQLite stores and repository."""

from cke.db.connection import Database
from cke.db.repository import Repository
from cke.db.schema import SCHEMA_VERSION, initialize

__all__ = [
    "Database",
    "Repository",
    "SCHEMA_VERSION",
    "initialize",
]
