"""Database abstraction layer for the media service.

Supports SQLite (self-hosted) and PostgreSQL (SaaS) backends.
"""

from .factory import get_database, init_db, reset_database

__all__ = ["get_database", "init_db", "reset_database"]
