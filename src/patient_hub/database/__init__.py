"""Database package for the patient hub.

All functions from connection.py are re-exported for convenience.
"""

from .connection import borrow_db_session, dispose_db, get_db_session, get_engine, init_db, is_healthy

__all__ = [
    "borrow_db_session",
    "dispose_db",
    "get_db_session",
    "get_engine",
    "init_db",
    "is_healthy",
]
