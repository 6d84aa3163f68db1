"""HTTP middlewares and the database session plumbing."""

from .db import get_db_session, get_session_maker, init_db
from .errors import ErrorsMiddleware

__all__ = [
    "ErrorsMiddleware",
    "get_db_session",
    "get_session_maker",
    "init_db",
]
