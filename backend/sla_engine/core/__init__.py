# Core modules - Database, Config, Exceptions
from .database import get_supabase_client
from .config import settings
from .exceptions import (
    SLAEngineException,
    DatabaseError,
    TicketNotFoundError,
    AlreadyPausedError,
    TicketClosedError,
    NoActivePauseError,
    PauseConflictError,
)

__all__ = [
    "get_supabase_client",
    "settings",
    "SLAEngineException",
    "DatabaseError",
    "TicketNotFoundError",
    "AlreadyPausedError",
    "TicketClosedError",
    "NoActivePauseError",
    "PauseConflictError",
]
