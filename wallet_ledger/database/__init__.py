from .connection import DatabaseConnection, get_database_connection, get_db_session
from .operations import DatabaseOperations, unique_positions
from .state_manager import StateManager

__all__ = [
    "DatabaseConnection",
    "get_database_connection",
    "get_db_session",
    "DatabaseOperations",
    "unique_positions",
    "StateManager",
]
