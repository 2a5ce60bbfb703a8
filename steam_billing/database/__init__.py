"""Database package for steam billing."""
from .connection import close_db, create_engine, create_session_factory, init_db
from .models import Base, ReconciliationRun, Transaction, TransactionStatus
from .repository import PersistenceError, TransactionRecord, TransactionStore

__all__ = [
    "Base",
    "PersistenceError",
    "ReconciliationRun",
    "Transaction",
    "TransactionRecord",
    "TransactionStatus",
    "TransactionStore",
    "close_db",
    "create_engine",
    "create_session_factory",
    "init_db",
]
