"""
Persistence layer: reputation evidence, first-seen times, score history, trace edges.

SQLite via Database and get_database(); the backend is swappable.
"""

from backend_riskengine.database.database import (
    Database,
    DatabaseBackend,
    SQLiteBackend,
    get_database,
)
from backend_riskengine.database.models import (
    EdgeRevisionRecord,
    RiskScoreRecord,
)

__all__ = [
    "Database",
    "DatabaseBackend",
    "SQLiteBackend",
    "get_database",
    "EdgeRevisionRecord",
    "RiskScoreRecord",
]
