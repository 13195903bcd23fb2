"""
Database Module for MetaMind

Async SQLite persistence of AI request metrics.
"""

from .database import Database
from .repositories import AIRequestRepository

__all__ = [
    "Database",
    "AIRequestRepository",
]
