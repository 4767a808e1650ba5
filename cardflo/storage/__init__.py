"""Storage layer - SQLite contacts, usage counters and accounts."""

from .database import RecordStore

__all__ = ["RecordStore"]
