"""Персистентное хранилище (sqlite3)."""

from .sqlite_store import SqliteOrderStore

__all__ = ["SqliteOrderStore"]
