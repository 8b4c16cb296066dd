"""
Storage adapters for SOS Responder.
"""

from .sqlite_kv import SQLiteKVStore

__all__ = ["SQLiteKVStore"]
