"""
Record store backends for the Assist service.

- base: the abstract contract (RecordStore, WindowCounter)
- postgres: asyncpg implementation over the tenant tables
- memory: in-process implementation for local runs and tests
"""

from .base import RecordStore, WindowCounter
from .memory import InMemoryRecordStore
from .postgres import PostgreSQLRecordStore

__all__ = ["RecordStore", "WindowCounter", "InMemoryRecordStore", "PostgreSQLRecordStore"]
