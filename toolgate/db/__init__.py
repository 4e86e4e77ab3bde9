"""
Toolgate db module.

Row-level database tools over an external row store.
"""

from toolgate.db.store import (
    ColumnInfo,
    ConnectionNotConfiguredError,
    ConnectionResolver,
    EnvSettingsResolver,
    MemoryRowStore,
    RowStore,
    RowStoreError,
    TableInfo,
)
from toolgate.db.tools import DbToolset, register_db_tools

__all__ = [
    "ColumnInfo",
    "ConnectionNotConfiguredError",
    "ConnectionResolver",
    "EnvSettingsResolver",
    "MemoryRowStore",
    "RowStore",
    "RowStoreError",
    "TableInfo",
    "DbToolset",
    "register_db_tools",
]
