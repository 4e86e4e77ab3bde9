"""
Toolgate Row Store - Row-level data store contract used by the db tools.

The tools never talk to a database driver directly. They resolve a
per-document connection string through a ConnectionResolver and call the
row-level primitives of a RowStore. MemoryRowStore is an in-process
implementation used for previews, the CLI, and tests.
"""

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple


class RowStoreError(Exception):
    """Raised when the store rejects a row operation (bad column, bad value)."""

    pass


class ConnectionNotConfiguredError(Exception):
    """Raised when a document has no database connection configured."""

    pass


@dataclass
class ColumnInfo:
    """A single table column."""

    name: str
    data_type: str = "text"
    nullable: bool = True
    default: Optional[str] = None
    allowed_values: List[str] = field(default_factory=list)


@dataclass
class TableInfo:
    """Structure of one table."""

    table_name: str
    columns: List[ColumnInfo] = field(default_factory=list)
    primary_key: Optional[str] = None

    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def to_dict(self, max_columns: Optional[int] = None) -> Dict[str, Any]:
        columns = self.columns if max_columns is None else self.columns[:max_columns]
        return {
            "tableName": self.table_name,
            "primaryKey": self.primary_key,
            "columns": [
                {
                    "name": c.name,
                    "dataType": c.data_type,
                    "nullable": c.nullable,
                    "default": c.default,
                    "allowedValues": c.allowed_values,
                }
                for c in columns
            ],
        }


class ConnectionResolver(ABC):
    """Maps a document to the connection string of its data store."""

    @abstractmethod
    async def resolve(self, doc_id: Optional[str]) -> str:
        """
        Resolve the connection string for a document.

        Raises:
            ConnectionNotConfiguredError: If the document has none.
        """
        pass


def normalize_env_settings(env_settings: Any, environment: str = "preview") -> Dict[str, str]:
    """
    Flatten document env settings to one environment.

    Accepts both the nested ``{"preview": {...}, "production": {...}}`` form
    and the older flat form, which counts as preview.
    """
    if not isinstance(env_settings, dict):
        return {}

    if "preview" in env_settings or "production" in env_settings:
        return env_settings.get(environment) or {}

    if environment == "preview":
        return env_settings
    return {}


class EnvSettingsResolver(ConnectionResolver):
    """
    Resolves ``DATABASE_URL`` from per-document env settings.

    Example:
        >>> resolver = EnvSettingsResolver({"doc-1": {"preview": {"DATABASE_URL": "memory://doc-1"}}})
        >>> await resolver.resolve("doc-1")
        'memory://doc-1'
    """

    def __init__(self, env_settings: Mapping[str, Any], environment: str = "preview"):
        self._env_settings = env_settings
        self.environment = environment

    async def load_env_settings(self, doc_id: str) -> Any:
        """Fetch raw env settings for a document. Override to read from a database."""
        return self._env_settings.get(doc_id)

    async def resolve(self, doc_id: Optional[str]) -> str:
        if not doc_id:
            raise ConnectionNotConfiguredError("No document in context to resolve a database for")
        env = normalize_env_settings(await self.load_env_settings(doc_id), self.environment)
        conn = env.get("DATABASE_URL", "")
        if not conn:
            raise ConnectionNotConfiguredError(
                f"No database connection found for document {doc_id} (envSettings.DATABASE_URL)"
            )
        return conn


class RowStore(ABC):
    """
    Row-level primitives over a target data store.

    Every method takes the resolved connection string first. Each write is a
    single atomic store call.
    """

    @abstractmethod
    async def list_tables(self, connection: str) -> List[TableInfo]:
        """List tables with their columns."""
        pass

    @abstractmethod
    async def describe_table(self, connection: str, table: str) -> Optional[TableInfo]:
        """Return the table structure, or None if the table does not exist."""
        pass

    @abstractmethod
    async def select_paged(
        self,
        connection: str,
        table: str,
        page: int,
        page_size: int,
        search: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """
        Read one page of rows.

        Returns:
            (rows, total) where total counts every matching row.
        """
        pass

    @abstractmethod
    async def insert(self, connection: str, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def update(
        self,
        connection: str,
        table: str,
        key: str,
        value: Any,
        data: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        """Update rows where ``key == value``. Returns the first updated row or None."""
        pass

    @abstractmethod
    async def upsert(self, connection: str, table: str, key: str, data: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def delete(self, connection: str, table: str, key: str, values: List[Any]) -> int:
        """Delete rows whose ``key`` is in ``values``. Returns the deleted count."""
        pass


class MemoryRowStore(RowStore):
    """
    In-process RowStore keyed by connection string.

    Example:
        >>> store = MemoryRowStore()
        >>> store.create_table("memory://app", TableInfo("users", [ColumnInfo("id", "integer")], "id"))
        >>> await store.insert("memory://app", "users", {})
        {'id': 1}
    """

    def __init__(self):
        self._tables: Dict[str, Dict[str, TableInfo]] = {}
        self._rows: Dict[str, Dict[str, List[Dict[str, Any]]]] = {}

    def create_table(
        self,
        connection: str,
        table: TableInfo,
        rows: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        self._tables.setdefault(connection, {})[table.table_name] = table
        self._rows.setdefault(connection, {})[table.table_name] = [dict(r) for r in rows or []]

    @classmethod
    def from_dict(cls, connection: str, data: Dict[str, Any]) -> "MemoryRowStore":
        """
        Build a store from ``{"tables": [{"name", "primaryKey", "columns", "rows"}]}``.

        Columns may be plain names or ``{"name", "dataType", "nullable"}`` dicts.
        """
        store = cls()
        for entry in data.get("tables", []):
            columns = []
            for col in entry.get("columns", []):
                if isinstance(col, str):
                    columns.append(ColumnInfo(name=col))
                else:
                    columns.append(ColumnInfo(
                        name=col["name"],
                        data_type=col.get("dataType", "text"),
                        nullable=col.get("nullable", True),
                    ))
            store.create_table(
                connection,
                TableInfo(entry["name"], columns, entry.get("primaryKey")),
                entry.get("rows", []),
            )
        return store

    def to_dict(self, connection: str) -> Dict[str, Any]:
        """Dump one connection in the shape :meth:`from_dict` reads."""
        tables = []
        for info in self._tables.get(connection, {}).values():
            tables.append({
                "name": info.table_name,
                "primaryKey": info.primary_key,
                "columns": [
                    {"name": c.name, "dataType": c.data_type, "nullable": c.nullable}
                    for c in info.columns
                ],
                "rows": copy.deepcopy(self._rows[connection][info.table_name]),
            })
        return {"tables": tables}

    # ── Reads ─────────────────────────────────────────────────────────────

    async def list_tables(self, connection: str) -> List[TableInfo]:
        return list(self._tables.get(connection, {}).values())

    async def describe_table(self, connection: str, table: str) -> Optional[TableInfo]:
        return self._tables.get(connection, {}).get(table)

    async def select_paged(
        self,
        connection: str,
        table: str,
        page: int,
        page_size: int,
        search: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], int]:
        rows = self._table_rows(connection, table)
        if search and search.strip():
            needle = search.strip().lower()
            rows = [r for r in rows if any(needle in str(v).lower() for v in r.values())]
        start = (page - 1) * page_size
        return [copy.deepcopy(r) for r in rows[start:start + page_size]], len(rows)

    # ── Writes ────────────────────────────────────────────────────────────

    async def insert(self, connection: str, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        info = self._require_table(connection, table)
        self._check_columns(info, data)
        rows = self._table_rows(connection, table)
        row = {name: None for name in info.column_names()}
        row.update(copy.deepcopy(data))
        pk = info.primary_key
        if pk and row.get(pk) is None:
            existing = [r.get(pk) for r in rows if isinstance(r.get(pk), int)]
            row[pk] = max(existing, default=0) + 1
        if pk and any(r.get(pk) == row[pk] for r in rows):
            raise RowStoreError(f'Duplicate key {pk}={row[pk]!r} in table "{table}"')
        rows.append(row)
        return copy.deepcopy(row)

    async def update(
        self,
        connection: str,
        table: str,
        key: str,
        value: Any,
        data: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        info = self._require_table(connection, table)
        self._check_columns(info, data)
        self._check_columns(info, {key: value})
        updated = None
        for row in self._table_rows(connection, table):
            if row.get(key) == value:
                row.update(copy.deepcopy(data))
                if updated is None:
                    updated = copy.deepcopy(row)
        return updated

    async def upsert(self, connection: str, table: str, key: str, data: Dict[str, Any]) -> Dict[str, Any]:
        info = self._require_table(connection, table)
        self._check_columns(info, data)
        self._check_columns(info, {key: None})
        if key in data:
            for row in self._table_rows(connection, table):
                if row.get(key) == data[key]:
                    row.update(copy.deepcopy(data))
                    return copy.deepcopy(row)
        return await self.insert(connection, table, data)

    async def delete(self, connection: str, table: str, key: str, values: List[Any]) -> int:
        info = self._require_table(connection, table)
        self._check_columns(info, {key: None})
        rows = self._table_rows(connection, table)
        kept = [r for r in rows if r.get(key) not in values]
        deleted = len(rows) - len(kept)
        rows[:] = kept
        return deleted

    # ── Helpers ───────────────────────────────────────────────────────────

    def _require_table(self, connection: str, table: str) -> TableInfo:
        info = self._tables.get(connection, {}).get(table)
        if info is None:
            raise RowStoreError(f'Table "{table}" does not exist')
        return info

    def _table_rows(self, connection: str, table: str) -> List[Dict[str, Any]]:
        self._require_table(connection, table)
        return self._rows[connection][table]

    @staticmethod
    def _check_columns(info: TableInfo, data: Dict[str, Any]) -> None:
        unknown = sorted(set(data) - set(info.column_names()))
        if unknown:
            raise RowStoreError(
                f'Unknown column(s) for table "{info.table_name}": {", ".join(unknown)}'
            )
