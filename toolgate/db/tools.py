"""Database tools: list, describe, page through, and write rows of a document's data store."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field, model_validator

from toolgate.db.store import ConnectionNotConfiguredError, ConnectionResolver, RowStore, RowStoreError
from toolgate.tools.registry import ToolRegistry
from toolgate.tools.schema import (
    CapabilityDescriptor,
    ConfirmPayload,
    ErrorKind,
    ExecutionContext,
    Success,
    ToolArgs,
    ToolError,
    ToolMetadata,
)

logger = logging.getLogger(__name__)

MAX_LISTED_COLUMNS = 30
MAX_SUGGESTED_TABLES = 10

_DOC_ID_HELP = (
    "Optional: document whose envSettings.DATABASE_URL is used. "
    "Used only when the context carries no current document."
)


# ── Argument schemas ──────────────────────────────────────────────────────


class DbListTablesArgs(ToolArgs):
    doc_id: Optional[str] = Field(default=None, description=_DOC_ID_HELP)


class DbDescribeTableArgs(ToolArgs):
    doc_id: Optional[str] = Field(default=None, description=_DOC_ID_HELP)
    table: str = Field(min_length=1, description="Target table name to describe")


class DbSelectArgs(ToolArgs):
    doc_id: Optional[str] = Field(default=None, description=_DOC_ID_HELP)
    table: str = Field(min_length=1, description="Target table name")
    page: int = Field(default=1, ge=1, description="1-based page number")
    page_size: int = Field(default=10, ge=1, le=50, description="Max 50 rows")
    search: Optional[str] = Field(default=None, description="Optional text to search across columns")
    field_names: List[str] = Field(
        default_factory=list,
        alias="fields",
        description="Optional field list to return",
    )


class DbWriteArgs(ToolArgs):
    doc_id: Optional[str] = Field(default=None, description=_DOC_ID_HELP)
    table: str = Field(min_length=1, description="Target table name")
    op: Literal["insert", "update", "upsert", "delete"] = Field(
        description='"insert" adds a row, "update" modifies a row, "upsert" inserts or updates, '
        '"delete" removes a row by primary key'
    )
    data: Dict[str, Any] = Field(
        default_factory=dict,
        description="Row data for insert/update/upsert. Ignored for delete.",
    )
    primary_key: Optional[str] = Field(
        default=None,
        description="Primary key column. Required for update, upsert and delete.",
    )
    primary_key_value: Any = Field(
        default=None,
        description="Primary key value to match. Required for update and delete.",
    )
    confirm: Optional[bool] = Field(default=None, description="Must be true to execute")

    @model_validator(mode="after")
    def _check_key_requirements(self) -> "DbWriteArgs":
        has_value = "primary_key_value" in self.model_fields_set
        if self.op in ("update", "delete") and (not self.primary_key or not has_value):
            raise ValueError(f"primaryKey and primaryKeyValue are required for {self.op}")
        if self.op == "upsert" and not self.primary_key:
            raise ValueError("primaryKey is required for upsert")
        return self


# ── Helpers ───────────────────────────────────────────────────────────────


def unknown_table_message(table: str, table_names: List[str]) -> str:
    """Self-diagnosing message for a missing table: near-matches plus up to 10 candidates."""
    message = f'Table "{table}" does not exist.'
    similar = [n for n in table_names if n.lower() == table.lower() and n != table]
    if similar:
        message += f" Did you mean: {', '.join(similar)}?"
    if table_names:
        shown = ", ".join(table_names[:MAX_SUGGESTED_TABLES])
        more = "..." if len(table_names) > MAX_SUGGESTED_TABLES else ""
        message += f" Available tables: {shown}{more}"
    else:
        message += " The database has no tables."
    return message


def db_write_confirm_payload(args: DbWriteArgs) -> ConfirmPayload:
    details: Dict[str, Any] = {
        "op": args.op,
        "table": args.table,
        "affectedKeys": list(args.data.keys()),
    }
    if args.primary_key:
        details["primaryKey"] = args.primary_key
        details["primaryKeyValue"] = args.primary_key_value
    return ConfirmPayload(
        kind="db_write",
        title=f'Confirm database {args.op} on table "{args.table}"',
        details=details,
    )


class DbToolset:
    """
    Row-level database tools bound to one resolver and one store.

    Example:
        >>> toolset = DbToolset(resolver, MemoryRowStore())
        >>> registry.register_all(toolset.descriptors())
    """

    def __init__(self, resolver: ConnectionResolver, store: RowStore):
        self.resolver = resolver
        self.store = store

    async def _connection(self, args: Any, context: ExecutionContext) -> str:
        try:
            return await self.resolver.resolve(context.doc_id or args.doc_id)
        except ConnectionNotConfiguredError as exc:
            raise ToolError(ErrorKind.VALIDATION, str(exc))

    async def _require_table(self, connection: str, table: str):
        structure = await self.store.describe_table(connection, table)
        if structure is None:
            tables = await self.store.list_tables(connection)
            raise ToolError(
                ErrorKind.VALIDATION,
                unknown_table_message(table, [t.table_name for t in tables]),
            )
        return structure

    # ── Handlers ──────────────────────────────────────────────────────────

    async def list_tables(self, args: DbListTablesArgs, context: ExecutionContext) -> Success:
        connection = await self._connection(args, context)
        tables = await self.store.list_tables(connection)
        return Success(output={"tables": [t.to_dict(max_columns=MAX_LISTED_COLUMNS) for t in tables]})

    async def describe_table(self, args: DbDescribeTableArgs, context: ExecutionContext) -> Success:
        connection = await self._connection(args, context)
        structure = await self._require_table(connection, args.table)
        return Success(output={"table": structure.to_dict()})

    async def select(self, args: DbSelectArgs, context: ExecutionContext) -> Success:
        connection = await self._connection(args, context)
        await self._require_table(connection, args.table)
        search = args.search if args.search and args.search.strip() else None
        rows, total = await self.store.select_paged(
            connection, args.table, args.page, args.page_size, search
        )
        if args.field_names:
            rows = [{k: v for k, v in row.items() if k in args.field_names} for row in rows]
        return Success(output={"rows": rows, "total": total})

    async def write(self, args: DbWriteArgs, context: ExecutionContext) -> Success:
        connection = await self._connection(args, context)
        await self._require_table(connection, args.table)

        try:
            if args.op == "insert":
                row = await self.store.insert(connection, args.table, args.data)
                output: Dict[str, Any] = {"row": row}
                if args.table.lower() == "users" and "password" in args.data:
                    output["warning"] = (
                        "The password was stored as given and is not hashed. "
                        "The user must reset it from user management before logging in."
                    )
                return Success(output=output)

            if args.op == "update":
                row = await self.store.update(
                    connection, args.table, args.primary_key, args.primary_key_value, args.data
                )
                if row is None:
                    raise ToolError(
                        ErrorKind.NOT_FOUND,
                        f'No row in "{args.table}" where {args.primary_key} = {args.primary_key_value!r}',
                    )
                return Success(output={"row": row})

            if args.op == "upsert":
                row = await self.store.upsert(connection, args.table, args.primary_key, args.data)
                return Success(output={"row": row})

            deleted = await self.store.delete(
                connection, args.table, args.primary_key, [args.primary_key_value]
            )
            logger.info("Deleted %d row(s) from %s", deleted, args.table)
            return Success(output={"deletedCount": deleted})
        except RowStoreError as exc:
            raise ToolError(ErrorKind.VALIDATION, str(exc))

    # ── Descriptors ───────────────────────────────────────────────────────

    def descriptors(self) -> List[CapabilityDescriptor]:
        return [
            CapabilityDescriptor(
                name="db_list_tables",
                description=(
                    "List tables and their columns for the database associated with the "
                    "current document."
                ),
                parameters=DbListTablesArgs,
                permissions=frozenset({"db:read"}),
                metadata=ToolMetadata(category="db", timeout_ms=10_000),
                handler=self.list_tables,
            ),
            CapabilityDescriptor(
                name="db_describe_table",
                description=(
                    "Get the structure of one table: columns, types, nullability and allowed "
                    "values. Use this before writing to check the table name and schema."
                ),
                parameters=DbDescribeTableArgs,
                permissions=frozenset({"db:read"}),
                metadata=ToolMetadata(category="db", timeout_ms=10_000),
                handler=self.describe_table,
            ),
            CapabilityDescriptor(
                name="db_select",
                description="Query table rows with pagination and optional text search.",
                parameters=DbSelectArgs,
                permissions=frozenset({"db:read"}),
                metadata=ToolMetadata(category="db", timeout_ms=15_000),
                handler=self.select,
            ),
            CapabilityDescriptor(
                name="db_write",
                description=(
                    "Insert, update, upsert or delete a row in the current document database. "
                    "Every operation requires user confirmation."
                ),
                parameters=DbWriteArgs,
                permissions=frozenset({"db:write"}),
                metadata=ToolMetadata(category="db", requires_confirm=True, timeout_ms=20_000),
                handler=self.write,
                confirm_builder=db_write_confirm_payload,
            ),
        ]


def register_db_tools(registry: ToolRegistry, resolver: ConnectionResolver, store: RowStore) -> DbToolset:
    """Register the four database tools and return the bound toolset."""
    toolset = DbToolset(resolver, store)
    registry.register_all(toolset.descriptors())
    return toolset
