"""SQLite database client wrapper with CRUD operations."""

import asyncio
import json
import logging
import re
import threading
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from engage.core.config import Constants, settings


logger = logging.getLogger(__name__)

SqlParam = str | int | float | bool | None


def _validate_collection_name(collection: str) -> None:
    """Validate that a collection name contains only alphanumeric characters and underscores."""
    if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", collection):
        msg = f"Invalid collection name: {collection}. Only alphanumeric characters and underscores are allowed."
        raise ValueError(msg)


def _validate_field_names(fields: Sequence[str]) -> None:
    """Validate column names used to build SQL fragments."""
    for field in fields:
        if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", field):
            msg = f"Invalid field name: {field}"
            raise ValueError(msg)


def sanitize_param(value: str | int | float | bool | None) -> str:
    """Escape a value for safe embedding in filter queries via json.dumps."""
    return json.dumps(str(value))[1:-1]


def _convert_record_ids(record: dict[str, Any]) -> dict[str, Any]:
    """Convert integer ID and foreign key fields to strings for Pydantic compatibility."""
    converted = record.copy()
    for key, value in converted.items():
        if isinstance(value, int) and not isinstance(value, bool) and (key == "id" or key.endswith("_id")):
            converted[key] = str(value)
    return converted


def _to_db_value(val: Any) -> Any:  # noqa: ANN401
    """Serialize a Python value for storage."""
    if isinstance(val, datetime):
        return val.isoformat()
    if isinstance(val, dict | list):
        return json.dumps(val)
    return val


def get_db_path(db_path: str | None = None) -> Path:
    """Get the resolved SQLite database file path."""
    path_str = db_path or settings.sqlite_db_path
    return Path(path_str).resolve()


def _parse_value(value: str, *, is_like: bool = False) -> SqlParam:
    """Parse a string value to the appropriate Python type for SQLite."""
    if is_like:
        escaped = value.replace("%", "\\%").replace("_", "\\_")
        return f"%{escaped}%"

    if value.isdigit():
        return int(value)
    if value.replace(".", "", 1).isdigit():
        return float(value)

    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False

    return value


def _get_sql_operator(op: str) -> str:
    """Map filter operator to SQL operator."""
    op_map = {
        "=": "=",
        "!=": "!=",
        ">": ">",
        "<": "<",
        ">=": ">=",
        "<=": "<=",
        "~": "LIKE",
    }
    sql_op = op_map.get(op)
    if not sql_op:
        msg = f"Unsupported operator: {op}"
        raise ValueError(msg)
    return sql_op


def _parse_single_comparison(comparison: str) -> tuple[str, SqlParam]:
    """Parse a single comparison expression into a SQL condition and parameter."""
    match = re.match(
        r"""^(\w+)\s*(!=|>=|<=|=|>|<|~)\s*(['"])([^'"]*)\3$""",
        comparison,
    )
    if not match:
        msg = f"Invalid filter syntax: {comparison}"
        raise ValueError(msg)

    field = match.group(1)
    op = match.group(2)
    raw_value = match.group(4)

    sql_op = _get_sql_operator(op)
    is_like = sql_op == "LIKE"
    value = _parse_value(raw_value, is_like=is_like)

    if is_like:
        return f"{field} LIKE ? ESCAPE '\\'", value
    return f"{field} {sql_op} ?", value


def _parse_or_group(or_group: str) -> tuple[str, list[SqlParam]]:
    """Parse a parenthesized OR group into a SQL condition and parameters."""
    inner = or_group[1:-1]
    or_parts = [p.strip() for p in inner.split("||")]
    or_conditions = []
    or_params = []

    for part in or_parts:
        cond, value = _parse_single_comparison(part)
        or_conditions.append(cond)
        or_params.append(value)

    return f"({' OR '.join(or_conditions)})", or_params


def _split_and_conditions(filter_query: str) -> list[str]:
    """Split filter query by && while preserving parenthesized groups."""
    parts = []
    current = ""
    paren_depth = 0

    for char in filter_query:
        if char == "(":
            paren_depth += 1
        elif char == ")":
            paren_depth -= 1

        current += char

        if paren_depth == 0 and current.endswith("&&"):
            parts.append(current[:-2].strip())
            current = ""

    if current.strip():
        parts.append(current.strip())

    return parts


def parse_filter(filter_query: str) -> tuple[str, list[SqlParam]]:
    """Parse filter syntax into a SQL WHERE clause and parameter list."""
    if not filter_query:
        return "", []

    parts = _split_and_conditions(filter_query)
    conditions = []
    params: list[SqlParam] = []

    for raw_part in parts:
        part = raw_part.strip()

        if part.startswith("(") and part.endswith(")"):
            cond, cond_params = _parse_or_group(part)
            conditions.append(cond)
            params.extend(cond_params)
        else:
            cond, value = _parse_single_comparison(part)
            conditions.append(cond)
            params.append(value)

    return " AND ".join(conditions), params


def _parse_sort(sort: str) -> str:
    """Translate ``field``/``-field``/``field DESC`` into a safe ORDER BY clause."""
    if not sort:
        return "id ASC"

    clauses = []
    for raw in sort.split(","):
        part = raw.strip()
        descending = part.startswith("-")
        if descending:
            part = part[1:]
        match = re.match(r"^([A-Za-z_][A-Za-z0-9_]*)\s*(ASC|DESC)?$", part, re.IGNORECASE)
        if not match:
            logger.warning("Invalid sort parameter, using default", extra={"sort": sort})
            return "id ASC"
        direction = "DESC" if descending else (match.group(2) or "ASC").upper()
        clauses.append(f"{match.group(1)} {direction}")

    # Keep ordering deterministic for equal sort keys
    if not any(clause.startswith("id ") for clause in clauses):
        clauses.append("id ASC")
    return ", ".join(clauses)


_db_connections: dict[tuple[int, int, str], aiosqlite.Connection] = {}
_write_locks: dict[int, asyncio.Lock] = {}
_in_transaction: ContextVar[bool] = ContextVar("_in_transaction", default=False)


def _get_write_lock() -> asyncio.Lock:
    """Return the write lock bound to the running event loop."""
    loop_id = id(asyncio.get_running_loop())
    lock = _write_locks.get(loop_id)
    if lock is None:
        lock = asyncio.Lock()
        _write_locks[loop_id] = lock
    return lock


async def get_connection(*, db_path: str | None = None) -> aiosqlite.Connection:
    """Get or create a cached connection for the current thread, loop, and db path."""
    thread_id = threading.get_ident()
    loop = asyncio.get_running_loop()
    loop_id = id(loop)
    path = get_db_path(db_path)
    cache_key = (thread_id, loop_id, str(path))

    cached_conn = _db_connections.get(cache_key)
    if cached_conn is not None:
        return cached_conn

    path.parent.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(str(path))
    await conn.execute("PRAGMA foreign_keys = ON")
    await conn.execute("PRAGMA journal_mode = WAL")

    # Another coroutine may have connected while we awaited
    if cache_key in _db_connections:
        await conn.close()
        return _db_connections[cache_key]

    _db_connections[cache_key] = conn

    logger.info(
        "Created new SQLite connection",
        extra={"db_path": str(path), "thread_id": thread_id, "loop_id": loop_id},
    )
    return conn


async def close_connection(*, db_path: str | None = None) -> None:
    """Close the cached SQLite connection for the current thread, loop, and db path."""
    thread_id = threading.get_ident()
    loop_id = id(asyncio.get_running_loop())
    path = get_db_path(db_path)
    cache_key = (thread_id, loop_id, str(path))

    conn = _db_connections.pop(cache_key, None)
    _write_locks.pop(loop_id, None)
    if conn is None:
        return

    try:
        await conn.close()
        logger.info(
            "Closed SQLite connection",
            extra={"thread_id": thread_id, "loop_id": loop_id, "db_path": str(path)},
        )
    except Exception as e:
        logger.warning(
            "Error closing SQLite connection",
            extra={"error": str(e), "thread_id": thread_id, "loop_id": loop_id},
        )


async def init_db(*, db_path: str | None = None) -> None:
    """Initialize the database schema by delegating to schema.init_db()."""
    from engage.core import schema  # noqa: PLC0415 - schema imports this module

    await schema.init_db(db_path=db_path)


@asynccontextmanager
async def transaction() -> AsyncIterator[aiosqlite.Connection]:
    """Run the enclosed writes as one atomic unit.

    Holds the write lock from BEGIN IMMEDIATE to COMMIT so no other coroutine's
    writes can interleave. All db_client helpers called inside the block join the
    transaction instead of committing on their own.

    Usage:
        async with db_client.transaction():
            await db_client.update_record(...)
            await db_client.execute(...)
    """
    if _in_transaction.get():
        msg = "Nested transactions are not supported"
        raise RuntimeError(msg)

    conn = await get_connection()
    async with _get_write_lock():
        token = _in_transaction.set(True)
        try:
            await conn.execute("BEGIN IMMEDIATE")
            yield conn
            await conn.commit()
        except BaseException:
            await conn.rollback()
            raise
        finally:
            _in_transaction.reset(token)


@asynccontextmanager
async def _write_scope() -> AsyncIterator[aiosqlite.Connection]:
    """Serialize a single write, committing it unless an outer transaction owns the commit."""
    conn = await get_connection()
    if _in_transaction.get():
        yield conn
        return

    async with _get_write_lock():
        try:
            yield conn
            await conn.commit()
        except BaseException:
            await conn.rollback()
            raise


def _wrap_db_error(operation: str, collection: str, e: Exception) -> RuntimeError:
    """Build the RuntimeError raised for driver failures."""
    if isinstance(e, aiosqlite.OperationalError) and "no such table" in str(e):
        logger.error("Table not found", extra={"collection": collection})
        return RuntimeError(f"Table '{collection}' does not exist. Call init_db() first.")
    logger.error(f"{operation}_failed", extra={"collection": collection, "error": str(e)})
    return RuntimeError(f"Failed to {operation.replace('_', ' ')} in {collection}: {e}")


async def create_record(*, collection: str, data: dict[str, Any]) -> dict[str, Any]:
    """Insert a new record and return it with its assigned id."""
    try:
        _validate_collection_name(collection)
        _validate_field_names(list(data.keys()))

        columns = list(data.keys())
        placeholders = ", ".join("?" for _ in columns)
        values = [_to_db_value(data[key]) for key in columns]

        query = f"INSERT INTO {collection} ({', '.join(columns)}) VALUES ({placeholders})"  # noqa: S608 - names validated
        async with _write_scope() as conn:
            cursor = await conn.execute(query, values)
            record_id = cursor.lastrowid

        result = await get_record(collection=collection, record_id=str(record_id))

        logger.info("Created record", extra={"collection": collection, "record_id": record_id})
        return result
    except Exception as e:
        raise _wrap_db_error("create_record", collection, e) from e


async def get_record(*, collection: str, record_id: str) -> dict[str, Any]:
    """Fetch a single record by ID, raising KeyError if not found."""
    try:
        _validate_collection_name(collection)
        conn = await get_connection()

        query = f"SELECT * FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
        cursor = await conn.execute(query, (int(record_id),))
        row = await cursor.fetchone()

        if row is None:
            msg = f"Record not found in {collection}: {record_id}"
            raise KeyError(msg)

        columns = [description[0] for description in cursor.description]
        record = dict(zip(columns, row, strict=True))

        logger.debug("Retrieved record", extra={"collection": collection, "record_id": record_id})
        return _convert_record_ids(record)
    except KeyError:
        raise
    except ValueError as e:
        # Non-numeric ids can never match an INTEGER primary key
        msg = f"Record not found in {collection}: {record_id}"
        raise KeyError(msg) from e
    except Exception as e:
        logger.error("get_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        msg = f"Failed to get record from {collection}: {e}"
        raise RuntimeError(msg) from e


async def update_record(*, collection: str, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
    """Update a record by ID and return the updated record."""
    if not data:
        msg = "Empty update payload"
        raise ValueError(msg)

    updated = await update_record_if(collection=collection, record_id=record_id, data=data, expected={})
    if updated is None:
        msg = f"Record not found in {collection}: {record_id}"
        raise KeyError(msg)
    return updated


async def update_record_if(
    *,
    collection: str,
    record_id: str,
    data: dict[str, Any],
    expected: dict[str, Any],
) -> dict[str, Any] | None:
    """Compare-and-swap update: apply ``data`` only while every ``expected`` field still matches.

    Args:
        collection: Table name
        record_id: Record ID
        data: Fields to set
        expected: Field values the row must currently hold

    Returns:
        The updated record, or None if the row is missing or no longer matches
    """
    if not data:
        msg = "Empty update payload"
        raise ValueError(msg)

    try:
        _validate_collection_name(collection)
        _validate_field_names([*data.keys(), *expected.keys()])

        set_clause = ", ".join(f"{key} = ?" for key in data)
        where_clause = " AND ".join(["id = ?", *(f"{key} = ?" for key in expected)])
        values = [_to_db_value(val) for val in data.values()]
        values.append(int(record_id))
        values.extend(_to_db_value(val) for val in expected.values())

        query = f"UPDATE {collection} SET {set_clause} WHERE {where_clause}"  # noqa: S608 - names validated
        async with _write_scope() as conn:
            cursor = await conn.execute(query, values)
            changed = cursor.rowcount

        if changed == 0:
            return None

        logger.info("Updated record", extra={"collection": collection, "record_id": record_id})
        return await get_record(collection=collection, record_id=record_id)
    except Exception as e:
        raise _wrap_db_error("update_record", collection, e) from e


async def upsert_record(
    *,
    collection: str,
    conflict_fields: Sequence[str],
    data: dict[str, Any],
) -> dict[str, Any]:
    """Insert a record or overwrite the non-key fields of the row sharing ``conflict_fields``.

    Args:
        collection: Table name (must carry a UNIQUE index over conflict_fields)
        conflict_fields: Natural key columns, all present in ``data``
        data: Full record data

    Returns:
        The stored record
    """
    try:
        _validate_collection_name(collection)
        _validate_field_names([*data.keys(), *conflict_fields])

        columns = list(data.keys())
        placeholders = ", ".join("?" for _ in columns)
        update_columns = [c for c in columns if c not in conflict_fields]
        values = [_to_db_value(data[key]) for key in columns]

        if update_columns:
            on_conflict = "DO UPDATE SET " + ", ".join(f"{c} = excluded.{c}" for c in update_columns)
        else:
            on_conflict = "DO NOTHING"

        query = (
            f"INSERT INTO {collection} ({', '.join(columns)}) VALUES ({placeholders}) "  # noqa: S608 - names validated
            f"ON CONFLICT ({', '.join(conflict_fields)}) {on_conflict}"
        )
        key_filter = " AND ".join(f"{field} = ?" for field in conflict_fields)
        key_values = [_to_db_value(data[field]) for field in conflict_fields]

        async with _write_scope() as conn:
            await conn.execute(query, values)
            cursor = await conn.execute(
                f"SELECT * FROM {collection} WHERE {key_filter}",  # noqa: S608 - names validated
                key_values,
            )
            row = await cursor.fetchone()
            columns_out = [description[0] for description in cursor.description]

        logger.info("Upserted record", extra={"collection": collection})
        return _convert_record_ids(dict(zip(columns_out, row, strict=True)))
    except Exception as e:
        raise _wrap_db_error("upsert_record", collection, e) from e


async def delete_record(*, collection: str, record_id: str) -> None:
    """Delete a record by ID, raising KeyError if not found."""
    try:
        _validate_collection_name(collection)

        query = f"DELETE FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
        async with _write_scope() as conn:
            cursor = await conn.execute(query, (int(record_id),))
            deleted = cursor.rowcount

        if deleted == 0:
            msg = f"Record not found in {collection}: {record_id}"
            raise KeyError(msg)

        logger.info("Deleted record", extra={"collection": collection, "record_id": record_id})
    except KeyError:
        raise
    except Exception as e:
        raise _wrap_db_error("delete_record", collection, e) from e


async def list_records(
    *,
    collection: str,
    page: int = 1,
    per_page: int = 50,
    filter_query: str = "",
    sort: str = "",
) -> list[dict[str, Any]]:
    """List records with optional filtering, sorting, and pagination."""
    try:
        _validate_collection_name(collection)
        conn = await get_connection()

        where_clause = ""
        params: list[SqlParam] = []
        if filter_query:
            where_clause, params = parse_filter(filter_query)
            where_clause = f"WHERE {where_clause}"

        order_by = _parse_sort(sort)
        offset = (page - 1) * per_page

        query = f"SELECT * FROM {collection} {where_clause} ORDER BY {order_by} LIMIT ? OFFSET ?"  # noqa: S608 - collection is validated
        params.extend([per_page, offset])

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()

        columns = [description[0] for description in cursor.description]
        records = [_convert_record_ids(dict(zip(columns, row, strict=True))) for row in rows]

        logger.debug("Listed records", extra={"collection": collection, "count": len(records)})
        return records
    except Exception as e:
        logger.error("list_records_failed", extra={"collection": collection, "error": str(e)})
        msg = f"Failed to list records from {collection}: {e}"
        raise RuntimeError(msg) from e


async def list_all_records(
    *,
    collection: str,
    filter_query: str = "",
    sort: str = "",
    per_page: int = Constants.MAX_PER_PAGE_LIMIT,
) -> list[dict[str, Any]]:
    """List every matching record, walking pages until a short page is returned."""
    records: list[dict[str, Any]] = []
    page = 1
    while True:
        batch = await list_records(
            collection=collection,
            page=page,
            per_page=per_page,
            filter_query=filter_query,
            sort=sort,
        )
        records.extend(batch)
        if len(batch) < per_page:
            return records
        page += 1


async def get_first_record(*, collection: str, filter_query: str, sort: str = "") -> dict[str, Any] | None:
    """Return the first record matching the filter, or None."""
    records = await list_records(collection=collection, filter_query=filter_query, sort=sort, per_page=1)
    return records[0] if records else None


async def execute(query: str, params: Sequence[SqlParam] = ()) -> int:
    """Run a single write statement and return the number of affected rows.

    For statements that must be atomic on their own (conditional upserts,
    increments) and cannot be expressed with the CRUD helpers.
    """
    try:
        async with _write_scope() as conn:
            cursor = await conn.execute(query, list(params))
            return cursor.rowcount
    except Exception as e:
        logger.error("execute_failed", extra={"error": str(e)})
        msg = f"Failed to execute statement: {e}"
        raise RuntimeError(msg) from e


async def fetch_all(query: str, params: Sequence[SqlParam] = ()) -> list[dict[str, Any]]:
    """Run a read-only query (joins, aggregates) and return rows as dicts."""
    try:
        conn = await get_connection()
        cursor = await conn.execute(query, list(params))
        rows = await cursor.fetchall()
        columns = [description[0] for description in cursor.description]
        return [_convert_record_ids(dict(zip(columns, row, strict=True))) for row in rows]
    except Exception as e:
        logger.error("fetch_all_failed", extra={"error": str(e)})
        msg = f"Failed to fetch rows: {e}"
        raise RuntimeError(msg) from e
