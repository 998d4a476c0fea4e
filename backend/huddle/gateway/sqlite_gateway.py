import json
import logging
import re
import sqlite3
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from uuid import uuid4

from huddle.gateway.base import DataGateway, Filter, GatewayError, QueryResult, Row, to_iso, utc_now_iso
from huddle.gateway.realtime import ChangeFeed

logger = logging.getLogger(__name__)

SCHEMA: Dict[str, str] = {
    "communities": """
        CREATE TABLE IF NOT EXISTS communities (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            description TEXT,
            slug TEXT NOT NULL UNIQUE,
            image_url TEXT,
            created_by TEXT NOT NULL,
            is_active INTEGER NOT NULL DEFAULT 1,
            deleted_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
    "community_members": """
        CREATE TABLE IF NOT EXISTS community_members (
            id TEXT PRIMARY KEY,
            community_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            role TEXT NOT NULL DEFAULT 'member',
            joined_at TEXT NOT NULL,
            UNIQUE (community_id, user_id)
        )
    """,
    "community_events": """
        CREATE TABLE IF NOT EXISTS community_events (
            id TEXT PRIMARY KEY,
            community_id TEXT NOT NULL,
            created_by TEXT NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            start_time TEXT NOT NULL,
            end_time TEXT,
            location TEXT,
            is_online INTEGER NOT NULL DEFAULT 0,
            meeting_url TEXT,
            capacity INTEGER,
            tags TEXT NOT NULL DEFAULT '[]',
            is_recurring INTEGER NOT NULL DEFAULT 0,
            recurrence_rule TEXT,
            status TEXT NOT NULL DEFAULT 'upcoming',
            ai_generated INTEGER NOT NULL DEFAULT 0,
            metadata TEXT NOT NULL DEFAULT '{}',
            deleted_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
    "event_rsvps": """
        CREATE TABLE IF NOT EXISTS event_rsvps (
            id TEXT PRIMARY KEY,
            event_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            status TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE (event_id, user_id)
        )
    """,
    "admin_notifications": """
        CREATE TABLE IF NOT EXISTS admin_notifications (
            id TEXT PRIMARY KEY,
            community_id TEXT NOT NULL,
            message_id TEXT,
            intent_type TEXT NOT NULL,
            intent_details TEXT NOT NULL DEFAULT '{}',
            is_read INTEGER NOT NULL DEFAULT 0,
            created_by TEXT,
            created_at TEXT NOT NULL,
            read_at TEXT
        )
    """,
    "community_posts": """
        CREATE TABLE IF NOT EXISTS community_posts (
            id TEXT PRIMARY KEY,
            community_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            content TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
    """,
    "ai_generation_logs": """
        CREATE TABLE IF NOT EXISTS ai_generation_logs (
            id TEXT PRIMARY KEY,
            community_id TEXT,
            operation_type TEXT NOT NULL,
            status TEXT NOT NULL,
            error_message TEXT,
            created_at TEXT NOT NULL
        )
    """,
    "content_moderation_flags": """
        CREATE TABLE IF NOT EXISTS content_moderation_flags (
            id TEXT PRIMARY KEY,
            community_id TEXT NOT NULL,
            content_type TEXT NOT NULL,
            content_id TEXT NOT NULL,
            reason TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            reporter_id TEXT,
            created_at TEXT NOT NULL
        )
    """,
    "user_notifications": """
        CREATE TABLE IF NOT EXISTS user_notifications (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            title TEXT NOT NULL,
            body TEXT NOT NULL,
            category TEXT NOT NULL DEFAULT 'system',
            is_read INTEGER NOT NULL DEFAULT 0,
            deep_link TEXT,
            created_at TEXT NOT NULL
        )
    """,
    "device_tokens": """
        CREATE TABLE IF NOT EXISTS device_tokens (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            device_token TEXT NOT NULL,
            created_at TEXT NOT NULL,
            UNIQUE (user_id, device_token)
        )
    """,
}

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_events_community ON community_events (community_id, start_time)",
    "CREATE INDEX IF NOT EXISTS idx_rsvps_event_status ON event_rsvps (event_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_admin_notifications_community ON admin_notifications (community_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_posts_community ON community_posts (community_id, created_at)",
]

JSON_COLUMNS = {
    "community_events": {"tags", "metadata"},
    "admin_notifications": {"intent_details"},
}

BOOL_COLUMNS = {
    "communities": {"is_active"},
    "community_events": {"is_online", "is_recurring", "ai_generated"},
    "admin_notifications": {"is_read"},
    "user_notifications": {"is_read"},
}

TIMESTAMP_DEFAULTS = {"created_at", "updated_at", "joined_at"}

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_SEARCH_TOKEN = re.compile(r"[a-z0-9]+")


class SqliteGateway(DataGateway):
    """Local stand-in for the hosted store, used in development and tests."""

    def __init__(
        self,
        db_path: str,
        storage_dir: Optional[str] = None,
        public_storage_url: str = "/storage",
        change_feed: Optional[ChangeFeed] = None,
    ) -> None:
        super().__init__(change_feed)
        self._lock = Lock()
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(path)
        self.storage_dir = Path(storage_dir) if storage_dir else path.parent / "storage"
        self.public_storage_url = public_storage_url.rstrip("/")
        self._columns: Dict[str, List[str]] = {}
        self._rpcs = {
            "get_community_member_counts": self._rpc_member_counts,
            "search_events_semantically": self._rpc_search_events,
        }
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._lock:
            with self._connect() as conn:
                for ddl in SCHEMA.values():
                    conn.execute(ddl)
                for ddl in INDEXES:
                    conn.execute(ddl)
                conn.commit()
                for table in SCHEMA:
                    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
                    self._columns[table] = [row["name"] for row in rows]

    # -- encoding -----------------------------------------------------------

    def _table_columns(self, table: str) -> List[str]:
        columns = self._columns.get(table)
        if columns is None:
            raise GatewayError(f"Unknown table: {table}", code="unknown_table")
        return columns

    def _check_column(self, table: str, column: str) -> str:
        if not _IDENTIFIER.match(column) or column not in self._table_columns(table):
            raise GatewayError(f"Unknown column {column} on {table}", code="unknown_column")
        return column

    def _encode_value(self, table: str, column: str, value: Any) -> Any:
        if column in JSON_COLUMNS.get(table, set()) and not isinstance(value, str):
            return json.dumps(value if value is not None else ({} if column != "tags" else []))
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, datetime):
            return to_iso(value)
        return value

    def _decode_row(self, table: str, row: sqlite3.Row) -> Row:
        decoded = dict(row)
        for column in JSON_COLUMNS.get(table, set()):
            if column in decoded and isinstance(decoded[column], str):
                decoded[column] = json.loads(decoded[column])
        for column in BOOL_COLUMNS.get(table, set()):
            if column in decoded and decoded[column] is not None:
                decoded[column] = bool(decoded[column])
        return decoded

    def _columns_clause(self, table: str, columns: str) -> str:
        if columns.strip() == "*":
            return "*"
        names = [name.strip() for name in columns.split(",") if name.strip()]
        return ", ".join(self._check_column(table, name) for name in names)

    def _where_clause(self, table: str, filters: Sequence[Filter]) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        for flt in filters:
            column = self._check_column(table, flt.column)
            if flt.op == "in":
                values = list(flt.value or ())
                if not values:
                    clauses.append("0 = 1")
                    continue
                clauses.append(f"{column} IN ({', '.join('?' for _ in values)})")
                params.extend(self._encode_value(table, column, v) for v in values)
            elif flt.op == "is":
                clauses.append(f"{column} IS ?")
                params.append(self._encode_value(table, column, flt.value))
            elif flt.op == "not_is":
                clauses.append(f"{column} IS NOT ?")
                params.append(self._encode_value(table, column, flt.value))
            elif flt.op == "ilike":
                clauses.append(f"LOWER({column}) LIKE LOWER(?)")
                params.append(flt.value)
            else:
                operator = {"eq": "=", "neq": "!=", "gt": ">", "gte": ">=", "lt": "<", "lte": "<="}[flt.op]
                clauses.append(f"{column} {operator} ?")
                params.append(self._encode_value(table, column, flt.value))
        if not clauses:
            return "", params
        return " WHERE " + " AND ".join(clauses), params

    def _prepare_row(self, table: str, values: Row, *, fill_defaults: bool) -> Row:
        columns = self._table_columns(table)
        row = {self._check_column(table, key): self._encode_value(table, key, value) for key, value in values.items()}
        if fill_defaults:
            if "id" in columns and not row.get("id"):
                row["id"] = str(uuid4())
            now = utc_now_iso()
            for column in TIMESTAMP_DEFAULTS:
                if column in columns and not row.get(column):
                    row[column] = now
        return row

    def _run(self, operation: str, fn):
        try:
            return fn()
        except sqlite3.IntegrityError as exc:
            raise GatewayError(f"{operation} violated a constraint: {exc}", code="constraint") from exc
        except sqlite3.Error as exc:
            raise GatewayError(f"{operation} failed: {exc}", code="sqlite") from exc

    # -- queries ------------------------------------------------------------

    def select(
        self,
        table: str,
        columns: str = "*",
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
        count: bool = False,
    ) -> QueryResult:
        self._table_columns(table)
        column_sql = self._columns_clause(table, columns)
        where_sql, params = self._where_clause(table, filters)
        query = f"SELECT {column_sql} FROM {table}{where_sql}"
        if order_by:
            query += f" ORDER BY {self._check_column(table, order_by)} {'DESC' if descending else 'ASC'}"
        page_params: List[Any] = []
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            page_params = [max(0, int(limit)), max(0, int(offset))]
        elif offset:
            query += " LIMIT -1 OFFSET ?"
            page_params = [int(offset)]

        def work() -> QueryResult:
            with self._lock:
                with self._connect() as conn:
                    total = None
                    if count:
                        total = conn.execute(f"SELECT COUNT(*) AS n FROM {table}{where_sql}", tuple(params)).fetchone()["n"]
                    rows = []
                    if limit != 0:
                        rows = conn.execute(query, tuple(params + page_params)).fetchall()
            return QueryResult(rows=[self._decode_row(table, row) for row in rows], count=total)

        return self._run(f"select from {table}", work)

    def insert(self, table: str, values: Union[Row, List[Row]]) -> List[Row]:
        batch = values if isinstance(values, list) else [values]
        prepared = [self._prepare_row(table, row, fill_defaults=True) for row in batch]

        def work() -> List[Row]:
            inserted: List[Row] = []
            with self._lock:
                with self._connect() as conn:
                    for row in prepared:
                        names = list(row.keys())
                        conn.execute(
                            f"INSERT INTO {table} ({', '.join(names)}) VALUES ({', '.join('?' for _ in names)})",
                            tuple(row[name] for name in names),
                        )
                    conn.commit()
                    for row in prepared:
                        fetched = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (row["id"],)).fetchone()
                        inserted.append(self._decode_row(table, fetched))
            return inserted

        rows = self._run(f"insert into {table}", work)
        self._publish(table, "insert", rows)
        return rows

    def update(self, table: str, values: Row, filters: Sequence[Filter]) -> List[Row]:
        if not filters:
            raise GatewayError(f"Refusing unfiltered update on {table}", code="unfiltered")
        row = self._prepare_row(table, values, fill_defaults=False)
        if "updated_at" in self._table_columns(table) and "updated_at" not in row:
            row["updated_at"] = utc_now_iso()
        where_sql, params = self._where_clause(table, filters)
        assignments = ", ".join(f"{name} = ?" for name in row)

        def work() -> Tuple[List[Row], List[Row]]:
            with self._lock:
                with self._connect() as conn:
                    before = conn.execute(f"SELECT * FROM {table}{where_sql}", tuple(params)).fetchall()
                    ids = [item["id"] for item in before]
                    if not ids:
                        return [], []
                    placeholders = ", ".join("?" for _ in ids)
                    conn.execute(
                        f"UPDATE {table} SET {assignments} WHERE id IN ({placeholders})",
                        tuple(row.values()) + tuple(ids),
                    )
                    conn.commit()
                    after = conn.execute(f"SELECT * FROM {table} WHERE id IN ({placeholders})", tuple(ids)).fetchall()
            return [self._decode_row(table, item) for item in after], [self._decode_row(table, item) for item in before]

        updated, previous = self._run(f"update {table}", work)
        self._publish(table, "update", updated, previous)
        return updated

    def upsert(self, table: str, values: Row, on_conflict: Sequence[str]) -> List[Row]:
        keys = [self._check_column(table, key) for key in on_conflict]
        if not keys or any(key not in values for key in keys):
            raise GatewayError(f"Upsert on {table} needs values for {', '.join(on_conflict)}", code="bad_upsert")
        row = self._prepare_row(table, values, fill_defaults=True)
        names = list(row.keys())
        # id and created_at belong to the first insert only.
        update_names = [name for name in names if name not in keys and name not in {"id", "created_at", "joined_at"}]
        conflict_sql = ", ".join(keys)
        if update_names:
            action = "DO UPDATE SET " + ", ".join(f"{name} = excluded.{name}" for name in update_names)
        else:
            action = "DO NOTHING"
        statement = (
            f"INSERT INTO {table} ({', '.join(names)}) VALUES ({', '.join('?' for _ in names)}) "
            f"ON CONFLICT ({conflict_sql}) {action}"
        )
        key_sql = " AND ".join(f"{key} = ?" for key in keys)
        key_params = tuple(row[key] for key in keys)

        def work() -> Tuple[List[Row], Optional[Row]]:
            with self._lock:
                with self._connect() as conn:
                    before = conn.execute(f"SELECT * FROM {table} WHERE {key_sql}", key_params).fetchone()
                    conn.execute(statement, tuple(row[name] for name in names))
                    conn.commit()
                    after = conn.execute(f"SELECT * FROM {table} WHERE {key_sql}", key_params).fetchone()
            previous = self._decode_row(table, before) if before is not None else None
            return [self._decode_row(table, after)], previous

        rows, previous = self._run(f"upsert into {table}", work)
        if previous is None:
            self._publish(table, "insert", rows)
        else:
            self._publish(table, "update", rows, [previous])
        return rows

    def delete(self, table: str, filters: Sequence[Filter]) -> List[Row]:
        if not filters:
            raise GatewayError(f"Refusing unfiltered delete on {table}", code="unfiltered")
        where_sql, params = self._where_clause(table, filters)

        def work() -> List[Row]:
            with self._lock:
                with self._connect() as conn:
                    rows = conn.execute(f"SELECT * FROM {table}{where_sql}", tuple(params)).fetchall()
                    conn.execute(f"DELETE FROM {table}{where_sql}", tuple(params))
                    conn.commit()
            return [self._decode_row(table, row) for row in rows]

        rows = self._run(f"delete from {table}", work)
        self._publish(table, "delete", rows)
        return rows

    # -- rpc ----------------------------------------------------------------

    def rpc(self, name: str, params: Optional[Dict[str, Any]] = None) -> Any:
        handler = self._rpcs.get(name)
        if handler is None:
            raise GatewayError(f"Unknown RPC: {name}", code="unknown_rpc")
        return self._run(f"rpc {name}", lambda: handler(**(params or {})))

    def _rpc_member_counts(self, community_ids: Sequence[str]) -> List[Row]:
        ids = list(community_ids or [])
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(
                    f"""
                    SELECT community_id, COUNT(*) AS member_count
                    FROM community_members
                    WHERE community_id IN ({placeholders})
                    GROUP BY community_id
                    """,
                    tuple(ids),
                ).fetchall()
        return [{"community_id": row["community_id"], "member_count": row["member_count"]} for row in rows]

    def _rpc_search_events(self, query_text: str, match_count: int = 10) -> List[Row]:
        # Lexical overlap stands in for the hosted store's embedding search.
        terms = set(_SEARCH_TOKEN.findall((query_text or "").lower()))
        if not terms:
            return []
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute("SELECT * FROM community_events WHERE deleted_at IS NULL").fetchall()
        scored: List[Tuple[float, Row]] = []
        for raw in rows:
            row = self._decode_row("community_events", raw)
            haystack = " ".join([row.get("title") or "", row.get("description") or "", " ".join(row.get("tags") or [])])
            tokens = set(_SEARCH_TOKEN.findall(haystack.lower()))
            hits = len(terms & tokens)
            if hits:
                row["similarity"] = round(hits / len(terms), 4)
                scored.append((row["similarity"], row))
        scored.sort(key=lambda item: (item[0], item[1]["start_time"]), reverse=True)
        return [row for _, row in scored[: max(1, int(match_count))]]

    # -- storage ------------------------------------------------------------

    def _storage_path(self, bucket: str, path: str) -> Path:
        parts = [part for part in f"{bucket}/{path}".split("/") if part]
        if any(part in {".", ".."} for part in parts):
            raise GatewayError("Invalid storage path", code="bad_path")
        return self.storage_dir.joinpath(*parts)

    def upload_file(self, bucket: str, path: str, content: bytes, content_type: str = "application/octet-stream") -> str:
        target = self._storage_path(bucket, path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except OSError as exc:
            raise GatewayError(f"Upload to {bucket} failed: {exc}", code="storage") from exc
        logger.info("Stored %s bytes at %s/%s", len(content), bucket, path)
        return path

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_storage_url}/{bucket}/{path.lstrip('/')}"
