"""Contract for the remote data gateway.

Every service in the app talks to the hosted relational store through this
interface: filtered selects with optional exact counts, row mutations, named
RPCs, file storage and change subscriptions. The store owns all state; the
gateway never caches rows.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from huddle.gateway.realtime import ChangeEvent, ChangeFeed, Subscription

Row = Dict[str, Any]

FILTER_OPERATORS = {"eq", "neq", "gt", "gte", "lt", "lte", "in", "is", "not_is", "ilike"}


class GatewayError(Exception):
    """Raised for any failure reported by, or while reaching, the data store."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


def to_iso(value: datetime) -> str:
    """Canonical stored form of a timestamp: UTC with fixed microsecond precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def utc_now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Filter:
    column: str
    op: str
    value: Any = None

    def __post_init__(self) -> None:
        if self.op not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")


def _normalize(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_iso(value)
    return value


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", _normalize(value))


def neq(column: str, value: Any) -> Filter:
    return Filter(column, "neq", _normalize(value))


def gt(column: str, value: Any) -> Filter:
    return Filter(column, "gt", _normalize(value))


def gte(column: str, value: Any) -> Filter:
    return Filter(column, "gte", _normalize(value))


def lt(column: str, value: Any) -> Filter:
    return Filter(column, "lt", _normalize(value))


def lte(column: str, value: Any) -> Filter:
    return Filter(column, "lte", _normalize(value))


def in_(column: str, values: Iterable[Any]) -> Filter:
    return Filter(column, "in", tuple(_normalize(v) for v in values))


def is_null(column: str) -> Filter:
    return Filter(column, "is", None)


def not_null(column: str) -> Filter:
    return Filter(column, "not_is", None)


def ilike(column: str, pattern: str) -> Filter:
    return Filter(column, "ilike", pattern)


@dataclass
class QueryResult:
    rows: List[Row] = field(default_factory=list)
    count: Optional[int] = None

    def first(self) -> Optional[Row]:
        return self.rows[0] if self.rows else None


class DataGateway(ABC):
    """Generic CRUD/RPC client. Concrete gateways override the primitive operations."""

    def __init__(self, change_feed: Optional[ChangeFeed] = None) -> None:
        self.change_feed = change_feed or ChangeFeed()

    @abstractmethod
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
        ...

    @abstractmethod
    def insert(self, table: str, values: Union[Row, List[Row]]) -> List[Row]:
        ...

    @abstractmethod
    def update(self, table: str, values: Row, filters: Sequence[Filter]) -> List[Row]:
        ...

    @abstractmethod
    def upsert(self, table: str, values: Row, on_conflict: Sequence[str]) -> List[Row]:
        ...

    @abstractmethod
    def delete(self, table: str, filters: Sequence[Filter]) -> List[Row]:
        ...

    @abstractmethod
    def rpc(self, name: str, params: Optional[Dict[str, Any]] = None) -> Any:
        ...

    @abstractmethod
    def upload_file(self, bucket: str, path: str, content: bytes, content_type: str = "application/octet-stream") -> str:
        ...

    @abstractmethod
    def public_url(self, bucket: str, path: str) -> str:
        ...

    def count(self, table: str, filters: Sequence[Filter] = ()) -> int:
        result = self.select(table, columns="id", filters=filters, limit=0, count=True)
        return result.count or 0

    def select_one(self, table: str, filters: Sequence[Filter], columns: str = "*") -> Optional[Row]:
        return self.select(table, columns=columns, filters=filters, limit=1).first()

    def subscribe(
        self,
        table: str,
        callback: Callable[[ChangeEvent], None],
        filters: Sequence[Filter] = (),
    ) -> Subscription:
        return self.change_feed.subscribe(table, callback, filters)

    def _publish(self, table: str, change_type: str, rows: List[Row], old_rows: Optional[List[Row]] = None) -> None:
        if rows:
            self.change_feed.publish(table, change_type, rows, old_rows)  # type: ignore[arg-type]
