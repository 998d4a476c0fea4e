import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Dict, List, Literal, Optional, Sequence
from uuid import uuid4

logger = logging.getLogger(__name__)

ChangeType = Literal["insert", "update", "delete"]


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    type: ChangeType
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None

    @property
    def row(self) -> Dict[str, Any]:
        return self.new if self.new is not None else (self.old or {})


@dataclass
class Subscription:
    id: str
    table: str
    filters: Sequence[Any]
    callback: Callable[[ChangeEvent], None]
    _feed: Optional["ChangeFeed"] = field(default=None, repr=False)

    def unsubscribe(self) -> None:
        if self._feed is not None:
            self._feed.unsubscribe(self.id)
            self._feed = None


class ChangeFeed:
    """Fan-out of committed row changes to subscribers keyed by table and filter.

    Subscribers are expected to re-fetch on notification rather than apply the delta.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._subscriptions: Dict[str, Subscription] = {}

    def subscribe(
        self,
        table: str,
        callback: Callable[[ChangeEvent], None],
        filters: Sequence[Any] = (),
    ) -> Subscription:
        subscription = Subscription(
            id=f"sub_{uuid4().hex[:10]}",
            table=table,
            filters=tuple(filters),
            callback=callback,
            _feed=self,
        )
        with self._lock:
            self._subscriptions[subscription.id] = subscription
        return subscription

    def unsubscribe(self, subscription_id: str) -> None:
        with self._lock:
            self._subscriptions.pop(subscription_id, None)

    def publish(self, table: str, change_type: ChangeType, rows: List[Dict[str, Any]], old_rows: Optional[List[Dict[str, Any]]] = None) -> None:
        with self._lock:
            targets = [s for s in self._subscriptions.values() if s.table == table]
        if not targets:
            return
        if change_type == "delete":
            events = [ChangeEvent(table=table, type=change_type, old=row) for row in rows]
        else:
            previous = old_rows or []
            events = [
                ChangeEvent(table=table, type=change_type, new=row, old=previous[idx] if idx < len(previous) else None)
                for idx, row in enumerate(rows)
            ]
        for subscription in targets:
            for event in events:
                if not row_matches(event.row, subscription.filters):
                    continue
                try:
                    subscription.callback(event)
                except Exception:
                    logger.exception("Realtime subscriber %s failed on %s %s", subscription.id, table, change_type)

    def subscriber_count(self, table: Optional[str] = None) -> int:
        with self._lock:
            if table is None:
                return len(self._subscriptions)
            return sum(1 for s in self._subscriptions.values() if s.table == table)


def row_matches(row: Dict[str, Any], filters: Sequence[Any]) -> bool:
    for flt in filters:
        value = row.get(flt.column)
        target = flt.value
        op = flt.op
        if op == "eq" and value != target:
            return False
        if op == "neq" and value == target:
            return False
        if op == "in" and value not in set(target):
            return False
        if op == "is" and value is not target and value != target:
            return False
        if op == "not_is" and (value is target or value == target):
            return False
        if op in {"gt", "gte", "lt", "lte"}:
            if value is None:
                return False
            if op == "gt" and not value > target:
                return False
            if op == "gte" and not value >= target:
                return False
            if op == "lt" and not value < target:
                return False
            if op == "lte" and not value <= target:
                return False
        if op == "ilike":
            needle = str(target).replace("%", "").lower()
            if needle not in str(value or "").lower():
                return False
    return True
