import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import httpx

from huddle.gateway.base import DataGateway, Filter, GatewayError, QueryResult, Row, to_iso
from huddle.gateway.realtime import ChangeFeed

logger = logging.getLogger(__name__)


def _format_scalar(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _quote_list_item(value: Any) -> str:
    text = _format_scalar(value)
    if any(ch in text for ch in ',()"'):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


def encode_filter(flt: Filter) -> Tuple[str, str]:
    """Render one filter as a PostgREST query parameter."""
    if flt.op == "in":
        items = ",".join(_quote_list_item(item) for item in flt.value or ())
        return flt.column, f"in.({items})"
    if flt.op == "is":
        return flt.column, f"is.{_format_scalar(flt.value)}"
    if flt.op == "not_is":
        return flt.column, f"not.is.{_format_scalar(flt.value)}"
    return flt.column, f"{flt.op}.{_format_scalar(flt.value)}"


def parse_content_range(header: Optional[str]) -> Optional[int]:
    # "0-24/3573" or "*/0"
    if not header or "/" not in header:
        return None
    total = header.rsplit("/", 1)[1]
    if total == "*":
        return None
    try:
        return int(total)
    except ValueError:
        return None


def _jsonable(values: Row) -> Row:
    return {key: to_iso(value) if isinstance(value, datetime) else value for key, value in values.items()}


class RestGateway(DataGateway):
    """Gateway for the hosted store's REST, RPC and storage endpoints."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
        change_feed: Optional[ChangeFeed] = None,
    ) -> None:
        super().__init__(change_feed)
        if not base_url:
            raise GatewayError("HUDDLE_GATEWAY_URL is required for the REST gateway", code="config")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def _headers(self, prefer: Optional[str] = None, content_type: str = "application/json") -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": content_type,
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _make_request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[List[Tuple[str, str]]] = None,
        json_body: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self._client.request(
                method,
                url,
                params=params,
                json=json_body,
                content=content,
                headers=headers or self._headers(),
            )
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as exc:
            logger.error("Gateway %s %s returned %s: %s", method, path, exc.response.status_code, exc.response.text[:300])
            code = None
            try:
                body = exc.response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                code = body.get("code")
            raise GatewayError(f"Gateway request failed with status {exc.response.status_code}", code=code or str(exc.response.status_code)) from exc
        except httpx.HTTPError as exc:
            logger.error("Gateway %s %s failed: %s", method, path, exc)
            raise GatewayError(f"Gateway request failed: {exc}", code="transport") from exc

    @staticmethod
    def _rows(response: httpx.Response) -> List[Row]:
        if not response.content:
            return []
        payload = response.json()
        if isinstance(payload, list):
            return payload
        if isinstance(payload, dict):
            return [payload]
        return []

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
        params: List[Tuple[str, str]] = [("select", columns)]
        params.extend(encode_filter(flt) for flt in filters)
        if order_by:
            params.append(("order", f"{order_by}.{'desc' if descending else 'asc'}"))
        if limit is not None:
            params.append(("limit", str(max(0, int(limit)))))
        if offset:
            params.append(("offset", str(int(offset))))
        response = self._make_request(
            "GET",
            f"/rest/v1/{table}",
            params=params,
            headers=self._headers(prefer="count=exact" if count else None),
        )
        total = parse_content_range(response.headers.get("content-range")) if count else None
        return QueryResult(rows=self._rows(response), count=total)

    def insert(self, table: str, values: Union[Row, List[Row]]) -> List[Row]:
        batch = values if isinstance(values, list) else [values]
        response = self._make_request(
            "POST",
            f"/rest/v1/{table}",
            json_body=[_jsonable(row) for row in batch],
            headers=self._headers(prefer="return=representation"),
        )
        rows = self._rows(response)
        self._publish(table, "insert", rows)
        return rows

    def update(self, table: str, values: Row, filters: Sequence[Filter]) -> List[Row]:
        if not filters:
            raise GatewayError(f"Refusing unfiltered update on {table}", code="unfiltered")
        response = self._make_request(
            "PATCH",
            f"/rest/v1/{table}",
            params=[encode_filter(flt) for flt in filters],
            json_body=_jsonable(values),
            headers=self._headers(prefer="return=representation"),
        )
        rows = self._rows(response)
        self._publish(table, "update", rows)
        return rows

    def upsert(self, table: str, values: Row, on_conflict: Sequence[str]) -> List[Row]:
        response = self._make_request(
            "POST",
            f"/rest/v1/{table}",
            params=[("on_conflict", ",".join(on_conflict))],
            json_body=[_jsonable(values)],
            headers=self._headers(prefer="resolution=merge-duplicates,return=representation"),
        )
        rows = self._rows(response)
        self._publish(table, "update", rows)
        return rows

    def delete(self, table: str, filters: Sequence[Filter]) -> List[Row]:
        if not filters:
            raise GatewayError(f"Refusing unfiltered delete on {table}", code="unfiltered")
        response = self._make_request(
            "DELETE",
            f"/rest/v1/{table}",
            params=[encode_filter(flt) for flt in filters],
            headers=self._headers(prefer="return=representation"),
        )
        rows = self._rows(response)
        self._publish(table, "delete", rows)
        return rows

    def rpc(self, name: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = self._make_request("POST", f"/rest/v1/rpc/{name}", json_body=params or {})
        if not response.content:
            return None
        return response.json()

    def upload_file(self, bucket: str, path: str, content: bytes, content_type: str = "application/octet-stream") -> str:
        self._make_request(
            "POST",
            f"/storage/v1/object/{bucket}/{path.lstrip('/')}",
            content=content,
            headers=self._headers(content_type=content_type),
        )
        return path

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{path.lstrip('/')}"
