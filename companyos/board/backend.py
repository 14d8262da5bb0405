"""
Remote collection store (PostgREST over HTTPS).

The board core only needs four verbs per table: select, insert, update and
delete with equality filters. Backend spells out that contract; RestBackend
implements it against a hosted Postgres backend-as-a-service, SqliteBackend
(see local.py) against a local file.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol

import requests

from .errors import BackendError, NotFound, PermissionDenied

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class Backend(Protocol):
    """
    Authenticated collection store.

    Filters are equality matches; a list/tuple/set value means "column in
    values". Every verb returns the affected rows.
    """

    def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order: Optional[str] = None,
        descending: bool = False,
    ) -> List[Row]:
        ...

    def insert(self, table: str, rows: Iterable[Row]) -> List[Row]:
        ...

    def update(self, table: str, match: Dict[str, Any], fields: Row) -> List[Row]:
        ...

    def delete(self, table: str, match: Dict[str, Any]) -> List[Row]:
        ...

    def close(self) -> None:
        ...


# PostgREST / Postgres error codes with a dedicated exception
_NOT_FOUND_CODES = {"PGRST116", "PGRST205", "42P01"}
_PERMISSION_CODES = {"42501", "PGRST301", "PGRST302"}


def _quote(value: Any) -> str:
    """Render a filter value for PostgREST."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    text = str(value)
    if any(ch in text for ch in ',()"'):
        text = '"' + text.replace('"', '\\"') + '"'
    return text


def build_filters(filters: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Translate an equality/in filter dict into PostgREST query params."""
    params = {}
    for column, value in (filters or {}).items():
        if isinstance(value, (list, tuple, set, frozenset)):
            params[column] = "in.(" + ",".join(_quote(v) for v in value) + ")"
        elif value is None:
            params[column] = "is.null"
        else:
            params[column] = f"eq.{_quote(value)}"
    return params


class RestBackend:
    """PostgREST client built on a requests.Session."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/") + "/rest/v1"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "apikey": api_key,
            "Authorization": f"Bearer {access_token or api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        })

    # ── Verbs ────────────────────────────────────────────────────────────────

    def select(self, table, filters=None, order=None, descending=False):
        params = {"select": "*", **build_filters(filters)}
        if order:
            params["order"] = f"{order}.{'desc' if descending else 'asc'}"
        return self._request("GET", table, params=params)

    def insert(self, table, rows):
        rows = list(rows)
        if not rows:
            return []
        return self._request(
            "POST", table, json=rows,
            headers={"Prefer": "return=representation"},
        )

    def update(self, table, match, fields):
        if not match:
            raise ValueError("update() requires a match filter")
        return self._request(
            "PATCH", table, params=build_filters(match), json=fields,
            headers={"Prefer": "return=representation"},
        )

    def delete(self, table, match):
        if not match:
            raise ValueError("delete() requires a match filter")
        return self._request(
            "DELETE", table, params=build_filters(match),
            headers={"Prefer": "return=representation"},
        )

    def close(self) -> None:
        self.session.close()

    # ── Transport ────────────────────────────────────────────────────────────

    def _request(self, method: str, table: str, **kwargs) -> List[Row]:
        url = f"{self.base_url}/{table}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning(f"{method} {table} failed: {e}")
            raise BackendError(f"Network error talking to backend: {e}") from e

        if not response.ok:
            raise self._error_from(response, f"{method} {table}")

        if response.status_code == 204 or not response.content:
            return []
        data = response.json()
        if isinstance(data, dict):
            return [data]
        return data

    @staticmethod
    def _error_from(response: requests.Response, context: str) -> BackendError:
        """Map a PostgREST error body onto the board error taxonomy."""
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        message = body.get("message") or response.reason or f"HTTP {response.status_code}"
        code = body.get("code")
        logger.warning(f"{context} -> {response.status_code}: {message} ({code})")

        if code in _PERMISSION_CODES or response.status_code in (401, 403):
            return PermissionDenied(message, code)
        if code in _NOT_FOUND_CODES or response.status_code == 404:
            return NotFound(message, code)
        return BackendError(message, code)
