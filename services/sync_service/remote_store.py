"""Client for the remote table backend (PostgREST over httpx)."""

import logging
from typing import Any, Callable, Dict, List, Optional

import httpx

from shared.retry import retry_with_exponential_backoff

logger = logging.getLogger(__name__)

BOOKMARKS_TABLE = "bookmarks"
CATEGORIES_TABLE = "categories"
CONFLICT_TARGET = "user_id,local_id"


class RemoteStoreError(Exception):
    """Raised when a remote table request fails."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code

    @property
    def retryable(self) -> bool:
        """Transport failures, rate limiting and server errors may succeed on retry."""
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in (401, 403)


def _filter_params(filters: Dict[str, Any]) -> Dict[str, str]:
    """Translate equality filters into PostgREST query parameters (None means IS NULL)."""
    params = {}
    for column, value in filters.items():
        if value is None:
            params[column] = "is.null"
        elif isinstance(value, bool):
            params[column] = f"eq.{str(value).lower()}"
        else:
            params[column] = f"eq.{value}"
    return params


def _parse_count(content_range: Optional[str]) -> int:
    # Content-Range: 0-24/3573 or */0
    if not content_range or "/" not in content_range:
        return 0
    total = content_range.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else 0


class RemoteStore:
    """Table-style access to the remote backend, scoped by equality filters."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        token_provider: Callable[[], Optional[str]],
        supports_upsert: bool = True
    ):
        """
        Initialize the remote store.

        Args:
            client: HTTP client whose base_url points at the backend root
            api_key: Public (anon) API key sent with every request
            token_provider: Returns the current user's access token, if any
            supports_upsert: Whether the backend honours on_conflict upserts
        """
        self.client = client
        self.api_key = api_key
        self.token_provider = token_provider
        self.supports_upsert = supports_upsert

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        token = self.token_provider() or self.api_key
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {token}",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    @retry_with_exponential_backoff(
        max_retries=2,
        initial_delay=0.5,
        exponential_base=2.0,
        exceptions=(RemoteStoreError,),
        should_retry=lambda e: e.retryable
    )
    async def _request(
        self,
        method: str,
        table: str,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
        prefer: Optional[str] = None
    ) -> httpx.Response:
        try:
            response = await self.client.request(
                method,
                f"/rest/v1/{table}",
                params=params,
                json=json,
                headers=self._headers(prefer),
            )
        except httpx.TransportError as e:
            raise RemoteStoreError(f"{method} {table} failed: {e}") from e

        if response.status_code >= 400:
            code = None
            message = response.text
            try:
                body = response.json()
                code = body.get("code")
                message = body.get("message") or message
            except ValueError:
                pass
            raise RemoteStoreError(
                f"{method} {table} returned {response.status_code}: {message}",
                status_code=response.status_code,
                code=code,
            )
        return response

    async def select(
        self,
        table: str,
        filters: Dict[str, Any],
        columns: str = "*"
    ) -> List[dict]:
        """Return rows matching all filters."""
        params = _filter_params(filters)
        params["select"] = columns
        response = await self._request("GET", table, params=params)
        rows = response.json()
        logger.debug(f"Selected {len(rows)} rows from {table}")
        return rows

    async def count(self, table: str, filters: Dict[str, Any]) -> int:
        """Return the number of rows matching all filters without fetching them."""
        params = _filter_params(filters)
        params["select"] = "id"
        response = await self._request("HEAD", table, params=params, prefer="count=exact")
        return _parse_count(response.headers.get("content-range"))

    async def insert(self, table: str, payload: dict):
        await self._request("POST", table, json=payload, prefer="return=minimal")

    async def update(self, table: str, values: dict, filters: Dict[str, Any]):
        await self._request(
            "PATCH", table, params=_filter_params(filters), json=values, prefer="return=minimal"
        )

    async def upsert(self, table: str, payload: dict, on_conflict: str = CONFLICT_TARGET):
        """Insert or merge into the row identified by the on_conflict columns."""
        await self._request(
            "POST",
            table,
            params={"on_conflict": on_conflict},
            json=payload,
            prefer="resolution=merge-duplicates,return=minimal",
        )

    async def delete(self, table: str, filters: Dict[str, Any]):
        if not filters:
            raise ValueError("Refusing to delete without filters")
        await self._request("DELETE", table, params=_filter_params(filters))
