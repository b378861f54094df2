"""Record store client — row access over the hosted database's REST API.

Learn: The hosted Postgres is reached through its REST gateway
(/rest/v1/<table>), not a direct connection. Every request carries the
public API key plus a bearer token; the token decides which rows
row-level security lets us see:
- a user's access token → only that user's rows
- the service role key → everything (maintenance only)

Filters use the gateway's query syntax: ?id=eq.<uuid>&created_at=neq.<ts>
"""

from typing import Any, Callable, Optional

import httpx

from microlearn.config import settings

TokenProvider = Callable[[], Optional[str]]

# Postgres SQLSTATE for unique_violation
UNIQUE_VIOLATION = "23505"


class RecordStoreError(Exception):
    """Base class for record store failures."""

    def __init__(
        self, message: str, status: Optional[int] = None, code: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code


class RecordStoreTransportError(RecordStoreError):
    """Raised when the record store can't be reached."""


class RecordStoreRejectedError(RecordStoreError):
    """Raised when the record store rejects a request."""


class UniqueViolationError(RecordStoreRejectedError):
    """Raised when an insert hits a unique constraint (row already exists)."""


class RecordStore:
    """Thin async client for one project's REST gateway."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        token_provider: Optional[TokenProvider] = None,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
    ):
        self.http = http
        self.url = (url if url is not None else settings.supabase_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.supabase_anon_key
        self.token_provider = token_provider

    async def select(self, table: str, params: dict[str, str]) -> list[dict]:
        return await self.request("GET", table, params={"select": "*", **params})

    async def insert(self, table: str, row: dict[str, Any]) -> list[dict]:
        return await self.request(
            "POST", table, json=row, prefer="return=representation"
        )

    async def delete(self, table: str, params: dict[str, str]) -> list[dict]:
        return await self.request(
            "DELETE", table, params=params, prefer="return=representation"
        )

    async def ping(self, table: str) -> None:
        """Cheapest possible read, to check the table is reachable."""
        await self.request("GET", table, params={"select": "id", "limit": "1"})

    async def request(
        self,
        method: str,
        table: str,
        *,
        params: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
        prefer: Optional[str] = None,
    ) -> list[dict]:
        if not self.url or not self.api_key:
            raise RecordStoreError("Record store is not configured")

        token = (self.token_provider() if self.token_provider else None) or self.api_key
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {token}",
        }
        if prefer:
            headers["Prefer"] = prefer

        try:
            resp = await self.http.request(
                method,
                f"{self.url}/rest/v1/{table}",
                params=params,
                json=json,
                headers=headers,
            )
        except httpx.TransportError as e:
            raise RecordStoreTransportError(f"Record store unreachable: {e}") from e

        if resp.status_code >= 400:
            raise _rejection(resp)
        if resp.status_code == 204 or not resp.content:
            return []
        data = resp.json()
        return data if isinstance(data, list) else [data]


def _rejection(resp: httpx.Response) -> RecordStoreRejectedError:
    """Map a REST gateway error body ({code, message, details, hint})."""
    try:
        body = resp.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    code = body.get("code")
    message = body.get("message") or f"Record store returned HTTP {resp.status_code}"
    cls = UniqueViolationError if code == UNIQUE_VIOLATION else RecordStoreRejectedError
    return cls(str(message), status=resp.status_code, code=code)
