import asyncio
import os
from datetime import datetime
from typing import Any

import httpx

from monzo_budget.core.errors import (
    AuthenticationError,
    InvalidTimeRangeError,
    RateLimitError,
    RemoteAPIError,
    TransportFailure,
)
from monzo_budget.domain.transactions import format_api_timestamp
from monzo_budget.logger import get_logger

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://api.monzo.com"
INVALID_TIME_RANGE_CODE = "bad_request.invalid_time_range"


def _error_code(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        code = body.get("code")
        return str(code) if code else None
    return None


def _retry_after(response: httpx.Response) -> float | None:
    raw = response.headers.get("Retry-After")
    if not raw:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


def raise_for_api_error(response: httpx.Response) -> None:
    """Translate a non-2xx response into the matching RemoteAPIError subclass."""
    status = response.status_code
    if status < 400:
        return
    code = _error_code(response)
    path = response.request.url.path if response.request else "?"
    if status == 401:
        raise AuthenticationError(
            f"Monzo rejected the access token for {path}",
            status_code=status,
            code=code,
        )
    if status == 429:
        raise RateLimitError(
            f"Monzo rate limit hit for {path}",
            status_code=status,
            code=code,
            retry_after=_retry_after(response),
        )
    if status == 400 and code == INVALID_TIME_RANGE_CODE:
        raise InvalidTimeRangeError(
            f"Monzo rejected the requested time range for {path}",
            status_code=status,
            code=code,
        )
    raise RemoteAPIError(
        f"Monzo request {path} failed with HTTP {status}",
        status_code=status,
        code=code,
    )


class MonzoClient:
    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self.base_url = (base_url or os.getenv("MONZO_API_URL") or DEFAULT_BASE_URL).rstrip("/")
        self.token = token or os.getenv("MONZO_TOKEN")
        self.timeout = timeout
        self.headers = self._build_headers()
        self._client = client
        self._client_lock = asyncio.Lock()

    def _build_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
        }

    def refresh(self, base_url: str | None = None, token: str | None = None) -> None:
        """Pick up a new token (after re-authentication) or base URL."""
        base_value = base_url if base_url is not None else os.getenv("MONZO_API_URL")
        token_value = token if token is not None else os.getenv("MONZO_TOKEN")
        self.base_url = (base_value or DEFAULT_BASE_URL).rstrip("/")
        self.token = token_value or None
        self.headers = self._build_headers()

    async def aclose(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _get_client(self) -> httpx.AsyncClient:
        client = self._client
        if client is not None and not client.is_closed:
            return client

        async with self._client_lock:
            # Another task may have created it while we waited
            client = self._client
            if client is None or client.is_closed:
                client = httpx.AsyncClient(timeout=self.timeout)
                self._client = client
            return client

    async def _get(self, path: str, params: list[tuple[str, str]]) -> dict[str, Any]:
        if not self.token:
            raise AuthenticationError("Monzo access token missing", status_code=401)

        client = await self._get_client()
        try:
            response = await client.get(
                f"{self.base_url}{path}",
                headers=self.headers,
                params=params,
            )
        except httpx.TransportError as exc:
            raise TransportFailure(f"Monzo request {path} failed: {exc}") from exc

        raise_for_api_error(response)
        try:
            data = response.json()
        except ValueError as exc:
            raise RemoteAPIError(
                f"Monzo returned a non-JSON body for {path}",
                status_code=response.status_code,
            ) from exc
        return data if isinstance(data, dict) else {}

    async def list_transactions(
        self,
        account_id: str,
        *,
        since: datetime | None = None,
        before: datetime | None = None,
        starting_after: str | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        params: list[tuple[str, str]] = [
            ("account_id", account_id),
            ("expand[]", "merchant"),
            ("limit", str(limit)),
        ]
        if since is not None:
            params.append(("since", format_api_timestamp(since)))
        if before is not None:
            params.append(("before", format_api_timestamp(before)))
        if starting_after:
            params.append(("starting_after", starting_after))

        data = await self._get("/transactions", params)
        transactions = data.get("transactions") or []
        logger.debug(
            "[SYNC] Fetched %s transactions for %s (since=%s before=%s starting_after=%s)",
            len(transactions),
            account_id,
            since,
            before,
            starting_after,
        )
        return transactions

    async def list_accounts(self) -> list[dict[str, Any]]:
        data = await self._get("/accounts", [])
        return data.get("accounts") or []
