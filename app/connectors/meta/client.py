"""ADSYNC — Meta API Client.

Handles authentication errors, fixed-schedule retries on rate limits,
cursor pagination and Graph batch requests.
"""

import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx

from app.config import settings
from app.core.logging import get_logger

logger = get_logger("meta.client")

MAX_ATTEMPTS = 3
TOKEN_EXPIRED_CODES = {102, 190}
RATE_LIMIT_CODES = {4, 17, 32, 613, 80004}

Sleep = Callable[[float], Awaitable[Any]]


class MetaAPIError(Exception):
    """Raised when Meta API returns an error."""

    def __init__(self, message: str, status_code: int = 0, error_code: int = 0):
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)


class TokenExpiredError(MetaAPIError):
    """The access token is invalid or expired; the user must reconnect."""


class RateLimitError(MetaAPIError):
    """Meta kept throttling after every retry was spent."""


def normalize_account_id(ad_account_id: str) -> str:
    """Return the account id with its `act_` prefix."""
    ad_account_id = (ad_account_id or "").strip()
    if ad_account_id and not ad_account_id.startswith("act_"):
        return f"act_{ad_account_id}"
    return ad_account_id


def _decode(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return {}


class MetaClient:
    """Async HTTP client for Meta Marketing API."""

    def __init__(
        self,
        access_token: str | None = None,
        ad_account_id: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
        retry_delays: Sequence[float] | None = None,
        page_delay: float | None = None,
    ):
        self.access_token = access_token or settings.meta_access_token
        self.ad_account_id = normalize_account_id(
            ad_account_id or settings.meta_ad_account_id
        )
        self.base_url = settings.meta_graph_url
        self.retry_delays = list(
            settings.rate_limit_delays if retry_delays is None else retry_delays
        )
        self.page_delay = (
            settings.page_delay_seconds if page_delay is None else page_delay
        )
        self._sleep = sleep
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=settings.meta_timeout_seconds, transport=self._transport
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def _retry_delay(self, attempt: int) -> float:
        if not self.retry_delays:
            return 0.0
        return self.retry_delays[min(attempt - 1, len(self.retry_delays) - 1)]

    # ── Core Request Method ──

    async def _request(
        self,
        method: str,
        url: str,
        params: Dict[str, Any] | None = None,
        data: Dict[str, Any] | None = None,
    ) -> Any:
        """Make a request with fixed-backoff retry on throttling.

        Token expiry is raised immediately and never retried.
        """
        params = dict(params or {})
        if data is None and "access_token=" not in url:
            params["access_token"] = self.access_token

        client = await self._get_client()

        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                resp = await client.request(
                    method, url, params=params or None, data=data
                )
            except httpx.RequestError as e:
                if attempt < MAX_ATTEMPTS:
                    wait = self._retry_delay(attempt)
                    logger.warning(
                        f"Request error: {e}. Retrying in {wait}s",
                        extra={"attempt": attempt},
                    )
                    await self._sleep(wait)
                    continue
                raise MetaAPIError(
                    f"Connection failed after {MAX_ATTEMPTS} attempts: {e}"
                ) from e

            body = _decode(resp)
            error = body.get("error") if isinstance(body, dict) else None
            error = error if isinstance(error, dict) else {}
            error_code = int(error.get("code") or 0)
            error_msg = error.get("message") or f"HTTP {resp.status_code}"

            if resp.status_code == 401 or error_code in TOKEN_EXPIRED_CODES:
                logger.error(
                    f"Access token rejected: {error_msg}",
                    extra={"status_code": resp.status_code},
                )
                raise TokenExpiredError(error_msg, resp.status_code, error_code)

            if resp.status_code == 429 or error_code in RATE_LIMIT_CODES:
                if attempt < MAX_ATTEMPTS:
                    wait = self._retry_delay(attempt)
                    logger.warning(
                        f"Rate limited (code {error_code}). Retrying in {wait}s "
                        f"(attempt {attempt}/{MAX_ATTEMPTS})",
                        extra={"attempt": attempt},
                    )
                    await self._sleep(wait)
                    continue
                raise RateLimitError(error_msg, resp.status_code, error_code)

            if resp.status_code >= 500:
                if attempt < MAX_ATTEMPTS:
                    wait = self._retry_delay(attempt)
                    logger.warning(
                        f"Server error {resp.status_code}. Retrying in {wait}s",
                        extra={"attempt": attempt, "status_code": resp.status_code},
                    )
                    await self._sleep(wait)
                    continue
                raise MetaAPIError(error_msg, resp.status_code, error_code)

            if error or resp.status_code >= 400:
                raise MetaAPIError(error_msg, resp.status_code, error_code)

            return body

        raise MetaAPIError("Max retries exhausted")

    # ── Pagination ──

    async def _paginated_get(
        self,
        url: str,
        params: Dict[str, Any] | None = None,
        max_pages: int | None = None,
    ) -> List[Dict[str, Any]]:
        """Fetch all pages of a cursor-paginated endpoint."""
        max_pages = max_pages or settings.max_pages
        all_data: List[Dict[str, Any]] = []
        current_url = url

        for page in range(max_pages):
            result = await self._request(
                "GET", current_url, params if page == 0 else None
            )
            data = result.get("data", [])
            all_data.extend(data)

            next_url = result.get("paging", {}).get("next")
            if not next_url or not data:
                break
            current_url = next_url
            await self._sleep(self.page_delay)

        logger.info(
            f"Fetched {len(all_data)} records from {url}", extra={"endpoint": url}
        )
        return all_data

    # ── Batch Requests ──

    async def batch_request(
        self, relative_urls: Sequence[str]
    ) -> List[Optional[Dict[str, Any]]]:
        """Run GET lookups through the Graph batch endpoint.

        Results line up with `relative_urls`; failed items come back as None.
        """
        results: List[Optional[Dict[str, Any]]] = []
        size = settings.batch_request_size

        for start in range(0, len(relative_urls), size):
            chunk = relative_urls[start : start + size]
            payload = [{"method": "GET", "relative_url": u} for u in chunk]
            body = await self._request(
                "POST",
                f"{self.base_url}/",
                data={"access_token": self.access_token, "batch": json.dumps(payload)},
            )
            items = body if isinstance(body, list) else []
            for i, rel in enumerate(chunk):
                item = items[i] if i < len(items) else None
                if not item or item.get("code") != 200:
                    logger.warning(
                        f"Batch item failed: {rel}",
                        extra={"status_code": (item or {}).get("code")},
                    )
                    results.append(None)
                    continue
                try:
                    results.append(json.loads(item.get("body") or "{}"))
                except ValueError:
                    logger.warning(f"Batch item returned invalid JSON: {rel}")
                    results.append(None)

        return results

    # ── Token Validation ──

    async def validate_token(self) -> Dict[str, Any]:
        """Check if the access token is valid and return metadata."""
        url = f"{self.base_url}/debug_token"
        params = {"input_token": self.access_token}
        result = await self._request("GET", url, params)
        token_data = result.get("data", {})
        return {
            "valid": token_data.get("is_valid", False),
            "expires_at": token_data.get("expires_at", 0),
            "scopes": token_data.get("scopes", []),
            "app_id": token_data.get("app_id", ""),
        }

    # ── Account Info ──

    async def get_account_info(self) -> Dict[str, Any]:
        """Fetch ad account details."""
        url = f"{self.base_url}/{self.ad_account_id}"
        params = {
            "fields": "name,account_id,account_status,currency,timezone_name,balance"
        }
        return await self._request("GET", url, params)
