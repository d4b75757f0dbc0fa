"""
POS API Client

Async client for the remote point-of-sale REST API with:
- Bearer authentication and a pinned API version header
- Throttling between consecutive requests (base delay + jitter)
- Bounded exponential backoff on HTTP 429 and on transport failures,
  each with its own retry budget
- Typed errors for callers that need to isolate failures
"""

import asyncio
import random
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
import structlog
from prometheus_client import Counter

from src.config import get_settings
from src.config.settings import PosApiSettings

logger = structlog.get_logger(__name__)


API_RETRIES = Counter(
    "pos_api_retries_total",
    "Retried POS API requests",
    ["reason"],
)

API_REQUESTS = Counter(
    "pos_api_requests_total",
    "POS API requests by final outcome",
    ["method", "outcome"],
)


# =============================================================================
# ERRORS
# =============================================================================

class PosApiError(Exception):
    """Remote API answered with a non-success status or an unreadable body"""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RateLimitExceededError(PosApiError):
    """HTTP 429 persisted past the retry budget"""


class PosTransportError(Exception):
    """Network-level failure persisted past the retry budget"""


# =============================================================================
# CLIENT
# =============================================================================

class PosApiClient:
    """
    Rate-limit aware client for the POS REST API.

    All requests are serialized through one instance by its callers; the
    throttle assumes a single logical consumer of the shared rate limit.

    Example:
        async with PosApiClient() as client:
            locations = await client.list_locations()
    """

    def __init__(
        self,
        settings: Optional[PosApiSettings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings or get_settings().pos_api
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._requests_sent = 0

        headers = {
            "Content-Type": "application/json",
            self.settings.version_header: self.settings.api_version,
        }
        if self.settings.access_token is not None:
            headers["Authorization"] = f"Bearer {self.settings.access_token.get_secret_value()}"

        self._http = httpx.AsyncClient(
            base_url=self.settings.base_url,
            headers=headers,
            timeout=self.settings.timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "PosApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # -------------------------------------------------------------------------
    # Delays
    # -------------------------------------------------------------------------

    def _backoff_delay(self, attempt: int) -> float:
        """base * 2**attempt plus independent jitter"""
        base = self.settings.backoff_base_seconds * (2 ** attempt)
        return base + self._rng.uniform(0, self.settings.backoff_jitter_seconds)

    async def _throttle(self) -> None:
        """Sleep between consecutive requests to stay under the rate limit"""
        if self._requests_sent == 0:
            return
        delay = self.settings.throttle_base_seconds + self._rng.uniform(
            0, self.settings.throttle_jitter_seconds
        )
        await self._sleep(delay)

    # -------------------------------------------------------------------------
    # Core request loop
    # -------------------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Send one logical request, retrying transient failures.

        Raises:
            RateLimitExceededError: 429 after rate_limit_max_retries retries
            PosTransportError: transport failure after transport_max_retries retries
            PosApiError: any other non-success response
        """
        rate_limit_attempts = 0
        transport_attempts = 0

        while True:
            await self._throttle()
            self._requests_sent += 1

            try:
                response = await self._http.request(method, path, params=params, json=json)
            except httpx.TransportError as e:
                if transport_attempts >= self.settings.transport_max_retries:
                    API_REQUESTS.labels(method=method, outcome="transport_error").inc()
                    raise PosTransportError(
                        f"Network error after {transport_attempts} retries: {e}"
                    ) from e
                delay = self._backoff_delay(transport_attempts)
                transport_attempts += 1
                API_RETRIES.labels(reason="transport").inc()
                logger.warning(
                    "POS API transport error, backing off",
                    method=method,
                    path=path,
                    error_type=type(e).__name__,
                    attempt=transport_attempts,
                    max_retries=self.settings.transport_max_retries,
                    delay_seconds=round(delay, 3),
                )
                await self._sleep(delay)
                continue

            if response.status_code == 429:
                if rate_limit_attempts >= self.settings.rate_limit_max_retries:
                    API_REQUESTS.labels(method=method, outcome="rate_limited").inc()
                    raise RateLimitExceededError(
                        f"Rate limit exceeded after {rate_limit_attempts} retries",
                        status_code=429,
                        body=response.text,
                    )
                delay = self._backoff_delay(rate_limit_attempts)
                rate_limit_attempts += 1
                API_RETRIES.labels(reason="rate_limit").inc()
                logger.warning(
                    "POS API rate limited, backing off",
                    method=method,
                    path=path,
                    attempt=rate_limit_attempts,
                    max_retries=self.settings.rate_limit_max_retries,
                    delay_seconds=round(delay, 3),
                )
                await self._sleep(delay)
                continue

            if response.is_error:
                API_REQUESTS.labels(method=method, outcome="error").inc()
                raise PosApiError(
                    f"POS API error {response.status_code} for {method} {path}",
                    status_code=response.status_code,
                    body=response.text,
                )

            API_REQUESTS.labels(method=method, outcome="success").inc()
            return self._decode(response, method, path)

    @staticmethod
    def _decode(response: httpx.Response, method: str, path: str) -> Dict[str, Any]:
        try:
            return response.json()
        except ValueError as e:
            raise PosApiError(
                f"Non-JSON response for {method} {path}",
                status_code=response.status_code,
                body=response.text[:100],
            ) from e

    # -------------------------------------------------------------------------
    # Endpoints
    # -------------------------------------------------------------------------

    async def list_locations(self) -> List[Dict[str, Any]]:
        """GET /v2/locations"""
        data = await self.request("GET", "/v2/locations")
        return data.get("locations") or []

    async def list_catalog_page(self, cursor: Optional[str] = None) -> Dict[str, Any]:
        """One page of GET /v2/catalog/list, returns {objects[], cursor?}"""
        params = {"cursor": cursor} if cursor else None
        return await self.request("GET", "/v2/catalog/list", params=params)

    async def search_orders(
        self,
        location_id: str,
        start_at: datetime,
        end_at: datetime,
        states: List[str],
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        """One page of POST /v2/orders/search, returns {orders[], cursor?}"""
        body: Dict[str, Any] = {
            "location_ids": [location_id],
            "query": {
                "filter": {
                    "date_time_filter": {
                        "created_at": {
                            "start_at": start_at.isoformat(),
                            "end_at": end_at.isoformat(),
                        },
                    },
                    "state_filter": {"states": list(states)},
                },
                "sort": {"sort_field": "CREATED_AT", "sort_order": "DESC"},
            },
            "limit": limit or self.settings.page_size,
        }
        if cursor:
            body["cursor"] = cursor
        return await self.request("POST", "/v2/orders/search", json=body)

    async def retrieve_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        """
        GET /v2/orders/{order_id}

        Returns None when the order does not exist.
        """
        try:
            data = await self.request("GET", f"/v2/orders/{order_id}")
        except PosApiError as e:
            if e.status_code == 404:
                return None
            raise
        return data.get("order")
