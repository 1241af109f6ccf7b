"""
Async client for the ERP REST API.

All remote mechanics live here so the sync service only sees pages of raw
dicts:

  - offset/limit pagination (the ERP caps limit at 100)
  - a shared concurrency permit (2 requests in flight, across every call)
  - exponential-backoff retry for 502/503/504 and timeouts
  - a coarse employee-name cache used to denormalize salesperson names

Configuration is passed in explicitly; nothing here reads env vars.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import httpx

from invoice_mirror.erp.errors import (
    FatalRemoteError,
    RemoteFetchFailure,
    TransientRemoteError,
)
from invoice_mirror.erp.normalizer import UNKNOWN_EMPLOYEE, employee_full_name

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
RETRYABLE_STATUS_CODES = frozenset({502, 503, 504})


@dataclass
class ErpClientConfig:
    base_url: str
    api_email: str = ""
    api_key: str = ""
    request_timeout_seconds: float = 60.0
    max_concurrent_requests: int = 2
    max_retries: int = 1
    retry_base_delay_seconds: float = 2.0
    employee_cache_ttl: timedelta = timedelta(minutes=30)

    @classmethod
    def from_settings(cls, settings) -> "ErpClientConfig":
        return cls(
            base_url=settings.erp_base_url,
            api_email=settings.erp_api_email,
            api_key=settings.erp_api_key,
            request_timeout_seconds=settings.erp_request_timeout_seconds,
            max_concurrent_requests=settings.erp_max_concurrent_requests,
            max_retries=settings.erp_max_retries,
            retry_base_delay_seconds=settings.erp_retry_base_delay_seconds,
            employee_cache_ttl=timedelta(minutes=settings.employee_cache_ttl_minutes),
        )

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retrying after a failed attempt (0-based)."""
        return self.retry_base_delay_seconds * (2 ** attempt)


class EmployeeNameCache:
    """
    employee_id → full name, expired all at once.

    There is a single "last updated" timestamp for the whole cache rather
    than one per entry: once it is older than the TTL every lookup misses
    until something writes to the cache again.
    """

    def __init__(self, ttl: timedelta, clock: Callable[[], datetime] = datetime.utcnow):
        self._ttl = ttl
        self._clock = clock
        self._names: Dict[int, str] = {}
        self._last_updated: Optional[datetime] = None

    def get(self, employee_id: int) -> Optional[str]:
        if self._last_updated is None or employee_id not in self._names:
            return None
        if self._clock() - self._last_updated >= self._ttl:
            return None
        return self._names[employee_id]

    def put(self, employee_id: int, name: str) -> None:
        self._names[employee_id] = name
        self._last_updated = self._clock()

    def put_many(self, names: Dict[int, str]) -> None:
        self._names.update(names)
        self._last_updated = self._clock()

    def __len__(self) -> int:
        return len(self._names)


class ErpClient:
    """
    Thin async wrapper over the ERP's invoice and employee endpoints.

    Use as an async context manager, or call close() when done.
    """

    def __init__(
        self,
        config: ErpClientConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            config: Connection, retry and throttling settings.
            transport: Optional httpx transport (httpx.MockTransport in tests).
        """
        self.config = config
        self._permit = asyncio.Semaphore(config.max_concurrent_requests)
        self._employee_cache = EmployeeNameCache(config.employee_cache_ttl)
        self._http = httpx.AsyncClient(
            base_url=config.base_url,
            auth=httpx.BasicAuth(config.api_email, config.api_key),
            timeout=httpx.Timeout(config.request_timeout_seconds),
            headers={"Accept": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> "ErpClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._http.aclose()

    @property
    def employee_cache(self) -> EmployeeNameCache:
        return self._employee_cache

    # ── Invoices ──────────────────────────────────────────────────────────────

    async def fetch_page(self, page: int, page_size: int = MAX_PAGE_SIZE) -> List[Dict[str, Any]]:
        """
        Fetch one page of invoices (page numbers start at 1).

        Raises:
            RemoteFetchFailure: transient failures outlasted the retry budget.
            FatalRemoteError: non-retryable HTTP error or non-array body.
        """
        return await self._fetch_list("invoices", page, page_size)

    # ── Employees ─────────────────────────────────────────────────────────────

    async def fetch_employees_page(self, page: int, page_size: int = MAX_PAGE_SIZE) -> List[Dict[str, Any]]:
        """Fetch one page of employees. Same error contract as fetch_page()."""
        return await self._fetch_list("employees", page, page_size)

    async def resolve_employee_name(self, employee_id: int) -> str:
        """
        Return "First Last" for an employee, or "Unknown".

        Never raises: a failed lookup is cached as "Unknown" so the same
        broken reference is not fetched again for every invoice.
        """
        cached = self._employee_cache.get(employee_id)
        if cached is not None:
            return cached

        name = UNKNOWN_EMPLOYEE
        try:
            data = await self._get_json(f"employees/{employee_id}", max_retries=0)
            if isinstance(data, dict):
                name = employee_full_name(data)
        except Exception as exc:
            logger.warning("Employee %s lookup failed: %s", employee_id, exc)

        self._employee_cache.put(employee_id, name)
        return name

    async def preload_employees(self) -> int:
        """
        Warm the name cache with one page of employees.

        Best effort: failures are logged and lazily-resolved lookups remain
        the fallback. Returns the number of names cached.
        """
        try:
            data = await self._get_json(
                "employees", params={"limit": MAX_PAGE_SIZE}, max_retries=0
            )
        except Exception as exc:
            logger.warning("Employee preload failed: %s", exc)
            return 0

        if not isinstance(data, list):
            logger.warning("Employee preload returned %s, expected a list", type(data).__name__)
            return 0

        names = {}
        for employee in data:
            if not isinstance(employee, dict):
                continue
            employee_id = employee.get("id")
            if isinstance(employee_id, int) and not isinstance(employee_id, bool):
                names[employee_id] = employee_full_name(employee)
        if names:
            self._employee_cache.put_many(names)
        logger.info("Preloaded %d employee names", len(names))
        return len(names)

    # ── Internal helpers ──────────────────────────────────────────────────────

    async def _fetch_list(self, resource: str, page: int, page_size: int) -> List[Dict[str, Any]]:
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")
        limit = max(1, min(page_size, MAX_PAGE_SIZE))
        offset = (page - 1) * limit
        data = await self._get_json(resource, params={"offset": offset, "limit": limit})
        if not isinstance(data, list):
            raise FatalRemoteError(
                f"Unexpected {resource} response format on page {page}: "
                f"expected a list, got {type(data).__name__}"
            )
        return data

    async def _get_json(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        max_retries: Optional[int] = None,
    ) -> Any:
        """
        GET path and decode JSON, holding a concurrency permit per attempt.

        The permit is released during backoff sleeps so other requests
        (employee lookups in particular) are not stalled by a retry.
        """
        retries = self.config.max_retries if max_retries is None else max_retries
        last_error: Optional[TransientRemoteError] = None

        for attempt in range(retries + 1):
            logger.debug("ERP GET %s %s (attempt %d)", path, params or {}, attempt + 1)
            async with self._permit:
                try:
                    response = await self._http.get(path, params=params)
                except httpx.TimeoutException as exc:
                    response = None
                    last_error = TransientRemoteError(f"Request to {path} timed out: {exc}")
                except httpx.TransportError as exc:
                    response = None
                    last_error = TransientRemoteError(f"Request to {path} failed: {exc}")

            if response is not None:
                if response.status_code in RETRYABLE_STATUS_CODES:
                    last_error = TransientRemoteError(
                        f"ERP returned {response.status_code} for {path}",
                        status_code=response.status_code,
                    )
                elif response.is_error:
                    raise FatalRemoteError(
                        f"ERP returned {response.status_code} for {path}",
                        status_code=response.status_code,
                    )
                else:
                    try:
                        return response.json()
                    except ValueError as exc:
                        raise FatalRemoteError(f"Invalid JSON from {path}: {exc}") from exc

            if attempt < retries:
                delay = self.config.backoff_delay(attempt)
                logger.warning("%s, retrying in %.1fs", last_error, delay)
                await asyncio.sleep(delay)

        raise RemoteFetchFailure(
            f"Failed to fetch {path} after {retries + 1} attempts: {last_error}",
            status_code=last_error.status_code if last_error else None,
        ) from last_error
