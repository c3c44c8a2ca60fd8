# ============================================================================
# RATE-LIMITED METRICS API CLIENT
# ============================================================================
# STATUS: Infrastructure - HTTP client for the quota-constrained monitoring API
# PURPOSE: Bounded concurrency, shared quota tracking and bounded retries for
#          every call to the monitoring platform's REST API
# EXPORTS: RateLimiter, RateLimitSnapshot, LMv1Auth, RateLimitedApiClient,
#          MetricsApiClient, MetricsClientFactory
# DEPENDENCIES: httpx, config
# ============================================================================
"""
Rate-Limited Metrics API Client.

RateLimiter owns the only mutable state shared between concurrent callers:
the remaining quota and the time it resets, guarded by one lock, plus a
bounded semaphore capping calls in flight. One limiter is created per
process (function_app.py) and handed to every client.

Request flow:
    1. Acquire a semaphore slot
    2. If remaining quota is below the safety buffer and the window has not
       reset, sleep until the reset (the sleep happens outside the lock)
    3. Send; update quota from X-Rate-Limit-Remaining / X-Rate-Limit-Window
    4. 429: wait Retry-After if supplied, else the backoff schedule, and
       retry at most max_retries times, then raise ThrottledError
    5. Transport errors: same policy with a separate counter, then
       TransientApiError
    6. Other non-2xx: MetricsApiError (not retried)

Usage:
    limiter = RateLimiter.from_config(config.metrics_api)
    with MetricsClientFactory(limiter).create() as client:
        devices = client.list_group_devices(42)
"""

import base64
import hashlib
import hmac
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional

import httpx

from config import MetricsApiConfig, get_config
from config.defaults import MetricsApiDefaults, KeyVaultDefaults
from exceptions import ConfigurationError, MetricsApiError, ThrottledError, TransientApiError
from util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.CLIENT, "RateLimitedApiClient")

REMAINING_HEADER = "X-Rate-Limit-Remaining"
WINDOW_HEADER = "X-Rate-Limit-Window"
RETRY_AFTER_HEADER = "Retry-After"


@dataclass(frozen=True)
class RateLimitSnapshot:
    """Consistent view of the limiter, read under its lock."""
    remaining_quota: int
    reset_in_seconds: float
    in_flight: int
    peak_in_flight: int
    max_concurrent: int


class RateLimiter:
    """
    Process-wide quota tracker and concurrency cap.

    sleep and clock are injectable so tests can drive time.
    """

    def __init__(
        self,
        max_concurrent: int = MetricsApiDefaults.MAX_CONCURRENT_REQUESTS,
        safety_buffer: int = MetricsApiDefaults.SAFETY_BUFFER,
        initial_quota: int = MetricsApiDefaults.INITIAL_QUOTA,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.safety_buffer = safety_buffer
        self._sleep = sleep
        self._clock = clock
        self._lock = threading.Lock()
        self._semaphore = threading.BoundedSemaphore(max_concurrent)
        self._remaining_quota = initial_quota
        self._reset_at = clock()
        self._in_flight = 0
        self._peak_in_flight = 0

    @classmethod
    def from_config(cls, config: MetricsApiConfig, **kwargs) -> "RateLimiter":
        return cls(
            max_concurrent=config.max_concurrent_requests,
            safety_buffer=config.safety_buffer,
            **kwargs
        )

    @contextmanager
    def slot(self) -> Iterator[None]:
        """Hold one of the max_concurrent slots for the duration of a call."""
        self._semaphore.acquire()
        with self._lock:
            self._in_flight += 1
            self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
        try:
            yield
        finally:
            with self._lock:
                self._in_flight -= 1
            self._semaphore.release()

    def wait_for_quota(self) -> float:
        """
        Block while quota is below the safety buffer and the window is open.

        A caller that passes reserves one request of quota; the next
        response header replaces the local count with the server's.

        Returns the total seconds slept.
        """
        waited = 0.0
        while True:
            with self._lock:
                now = self._clock()
                if self._remaining_quota >= self.safety_buffer or now >= self._reset_at:
                    self._remaining_quota = max(self._remaining_quota - 1, 0)
                    return waited
                wait_seconds = self._reset_at - now
                remaining = self._remaining_quota
            logger.warning(
                f"[RATE_LIMIT] Quota low ({remaining} left, buffer {self.safety_buffer}); "
                f"waiting {wait_seconds:.1f}s for reset"
            )
            self._sleep(wait_seconds)
            waited += wait_seconds

    def update_from_headers(self, headers: httpx.Headers) -> None:
        """Record quota headers from a response; malformed values are ignored."""
        remaining = _parse_number(headers.get(REMAINING_HEADER))
        window = _parse_number(headers.get(WINDOW_HEADER))
        if remaining is None and window is None:
            return
        with self._lock:
            if remaining is not None:
                self._remaining_quota = int(remaining)
            if window is not None:
                self._reset_at = self._clock() + window

    def set_quota(self, remaining: int, reset_in_seconds: float) -> None:
        with self._lock:
            self._remaining_quota = remaining
            self._reset_at = self._clock() + reset_in_seconds

    def snapshot(self) -> RateLimitSnapshot:
        with self._lock:
            return RateLimitSnapshot(
                remaining_quota=self._remaining_quota,
                reset_in_seconds=max(0.0, self._reset_at - self._clock()),
                in_flight=self._in_flight,
                peak_in_flight=self._peak_in_flight,
                max_concurrent=self.max_concurrent,
            )


def _parse_number(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value.strip())
    except ValueError:
        return None
    return number if number >= 0 else None


class LMv1Auth(httpx.Auth):
    """
    LMv1 request signing.

    signature = base64(hex(HMAC-SHA256(access_key, verb + epoch + body + resource_path)))
    The resource path excludes the base path prefix and the query string.
    """

    def __init__(self, access_id: str, access_key: str, base_path: str = "/santaba/rest",
                 clock: Callable[[], float] = time.time):
        self.access_id = access_id
        self._access_key = access_key.encode("utf-8")
        self.base_path = base_path.rstrip("/")
        self._clock = clock

    def sign(self, verb: str, epoch: str, body: str, resource_path: str) -> str:
        message = f"{verb}{epoch}{body}{resource_path}".encode("utf-8")
        digest_hex = hmac.new(self._access_key, message, hashlib.sha256).hexdigest()
        return base64.b64encode(digest_hex.encode("utf-8")).decode("ascii")

    def auth_flow(self, request: httpx.Request):
        epoch = str(int(self._clock() * 1000))
        path = request.url.path
        resource_path = path[len(self.base_path):] if path.startswith(self.base_path) else path
        body = request.content.decode("utf-8") if request.content else ""
        signature = self.sign(request.method, epoch, body, resource_path)
        request.headers["Authorization"] = f"LMv1 {self.access_id}:{signature}:{epoch}"
        request.headers["X-Version"] = MetricsApiDefaults.API_VERSION
        yield request


class RateLimitedApiClient:
    """
    httpx client wrapper enforcing the shared RateLimiter and retry policy.

    Holds no business knowledge; MetricsApiClient adds the endpoints.
    """

    def __init__(
        self,
        http_client: httpx.Client,
        limiter: RateLimiter,
        backoff_schedule: tuple = MetricsApiDefaults.BACKOFF_SCHEDULE_SECONDS,
        max_retries: int = MetricsApiDefaults.MAX_RETRIES,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not backoff_schedule:
            raise ValueError("backoff_schedule must not be empty")
        self._http = http_client
        self.limiter = limiter
        self.backoff_schedule = tuple(backoff_schedule)
        self.max_retries = max_retries
        self._sleep = sleep

    def _backoff(self, retry_index: int) -> float:
        return self.backoff_schedule[min(retry_index, len(self.backoff_schedule) - 1)]

    def request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                json_body: Optional[Any] = None) -> httpx.Response:
        """
        Send one logical request.

        Raises:
            ThrottledError: 429 after max_retries retries
            TransientApiError: Transport failures after max_retries retries
            MetricsApiError: Any other non-2xx status
        """
        throttle_retries = 0
        transient_retries = 0

        with self.limiter.slot():
            while True:
                self.limiter.wait_for_quota()
                try:
                    response = self._http.request(method, path, params=params, json=json_body)
                except httpx.TransportError as e:
                    if transient_retries >= self.max_retries:
                        logger.error(f"[RATE_LIMIT] Transport failure on {path}, retries exhausted: {e}")
                        raise TransientApiError(path, transient_retries + 1, e) from e
                    delay = self._backoff(transient_retries)
                    transient_retries += 1
                    logger.warning(
                        f"[RATE_LIMIT] {type(e).__name__} on {path}, retry "
                        f"{transient_retries}/{self.max_retries} in {delay:.1f}s"
                    )
                    self._sleep(delay)
                    continue

                self.limiter.update_from_headers(response.headers)

                if response.status_code == 429:
                    retry_after = _parse_number(response.headers.get(RETRY_AFTER_HEADER))
                    if throttle_retries >= self.max_retries:
                        logger.error(f"[RATE_LIMIT] 429 on {path}, retries exhausted")
                        raise ThrottledError(path, throttle_retries + 1, retry_after)
                    delay = retry_after if retry_after is not None else self._backoff(throttle_retries)
                    throttle_retries += 1
                    logger.warning(
                        f"[RATE_LIMIT] 429 on {path}, retry {throttle_retries}/{self.max_retries} "
                        f"in {delay:.1f}s"
                    )
                    self._sleep(delay)
                    continue

                if response.is_error:
                    raise MetricsApiError(path, response.status_code, response.text)

                return response

    def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", path, params=params).json()

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "RateLimitedApiClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class MetricsApiClient(RateLimitedApiClient):
    """
    Monitoring platform endpoints used by audit modules.
    """

    DEVICE_FIELDS = "id,displayName,hostStatus,alertStatus"

    def list_subgroup_ids(self, group_id: int) -> List[int]:
        """group_id plus every nested subgroup id, depth first."""
        collected = [group_id]
        pending = [group_id]
        while pending:
            parent = pending.pop()
            payload = self.get_json(
                "/device/groups",
                params={"size": 1000, "filter": f"parentId:{parent}", "fields": "id,name"}
            )
            for group in payload.get("items") or []:
                collected.append(group["id"])
                pending.append(group["id"])
        return collected

    def list_group_devices(self, group_id: int, include_subgroups: bool = True) -> List[Dict[str, Any]]:
        group_ids = self.list_subgroup_ids(group_id) if include_subgroups else [group_id]
        devices: List[Dict[str, Any]] = []
        page_size = MetricsApiDefaults.PAGE_SIZE
        for gid in group_ids:
            offset = 0
            while True:
                payload = self.get_json(
                    f"/device/groups/{gid}/devices",
                    params={"size": page_size, "offset": offset, "fields": self.DEVICE_FIELDS}
                )
                items = payload.get("items") or []
                devices.extend(items)
                offset += len(items)
                if len(items) < page_size or offset >= payload.get("total", 0):
                    break
        logger.info(f"[RATE_LIMIT] Listed {len(devices)} devices across {len(group_ids)} groups")
        return devices


class MetricsClientFactory:
    """
    Builds MetricsApiClient instances that share one RateLimiter.

    Credentials: per-customer vault secrets LM-{customer_id}-Company /
    -AccessId / -AccessKey when present, else the global configuration
    with the access key read from METRICS_API_ACCESS_KEY_SECRET.
    """

    def __init__(self, limiter: RateLimiter, config: Optional[MetricsApiConfig] = None,
                 vault=None, transport: Optional[httpx.BaseTransport] = None):
        self.limiter = limiter
        self.config = config or get_config().metrics_api
        self._vault = vault
        self._transport = transport

    def _customer_secret(self, customer_id: str, field: str) -> Optional[str]:
        from .vault import VaultAccessError

        if self._vault is None:
            return None
        name = KeyVaultDefaults.CUSTOMER_METRICS_SECRET_TEMPLATE.format(customer_id=customer_id, field=field)
        try:
            return self._vault.get_secret(name)
        except VaultAccessError:
            return None

    def _resolve_credentials(self, customer_id: Optional[str]) -> tuple:
        if customer_id:
            company = self._customer_secret(customer_id, "Company")
            access_id = self._customer_secret(customer_id, "AccessId")
            access_key = self._customer_secret(customer_id, "AccessKey")
            if company and access_id and access_key:
                return company, access_id, access_key

        if not self.config.company or not self.config.access_id:
            raise ConfigurationError("METRICS_API_COMPANY and METRICS_API_ACCESS_ID must be configured")
        if self._vault is None:
            raise ConfigurationError("Key Vault is required to read the metrics API access key")
        access_key = self._vault.get_secret(self.config.access_key_secret_name)
        return self.config.company, self.config.access_id, access_key

    def create(self, customer_id: Optional[str] = None) -> MetricsApiClient:
        company, access_id, access_key = self._resolve_credentials(customer_id)
        base_url = MetricsApiDefaults.BASE_URL_TEMPLATE.format(company=company)
        http_client = httpx.Client(
            base_url=base_url,
            auth=LMv1Auth(access_id, access_key),
            timeout=self.config.request_timeout_seconds,
            transport=self._transport,
        )
        return MetricsApiClient(
            http_client,
            self.limiter,
            backoff_schedule=self.config.backoff_schedule_seconds,
            max_retries=self.config.max_retries,
        )


__all__ = [
    'RateLimiter',
    'RateLimitSnapshot',
    'LMv1Auth',
    'RateLimitedApiClient',
    'MetricsApiClient',
    'MetricsClientFactory',
]
