"""
Rate-limited metrics API client tests.

All HTTP traffic goes through httpx.MockTransport; sleeps and clocks are
fakes so retry schedules are asserted without waiting.
"""

import base64
import hashlib
import hmac
import threading
import time

import httpx
import pytest

from config import MetricsApiConfig
from config.defaults import MetricsApiDefaults
from exceptions import ConfigurationError, MetricsApiError, ThrottledError, TransientApiError
from infrastructure.metrics_api_client import (
    LMv1Auth,
    MetricsApiClient,
    MetricsClientFactory,
    RateLimitedApiClient,
    RateLimiter,
)
from infrastructure.vault import VaultAccessError

BASE_URL = "https://acme.logicmonitor.com/santaba/rest"


class FakeTime:
    """Monotonic clock whose sleep advances it."""

    def __init__(self):
        self.now = 1000.0
        self.sleeps = []

    def clock(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedHandler:
    """MockTransport handler answering from a list of responses or exceptions."""

    def __init__(self, script):
        self.script = list(script)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(step, Exception):
            raise step
        status, headers, body = step
        return httpx.Response(status, headers=headers, json=body)


def _client(handler, limiter=None, max_retries=3, fake_time=None, client_cls=RateLimitedApiClient):
    fake_time = fake_time or FakeTime()
    limiter = limiter or RateLimiter(sleep=fake_time.sleep, clock=fake_time.clock)
    http = httpx.Client(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return client_cls(
        http, limiter,
        backoff_schedule=(1.0, 5.0, 15.0),
        max_retries=max_retries,
        sleep=fake_time.sleep,
    ), fake_time


OK = (200, {}, {"items": []})
THROTTLED = (429, {}, {"errorMessage": "rate limited"})


class TestRetryPolicy:

    def test_success_first_try(self):
        handler = ScriptedHandler([(200, {}, {"ok": True})])
        client, fake_time = _client(handler)

        assert client.get_json("/device/devices") == {"ok": True}
        assert fake_time.sleeps == []

    def test_throttled_after_exhausting_retries(self):
        handler = ScriptedHandler([THROTTLED])
        client, fake_time = _client(handler)

        with pytest.raises(ThrottledError) as exc_info:
            client.request("GET", "/device/devices")

        assert exc_info.value.attempts == 4
        assert len(handler.requests) == 4
        assert fake_time.sleeps == [1.0, 5.0, 15.0]

    def test_retry_after_is_honoured(self):
        handler = ScriptedHandler([(429, {"Retry-After": "2"}, {}), OK])
        client, fake_time = _client(handler)

        client.request("GET", "/device/devices")

        assert fake_time.sleeps == [2.0]
        assert len(handler.requests) == 2

    def test_malformed_retry_after_falls_back_to_schedule(self):
        handler = ScriptedHandler([(429, {"Retry-After": "soon"}, {}), OK])
        client, fake_time = _client(handler)

        client.request("GET", "/device/devices")

        assert fake_time.sleeps == [1.0]

    def test_transport_errors_raise_after_retries(self):
        handler = ScriptedHandler([httpx.ConnectError("connection reset")])
        client, fake_time = _client(handler, max_retries=2)

        with pytest.raises(TransientApiError) as exc_info:
            client.request("GET", "/device/devices")

        assert exc_info.value.attempts == 3
        assert fake_time.sleeps == [1.0, 5.0]

    def test_throttle_and_transport_counters_are_separate(self):
        handler = ScriptedHandler([THROTTLED, httpx.ReadTimeout("slow"), THROTTLED, OK])
        client, fake_time = _client(handler, max_retries=2)

        response = client.request("GET", "/device/devices")

        assert response.status_code == 200
        assert fake_time.sleeps == [1.0, 1.0, 5.0]

    def test_client_error_is_not_retried(self):
        handler = ScriptedHandler([(404, {}, {"errorMessage": "no such group"})])
        client, fake_time = _client(handler)

        with pytest.raises(MetricsApiError) as exc_info:
            client.request("GET", "/device/groups/9")

        assert exc_info.value.status_code == 404
        assert len(handler.requests) == 1
        assert fake_time.sleeps == []


class TestRateLimiter:

    def test_quota_headers_update_snapshot(self):
        fake_time = FakeTime()
        limiter = RateLimiter(sleep=fake_time.sleep, clock=fake_time.clock)

        limiter.update_from_headers(httpx.Headers({"X-Rate-Limit-Remaining": "42", "X-Rate-Limit-Window": "60"}))

        snapshot = limiter.snapshot()
        assert snapshot.remaining_quota == 42
        assert snapshot.reset_in_seconds == 60

    def test_malformed_headers_ignored(self):
        limiter = RateLimiter(initial_quota=50)
        limiter.update_from_headers(httpx.Headers({"X-Rate-Limit-Remaining": "lots"}))
        assert limiter.snapshot().remaining_quota == 50

    def test_waits_for_reset_when_quota_low(self):
        fake_time = FakeTime()
        limiter = RateLimiter(safety_buffer=5, sleep=fake_time.sleep, clock=fake_time.clock)
        limiter.set_quota(2, 30)

        assert limiter.wait_for_quota() == 30
        assert fake_time.sleeps == [30]

    def test_no_wait_with_quota_or_after_reset(self):
        fake_time = FakeTime()
        limiter = RateLimiter(safety_buffer=5, sleep=fake_time.sleep, clock=fake_time.clock)

        limiter.set_quota(5, 30)
        assert limiter.wait_for_quota() == 0

        limiter.set_quota(0, 0)
        assert limiter.wait_for_quota() == 0
        assert fake_time.sleeps == []

    def test_low_quota_response_delays_next_call(self):
        handler = ScriptedHandler([(200, {"X-Rate-Limit-Remaining": "1", "X-Rate-Limit-Window": "20"}, {})])
        client, fake_time = _client(handler)

        client.request("GET", "/device/devices")
        client.request("GET", "/device/devices")

        assert fake_time.sleeps == [20]

    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError):
            RateLimiter(max_concurrent=0)

    def test_concurrency_never_exceeds_cap(self):
        limiter = RateLimiter(max_concurrent=3, initial_quota=10_000)
        active = {"now": 0, "peak": 0}
        lock = threading.Lock()

        def handler(request):
            with lock:
                active["now"] += 1
                active["peak"] = max(active["peak"], active["now"])
            time.sleep(0.02)
            with lock:
                active["now"] -= 1
            return httpx.Response(200, json={})

        http = httpx.Client(base_url=BASE_URL, transport=httpx.MockTransport(handler))
        client = RateLimitedApiClient(http, limiter)
        threads = [threading.Thread(target=client.request, args=("GET", "/device/devices")) for _ in range(12)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        assert active["peak"] <= 3
        assert limiter.snapshot().peak_in_flight <= 3
        assert limiter.snapshot().in_flight == 0

    def test_low_quota_with_concurrent_calls(self):
        limiter = RateLimiter(max_concurrent=3, safety_buffer=5)
        dispatched = []
        lock = threading.Lock()

        def handler(request):
            with lock:
                dispatched.append(time.monotonic())
            time.sleep(0.02)
            return httpx.Response(200, json={})

        http = httpx.Client(base_url=BASE_URL, transport=httpx.MockTransport(handler))
        client = RateLimitedApiClient(http, limiter)
        quota_set_at = time.monotonic()
        limiter.set_quota(2, 0.3)

        threads = [threading.Thread(target=client.request, args=("GET", "/device/devices")) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        assert len(dispatched) == 5
        assert all(at >= quota_set_at + 0.3 for at in dispatched)
        snapshot = limiter.snapshot()
        assert snapshot.max_concurrent == 3
        assert snapshot.peak_in_flight <= 3
        assert snapshot.in_flight == 0

    def test_passing_caller_reserves_quota(self):
        fake_time = FakeTime()
        limiter = RateLimiter(safety_buffer=5, sleep=fake_time.sleep, clock=fake_time.clock)
        limiter.set_quota(5, 30)

        assert limiter.wait_for_quota() == 0
        assert limiter.snapshot().remaining_quota == 4
        assert limiter.wait_for_quota() == 30
        assert fake_time.sleeps == [30]

    def test_reservations_stop_at_the_buffer(self):
        fake_time = FakeTime()
        limiter = RateLimiter(safety_buffer=5, sleep=fake_time.sleep, clock=fake_time.clock)
        limiter.set_quota(7, 30)

        waits = [limiter.wait_for_quota() for _ in range(4)]

        assert waits == [0, 0, 0, 30]


class TestLMv1Auth:

    def test_signature(self):
        auth = LMv1Auth("id-1", "secret-key")
        expected_hex = hmac.new(
            b"secret-key", b"GET1700000000000/device/devices", hashlib.sha256
        ).hexdigest()

        signature = auth.sign("GET", "1700000000000", "", "/device/devices")

        assert signature == base64.b64encode(expected_hex.encode()).decode()

    def test_header_uses_resource_path_without_base_or_query(self):
        captured = {}

        def handler(request):
            captured["request"] = request
            return httpx.Response(200, json={})

        auth = LMv1Auth("id-1", "secret-key", clock=lambda: 1700000000.0)
        with httpx.Client(base_url=BASE_URL, auth=auth, transport=httpx.MockTransport(handler)) as http:
            http.get("/device/groups/42/devices", params={"size": 10})

        request = captured["request"]
        expected = auth.sign("GET", "1700000000000", "", "/device/groups/42/devices")
        assert request.headers["Authorization"] == f"LMv1 id-1:{expected}:1700000000000"
        assert request.headers["X-Version"] == MetricsApiDefaults.API_VERSION


class TestMetricsApiClient:

    def test_list_group_devices_walks_subgroups_and_pages(self, monkeypatch):
        monkeypatch.setattr(MetricsApiDefaults, "PAGE_SIZE", 2)
        devices = {
            42: [{"id": 1}, {"id": 2}, {"id": 3}],
            43: [{"id": 4}],
        }

        def handler(request):
            path = request.url.path
            params = request.url.params
            if path.endswith("/device/groups"):
                parent = int(params["filter"].split(":")[1])
                items = [{"id": 43, "name": "servers"}] if parent == 42 else []
                return httpx.Response(200, json={"items": items})
            group_id = int(path.split("/")[-2])
            offset = int(params["offset"])
            size = int(params["size"])
            page = devices[group_id][offset:offset + size]
            return httpx.Response(200, json={"items": page, "total": len(devices[group_id])})

        client, _ = _client(handler, client_cls=MetricsApiClient)

        result = client.list_group_devices(42)

        assert [d["id"] for d in result] == [1, 2, 3, 4]


class FakeVault:
    def __init__(self, secrets):
        self.secrets = secrets

    def get_secret(self, name):
        if name not in self.secrets:
            raise VaultAccessError(f"secret {name} not found")
        return self.secrets[name]


class TestMetricsClientFactory:

    def test_customer_credentials_from_vault(self):
        vault = FakeVault({
            "LM-cust-1-Company": "contoso",
            "LM-cust-1-AccessId": "cid",
            "LM-cust-1-AccessKey": "ckey",
        })
        factory = MetricsClientFactory(RateLimiter(), MetricsApiConfig(), vault)

        client = factory.create("cust-1")

        assert str(client._http.base_url).startswith("https://contoso.logicmonitor.com/santaba/rest")
        assert client.limiter is factory.limiter
        client.close()

    def test_falls_back_to_global_credentials(self):
        vault = FakeVault({"LM-AccessKey": "global-key"})
        config = MetricsApiConfig(company="acme", access_id="gid")
        client = MetricsClientFactory(RateLimiter(), config, vault).create("cust-2")

        assert "acme.logicmonitor.com" in str(client._http.base_url)
        client.close()

    def test_missing_configuration(self):
        with pytest.raises(ConfigurationError):
            MetricsClientFactory(RateLimiter(), MetricsApiConfig(), FakeVault({})).create("cust-3")
