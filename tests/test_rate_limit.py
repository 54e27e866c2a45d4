"""Tests for the process-wide Discogs admission gate."""

import threading

import pytest
from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient

from discogate.app.exceptions import RateLimitExceeded
from discogate.app.middleware.rate_limit import UpstreamBudget, get_upstream_budget
from discogate.app.services.rate_limiter import (
    RateLimiter,
    get_rate_limiter,
    reset_rate_limiter,
)


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestRateLimiter:
    """Tests for the fixed-window counter."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def limiter(self, clock):
        return RateLimiter(max_requests=55, window_seconds=60, clock=clock)

    def test_first_request_allowed(self, limiter):
        result = limiter.admit()
        assert result.allowed is True
        assert result.limit == 55
        assert result.remaining == 54

    def test_55_admitted_56th_denied(self, limiter):
        for _ in range(55):
            assert limiter.admit().allowed is True

        result = limiter.admit()
        assert result.allowed is False
        assert result.remaining == 0
        assert result.retry_after > 0

    def test_retry_after_counts_down_with_window(self, limiter, clock):
        for _ in range(55):
            limiter.admit()

        clock.advance(45.5)
        result = limiter.admit()
        assert result.allowed is False
        assert result.retry_after == 15

    def test_retry_after_is_at_least_one(self, limiter, clock):
        for _ in range(55):
            limiter.admit()

        clock.advance(59.9)
        result = limiter.admit()
        assert result.allowed is False
        assert result.retry_after == 1

    def test_new_window_after_60_seconds(self, limiter, clock):
        for _ in range(56):
            limiter.admit()

        clock.advance(60)
        result = limiter.admit()
        assert result.allowed is True
        assert result.remaining == 54

    def test_denied_requests_still_count(self, limiter, clock):
        for _ in range(60):
            limiter.admit()
        assert limiter.current_count == 60

    def test_check_raises_when_exhausted(self, limiter):
        for _ in range(55):
            limiter.check()

        with pytest.raises(RateLimitExceeded) as exc_info:
            limiter.check()
        assert exc_info.value.retry_after > 0
        assert exc_info.value.status_code == 429

    def test_reset_opens_fresh_window(self, limiter):
        for _ in range(56):
            limiter.admit()
        limiter.reset()
        assert limiter.current_count == 0
        assert limiter.admit().allowed is True

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            RateLimiter(max_requests=0)
        with pytest.raises(ValueError):
            RateLimiter(window_seconds=0)

    def test_concurrent_admissions_never_exceed_threshold(self, clock):
        limiter = RateLimiter(max_requests=55, window_seconds=60, clock=clock)
        allowed = []
        lock = threading.Lock()

        def worker():
            for _ in range(20):
                result = limiter.admit()
                if result.allowed:
                    with lock:
                        allowed.append(result)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(allowed) == 55
        assert limiter.current_count == 200


class TestRateLimiterSingleton:
    def setup_method(self):
        reset_rate_limiter()

    def teardown_method(self):
        reset_rate_limiter()

    def test_get_returns_same_instance(self):
        assert get_rate_limiter() is get_rate_limiter()

    def test_reset_discards_instance(self):
        first = get_rate_limiter()
        reset_rate_limiter()
        assert get_rate_limiter() is not first


class TestUpstreamBudget:
    """Tests for the per-request budget handle."""

    @pytest.fixture
    def client(self):
        app = FastAPI()
        app.state.rate_limiter = RateLimiter(max_requests=2, window_seconds=60)

        @app.exception_handler(RateLimitExceeded)
        async def handler(request, exc: RateLimitExceeded):
            return JSONResponse(
                status_code=429,
                content=exc.to_response(),
                headers={"Retry-After": str(exc.retry_after)},
            )

        @app.get("/one-call")
        async def one_call(budget: UpstreamBudget = Depends(get_upstream_budget)):
            budget.charge()
            return {"ok": True}

        @app.get("/no-call")
        async def no_call(budget: UpstreamBudget = Depends(get_upstream_budget)):
            return {"ok": True}

        return TestClient(app)

    def test_headers_on_admitted_request(self, client):
        response = client.get("/one-call")
        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "2"
        assert response.headers["X-RateLimit-Remaining"] == "1"
        assert "X-RateLimit-Reset" in response.headers

    def test_denied_request_returns_429(self, client):
        client.get("/one-call")
        client.get("/one-call")
        response = client.get("/one-call")

        assert response.status_code == 429
        body = response.json()
        assert body["error"] == "Discogs rate limit reached. Please try again shortly."
        assert body["retryAfter"] > 0
        assert int(response.headers["Retry-After"]) == body["retryAfter"]

    def test_nothing_charged_without_an_upstream_call(self, client):
        for _ in range(5):
            assert client.get("/no-call").status_code == 200
        assert client.app.state.rate_limiter.current_count == 0

    def test_charge_without_response(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        budget = UpstreamBudget(limiter)

        assert budget.charge().remaining == 0
        with pytest.raises(RateLimitExceeded):
            budget.charge()
