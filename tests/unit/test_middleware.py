"""
Unit Tests - Rate Limiting
"""
import pytest
from starlette.requests import Request
from starlette.responses import Response

from invoice_analytics.serving.api.middleware import RateLimitMiddleware, client_ip


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


async def noop_app(scope, receive, send):
    pass


async def ok(request):
    return Response("ok")


def make_request(peer="10.0.0.1", forwarded=None):
    headers = []
    if forwarded:
        headers.append((b"x-forwarded-for", forwarded.encode()))
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/api/v1/health/live",
        "query_string": b"",
        "headers": headers,
        "client": (peer, 50000),
    })


class TestClientAddress:
    """Tests for resolving the client address"""

    def test_forwarded_header_ignored_from_untrusted_peer(self):
        assert client_ip(make_request(forwarded="1.2.3.4")) == "10.0.0.1"

    def test_forwarded_header_used_behind_trusted_proxy(self):
        request = make_request(peer="10.0.0.1", forwarded="1.2.3.4, 10.0.0.1")

        assert client_ip(request, {"10.0.0.1"}) == "1.2.3.4"

    def test_trusted_proxy_without_header(self):
        assert client_ip(make_request(), {"10.0.0.1"}) == "10.0.0.1"


class TestRateLimitMiddleware:
    """Tests for the sliding-window limiter"""

    async def test_rotating_forwarded_header_does_not_bypass_limit(self):
        limiter = RateLimitMiddleware(noop_app, max_requests=2, window_seconds=60, clock=FakeClock())

        statuses = [
            (await limiter.dispatch(make_request(forwarded=f"203.0.113.{i}"), ok)).status_code
            for i in range(5)
        ]

        assert statuses == [200, 200, 429, 429, 429]
        assert list(limiter._requests) == ["10.0.0.1"]

    async def test_window_slides(self):
        clock = FakeClock()
        limiter = RateLimitMiddleware(noop_app, max_requests=1, window_seconds=60, clock=clock)

        assert (await limiter.dispatch(make_request(), ok)).status_code == 200
        assert (await limiter.dispatch(make_request(), ok)).status_code == 429

        clock.now += 60
        response = await limiter.dispatch(make_request(), ok)

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Remaining"] == "0"

    async def test_idle_clients_are_dropped(self):
        clock = FakeClock()
        limiter = RateLimitMiddleware(noop_app, max_requests=5, window_seconds=60, clock=clock)

        for i in range(10):
            await limiter.dispatch(make_request(peer=f"10.0.1.{i}"), ok)
        assert len(limiter._requests) == 10

        clock.now += 61
        await limiter.dispatch(make_request(peer="10.0.2.1"), ok)

        assert list(limiter._requests) == ["10.0.2.1"]

    @pytest.mark.parametrize("peers,expected", [
        (["10.0.0.1", "10.0.0.2", "10.0.0.1"], [200, 200, 429]),
        (["10.0.0.1", "10.0.0.2", "10.0.0.3"], [200, 200, 200]),
    ])
    async def test_limit_is_per_client(self, peers, expected):
        limiter = RateLimitMiddleware(noop_app, max_requests=1, window_seconds=60, clock=FakeClock())

        statuses = [(await limiter.dispatch(make_request(peer=peer), ok)).status_code for peer in peers]

        assert statuses == expected
