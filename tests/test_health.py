from __future__ import annotations

import asyncio
import time

import httpx

from conftest import build_registry, make_unit
from subdomain_ctl.health import (
    HealthProber,
    RateLimiter,
    TraceStep,
    build_async_client,
    check_all,
    format_trace,
    is_within_domain,
    run_health_checks,
)
from subdomain_ctl.models import HealthCheckResult


class Recorder:
    """MockTransport handler that records requested hosts and paths."""

    def __init__(self, responder):
        self.responder = responder
        self.urls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.urls.append((request.url.host, request.url.path))
        return self.responder(request)


def _probe(handler, fqdn="alice.example.org", **options):
    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)

    async def run():
        async with build_async_client(transport=httpx.MockTransport(handler)) as client:
            prober = HealthProber(client, RateLimiter(0), "example.org", sleep=fake_sleep, **options)
            return await prober.probe(fqdn, "alice")

    return asyncio.run(run()), sleeps


def test_redirect_within_domain_to_ok():
    def responder(request):
        if request.url.path == "/":
            return httpx.Response(301, headers={"Location": "https://www.alice.example.org/home"})
        return httpx.Response(200, text="hi")

    handler = Recorder(responder)
    result, sleeps = _probe(handler)

    assert result.accessible
    assert result.final_url == "https://www.alice.example.org/home"
    assert result.attempts == 1
    assert handler.urls == [("alice.example.org", "/"), ("www.alice.example.org", "/home")]
    assert sleeps == []


def test_direct_ok_has_no_final_url():
    result, _ = _probe(Recorder(lambda request: httpx.Response(200)))

    assert result.accessible
    assert result.final_url is None
    assert result.error is None


def test_out_of_scope_redirect_fails_without_retry():
    handler = Recorder(lambda request: httpx.Response(302, headers={"Location": "https://elsewhere.net/"}))
    result, sleeps = _probe(handler)

    assert not result.accessible
    assert result.attempts == 1
    assert len(handler.urls) == 1
    assert "Out of scope: elsewhere.net" in result.error
    assert result.final_url == "https://elsewhere.net/"
    assert sleeps == []


def test_redirect_loop_exhausts_every_attempt():
    handler = Recorder(lambda request: httpx.Response(302, headers={"Location": "/again"}))
    result, sleeps = _probe(handler)

    assert not result.accessible
    assert result.attempts == 3
    assert len(handler.urls) == 9
    assert sleeps == [0.5, 1.0]
    assert result.error.count("too many redirects") == 3
    assert result.error.splitlines()[0].startswith("[Attempt 1/3] https://alice.example.org (302)")


def test_connection_errors_are_reported_per_attempt():
    def responder(request):
        raise httpx.ConnectError("connection refused", request=request)

    result, sleeps = _probe(Recorder(responder))

    assert not result.accessible
    lines = result.error.splitlines()
    assert lines[0] == "[Attempt 1/3] https://alice.example.org: connection refused"
    assert len(lines) == 3
    assert sleeps == [0.5, 1.0]


def test_non_200_status_is_unhealthy():
    result, _ = _probe(Recorder(lambda request: httpx.Response(404)))

    assert not result.accessible
    assert "HTTP 404 (Non-200 status)" in result.error


def test_recovers_on_a_later_attempt():
    responses = iter([httpx.Response(503), httpx.Response(200)])
    result, sleeps = _probe(Recorder(lambda request: next(responses)))

    assert result.accessible
    assert result.attempts == 2
    assert sleeps == [0.5]


def test_format_trace_chain():
    trace = [
        TraceStep("https://a.example.org", 301),
        TraceStep("https://b.example.org", 500, "Non-200 status"),
    ]

    assert format_trace(trace) == "https://a.example.org (301) -> https://b.example.org (500: Non-200 status)"


def test_is_within_domain():
    assert is_within_domain("example.org", "example.org")
    assert is_within_domain("A.Example.org.", "example.org")
    assert not is_within_domain("badexample.org", "example.org")


def test_rate_limiter_spaces_requests():
    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(round(delay, 6))

    async def run():
        limiter = RateLimiter(0.2, clock=lambda: 100.0, sleep=fake_sleep)
        await asyncio.gather(*(limiter.acquire() for _ in range(3)))

    asyncio.run(run())

    assert sorted(sleeps) == [0.2, 0.4]


class FakeProber:
    def __init__(self, broken=()):
        self.broken = set(broken)
        self.probed = []

    async def probe(self, fqdn, owner):
        self.probed.append(fqdn)
        if fqdn in self.broken:
            raise RuntimeError("boom")
        return HealthCheckResult(fqdn=fqdn, owner=owner, accessible=True, attempts=1)


def test_check_all_skips_and_isolates_failures():
    registry = build_registry(
        "example.org",
        {
            "alice": make_unit(),
            "bobby": make_unit(owner="bobby", nocheck=True),
            "carol": make_unit([{"type": "TXT", "name": "@", "content": "x"}], owner="carol"),
            "dave": make_unit(owner="dave"),
        },
    )
    prober = FakeProber(broken={"dave.example.org"})

    results = {result.fqdn: result for result in asyncio.run(check_all(registry, prober))}

    assert sorted(prober.probed) == ["alice.example.org", "dave.example.org"]
    assert set(results) == {"alice.example.org", "bobby.example.org", "carol.example.org"}
    assert results["alice.example.org"].accessible
    assert results["bobby.example.org"].skipped and results["bobby.example.org"].accessible
    assert results["carol.example.org"].skipped and not results["carol.example.org"].accessible
    assert "No routable root" in results["carol.example.org"].error


def test_run_health_checks_uses_the_given_transport():
    registry = build_registry("example.org", {"alice": make_unit(), "bobby": make_unit(owner="bobby")})

    def responder(request):
        return httpx.Response(200 if request.url.host == "alice.example.org" else 404)

    results = run_health_checks(registry, interval=0.001, transport=httpx.MockTransport(Recorder(responder)))

    by_fqdn = {result.fqdn: result for result in results}
    assert by_fqdn["alice.example.org"].accessible
    assert not by_fqdn["bobby.example.org"].accessible


def test_slow_body_is_cut_off_by_the_request_timeout():
    async def trickle():
        for _ in range(10):
            yield b"x"
            await asyncio.sleep(1)

    def responder(request):
        return httpx.Response(200, content=trickle())

    started = time.monotonic()
    result, sleeps = _probe(Recorder(responder), timeout=0.1)

    assert time.monotonic() - started < 3.0
    assert not result.accessible
    assert result.attempts == 3
    assert result.error.splitlines()[0] == "[Attempt 1/3] https://alice.example.org: Timed out after 0.1s"
    assert sleeps == [0.5, 1.0]
