"""HTTPS reachability checks for registered subdomains.

Every probe goes through one shared rate limiter. A probe makes up to
three attempts with exponential backoff between them; each attempt may
spend three requests following redirects that stay inside the base
domain. Only HTTP 200 counts as healthy. A redirect leaving the base
domain fails the probe at once without further attempts.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

import httpx

from .models import ROOT_MARKER, HealthCheckResult
from .registry import DomainRegistry
from .schema import DomainConfig

LOG = logging.getLogger("subdomain_ctl.health")

DEFAULT_USER_AGENT = "subdomain-ctl-healthcheck/1.0"

Sleep = Callable[[float], Awaitable[None]]


class RateLimiter:
    """Gate enforcing a minimum spacing between consecutive requests.

    Only the next allowed start time is guarded by the lock; callers wait
    for their slot outside of it.
    """

    def __init__(self, interval: float, clock: Callable[[], float] = time.monotonic, sleep: Sleep = asyncio.sleep):
        if interval < 0:
            raise ValueError("interval must not be negative")
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._next_start = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until the caller may issue its request."""
        async with self._lock:
            now = self._clock()
            start = max(now, self._next_start)
            self._next_start = start + self.interval
        delay = start - now
        if delay > 0:
            await self._sleep(delay)


def build_async_client(
    timeout: float = 5.0,
    user_agent: str = DEFAULT_USER_AGENT,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create the probe client: manual redirects, per-phase timeouts."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout),
        follow_redirects=False,
        headers={"User-Agent": user_agent},
        transport=transport,
    )


@dataclass(frozen=True)
class TraceStep:
    """One request made while probing."""

    url: str
    status: int
    error: str | None = None


class _Outcome(Enum):
    SUCCESS = "success"
    FAILED = "failed"
    OUT_OF_SCOPE = "out_of_scope"


def is_within_domain(host: str, base_domain: str) -> bool:
    host = host.lower().rstrip(".")
    return host == base_domain or host.endswith(f".{base_domain}")


def format_trace(trace: list[TraceStep]) -> str:
    """Render the requests of one attempt."""
    if not trace:
        return "Unknown error (empty trace)"
    if len(trace) == 1:
        step = trace[0]
        if step.status == 0:
            return f"{step.url}: {step.error}"
        return f"HTTP {step.status} ({step.error})" if step.error else f"HTTP {step.status}"
    hops = []
    for step in trace:
        if step.error:
            hops.append(f"{step.url} ({step.status or 'error'}: {step.error})")
        else:
            hops.append(f"{step.url} ({step.status})")
    return " -> ".join(hops)


def format_attempts(attempts: list[list[TraceStep]], max_attempts: int) -> str:
    """Render every attempt's trace; a lone attempt is shown without a label."""
    if not attempts:
        return "Unknown error (no attempts recorded)"
    if len(attempts) == 1:
        return format_trace(attempts[0])
    return "\n".join(
        f"[Attempt {number}/{max_attempts}] {format_trace(trace)}" for number, trace in enumerate(attempts, start=1)
    )


class HealthProber:
    """Probes FQDNs over HTTPS under a shared rate limit."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        limiter: RateLimiter,
        base_domain: str,
        max_attempts: int = 3,
        max_hops: int = 3,
        backoff: float = 0.5,
        timeout: float = 5.0,
        sleep: Sleep = asyncio.sleep,
    ):
        self.client = client
        self.limiter = limiter
        self.base_domain = base_domain.lower().rstrip(".")
        self.max_attempts = max_attempts
        self.max_hops = max_hops
        self.backoff = backoff
        self.timeout = timeout
        self._sleep = sleep

    async def probe(self, fqdn: str, owner: str) -> HealthCheckResult:
        """Probe one name; failures are always returned, never raised."""
        initial_url = f"https://{fqdn}"
        attempts: list[list[TraceStep]] = []
        for attempt in range(self.max_attempts):
            outcome, trace, url = await self._attempt(initial_url)
            if outcome is _Outcome.SUCCESS:
                return HealthCheckResult(
                    fqdn=fqdn,
                    owner=owner,
                    accessible=True,
                    final_url=url if url != initial_url else None,
                    attempts=attempt + 1,
                )
            attempts.append(trace)
            if outcome is _Outcome.OUT_OF_SCOPE:
                return HealthCheckResult(
                    fqdn=fqdn,
                    owner=owner,
                    accessible=False,
                    final_url=url,
                    error=format_attempts(attempts, self.max_attempts),
                    attempts=attempt + 1,
                )
            if attempt < self.max_attempts - 1:
                await self._sleep(self.backoff * 2**attempt)
        return HealthCheckResult(
            fqdn=fqdn,
            owner=owner,
            accessible=False,
            error=format_attempts(attempts, self.max_attempts),
            attempts=self.max_attempts,
        )

    async def _attempt(self, initial_url: str) -> tuple[_Outcome, list[TraceStep], str | None]:
        trace: list[TraceStep] = []
        current = initial_url
        budget = self.max_hops
        try:
            while budget > 0:
                budget -= 1
                await self.limiter.acquire()
                # httpx timeouts are per phase; this bounds the whole request.
                response = await asyncio.wait_for(self.client.get(current), self.timeout)
                status = response.status_code
                if status == 200:
                    return _Outcome.SUCCESS, trace, current
                if not 300 <= status < 400:
                    trace.append(TraceStep(current, status, "Non-200 status"))
                    break
                location = response.headers.get("location")
                if not location:
                    trace.append(TraceStep(current, status, "No Location header"))
                    break
                target = httpx.URL(current).join(location)
                if not is_within_domain(target.host, self.base_domain):
                    trace.append(TraceStep(current, status, f"Out of scope: {target.host or location}"))
                    return _Outcome.OUT_OF_SCOPE, trace, str(target)
                if budget == 0:
                    trace.append(TraceStep(current, status, "Request budget exhausted (too many redirects)"))
                    break
                trace.append(TraceStep(current, status))
                current = str(target)
        except asyncio.TimeoutError:
            trace.append(TraceStep(current, 0, f"Timed out after {self.timeout:g}s"))
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            trace.append(TraceStep(current, 0, str(exc) or type(exc).__name__))
        return _Outcome.FAILED, trace, None


def skip_reason(config: DomainConfig) -> tuple[bool, str | None] | None:
    """Return (accessible, error) when a unit should not be probed."""
    if config.nocheck:
        return True, None
    if not config.has_routable_root():
        return False, f"No routable root record ({ROOT_MARKER} -> A/AAAA/CNAME/NS)"
    return None


async def check_all(registry: DomainRegistry, prober: HealthProber) -> list[HealthCheckResult]:
    """Probe every unit of the registry concurrently."""

    async def check(subdomain: str, config: DomainConfig) -> HealthCheckResult:
        fqdn = registry.subdomain_fqdn(subdomain)
        owner = config.owner.github
        skip = skip_reason(config)
        if skip is not None:
            accessible, error = skip
            LOG.info("Skipping %s (%s): %s", fqdn, owner, error or "nocheck is set")
            return HealthCheckResult(fqdn=fqdn, owner=owner, accessible=accessible, error=error, skipped=True)
        result = await prober.probe(fqdn, owner)
        if result.accessible:
            LOG.info("%s (%s) is healthy%s", fqdn, owner, f", redirects to {result.final_url}" if result.final_url else "")
        else:
            LOG.warning("%s (%s) is unreachable: %s", fqdn, owner, result.error)
        return result

    units = list(registry.configs.items())
    settled = await asyncio.gather(*(check(subdomain, config) for subdomain, config in units), return_exceptions=True)

    results: list[HealthCheckResult] = []
    for (subdomain, _), outcome in zip(units, settled):
        if isinstance(outcome, BaseException):
            LOG.error(
                "Unexpected failure while checking %s",
                registry.subdomain_fqdn(subdomain),
                exc_info=(type(outcome), outcome, outcome.__traceback__),
            )
            continue
        results.append(outcome)
    return results


def run_health_checks(
    registry: DomainRegistry,
    interval: float = 0.2,
    timeout: float = 5.0,
    user_agent: str = DEFAULT_USER_AGENT,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[HealthCheckResult]:
    """Synchronous entry point: probe a registry with a fresh client and limiter."""

    async def _run() -> list[HealthCheckResult]:
        limiter = RateLimiter(interval)
        async with build_async_client(timeout, user_agent, transport) as client:
            prober = HealthProber(client, limiter, registry.domain, timeout=timeout)
            return await check_all(registry, prober)

    LOG.info(
        "Checking %s subdomains of %s (interval %.0fms, max concurrency ~%s)",
        len(registry.configs),
        registry.domain,
        interval * 1000,
        int(timeout / interval) if interval else "unbounded",
    )
    return asyncio.run(_run())
