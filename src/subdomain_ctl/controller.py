"""High-level orchestration for subdomain-ctl."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

import httpx

from .config import AppConfig, DomainInfo
from .deployer import DomainDeployer
from .health import run_health_checks
from .models import (
    DeploymentDiff,
    DeploymentResult,
    DiffRefusedError,
    HealthCheckResult,
    ProviderError,
    ValidationIssue,
    ValidationReport,
)
from .provider import CloudflareGateway, DNSGateway
from .quota import GlobalQuotaChecker
from .registry import DomainRegistry
from .validator import validate

LOG = logging.getLogger("subdomain_ctl")


@dataclass
class PlanResult:
    """Holds everything needed to apply a change."""

    domain: DomainInfo
    registry: DomainRegistry
    report: ValidationReport
    diff: DeploymentDiff | None = None


@dataclass
class ValidationRun:
    """Per-domain reports plus the cross-domain quota findings."""

    reports: dict[str, ValidationReport] = field(default_factory=dict)
    registries: dict[str, DomainRegistry] = field(default_factory=dict)
    global_issues: list[ValidationIssue] = field(default_factory=list)

    def has_errors(self) -> bool:
        return any(report.has_errors() for report in self.reports.values())


class DomainController:
    """Coordinates validate/plan/deploy/health runs."""

    def __init__(
        self,
        config: AppConfig,
        gateway: DNSGateway | None = None,
        sleep: Callable[[float], None] = time.sleep,
        probe_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self._gateway = gateway
        self._sleep = sleep
        self._probe_transport = probe_transport

    @property
    def gateway(self) -> DNSGateway:
        if self._gateway is None:
            self._gateway = CloudflareGateway(
                self.config.api_token,
                base_url=self.config.api_base_url,
                timeout=self.config.provider_timeout,
            )
        return self._gateway

    def load(self, domain: DomainInfo) -> DomainRegistry:
        return DomainRegistry(domain.name, self.config.policy).load(self.config.domains_dir)

    def validate_all(self) -> ValidationRun:
        """Validate every enabled domain, then check owner quotas across them."""
        run = ValidationRun()
        quota = GlobalQuotaChecker()
        for domain in self.config.enabled_domains():
            registry = self.load(domain)
            run.registries[domain.name] = registry
            run.reports[domain.name] = validate(registry, self.config.policy)
            quota.add_domain(registry)
        run.global_issues = quota.validate_quotas(self.config.policy)
        owners, subdomains = quota.stats()
        LOG.info("Quota check covered %s owners and %s subdomains", owners, subdomains)
        return run

    def plan(self, domain: DomainInfo) -> PlanResult:
        """Validate a domain and, when it has no errors, diff it against the provider."""
        registry = self.load(domain)
        report = validate(registry, self.config.policy)
        plan = PlanResult(domain=domain, registry=registry, report=report)
        if report.has_errors():
            LOG.warning("Skipping diff for %s: %s validation errors", domain.name, len(report.errors))
            return plan
        deployer = DomainDeployer(registry, self.gateway, self.config.policy)
        plan.diff = deployer.calculate_diff(domain.zone_id)
        return plan

    def deploy(self, plan: PlanResult, dry_run: bool = True) -> DeploymentResult | None:
        """Apply a plan, retrying provider failures with exponential backoff."""
        name = plan.domain.name
        if plan.diff is None:
            raise DiffRefusedError(f"{name} has validation errors; deployment aborted.")
        if not plan.diff.available:
            raise DiffRefusedError(
                f"Diff for {name} has {plan.diff.total()} operations, above the safety limit; "
                "manual investigation required."
            )
        if not plan.diff.has_changes():
            LOG.info("No changes to deploy for %s", name)
            return DeploymentResult()
        if dry_run:
            LOG.info("Dry run: would deploy %s changes to %s", plan.diff.total(), name)
            return None

        deployer = DomainDeployer(plan.registry, self.gateway, self.config.policy)
        retries = max(1, self.config.deploy_retries)
        for attempt in range(retries):
            try:
                return deployer.apply_diff(plan.domain.zone_id, plan.diff)
            except ProviderError as exc:
                if attempt == retries - 1:
                    LOG.error("Deployment of %s failed after %s attempts: %s", name, retries, exc)
                    raise
                delay = 2**attempt
                LOG.warning("Attempt %s/%s for %s failed: %s; retrying in %ss", attempt + 1, retries, name, exc, delay)
                self._sleep(delay)
        return None

    def health(self, domain: DomainInfo, interval_ms: int | None = None) -> list[HealthCheckResult]:
        registry = self.load(domain)
        interval = (interval_ms or self.config.health_interval_ms) / 1000
        return run_health_checks(
            registry,
            interval=interval,
            timeout=self.config.probe_timeout,
            user_agent=self.config.user_agent,
            transport=self._probe_transport,
        )


def configure_logging(level: str) -> None:
    """Configure logging output."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
