"""Cross-domain subdomain quota checks."""

from __future__ import annotations

from collections import defaultdict

from .config import Policy
from .models import IssueLevel, ValidationIssue
from .registry import DomainRegistry


class GlobalQuotaChecker:
    """Aggregates subdomain ownership over several registries."""

    def __init__(self) -> None:
        self._owned: dict[str, set[str]] = defaultdict(set)

    def add_domain(self, registry: DomainRegistry) -> None:
        """Record the owner of every unit loaded into the registry."""
        for subdomain, config in registry.configs.items():
            self._owned[config.owner.github].add(registry.subdomain_fqdn(subdomain))

    def validate_quotas(self, policy: Policy) -> list[ValidationIssue]:
        """Return one warning per owner above the per-owner maximum."""
        issues: list[ValidationIssue] = []
        for owner in sorted(self._owned):
            fqdns = sorted(self._owned[owner])
            if len(fqdns) > policy.max_subdomains_per_owner:
                issues.append(
                    ValidationIssue.for_global(
                        IssueLevel.WARNING,
                        f"@{owner} holds {len(fqdns)} subdomains across all domains "
                        f"(recommended maximum {policy.max_subdomains_per_owner}) "
                        f"[{', '.join(fqdns)}]; requires manual review",
                    )
                )
        return issues

    def stats(self) -> tuple[int, int]:
        """Return (owner count, subdomain count)."""
        return len(self._owned), sum(len(fqdns) for fqdns in self._owned.values())
