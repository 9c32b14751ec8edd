"""Calculate and apply record diffs for one zone."""

from __future__ import annotations

import logging

from .config import Policy
from .diffing import diff_records
from .models import DeploymentDiff, DeploymentResult, DiffRefusedError
from .provider import DNSGateway
from .registry import DomainRegistry

LOG = logging.getLogger("subdomain_ctl.deployer")


class DomainDeployer:
    """Reconciles a registry's desired records against a provider zone.

    Provider failures are not handled here; retry policy belongs to the
    caller.
    """

    def __init__(self, registry: DomainRegistry, gateway: DNSGateway, policy: Policy):
        self.registry = registry
        self.gateway = gateway
        self.policy = policy

    def calculate_diff(self, zone_id: str) -> DeploymentDiff:
        """Fetch the zone once and diff it against the registry."""
        remote = self.gateway.list_records(zone_id)
        diff = diff_records(self.registry.records, remote, self.registry.domain, self.policy.reserved_subdomains)
        LOG.info(
            "Diff for %s: %s creates, %s updates, %s deletes (available=%s)",
            self.registry.domain,
            len(diff.to_create),
            len(diff.to_update),
            len(diff.to_delete),
            diff.available,
        )
        return diff

    def apply_diff(self, zone_id: str, diff: DeploymentDiff) -> DeploymentResult:
        """Apply a diff as one atomic batch."""
        if not diff.available:
            raise DiffRefusedError(
                f"Diff for {self.registry.domain} has {diff.total()} operations and is unavailable; "
                "manual investigation required."
            )
        if diff.applied:
            raise DiffRefusedError(f"Diff for {self.registry.domain} was already applied.")
        if not diff.has_changes():
            return DeploymentResult()

        operations = {
            "deletes": [{"id": item.id} for item in diff.to_delete],
            "patches": [item.to_payload() for item in diff.to_update],
            "posts": list(diff.to_create),
        }
        result = self.gateway.batch_apply(zone_id, operations)
        diff.applied = True
        LOG.info(
            "Applied diff to %s: %s created, %s updated, %s deleted",
            self.registry.domain,
            result.created,
            result.updated,
            result.deleted,
        )
        return result
