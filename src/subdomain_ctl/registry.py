"""Load and index every configuration unit of one domain."""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path

from .config import Policy
from .models import ExpandedRecord, FieldIssue
from .schema import DomainConfig, check_subdomain, expand_records, parse_domain_config

LOG = logging.getLogger("subdomain_ctl.registry")


@dataclass(frozen=True)
class RegistryStats:
    """Read-only counters describing a loaded registry."""

    total_records: int
    total_fqdns: int
    total_configs: int
    failed_configs: int


class DomainRegistry:
    """Validated configuration units of a domain, indexed by FQDN.

    A unit that fails to read, decode or validate is recorded in
    ``failures`` under its subdomain key and loading carries on with the
    remaining units.
    """

    def __init__(self, domain: str, policy: Policy | None = None):
        self.domain = domain.strip().lower().rstrip(".")
        self.policy = policy or Policy()
        self.records: list[ExpandedRecord] = []
        self.configs: dict[str, DomainConfig] = {}
        self.failures: dict[str, list[FieldIssue]] = {}
        self._by_fqdn: dict[str, list[ExpandedRecord]] = defaultdict(list)

    def load(self, domains_dir: Path) -> "DomainRegistry":
        """Load every `<subdomain>.json` under `<domains_dir>/<domain>/`."""
        domain_dir = Path(domains_dir) / self.domain
        if not domain_dir.is_dir():
            LOG.warning("No configuration directory for %s at %s", self.domain, domain_dir)
            return self
        for path in sorted(domain_dir.glob("*.json")):
            self._load_path(path)
        LOG.info(
            "Loaded %s records from %s config files for %s (%s failed)",
            len(self.records),
            len(self.configs),
            self.domain,
            len(self.failures),
        )
        return self

    def _load_path(self, path: Path) -> None:
        # The subdomain key is checked before the file is opened.
        subdomain = path.stem
        config_file = self.config_file_path(subdomain)
        issues = check_subdomain(subdomain, self.policy)
        if issues:
            self._fail(subdomain, issues)
            return
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            self._fail(subdomain, [FieldIssue("", f"Failed to read {config_file}: {exc}")])
            return
        self._load_text(subdomain, text, config_file)

    def load_unit(self, subdomain: str, text: str, config_file: str | None = None) -> bool:
        """Load one unit from its JSON text; return True when it was accepted.

        The subdomain key is validated first; the text is never decoded
        for a reserved or malformed key.
        """
        issues = check_subdomain(subdomain, self.policy)
        if issues:
            self._fail(subdomain, issues)
            return False
        return self._load_text(subdomain, text, config_file or self.config_file_path(subdomain))

    def _load_text(self, subdomain: str, text: str, config_file: str) -> bool:
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as exc:
            self._fail(subdomain, [FieldIssue("", f"Invalid JSON: {exc}")])
            return False
        except RecursionError:
            self._fail(subdomain, [FieldIssue("", "Invalid JSON: document is nested too deeply")])
            return False

        result = parse_domain_config(raw, self.policy)
        if not result.ok:
            self._fail(subdomain, result.issues)
            return False

        self.configs[subdomain] = result.config
        for record in expand_records(result.config, subdomain, self.domain, config_file):
            self.records.append(record)
            self._by_fqdn[record.name].append(record)
        return True

    def _fail(self, subdomain: str, issues: list[FieldIssue]) -> None:
        LOG.warning("Configuration %s is invalid (%s issues)", self.config_file_path(subdomain), len(issues))
        self.failures[subdomain] = issues

    def config_file_path(self, subdomain: str) -> str:
        """Return the repository-relative path of a unit's file."""
        return f"domains/{self.domain}/{subdomain}.json"

    def subdomain_fqdn(self, subdomain: str) -> str:
        return f"{subdomain}.{self.domain}"

    def get_by_fqdn(self, fqdn: str) -> list[ExpandedRecord]:
        return list(self._by_fqdn.get(fqdn, ()))

    def all_fqdns(self) -> list[str]:
        return sorted(self._by_fqdn)

    def has_errors(self) -> bool:
        return bool(self.failures)

    def stats(self) -> RegistryStats:
        return RegistryStats(
            total_records=len(self.records),
            total_fqdns=len(self._by_fqdn),
            total_configs=len(self.configs),
            failed_configs=len(self.failures),
        )
