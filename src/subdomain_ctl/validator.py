"""Domain-wide validation rules run over a loaded registry.

Errors block deployment; warnings are advisory. Enforcing that
distinction is left to the caller.
"""

from __future__ import annotations

from typing import Callable, Iterable

from .config import Policy
from .models import ROOT_MARKER, IssueLevel, RecordSource, ValidationIssue, ValidationReport
from .registry import DomainRegistry

Rule = Callable[[DomainRegistry, Policy], Iterable[ValidationIssue]]


def validate(registry: DomainRegistry, policy: Policy) -> ValidationReport:
    """Run every rule and split the resulting issues by severity."""
    issues: list[ValidationIssue] = []
    for rule in RULES:
        issues.extend(rule(registry, policy))
    return ValidationReport(
        errors=[issue for issue in issues if issue.level is IssueLevel.ERROR],
        warnings=[issue for issue in issues if issue.level is IssueLevel.WARNING],
    )


def collect_load_failures(registry: DomainRegistry, policy: Policy) -> Iterable[ValidationIssue]:
    for subdomain, failures in registry.failures.items():
        config_file = registry.config_file_path(subdomain)
        for failure in failures:
            yield ValidationIssue.for_file(IssueLevel.ERROR, config_file, str(failure))


def check_root_records(registry: DomainRegistry, policy: Policy) -> Iterable[ValidationIssue]:
    """Warn about units whose root is unreachable or whose names repeat the subdomain."""
    by_file: dict[str, list] = {}
    for record in registry.records:
        if record.meta.source is RecordSource.RECORDS:
            by_file.setdefault(record.meta.config_file, []).append(record)

    for subdomain, config in registry.configs.items():
        config_file = registry.config_file_path(subdomain)
        if not config.has_routable_root():
            yield ValidationIssue.for_file(
                IssueLevel.WARNING,
                config_file,
                f'no record named "{ROOT_MARKER}" of type A/AAAA/CNAME/NS; '
                f"{registry.subdomain_fqdn(subdomain)} may be unreachable",
            )
        for record in by_file.get(config_file, ()):
            original = record.meta.original_name
            if original.split(".")[-1] == subdomain:
                yield ValidationIssue.for_record(
                    IssueLevel.WARNING,
                    config_file,
                    record.name,
                    f'record name "{original}" ends with the subdomain itself; to address '
                    f'{registry.subdomain_fqdn(subdomain)} use "name": "{ROOT_MARKER}"',
                )


def check_root_level_records(registry: DomainRegistry, policy: Policy) -> Iterable[ValidationIssue]:
    for record in registry.records:
        if record.meta.source is RecordSource.ROOT_LEVEL:
            yield ValidationIssue.for_record(
                IssueLevel.WARNING,
                record.meta.config_file,
                record.name,
                f'root-level record "{record.meta.original_name}" ({record.type}) requires manual review',
            )


def check_file_quotas(registry: DomainRegistry, policy: Policy) -> Iterable[ValidationIssue]:
    for subdomain, config in registry.configs.items():
        count = len(config.records) + len(config.root_level_records)
        if count > policy.max_records_per_file:
            yield ValidationIssue.for_file(
                IssueLevel.WARNING,
                registry.config_file_path(subdomain),
                f"file declares {count} records (recommended maximum {policy.max_records_per_file}); "
                "requires manual review",
            )


def check_subdomain_length(registry: DomainRegistry, policy: Policy) -> Iterable[ValidationIssue]:
    for subdomain in registry.configs:
        if len(subdomain) < 3:
            yield ValidationIssue.for_file(
                IssueLevel.WARNING,
                registry.config_file_path(subdomain),
                f'subdomain "{subdomain}" is {len(subdomain)} characters long (recommended at least 3); '
                "requires manual review",
            )


def _is_trusted_target(record, policy: Policy) -> bool:
    if record.type != "CNAME":
        return False
    target = record.record.content.rstrip(".")
    return any(target == suffix or target.endswith(f".{suffix}") for suffix in policy.proxy_trusted_suffixes)


def check_nested_proxied(registry: DomainRegistry, policy: Policy) -> Iterable[ValidationIssue]:
    """Proxying below a subdomain's root needs provider features not assumed here."""
    for record in registry.records:
        if record.meta.original_name == ROOT_MARKER or not record.proxied:
            continue
        if not record.record.proxiable or _is_trusted_target(record, policy):
            continue
        yield ValidationIssue.for_record(
            IssueLevel.WARNING,
            record.meta.config_file,
            record.name,
            'proxied is set below the subdomain root, which the provider does not serve by default; '
            'consider "proxied": false',
        )


def check_nocheck(registry: DomainRegistry, policy: Policy) -> Iterable[ValidationIssue]:
    for subdomain, config in registry.configs.items():
        if config.nocheck:
            yield ValidationIssue.for_file(
                IssueLevel.WARNING,
                registry.config_file_path(subdomain),
                f'{registry.subdomain_fqdn(subdomain)} sets "nocheck": true and skips health checks; '
                "requires manual review",
            )


RULES: tuple[Rule, ...] = (
    collect_load_failures,
    check_root_records,
    check_root_level_records,
    check_file_quotas,
    check_subdomain_length,
    check_nested_proxied,
    check_nocheck,
)
