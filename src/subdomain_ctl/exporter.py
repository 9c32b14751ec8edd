"""Utilities to serialise reports, diffs and health results."""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, Iterable

import yaml

from .models import DeploymentDiff, HealthCheckResult, ValidationIssue, ValidationReport


def issue_to_dict(issue: ValidationIssue) -> dict[str, Any]:
    """Convert an issue into a serialisable dictionary."""
    entry: dict[str, Any] = {
        "scope": issue.scope.value,
        "level": issue.level.value,
        "message": issue.message,
    }
    if issue.file is not None:
        entry["file"] = issue.file
    if issue.fqdn is not None:
        entry["fqdn"] = issue.fqdn
    return entry


def report_to_dict(
    domain: str,
    report: ValidationReport,
    global_issues: Iterable[ValidationIssue] = (),
) -> dict[str, Any]:
    return {
        "domain": domain,
        "errors": [issue_to_dict(issue) for issue in report.errors],
        "warnings": [issue_to_dict(issue) for issue in report.warnings],
        "global": [issue_to_dict(issue) for issue in global_issues],
    }


def diff_to_dict(domain: str, diff: DeploymentDiff) -> dict[str, Any]:
    """Describe a diff, including whether it may be applied."""
    return {
        "domain": domain,
        "available": diff.available,
        "total": diff.total(),
        "create": list(diff.to_create),
        "update": [item.to_payload() for item in diff.to_update],
        "delete": [item.to_payload() for item in diff.to_delete],
    }


def health_to_dict(domain: str, results: Iterable[HealthCheckResult]) -> dict[str, Any]:
    entries = [
        {key: value for key, value in asdict(result).items() if value is not None}
        for result in sorted(results, key=lambda item: item.fqdn)
    ]
    return {"domain": domain, "results": entries}


def to_yaml(data: dict[str, Any]) -> str:
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)


def to_json(data: dict[str, Any]) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


def serialise_for(path: Path, data: dict[str, Any]) -> str:
    """Return YAML for `.yml`/`.yaml` targets, JSON otherwise."""
    if path.suffix.lower() in {".yml", ".yaml"}:
        return to_yaml(data)
    return to_json(data)


def write_output(path: Path, content: str) -> None:
    """Write content to the given path, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
