"""Render Markdown run summaries via Jinja2 templates."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from .config import DEFAULT_TEMPLATES_DIR
from .models import DeploymentDiff, HealthCheckResult, ValidationIssue, ValidationReport


@dataclass
class DomainSummary:
    """Everything known about one domain at the end of a run."""

    domain: str
    report: ValidationReport | None = None
    diff: DeploymentDiff | None = None
    health: list[HealthCheckResult] = field(default_factory=list)


def _operation_label(record: dict) -> str:
    return f"{record.get('name')} {record.get('type')}"


def render_summary(
    summaries: list[DomainSummary],
    global_issues: list[ValidationIssue] | None = None,
    templates_dir: Path = DEFAULT_TEMPLATES_DIR,
    template_name: str = "summary.md.j2",
) -> str:
    """Render a Markdown summary for the processed domains."""
    env = Environment(
        loader=FileSystemLoader(str(templates_dir)),
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
        autoescape=False,
    )
    env.filters["operation"] = _operation_label
    template = env.get_template(template_name)
    text = template.render(summaries=summaries, global_issues=global_issues or [])
    return text.strip() + "\n"
