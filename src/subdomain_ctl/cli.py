"""Command-line entry point for subdomain-ctl."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .config import AppConfig, load_config
from .controller import DomainController, PlanResult, configure_logging
from .exporter import diff_to_dict, health_to_dict, issue_to_dict, report_to_dict, serialise_for, write_output
from .models import DiffRefusedError, SubdomainCtlError, ValidationIssue, ValidationReport
from .renderer import DomainSummary, render_summary


def _build_parser() -> argparse.ArgumentParser:
    """Create the CLI parser."""
    parser = argparse.ArgumentParser(description="Validate, deploy and health-check community subdomains.")
    parser.add_argument("--log-level", help="Override log level (default from config).")
    parser.add_argument("--config", help="Path to the YAML settings file.")
    parser.add_argument("--summary", help="Optional path to write a Markdown run summary.")

    subparsers = parser.add_subparsers(dest="command", required=True)
    validate_parser = subparsers.add_parser("validate", help="Validate every configuration file.")
    validate_parser.add_argument("--json", help="Optional path to write the validation report (JSON, or YAML for .yml).")

    plan_parser = subparsers.add_parser("plan", help="Show the diff between configuration and the provider.")
    plan_parser.add_argument("--json", help="Optional path to write the diff (JSON, or YAML for .yml).")

    deploy_parser = subparsers.add_parser("deploy", help="Apply the diff to the provider.")
    deploy_parser.add_argument("--run", action="store_true", help="Actually deploy (default is a dry run).")

    health_parser = subparsers.add_parser("health", help="Probe every subdomain over HTTPS.")
    health_parser.add_argument("--interval", type=int, help="Minimum milliseconds between requests.")
    health_parser.add_argument("--json", help="Optional path prefix for per-domain health results.")

    return parser


def _print_issues(title: str, issues: list[ValidationIssue]) -> None:
    if not issues:
        return
    print(f"{title} ({len(issues)}):")
    for issue in issues:
        print(f"  {issue.location()}: {issue.message}")


def _print_report(domain: str, report: ValidationReport) -> None:
    print(f"Domain: {domain}")
    _print_issues("Errors", report.errors)
    _print_issues("Warnings", report.warnings)
    if not report.errors and not report.warnings:
        print("  All checks passed.")


def _emit_plan(plan: PlanResult) -> None:
    """Print a human-friendly diff."""
    _print_report(plan.domain.name, plan.report)
    diff = plan.diff
    if diff is None:
        return
    print(f"Creates: {len(diff.to_create)}")
    for record in diff.to_create:
        print(f" + {record['name']} {record['type']}")
    print(f"Updates: {len(diff.to_update)}")
    for item in diff.to_update:
        print(f" ~ {item.record['name']} {item.record['type']} (id {item.id})")
    print(f"Deletes: {len(diff.to_delete)}")
    for item in diff.to_delete:
        print(f" - {item.record['name']} {item.record['type']} (id {item.id})")
    if not diff.available:
        print(f"Diff too large: {diff.total()} operations. Manual investigation required before deployment.")


def _write_summary(config: AppConfig, path: str | None, summaries: list[DomainSummary], global_issues=None) -> None:
    if path:
        write_output(Path(path), render_summary(summaries, global_issues, templates_dir=config.templates_dir))


def _run_validate(controller: DomainController, args: argparse.Namespace) -> int:
    run = controller.validate_all()
    for domain, report in run.reports.items():
        _print_report(domain, report)
    _print_issues("Global warnings", run.global_issues)
    if args.json:
        payload = {
            "domains": [report_to_dict(domain, report) for domain, report in run.reports.items()],
            "global": [issue_to_dict(issue) for issue in run.global_issues],
        }
        write_output(Path(args.json), serialise_for(Path(args.json), payload))
    summaries = [DomainSummary(domain=domain, report=report) for domain, report in run.reports.items()]
    _write_summary(controller.config, args.summary, summaries, run.global_issues)
    return 1 if run.has_errors() else 0


def _run_plan(controller: DomainController, args: argparse.Namespace) -> int:
    plans = [controller.plan(domain) for domain in controller.config.enabled_domains()]
    for plan in plans:
        _emit_plan(plan)
    if getattr(args, "json", None):
        payload = {"plans": [diff_to_dict(plan.domain.name, plan.diff) for plan in plans if plan.diff is not None]}
        write_output(Path(args.json), serialise_for(Path(args.json), payload))
    summaries = [DomainSummary(domain=plan.domain.name, report=plan.report, diff=plan.diff) for plan in plans]
    _write_summary(controller.config, args.summary, summaries)
    blocked = any(plan.diff is None or not plan.diff.available for plan in plans)
    return 1 if blocked else 0


def _run_deploy(controller: DomainController, args: argparse.Namespace) -> int:
    summaries = []
    for domain in controller.config.enabled_domains():
        plan = controller.plan(domain)
        _emit_plan(plan)
        summaries.append(DomainSummary(domain=domain.name, report=plan.report, diff=plan.diff))
        try:
            result = controller.deploy(plan, dry_run=not args.run)
        except DiffRefusedError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            _write_summary(controller.config, args.summary, summaries)
            return 1
        if result is None:
            print(f"Dry run: would deploy {plan.diff.total()} changes. Use --run to deploy.")
        elif plan.diff.has_changes():
            print(f"Deployed: {result.created} created, {result.updated} updated, {result.deleted} deleted")
    _write_summary(controller.config, args.summary, summaries)
    return 0


def _run_health(controller: DomainController, args: argparse.Namespace) -> int:
    summaries = []
    unhealthy = 0
    for domain in controller.config.enabled_domains():
        results = controller.health(domain, interval_ms=args.interval)
        summaries.append(DomainSummary(domain=domain.name, health=results))
        print(f"Domain: {domain.name}")
        for result in sorted(results, key=lambda item: item.fqdn):
            if result.skipped:
                print(f"  skipped  {result.fqdn} (@{result.owner}) {result.error or 'nocheck'}")
            elif result.accessible:
                suffix = f" -> {result.final_url}" if result.final_url else ""
                print(f"  healthy  {result.fqdn} (@{result.owner}){suffix}")
            else:
                unhealthy += 1
                print(f"  failed   {result.fqdn} (@{result.owner})")
                for line in (result.error or "").splitlines():
                    print(f"           {line}")
        if args.json:
            target = Path(args.json)
            target = target.with_name(f"{target.stem}.{domain.name}{target.suffix or '.json'}")
            write_output(target, serialise_for(target, health_to_dict(domain.name, results)))
    _write_summary(controller.config, args.summary, summaries)
    return 1 if unhealthy else 0


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        config = load_config(Path(args.config) if args.config else None)
        configure_logging(args.log_level or config.log_level)
        controller = DomainController(config)
        if args.command == "validate":
            code = _run_validate(controller, args)
        elif args.command == "plan":
            code = _run_plan(controller, args)
        elif args.command == "deploy":
            code = _run_deploy(controller, args)
        elif args.command == "health":
            code = _run_health(controller, args)
        else:  # pragma: no cover - argparse ensures we never reach here
            parser.error(f"Unsupported command {args.command}")
    except SubdomainCtlError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)
    except Exception as exc:  # noqa: BLE001
        print(f"Unexpected error: {exc}", file=sys.stderr)
        sys.exit(3)
    sys.exit(code)


if __name__ == "__main__":
    main()
