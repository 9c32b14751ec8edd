"""Environment and settings-file driven configuration loader."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .models import ConfigError

DEFAULT_SETTINGS_FILE = "subdomain-ctl.yml"
DEFAULT_TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

DEFAULT_RESERVED_SUBDOMAINS = (
    "www", "_dmarc", "edgeonereclaim",
    "mail", "email", "webmail", "ns", "dns",
    "api", "cdn", "ftp", "sftp",
    "admin", "panel", "dashboard", "control",
    "dev", "test", "staging", "demo",
    "blog", "forum", "wiki", "docs",
    "app", "mobile", "static", "assets",
)


@dataclass(frozen=True)
class Policy:
    """Rule parameters handed to every validation and reconciliation step."""

    max_records_per_file: int = 10
    max_subdomains_per_owner: int = 3
    reserved_subdomains: tuple[str, ...] = DEFAULT_RESERVED_SUBDOMAINS
    root_txt_reserved_names: tuple[str, ...] = ("_vercel",)
    proxy_trusted_suffixes: tuple[str, ...] = ("pages.dev",)


@dataclass(frozen=True)
class DomainInfo:
    """A registered domain and its provider zone."""

    name: str
    zone_id: str
    enabled: bool = True
    description: str = ""


@dataclass(frozen=True)
class AppConfig:
    """Application-wide configuration values."""

    policy: Policy = field(default_factory=Policy)
    domains: tuple[DomainInfo, ...] = ()
    domains_dir: Path = Path("domains")
    api_token: str | None = None
    api_base_url: str = "https://api.cloudflare.com/client/v4"
    provider_timeout: float = 30.0
    health_interval_ms: int = 200
    probe_timeout: float = 5.0
    user_agent: str = "subdomain-ctl-healthcheck/1.0"
    deploy_retries: int = 3
    templates_dir: Path = DEFAULT_TEMPLATES_DIR
    log_level: str = "INFO"

    def enabled_domains(self) -> list[DomainInfo]:
        """Return the domains that should be processed."""
        return [domain for domain in self.domains if domain.enabled]


class DomainSpec(BaseModel):
    """Schema for one entry of the settings file `domains` list."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    zone_id: str = Field(min_length=1)
    enabled: bool = True
    description: str = ""


class PolicySpec(BaseModel):
    """Schema for the settings file `policy` mapping."""

    model_config = ConfigDict(extra="forbid")

    max_records_per_file: int = Field(default=10, ge=1)
    max_subdomains_per_owner: int = Field(default=3, ge=1)
    reserved_subdomains: list[str] = Field(default_factory=lambda: list(DEFAULT_RESERVED_SUBDOMAINS))
    root_txt_reserved_names: list[str] = Field(default_factory=lambda: ["_vercel"])
    proxy_trusted_suffixes: list[str] = Field(default_factory=lambda: ["pages.dev"])


class SettingsSpec(BaseModel):
    """Schema for the YAML settings document."""

    model_config = ConfigDict(extra="forbid")

    domains: list[DomainSpec] = Field(default_factory=list)
    domains_dir: str = "domains"
    policy: PolicySpec = Field(default_factory=PolicySpec)


def _read_settings(path: Path) -> SettingsSpec:
    """Parse and validate the YAML settings file."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to read settings file {path}: {exc}") from exc
    try:
        return SettingsSpec(**data)
    except (TypeError, ValidationError) as exc:
        raise ConfigError(f"Settings file {path} is invalid: {exc}") from exc


def _policy_from_spec(spec: PolicySpec) -> Policy:
    return Policy(
        max_records_per_file=spec.max_records_per_file,
        max_subdomains_per_owner=spec.max_subdomains_per_owner,
        reserved_subdomains=tuple(spec.reserved_subdomains),
        root_txt_reserved_names=tuple(spec.root_txt_reserved_names),
        proxy_trusted_suffixes=tuple(spec.proxy_trusted_suffixes),
    )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}.") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}.") from exc


def load_config(settings_path: Path | None = None) -> AppConfig:
    """Load configuration values from the settings file and environment (and .env)."""
    load_dotenv()
    if settings_path is None:
        settings_path = Path(os.getenv("SUBDOMAIN_CTL_CONFIG", DEFAULT_SETTINGS_FILE))
        spec = _read_settings(settings_path) if settings_path.exists() else SettingsSpec()
    else:
        spec = _read_settings(settings_path)

    domains = tuple(
        DomainInfo(
            name=domain.name.strip().lower().rstrip("."),
            zone_id=domain.zone_id,
            enabled=domain.enabled,
            description=domain.description,
        )
        for domain in spec.domains
    )
    health_interval_ms = _env_int("HEALTH_CHECK_INTERVAL", 200)
    if health_interval_ms <= 0:
        raise ConfigError("HEALTH_CHECK_INTERVAL must be a positive number of milliseconds.")

    return AppConfig(
        policy=_policy_from_spec(spec.policy),
        domains=domains,
        domains_dir=Path(os.getenv("DOMAINS_DIR", spec.domains_dir)).resolve(),
        api_token=os.getenv("CLOUDFLARE_API_TOKEN") or None,
        api_base_url=os.getenv("CLOUDFLARE_API_URL", "https://api.cloudflare.com/client/v4"),
        provider_timeout=_env_float("CLOUDFLARE_TIMEOUT", 30.0),
        health_interval_ms=health_interval_ms,
        probe_timeout=_env_float("HEALTH_CHECK_TIMEOUT", 5.0),
        user_agent=os.getenv("HEALTH_CHECK_USER_AGENT", "subdomain-ctl-healthcheck/1.0"),
        deploy_retries=_env_int("DEPLOY_RETRIES", 3),
        templates_dir=Path(os.getenv("TEMPLATES_DIR", str(DEFAULT_TEMPLATES_DIR))).resolve(),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
