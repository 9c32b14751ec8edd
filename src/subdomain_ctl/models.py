"""Core data models used by subdomain-ctl."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


ROOT_MARKER = "@"


class RecordSource(str, Enum):
    """Where an expanded record was declared inside its configuration unit."""

    RECORDS = "records"
    ROOT_LEVEL = "rootLevelRecords"


@dataclass(frozen=True)
class RecordMeta:
    """Provenance attached to every expanded record."""

    original_name: str
    owner: str
    source: RecordSource
    config_file: str
    display: str


@dataclass(frozen=True)
class ExpandedRecord:
    """A validated record whose relative name was resolved to a FQDN."""

    name: str
    record: Any
    meta: RecordMeta

    @property
    def type(self) -> str:
        """Return the RR type."""
        return self.record.type

    @property
    def proxied(self) -> bool:
        """Return True when the record is relayed through the provider edge."""
        return bool(getattr(self.record, "proxied", False))

    def to_payload(self) -> dict[str, Any]:
        """Return the provider-facing representation, named by FQDN."""
        payload = self.record.model_dump(mode="json", exclude_none=True)
        payload["name"] = self.name
        return payload


@dataclass(frozen=True)
class FieldIssue:
    """A single problem found while parsing a configuration unit."""

    path: str
    message: str

    def __str__(self) -> str:
        return f"({self.path}) {self.message}" if self.path else self.message


@dataclass
class LoadResult:
    """Outcome of parsing one configuration unit: a config or its issues."""

    config: Any = None
    issues: list[FieldIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.config is not None and not self.issues


class IssueScope(str, Enum):
    RECORD = "record"
    FILE = "file"
    GLOBAL = "global"


class IssueLevel(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class ValidationIssue:
    """A severity-tagged finding at record, file or global granularity."""

    scope: IssueScope
    level: IssueLevel
    message: str
    file: str | None = None
    fqdn: str | None = None

    @classmethod
    def for_record(cls, level: IssueLevel, file: str, fqdn: str, message: str) -> "ValidationIssue":
        return cls(scope=IssueScope.RECORD, level=level, message=message, file=file, fqdn=fqdn)

    @classmethod
    def for_file(cls, level: IssueLevel, file: str, message: str) -> "ValidationIssue":
        return cls(scope=IssueScope.FILE, level=level, message=message, file=file)

    @classmethod
    def for_global(cls, level: IssueLevel, message: str) -> "ValidationIssue":
        return cls(scope=IssueScope.GLOBAL, level=level, message=message)

    def location(self) -> str:
        """Return a short human-readable location for the issue."""
        if self.scope is IssueScope.RECORD:
            return f"{self.file} ({self.fqdn})"
        if self.scope is IssueScope.FILE:
            return str(self.file)
        return "global"


@dataclass
class ValidationReport:
    """Issues produced for one domain, split by severity."""

    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    def has_errors(self) -> bool:
        return bool(self.errors)


@dataclass(frozen=True)
class RecordWithId:
    """A provider record identifier paired with record content."""

    id: str
    record: dict[str, Any]

    def to_payload(self) -> dict[str, Any]:
        return {"id": self.id, **self.record}


@dataclass
class DeploymentDiff:
    """Create/update/delete operations needed to converge a zone."""

    available: bool = True
    to_create: list[dict[str, Any]] = field(default_factory=list)
    to_update: list[RecordWithId] = field(default_factory=list)
    to_delete: list[RecordWithId] = field(default_factory=list)
    applied: bool = False

    def total(self) -> int:
        """Return the total number of operations."""
        return len(self.to_create) + len(self.to_update) + len(self.to_delete)

    def has_changes(self) -> bool:
        return self.total() > 0


@dataclass(frozen=True)
class DeploymentResult:
    """Counts reported by the provider after an atomic batch."""

    created: int = 0
    updated: int = 0
    deleted: int = 0


@dataclass(frozen=True)
class HealthCheckResult:
    """Reachability outcome for one registered subdomain."""

    fqdn: str
    owner: str
    accessible: bool
    final_url: str | None = None
    error: str | None = None
    skipped: bool = False
    attempts: int = 0


class SubdomainCtlError(Exception):
    """Base exception for subdomain-ctl."""


class ConfigError(SubdomainCtlError):
    """Raised when application settings are invalid."""


class ProviderError(SubdomainCtlError):
    """Raised when the DNS provider rejects or fails a request."""


class NormalizationError(SubdomainCtlError):
    """Raised when a record cannot be normalized for diffing."""


class DiffRefusedError(SubdomainCtlError):
    """Raised when applying a diff that must not be applied."""
