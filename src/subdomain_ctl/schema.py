"""Schemas for per-subdomain configuration files and record expansion."""

from __future__ import annotations

import json
import re
from collections import defaultdict
from typing import Annotated, Any, ClassVar, Literal, Union

import dns.exception
import dns.ipv4
import dns.ipv6
import dns.name
from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    StrictBool,
    StrictInt,
    TypeAdapter,
    ValidationError,
    ValidationInfo,
)

from .config import Policy
from .models import (
    ROOT_MARKER,
    ExpandedRecord,
    FieldIssue,
    LoadResult,
    NormalizationError,
    RecordMeta,
    RecordSource,
)

AUTO_TTL = 1
MIN_TTL = 60
MAX_TTL = 86400
MAX_TXT_LENGTH = 1000

RELATIVE_NAME_PATTERN = re.compile(r"^[a-z0-9._-]+$")
ROOT_LEVEL_NAME_PATTERN = re.compile(r"^[a-z0-9_-]+$")
SUBDOMAIN_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$")
HOSTNAME_PATTERN = re.compile(
    r"^[a-z0-9_]([a-z0-9_-]*[a-z0-9_])?(\.[a-z0-9_]([a-z0-9_-]*[a-z0-9_])?)*\.?$"
)
HEX_PATTERN = re.compile(r"^[0-9a-fA-F]+$")

# Types whose presence at the root marker can make the subdomain reachable over HTTP.
ROUTABLE_TYPES = frozenset({"A", "AAAA", "CNAME", "NS"})
ADDRESS_TYPES = frozenset({"A", "AAAA", "CNAME"})


def _relative_name(value: str) -> str:
    if value == ROOT_MARKER:
        return value
    if not RELATIVE_NAME_PATTERN.match(value):
        raise ValueError("record name may only contain lowercase letters, digits, dots, underscores and hyphens")
    return value


def _ttl(value: int) -> int:
    if value == AUTO_TTL or MIN_TTL <= value <= MAX_TTL:
        return value
    raise ValueError(f"ttl must be {AUTO_TTL} (automatic) or between {MIN_TTL} and {MAX_TTL} seconds")


def _ipv4(value: str) -> str:
    try:
        dns.ipv4.inet_aton(value)
    except (dns.exception.SyntaxError, ValueError) as exc:
        raise ValueError("must be a valid IPv4 address (e.g. 192.168.1.1)") from exc
    return value


def _ipv6(value: str) -> str:
    try:
        packed = dns.ipv6.inet_aton(value)
    except (dns.exception.SyntaxError, ValueError) as exc:
        raise ValueError("must be a valid IPv6 address (e.g. 2606:50c0:8000::153)") from exc
    return dns.ipv6.inet_ntoa(packed)


def _fqdn(value: str) -> str:
    candidate = value.strip().lower()
    if not HOSTNAME_PATTERN.match(candidate):
        raise ValueError("must be a valid hostname (e.g. example.com or mail.example.com)")
    try:
        dns.name.from_text(candidate)
    except dns.exception.DNSException as exc:
        raise ValueError(f"must be a valid hostname: {exc}") from exc
    return candidate if candidate.endswith(".") else f"{candidate}."


def _txt(value: str) -> str:
    quoted = len(value) >= 2 and value.startswith('"') and value.endswith('"')
    inner = value[1:-1] if quoted else value
    if not inner:
        raise ValueError("TXT content must not be empty")
    if len(inner) > MAX_TXT_LENGTH:
        raise ValueError(f"TXT content must not exceed {MAX_TXT_LENGTH} characters")
    return value if quoted else f'"{value}"'


def _hex_digest(value: str) -> str:
    if not HEX_PATTERN.match(value):
        raise ValueError("must be a hexadecimal string (e.g. 0123456789abcdef)")
    return value.lower()


def _not_proxied(value: bool | None) -> bool | None:
    if value:
        raise ValueError("this record type cannot be proxied")
    return value


def _context_names(info: ValidationInfo, key: str) -> frozenset[str]:
    context = info.context or {}
    return frozenset(context.get(key, ()))


def _root_level_name(value: str, info: ValidationInfo) -> str:
    if not ROOT_LEVEL_NAME_PATTERN.match(value):
        raise ValueError("root-level name may only contain lowercase letters, digits, underscores and hyphens")
    if value in _context_names(info, "reserved_subdomains"):
        raise ValueError(f'"{value}" is a reserved subdomain and cannot be used')
    return value


def _root_level_cname_name(value: str, info: ValidationInfo) -> str:
    if value in _context_names(info, "root_txt_reserved_names"):
        raise ValueError(f'"{value}" is reserved for TXT records and cannot be used for CNAME')
    return value


def _expanded_name(value: str) -> str:
    return value.strip().lower().rstrip(".")


# Numbers and flags must arrive with their JSON type; "300" or "yes" is rejected.
RelativeName = Annotated[str, Field(min_length=1), AfterValidator(_relative_name)]
RootLevelName = Annotated[str, Field(min_length=1), AfterValidator(_root_level_name)]
RootLevelCNAMEName = Annotated[RootLevelName, AfterValidator(_root_level_cname_name)]
ExpandedName = Annotated[str, Field(min_length=1), AfterValidator(_expanded_name)]
Ttl = Annotated[StrictInt, AfterValidator(_ttl)]
IPv4Content = Annotated[str, AfterValidator(_ipv4)]
IPv6Content = Annotated[str, AfterValidator(_ipv6)]
FQDNContent = Annotated[str, Field(min_length=1), AfterValidator(_fqdn)]
TXTContent = Annotated[str, AfterValidator(_txt)]
HexDigest = Annotated[str, Field(min_length=1), AfterValidator(_hex_digest)]
Uint8 = Annotated[StrictInt, Field(ge=0, le=255)]
Uint16 = Annotated[StrictInt, Field(ge=0, le=65535)]
NotProxied = Annotated[StrictBool, AfterValidator(_not_proxied)]


class RecordSettings(BaseModel):
    """Optional per-record provider settings."""

    model_config = ConfigDict(extra="forbid")

    ipv4_only: StrictBool | None = None
    ipv6_only: StrictBool | None = None


class CNAMESettings(RecordSettings):
    flatten_cname: StrictBool = False


class CAAData(BaseModel):
    model_config = ConfigDict(extra="forbid")

    flags: Uint8
    tag: Literal["issue", "issuewild", "issuemail", "iodef"]
    value: str = Field(min_length=1)


class DSData(BaseModel):
    model_config = ConfigDict(extra="forbid")

    key_tag: Uint16
    algorithm: Uint8
    digest_type: Uint8
    digest: HexDigest


class SRVData(BaseModel):
    model_config = ConfigDict(extra="forbid")

    priority: Uint16
    weight: Uint16
    port: Uint16
    target: FQDNContent


class BaseRecord(BaseModel):
    """Fields shared by every record type."""

    model_config = ConfigDict(extra="forbid")

    proxiable: ClassVar[bool]
    routable: ClassVar[bool]

    name: RelativeName
    ttl: Ttl = AUTO_TTL
    settings: RecordSettings = Field(default_factory=RecordSettings)


class ARecord(BaseRecord):
    proxiable = True
    routable = True

    type: Literal["A"]
    content: IPv4Content
    proxied: StrictBool = False


class AAAARecord(BaseRecord):
    proxiable = True
    routable = True

    type: Literal["AAAA"]
    content: IPv6Content
    proxied: StrictBool = False


class CAARecord(BaseRecord):
    proxiable = False
    routable = False

    type: Literal["CAA"]
    data: CAAData
    proxied: NotProxied = False


class CNAMERecord(BaseRecord):
    proxiable = True
    routable = True

    type: Literal["CNAME"]
    content: FQDNContent
    proxied: StrictBool = False
    settings: CNAMESettings = Field(default_factory=CNAMESettings)


class TXTRecord(BaseRecord):
    proxiable = False
    routable = False

    type: Literal["TXT"]
    content: TXTContent
    proxied: NotProxied = False


class MXRecord(BaseRecord):
    proxiable = False
    routable = False

    type: Literal["MX"]
    content: FQDNContent
    priority: Uint16
    proxied: NotProxied = False


class NSRecord(BaseRecord):
    proxiable = False
    routable = True

    type: Literal["NS"]
    content: FQDNContent
    proxied: NotProxied = False


class DSRecord(BaseRecord):
    proxiable = False
    routable = False

    type: Literal["DS"]
    data: DSData
    proxied: NotProxied = False


class SRVRecord(BaseRecord):
    proxiable = False
    routable = False

    type: Literal["SRV"]
    data: SRVData
    proxied: NotProxied = False


DomainRecord = Annotated[
    Union[ARecord, AAAARecord, CAARecord, CNAMERecord, TXTRecord, MXRecord, NSRecord, DSRecord, SRVRecord],
    Field(discriminator="type"),
]


class RootLevelTXTRecord(TXTRecord):
    name: RootLevelName


class RootLevelCNAMERecord(CNAMERecord):
    name: RootLevelCNAMEName
    proxied: Annotated[StrictBool | None, AfterValidator(_not_proxied)] = None


RootLevelRecord = Annotated[
    Union[RootLevelTXTRecord, RootLevelCNAMERecord],
    Field(discriminator="type"),
]


class Owner(BaseModel):
    """Identity of the person responsible for a subdomain."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    github: str = Field(min_length=1, pattern=r"^[a-zA-Z0-9-]+$")
    name: str = Field(min_length=1)
    email: EmailStr


class DomainConfig(BaseModel):
    """Schema for one `<subdomain>.json` configuration file."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    description: str = Field(min_length=1)
    owner: Owner
    nocheck: StrictBool = False
    records: list[DomainRecord] = Field(min_length=1)
    root_level_records: list[RootLevelRecord] = Field(default_factory=list, alias="rootLevelRecords")

    def has_routable_root(self) -> bool:
        """Return True when a root-marker record can resolve to a host."""
        return any(record.name == ROOT_MARKER and record.routable for record in self.records)


# Provider records carry extra bookkeeping keys and already-expanded names;
# these variants accept them and drop anything outside the record shape.


class LooseRecordSettings(RecordSettings, extra="ignore"):
    pass


class LooseCNAMESettings(CNAMESettings, extra="ignore"):
    pass


class LooseCAAData(CAAData, extra="ignore"):
    pass


class LooseDSData(DSData, extra="ignore"):
    pass


class LooseSRVData(SRVData, extra="ignore"):
    pass


class LooseARecord(ARecord, extra="ignore"):
    name: ExpandedName
    settings: LooseRecordSettings = Field(default_factory=LooseRecordSettings)


class LooseAAAARecord(AAAARecord, extra="ignore"):
    name: ExpandedName
    settings: LooseRecordSettings = Field(default_factory=LooseRecordSettings)


class LooseCAARecord(CAARecord, extra="ignore"):
    name: ExpandedName
    settings: LooseRecordSettings = Field(default_factory=LooseRecordSettings)
    data: LooseCAAData


class LooseCNAMERecord(CNAMERecord, extra="ignore"):
    name: ExpandedName
    settings: LooseCNAMESettings = Field(default_factory=LooseCNAMESettings)
    proxied: bool | None = False


class LooseTXTRecord(TXTRecord, extra="ignore"):
    name: ExpandedName
    settings: LooseRecordSettings = Field(default_factory=LooseRecordSettings)


class LooseMXRecord(MXRecord, extra="ignore"):
    name: ExpandedName
    settings: LooseRecordSettings = Field(default_factory=LooseRecordSettings)


class LooseNSRecord(NSRecord, extra="ignore"):
    name: ExpandedName
    settings: LooseRecordSettings = Field(default_factory=LooseRecordSettings)


class LooseDSRecord(DSRecord, extra="ignore"):
    name: ExpandedName
    settings: LooseRecordSettings = Field(default_factory=LooseRecordSettings)
    data: LooseDSData


class LooseSRVRecord(SRVRecord, extra="ignore"):
    name: ExpandedName
    settings: LooseRecordSettings = Field(default_factory=LooseRecordSettings)
    data: LooseSRVData


LooseRecord = Annotated[
    Union[
        LooseARecord,
        LooseAAAARecord,
        LooseCAARecord,
        LooseCNAMERecord,
        LooseTXTRecord,
        LooseMXRecord,
        LooseNSRecord,
        LooseDSRecord,
        LooseSRVRecord,
    ],
    Field(discriminator="type"),
]

_LOOSE_RECORD = TypeAdapter(LooseRecord)


def normalize_record(payload: dict[str, Any]) -> dict[str, Any]:
    """Return a provider-shaped record with defaults filled and extras dropped."""
    try:
        record = _LOOSE_RECORD.validate_python(payload)
    except ValidationError as exc:
        raise NormalizationError(
            f"Record {payload.get('name')!r} ({payload.get('type')}) does not match any record schema: {exc}"
        ) from exc
    data = record.model_dump(mode="json", exclude_none=True)
    data["proxied"] = bool(data.get("proxied", False))
    return data


def _format_loc(loc: tuple[Any, ...]) -> str:
    return ".".join(str(part) for part in loc)


def _validation_context(policy: Policy) -> dict[str, Any]:
    return {
        "reserved_subdomains": policy.reserved_subdomains,
        "root_txt_reserved_names": policy.root_txt_reserved_names,
    }


def check_subdomain(subdomain: str, policy: Policy) -> list[FieldIssue]:
    """Validate a configuration unit's own subdomain label."""
    if subdomain in policy.reserved_subdomains:
        return [FieldIssue("", f'"{subdomain}" is a reserved subdomain and cannot be registered')]
    if len(subdomain) > 63 or not SUBDOMAIN_PATTERN.match(subdomain):
        return [
            FieldIssue(
                "",
                f'"{subdomain}" is not a valid subdomain: use lowercase letters, digits and hyphens, '
                "not starting or ending with a hyphen",
            )
        ]
    return []


def _is_descendant(child: str, parent: str) -> bool:
    if child == parent:
        return False
    if parent == ROOT_MARKER:
        return True
    return child.endswith(f".{parent}")


def find_record_conflicts(records: list[BaseRecord]) -> list[FieldIssue]:
    """Return cross-record problems among records grouped by relative name."""
    by_name: dict[str, list[BaseRecord]] = defaultdict(list)
    for record in records:
        by_name[record.name].append(record)

    issues: list[FieldIssue] = []
    for name, group in by_name.items():
        addresses = [record for record in group if record.type in ADDRESS_TYPES]
        if len(addresses) > 1:
            types = {record.type for record in addresses}
            if "CNAME" in types and types & {"A", "AAAA"}:
                issues.append(
                    FieldIssue(
                        "records",
                        f'name="{name}" has both CNAME and A/AAAA records; a CNAME cannot coexist with other '
                        "address records even when CNAME flattening is available",
                    )
                )
            proxied = sum(1 for record in addresses if record.proxied)
            if 0 < proxied < len(addresses):
                issues.append(
                    FieldIssue(
                        "records",
                        f'name="{name}" mixes proxied and unproxied A/AAAA/CNAME records '
                        f"({proxied} proxied, {len(addresses) - proxied} not proxied); use one proxied setting",
                    )
                )

        has_ns = any(record.type == "NS" for record in group)
        has_ds = any(record.type == "DS" for record in group)
        others = sorted({record.type for record in group if record.type not in {"NS", "DS"}})
        if has_ns and others:
            issues.append(
                FieldIssue(
                    "records",
                    f'name="{name}" is delegated with NS and cannot hold other record types ({", ".join(others)}); '
                    "only DS may coexist with NS",
                )
            )
        if has_ds and not has_ns:
            issues.append(
                FieldIssue(
                    "records",
                    f'name="{name}" has a DS record without a matching NS record; DS is only meaningful for a delegation',
                )
            )
        if has_ns:
            nested = sorted(other for other in by_name if _is_descendant(other, name))
            if nested:
                issues.append(
                    FieldIssue(
                        "records",
                        f'name="{name}" is delegated with NS and cannot also declare names below it '
                        f"({', '.join(nested)}); those belong to the delegated nameservers",
                    )
                )
    return issues


def parse_domain_config(raw: Any, policy: Policy) -> LoadResult:
    """Validate a decoded configuration document without raising."""
    try:
        config = DomainConfig.model_validate(raw, context=_validation_context(policy))
    except ValidationError as exc:
        return LoadResult(issues=[FieldIssue(_format_loc(error["loc"]), error["msg"]) for error in exc.errors()])
    except RecursionError:
        return LoadResult(issues=[FieldIssue("", "document is nested too deeply")])
    conflicts = find_record_conflicts(config.records)
    if conflicts:
        return LoadResult(issues=conflicts)
    return LoadResult(config=config)


def expand_name(name: str, subdomain: str, domain: str) -> str:
    """Resolve a relative record name to a fully qualified name."""
    base = f"{subdomain}.{domain}" if subdomain else domain
    if name == ROOT_MARKER:
        return base
    return f"{name}.{base}"


def display_string(record: BaseRecord, fqdn: str, owner: str) -> str:
    """Return a stable human-readable rendering of a record."""
    fields = record.model_dump(mode="json", exclude={"name", "type"}, exclude_none=True)
    return f"{fqdn} {record.type} {json.dumps(fields, sort_keys=True, separators=(',', ':'))} (@{owner})"


def expand_records(config: DomainConfig, subdomain: str, domain: str, config_file: str) -> list[ExpandedRecord]:
    """Expand a unit's records and root-level records into FQDN-named records."""
    owner = config.owner.github
    expanded: list[ExpandedRecord] = []
    sources = (
        (RecordSource.RECORDS, subdomain, config.records),
        (RecordSource.ROOT_LEVEL, "", config.root_level_records),
    )
    for source, base, records in sources:
        for record in records:
            fqdn = expand_name(record.name, base, domain)
            meta = RecordMeta(
                original_name=record.name,
                owner=owner,
                source=source,
                config_file=config_file,
                display=display_string(record, fqdn, owner),
            )
            expanded.append(ExpandedRecord(name=fqdn, record=record, meta=meta))
    return expanded
