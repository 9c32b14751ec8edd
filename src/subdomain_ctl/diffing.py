"""Diff utilities between desired records and provider records."""

from __future__ import annotations

import json
from collections import defaultdict
from typing import Any, Iterable

from .models import DeploymentDiff, ExpandedRecord, NormalizationError, RecordWithId
from .schema import normalize_record

# Hard cap; larger diffs are reported unavailable and never applied.
MAX_DIFF_OPERATIONS = 200

GroupKey = tuple[str, str]


def _serialize(record: dict[str, Any]) -> str:
    return json.dumps(record, sort_keys=True, separators=(",", ":"))


def is_protected(fqdn: str, domain: str, reserved_subdomains: Iterable[str]) -> bool:
    """Return True for the apex and anything at or below a reserved subdomain."""
    name = fqdn.strip().lower().rstrip(".")
    if name == domain:
        return True
    for reserved in reserved_subdomains:
        protected = f"{reserved}.{domain}"
        if name == protected or name.endswith(f".{protected}"):
            return True
    return False


def _group_desired(records: Iterable[ExpandedRecord]) -> dict[GroupKey, list[dict[str, Any]]]:
    groups: dict[GroupKey, list[dict[str, Any]]] = defaultdict(list)
    for record in records:
        normalized = normalize_record(record.to_payload())
        groups[(normalized["name"], normalized["type"])].append(normalized)
    return groups


def _group_actual(records: Iterable[dict[str, Any]]) -> dict[GroupKey, list[RecordWithId]]:
    groups: dict[GroupKey, list[RecordWithId]] = defaultdict(list)
    for record in records:
        record_id = record.get("id")
        if not record_id:
            raise NormalizationError(f"Provider record {record.get('name')!r} has no id.")
        normalized = normalize_record(record)
        groups[(normalized["name"], normalized["type"])].append(RecordWithId(id=str(record_id), record=normalized))
    return groups


def diff_group(
    desired: list[dict[str, Any]],
    actual: list[RecordWithId],
) -> tuple[list[dict[str, Any]], list[RecordWithId], list[RecordWithId]]:
    """Diff one (name, type) group into creates, updates and deletes.

    Identical entries cancel out first; the leftovers are paired into
    updates and only the surplus on either side becomes a create or a
    delete. Both sides are sorted first so the pairing does not depend on
    input order.
    """
    remaining_actual = sorted(actual, key=lambda item: (_serialize(item.record), item.id))
    remaining_desired: list[dict[str, Any]] = []
    for record in sorted(desired, key=_serialize):
        encoded = _serialize(record)
        match = next(
            (index for index, item in enumerate(remaining_actual) if _serialize(item.record) == encoded),
            None,
        )
        if match is None:
            remaining_desired.append(record)
        else:
            del remaining_actual[match]

    paired = min(len(remaining_desired), len(remaining_actual))
    updates = [
        RecordWithId(id=existing.id, record=record)
        for record, existing in zip(remaining_desired[:paired], remaining_actual[:paired])
    ]
    return remaining_desired[paired:], updates, remaining_actual[paired:]


def diff_records(
    desired: Iterable[ExpandedRecord],
    actual: Iterable[dict[str, Any]],
    domain: str,
    reserved_subdomains: Iterable[str],
) -> DeploymentDiff:
    """Produce the operations that turn the provider state into the desired state."""
    domain = domain.strip().lower().rstrip(".")
    reserved = tuple(reserved_subdomains)
    actual_records = [
        record for record in actual if not is_protected(str(record.get("name", "")), domain, reserved)
    ]
    # Desired records are filtered too so a protected name can never be touched.
    desired_records = [record for record in desired if not is_protected(record.name, domain, reserved)]

    desired_groups = _group_desired(desired_records)
    actual_groups = _group_actual(actual_records)

    diff = DeploymentDiff()
    for key in sorted(set(desired_groups) | set(actual_groups)):
        creates, updates, deletes = diff_group(desired_groups.get(key, []), actual_groups.get(key, []))
        diff.to_create.extend(creates)
        diff.to_update.extend(updates)
        diff.to_delete.extend(deletes)

    diff.available = diff.total() <= MAX_DIFF_OPERATIONS
    return diff
