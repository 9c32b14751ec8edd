from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from subdomain_ctl.config import Policy
from subdomain_ctl.registry import DomainRegistry


def make_unit(records: list[dict[str, Any]] | None = None, owner: str = "alice", **extra: Any) -> dict[str, Any]:
    """Return a configuration document with sensible defaults."""
    doc: dict[str, Any] = {
        "description": "Personal homepage",
        "owner": {"github": owner, "name": owner.title(), "email": f"{owner}@example.com"},
        "records": records if records is not None else [{"type": "CNAME", "name": "@", "content": f"{owner}.github.io"}],
    }
    doc.update(extra)
    return doc


def build_registry(domain: str, units: dict[str, dict[str, Any]], policy: Policy | None = None) -> DomainRegistry:
    registry = DomainRegistry(domain, policy or Policy())
    for subdomain, doc in units.items():
        registry.load_unit(subdomain, json.dumps(doc))
    return registry


def write_units(root: Path, domain: str, units: dict[str, Any]) -> Path:
    """Write units under `<root>/<domain>/`; string values are written verbatim."""
    domain_dir = root / domain
    domain_dir.mkdir(parents=True, exist_ok=True)
    for subdomain, doc in units.items():
        text = doc if isinstance(doc, str) else json.dumps(doc, indent=2)
        (domain_dir / f"{subdomain}.json").write_text(text, encoding="utf-8")
    return root


def remote(record_id: str, name: str, rtype: str, **fields: Any) -> dict[str, Any]:
    """Return a provider record as the Cloudflare API lists it."""
    record = {
        "id": record_id,
        "zone_id": "zone-1",
        "zone_name": "example.org",
        "name": name,
        "type": rtype,
        "ttl": 1,
        "proxied": False,
        "proxiable": rtype in {"A", "AAAA", "CNAME"},
        "settings": {},
        "meta": {},
        "comment": None,
        "tags": [],
        "created_on": "2025-01-01T00:00:00Z",
        "modified_on": "2025-01-01T00:00:00Z",
    }
    record.update(fields)
    return record


@pytest.fixture
def policy() -> Policy:
    return Policy()
