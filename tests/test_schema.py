from __future__ import annotations

import pytest

from conftest import make_unit
from subdomain_ctl.config import Policy
from subdomain_ctl.models import NormalizationError, RecordSource
from subdomain_ctl.schema import (
    check_subdomain,
    display_string,
    expand_name,
    expand_records,
    normalize_record,
    parse_domain_config,
)


def _messages(result) -> str:
    return " | ".join(str(issue) for issue in result.issues)


def test_valid_unit_applies_defaults_and_canonical_forms(policy):
    doc = make_unit(
        [
            {"type": "CNAME", "name": "@", "content": "Alice.GitHub.io"},
            {"type": "TXT", "name": "_verify", "content": "token=abc"},
            {"type": "MX", "name": "mail", "content": "mx.example.net", "priority": 10, "ttl": 3600},
        ]
    )
    result = parse_domain_config(doc, policy)

    assert result.ok, _messages(result)
    cname, txt, mx = result.config.records
    assert cname.content == "alice.github.io."
    assert cname.ttl == 1
    assert cname.proxied is False
    assert cname.settings.flatten_cname is False
    assert txt.content == '"token=abc"'
    assert mx.content == "mx.example.net."
    assert result.config.nocheck is False
    assert result.config.root_level_records == []


def test_already_quoted_txt_and_dotted_target_are_kept(policy):
    doc = make_unit(
        [
            {"type": "CNAME", "name": "@", "content": "alice.github.io."},
            {"type": "TXT", "name": "@", "content": '"v=spf1 -all"'},
        ]
    )
    result = parse_domain_config(doc, policy)

    assert result.ok, _messages(result)
    assert result.config.records[0].content == "alice.github.io."
    assert result.config.records[1].content == '"v=spf1 -all"'


@pytest.mark.parametrize(
    "record, field",
    [
        ({"type": "A", "name": "@", "content": "999.1.1.1"}, "content"),
        ({"type": "A", "name": "@", "content": "1.2.3"}, "content"),
        ({"type": "AAAA", "name": "@", "content": "2001:db8::zz"}, "content"),
        ({"type": "CNAME", "name": "@", "content": "not a host"}, "content"),
        ({"type": "A", "name": "Upper", "content": "1.2.3.4"}, "name"),
        ({"type": "A", "name": "@", "content": "1.2.3.4", "ttl": 30}, "ttl"),
        ({"type": "A", "name": "@", "content": "1.2.3.4", "ttl": 90000}, "ttl"),
        ({"type": "TXT", "name": "@", "content": "x", "proxied": True}, "proxied"),
        ({"type": "MX", "name": "@", "content": "mx.example.net"}, "priority"),
        ({"type": "A", "name": "@", "content": "1.2.3.4", "comment": "hi"}, "comment"),
        (
            {"type": "DS", "name": "@", "data": {"key_tag": 1, "algorithm": 13, "digest_type": 2, "digest": "xyz"}},
            "digest",
        ),
        ({"type": "CAA", "name": "@", "data": {"flags": 0, "tag": "policy", "value": "x"}}, "tag"),
        ({"type": "PTR", "name": "@", "content": "host.example.net"}, "records"),
    ],
)
def test_invalid_records_are_reported_with_their_field(policy, record, field):
    result = parse_domain_config(make_unit([record]), policy)

    assert not result.ok
    assert any(field in issue.path for issue in result.issues), _messages(result)


def test_boundary_ttls_are_accepted(policy):
    records = [
        {"type": "A", "name": "@", "content": "1.2.3.4", "ttl": 60},
        {"type": "A", "name": "@", "content": "1.2.3.5", "ttl": 86400},
    ]
    assert parse_domain_config(make_unit(records), policy).ok


def test_owner_and_required_fields(policy):
    doc = make_unit()
    doc["owner"] = {"github": "bad_handle", "name": "", "email": "nope"}
    doc["records"] = []
    result = parse_domain_config(doc, policy)

    paths = {issue.path for issue in result.issues}
    assert {"owner.github", "owner.name", "owner.email", "records"} <= paths


def test_cname_next_to_address_record_is_a_single_conflict(policy):
    doc = make_unit(
        [
            {"type": "CNAME", "name": "@", "content": "alice.github.io"},
            {"type": "A", "name": "@", "content": "1.2.3.4"},
        ]
    )
    result = parse_domain_config(doc, policy)

    assert not result.ok
    assert len(result.issues) == 1
    assert "CNAME" in result.issues[0].message


def test_mixed_proxied_flags_conflict(policy):
    doc = make_unit(
        [
            {"type": "A", "name": "@", "content": "1.2.3.4", "proxied": True},
            {"type": "AAAA", "name": "@", "content": "2001:db8::1"},
        ]
    )
    result = parse_domain_config(doc, policy)

    assert len(result.issues) == 1
    assert "1 proxied, 1 not proxied" in result.issues[0].message


def test_ns_excludes_other_types_but_allows_ds(policy):
    ds = {"type": "DS", "name": "lab", "data": {"key_tag": 2371, "algorithm": 13, "digest_type": 2, "digest": "ABCDEF01"}}
    ok = make_unit(
        [
            {"type": "A", "name": "@", "content": "1.2.3.4"},
            {"type": "NS", "name": "lab", "content": "ns1.example.net"},
            ds,
        ]
    )
    result = parse_domain_config(ok, policy)
    assert result.ok, _messages(result)
    assert result.config.records[2].data.digest == "abcdef01"

    clash = make_unit(
        [
            {"type": "NS", "name": "lab", "content": "ns1.example.net"},
            {"type": "TXT", "name": "lab", "content": "hello"},
        ]
    )
    result = parse_domain_config(clash, policy)
    assert len(result.issues) == 1
    assert "TXT" in result.issues[0].message


def test_ds_without_ns_is_rejected(policy):
    doc = make_unit(
        [
            {"type": "A", "name": "@", "content": "1.2.3.4"},
            {"type": "DS", "name": "lab", "data": {"key_tag": 1, "algorithm": 13, "digest_type": 2, "digest": "ab"}},
        ]
    )
    result = parse_domain_config(doc, policy)

    assert len(result.issues) == 1
    assert "DS" in result.issues[0].message


def test_names_below_a_delegation_are_rejected(policy):
    doc = make_unit(
        [
            {"type": "NS", "name": "lab", "content": "ns1.example.net"},
            {"type": "A", "name": "www.lab", "content": "1.2.3.4"},
            {"type": "A", "name": "otherlab", "content": "1.2.3.4"},
        ]
    )
    result = parse_domain_config(doc, policy)

    assert len(result.issues) == 1
    assert "www.lab" in result.issues[0].message
    assert "otherlab" not in result.issues[0].message


def test_root_ns_delegation_excludes_every_other_name(policy):
    doc = make_unit(
        [
            {"type": "NS", "name": "@", "content": "ns1.example.net"},
            {"type": "NS", "name": "@", "content": "ns2.example.net"},
        ]
    )
    assert parse_domain_config(doc, policy).ok

    doc["records"].append({"type": "TXT", "name": "_acme", "content": "x"})
    result = parse_domain_config(doc, policy)
    assert len(result.issues) == 1
    assert "_acme" in result.issues[0].message


def test_root_level_names_respect_reserved_lists(policy):
    good = make_unit(
        rootLevelRecords=[
            {"type": "TXT", "name": "_vercel", "content": "vc-domain-verify=alice"},
            {"type": "CNAME", "name": "alice-docs", "content": "alice.github.io"},
        ]
    )
    assert parse_domain_config(good, policy).ok

    reserved = make_unit(rootLevelRecords=[{"type": "TXT", "name": "www", "content": "x"}])
    assert "reserved subdomain" in _messages(parse_domain_config(reserved, policy))

    txt_only = make_unit(rootLevelRecords=[{"type": "CNAME", "name": "_vercel", "content": "cname.vercel-dns.com"}])
    assert "reserved for TXT" in _messages(parse_domain_config(txt_only, policy))

    wrong_type = make_unit(rootLevelRecords=[{"type": "A", "name": "x", "content": "1.2.3.4"}])
    assert not parse_domain_config(wrong_type, policy).ok

    proxied = make_unit(rootLevelRecords=[{"type": "CNAME", "name": "x", "content": "a.example.net", "proxied": True}])
    assert not parse_domain_config(proxied, policy).ok


def test_reserved_lists_come_from_the_policy():
    doc = make_unit(rootLevelRecords=[{"type": "TXT", "name": "special", "content": "x"}])

    assert parse_domain_config(doc, Policy()).ok
    assert not parse_domain_config(doc, Policy(reserved_subdomains=("special",))).ok


def test_check_subdomain(policy):
    assert check_subdomain("alice", policy) == []
    assert "reserved" in check_subdomain("www", policy)[0].message
    assert check_subdomain("-bad", policy)
    assert check_subdomain("Bad", policy)
    assert check_subdomain("a" * 64, policy)


def test_expand_name():
    assert expand_name("@", "alice", "example.org") == "alice.example.org"
    assert expand_name("blog", "alice", "example.org") == "blog.alice.example.org"
    assert expand_name("_vercel", "", "example.org") == "_vercel.example.org"


def test_expand_records_attaches_provenance(policy):
    doc = make_unit(
        [{"type": "A", "name": "@", "content": "1.2.3.4"}, {"type": "A", "name": "api", "content": "1.2.3.5"}],
        rootLevelRecords=[{"type": "TXT", "name": "_vercel", "content": "token"}],
    )
    config = parse_domain_config(doc, policy).config
    expanded = expand_records(config, "alice", "example.org", "domains/example.org/alice.json")

    assert [record.name for record in expanded] == [
        "alice.example.org",
        "api.alice.example.org",
        "_vercel.example.org",
    ]
    assert expanded[1].meta.original_name == "api"
    assert expanded[1].meta.owner == "alice"
    assert expanded[2].meta.source is RecordSource.ROOT_LEVEL
    assert expanded[0].meta.display.startswith("alice.example.org A {")
    assert expanded[0].meta.display.endswith("(@alice)")


def test_display_string_ignores_field_order(policy):
    first = make_unit([{"type": "A", "name": "@", "content": "1.2.3.4", "ttl": 300, "proxied": True}])
    second = make_unit([{"proxied": True, "ttl": 300, "content": "1.2.3.4", "name": "@", "type": "A"}])
    a = parse_domain_config(first, policy).config.records[0]
    b = parse_domain_config(second, policy).config.records[0]

    assert display_string(a, "alice.example.org", "alice") == display_string(b, "alice.example.org", "alice")


def test_normalize_record_drops_provider_fields_and_fills_defaults():
    normalized = normalize_record(
        {
            "id": "abc",
            "zone_id": "z",
            "name": "Alice.Example.org",
            "type": "AAAA",
            "content": "2001:DB8:0:0:0:0:0:1",
            "ttl": 1,
            "proxied": False,
            "settings": {"ipv4_only": None},
            "meta": {"auto_added": False},
        }
    )

    assert normalized == {
        "name": "alice.example.org",
        "type": "AAAA",
        "content": "2001:db8::1",
        "ttl": 1,
        "proxied": False,
        "settings": {},
    }


def test_normalize_record_rejects_unknown_types():
    with pytest.raises(NormalizationError):
        normalize_record({"id": "x", "name": "a.example.org", "type": "PTR", "content": "host."})


@pytest.mark.parametrize(
    "record, field",
    [
        ({"type": "A", "name": "@", "content": "192.0.2.1", "ttl": "300"}, "ttl"),
        ({"type": "A", "name": "@", "content": "192.0.2.1", "ttl": True}, "ttl"),
        ({"type": "A", "name": "@", "content": "192.0.2.1", "proxied": "yes"}, "proxied"),
        ({"type": "A", "name": "@", "content": "192.0.2.1", "proxied": 1}, "proxied"),
        ({"type": "TXT", "name": "@", "content": "x", "proxied": "false"}, "proxied"),
        ({"type": "MX", "name": "@", "content": "mx.example.net", "priority": "10"}, "priority"),
        ({"type": "CAA", "name": "@", "data": {"flags": True, "tag": "issue", "value": "ca.example.net"}}, "flags"),
        ({"type": "CNAME", "name": "@", "content": "a.example.net", "settings": {"flatten_cname": "true"}}, "flatten_cname"),
    ],
)
def test_values_are_not_coerced_from_other_json_types(policy, record, field):
    result = parse_domain_config(make_unit([record]), policy)

    assert not result.ok
    assert any(field in issue.path for issue in result.issues), _messages(result)


def test_nocheck_must_be_a_boolean(policy):
    result = parse_domain_config(make_unit(nocheck="on"), policy)

    assert not result.ok
    assert [issue.path for issue in result.issues] == ["nocheck"]
    assert parse_domain_config(make_unit(nocheck=True), policy).config.nocheck is True


def test_owner_email_is_checked_by_address_syntax(policy):
    for email in ("alice@", "alice example@example.com", "@example.com"):
        doc = make_unit()
        doc["owner"]["email"] = email
        result = parse_domain_config(doc, policy)
        assert [issue.path for issue in result.issues] == ["owner.email"], email
