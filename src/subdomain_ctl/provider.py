"""DNS provider gateway built on httpx."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from .models import DeploymentResult, ProviderError

LOG = logging.getLogger("subdomain_ctl.provider")

# A zone larger than this is outside what the workflow was designed for.
MAX_ZONE_RECORDS = 5000


class DNSGateway(Protocol):
    """Operations the reconciliation engine needs from a DNS provider.

    ``batch_apply`` must apply all operations of one call or none of them.
    """

    def list_records(self, zone_id: str) -> list[dict[str, Any]]:
        ...

    def batch_apply(self, zone_id: str, operations: dict[str, list[dict[str, Any]]]) -> DeploymentResult:
        ...


class CloudflareGateway:
    """Cloudflare v4 API client for listing and batch-updating zone records."""

    def __init__(
        self,
        api_token: str | None,
        base_url: str = "https://api.cloudflare.com/client/v4",
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ):
        if not api_token:
            raise ProviderError("CLOUDFLARE_API_TOKEN is required.")
        self._client = client or httpx.Client(base_url=base_url, timeout=httpx.Timeout(timeout))
        self._headers = {
            "Authorization": f"Bearer {api_token}",
            "Content-Type": "application/json",
        }

    def close(self) -> None:
        self._client.close()

    def list_records(self, zone_id: str) -> list[dict[str, Any]]:
        """Return every record of the zone."""
        payload = self._request("GET", f"/zones/{zone_id}/dns_records", params={"per_page": MAX_ZONE_RECORDS})
        info = payload.get("result_info") or {}
        total = int(info.get("total_count") or 0)
        if total > MAX_ZONE_RECORDS:
            raise ProviderError(
                f"Zone {zone_id} holds {total} records, above the supported {MAX_ZONE_RECORDS}; review required."
            )
        records = payload.get("result") or []
        LOG.debug("Listed %s records for zone %s", len(records), zone_id)
        return records

    def batch_apply(self, zone_id: str, operations: dict[str, list[dict[str, Any]]]) -> DeploymentResult:
        """Submit deletes, patches and posts as one atomic batch."""
        payload = self._request("POST", f"/zones/{zone_id}/dns_records/batch", json=operations)
        result = payload.get("result") or {}
        return DeploymentResult(
            created=len(result.get("posts") or []),
            updated=len(result.get("patches") or []),
            deleted=len(result.get("deletes") or []),
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, headers=self._headers, **kwargs)
        except httpx.HTTPError as exc:
            raise ProviderError(f"{method} {path} failed: {exc}") from exc
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(f"{method} {path} returned non-JSON response (HTTP {response.status_code}).") from exc
        if not isinstance(data, dict):
            raise ProviderError(f"{method} {path} returned an unexpected payload (HTTP {response.status_code}).")
        if response.is_error or not data.get("success", False):
            messages = ", ".join(error.get("message", "") for error in data.get("errors") or []) or "unknown error"
            raise ProviderError(f"Cloudflare API error (HTTP {response.status_code}): {messages}")
        return data
