"""Vulnerability sources: OSV.dev (primary) and GitHub Security Advisories (secondary).

Each source answers query_by_component(ecosystem, name, version) with RawVulnerability
records. Transport failures surface as ExternalServiceError after the backoff policy
gives up; the correlator treats that as "this source contributed nothing".
"""

import logging
from datetime import datetime
from typing import Any, Protocol

import httpx

from aegis.core.backoff import BackoffPolicy, is_retriable_http_error
from aegis.core.errors import ExternalServiceError
from aegis.schemas.vulnerability import RawVulnerability

logger = logging.getLogger(__name__)

OSV_QUERY_URL = "https://api.osv.dev/v1/query"
GITHUB_GRAPHQL_URL = "https://api.github.com/graphql"
USER_AGENT = "aegis-diligence/0.1"

# Internal ecosystem name (lowercase) -> OSV ecosystem.
OSV_ECOSYSTEMS: dict[str, str] = {
    "npm": "npm",
    "pypi": "PyPI",
    "gem": "RubyGems",
    "rubygems": "RubyGems",
    "maven": "Maven",
    "composer": "Packagist",
    "packagist": "Packagist",
    "nuget": "NuGet",
    "cargo": "crates.io",
    "golang": "Go",
    "go": "Go",
    "pub": "Pub",
}

# Internal ecosystem name (lowercase) -> GitHub SecurityAdvisoryEcosystem enum.
GITHUB_ECOSYSTEMS: dict[str, str] = {
    "npm": "NPM",
    "pypi": "PIP",
    "gem": "RUBYGEMS",
    "rubygems": "RUBYGEMS",
    "maven": "MAVEN",
    "composer": "COMPOSER",
    "packagist": "COMPOSER",
    "nuget": "NUGET",
    "cargo": "RUST",
    "golang": "GO",
    "go": "GO",
    "pub": "PUB",
}

_GITHUB_QUERY = """
query($ecosystem: SecurityAdvisoryEcosystem!, $package: String!) {
  securityVulnerabilities(ecosystem: $ecosystem, package: $package, first: 50) {
    nodes {
      vulnerableVersionRange
      firstPatchedVersion { identifier }
      package { name ecosystem }
      advisory {
        ghsaId
        summary
        publishedAt
        severity
        cvss { score }
        identifiers { type value }
      }
    }
  }
}
"""


class VulnerabilitySource(Protocol):
    """Anything that can list advisories for a package."""

    name: str

    async def query_by_component(
        self, ecosystem: str | None, name: str, version: str | None
    ) -> list[RawVulnerability]: ...


def _parse_datetime(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _prefer_cve(primary_id: str, aliases: list[str]) -> str:
    """Use the CVE alias when one exists so different sources agree on identifiers."""
    for alias in aliases:
        if isinstance(alias, str) and alias.upper().startswith("CVE-"):
            return alias.upper()
    return primary_id


def _severity_from_cvss(score: float) -> str:
    if score >= 9.0:
        return "CRITICAL"
    if score >= 7.0:
        return "HIGH"
    if score >= 4.0:
        return "MEDIUM"
    return "LOW"


def parse_osv_vulnerability(vuln: dict[str, Any]) -> RawVulnerability:
    """Map one OSV `vulns[]` entry to a RawVulnerability."""
    cvss_score: float | None = None
    for sev in vuln.get("severity") or []:
        if sev.get("type", "").startswith("CVSS"):
            try:
                cvss_score = float(sev.get("score", ""))
                break
            except (TypeError, ValueError):
                # OSV usually ships vector strings rather than numeric scores.
                continue

    db_specific = vuln.get("database_specific") or {}
    severity = db_specific.get("severity") if isinstance(db_specific, dict) else None
    if cvss_score is not None:
        severity = _severity_from_cvss(cvss_score)
    if isinstance(severity, str) and severity.upper() == "MODERATE":
        severity = "MEDIUM"

    introduced = fixed = None
    package_name = ecosystem = None
    affected = vuln.get("affected") or []
    if affected:
        first = affected[0]
        pkg = first.get("package") or {}
        package_name = pkg.get("name")
        ecosystem = pkg.get("ecosystem")
        ranges = first.get("ranges") or []
        if ranges:
            for event in ranges[0].get("events") or []:
                if event.get("introduced"):
                    introduced = event["introduced"]
                if event.get("fixed"):
                    fixed = event["fixed"]
    parts = []
    if introduced:
        parts.append(f">={introduced}")
    if fixed:
        parts.append(f"<{fixed}")

    return RawVulnerability(
        id=_prefer_cve(vuln["id"], vuln.get("aliases") or []),
        severity=severity,
        cvss_score=cvss_score,
        summary=vuln.get("summary") or vuln.get("details") or "",
        published=_parse_datetime(vuln.get("published")),
        affected_range=", ".join(parts),
        fixed_version=fixed,
        package_name=package_name,
        ecosystem=ecosystem,
    )


def parse_github_node(node: dict[str, Any]) -> RawVulnerability:
    """Map one `securityVulnerabilities.nodes[]` entry to a RawVulnerability."""
    advisory = node.get("advisory") or {}
    identifiers = [i.get("value", "") for i in advisory.get("identifiers") or [] if i.get("type") == "CVE"]
    cvss = (advisory.get("cvss") or {}).get("score")
    severity = advisory.get("severity")
    if isinstance(severity, str) and severity.upper() == "MODERATE":
        severity = "MEDIUM"
    pkg = node.get("package") or {}
    fixed = (node.get("firstPatchedVersion") or {}).get("identifier")
    return RawVulnerability(
        id=_prefer_cve(advisory.get("ghsaId") or "unknown", identifiers),
        severity=severity,
        cvss_score=float(cvss) if cvss else None,
        summary=advisory.get("summary") or "",
        published=_parse_datetime(advisory.get("publishedAt")),
        affected_range=node.get("vulnerableVersionRange") or "",
        fixed_version=fixed,
        package_name=pkg.get("name"),
        ecosystem=pkg.get("ecosystem"),
    )


class _HttpSource:
    """Shared request plumbing: one client, retried with the configured backoff policy."""

    name = "http"

    def __init__(
        self,
        backoff: BackoffPolicy,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.backoff = backoff
        self.timeout = timeout
        self._client = client

    async def _post_json(self, url: str, payload: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
        async def attempt(client: httpx.AsyncClient) -> dict[str, Any]:
            resp = await client.post(url, json=payload, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()

        async def call() -> dict[str, Any]:
            if self._client is not None:
                return await attempt(self._client)
            async with httpx.AsyncClient() as client:
                return await attempt(client)

        try:
            return await self.backoff.run(call, is_retriable_http_error, description=f"{self.name} query")
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(
                self.name, f"returned status {e.response.status_code}", cause=e
            ) from e
        except httpx.HTTPError as e:
            raise ExternalServiceError(self.name, f"request failed: {e}", cause=e) from e
        except ValueError as e:
            raise ExternalServiceError(self.name, "response body is not valid JSON", cause=e) from e


class OSVSource(_HttpSource):
    """OSV.dev package query. Components without a supported ecosystem yield no results."""

    name = "osv"

    async def query_by_component(
        self, ecosystem: str | None, name: str, version: str | None
    ) -> list[RawVulnerability]:
        osv_ecosystem = OSV_ECOSYSTEMS.get((ecosystem or "").lower())
        if osv_ecosystem is None:
            logger.debug("Skipping OSV query for %s: unsupported ecosystem %r", name, ecosystem)
            return []
        payload: dict[str, Any] = {"package": {"ecosystem": osv_ecosystem, "name": name}}
        if version:
            payload["version"] = version
        body = await self._post_json(
            OSV_QUERY_URL,
            payload,
            headers={"Content-Type": "application/json", "User-Agent": USER_AGENT},
        )
        results = []
        for vuln in body.get("vulns") or []:
            if not vuln.get("id"):
                continue
            results.append(parse_osv_vulnerability(vuln))
        logger.info(
            "OSV query completed",
            extra={"package": name, "ecosystem": osv_ecosystem, "vulnerability_count": len(results)},
        )
        return results


class GitHubAdvisorySource(_HttpSource):
    """GitHub Security Advisory GraphQL query. Without a token the source is silently empty."""

    name = "github"

    def __init__(
        self,
        token: str | None,
        backoff: BackoffPolicy,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(backoff, timeout=timeout, client=client)
        self.token = token

    async def query_by_component(
        self, ecosystem: str | None, name: str, version: str | None
    ) -> list[RawVulnerability]:
        if not self.token:
            return []
        gh_ecosystem = GITHUB_ECOSYSTEMS.get((ecosystem or "").lower())
        if gh_ecosystem is None:
            return []
        body = await self._post_json(
            GITHUB_GRAPHQL_URL,
            {"query": _GITHUB_QUERY, "variables": {"ecosystem": gh_ecosystem, "package": name}},
            headers={
                "Authorization": f"Bearer {self.token}",
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
            },
        )
        if body.get("errors"):
            raise ExternalServiceError(self.name, f"GraphQL errors: {body['errors']}")
        nodes = ((body.get("data") or {}).get("securityVulnerabilities") or {}).get("nodes") or []
        return [parse_github_node(n) for n in nodes]
