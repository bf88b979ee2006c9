"""Shodan host search: internet-exposed services, exposed databases and banner-derived components."""

import logging
from typing import TYPE_CHECKING, Any

import httpx

from aegis.core.backoff import BackoffPolicy, backoff_from_settings, is_retriable_http_error
from aegis.core.errors import ExternalServiceError
from aegis.schemas.evidence import SEVERITY_RANK, SeverityLevel
from aegis.services.evidence_store import EvidenceStore
from aegis.tasks.base import FindingDraft, ScanTask, TaskContext

if TYPE_CHECKING:
    from aegis.core.config import Settings

logger = logging.getLogger(__name__)

SEARCH_URL = "https://api.shodan.io/shodan/host/search"
HOST_URL = "https://www.shodan.io/host/{ip}"
MAX_MATCHES = 100

# Baseline severity by port; unlisted ports are INFO.
PORT_RISK: dict[int, SeverityLevel] = {
    21: "MEDIUM",
    22: "MEDIUM",
    23: "HIGH",
    25: "LOW",
    53: "LOW",
    80: "LOW",
    110: "LOW",
    135: "HIGH",
    139: "HIGH",
    445: "HIGH",
    502: "CRITICAL",  # Modbus TCP
    1883: "CRITICAL",  # MQTT
    3306: "MEDIUM",
    3389: "HIGH",
    5432: "MEDIUM",
    5900: "HIGH",
    6379: "MEDIUM",
    9200: "MEDIUM",
    20000: "CRITICAL",  # DNP3
    47808: "CRITICAL",  # BACnet
}

DATABASE_PORTS: dict[int, str] = {
    1433: "MSSQL",
    3306: "MySQL",
    5432: "PostgreSQL",
    5984: "CouchDB",
    6379: "Redis",
    9200: "Elasticsearch",
    11211: "Memcached",
    27017: "MongoDB",
}

# Ports that are expected to be public and are not reported as exposures.
WEB_PORTS = frozenset({80, 443, 8080, 8443})


def _severity_from_cvss(score: float | None) -> SeverityLevel:
    if score is None:
        return "INFO"
    if score >= 9:
        return "CRITICAL"
    if score >= 7:
        return "HIGH"
    if score >= 4:
        return "MEDIUM"
    return "LOW"


def _max_severity(a: SeverityLevel, b: SeverityLevel) -> SeverityLevel:
    return a if SEVERITY_RANK[a] >= SEVERITY_RANK[b] else b


class ShodanTask(ScanTask):
    name = "shodan"

    def __init__(
        self,
        evidence: EvidenceStore,
        settings: "Settings",
        client: httpx.AsyncClient | None = None,
        backoff: BackoffPolicy | None = None,
    ) -> None:
        super().__init__(evidence, settings)
        self._client = client
        self.backoff = backoff or backoff_from_settings(settings)

    async def _search(self, api_key: str, domain: str) -> list[dict[str, Any]]:
        params = {"key": api_key, "query": f"hostname:{domain}", "page": 1}

        async def call() -> dict[str, Any]:
            if self._client is not None:
                resp = await self._client.get(SEARCH_URL, params=params, timeout=self.settings.HTTP_TIMEOUT_SEC)
                resp.raise_for_status()
                return resp.json()
            async with httpx.AsyncClient(timeout=self.settings.HTTP_TIMEOUT_SEC) as client:
                resp = await client.get(SEARCH_URL, params=params)
                resp.raise_for_status()
                return resp.json()

        try:
            body = await self.backoff.run(call, is_retriable_http_error, description="shodan search")
        except httpx.HTTPError as e:
            raise ExternalServiceError("shodan", f"host search failed: {e}", cause=e) from e
        return list(body.get("matches") or [])[:MAX_MATCHES]

    def _persist_match(self, context: TaskContext, match: dict[str, Any]) -> int:
        ip = match.get("ip_str") or "unknown"
        port = int(match.get("port") or 0)
        product = match.get("product") or ""
        version = match.get("version") or ""
        src_url = HOST_URL.format(ip=ip)
        recorded = 0

        if port not in WEB_PORTS:
            severity: SeverityLevel = PORT_RISK.get(port, "INFO")
            vulns = match.get("vulns") or {}
            for info in vulns.values():
                cvss = info.get("cvss") if isinstance(info, dict) else None
                severity = _max_severity(severity, _severity_from_cvss(float(cvss) if cvss is not None else None))

            meta = {
                "ip": ip,
                "port": port,
                "product": product or None,
                "version": version or None,
                "hostnames": match.get("hostnames") or [],
                "org": match.get("org"),
                "vulns": sorted(vulns),
            }
            label = f"{ip}:{port} {product} {version}".strip()
            if port in DATABASE_PORTS:
                engine = DATABASE_PORTS[port]
                self.record(
                    context,
                    "exposed-database",
                    _max_severity(severity, "HIGH"),
                    label,
                    src_url=src_url,
                    meta=meta,
                    finding=FindingDraft(
                        finding_type="EXPOSED_DATABASE",
                        recommendation=f"Restrict {engine} on port {port} to private networks and require authentication.",
                        description=f"{engine} service reachable from the internet on {ip}:{port}",
                    ),
                )
            else:
                self.record(
                    context,
                    "exposed-service",
                    severity,
                    label,
                    src_url=src_url,
                    meta=meta,
                    finding=FindingDraft(
                        finding_type="EXPOSED_SERVICE",
                        recommendation=f"Close port {port} or place the service behind a VPN or allowlist.",
                        description=f"Exposed service on port {port}",
                    ),
                )
            recorded += 1

        if product and version:
            self.record_component(context, product, version, src_url=src_url, cpe=(match.get("cpe23") or [None])[0])
            recorded += 1
        return recorded

    async def run(self, context: TaskContext) -> int:
        if self.settings.SHODAN_API_KEY is None:
            logger.warning("SHODAN_API_KEY not set; skipping Shodan search", extra={"scan_id": context.scan_id})
            return 0
        matches = await self._search(self.settings.SHODAN_API_KEY.get_secret_value(), context.domain)
        total = sum(self._persist_match(context, m) for m in matches)
        logger.info(
            "Shodan search completed",
            extra={"scan_id": context.scan_id, "match_count": len(matches), "evidence_count": total},
        )
        return total
