"""Vulnerability correlation: match detected components against advisory sources.

Given a NormalizedComponent, query every configured source concurrently, drop
advisories already fixed in the detected version, score confidence for each
remaining match and summarize the component as a ComponentVulnerabilityReport.
"""

import asyncio
import logging
import math
import re
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta

from aegis.schemas.evidence import SEVERITY_RANK
from aegis.schemas.vulnerability import (
    ComponentVulnerabilityReport,
    NormalizedComponent,
    RawVulnerability,
    VersionStatus,
    VulnerabilityMatch,
)
from aegis.services.vuln_sources import GITHUB_ECOSYSTEMS, OSV_ECOSYSTEMS, VulnerabilitySource

logger = logging.getLogger(__name__)

# Confidence scoring (0-100).
BASE_CONFIDENCE = 70
EXACT_MATCH_CONFIDENCE = 90
OLD_VULNERABILITY_PENALTY = 20
MIN_CONFIDENCE = 30
OLD_VULNERABILITY_AGE = timedelta(days=5 * 365)

# Version status thresholds.
RECENT_WINDOW = timedelta(days=2 * 365)
MANY_RECENT_THRESHOLD = 5

# Fallback per-severity score when a match has no CVSS score.
SEVERITY_SCORES: dict[str, float] = {"CRITICAL": 9.0, "HIGH": 7.0, "MEDIUM": 5.0, "LOW": 3.0}
KEV_BOOST = 2.0
EPSS_BOOST = 1.0
EPSS_THRESHOLD = 0.7
MAX_RISK = 10.0

_DEFAULT_SEVERITY = "MEDIUM"
_KNOWN_SEVERITIES = frozenset(SEVERITY_RANK)

_DATE_VERSION = re.compile(r"^\d{4}-\d{2}-\d{2}")
_SEMVER_PREFIX = re.compile(r"^(\d+\.\d+\.\d+)")
_LEADING_INT = re.compile(r"^(\d+)")


def normalize_version(version: str | None) -> str | None:
    """
    Coerce a detected version to MAJOR.MINOR.PATCH.

    "v1" -> "1.0.0", "1.2" -> "1.2.0", "1.2.3-beta" -> "1.2.3". Anything that does not reduce
    to a numeric triple (date-like versions, "latest", "1.x") cannot be compared against
    advisory ranges and returns None.
    """
    if not version or not version.strip():
        return None
    clean = re.sub(r"^[vV=]", "", version.strip())
    if _DATE_VERSION.match(clean):
        return None
    if re.fullmatch(r"\d+", clean):
        return f"{clean}.0.0"
    if re.fullmatch(r"\d+\.\d+", clean):
        return f"{clean}.0"
    m = _SEMVER_PREFIX.match(clean)
    return m.group(1) if m else None


def _version_tuple(version: str) -> tuple[int, int, int] | None:
    """(major, minor, patch) after stripping distro suffixes (-..., ~...). None if not numeric."""
    core = re.split(r"[-~]", version.strip().lstrip("vV="), maxsplit=1)[0]
    parts: list[int] = []
    for piece in core.split(".")[:3]:
        m = _LEADING_INT.match(piece)
        if not m:
            break
        parts.append(int(m.group(1)))
    if not parts:
        return None
    while len(parts) < 3:
        parts.append(0)
    return parts[0], parts[1], parts[2]


def is_version_patched(version: str, fixed_version: str) -> bool:
    """True when version >= fixed_version. Unparseable input is treated as unpatched."""
    current = _version_tuple(version)
    fixed = _version_tuple(fixed_version)
    if current is None or fixed is None:
        return False
    return current >= fixed


def match_score(match: VulnerabilityMatch) -> float:
    """Exploitability-weighted score for one match, scaled by match confidence."""
    score = match.cvss_score if match.cvss_score else SEVERITY_SCORES.get(match.severity, 0.0)
    if match.cisa_kev:
        score = min(MAX_RISK, score + KEV_BOOST)
    if match.epss_score is not None and match.epss_score > EPSS_THRESHOLD:
        score = min(MAX_RISK, score + EPSS_BOOST)
    return score * (match.confidence / 100)


def component_risk_score(matches: Sequence[VulnerabilityMatch]) -> float:
    """Worst match score, rounded half-up to one decimal and capped at 10."""
    if not matches:
        return 0.0
    worst = max(match_score(m) for m in matches)
    return min(MAX_RISK, math.floor(worst * 10 + 0.5) / 10)


def merge_matches(*match_lists: Sequence[VulnerabilityMatch]) -> list[VulnerabilityMatch]:
    """
    Merge per-source match lists, keeping the first occurrence of each identifier.

    Lists are taken in the order given, so earlier sources win on conflicts. The result
    is sorted most severe first, then by CVSS score.
    """
    seen: dict[str, VulnerabilityMatch] = {}
    for matches in match_lists:
        for m in matches:
            if m.id not in seen:
                seen[m.id] = m
    return sorted(
        seen.values(),
        key=lambda m: (SEVERITY_RANK.get(m.severity, 0), m.cvss_score or 0.0),
        reverse=True,
    )


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _same_ecosystem(advisory_ecosystem: str | None, component_ecosystem: str | None) -> bool:
    if not advisory_ecosystem or not component_ecosystem:
        return False
    a = advisory_ecosystem.lower()
    c = component_ecosystem.lower()
    return a == c or a == OSV_ECOSYSTEMS.get(c, "").lower() or a == GITHUB_ECOSYSTEMS.get(c, "").lower()


def _cpe_product(cpe: str) -> str:
    """Product field of a CPE 2.3 string (cpe:2.3:part:vendor:product:version:...)."""
    parts = cpe.split(":")
    return parts[4].lower() if len(parts) >= 5 else ""


def determine_version_status(
    component: NormalizedComponent,
    matches: Sequence[VulnerabilityMatch],
    now: datetime,
) -> VersionStatus:
    if not component.version:
        return "unknown"
    cutoff = now - RECENT_WINDOW
    recent = [m for m in matches if m.published is not None and _as_utc(m.published) > cutoff]
    if len(recent) > MANY_RECENT_THRESHOLD:
        return "outdated"
    if any(m.severity == "CRITICAL" for m in matches):
        return "outdated"
    if not matches:
        return "current"
    return "unknown"


def recommend_action(
    component: NormalizedComponent,
    matches: Sequence[VulnerabilityMatch],
    version_status: VersionStatus,
) -> str:
    if not matches:
        return f"{component.name}@{component.version} appears secure with no known vulnerabilities"
    critical = sum(1 for m in matches if m.severity == "CRITICAL")
    high = sum(1 for m in matches if m.severity == "HIGH")
    kev = sum(1 for m in matches if m.cisa_kev)
    if critical or kev:
        exploited = f" ({kev} actively exploited)" if kev else ""
        return f"URGENT: Update {component.name} immediately - {critical} critical vulnerabilities{exploited}"
    if high > 3:
        return f"HIGH PRIORITY: Update {component.name} - {high} high-severity vulnerabilities found"
    if version_status == "outdated":
        return f"Update {component.name} to latest version - multiple vulnerabilities in current version"
    return f"Consider updating {component.name} - {len(matches)} vulnerabilities found"


class VulnerabilityCorrelator:
    """
    Correlate components against a fixed, ordered list of sources.

    clock returns "now" and is only consulted for age-based confidence and version status.
    """

    def __init__(
        self,
        sources: Sequence[VulnerabilitySource],
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.sources = list(sources)
        self.clock = clock

    def _to_match(
        self,
        raw: RawVulnerability,
        component: NormalizedComponent,
        source_name: str,
        now: datetime,
    ) -> VulnerabilityMatch:
        confidence = BASE_CONFIDENCE
        reason = "Component name match"
        if raw.package_name and raw.package_name.lower() == component.name.lower() and _same_ecosystem(
            raw.ecosystem, component.ecosystem
        ):
            confidence = EXACT_MATCH_CONFIDENCE
            reason = "Exact package and ecosystem match"
        elif component.cpe and _cpe_product(component.cpe) in {_cpe_product(c) for c in raw.cpe_matches}:
            confidence = EXACT_MATCH_CONFIDENCE
            reason = "CPE match with version analysis"

        if raw.published is not None and _as_utc(raw.published) < now - OLD_VULNERABILITY_AGE:
            confidence = max(MIN_CONFIDENCE, confidence - OLD_VULNERABILITY_PENALTY)
            reason += " (old vulnerability)"

        severity = (raw.severity or "").strip().upper()
        if severity not in _KNOWN_SEVERITIES:
            severity = _DEFAULT_SEVERITY

        return VulnerabilityMatch(
            id=raw.id,
            severity=severity,
            cvss_score=raw.cvss_score,
            description=raw.summary,
            published=raw.published,
            affected_range=raw.affected_range,
            fixed_version=raw.fixed_version,
            confidence=confidence,
            match_reason=reason,
            source=source_name,
            cisa_kev=raw.cisa_kev,
            epss_score=raw.epss_score,
        )

    async def correlate(self, component: NormalizedComponent) -> ComponentVulnerabilityReport:
        """Build the vulnerability report for one component. Source failures degrade to no results."""
        version = normalize_version(component.version)
        if version is None:
            logger.info(
                "Skipping correlation for component without a comparable version",
                extra={"component": component.name, "version": component.version},
            )
            return ComponentVulnerabilityReport(
                component=component,
                vulnerabilities=[],
                risk_score=0.0,
                version_status="unknown",
                recommended_action=f"Unable to assess {component.name}: no comparable version detected",
            )

        results = await asyncio.gather(
            *(s.query_by_component(component.ecosystem, component.name, version) for s in self.sources),
            return_exceptions=True,
        )
        now = self.clock()
        per_source: list[list[VulnerabilityMatch]] = []
        for source, result in zip(self.sources, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Vulnerability source failed; continuing without it",
                    extra={"source": source.name, "component": component.name, "error": str(result)},
                )
                continue
            matches = []
            for raw in result:
                if raw.fixed_version and is_version_patched(version, raw.fixed_version):
                    continue
                matches.append(self._to_match(raw, component, source.name, now))
            per_source.append(matches)

        merged = merge_matches(*per_source)
        status = determine_version_status(component, merged, now)
        report = ComponentVulnerabilityReport(
            component=component,
            vulnerabilities=merged,
            risk_score=component_risk_score(merged),
            version_status=status,
            recommended_action=recommend_action(component, merged, status),
        )
        logger.info(
            "Correlated component",
            extra={
                "component": component.name,
                "version": version,
                "match_count": len(merged),
                "risk_score": report.risk_score,
            },
        )
        return report

    async def correlate_many(
        self, components: Sequence[NormalizedComponent]
    ) -> list[ComponentVulnerabilityReport]:
        """Correlate components concurrently; output order matches input order."""
        return list(await asyncio.gather(*(self.correlate(c) for c in components)))
