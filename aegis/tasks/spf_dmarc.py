"""Email authentication posture: SPF and DMARC TXT records."""

import logging
from typing import TYPE_CHECKING

import dns.asyncresolver
import dns.exception
import dns.resolver

from aegis.schemas.evidence import SeverityLevel
from aegis.services.evidence_store import EvidenceStore
from aegis.tasks.base import FindingDraft, ScanTask, TaskContext

if TYPE_CHECKING:
    from aegis.core.config import Settings

logger = logging.getLogger(__name__)

RESOLVER_TIMEOUT = 5
RESOLVER_LIFETIME = 10


def _make_resolver() -> dns.asyncresolver.Resolver:
    r = dns.asyncresolver.Resolver()
    r.timeout = RESOLVER_TIMEOUT
    r.lifetime = RESOLVER_LIFETIME
    return r


async def query_txt(name: str, resolver: dns.asyncresolver.Resolver) -> list[str] | None:
    """TXT strings for name; [] when the name has none, None when the lookup was inconclusive."""
    try:
        answers = await resolver.resolve(name, "TXT")
    except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
        return []
    except dns.exception.DNSException as e:
        logger.info("TXT lookup inconclusive", extra={"name": name, "error": str(e)})
        return None
    return [b"".join(rdata.strings).decode("utf-8", errors="replace") for rdata in answers]


def parse_dmarc_tags(record: str) -> dict[str, str]:
    tags: dict[str, str] = {}
    for part in record.split(";"):
        part = part.strip()
        if "=" in part:
            key, val = part.split("=", 1)
            tags[key.strip().lower()] = val.strip()
    return tags


class SpfDmarcTask(ScanTask):
    name = "spf_dmarc"

    def __init__(
        self,
        evidence: EvidenceStore,
        settings: "Settings",
        resolver: dns.asyncresolver.Resolver | None = None,
    ) -> None:
        super().__init__(evidence, settings)
        self.resolver = resolver

    def _issue(self, context: TaskContext, severity: SeverityLevel, title: str, record: str | None, recommendation: str) -> None:
        self.record(
            context,
            "email-security",
            severity,
            f"{title} on {context.domain}",
            meta={"record": record, "issue": title},
            finding=FindingDraft(
                finding_type="EMAIL_SECURITY_MISCONFIGURATION",
                recommendation=recommendation,
                description=f"{title}: {record}" if record else title,
                repro_command=f"dig TXT {context.domain} +short",
            ),
        )

    async def _check_spf(self, context: TaskContext, resolver: dns.asyncresolver.Resolver) -> int:
        records = await query_txt(context.domain, resolver)
        if records is None:
            return 0
        spf = [r for r in records if r.lower().startswith("v=spf1")]
        if not spf:
            self._issue(
                context, "MEDIUM", "No SPF record", None,
                "Add a TXT record starting with 'v=spf1' listing authorized mail senders.",
            )
            return 1
        record = spf[0]
        if len(spf) > 1:
            self._issue(context, "MEDIUM", "Multiple SPF records", record, "Merge all SPF records into a single TXT record.")
            return 1
        terms = record.lower().split()
        if "+all" in terms or "all" in terms:
            self._issue(context, "HIGH", "SPF allows any sender (+all)", record, "Replace +all with -all or ~all.")
            return 1
        if "?all" in terms:
            self._issue(context, "LOW", "SPF neutral policy (?all)", record, "Use -all or ~all so receivers reject spoofed mail.")
            return 1
        return 0

    async def _check_dmarc(self, context: TaskContext, resolver: dns.asyncresolver.Resolver) -> int:
        records = await query_txt(f"_dmarc.{context.domain}", resolver)
        if records is None:
            return 0
        dmarc = [r for r in records if r.lower().startswith("v=dmarc1")]
        if not dmarc:
            self._issue(
                context, "MEDIUM", "No DMARC record", None,
                f"Add a TXT record at _dmarc.{context.domain} starting with 'v=DMARC1'.",
            )
            return 1
        record = dmarc[0]
        policy = parse_dmarc_tags(record).get("p", "").lower()
        if policy in ("", "none"):
            self._issue(
                context, "LOW", "DMARC policy is monitor-only (p=none)", record,
                "Move the DMARC policy to p=quarantine or p=reject once reports are clean.",
            )
            return 1
        return 0

    async def run(self, context: TaskContext) -> int:
        resolver = self.resolver or _make_resolver()
        count = await self._check_spf(context, resolver)
        count += await self._check_dmarc(context, resolver)
        logger.info("SPF/DMARC check completed", extra={"scan_id": context.scan_id, "issue_count": count})
        return count
