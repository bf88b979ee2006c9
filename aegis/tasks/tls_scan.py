"""TLS posture: certificate validity and expiry, negotiated protocol version."""

import asyncio
import logging
import ssl
import time
from dataclasses import dataclass

from aegis.tasks.base import FindingDraft, ScanTask, TaskContext

logger = logging.getLogger(__name__)

TLS_PORT = 443
CONNECT_TIMEOUT_SEC = 10.0
EXPIRY_WARNING_DAYS = 30
EXPIRY_CRITICAL_DAYS = 7
WEAK_PROTOCOLS = frozenset({"SSLv3", "TLSv1", "TLSv1.1"})


@dataclass(frozen=True)
class TlsProbe:
    protocol: str | None
    not_after: str | None
    verify_error: str | None = None


async def probe_tls(host: str, port: int = TLS_PORT, timeout: float = CONNECT_TIMEOUT_SEC) -> TlsProbe:
    """Handshake with full verification; a verification failure is reported, not raised."""
    context = ssl.create_default_context()
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port, ssl=context, server_hostname=host),
            timeout=timeout,
        )
    except ssl.SSLCertVerificationError as e:
        return TlsProbe(protocol=None, not_after=None, verify_error=e.verify_message or str(e))
    ssl_object = writer.get_extra_info("ssl_object")
    cert = writer.get_extra_info("peercert") or {}
    protocol = ssl_object.version() if ssl_object is not None else None
    writer.close()
    return TlsProbe(protocol=protocol, not_after=cert.get("notAfter"))


class TlsScanTask(ScanTask):
    name = "tls_scan"

    async def run(self, context: TaskContext) -> int:
        host = context.domain
        src_url = f"https://{host}"
        try:
            probe = await probe_tls(host)
        except (OSError, asyncio.TimeoutError) as e:
            logger.info("TLS endpoint unreachable", extra={"scan_id": context.scan_id, "host": host, "error": str(e)})
            return 0

        count = 0
        if probe.verify_error:
            self.record(
                context,
                "weak-tls",
                "HIGH",
                f"Certificate verification failed for {host}: {probe.verify_error}",
                src_url=src_url,
                meta={"host": host, "verify_error": probe.verify_error},
                finding=FindingDraft(
                    finding_type="TLS_CONFIGURATION_ISSUE",
                    recommendation="Install a certificate issued by a trusted CA that covers this hostname.",
                    description=probe.verify_error,
                    repro_command=f"openssl s_client -connect {host}:{TLS_PORT} -servername {host}",
                ),
            )
            return 1

        if probe.protocol in WEAK_PROTOCOLS:
            self.record(
                context,
                "weak-tls",
                "MEDIUM",
                f"{host} negotiated deprecated protocol {probe.protocol}",
                src_url=src_url,
                meta={"host": host, "protocol": probe.protocol},
                finding=FindingDraft(
                    finding_type="TLS_CONFIGURATION_ISSUE",
                    recommendation="Disable SSLv3, TLS 1.0 and TLS 1.1; require TLS 1.2 or newer.",
                    description=f"Server accepted {probe.protocol}",
                ),
            )
            count += 1

        if probe.not_after:
            days_left = int((ssl.cert_time_to_seconds(probe.not_after) - time.time()) // 86400)
            if days_left <= EXPIRY_WARNING_DAYS:
                severity = "HIGH" if days_left <= EXPIRY_CRITICAL_DAYS else "MEDIUM"
                self.record(
                    context,
                    "tls-expiring",
                    severity,
                    f"Certificate for {host} expires in {days_left} days",
                    src_url=src_url,
                    meta={"host": host, "not_after": probe.not_after, "days_left": days_left},
                    finding=FindingDraft(
                        finding_type="CERTIFICATE_EXPIRY",
                        recommendation="Renew the certificate and automate renewal.",
                        description=f"Certificate valid until {probe.not_after}",
                    ),
                )
                count += 1
        logger.info(
            "TLS scan completed",
            extra={"scan_id": context.scan_id, "protocol": probe.protocol, "evidence_count": count},
        )
        return count
