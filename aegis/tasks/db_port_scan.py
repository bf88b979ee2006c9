"""TCP connect check for database ports on the target host."""

import asyncio
import logging

from aegis.tasks.base import FindingDraft, ScanTask, TaskContext

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SEC = 3.0

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


async def is_port_open(host: str, port: int, timeout: float = CONNECT_TIMEOUT_SEC) -> bool:
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    return True


class DbPortScanTask(ScanTask):
    name = "db_port_scan"

    async def run(self, context: TaskContext) -> int:
        host = context.domain
        ports = sorted(DATABASE_PORTS)
        results = await asyncio.gather(*(is_port_open(host, p) for p in ports))

        count = 0
        for port, is_open in zip(ports, results):
            if not is_open:
                continue
            engine = DATABASE_PORTS[port]
            self.record(
                context,
                "exposed-database",
                "HIGH",
                f"{engine} port {port} open on {host}",
                meta={"host": host, "port": port, "engine": engine},
                finding=FindingDraft(
                    finding_type="EXPOSED_DATABASE",
                    recommendation=f"Firewall port {port} and restrict {engine} to private networks.",
                    description=f"{engine} accepts TCP connections from the internet on {host}:{port}",
                    repro_command=f"nc -vz {host} {port}",
                ),
            )
            count += 1
        logger.info("Database port scan completed", extra={"scan_id": context.scan_id, "open_ports": count})
        return count
