"""Scanning task adapters and the registry the worker builds its task list from."""

from collections.abc import Sequence
from typing import TYPE_CHECKING

from aegis.services.evidence_store import EvidenceStore
from aegis.tasks.base import TECH_COMPONENT_TYPE, FindingDraft, ScanTask, TaskContext
from aegis.tasks.db_port_scan import DbPortScanTask
from aegis.tasks.dns_twist import DnsTwistTask
from aegis.tasks.shodan import ShodanTask
from aegis.tasks.spf_dmarc import SpfDmarcTask
from aegis.tasks.tech_stack import TechStackTask
from aegis.tasks.tls_scan import TlsScanTask

if TYPE_CHECKING:
    from aegis.core.config import Settings

TASK_REGISTRY: dict[str, type[ScanTask]] = {
    cls.name: cls
    for cls in (ShodanTask, DnsTwistTask, DbPortScanTask, TlsScanTask, SpfDmarcTask, TechStackTask)
}

# Order matters: progress is reported against this list and critical tasks run first.
DEFAULT_TASK_ORDER: tuple[str, ...] = (
    "shodan",
    "dns_twist",
    "db_port_scan",
    "tls_scan",
    "spf_dmarc",
    "tech_stack",
)


def build_tasks(
    evidence: EvidenceStore,
    settings: "Settings",
    names: Sequence[str] = DEFAULT_TASK_ORDER,
) -> list[ScanTask]:
    """Instantiate tasks in the given order. Unknown names raise ValueError."""
    unknown = [n for n in names if n not in TASK_REGISTRY]
    if unknown:
        raise ValueError(f"Unknown task(s): {', '.join(unknown)}")
    return [TASK_REGISTRY[n](evidence, settings) for n in names]


__all__ = [
    "DEFAULT_TASK_ORDER",
    "FindingDraft",
    "ScanTask",
    "TASK_REGISTRY",
    "TECH_COMPONENT_TYPE",
    "TaskContext",
    "build_tasks",
]
