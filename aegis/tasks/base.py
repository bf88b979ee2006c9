"""Task adapter contract: every scanning task is a ScanTask with a stable name and an async run()."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

from aegis.schemas.evidence import META_RUN_ID, META_SCAN_ID, META_TASK, ArtifactInput, SeverityLevel
from aegis.services.evidence_store import EvidenceStore

if TYPE_CHECKING:
    from aegis.core.config import Settings

logger = logging.getLogger(__name__)

# Artifact type the correlator reads components from.
TECH_COMPONENT_TYPE = "tech-component"


@dataclass(frozen=True)
class TaskContext:
    """What a task is told about the scan it runs in."""

    domain: str
    organization_name: str
    scan_id: str
    run_id: str | None = None


@dataclass(frozen=True)
class FindingDraft:
    """A finding to attach to the artifact being recorded."""

    finding_type: str
    recommendation: str
    description: str
    repro_command: str | None = None


class ScanTask(ABC):
    """
    One independent probe of the target.

    run() returns how many pieces of evidence it recorded. Expected conditions
    (missing API key, host unreachable, no DNS records) are logged and yield 0;
    anything raised is treated as a task failure by the orchestrator.
    """

    name: ClassVar[str]

    def __init__(self, evidence: EvidenceStore, settings: "Settings") -> None:
        self.evidence = evidence
        self.settings = settings

    @abstractmethod
    async def run(self, context: TaskContext) -> int: ...

    def record(
        self,
        context: TaskContext,
        artifact_type: str,
        severity: SeverityLevel,
        val_text: str,
        src_url: str | None = None,
        meta: dict[str, Any] | None = None,
        finding: FindingDraft | None = None,
    ) -> int:
        """Write one artifact (meta stamped with scan id, task name and run id) and its optional finding."""
        stamped = dict(meta or {})
        stamped[META_SCAN_ID] = context.scan_id
        stamped[META_TASK] = self.name
        if context.run_id is not None:
            stamped[META_RUN_ID] = context.run_id
        artifact_id = self.evidence.insert_artifact(
            ArtifactInput(
                type=artifact_type,
                severity=severity,
                val_text=val_text,
                src_url=src_url,
                meta=stamped,
            )
        )
        if finding is not None:
            self.evidence.insert_finding(
                artifact_id,
                finding.finding_type,
                finding.recommendation,
                finding.description,
                repro_command=finding.repro_command,
            )
        return artifact_id

    def record_component(
        self,
        context: TaskContext,
        name: str,
        version: str | None,
        src_url: str | None = None,
        ecosystem: str | None = None,
        vendor: str | None = None,
        cpe: str | None = None,
    ) -> int:
        """Record a detected software component for vulnerability correlation."""
        label = f"{name} {version}" if version else name
        return self.record(
            context,
            TECH_COMPONENT_TYPE,
            "INFO",
            label,
            src_url=src_url,
            meta={"name": name, "version": version, "ecosystem": ecosystem, "vendor": vendor, "cpe": cpe},
        )
