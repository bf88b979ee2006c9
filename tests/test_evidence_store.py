"""Unit tests for aegis.services.evidence_store: referential integrity, error exclusion and per-scan aggregates."""

import unittest

from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from aegis.core.errors import DataIntegrityError
from aegis.models import Artifact, Base
from aegis.schemas.evidence import ArtifactInput
from aegis.services.evidence_store import EvidenceStore


def _session() -> Session:
    """Fresh in-memory SQLite database with every table created."""
    engine = create_engine("sqlite://")
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)()


def _artifact(
    scan_id: str = "scan-1",
    task: str = "shodan",
    artifact_type: str = "exposed-service",
    severity: str = "MEDIUM",
    **kwargs: object,
) -> ArtifactInput:
    """Build a minimal ArtifactInput for tests."""
    meta = dict(kwargs.pop("meta", {}) or {})  # type: ignore[arg-type]
    meta.setdefault("scan_id", scan_id)
    meta.setdefault("task", task)
    defaults = {"val_text": f"{artifact_type} evidence", "src_url": None}
    defaults.update(kwargs)
    return ArtifactInput(type=artifact_type, severity=severity, meta=meta, **defaults)


class TestArtifactInputValidation(unittest.TestCase):
    """ArtifactInput requires scan_id and task in meta and normalizes severity."""

    def test_missing_scan_id_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            ArtifactInput(type="x", severity="LOW", val_text="v", meta={"task": "shodan"})

    def test_missing_task_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            ArtifactInput(type="x", severity="LOW", val_text="v", meta={"scan_id": "s"})

    def test_unknown_severity_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            _artifact(severity="SEVERE")

    def test_lowercase_severity_normalized(self) -> None:
        self.assertEqual(_artifact(severity=" high ").severity, "HIGH")


class TestInsert(unittest.TestCase):
    """insert_artifact persists denormalized columns; insert_finding enforces the artifact reference."""

    def setUp(self) -> None:
        self.session = _session()
        self.store = EvidenceStore(self.session)

    def tearDown(self) -> None:
        self.session.close()

    def test_insert_artifact_denormalizes_scan_and_task(self) -> None:
        artifact_id = self.store.insert_artifact(_artifact(scan_id="scan-9", task="tls_scan"))
        row = self.session.get(Artifact, artifact_id)
        self.assertEqual(row.scan_id, "scan-9")
        self.assertEqual(row.task_name, "tls_scan")
        self.assertFalse(row.is_error)
        self.assertIsNotNone(row.created_at)

    def test_scan_error_type_marked_as_error(self) -> None:
        artifact_id = self.store.insert_artifact(_artifact(artifact_type="scan_error"))
        self.assertTrue(self.session.get(Artifact, artifact_id).is_error)

    def test_meta_error_marked_as_error(self) -> None:
        artifact_id = self.store.insert_artifact(_artifact(meta={"error": "timeout"}))
        self.assertTrue(self.session.get(Artifact, artifact_id).is_error)

    def test_identical_inserts_are_not_deduplicated(self) -> None:
        first = self.store.insert_artifact(_artifact())
        second = self.store.insert_artifact(_artifact())
        self.assertNotEqual(first, second)
        self.assertEqual(self.store.count_artifacts("scan-1"), 2)

    def test_insert_finding_for_existing_artifact(self) -> None:
        artifact_id = self.store.insert_artifact(_artifact())
        finding_id = self.store.insert_finding(artifact_id, "EXPOSED_SERVICE", "Close it", "Port 22 open")
        self.assertIsInstance(finding_id, int)
        self.assertEqual(self.store.count_findings("scan-1"), 1)

    def test_insert_finding_for_missing_artifact_raises(self) -> None:
        with self.assertRaises(DataIntegrityError):
            self.store.insert_finding(999, "EXPOSED_SERVICE", "Close it", "Port 22 open")
        self.assertEqual(self.store.count_findings("scan-1"), 0)


class TestAggregates(unittest.TestCase):
    """Aggregates are scoped to one scan (optionally one run of it) and exclude diagnostic artifacts."""

    def setUp(self) -> None:
        self.session = _session()
        self.store = EvidenceStore(self.session)

    def tearDown(self) -> None:
        self.session.close()

    def test_count_excludes_errors_and_other_scans(self) -> None:
        self.store.insert_artifact(_artifact())
        self.store.insert_artifact(_artifact(artifact_type="weak-tls"))
        self.store.insert_artifact(_artifact(artifact_type="scan_error", severity="CRITICAL"))
        self.store.insert_artifact(_artifact(artifact_type="scan_warning"))
        self.store.insert_artifact(_artifact(scan_id="scan-2"))
        self.assertEqual(self.store.count_artifacts("scan-1"), 2)
        self.assertEqual(self.store.count_artifacts("scan-2"), 1)
        self.assertEqual(self.store.count_artifacts("scan-3"), 0)

    def test_max_severity_none_when_empty(self) -> None:
        self.assertIsNone(self.store.max_severity("scan-1"))

    def test_max_severity_picks_highest_rank(self) -> None:
        self.store.insert_artifact(_artifact(severity="INFO"))
        self.store.insert_artifact(_artifact(severity="HIGH"))
        self.store.insert_artifact(_artifact(severity="LOW"))
        self.assertEqual(self.store.max_severity("scan-1"), "HIGH")

    def test_max_severity_ignores_error_artifacts(self) -> None:
        self.store.insert_artifact(_artifact(severity="LOW"))
        self.store.insert_artifact(_artifact(artifact_type="scan_error", severity="CRITICAL"))
        self.assertEqual(self.store.max_severity("scan-1"), "LOW")

    def test_count_with_source_by_task(self) -> None:
        self.store.insert_artifact(_artifact(task="shodan", src_url="https://www.shodan.io/host/1.2.3.4"))
        self.store.insert_artifact(_artifact(task="shodan", src_url=None))
        self.store.insert_artifact(_artifact(task="tls_scan", src_url="https://example.com"))
        self.assertEqual(self.store.count_with_source_by_task("scan-1", "shodan"), 1)
        self.assertEqual(self.store.count_with_source_by_task("scan-1", "tls_scan"), 1)
        self.assertEqual(self.store.count_with_source_by_task("scan-1", "dns_twist"), 0)

    def test_list_artifacts_filters_by_type(self) -> None:
        self.store.insert_artifact(_artifact(artifact_type="tech-component", severity="INFO"))
        self.store.insert_artifact(_artifact())
        rows = self.store.list_artifacts("scan-1", "tech-component")
        self.assertEqual([r.type for r in rows], ["tech-component"])
        self.assertEqual(len(self.store.list_artifacts("scan-1")), 2)

    def test_list_findings_most_severe_first(self) -> None:
        low = self.store.insert_artifact(_artifact(severity="LOW"))
        critical = self.store.insert_artifact(_artifact(artifact_type="exposed-database", severity="CRITICAL"))
        self.store.insert_finding(low, "EXPOSED_SERVICE", "r", "low one")
        self.store.insert_finding(critical, "EXPOSED_DATABASE", "r", "critical one")
        findings = self.store.list_findings("scan-1")
        self.assertEqual([f.severity for f in findings], ["CRITICAL", "LOW"])
        self.assertEqual(findings[0].artifact_type, "exposed-database")
        self.assertEqual(findings[0].artifact_id, critical)

    def test_summarize_by_type_counts_and_worst_severity(self) -> None:
        self.store.insert_artifact(_artifact(artifact_type="typo-domain", severity="MEDIUM"))
        self.store.insert_artifact(_artifact(artifact_type="exposed-database", severity="HIGH"))
        self.store.insert_artifact(_artifact(artifact_type="typo-domain", severity="HIGH"))
        self.store.insert_artifact(_artifact(artifact_type="scan_error", severity="CRITICAL"))
        summaries = self.store.summarize_by_type("scan-1")
        self.assertEqual(
            [(s.type, s.severity, s.count) for s in summaries],
            [("typo-domain", "HIGH", 2), ("exposed-database", "HIGH", 1)],
        )

    def test_run_id_narrows_aggregates_to_one_run(self) -> None:
        self.store.insert_artifact(_artifact(artifact_type="exposed-database", severity="CRITICAL", meta={"run_id": "run-a"}))
        self.store.insert_artifact(_artifact(artifact_type="exposed-database", severity="HIGH", meta={"run_id": "run-b"}))
        self.store.insert_artifact(_artifact(artifact_type="weak-tls", severity="LOW", meta={"run_id": "run-b"}))
        self.assertEqual(self.store.count_artifacts("scan-1"), 3)
        self.assertEqual(self.store.count_artifacts("scan-1", "run-b"), 2)
        self.assertEqual(self.store.max_severity("scan-1", "run-b"), "HIGH")
        self.assertEqual(
            [(s.type, s.severity, s.count) for s in self.store.summarize_by_type("scan-1", "run-b")],
            [("exposed-database", "HIGH", 1), ("weak-tls", "LOW", 1)],
        )
        self.assertEqual(len(self.store.list_artifacts("scan-1", "exposed-database", run_id="run-a")), 1)


if __name__ == "__main__":
    unittest.main()
