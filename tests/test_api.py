"""API tests for aegis.api.v1: health, scan creation and the scan read endpoints, with DB and queue overridden."""

import unittest
from unittest.mock import AsyncMock, patch

from fastapi.concurrency import run_in_threadpool
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from aegis.api.v1.scans import _insert_queued_scan, _mark_enqueue_failed
from aegis.core.database import check_db_connected, get_db
from aegis.core.errors import ExternalServiceError
from aegis.main import app
from aegis.models import Base, RiskAssessment, Scan
from aegis.schemas.evidence import ArtifactInput, FindingSummary
from aegis.schemas.risk import OrganizationProfile
from aegis.services.evidence_store import EvidenceStore
from aegis.services.queue import get_queue
from aegis.services.risk_aggregator import calculate_financial_impact

PREFIX = "/api/v1"


class _ApiCase(unittest.TestCase):
    def setUp(self) -> None:
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(engine)
        self.SessionLocal = sessionmaker(bind=engine, autoflush=False)
        self.queue = AsyncMock()
        self.queue.ping.return_value = True

        def override_db():
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_db
        app.dependency_overrides[get_queue] = lambda: self.queue
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def _add_scan(self, scan_id: str = "scan-1", status: str = "done", **kwargs: object) -> None:
        with self.SessionLocal() as db:
            db.add(
                Scan(
                    scan_id=scan_id,
                    organization_name="Acme Corp",
                    domain="acme.com",
                    status=status,
                    progress=100 if status == "done" else 0,
                    total_tasks=6,
                    total_findings_count=0,
                    **kwargs,
                )
            )
            db.commit()


class TestRoot(_ApiCase):
    def test_discovery_payload(self) -> None:
        resp = self.client.get("/")
        self.assertEqual(resp.json()["scans"], f"{PREFIX}/scans")


class TestHealth(_ApiCase):
    def test_reports_connectivity(self) -> None:
        resp = self.client.get(f"{PREFIX}/health/")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual((body["status"], body["database"], body["queue"]), ("ok", "connected", "connected"))

    def test_queue_down(self) -> None:
        self.queue.ping.return_value = False
        resp = self.client.get(f"{PREFIX}/health/")
        self.assertEqual(resp.json()["queue"], "disconnected")

    def test_database_check_runs_off_the_event_loop(self) -> None:
        threadpool = AsyncMock(side_effect=run_in_threadpool)
        with patch("aegis.api.v1.health.run_in_threadpool", threadpool):
            resp = self.client.get(f"{PREFIX}/health/")
        self.assertEqual(resp.json()["database"], "connected")
        self.assertIs(threadpool.await_args.args[0], check_db_connected)


class TestCreateScan(_ApiCase):
    def test_creates_queued_scan_and_enqueues(self) -> None:
        resp = self.client.post(
            f"{PREFIX}/scans",
            json={
                "organization_name": "Acme Corp",
                "domain": "https://Acme.com/about",
                "profile": {"industry": "healthcare", "employee_count": 150},
            },
        )
        self.assertEqual(resp.status_code, 201)
        body = resp.json()
        self.assertEqual(body["status"], "queued")
        self.assertEqual(body["domain"], "acme.com")
        self.assertEqual(body["progress"], 0)
        self.assertEqual(body["total_tasks"], 6)

        job = self.queue.enqueue.await_args.args[0]
        self.assertEqual(job.scan_id, body["scan_id"])
        self.assertEqual(job.profile.industry, "healthcare")

    def test_invalid_domain_rejected(self) -> None:
        resp = self.client.post(f"{PREFIX}/scans", json={"organization_name": "Acme", "domain": "localhost"})
        self.assertEqual(resp.status_code, 422)
        self.queue.enqueue.assert_not_awaited()

    def test_queue_unavailable(self) -> None:
        self.queue.enqueue.side_effect = ExternalServiceError("queue", "enqueue failed: connection refused")
        resp = self.client.post(f"{PREFIX}/scans", json={"organization_name": "Acme", "domain": "acme.com"})
        self.assertEqual(resp.status_code, 503)
        with self.SessionLocal() as db:
            scans = db.query(Scan).all()
            self.assertEqual([s.status for s in scans], ["failed"])

    def test_database_writes_run_off_the_event_loop(self) -> None:
        self.queue.enqueue.side_effect = ExternalServiceError("queue", "enqueue failed: connection refused")
        threadpool = AsyncMock(side_effect=run_in_threadpool)
        with patch("aegis.api.v1.scans.run_in_threadpool", threadpool):
            resp = self.client.post(f"{PREFIX}/scans", json={"organization_name": "Acme", "domain": "acme.com"})
        self.assertEqual(resp.status_code, 503)
        self.assertEqual(
            [c.args[0] for c in threadpool.await_args_list],
            [_insert_queued_scan, _mark_enqueue_failed],
        )


class TestReadScan(_ApiCase):
    def test_get_scan(self) -> None:
        self._add_scan(max_severity="HIGH")
        resp = self.client.get(f"{PREFIX}/scans/scan-1")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["max_severity"], "HIGH")

    def test_get_missing_scan(self) -> None:
        resp = self.client.get(f"{PREFIX}/scans/nope")
        self.assertEqual(resp.status_code, 404)

    def test_findings_most_severe_first(self) -> None:
        self._add_scan()
        with self.SessionLocal() as db:
            store = EvidenceStore(db)
            for severity in ("LOW", "CRITICAL"):
                artifact_id = store.insert_artifact(
                    ArtifactInput(
                        type="exposed-service",
                        severity=severity,
                        val_text=f"{severity} service",
                        meta={"scan_id": "scan-1", "task": "shodan"},
                    )
                )
                store.insert_finding(artifact_id, "EXPOSED_SERVICE", "Close the port", f"{severity} finding")
        resp = self.client.get(f"{PREFIX}/scans/scan-1/findings")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([f["severity"] for f in resp.json()], ["CRITICAL", "LOW"])

    def test_findings_limited_to_latest_run(self) -> None:
        self._add_scan(run_id="run-b")
        with self.SessionLocal() as db:
            store = EvidenceStore(db)
            for run_id in ("run-a", "run-b"):
                artifact_id = store.insert_artifact(
                    ArtifactInput(
                        type="exposed-database",
                        severity="HIGH",
                        val_text=f"database seen in {run_id}",
                        meta={"scan_id": "scan-1", "task": "db_port_scan", "run_id": run_id},
                    )
                )
                store.insert_finding(artifact_id, "EXPOSED_DATABASE", "Firewall it", f"{run_id} finding")
        resp = self.client.get(f"{PREFIX}/scans/scan-1/findings")
        self.assertEqual([f["description"] for f in resp.json()], ["run-b finding"])


class TestScanRisk(_ApiCase):
    def test_risk_assessment(self) -> None:
        self._add_scan()
        calculation = calculate_financial_impact(
            [FindingSummary(type="exposed-database", severity="HIGH", count=1)],
            OrganizationProfile(industry="healthcare", employee_count=150),
        )
        with self.SessionLocal() as db:
            db.add(
                RiskAssessment(
                    scan_id="scan-1",
                    expected_value=calculation.expected_value,
                    calculation=calculation.model_dump(mode="json"),
                )
            )
            db.commit()
        resp = self.client.get(f"{PREFIX}/scans/scan-1/risk")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["financial_range"], "$65K - $120K")
        self.assertEqual(body["calculation"]["risk_factors"], ["EXPOSED_DATABASE"])
        self.assertIn("Data Sources", body["justification"])

    def test_failed_scan_conflict(self) -> None:
        self._add_scan(status="failed", error_message="Critical task shodan failed: 401")
        resp = self.client.get(f"{PREFIX}/scans/scan-1/risk")
        self.assertEqual(resp.status_code, 409)
        self.assertIn("shodan", resp.json()["detail"])

    def test_no_assessment_yet(self) -> None:
        self._add_scan(status="processing")
        resp = self.client.get(f"{PREFIX}/scans/scan-1/risk")
        self.assertEqual(resp.status_code, 404)

    def test_missing_scan(self) -> None:
        resp = self.client.get(f"{PREFIX}/scans/nope/risk")
        self.assertEqual(resp.status_code, 404)


if __name__ == "__main__":
    unittest.main()
