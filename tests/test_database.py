"""Unit tests for aegis.core.database: worker session scope and connectivity check."""

import unittest
from unittest.mock import MagicMock

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from aegis.core.database import check_db_connected, session_scope
from aegis.models import Base, Scan


class TestSessionScope(unittest.TestCase):
    def setUp(self) -> None:
        engine = create_engine("sqlite://")
        Base.metadata.create_all(engine)
        self.factory = sessionmaker(bind=engine)

    def test_pending_changes_rolled_back_on_error(self) -> None:
        with self.assertRaises(RuntimeError):
            with session_scope(self.factory) as db:
                db.add(Scan(scan_id="scan-1", organization_name="Acme", domain="acme.com"))
                db.flush()
                raise RuntimeError("worker crashed")
        with self.factory() as db:
            self.assertIsNone(db.get(Scan, "scan-1"))

    def test_committed_changes_survive(self) -> None:
        with session_scope(self.factory) as db:
            db.add(Scan(scan_id="scan-1", organization_name="Acme", domain="acme.com"))
            db.commit()
        with self.factory() as db:
            self.assertEqual(db.get(Scan, "scan-1").status, "queued")


class TestCheckDbConnected(unittest.TestCase):
    def test_connected(self) -> None:
        db = sessionmaker(bind=create_engine("sqlite://"))()
        self.assertTrue(check_db_connected(db))

    def test_disconnected(self) -> None:
        db = MagicMock()
        db.execute.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))
        self.assertFalse(check_db_connected(db))


if __name__ == "__main__":
    unittest.main()
