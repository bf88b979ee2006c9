"""ORM model for the scan lifecycle record owned by the orchestrator."""

from sqlalchemy import Column, DateTime, Integer, String, Text, func

from aegis.models.base import Base


class Scan(Base):
    """
    One due-diligence scan of an organization's external footprint.

    Written only by the worker that dequeued the job. version is the ORM's
    optimistic-concurrency column: a write based on a stale read raises
    StaleDataError instead of silently overwriting another writer.
    """

    __tablename__ = "scans"

    scan_id = Column(String(255), primary_key=True)
    organization_name = Column(String(255), nullable=False)
    domain = Column(String(255), nullable=False, index=True)
    status = Column(String(32), nullable=False, default="queued", index=True)
    progress = Column(Integer, nullable=False, default=0)
    current_task = Column(String(100), nullable=True)
    total_tasks = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    total_findings_count = Column(Integer, nullable=False, default=0)
    max_severity = Column(String(20), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        index=True,
    )
    # Identifies the current run; re-runs get a fresh id and only count their own evidence.
    run_id = Column(String(32), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}
