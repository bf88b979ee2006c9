"""ORM models for scan evidence: immutable artifacts and the findings derived from them."""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from aegis.models.base import Base

# JSONB on Postgres; plain JSON elsewhere (SQLite in tests).
MetaJSON = JSON().with_variant(JSONB(), "postgresql")


class Artifact(Base):
    """
    One discrete piece of evidence collected by a task. Append-only.

    scan_id, task_name and run_id duplicate meta["scan_id"], meta["task"] and meta["run_id"] so that
    per-scan aggregates can use plain indexed columns.
    """

    __tablename__ = "artifacts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String(64), nullable=False, index=True)
    val_text = Column(Text, nullable=False)
    severity = Column(String(20), nullable=False, index=True)
    src_url = Column(Text, nullable=True)
    sha256 = Column(String(64), nullable=True)
    mime = Column(String(100), nullable=True)
    meta = Column(MetaJSON, nullable=False, default=dict)
    scan_id = Column(String(255), nullable=False, index=True)
    task_name = Column(String(100), nullable=False, index=True)
    run_id = Column(String(32), nullable=True, index=True)
    is_error = Column(Boolean, nullable=False, default=False)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    findings = relationship("Finding", back_populates="artifact")


class Finding(Base):
    """Remediation-oriented derivative of exactly one artifact."""

    __tablename__ = "findings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    artifact_id = Column(
        Integer,
        ForeignKey("artifacts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    finding_type = Column(String(64), nullable=False, index=True)
    recommendation = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    repro_command = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    artifact = relationship("Artifact", back_populates="findings")
