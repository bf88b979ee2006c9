"""ORM model for the financial risk assessment computed at the end of a scan."""

from sqlalchemy import Column, DateTime, Float, ForeignKey, String, func

from aegis.models.artifact import MetaJSON
from aegis.models.base import Base


class RiskAssessment(Base):
    """Serialized FinancialImpactCalculation for one scan; replaced when the scan is re-run."""

    __tablename__ = "risk_assessments"

    scan_id = Column(
        String(255),
        ForeignKey("scans.scan_id", ondelete="CASCADE"),
        primary_key=True,
    )
    expected_value = Column(Float, nullable=False)
    calculation = Column(MetaJSON, nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
