"""SQLAlchemy ORM models."""

from aegis.models.artifact import Artifact, Finding
from aegis.models.base import Base
from aegis.models.risk_assessment import RiskAssessment
from aegis.models.scan import Scan

__all__ = ["Artifact", "Base", "Finding", "RiskAssessment", "Scan"]
