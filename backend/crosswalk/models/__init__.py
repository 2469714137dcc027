"""Database models."""

from crosswalk.models.compliance import (
    ChainStatus,
    ComplianceChain,
    ComplianceStatus,
    ConfidenceLevel,
    Control,
    ControlAssessment,
    ControlMapping,
    Evidence,
    Framework,
    MappingType,
    OverlapLevel,
)

__all__ = [
    "ChainStatus",
    "ComplianceChain",
    "ComplianceStatus",
    "ConfidenceLevel",
    "Control",
    "ControlAssessment",
    "ControlMapping",
    "Evidence",
    "Framework",
    "MappingType",
    "OverlapLevel",
]
