"""Compliance framework models.

Frameworks, their hierarchical controls, curated cross-framework control
mappings and the organisation-scoped records (compliance chains, evidence,
control assessments) the gap-analysis engine reads.

Reference data (frameworks, controls, mappings) is seeded administratively.
The engine only reads these tables.
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crosswalk.core.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConfidenceLevel(str, enum.Enum):
    """Confidence that two controls express the same requirement."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class MappingType(str, enum.Enum):
    """Relation between a source control and a target control."""

    EQUIVALENT = "EQUIVALENT"
    PARTIAL = "PARTIAL"
    RELATED = "RELATED"
    SUPERSET = "SUPERSET"  # source covers more than target
    SUBSET = "SUBSET"  # source covers less than target


class ChainStatus(str, enum.Enum):
    """Status an organisation assigns to its own compliance chain."""

    COMPLETE = "COMPLETE"
    PARTIAL = "PARTIAL"
    MISSING = "MISSING"


class ComplianceStatus(str, enum.Enum):
    """Derived per-control compliance status for one organisation."""

    COMPLIANT = "COMPLIANT"
    PARTIAL = "PARTIAL"
    NON_COMPLIANT = "NON_COMPLIANT"
    NOT_ASSESSED = "NOT_ASSESSED"

    @property
    def rank(self) -> int:
        """Fixed sort rank: NOT_ASSESSED < NON_COMPLIANT < PARTIAL < COMPLIANT."""
        return _STATUS_RANK[self]


_STATUS_RANK = {
    ComplianceStatus.NOT_ASSESSED: 0,
    ComplianceStatus.NON_COMPLIANT: 1,
    ComplianceStatus.PARTIAL: 2,
    ComplianceStatus.COMPLIANT: 3,
}


class OverlapLevel(str, enum.Enum):
    """Classification of a framework pair cell in the overlap matrix."""

    MAPPED = "MAPPED"
    PARTIAL = "PARTIAL"
    UNMAPPED = "UNMAPPED"


class Framework(Base):
    """A versioned catalog of controls (e.g., ISO 27001, NIS2)."""

    __tablename__ = "frameworks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    short_name: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, index=True
    )  # e.g., "ISO-27001", "NIS2"
    version: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    category: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )

    controls = relationship(
        "Control", back_populates="framework", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Framework {self.short_name}: {self.name}>"


class Control(Base):
    """One clause of a framework, optionally nested under a parent control."""

    __tablename__ = "controls"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    framework_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("frameworks.id"), nullable=False, index=True
    )
    code: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Same framework only (chapter -> article -> sub-article)
    parent_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("controls.id"), nullable=True, index=True
    )
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    framework = relationship("Framework", back_populates="controls")

    def __repr__(self) -> str:
        return f"<Control {self.code}: {self.title}>"


class ControlMapping(Base):
    """Curated directed relation between controls of two frameworks.

    Several rows may link the same pair; each counts as separate evidence
    of how strongly the controls relate.
    """

    __tablename__ = "control_mappings"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    source_control_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("controls.id"), nullable=False, index=True
    )
    target_control_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("controls.id"), nullable=False, index=True
    )
    source_framework_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("frameworks.id"), nullable=False, index=True
    )
    target_framework_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("frameworks.id"), nullable=False, index=True
    )
    confidence: Mapped[ConfidenceLevel] = mapped_column(
        SQLEnum(ConfidenceLevel, native_enum=False), nullable=False
    )
    mapping_type: Mapped[MappingType] = mapped_column(
        SQLEnum(MappingType, native_enum=False), nullable=False
    )
    rationale: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<ControlMapping {self.source_control_id} -> {self.target_control_id} "
            f"({self.confidence})>"
        )


class ComplianceChain(Base):
    """An organisation's requirement -> policy -> control -> evidence trail.

    The status is assigned by the author and read as ground truth.
    """

    __tablename__ = "compliance_chains"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True
    )
    requirement: Mapped[str] = mapped_column(Text, nullable=False)
    policy_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    control_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("controls.id"), nullable=True, index=True
    )
    evidence_ids: Mapped[list] = mapped_column(JSON, default=list)
    status: Mapped[ChainStatus] = mapped_column(
        SQLEnum(ChainStatus, native_enum=False), nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )

    control = relationship("Control")

    def __repr__(self) -> str:
        return f"<ComplianceChain {self.id} [{self.status}]>"


class Evidence(Base):
    """Organisation-scoped evidence artifact (the file itself lives elsewhere)."""

    __tablename__ = "evidence"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True
    )
    filename: Mapped[str] = mapped_column(String(512), nullable=False)
    original_name: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )


class ControlAssessment(Base):
    """Outcome of an organisation's risk assessment against one control."""

    __tablename__ = "control_assessments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True
    )
    framework_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("frameworks.id"), nullable=False, index=True
    )
    control_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("controls.id"), nullable=False, index=True
    )
    effectiveness: Mapped[int] = mapped_column(Integer, default=0)  # 0-100
    has_evidence: Mapped[bool] = mapped_column(Boolean, default=False)

    assessed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
