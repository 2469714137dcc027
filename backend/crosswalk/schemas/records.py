"""Read snapshots of the records the engine consumes.

Data sources return these models; ORM rows convert through
``model_validate(row)`` because every model reads from attributes.
"""

from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from crosswalk.models.compliance import ChainStatus, ConfidenceLevel, MappingType


class FrameworkRecord(BaseModel):
    """A framework as seen by the engine."""

    id: str
    name: str
    short_name: str
    version: str = ""
    category: Optional[str] = None
    is_active: bool = True

    model_config = ConfigDict(from_attributes=True, frozen=True)


class ControlRecord(BaseModel):
    """A control within one framework."""

    id: str
    framework_id: str
    code: str
    title: str
    parent_id: Optional[str] = None
    sort_order: int = 0

    model_config = ConfigDict(from_attributes=True, frozen=True)


class MappingRecord(BaseModel):
    """A curated mapping edge between two controls.

    Confidence and type stay as plain strings when they carry a value outside
    the known enums; weighting treats such values as the weakest level.
    """

    id: str
    source_control_id: str
    target_control_id: str
    source_framework_id: str
    target_framework_id: str
    confidence: Union[ConfidenceLevel, str]
    mapping_type: Union[MappingType, str]
    rationale: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @field_validator("confidence", mode="before")
    @classmethod
    def _known_confidence(cls, value):
        try:
            return ConfidenceLevel(value)
        except ValueError:
            return value

    @field_validator("mapping_type", mode="before")
    @classmethod
    def _known_mapping_type(cls, value):
        try:
            return MappingType(value)
        except ValueError:
            return value


class ChainRecord(BaseModel):
    """An organisation-authored compliance chain."""

    id: str
    organization_id: str
    requirement: str
    policy_id: Optional[str] = None
    control_id: Optional[str] = None
    evidence_ids: list[str] = Field(default_factory=list)
    status: ChainStatus
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(from_attributes=True)


class EvidenceRecord(BaseModel):
    """Opaque evidence reference; only the filename is ever projected."""

    id: str
    organization_id: str
    filename: str
    original_name: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, frozen=True)


class AssessmentRecord(BaseModel):
    """Outcome of an organisation's assessment of one control."""

    organization_id: str
    framework_id: str
    control_id: str
    effectiveness: int = Field(default=0, ge=0, le=100)
    has_evidence: bool = False

    model_config = ConfigDict(from_attributes=True, frozen=True)
