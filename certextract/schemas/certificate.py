"""
Schemas for structured certificate data.

ExtractedCertificateData is the shape every tier produces, whatever the
source (regex templates, document intelligence, AI text or vision models).
All keys are always present: unknown values are None, never missing.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class Outcome(str, Enum):
    """Overall certificate outcome."""

    PASS = "PASS"
    FAIL = "FAIL"
    SATISFACTORY = "SATISFACTORY"
    UNSATISFACTORY = "UNSATISFACTORY"
    NOT_APPLICABLE = "N/A"


class ApplianceOutcome(str, Enum):
    """Per-appliance inspection outcome."""

    PASS = "PASS"
    FAIL = "FAIL"
    NOT_APPLICABLE = "N/A"


class DefectPriority(str, Enum):
    """Remediation priority of a recorded defect."""

    IMMEDIATE = "IMMEDIATE"
    URGENT = "URGENT"
    ADVISORY = "ADVISORY"
    ROUTINE = "ROUTINE"


class ApplianceRecord(BaseModel):
    """An appliance inspected as part of the certificate."""

    type: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    location: Optional[str] = None
    outcome: Optional[ApplianceOutcome] = None
    defects: list[str] = Field(default_factory=list)


class DefectRecord(BaseModel):
    """A defect or observation recorded on the certificate."""

    code: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    priority: Optional[DefectPriority] = None
    remedial_action: Optional[str] = None


# Fields that carry most of the compliance meaning of a certificate.
CORE_FIELDS = (
    "certificate_number",
    "property_address",
    "inspection_date",
    "expiry_date",
    "outcome",
    "engineer_name",
    "contractor_name",
)


class ExtractedCertificateData(BaseModel):
    """Structured fields extracted from a compliance certificate."""

    certificate_type: str = "UNKNOWN"
    certificate_number: Optional[str] = None
    property_address: Optional[str] = None
    uprn: Optional[str] = None
    inspection_date: Optional[str] = None
    expiry_date: Optional[str] = None
    next_inspection_date: Optional[str] = None
    outcome: Optional[Outcome] = None
    engineer_name: Optional[str] = None
    engineer_registration: Optional[str] = None
    contractor_name: Optional[str] = None
    contractor_registration: Optional[str] = None
    appliances: list[ApplianceRecord] = Field(default_factory=list)
    defects: list[DefectRecord] = Field(default_factory=list)
    additional_fields: dict[str, str] = Field(default_factory=dict)

    def populated_field_count(self) -> int:
        """Count populated core fields, plus one each for appliances and defects."""
        count = 1 if self.certificate_type != "UNKNOWN" else 0
        count += sum(1 for name in CORE_FIELDS if getattr(self, name) is not None)
        if self.appliances:
            count += 1
        if self.defects:
            count += 1
        return count

    def to_dict(self) -> dict[str, Any]:
        """Serialize with every key present and enums as plain strings."""
        return self.model_dump(mode="json")
