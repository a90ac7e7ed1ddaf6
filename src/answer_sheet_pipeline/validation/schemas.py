"""Schemas for validation findings and the per-document validation report."""

from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field


class FindingType(str, Enum):
    IMPOSSIBILITY = "impossibility"
    PATTERN = "pattern"
    GEOMETRIC = "geometric"
    INTERFERENCE = "interference"


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class ValidationFinding(BaseModel):
    """Outcome of one check, for one question or (question_number None) for the whole document."""

    model_config = ConfigDict(frozen=True)

    type: FindingType
    passed: bool
    confidence: float = Field(ge=0.0, le=1.0)
    details: str
    correction_suggested: bool = False
    fallback_required: bool = False
    severity: Severity = Severity.INFO
    question_number: Optional[int] = None


class ValidationReport(BaseModel):
    """All findings of one validation run."""

    model_config = ConfigDict(frozen=True)

    findings: Tuple[ValidationFinding, ...] = ()
    anomaly_fraction: float = Field(default=0.0, ge=0.0, le=1.0)
    interference_rate: float = Field(default=0.0, ge=0.0, le=1.0)

    @computed_field
    @property
    def requires_reprocessing(self) -> bool:
        """True if any finding requires fallback, or any impossibility exists."""
        return any(
            finding.fallback_required or (finding.type == FindingType.IMPOSSIBILITY and not finding.passed)
            for finding in self.findings
        )

    @computed_field
    @property
    def pass_rate(self) -> float:
        """Share of passed findings; 1.0 when there are none."""
        if not self.findings:
            return 1.0
        return sum(1 for finding in self.findings if finding.passed) / len(self.findings)

    def for_question(self, question_number: int) -> List[ValidationFinding]:
        return [finding for finding in self.findings if finding.question_number == question_number]

    def document_level(self) -> List[ValidationFinding]:
        return [finding for finding in self.findings if finding.question_number is None]

    def failing(self, finding_type: Optional[FindingType] = None) -> List[ValidationFinding]:
        return [
            finding
            for finding in self.findings
            if not finding.passed and (finding_type is None or finding.type == finding_type)
        ]
