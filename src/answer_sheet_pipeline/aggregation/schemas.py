"""Schemas for the final per-question records and the document processing summary."""

from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field

from answer_sheet_pipeline.templates.schemas import PrimaryFormat, QuestionType

PROVENANCE_SEPARATOR = "→"


class FinalAnswerRecord(BaseModel):
    """The answer handed to downstream grading for one question."""

    model_config = ConfigDict(frozen=True)

    question_number: int
    question_type: QuestionType
    value: Optional[str] = None
    confidence: float = Field(ge=0.0, le=1.0)
    validation_passed: bool
    extraction_method: str
    provenance_chain: Tuple[str, ...] = ()
    manual_review: bool = False
    review_reasons: Tuple[str, ...] = ()
    recovery_attempts: int = 0

    @computed_field
    @property
    def provenance(self) -> str:
        return PROVENANCE_SEPARATOR.join(self.provenance_chain)


class ProcessingSummary(BaseModel):
    """Document-level view of one processing run."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    template_id: Optional[str] = None
    template_match_confidence: float = Field(ge=0.0, le=1.0)
    primary_format: PrimaryFormat
    question_count: int = Field(ge=0)
    methods_used: Dict[str, int] = Field(default_factory=dict)
    fallbacks_triggered: int = Field(default=0, ge=0)
    quality_score: float = Field(ge=0.0, le=1.0)
    total_processing_time_ms: float = Field(ge=0.0)
    requires_reprocessing: bool = False
    manual_review_count: int = Field(default=0, ge=0)
    out_of_bounds_marks: int = Field(default=0, ge=0)
    estimated_cost: float = Field(default=0.0, ge=0.0)
    cost_savings: float = 0.0


class ProcessingResult(BaseModel):
    """Final records in question order plus the processing summary."""

    model_config = ConfigDict(frozen=True)

    records: Tuple[FinalAnswerRecord, ...] = ()
    summary: ProcessingSummary

    def record(self, question_number: int) -> FinalAnswerRecord:
        for record in self.records:
            if record.question_number == question_number:
                return record
        raise KeyError(question_number)
