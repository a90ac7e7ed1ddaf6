"""Schemas for tier batches, tier calls and routing outcomes."""

from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field

from answer_sheet_pipeline.complexity.schemas import ProcessingTier
from answer_sheet_pipeline.templates.schemas import QuestionType


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FallbackReason(str, Enum):
    """Why a question left its first tier."""

    ERROR = "error"
    TIMEOUT = "timeout"
    INCOMPLETE = "incomplete"
    LOW_CONFIDENCE = "low_confidence"


class Batch(BaseModel):
    """Questions sent to one tier in a single call."""

    model_config = ConfigDict(frozen=True)

    batch_id: str
    tier: ProcessingTier
    question_numbers: Tuple[int, ...] = Field(min_length=1)
    estimated_work_units: float = Field(ge=0.0)
    estimated_cost: float = Field(ge=0.0)
    cost_savings: float = Field(ge=0.0)
    risk_level: RiskLevel = RiskLevel.LOW
    fallback_strategy: str = "retry"

    @computed_field
    @property
    def size(self) -> int:
        return len(self.question_numbers)


class TierRequest(BaseModel):
    """What a tier is asked about one question."""

    model_config = ConfigDict(frozen=True)

    question_number: int
    question_type: QuestionType
    extracted_value: Optional[str] = None
    valid_options: Tuple[str, ...] = ()
    image_png: bytes = b""


class TierResponse(BaseModel):
    """What a tier said about one question. confidence is None when the tier did not report one."""

    model_config = ConfigDict(frozen=True)

    question_number: int
    value: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class TierOutcome(BaseModel):
    """Final tier result for one question after any escalation."""

    model_config = ConfigDict(frozen=True)

    question_number: int
    tier: ProcessingTier
    value: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    complete: bool = True
    error: Optional[str] = None
    escalated: bool = False

    @computed_field
    @property
    def succeeded(self) -> bool:
        return self.error is None and self.complete


class FallbackEvent(BaseModel):
    """One escalation, recorded before the expensive tier is called."""

    model_config = ConfigDict(frozen=True)

    question_number: int
    reason: FallbackReason
    from_tier: ProcessingTier
    to_tier: ProcessingTier


class RoutingResult(BaseModel):
    """Everything the router did for one document."""

    model_config = ConfigDict(frozen=True)

    batches: Tuple[Batch, ...] = ()
    escalation_batches: Tuple[Batch, ...] = ()
    outcomes: Dict[int, TierOutcome] = Field(default_factory=dict)
    fallback_events: Tuple[FallbackEvent, ...] = ()

    @computed_field
    @property
    def fallbacks_triggered(self) -> int:
        return len(self.fallback_events)

    @computed_field
    @property
    def estimated_cost(self) -> float:
        return sum(batch.estimated_cost for batch in self.batches + self.escalation_batches)

    @computed_field
    @property
    def cost_savings(self) -> float:
        return sum(batch.cost_savings for batch in self.batches) - sum(
            batch.estimated_cost for batch in self.escalation_batches
        )
