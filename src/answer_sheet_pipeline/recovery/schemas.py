"""Schemas for recovery strategies, attempts and per-question outcomes."""

from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field

from answer_sheet_pipeline.extraction.schemas import ExtractedAnswer
from answer_sheet_pipeline.validation.schemas import FindingType


class RecoveryStrategy(str, Enum):
    REGION_REFOCUS = "region_refocus"
    NOISE_FILTERING = "noise_filtering"
    ALTERNATIVE_METHOD = "alternative_method"
    MANUAL_REVIEW = "manual_review"


STRATEGY_PRIORITY = {
    RecoveryStrategy.REGION_REFOCUS: 4,
    RecoveryStrategy.NOISE_FILTERING: 3,
    RecoveryStrategy.ALTERNATIVE_METHOD: 2,
    RecoveryStrategy.MANUAL_REVIEW: 1,
}

# Failing finding type that selects each strategy.
STRATEGY_TRIGGERS = {
    FindingType.IMPOSSIBILITY: RecoveryStrategy.REGION_REFOCUS,
    FindingType.INTERFERENCE: RecoveryStrategy.NOISE_FILTERING,
    FindingType.GEOMETRIC: RecoveryStrategy.ALTERNATIVE_METHOD,
}


class RecoveryAttempt(BaseModel):
    """One bounded re-extraction of a question.

    resulting_confidence is the confidence the attempt was judged on: a candidate without a single usable
    value scores 0.
    """

    model_config = ConfigDict(frozen=True)

    attempt: int = Field(ge=1)
    strategy: RecoveryStrategy
    parameters: Dict[str, Any] = Field(default_factory=dict)
    resulting_confidence: float = Field(ge=0.0, le=1.0)
    accepted: bool


class RecoveryOutcome(BaseModel):
    """Best answer found for one question and how it was reached."""

    model_config = ConfigDict(frozen=True)

    question_number: int
    strategy: RecoveryStrategy
    attempts: Tuple[RecoveryAttempt, ...] = ()
    best_answer: ExtractedAnswer
    resolved: bool
    reason: Optional[str] = None

    @computed_field
    @property
    def manual_review(self) -> bool:
        return not self.resolved
