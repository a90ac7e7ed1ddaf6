"""Schemas for question complexity scoring."""

from enum import Enum
from typing import Dict

from pydantic import BaseModel, ConfigDict, Field


class ProcessingTier(str, Enum):
    """Processing method class, by cost and accuracy."""

    CHEAP = "cheap"
    EXPENSIVE = "expensive"


class ComplexityScore(BaseModel):
    """Extraction difficulty of one question and the tier it should go to."""

    model_config = ConfigDict(frozen=True)

    question_number: int
    score: float = Field(ge=0.0, le=100.0)
    recommended_tier: ProcessingTier
    decision_confidence: float = Field(ge=0.0, le=100.0)
    contributing_factors: Dict[str, float] = Field(default_factory=dict)
    reasoning: str = ""
