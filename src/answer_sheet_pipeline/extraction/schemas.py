"""Schemas for extracted answers and the parameters and context of one extraction."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, computed_field

from answer_sheet_pipeline.marks.schemas import CandidateMark
from answer_sheet_pipeline.regions.schemas import ProcessingRegion, Region
from answer_sheet_pipeline.templates.schemas import QuestionSlot, QuestionType

FAILED_METHOD = "failed"


class BubbleQuality(str, Enum):
    """How a bubble was filled."""

    HEAVY = "heavy"
    MEDIUM = "medium"
    LIGHT = "light"
    EMPTY = "empty"
    OVERFILLED = "overfilled"
    UNKNOWN = "unknown"


class ExtractedAnswer(BaseModel):
    """One candidate answer for a question. Later attempts produce new instances instead of mutating this one."""

    model_config = ConfigDict(frozen=True)

    question_number: int
    question_type: QuestionType
    value: Optional[str] = None
    confidence: float = Field(ge=0.0, le=1.0)
    bounding_box: Optional[Region] = None
    extraction_method: str
    noise_filtered: bool = False
    raw_marks: Tuple[str, ...] = ()
    bubble_quality: Optional[BubbleQuality] = None
    position: Optional[Tuple[float, float]] = None
    expected_position: Optional[Tuple[float, float]] = None
    cross_validated: bool = False
    review_flag: bool = False
    handwriting_overlap: bool = False
    format_valid: bool = True
    valid_options: Tuple[str, ...] = ()
    tier: Optional[str] = None
    provenance: Tuple[str, ...] = ()

    @computed_field
    @property
    def multiple_marks(self) -> bool:
        """True when more than one option carried a surviving mark."""
        return len(self.raw_marks) > 1

    @classmethod
    def failed(cls, slot: QuestionSlot, reason: str) -> "ExtractedAnswer":
        """Zero-confidence answer standing in for an extraction that raised."""
        return cls(
            question_number=slot.question_number,
            question_type=slot.question_type,
            confidence=0.0,
            bounding_box=slot.answer_box,
            extraction_method=FAILED_METHOD,
            review_flag=True,
            valid_options=slot.valid_options,
            provenance=(f"failed:{reason}",),
        )


class AttributedMark(BaseModel):
    """A candidate mark assigned to one option of one question."""

    model_config = ConfigDict(frozen=True)

    candidate: CandidateMark
    option: str
    expected_position: Tuple[float, float]
    deviation: float = Field(ge=0.0)
    tolerance: float = Field(gt=0.0)


@dataclass(frozen=True)
class ExtractionParameters:
    """Knobs a recovery attempt can turn."""

    noise_filter_strength: float = 0.0
    tolerance_scale: float = 1.0
    tight_crop: bool = False
    method: Optional[str] = None
    attempt: int = 0


@dataclass(frozen=True, eq=False)
class QuestionContext:
    """Everything a strategy needs to read one question."""

    slot: QuestionSlot
    image: np.ndarray
    processing_region: ProcessingRegion
    marks: Tuple[AttributedMark, ...] = ()
    parameters: ExtractionParameters = field(default_factory=ExtractionParameters)
    confidence_factor: float = 1.0
    base_provenance: Tuple[str, ...] = ()
