"""Pydantic schemas for detected marks and their handwriting verdicts."""

import math
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from answer_sheet_pipeline.regions.schemas import Region

# Fill ratio of a solid disc inside its bounding square.
DISC_FILL_RATIO = math.pi / 4


class MarkType(str, Enum):
    """What a detected ink blob most likely is."""

    BUBBLE_FILL = "bubble_fill"
    ERASURE = "erasure"
    TEXT = "text"
    DOODLE = "doodle"
    SCRATCH_WORK = "scratch_work"
    UNKNOWN = "unknown"


class Mark(BaseModel):
    """One connected ink blob found on the page."""

    model_config = ConfigDict(frozen=True)

    x: int = Field(ge=0)
    y: int = Field(ge=0)
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    intensity: float = Field(ge=0.0, le=255.0)
    area: int = Field(gt=0)

    @property
    def center_x(self) -> float:
        return self.x + self.width / 2

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2

    @property
    def bbox(self) -> Region:
        return Region(left=self.x, top=self.y, width=self.width, height=self.height, label="mark")

    @property
    def fill_ratio(self) -> float:
        """Share of the bounding box covered by ink."""
        return min(1.0, self.area / (self.width * self.height))


class StrokeFeatures(BaseModel):
    """Measurements the discriminator derived from a mark."""

    model_config = ConfigDict(frozen=True)

    aspect_ratio: float
    irregularity: float = Field(ge=0.0, le=1.0)
    stroke_width: float
    pressure: float = Field(ge=0.0, le=1.0)
    consistency: float = Field(ge=0.0, le=1.0)
    distance_to_bubble: Optional[float] = None
    near_bubble: bool = False
    size_in_band: bool = False


class HandwritingVerdict(BaseModel):
    """Classification of one mark. confidence is the likelihood that the mark is handwriting."""

    model_config = ConfigDict(frozen=True)

    is_handwriting: bool
    confidence: float = Field(ge=0.0, le=1.0)
    mark_type: MarkType
    stroke_features: StrokeFeatures
    region_type: str = "other"


class CandidateMark(BaseModel):
    """A mark that survived filtering, with the weight it contributes to extraction confidence."""

    model_config = ConfigDict(frozen=True)

    mark: Mark
    verdict: HandwritingVerdict
    weight: float = Field(default=1.0, ge=0.0, le=1.0)
