"""Handwriting discrimination: separating intentional bubble fills from stray writing."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from answer_sheet_pipeline.config import settings
from answer_sheet_pipeline.marks.schemas import (
    DISC_FILL_RATIO,
    CandidateMark,
    HandwritingVerdict,
    Mark,
    MarkType,
    StrokeFeatures,
)
from answer_sheet_pipeline.utils.confidence import clamp

logger = logging.getLogger(__name__)

BUBBLE_REGION = "bubble"

# Score weights
IRREGULARITY_WEIGHT = 0.4
INCONSISTENCY_WEIGHT = 0.3
FAR_FROM_BUBBLE_WEIGHT = 0.2
OUT_OF_BAND_WEIGHT = 0.1

BUBBLE_FILL_MAX_IRREGULARITY = 0.3
BUBBLE_FILL_MIN_CONSISTENCY = 0.7
TEXT_MIN_IRREGULARITY = 0.5
DOODLE_MIN_IRREGULARITY = 0.3


@dataclass
class DiscriminatorConfig:
    """Thresholds for handwriting discrimination."""

    bubble_region_threshold: float = settings.BUBBLE_REGION_HANDWRITING_THRESHOLD
    other_region_threshold: float = settings.OTHER_REGION_HANDWRITING_THRESHOLD
    discard_threshold: float = settings.HANDWRITING_DISCARD_THRESHOLD
    penalty_threshold: float = settings.HANDWRITING_PENALTY_THRESHOLD
    handwriting_penalty: float = settings.HANDWRITING_PENALTY
    near_bubble_factor: float = settings.NEAR_BUBBLE_FACTOR
    scratch_area_threshold: int = settings.SCRATCH_AREA_THRESHOLD
    erasure_max_pressure: float = settings.ERASURE_MAX_PRESSURE
    erasure_min_area: int = settings.ERASURE_MIN_AREA
    default_bubble_radius: float = 8.0


class HandwritingDiscriminator(ABC):
    """Abstract base class for handwriting discrimination strategies."""

    def __init__(self, config: Optional[DiscriminatorConfig] = None):
        """Initializes the discriminator.

        Args:
            config (Optional[DiscriminatorConfig]): Thresholds; defaults come from settings.
        """
        self.config = config or DiscriminatorConfig()

    @abstractmethod
    def classify(
        self,
        mark: Mark,
        bubble_centers: Optional[np.ndarray],
        bubble_radius: Optional[float],
        region_type: str,
    ) -> HandwritingVerdict:
        """Classifies one mark.

        Args:
            mark: The mark to classify.
            bubble_centers: (n, 2) array of expected bubble centres, or None when the layout has no grid.
            bubble_radius: Expected bubble radius in pixels.
            region_type: "bubble" inside the bubble grid area, anything else outside it.

        Returns:
            The mark's HandwritingVerdict.
        """

    def classify_all(
        self,
        marks: Sequence[Mark],
        bubble_centers: Optional[np.ndarray],
        bubble_radius: Optional[float],
        region_types: Sequence[str],
    ) -> List[HandwritingVerdict]:
        """Classifies marks one by one; verdicts are returned in mark order."""
        verdicts = [
            self.classify(mark, bubble_centers, bubble_radius, region_type)
            for mark, region_type in zip(marks, region_types)
        ]
        flagged = sum(1 for verdict in verdicts if verdict.is_handwriting)
        logger.info(f"Discriminated {len(marks)} marks, {flagged} flagged as handwriting")
        return verdicts

    def select_candidates(
        self,
        marks: Sequence[Mark],
        verdicts: Sequence[HandwritingVerdict],
        noise_filter_strength: float = 0.0,
    ) -> List[CandidateMark]:
        """Applies the filtering policy to classified marks.

        Marks above the discard threshold are dropped, marks between the penalty and discard thresholds are kept
        with a reduced weight, and erasures never become candidates. A positive noise filter strength lowers the
        discard threshold towards the penalty threshold.

        Args:
            marks: Detected marks.
            verdicts: Verdicts in the same order as marks.
            noise_filter_strength: Extra filtering applied during recovery.

        Returns:
            List[CandidateMark]: The extraction candidates.
        """
        discard_threshold = max(self.config.penalty_threshold, self.config.discard_threshold - noise_filter_strength)
        candidates = []
        for mark, verdict in zip(marks, verdicts):
            if verdict.mark_type == MarkType.ERASURE or verdict.confidence > discard_threshold:
                continue
            weight = self.config.handwriting_penalty if verdict.confidence > self.config.penalty_threshold else 1.0
            candidates.append(CandidateMark(mark=mark, verdict=verdict, weight=weight))
        return candidates


class StrokeFeatureDiscriminator(HandwritingDiscriminator):
    """Scores marks from shape, fill and position relative to the expected bubble grid."""

    def classify(
        self,
        mark: Mark,
        bubble_centers: Optional[np.ndarray],
        bubble_radius: Optional[float],
        region_type: str,
    ) -> HandwritingVerdict:
        """Classifies one mark from its stroke features.

        Args:
            mark: The mark to classify.
            bubble_centers: (n, 2) array of expected bubble centres, or None.
            bubble_radius: Expected bubble radius in pixels.
            region_type: "bubble" inside the bubble grid area.

        Returns:
            The mark's HandwritingVerdict.
        """
        radius = bubble_radius or self.config.default_bubble_radius
        features = self._stroke_features(mark, bubble_centers, radius)

        score = (
            features.irregularity * IRREGULARITY_WEIGHT
            + (1.0 - features.consistency) * INCONSISTENCY_WEIGHT
            + (0.0 if features.near_bubble else FAR_FROM_BUBBLE_WEIGHT)
            + (0.0 if features.size_in_band else OUT_OF_BAND_WEIGHT)
        )
        score = clamp(score)

        threshold = (
            self.config.bubble_region_threshold if region_type == BUBBLE_REGION else self.config.other_region_threshold
        )
        return HandwritingVerdict(
            is_handwriting=score > threshold,
            confidence=score,
            mark_type=self._mark_type(mark, features),
            stroke_features=features,
            region_type=region_type,
        )

    def _stroke_features(self, mark: Mark, bubble_centers: Optional[np.ndarray], radius: float) -> StrokeFeatures:
        long_side = max(mark.width, mark.height)
        short_side = max(1, min(mark.width, mark.height))

        distance = None
        if bubble_centers is not None and len(bubble_centers) > 0:
            centers = np.asarray(bubble_centers, dtype=float)
            distance = float(np.min(np.hypot(centers[:, 0] - mark.center_x, centers[:, 1] - mark.center_y)))

        diameter = 2 * radius
        return StrokeFeatures(
            aspect_ratio=mark.width / mark.height,
            irregularity=clamp(long_side / short_side - 1.0),
            stroke_width=mark.area / long_side,
            pressure=clamp(mark.intensity / 255.0),
            consistency=clamp(mark.fill_ratio / DISC_FILL_RATIO),
            distance_to_bubble=distance,
            near_bubble=distance is not None and distance <= radius * self.config.near_bubble_factor,
            size_in_band=0.5 * diameter <= long_side <= 1.5 * diameter,
        )

    def _mark_type(self, mark: Mark, features: StrokeFeatures) -> MarkType:
        if (
            features.near_bubble
            and features.irregularity <= BUBBLE_FILL_MAX_IRREGULARITY
            and features.consistency >= BUBBLE_FILL_MIN_CONSISTENCY
            and features.size_in_band
        ):
            return MarkType.BUBBLE_FILL
        if features.pressure < self.config.erasure_max_pressure and mark.area >= self.config.erasure_min_area:
            return MarkType.ERASURE
        if features.irregularity >= TEXT_MIN_IRREGULARITY:
            return MarkType.TEXT if mark.area < self.config.scratch_area_threshold else MarkType.SCRATCH_WORK
        if features.irregularity >= DOODLE_MIN_IRREGULARITY and not features.near_bubble:
            return MarkType.DOODLE
        return MarkType.UNKNOWN
