"""Multiple-choice extraction from marks attributed to bubble positions."""

import logging
from typing import Dict, NamedTuple, Optional

from answer_sheet_pipeline.extraction.extraction_config import ExtractionConfig
from answer_sheet_pipeline.extraction.fill_sampler import FillSampler
from answer_sheet_pipeline.extraction.schemas import AttributedMark, BubbleQuality, ExtractedAnswer, QuestionContext
from answer_sheet_pipeline.extraction.strategies.base import AnswerExtractionStrategy
from answer_sheet_pipeline.marks.schemas import CandidateMark
from answer_sheet_pipeline.regions.roi_manager import RoiManager
from answer_sheet_pipeline.utils.confidence import clamp

logger = logging.getLogger(__name__)

METHOD = "bubble_marks"

FILL_BASE = 0.6
FILL_WEIGHT = 0.4
LOCATION_WEIGHT = 0.25
OVERFILL_FACTOR = 1.5


class ScoredMark(NamedTuple):
    attributed: AttributedMark
    confidence: float
    penalized: bool
    handwriting_overlap: bool


class BubbleMarkStrategy(AnswerExtractionStrategy):
    """Reads a bubble row from its attributed marks, cross-checked by fill sampling."""

    def __init__(self, roi_manager: RoiManager, fill_sampler: FillSampler, config: Optional[ExtractionConfig] = None):
        super().__init__(roi_manager, config)
        self.fill_sampler = fill_sampler

    def extract(self, context: QuestionContext) -> ExtractedAnswer:
        """Reads one multiple-choice question.

        No marks gives a blank answer. Marks on more than one option give no value and the full set of marked
        options, leaving the decision to validation. A single marked option is the answer.

        Args:
            context (QuestionContext): The question and the marks attributed to it.

        Returns:
            ExtractedAnswer: The candidate answer.
        """
        slot = context.slot
        provenance = context.base_provenance + (METHOD,)

        strongest_by_option: Dict[str, ScoredMark] = {}
        for attributed in context.marks:
            scored = self._score(context, attributed)
            current = strongest_by_option.get(attributed.option)
            if current is None or scored.confidence > current.confidence:
                strongest_by_option[attributed.option] = scored

        if not strongest_by_option:
            return ExtractedAnswer(
                question_number=slot.question_number,
                question_type=slot.question_type,
                confidence=clamp(self.config.blank_confidence * context.confidence_factor),
                bounding_box=slot.answer_box,
                extraction_method=METHOD,
                bubble_quality=BubbleQuality.EMPTY,
                valid_options=slot.valid_options,
                provenance=provenance,
            )

        ranked = sorted(strongest_by_option.values(), key=lambda scored: scored.confidence, reverse=True)
        best = ranked[0]
        noise_filtered = any(scored.penalized for scored in ranked)
        if noise_filtered:
            provenance += ("handwriting_filtered",)

        mark = best.attributed.candidate.mark
        answer = ExtractedAnswer(
            question_number=slot.question_number,
            question_type=slot.question_type,
            confidence=clamp(best.confidence * context.confidence_factor),
            bounding_box=mark.bbox,
            extraction_method=METHOD,
            noise_filtered=noise_filtered,
            raw_marks=tuple(sorted(strongest_by_option)),
            bubble_quality=self._quality(best.attributed.candidate, slot.bubble_radius),
            position=(mark.center_x, mark.center_y),
            expected_position=best.attributed.expected_position,
            handwriting_overlap=any(scored.handwriting_overlap for scored in ranked),
            valid_options=slot.valid_options,
            provenance=provenance,
        )
        if answer.multiple_marks:
            logger.info(f"Question {slot.question_number} has marks on {', '.join(answer.raw_marks)}")
            return answer

        option = best.attributed.option
        expected_x, expected_y = best.attributed.expected_position
        original_x, original_y = slot.option_centers[option]
        fills = self.fill_sampler.sample(context.image, slot, offset=(expected_x - original_x, expected_y - original_y))
        picked = self.fill_sampler.pick(fills, self.config.fill_threshold, self.config.fill_margin)
        return answer.model_copy(update={"value": option, "cross_validated": picked == option})

    def _score(self, context: QuestionContext, attributed: AttributedMark) -> ScoredMark:
        candidate = attributed.candidate
        base = FILL_BASE + FILL_WEIGHT * candidate.verdict.stroke_features.consistency
        location = 1.0 - LOCATION_WEIGHT * min(1.0, attributed.deviation / attributed.tolerance)
        penalty, overlap = self._exclusion_penalty(context, candidate.mark.bbox)
        confidence = clamp(base * location * penalty * candidate.weight)
        return ScoredMark(attributed, confidence, candidate.weight < 1.0 or penalty < 1.0, overlap)

    @staticmethod
    def _quality(candidate: CandidateMark, bubble_radius: float) -> BubbleQuality:
        mark = candidate.mark
        features = candidate.verdict.stroke_features
        if bubble_radius and max(mark.width, mark.height) > 2 * bubble_radius * OVERFILL_FACTOR:
            return BubbleQuality.OVERFILLED
        if features.pressure >= 0.7 and features.consistency >= 0.8:
            return BubbleQuality.HEAVY
        if features.pressure >= 0.45 and features.consistency >= 0.5:
            return BubbleQuality.MEDIUM
        return BubbleQuality.LIGHT
