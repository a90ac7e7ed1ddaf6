"""Short-answer and essay extraction through a text recognizer."""

import logging
from typing import Optional

import numpy as np

from answer_sheet_pipeline.extraction.extraction_config import ExtractionConfig
from answer_sheet_pipeline.extraction.schemas import ExtractedAnswer, QuestionContext
from answer_sheet_pipeline.extraction.strategies.base import AnswerExtractionStrategy
from answer_sheet_pipeline.extraction.text_recognizer import TextRecognizer
from answer_sheet_pipeline.ingestion.image_utils import clip_bounds, crop, ink_mask, whiten
from answer_sheet_pipeline.regions.bbox_utils import expand_region
from answer_sheet_pipeline.regions.roi_manager import RoiManager
from answer_sheet_pipeline.utils.confidence import clamp

logger = logging.getLogger(__name__)

METHOD = "text_recognition"
BLANK_INK_RATIO = 0.001


class TextAnswerStrategy(AnswerExtractionStrategy):
    """Reads a free-text box and checks the answer length against its band."""

    def __init__(
        self,
        roi_manager: RoiManager,
        recognizer: TextRecognizer,
        min_length: int,
        max_length: int,
        config: Optional[ExtractionConfig] = None,
    ):
        """Initializes the strategy.

        Args:
            roi_manager (RoiManager): Answers soft-mask penalty queries.
            recognizer (TextRecognizer): Reads the cropped answer box.
            min_length (int): Shortest valid answer, in characters.
            max_length (int): Longest valid answer, in characters.
            config (Optional[ExtractionConfig]): Extraction tunables; defaults come from settings.
        """
        super().__init__(roi_manager, config)
        self.recognizer = recognizer
        self.min_length = min_length
        self.max_length = max_length

    def extract(self, context: QuestionContext) -> ExtractedAnswer:
        """Reads one free-text question.

        Answers outside the length band are kept with format_valid=False.

        Args:
            context (QuestionContext): The question, page image and processing region.

        Returns:
            ExtractedAnswer: The candidate answer.
        """
        slot = context.slot
        parameters = context.parameters
        provenance = context.base_provenance + (METHOD,)
        region = context.processing_region

        box = slot.answer_box
        if not parameters.tight_crop:
            box = expand_region(box, self.config.text_buffer, region.image_width, region.image_height)

        patch = crop(context.image, box)
        noise = [excluded for excluded in region.noise_regions if excluded.overlaps(box)]
        if parameters.noise_filter_strength > 0 and noise:
            patch = self._scrub(context.image, box, noise)
            provenance += ("noise_scrubbed",)

        penalty, overlap = self._exclusion_penalty(context, slot.answer_box)
        answer = ExtractedAnswer(
            question_number=slot.question_number,
            question_type=slot.question_type,
            confidence=0.0,
            bounding_box=slot.answer_box,
            extraction_method=METHOD,
            noise_filtered=penalty < 1.0,
            handwriting_overlap=overlap,
            provenance=provenance,
        )

        if patch.size == 0 or self._ink_share(patch) < BLANK_INK_RATIO:
            return answer.model_copy(
                update={"confidence": clamp(self.config.blank_confidence * context.confidence_factor)}
            )

        reading = self.recognizer.recognize(patch)
        text = reading.text.strip()
        format_valid = not text or self.min_length <= len(text) <= self.max_length
        if not format_valid:
            logger.info(
                f"Question {slot.question_number} answer length {len(text)} outside {self.min_length}-{self.max_length}"
            )

        return answer.model_copy(
            update={
                "value": text or None,
                "confidence": clamp(reading.confidence * penalty * context.confidence_factor),
                "format_valid": format_valid,
            }
        )

    def _ink_share(self, patch: np.ndarray) -> float:
        mask = ink_mask(patch, self.config.mark_ink_threshold)
        return float(np.count_nonzero(mask)) / mask.size

    @staticmethod
    def _scrub(image: np.ndarray, box, noise) -> np.ndarray:
        """Crop of the box with handwriting noise painted out."""
        x0, y0, _, _ = clip_bounds(image, box)
        patch = crop(image, box)
        shifted = [region.model_copy(update={"left": region.left - x0, "top": region.top - y0}) for region in noise]
        return whiten(patch, shifted)
