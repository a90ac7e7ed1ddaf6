"""Abstract base class for answer extraction strategies."""

from abc import ABC, abstractmethod
from typing import Optional

from answer_sheet_pipeline.extraction.extraction_config import ExtractionConfig
from answer_sheet_pipeline.extraction.schemas import ExtractedAnswer, QuestionContext
from answer_sheet_pipeline.regions.roi_manager import RoiManager
from answer_sheet_pipeline.regions.schemas import Region


class AnswerExtractionStrategy(ABC):
    """Abstract base class for answer extraction strategies."""

    def __init__(self, roi_manager: RoiManager, config: Optional[ExtractionConfig] = None):
        """Initializes the strategy.

        Args:
            roi_manager (RoiManager): Answers soft-mask penalty queries.
            config (Optional[ExtractionConfig]): Extraction tunables; defaults come from settings.
        """
        self.roi_manager = roi_manager
        self.config = config or ExtractionConfig()

    @abstractmethod
    def extract(self, context: QuestionContext) -> ExtractedAnswer:
        """Reads one question.

        Args:
            context: The question's slot, page image, processing region, attributed marks and parameters.

        Returns:
            The question's ExtractedAnswer.
        """

    def _exclusion_penalty(self, context: QuestionContext, box: Region) -> tuple[float, bool]:
        """Soft-mask multiplier for a box, relaxed by the noise filter strength.

        Returns:
            The multiplier and whether the box overlaps a handwriting noise region.
        """
        overlapping = self.roi_manager.overlapping_exclusions(context.processing_region, box)
        if not overlapping:
            return 1.0, False
        penalty = min(1.0, self.roi_manager.config.penalty + context.parameters.noise_filter_strength)
        return penalty, any(region.label == "noise" for region in overlapping)
