"""Per-option fill scoring, an image-only reading of a bubble row."""

from typing import Dict, Mapping, Optional, Tuple

import cv2
import numpy as np

from answer_sheet_pipeline.config import settings
from answer_sheet_pipeline.ingestion.image_utils import crop
from answer_sheet_pipeline.regions.bbox_utils import region_from_center
from answer_sheet_pipeline.templates.schemas import QuestionSlot


class FillSampler:
    """Measures the dark-pixel share inside each option's bubble box."""

    def __init__(self, ink_threshold: int = settings.MARK_INK_THRESHOLD):
        self.ink_threshold = ink_threshold

    def sample(
        self, image: np.ndarray, slot: QuestionSlot, offset: Tuple[float, float] = (0.0, 0.0)
    ) -> Dict[str, float]:
        """Fill ratio per option of a multiple-choice question.

        Args:
            image (np.ndarray): Grayscale page image.
            slot (QuestionSlot): The question; must carry option centres.
            offset (Tuple[float, float]): Shift applied to every option centre.

        Returns:
            Dict[str, float]: Option label to fill ratio in [0, 1].
        """
        half = max(1.0, slot.bubble_radius)
        fills = {}
        for option, (x, y) in slot.option_centers.items():
            patch = crop(image, region_from_center(x + offset[0], y + offset[1], half, half))
            if patch.size == 0:
                fills[option] = 0.0
                continue
            blurred = cv2.GaussianBlur(patch, (3, 3), 0)
            fills[option] = float(np.count_nonzero(blurred < self.ink_threshold)) / blurred.size
        return fills

    @staticmethod
    def pick(fills: Mapping[str, float], fill_threshold: float, margin: float) -> Optional[str]:
        """The single clearly filled option, or None when nothing or more than one option stands out."""
        ranked = sorted(fills.items(), key=lambda item: item[1], reverse=True)
        if not ranked or ranked[0][1] < fill_threshold:
            return None
        if len(ranked) > 1 and ranked[0][1] - ranked[1][1] < margin:
            return None
        return ranked[0][0]
