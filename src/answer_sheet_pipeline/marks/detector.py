"""Connected-component mark detection over the dark-ink mask."""

import logging
from typing import List

import cv2
import numpy as np

from answer_sheet_pipeline.config import settings
from answer_sheet_pipeline.ingestion.image_utils import ink_mask
from answer_sheet_pipeline.marks.schemas import Mark

logger = logging.getLogger(__name__)


class MarkDetector:
    """Finds candidate marks: every dark connected blob above a speckle size."""

    def __init__(self, ink_threshold: int = settings.MARK_INK_THRESHOLD, min_area: int = settings.MIN_MARK_AREA):
        """Initializes the detector.

        Args:
            ink_threshold (int): Pixels darker than this count as marks. Drop-out printing sits above it.
            min_area (int): Blobs with fewer pixels are treated as scanner speckle.
        """
        self.ink_threshold = ink_threshold
        self.min_area = min_area

    def detect(self, image: np.ndarray) -> List[Mark]:
        """Detects marks on a grayscale page.

        Args:
            image (np.ndarray): Grayscale page image.

        Returns:
            List[Mark]: Marks ordered top-to-bottom, left-to-right.
        """
        mask = ink_mask(image, self.ink_threshold)
        count, labels, stats, _ = cv2.connectedComponentsWithStats(mask, connectivity=8)

        marks = []
        for label in range(1, count):
            x, y, width, height, area = (int(v) for v in stats[label])
            if area < self.min_area:
                continue
            component = labels[y : y + height, x : x + width] == label
            darkness = 255.0 - float(image[y : y + height, x : x + width][component].mean())
            marks.append(Mark(x=x, y=y, width=width, height=height, intensity=darkness, area=area))

        marks.sort(key=lambda m: (m.y, m.x))
        logger.debug(f"Detected {len(marks)} marks ({count - 1 - len(marks)} speckles ignored)")
        return marks
