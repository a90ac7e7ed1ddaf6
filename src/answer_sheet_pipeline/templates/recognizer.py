"""Template recognition: format classification followed by best-fit template selection."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Optional

import cv2
import numpy as np

from answer_sheet_pipeline.config import settings
from answer_sheet_pipeline.ingestion.image_utils import ink_mask, ink_ratio
from answer_sheet_pipeline.regions.bbox_utils import region_from_center
from answer_sheet_pipeline.templates.registry import TemplateRegistry
from answer_sheet_pipeline.templates.schemas import DetectedElement, PrimaryFormat, TemplateDefinition, TemplateMatch
from answer_sheet_pipeline.utils.confidence import clamp

logger = logging.getLogger(__name__)

SPECKLE_AREA = 4
BUBBLE_ASPECT_RANGE = (0.75, 1.33)
# Ink share a printed bubble outline leaves in its bounding square.
BUBBLE_PRESENCE_INK = 0.05


class TemplateRecognitionError(Exception):
    """Raised when a page image cannot be analysed for its layout."""


@dataclass
class RecognizerConfig:
    """Thresholds for format classification and template matching."""

    structure_threshold: int = settings.STRUCTURE_INK_THRESHOLD
    min_confidence: float = settings.TEMPLATE_MIN_CONFIDENCE
    filename_hint_bonus: float = settings.FILENAME_HINT_BONUS
    grid_presence_ratio: float = settings.GRID_PRESENCE_RATIO
    min_bubble_components: int = settings.MIN_BUBBLE_COMPONENTS
    min_text_components: int = settings.MIN_TEXT_COMPONENTS
    min_bubble_size: int = 6
    max_bubble_size: int = 40


class FormatClassifier(ABC):
    """Abstract base class for primary format classification."""

    def __init__(self, config: Optional[RecognizerConfig] = None):
        self.config = config or RecognizerConfig()

    @abstractmethod
    def classify(self, structure_mask: np.ndarray) -> PrimaryFormat:
        """Classifies a page from its structure-ink mask.

        Args:
            structure_mask: Binary mask (255 = any printed or written ink).

        Returns:
            The page's PrimaryFormat.
        """


class ComponentFormatClassifier(FormatClassifier):
    """Counts bubble-like and text-like connected components."""

    def classify(self, structure_mask: np.ndarray) -> PrimaryFormat:
        """Classifies a page as bubble_sheet, text_based or mixed_format.

        Roughly square components within the bubble size band are bubbles; other small components are text.

        Args:
            structure_mask: Binary mask (255 = ink).

        Returns:
            The page's PrimaryFormat.
        """
        _, _, stats, _ = cv2.connectedComponentsWithStats(structure_mask, connectivity=8)
        low, high = self.config.min_bubble_size, self.config.max_bubble_size
        bubble_like = 0
        text_like = 0
        for width, height, area in stats[1:, 2:5]:
            if area < SPECKLE_AREA:
                continue
            square = BUBBLE_ASPECT_RANGE[0] <= width / height <= BUBBLE_ASPECT_RANGE[1]
            if square and low <= width <= high and low <= height <= high:
                bubble_like += 1
            elif height <= high:
                text_like += 1

        has_grid = bubble_like >= self.config.min_bubble_components
        has_text = text_like >= self.config.min_text_components
        logger.debug(f"Format cues: {bubble_like} bubble-like, {text_like} text-like components")

        if has_grid and has_text:
            return PrimaryFormat.MIXED_FORMAT
        if has_grid:
            return PrimaryFormat.BUBBLE_SHEET
        return PrimaryFormat.TEXT_BASED


class TemplateRecognizer:
    """Matches a page image against the registered templates."""

    def __init__(
        self,
        registry: TemplateRegistry,
        format_classifier: FormatClassifier,
        config: Optional[RecognizerConfig] = None,
    ):
        """Initializes the recognizer.

        Args:
            registry (TemplateRegistry): Templates to match against; only read.
            format_classifier (FormatClassifier): Strategy deciding the page's primary format.
            config (Optional[RecognizerConfig]): Thresholds; defaults come from settings.
        """
        self.registry = registry
        self.format_classifier = format_classifier
        self.config = config or RecognizerConfig()

    def recognize(self, image: np.ndarray, filename_hint: Optional[str] = None) -> TemplateMatch:
        """Finds the best-fitting template for a page.

        Templates of the classified format are tried first; the remaining formats are tried only when none of them
        reaches the minimum confidence.

        Args:
            image (np.ndarray): Grayscale page image.
            filename_hint (Optional[str]): Original filename; a template id inside it earns a small bonus.

        Returns:
            TemplateMatch: The match. template_id is None when nothing reached the minimum confidence.

        Raises:
            TemplateRecognitionError: If the image is empty or its structure cannot be analysed.
        """
        if image is None or image.size == 0:
            raise TemplateRecognitionError("Cannot recognize a template on an empty page image")

        height, width = image.shape[:2]
        try:
            mask = ink_mask(image, self.config.structure_threshold)
            primary_format = self.format_classifier.classify(mask)
        except cv2.error as e:
            raise TemplateRecognitionError(f"Structure analysis failed: {e}") from e
        logger.info(f"Classified page as {primary_format.value}")

        best = self._best_match(self.registry.by_format(primary_format), mask, width, height, filename_hint)
        if best is None or best.confidence < self.config.min_confidence:
            others = [t for t in self.registry if not t.generic and t.primary_format != primary_format]
            alternative = self._best_match(others, mask, width, height, filename_hint)
            if alternative is not None and (best is None or alternative.confidence > best.confidence):
                best = alternative

        if best is None or best.confidence < self.config.min_confidence:
            confidence = best.confidence if best else 0.0
            logger.warning(f"No template reached confidence {self.config.min_confidence} (best {confidence:.2f})")
            return TemplateMatch(
                template_id=None,
                confidence=confidence,
                primary_format=primary_format,
                detected_elements=best.detected_elements if best else (),
            )

        logger.info(f"Matched template {best.template_id} with confidence {best.confidence:.2f}")
        return best

    def _best_match(
        self,
        templates: Iterable[TemplateDefinition],
        mask: np.ndarray,
        width: int,
        height: int,
        filename_hint: Optional[str],
    ) -> Optional[TemplateMatch]:
        matches = [self._score(template, mask, width, height, filename_hint) for template in templates]
        if not matches:
            return None
        return max(matches, key=lambda match: match.confidence)

    def _score(
        self, template: TemplateDefinition, mask: np.ndarray, width: int, height: int, filename_hint: Optional[str]
    ) -> TemplateMatch:
        scaled = template.scaled_to(width, height)
        elements = []
        for element in scaled.expected_elements:
            ratio = ink_ratio(mask, element.box)
            elements.append(
                DetectedElement(
                    name=element.name,
                    box=element.box,
                    found=ratio >= element.min_ink_ratio,
                    ink_ratio=ratio,
                    required=element.required,
                )
            )

        grid = scaled.bubble_grid
        if grid is not None:
            half = grid.bubble_radius + 1
            centers = grid.centers()
            present = sum(
                1 for x, y in centers if ink_ratio(mask, region_from_center(x, y, half, half)) >= BUBBLE_PRESENCE_INK
            )
            presence = present / len(centers)
            elements.append(
                DetectedElement(
                    name="bubble_grid",
                    box=grid.area,
                    found=presence >= self.config.grid_presence_ratio,
                    ink_ratio=presence,
                )
            )

        required = [element for element in elements if element.required]
        confidence = sum(1 for element in required if element.found) / len(required) if required else 0.0
        if filename_hint and template.template_id in filename_hint.lower():
            confidence += self.config.filename_hint_bonus

        logger.debug(f"Template {template.template_id}: {confidence:.2f}")
        return TemplateMatch(
            template_id=template.template_id,
            confidence=clamp(confidence),
            primary_format=template.primary_format,
            detected_elements=tuple(elements),
            template=scaled,
        )
