"""Derives include and exclude regions for a page from its template and known noise."""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from answer_sheet_pipeline.config import settings
from answer_sheet_pipeline.marks.schemas import HandwritingVerdict, Mark, MarkType
from answer_sheet_pipeline.regions.bbox_utils import expand_region
from answer_sheet_pipeline.regions.schemas import ProcessingRegion, Region
from answer_sheet_pipeline.templates.schemas import TemplateDefinition

logger = logging.getLogger(__name__)

HEADER_CONFIDENCE = 0.95
BUBBLE_GRID_CONFIDENCE = 0.98
TEXT_FIELD_CONFIDENCE = 0.85
MARGIN_CONFIDENCE = 0.7
BOTTOM_BAND_CONFIDENCE = 0.6
NOISE_CONFIDENCE = 0.8

NOISE_LABEL = "noise"
BUBBLE_GRID_LABEL = "bubble_grid"
TEXT_FIELD_LABEL = "text_field"


@dataclass
class RoiConfig:
    """Buffers, strip sizes and the soft-mask penalty, in pixels of the page image."""

    bubble_buffer: int = settings.BUBBLE_BUFFER
    text_buffer: int = settings.TEXT_BUFFER
    margin_width: int = settings.MARGIN_WIDTH
    bottom_band_height: int = settings.BOTTOM_BAND_HEIGHT
    noise_buffer: int = settings.NOISE_BUFFER
    penalty: float = settings.ROI_PENALTY


class RoiManager:
    """Builds ProcessingRegions and answers penalty and region-type queries against them."""

    def __init__(self, config: Optional[RoiConfig] = None):
        self.config = config or RoiConfig()

    def build(
        self,
        template: Optional[TemplateDefinition],
        image_width: int,
        image_height: int,
        noise_regions: Sequence[Region] = (),
    ) -> ProcessingRegion:
        """Derives the processing region of a page.

        Args:
            template (Optional[TemplateDefinition]): Template already scaled to the image, or None.
            image_width (int): Page width in pixels.
            image_height (int): Page height in pixels.
            noise_regions (Sequence[Region]): Areas already known to hold handwriting noise.

        Returns:
            ProcessingRegion: Include regions for the header, id, bubble grid and text fields; exclude regions for
                the margins, the bottom band and the noise.
        """
        include: List[Region] = []
        if template is not None:
            if template.header_region is not None:
                include.append(template.header_region.model_copy(update={"confidence": HEADER_CONFIDENCE}))
            if template.id_region is not None:
                include.append(template.id_region.model_copy(update={"confidence": HEADER_CONFIDENCE}))
            if template.bubble_grid is not None:
                include.append(
                    expand_region(
                        template.bubble_grid.area,
                        self.config.bubble_buffer,
                        image_width,
                        image_height,
                        confidence=BUBBLE_GRID_CONFIDENCE,
                    ).model_copy(update={"label": BUBBLE_GRID_LABEL})
                )
            for text_field in template.text_fields:
                include.append(
                    expand_region(
                        text_field.box, self.config.text_buffer, image_width, image_height, TEXT_FIELD_CONFIDENCE
                    ).model_copy(update={"label": TEXT_FIELD_LABEL})
                )

        exclude = self._margin_strips(image_width, image_height)
        exclude.extend(self._noise(noise_regions, image_width, image_height))

        logger.debug(f"Processing region: {len(include)} include, {len(exclude)} exclude")
        return ProcessingRegion(
            include=tuple(include), exclude=tuple(exclude), image_width=image_width, image_height=image_height
        )

    def refine(self, region: ProcessingRegion, noise_regions: Sequence[Region]) -> ProcessingRegion:
        """Returns a new ProcessingRegion with additional noise exclusions."""
        if not noise_regions:
            return region
        extra = self._noise(noise_regions, region.image_width, region.image_height)
        logger.info(f"Refined processing region with {len(extra)} noise exclusions")
        return region.model_copy(update={"exclude": region.exclude + tuple(extra)})

    def overlapping_exclusions(self, region: ProcessingRegion, box: Region) -> List[Region]:
        """Exclusion regions a box overlaps."""
        return [excluded for excluded in region.exclude if excluded.overlaps(box)]

    def penalty_for(self, region: ProcessingRegion, box: Region) -> float:
        """Soft-mask multiplier for a box: the penalty on any exclusion overlap, else 1.0."""
        return self.config.penalty if self.overlapping_exclusions(region, box) else 1.0

    def region_type_at(self, region: ProcessingRegion, x: float, y: float) -> str:
        """Names the include region containing a point: "bubble", "text" or "other"."""
        for included in region.include:
            if included.contains_point(x, y):
                if included.label == BUBBLE_GRID_LABEL:
                    return "bubble"
                if included.label == TEXT_FIELD_LABEL:
                    return "text"
        return "other"

    def noise_regions_from(self, marks: Sequence[Mark], verdicts: Sequence[HandwritingVerdict]) -> List[Region]:
        """Turns handwriting verdicts into noise regions.

        Scratch work and doodles are noise wherever they are; any other handwriting counts as noise only inside the
        bubble grid, since writing inside a text field is the answer itself.
        """
        noise = []
        for mark, verdict in zip(marks, verdicts):
            if not verdict.is_handwriting:
                continue
            if verdict.mark_type in (MarkType.SCRATCH_WORK, MarkType.DOODLE) or verdict.region_type == "bubble":
                noise.append(mark.bbox)
        return noise

    def _margin_strips(self, width: int, height: int) -> List[Region]:
        margin = min(self.config.margin_width, width // 2)
        band = min(self.config.bottom_band_height, height)
        return [
            Region(left=0, top=0, width=margin, height=height, confidence=MARGIN_CONFIDENCE, label="left_margin"),
            Region(
                left=width - margin,
                top=0,
                width=margin,
                height=height,
                confidence=MARGIN_CONFIDENCE,
                label="right_margin",
            ),
            Region(
                left=0,
                top=height - band,
                width=width,
                height=band,
                confidence=BOTTOM_BAND_CONFIDENCE,
                label="bottom_band",
            ),
        ]

    def _noise(self, noise_regions: Sequence[Region], width: int, height: int) -> List[Region]:
        return [
            expand_region(noise, self.config.noise_buffer, width, height, NOISE_CONFIDENCE).model_copy(
                update={"label": NOISE_LABEL}
            )
            for noise in noise_regions
        ]
