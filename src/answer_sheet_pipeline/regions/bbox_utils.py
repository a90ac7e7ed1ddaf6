"""Utility functions for region operations."""

from typing import Sequence

from answer_sheet_pipeline.regions.schemas import Region


def combine_regions(regions: Sequence[Region], label: str = "") -> Region:
    """Combines regions into a single encompassing Region.

    Args:
        regions (Sequence[Region]): The regions to combine.
        label (str): Label for the combined region.

    Raises:
        ValueError: If the input list is empty.

    Returns:
        Region: The combined region, carrying the lowest confidence of its parts.
    """
    if not regions:
        raise ValueError("Cannot combine an empty list of regions.")

    min_left = min(region.left for region in regions)
    min_top = min(region.top for region in regions)
    max_right = max(region.right for region in regions)
    max_bottom = max(region.bottom for region in regions)

    return Region(
        left=min_left,
        top=min_top,
        width=max_right - min_left,
        height=max_bottom - min_top,
        confidence=min(region.confidence for region in regions),
        label=label,
    )


def expand_region(
    region: Region, margin: float, image_width: float, image_height: float, confidence: float | None = None
) -> Region:
    """Grows a region by a margin on every side, clipped to the image bounds.

    Args:
        region (Region): The region to expand.
        margin (float): Pixels to add on each side.
        image_width (float): Width of the image, used for clipping.
        image_height (float): Height of the image, used for clipping.
        confidence (float | None): Replacement confidence; keeps the original when None.

    Returns:
        Region: The expanded region.
    """
    left = max(0.0, region.left - margin)
    top = max(0.0, region.top - margin)
    right = min(float(image_width), region.right + margin)
    bottom = min(float(image_height), region.bottom + margin)
    return region.model_copy(
        update={
            "left": left,
            "top": top,
            "width": max(0.0, right - left),
            "height": max(0.0, bottom - top),
            "confidence": region.confidence if confidence is None else confidence,
        }
    )


def scale_region(region: Region, scale_x: float, scale_y: float) -> Region:
    """Scales a region from template reference coordinates to image coordinates."""
    return region.model_copy(
        update={
            "left": region.left * scale_x,
            "top": region.top * scale_y,
            "width": region.width * scale_x,
            "height": region.height * scale_y,
        }
    )


def region_from_center(x: float, y: float, half_width: float, half_height: float, label: str = "") -> Region:
    """Builds a region centred on a point."""
    return Region(left=x - half_width, top=y - half_height, width=2 * half_width, height=2 * half_height, label=label)
