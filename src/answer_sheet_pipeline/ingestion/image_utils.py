"""Pixel primitives shared by recognition, detection and extraction."""

import cv2
import numpy as np

from answer_sheet_pipeline.regions.schemas import Region


def ink_mask(image: np.ndarray, threshold: int) -> np.ndarray:
    """Binary mask (255 = ink) of pixels darker than the threshold."""
    _, mask = cv2.threshold(image, threshold - 1, 255, cv2.THRESH_BINARY_INV)
    return mask


def clip_bounds(image: np.ndarray, region: Region) -> tuple[int, int, int, int]:
    """Integer (x0, y0, x1, y1) of a region clipped to the image."""
    height, width = image.shape[:2]
    x0 = int(max(0, min(width, round(region.left))))
    y0 = int(max(0, min(height, round(region.top))))
    x1 = int(max(x0, min(width, round(region.right))))
    y1 = int(max(y0, min(height, round(region.bottom))))
    return x0, y0, x1, y1


def crop(image: np.ndarray, region: Region) -> np.ndarray:
    """View of the image inside a region; empty if the region lies outside."""
    x0, y0, x1, y1 = clip_bounds(image, region)
    return image[y0:y1, x0:x1]


def ink_ratio(mask: np.ndarray, region: Region) -> float:
    """Fraction of ink pixels of a mask inside a region."""
    patch = crop(mask, region)
    if patch.size == 0:
        return 0.0
    return float(np.count_nonzero(patch)) / patch.size


def whiten(image: np.ndarray, regions) -> np.ndarray:
    """Copy of the image with the given regions painted white."""
    cleaned = image.copy()
    for region in regions:
        x0, y0, x1, y1 = clip_bounds(cleaned, region)
        cleaned[y0:y1, x0:x1] = 255
    return cleaned


def encode_png(image: np.ndarray) -> bytes:
    """PNG bytes of an image, for sending crops to remote services."""
    ok, buffer = cv2.imencode(".png", image)
    if not ok:
        raise ValueError("Could not encode image as PNG.")
    return buffer.tobytes()
