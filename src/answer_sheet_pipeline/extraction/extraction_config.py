from dataclasses import dataclass

from answer_sheet_pipeline.config import settings


@dataclass
class ExtractionConfig:
    """Configuration for answer extraction."""

    grid_tolerance_factor: float = settings.GRID_TOLERANCE_FACTOR
    text_min_length: int = settings.TEXT_MIN_LENGTH
    text_max_length: int = settings.TEXT_MAX_LENGTH
    essay_min_length: int = settings.ESSAY_MIN_LENGTH
    essay_max_length: int = settings.ESSAY_MAX_LENGTH
    blank_confidence: float = settings.BLANK_CONFIDENCE
    text_buffer: int = settings.TEXT_BUFFER
    mark_ink_threshold: int = settings.MARK_INK_THRESHOLD
    fill_threshold: float = settings.FILL_THRESHOLD
    fill_margin: float = settings.FILL_MARGIN
    refocus_step: float = settings.REFOCUS_STEP
