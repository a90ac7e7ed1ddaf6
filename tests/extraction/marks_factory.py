"""Builders for candidate marks placed on bubble centres."""

from answer_sheet_pipeline.marks.schemas import CandidateMark, HandwritingVerdict, Mark, MarkType, StrokeFeatures


def disc_mark(center_x: int, center_y: int, radius: int = 7) -> Mark:
    """Mark whose bounding box is that of a filled disc drawn at the given centre."""
    size = 2 * radius + 1
    return Mark(x=center_x - radius, y=center_y - radius, width=size, height=size, intensity=255.0, area=149)


def candidate(mark: Mark, weight: float = 1.0, consistency: float = 1.0, pressure: float = 1.0) -> CandidateMark:
    features = StrokeFeatures(
        aspect_ratio=mark.width / mark.height,
        irregularity=0.0,
        stroke_width=mark.area / max(mark.width, mark.height),
        pressure=pressure,
        consistency=consistency,
        near_bubble=True,
        size_in_band=True,
    )
    verdict = HandwritingVerdict(
        is_handwriting=False, confidence=0.0, mark_type=MarkType.BUBBLE_FILL, stroke_features=features
    )
    return CandidateMark(mark=mark, verdict=verdict, weight=weight)
