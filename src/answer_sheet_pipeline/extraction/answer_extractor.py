"""Dispatches question slots to their extraction strategies."""

import logging
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from statistics import median
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from answer_sheet_pipeline.config import settings
from answer_sheet_pipeline.custom_logging.log_context import map_in_context
from answer_sheet_pipeline.extraction.extraction_config import ExtractionConfig
from answer_sheet_pipeline.extraction.schemas import (
    AttributedMark,
    ExtractedAnswer,
    ExtractionParameters,
    QuestionContext,
)
from answer_sheet_pipeline.extraction.strategies.base import AnswerExtractionStrategy
from answer_sheet_pipeline.marks.schemas import CandidateMark
from answer_sheet_pipeline.regions.bbox_utils import combine_regions
from answer_sheet_pipeline.regions.schemas import ProcessingRegion
from answer_sheet_pipeline.templates.schemas import QuestionSlot, QuestionType

logger = logging.getLogger(__name__)

GRID_REALIGNMENT = "grid_realignment"
MIN_MARKS_FOR_REALIGNMENT = 3


@dataclass(frozen=True, eq=False)
class ExtractionRequest:
    """Document-level inputs shared by every question of one extraction pass.

    Marks are attributed against layout_slots, every slot of the template (slots when empty). Marks that land on a
    question outside slots are dropped, never moved onto a processed question.
    """

    slots: Tuple[QuestionSlot, ...]
    image: np.ndarray
    processing_region: ProcessingRegion
    candidates: Tuple[CandidateMark, ...]
    confidence_factor: float = 1.0
    base_provenance: Tuple[str, ...] = ()
    layout_slots: Tuple[QuestionSlot, ...] = ()

    @property
    def attribution_slots(self) -> Tuple[QuestionSlot, ...]:
        return self.layout_slots or self.slots


@dataclass(frozen=True)
class ExtractionResult:
    """Answers of one extraction pass, in slot order."""

    answers: Tuple[ExtractedAnswer, ...]
    out_of_bounds: int = 0


class AnswerExtractor:
    """Attributes candidate marks to questions and runs the strategy for each question type."""

    def __init__(
        self,
        strategy_handlers: Mapping[QuestionType, AnswerExtractionStrategy],
        config: Optional[ExtractionConfig] = None,
        max_workers: int = settings.EXTRACTION_MAX_WORKERS,
    ):
        """Initializes the AnswerExtractor.

        Args:
            strategy_handlers (Mapping[QuestionType, AnswerExtractionStrategy]):
                Mapping of question types to the strategies that read them.
            config (Optional[ExtractionConfig]): Extraction tunables; defaults come from settings.
            max_workers (int): Questions extracted in parallel.
        """
        self.strategy_handlers = strategy_handlers
        self.config = config or ExtractionConfig()
        self.max_workers = max(1, max_workers)

    def extract(
        self,
        request: ExtractionRequest,
        parameters: Optional[ExtractionParameters] = None,
        question_numbers: Optional[Sequence[int]] = None,
    ) -> ExtractionResult:
        """Extracts answers for the requested questions.

        Args:
            request (ExtractionRequest): Page, slots, processing region and candidate marks.
            parameters (Optional[ExtractionParameters]): Recovery adjustments; defaults to none.
            question_numbers (Optional[Sequence[int]]): Restricts extraction to these questions.

        Returns:
            ExtractionResult: One answer per extracted slot plus the count of out-of-bounds marks.
        """
        parameters = parameters or ExtractionParameters()
        offset = (0.0, 0.0)
        if parameters.method == GRID_REALIGNMENT:
            aligned, _ = self.attribute_marks(request.attribution_slots, request.candidates)
            offset = self.estimate_grid_offset(aligned)
            logger.info(f"Realigning grid by ({offset[0]:.1f}, {offset[1]:.1f}) px")

        attributed, out_of_bounds = self.attribute_marks(
            request.attribution_slots, request.candidates, parameters.tolerance_scale, offset
        )
        processed = {slot.question_number for slot in request.slots}
        ignored = sum(len(marks) for number, marks in attributed.items() if number not in processed)
        if ignored:
            logger.info(f"Ignoring {ignored} marks on questions outside the processed set")

        slots = request.slots
        if question_numbers is not None:
            wanted = set(question_numbers)
            slots = tuple(slot for slot in slots if slot.question_number in wanted)

        contexts = [
            QuestionContext(
                slot=slot,
                image=request.image,
                processing_region=request.processing_region,
                marks=tuple(attributed.get(slot.question_number, ())),
                parameters=parameters,
                confidence_factor=request.confidence_factor,
                base_provenance=request.base_provenance,
            )
            for slot in slots
        ]

        if self.max_workers == 1 or len(contexts) <= 1:
            answers = [self._extract_question(context) for context in contexts]
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                answers = list(map_in_context(executor, self._extract_question, contexts))

        return ExtractionResult(answers=tuple(answers), out_of_bounds=out_of_bounds)

    def attribute_marks(
        self,
        slots: Sequence[QuestionSlot],
        candidates: Sequence[CandidateMark],
        tolerance_scale: float = 1.0,
        offset: Tuple[float, float] = (0.0, 0.0),
    ) -> Tuple[Dict[int, List[AttributedMark]], int]:
        """Assigns each candidate mark to the nearest bubble on the page.

        Marks beyond the grid tolerance of their nearest bubble are rejected: inside the bubble grid they are
        counted as out-of-bounds, elsewhere they are simply not answer marks.

        Args:
            slots: Question slots; only multiple-choice slots take part.
            candidates: Candidate marks that survived handwriting filtering.
            tolerance_scale: Multiplier on the grid tolerance (below 1 narrows it).
            offset: Shift applied to every expected bubble centre.

        Returns:
            Marks per question number, and the number of out-of-bounds marks.
        """
        grid_slots = [
            slot for slot in slots if slot.question_type == QuestionType.MULTIPLE_CHOICE and slot.option_centers
        ]
        if not grid_slots or not candidates:
            return {}, 0

        entries = [
            (slot, option, (x + offset[0], y + offset[1]))
            for slot in grid_slots
            for option, (x, y) in slot.option_centers.items()
        ]
        centers = np.array([center for _, _, center in entries], dtype=float)
        grid_area = combine_regions([slot.answer_box for slot in grid_slots])

        attributed: Dict[int, List[AttributedMark]] = defaultdict(list)
        out_of_bounds = 0
        for candidate in candidates:
            mark = candidate.mark
            distances = np.hypot(centers[:, 0] - mark.center_x, centers[:, 1] - mark.center_y)
            nearest = int(np.argmin(distances))
            slot, option, expected = entries[nearest]
            tolerance = self.config.grid_tolerance_factor * slot.option_spacing * tolerance_scale
            deviation = float(distances[nearest])

            if tolerance > 0 and deviation <= tolerance:
                attributed[slot.question_number].append(
                    AttributedMark(
                        candidate=candidate,
                        option=option,
                        expected_position=expected,
                        deviation=deviation,
                        tolerance=tolerance,
                    )
                )
            elif grid_area.contains_point(mark.center_x, mark.center_y):
                out_of_bounds += 1
                logger.warning(
                    f"Mark at ({mark.center_x:.0f}, {mark.center_y:.0f}) is {deviation:.1f}px from the nearest bubble "
                    f"(tolerance {tolerance:.1f}px), rejected as out-of-bounds"
                )

        return dict(attributed), out_of_bounds

    @staticmethod
    def estimate_grid_offset(attributed: Mapping[int, Sequence[AttributedMark]]) -> Tuple[float, float]:
        """Median displacement of attributed marks from their bubbles; zero when too few marks agree."""
        marks = [mark for question_marks in attributed.values() for mark in question_marks]
        if len(marks) < MIN_MARKS_FOR_REALIGNMENT:
            return (0.0, 0.0)
        dx = median(m.candidate.mark.center_x - m.expected_position[0] for m in marks)
        dy = median(m.candidate.mark.center_y - m.expected_position[1] for m in marks)
        return (float(dx), float(dy))

    def _extract_question(self, context: QuestionContext) -> ExtractedAnswer:
        slot = context.slot
        strategy = self.strategy_handlers.get(slot.question_type)
        if strategy is None:
            logger.error(f"No extraction strategy for question type {slot.question_type.value}")
            return ExtractedAnswer.failed(slot, "unsupported_type")

        try:
            answer = strategy.extract(context)
        except Exception as e:
            logger.error(f"Extraction failed for question {slot.question_number}: {e}", exc_info=True)
            return ExtractedAnswer.failed(slot, type(e).__name__)

        logger.debug(
            f"Question {slot.question_number}: value={answer.value!r} confidence={answer.confidence:.2f} "
            f"method={answer.extraction_method}"
        )
        return answer
