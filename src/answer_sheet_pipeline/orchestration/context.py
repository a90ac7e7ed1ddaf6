"""Input document and per-document working state of one pipeline run."""

import time
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Sequence, Tuple

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from answer_sheet_pipeline.extraction.answer_extractor import ExtractionRequest
from answer_sheet_pipeline.marks.schemas import CandidateMark, HandwritingVerdict, Mark
from answer_sheet_pipeline.regions.schemas import ProcessingRegion
from answer_sheet_pipeline.templates.schemas import QuestionSlot, TemplateDefinition, TemplateMatch


class AnswerSheetDocument(BaseModel):
    """One scanned answer sheet submitted for extraction."""

    model_config = ConfigDict(frozen=True)

    document_id: str = Field(min_length=1)
    filename: str = ""
    content: bytes
    expected_question_count: Optional[int] = Field(default=None, ge=1)


@dataclass(eq=False)
class DocumentContext:
    """State threaded from stage to stage while one document is processed.

    A context is built for each process_document call and never shared between documents.
    """

    document: AnswerSheetDocument
    image: np.ndarray
    template_match: TemplateMatch
    template: TemplateDefinition
    processing_region: ProcessingRegion
    slots: Tuple[QuestionSlot, ...]
    started_at: float
    layout_slots: Tuple[QuestionSlot, ...] = ()
    confidence_factor: float = 1.0
    base_provenance: Tuple[str, ...] = ()
    marks: Tuple[Mark, ...] = ()
    verdicts: Tuple[HandwritingVerdict, ...] = ()
    candidates: Tuple[CandidateMark, ...] = ()
    low_confidence_fallbacks: FrozenSet[int] = frozenset()

    @property
    def image_size(self) -> Tuple[int, int]:
        height, width = self.image.shape[:2]
        return width, height

    def slot(self, question_number: int) -> QuestionSlot:
        return self._slots_by_number()[question_number]

    def extraction_request(self, candidates: Optional[Sequence[CandidateMark]] = None) -> ExtractionRequest:
        """Extraction inputs for this document, optionally with a different candidate set."""
        return ExtractionRequest(
            slots=self.slots,
            image=self.image,
            processing_region=self.processing_region,
            candidates=tuple(self.candidates if candidates is None else candidates),
            confidence_factor=self.confidence_factor,
            base_provenance=self.base_provenance,
            layout_slots=self.layout_slots,
        )

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started_at) * 1000

    def _slots_by_number(self) -> Dict[int, QuestionSlot]:
        return {slot.question_number: slot for slot in self.slots}
