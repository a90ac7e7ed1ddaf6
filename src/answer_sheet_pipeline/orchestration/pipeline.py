"""Orchestration pipeline for extracting and validating answers from scanned answer sheets."""

import logging
import time
from functools import partial
from typing import List, Optional, Sequence, Tuple

import numpy as np

from answer_sheet_pipeline.aggregation.aggregator import ResultAggregator
from answer_sheet_pipeline.aggregation.schemas import ProcessingResult
from answer_sheet_pipeline.complexity.analyzer import ComplexityAnalyzer
from answer_sheet_pipeline.config import settings
from answer_sheet_pipeline.custom_logging.log_context import document_id_context
from answer_sheet_pipeline.extraction.answer_extractor import AnswerExtractor
from answer_sheet_pipeline.extraction.schemas import ExtractedAnswer, ExtractionParameters
from answer_sheet_pipeline.ingestion.image_loader import DocumentLoadError, load_page_image
from answer_sheet_pipeline.ingestion.image_utils import crop, encode_png
from answer_sheet_pipeline.marks.detector import MarkDetector
from answer_sheet_pipeline.marks.discriminator import HandwritingDiscriminator
from answer_sheet_pipeline.orchestration.context import AnswerSheetDocument, DocumentContext
from answer_sheet_pipeline.recovery.controller import RecoveryController
from answer_sheet_pipeline.regions.bbox_utils import expand_region
from answer_sheet_pipeline.regions.roi_manager import RoiManager
from answer_sheet_pipeline.routing.router import BatchRouter
from answer_sheet_pipeline.routing.schemas import FallbackReason, RoutingResult, TierRequest
from answer_sheet_pipeline.templates.recognizer import TemplateRecognitionError, TemplateRecognizer
from answer_sheet_pipeline.templates.registry import TemplateRegistry
from answer_sheet_pipeline.templates.schemas import QuestionType, TemplateDefinition, TemplateMatch
from answer_sheet_pipeline.validation.engine import ValidationEngine
from answer_sheet_pipeline.validation.schemas import ValidationFinding

logger = logging.getLogger(__name__)

EXPENSIVE_TIER_METHOD = "expensive_tier"
TIER_CROP_MARGIN = 4


class DocumentProcessingError(Exception):
    """Raised when a document has no usable template and no extractable regions."""


class PipelineError(Exception):
    """Base exception for pipeline failures."""


class Pipeline:
    """Orchestrates answer extraction: recognition -> regions -> marks -> extraction -> routing -> validation ->
    recovery -> aggregation."""

    def __init__(
        self,
        registry: TemplateRegistry,
        template_recognizer: TemplateRecognizer,
        roi_manager: RoiManager,
        mark_detector: MarkDetector,
        discriminator: HandwritingDiscriminator,
        answer_extractor: AnswerExtractor,
        complexity_analyzer: ComplexityAnalyzer,
        router: BatchRouter,
        validation_engine: ValidationEngine,
        recovery_controller: RecoveryController,
        aggregator: ResultAggregator,
        generic_extraction_penalty: float = settings.GENERIC_EXTRACTION_PENALTY,
    ):
        """Initializes the orchestrator with injected dependencies.

        Args:
            registry: Template registry, used for generic fallback layouts.
            template_recognizer: Matches pages against the registry.
            roi_manager: Derives include and exclude regions.
            mark_detector: Finds candidate marks on the page.
            discriminator: Separates answer marks from handwriting.
            answer_extractor: Reads each question with its type's strategy.
            complexity_analyzer: Scores questions for tier routing.
            router: Batches questions to the processing tiers.
            validation_engine: Checks the answer set.
            recovery_controller: Retries questions that failed validation.
            aggregator: Builds the final records.
            generic_extraction_penalty: Confidence multiplier when no template matched.
        """
        self.registry = registry
        self.template_recognizer = template_recognizer
        self.roi_manager = roi_manager
        self.mark_detector = mark_detector
        self.discriminator = discriminator
        self.answer_extractor = answer_extractor
        self.complexity_analyzer = complexity_analyzer
        self.router = router
        self.validation_engine = validation_engine
        self.recovery_controller = recovery_controller
        self.aggregator = aggregator
        self.generic_extraction_penalty = generic_extraction_penalty

    def process_document(self, document: AnswerSheetDocument) -> ProcessingResult:
        """Runs the full pipeline for a single answer sheet.

        Args:
            document (AnswerSheetDocument): The scanned sheet and its optional expected question count.

        Returns:
            ProcessingResult: One final record per question and the processing summary.

        Raises:
            DocumentLoadError: If the document bytes cannot be decoded.
            TemplateRecognitionError: If the page layout cannot be analysed.
            DocumentProcessingError: If no template or extractable region can be found.
            PipelineError: On any unexpected failure.
        """
        started_at = time.perf_counter()
        token = document_id_context.set(document.document_id)
        logger.info("Starting answer sheet processing pipeline")

        try:
            context = self._prepare(document, started_at)
            answers, out_of_bounds = self._extract(context)
            answers, routing = self._route(context, answers)

            report = self.validation_engine.validate(
                answers, document.expected_question_count, context.low_confidence_fallbacks
            )
            outcomes = {}
            if report.failing():
                outcomes = self.recovery_controller.recover(
                    answers, report, partial(self._reextract, context), partial(self._revalidate, context)
                )
                if outcomes:
                    answers = [
                        outcomes[a.question_number].best_answer if a.question_number in outcomes else a for a in answers
                    ]
                    report = self.validation_engine.validate(
                        answers, document.expected_question_count, context.low_confidence_fallbacks
                    )

            result = self.aggregator.aggregate(
                document_id=document.document_id,
                answers=answers,
                report=report,
                template_match=context.template_match,
                routing=routing,
                recovery=outcomes,
                out_of_bounds_marks=out_of_bounds,
                processing_time_ms=context.elapsed_ms(),
            )
            logger.info(
                f"Successfully finished processing answer sheet in {result.summary.total_processing_time_ms:.0f} ms"
            )
            return result

        except (DocumentLoadError, TemplateRecognitionError, DocumentProcessingError) as e:
            logger.critical(f"Pipeline failed for answer sheet: {e}", exc_info=True)
            raise
        except Exception as e:
            logger.critical(f"An unexpected error occurred in the pipeline for answer sheet: {e}", exc_info=True)
            raise PipelineError(f"Unexpected pipeline failure: {str(e)}") from e
        finally:
            logger.info("Cleaning up context for answer sheet")
            document_id_context.reset(token)

    def _prepare(self, document: AnswerSheetDocument, started_at: float) -> DocumentContext:
        """Loads the page, settles on a template and classifies the marks on it."""
        image = load_page_image(document.content)
        height, width = image.shape[:2]

        match = self.template_recognizer.recognize(image, document.filename)
        template, confidence_factor, provenance = self._resolve_template(match, width, height)

        region = self.roi_manager.build(template, width, height)
        if not region.include:
            raise DocumentProcessingError("No template match and no extractable regions on the page.")

        layout_slots = tuple(template.question_slots())
        slots = tuple(template.question_slots(document.expected_question_count))
        if not slots:
            raise DocumentProcessingError(f"Template {template.template_id} defines no questions.")

        marks = self.mark_detector.detect(image)
        bubble_centers, bubble_radius = self._bubble_layout(template)
        region_types = [self.roi_manager.region_type_at(region, m.center_x, m.center_y) for m in marks]
        verdicts = self.discriminator.classify_all(marks, bubble_centers, bubble_radius, region_types)

        region = self.roi_manager.refine(region, self.roi_manager.noise_regions_from(marks, verdicts))
        candidates = self.discriminator.select_candidates(marks, verdicts)
        logger.info(f"{len(candidates)} of {len(marks)} marks kept as answer candidates")

        return DocumentContext(
            document=document,
            image=image,
            template_match=match,
            template=template,
            processing_region=region,
            slots=slots,
            started_at=started_at,
            layout_slots=layout_slots,
            confidence_factor=confidence_factor,
            base_provenance=provenance,
            marks=tuple(marks),
            verdicts=tuple(verdicts),
            candidates=tuple(candidates),
        )

    def _resolve_template(
        self, match: TemplateMatch, width: int, height: int
    ) -> Tuple[TemplateDefinition, float, Tuple[str, ...]]:
        if match.matched and match.template is not None:
            return match.template, 1.0, ("template_aware",)

        generic = self.registry.generic_for(match.primary_format)
        if generic is None:
            raise DocumentProcessingError(
                f"No template matched and no generic layout is registered for {match.primary_format.value}."
            )
        logger.warning(
            f"Falling back to generic template {generic.template_id}; "
            f"confidences scaled by {self.generic_extraction_penalty}"
        )
        return generic.scaled_to(width, height), self.generic_extraction_penalty, ("generic_template",)

    @staticmethod
    def _bubble_layout(template: TemplateDefinition) -> Tuple[Optional[np.ndarray], Optional[float]]:
        grid = template.bubble_grid
        if grid is None:
            return None, None
        return np.array(grid.centers(), dtype=float), grid.bubble_radius

    def _extract(self, context: DocumentContext) -> Tuple[List[ExtractedAnswer], int]:
        result = self.answer_extractor.extract(context.extraction_request())
        logger.info(f"Extracted {len(result.answers)} answers, {result.out_of_bounds} out-of-bounds marks")
        return list(result.answers), result.out_of_bounds

    def _route(
        self, context: DocumentContext, answers: Sequence[ExtractedAnswer]
    ) -> Tuple[List[ExtractedAnswer], RoutingResult]:
        """Scores, routes and folds tier outcomes back into the answers."""
        scores = self.complexity_analyzer.analyze_all(answers)
        requests = {answer.question_number: self._tier_request(context, answer) for answer in answers}
        routing = self.router.route(answers, scores, requests)

        context.low_confidence_fallbacks = frozenset(
            event.question_number
            for event in routing.fallback_events
            if event.reason == FallbackReason.LOW_CONFIDENCE
        )
        merged = [
            self.router.merge(answer, routing.outcomes[answer.question_number])
            if answer.question_number in routing.outcomes
            else answer
            for answer in answers
        ]
        return merged, routing

    def _tier_request(self, context: DocumentContext, answer: ExtractedAnswer) -> TierRequest:
        slot = context.slot(answer.question_number)
        width, height = context.image_size
        box = expand_region(slot.answer_box, TIER_CROP_MARGIN, width, height)
        return TierRequest(
            question_number=answer.question_number,
            question_type=answer.question_type,
            extracted_value=answer.value,
            valid_options=slot.valid_options if slot.question_type == QuestionType.MULTIPLE_CHOICE else (),
            image_png=encode_png(crop(context.image, box)),
        )

    def _reextract(
        self, context: DocumentContext, question_number: int, parameters: ExtractionParameters
    ) -> ExtractedAnswer:
        """Re-reads one question with recovery parameters."""
        candidates = self.discriminator.select_candidates(
            context.marks, context.verdicts, parameters.noise_filter_strength
        )
        result = self.answer_extractor.extract(context.extraction_request(candidates), parameters, [question_number])
        answer = result.answers[0]
        if parameters.method == EXPENSIVE_TIER_METHOD:
            outcome = self.router.verify(answer, self._tier_request(context, answer))
            answer = self.router.merge(answer, outcome)
        return answer

    def _revalidate(self, context: DocumentContext, answer: ExtractedAnswer) -> List[ValidationFinding]:
        return self.validation_engine.validate_answer(
            answer, answer.question_number in context.low_confidence_fallbacks
        )
