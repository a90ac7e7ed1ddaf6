"""Merges the outputs of every stage into the final records of one document."""

import logging
from collections import Counter
from statistics import mean
from typing import Mapping, Optional, Sequence

from answer_sheet_pipeline.aggregation.schemas import FinalAnswerRecord, ProcessingResult, ProcessingSummary
from answer_sheet_pipeline.extraction.schemas import ExtractedAnswer
from answer_sheet_pipeline.recovery.schemas import RecoveryOutcome
from answer_sheet_pipeline.routing.schemas import RoutingResult
from answer_sheet_pipeline.templates.schemas import TemplateMatch
from answer_sheet_pipeline.utils.confidence import clamp
from answer_sheet_pipeline.validation.schemas import ValidationReport

logger = logging.getLogger(__name__)


class ResultAggregator:
    """Sole writer of FinalAnswerRecords; reads completed stage outputs only."""

    def aggregate(
        self,
        document_id: str,
        answers: Sequence[ExtractedAnswer],
        report: ValidationReport,
        template_match: TemplateMatch,
        routing: Optional[RoutingResult] = None,
        recovery: Optional[Mapping[int, RecoveryOutcome]] = None,
        out_of_bounds_marks: int = 0,
        processing_time_ms: float = 0.0,
    ) -> ProcessingResult:
        """Builds the final records and the processing summary.

        Args:
            document_id (str): Id of the processed document.
            answers (Sequence[ExtractedAnswer]): Best answer per question, recovered answers included.
            report (ValidationReport): Validation of those final answers.
            template_match (TemplateMatch): Outcome of template recognition.
            routing (Optional[RoutingResult]): Tier routing of the document, if it ran.
            recovery (Optional[Mapping[int, RecoveryOutcome]]): Recovery outcome per recovered question.
            out_of_bounds_marks (int): Marks rejected as out-of-bounds during extraction.
            processing_time_ms (float): Wall time spent on the document so far.

        Returns:
            ProcessingResult: Records ordered by question number, and the summary.
        """
        recovery = recovery or {}
        records = tuple(
            self._record(answer, report, recovery.get(answer.question_number))
            for answer in sorted(answers, key=lambda a: a.question_number)
        )

        quality = self.quality_score(records, template_match, report)
        summary = ProcessingSummary(
            document_id=document_id,
            template_id=template_match.template_id,
            template_match_confidence=template_match.confidence,
            primary_format=template_match.primary_format,
            question_count=len(records),
            methods_used=dict(Counter(record.extraction_method for record in records)),
            fallbacks_triggered=routing.fallbacks_triggered if routing else 0,
            quality_score=quality,
            total_processing_time_ms=max(0.0, processing_time_ms),
            requires_reprocessing=report.requires_reprocessing,
            manual_review_count=sum(1 for record in records if record.manual_review),
            out_of_bounds_marks=out_of_bounds_marks,
            estimated_cost=routing.estimated_cost if routing else 0.0,
            cost_savings=routing.cost_savings if routing else 0.0,
        )
        logger.info(
            f"Aggregated {len(records)} answers: quality {quality:.2f}, "
            f"{summary.manual_review_count} for manual review, {summary.fallbacks_triggered} fallbacks"
        )
        return ProcessingResult(records=records, summary=summary)

    @staticmethod
    def quality_score(
        records: Sequence[FinalAnswerRecord], template_match: TemplateMatch, report: ValidationReport
    ) -> float:
        """Mean of extraction confidence, template-match confidence and validation pass rate, in [0,1]."""
        extraction = mean(record.confidence for record in records) if records else 0.0
        template = template_match.confidence if template_match.matched else 0.0
        return clamp(mean([extraction, template, report.pass_rate]))

    @staticmethod
    def _record(
        answer: ExtractedAnswer, report: ValidationReport, outcome: Optional[RecoveryOutcome]
    ) -> FinalAnswerRecord:
        failing = [finding for finding in report.for_question(answer.question_number) if not finding.passed]
        reasons = [finding.details for finding in failing]
        if answer.review_flag:
            reasons.append("tier reading disagrees with extraction")

        if outcome is not None:
            validation_passed = outcome.resolved
            manual_review = outcome.manual_review
            if outcome.reason:
                reasons.append(outcome.reason)
            attempts = len(outcome.attempts)
        else:
            validation_passed = not failing
            manual_review = False
            attempts = 0

        return FinalAnswerRecord(
            question_number=answer.question_number,
            question_type=answer.question_type,
            value=answer.value,
            confidence=clamp(answer.confidence),
            validation_passed=validation_passed,
            extraction_method=answer.extraction_method,
            provenance_chain=answer.provenance,
            manual_review=manual_review,
            review_reasons=tuple(reasons),
            recovery_attempts=attempts,
        )
