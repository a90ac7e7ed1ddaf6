"""Impossibility, pattern, geometric and interference checks over a document's answers."""

import logging
import math
from dataclasses import dataclass
from typing import Collection, List, Optional, Sequence, Tuple

from answer_sheet_pipeline.config import settings
from answer_sheet_pipeline.extraction.schemas import ExtractedAnswer
from answer_sheet_pipeline.templates.schemas import QuestionType
from answer_sheet_pipeline.utils.confidence import clamp
from answer_sheet_pipeline.validation.schemas import FindingType, Severity, ValidationFinding, ValidationReport

logger = logging.getLogger(__name__)

CRITICAL_CONFIDENCE = 0.95
WARNING_CONFIDENCE = 0.7
SCATTERED_LOW = 0.3
SCATTERED_HIGH = 0.7
INTERFERENCE_CONFIDENCE = 0.5
INTERFERENCE_FALLBACK_CONFIDENCE = 0.3


@dataclass
class ValidationConfig:
    """Thresholds for the validation checks."""

    min_fill_threshold: float = settings.MIN_FILL_THRESHOLD
    geometric_max_deviation: float = settings.GEOMETRIC_MAX_DEVIATION
    interference_warning_threshold: float = settings.INTERFERENCE_WARNING_THRESHOLD
    interference_critical_threshold: float = settings.INTERFERENCE_CRITICAL_THRESHOLD
    pattern_anomaly_threshold: float = settings.PATTERN_ANOMALY_THRESHOLD
    question_count_tolerance: int = settings.QUESTION_COUNT_TOLERANCE


class ValidationEngine:
    """Runs the four validation checks and the document-level count check."""

    def __init__(self, config: Optional[ValidationConfig] = None):
        self.config = config or ValidationConfig()

    def validate(
        self,
        answers: Sequence[ExtractedAnswer],
        expected_question_count: Optional[int] = None,
        low_confidence_fallbacks: Collection[int] = (),
    ) -> ValidationReport:
        """Validates a complete answer set.

        Args:
            answers (Sequence[ExtractedAnswer]): One answer per detected question.
            expected_question_count (Optional[int]): Question count supplied at ingestion, if any.
            low_confidence_fallbacks (Collection[int]): Questions the cheap tier struggled to read; they count
                towards the interference rate.

        Returns:
            ValidationReport: Question-level and document-level findings.
        """
        findings: List[ValidationFinding] = []
        for answer in answers:
            findings.extend(self.validate_answer(answer, answer.question_number in low_confidence_fallbacks))

        pattern_finding, anomaly_fraction = self.check_pattern_consistency(answers)
        interference_finding, interference_rate = self.check_interference_rate(answers, low_confidence_fallbacks)
        findings.extend([pattern_finding, interference_finding])
        if expected_question_count is not None:
            findings.append(self.check_question_count(len(answers), expected_question_count))

        report = ValidationReport(
            findings=tuple(findings), anomaly_fraction=anomaly_fraction, interference_rate=interference_rate
        )
        logger.info(
            f"Validation: {len(report.failing())} of {len(findings)} findings failing, "
            f"requires reprocessing: {report.requires_reprocessing}"
        )
        return report

    def validate_answer(
        self, answer: ExtractedAnswer, low_confidence_fallback: bool = False
    ) -> List[ValidationFinding]:
        """Question-level findings for one answer."""
        findings = self.check_impossibility(answer)
        findings.extend(self.check_anomalies(answer))
        geometric = self.check_geometry(answer)
        if geometric is not None:
            findings.append(geometric)
        interference = self.check_interference(answer, low_confidence_fallback)
        if interference is not None:
            findings.append(interference)
        return findings

    def check_impossibility(self, answer: ExtractedAnswer) -> List[ValidationFinding]:
        """Multiple fills, out-of-set values and values read below the minimum fill confidence."""
        findings = []
        number = answer.question_number
        if answer.question_type == QuestionType.MULTIPLE_CHOICE:
            if answer.multiple_marks:
                findings.append(
                    self._impossibility(
                        number, f"Multiple fills detected: {', '.join(answer.raw_marks)}", critical=True
                    )
                )
            if answer.value is not None and answer.valid_options and answer.value not in answer.valid_options:
                findings.append(
                    self._impossibility(number, f"Value {answer.value!r} is not a valid option", critical=True)
                )
        if answer.value is not None and answer.confidence < self.config.min_fill_threshold:
            findings.append(
                self._impossibility(
                    number,
                    f"Value {answer.value!r} read at confidence {answer.confidence:.2f}, "
                    f"below the minimum fill threshold {self.config.min_fill_threshold}",
                    critical=False,
                )
            )
        return findings

    def check_anomalies(self, answer: ExtractedAnswer) -> List[ValidationFinding]:
        """Scattered-mark, incomplete-fill and answer-length anomalies of one answer."""
        findings = []
        reasons = self.anomaly_reasons(answer)
        if reasons:
            findings.append(
                ValidationFinding(
                    type=FindingType.PATTERN,
                    passed=False,
                    confidence=WARNING_CONFIDENCE,
                    details="; ".join(reasons),
                    severity=Severity.WARNING,
                    question_number=answer.question_number,
                )
            )
        if answer.value is not None and not answer.format_valid:
            findings.append(
                ValidationFinding(
                    type=FindingType.PATTERN,
                    passed=False,
                    confidence=CRITICAL_CONFIDENCE,
                    details=(
                        f"Answer length {len(answer.value)} outside the allowed range "
                        f"for {answer.question_type.value}"
                    ),
                    severity=Severity.WARNING,
                    question_number=answer.question_number,
                )
            )
        return findings

    def anomaly_reasons(self, answer: ExtractedAnswer) -> List[str]:
        reasons = []
        has_marks = answer.value is not None or bool(answer.raw_marks)
        if has_marks and SCATTERED_LOW < answer.confidence < SCATTERED_HIGH:
            reasons.append("scattered marks")
        if answer.value is not None and answer.confidence < self.config.min_fill_threshold:
            reasons.append("incomplete fill")
        return reasons

    def check_pattern_consistency(self, answers: Sequence[ExtractedAnswer]) -> Tuple[ValidationFinding, float]:
        """Document-level anomaly fraction; fails at or above the anomaly threshold."""
        anomalous = sum(1 for answer in answers if self.anomaly_reasons(answer))
        fraction = anomalous / len(answers) if answers else 0.0
        passed = fraction < self.config.pattern_anomaly_threshold
        return (
            ValidationFinding(
                type=FindingType.PATTERN,
                passed=passed,
                confidence=clamp(1.0 - fraction),
                details=f"{anomalous} of {len(answers)} questions show scattered or incomplete marks",
                correction_suggested=not passed,
                severity=Severity.INFO if passed else Severity.WARNING,
            ),
            fraction,
        )

    def check_geometry(self, answer: ExtractedAnswer) -> Optional[ValidationFinding]:
        """Deviation of a mark from its expected grid position; None when either position is unknown."""
        if answer.position is None or answer.expected_position is None:
            return None

        max_deviation = self.config.geometric_max_deviation
        deviation = math.hypot(
            answer.position[0] - answer.expected_position[0], answer.position[1] - answer.expected_position[1]
        )
        passed = deviation <= max_deviation
        fallback_required = deviation > 2 * max_deviation
        if fallback_required:
            severity = Severity.CRITICAL
        elif not passed:
            severity = Severity.WARNING
        else:
            severity = Severity.INFO
        return ValidationFinding(
            type=FindingType.GEOMETRIC,
            passed=passed,
            confidence=max(0.0, 1.0 - deviation / (2 * max_deviation)),
            details=f"Mark deviates {deviation:.1f}px from its expected position (max {max_deviation:.0f}px)",
            correction_suggested=deviation > 1.5 * max_deviation,
            fallback_required=fallback_required,
            severity=severity,
            question_number=answer.question_number,
        )

    def check_interference(
        self, answer: ExtractedAnswer, low_confidence_fallback: bool = False
    ) -> Optional[ValidationFinding]:
        """Flags a question read at low confidence or overlapping handwriting; None when not flagged."""
        if not self.is_interfered(answer, low_confidence_fallback):
            return None
        causes = []
        if answer.confidence < INTERFERENCE_CONFIDENCE:
            causes.append(f"confidence {answer.confidence:.2f}")
        if answer.handwriting_overlap:
            causes.append("handwriting overlap")
        if low_confidence_fallback:
            causes.append("low-confidence tier fallback")
        return ValidationFinding(
            type=FindingType.INTERFERENCE,
            passed=False,
            confidence=clamp(1.0 - answer.confidence),
            details="Possible handwriting interference: " + ", ".join(causes),
            correction_suggested=True,
            fallback_required=answer.confidence < INTERFERENCE_FALLBACK_CONFIDENCE,
            severity=Severity.WARNING,
            question_number=answer.question_number,
        )

    @staticmethod
    def is_interfered(answer: ExtractedAnswer, low_confidence_fallback: bool = False) -> bool:
        return answer.confidence < INTERFERENCE_CONFIDENCE or answer.handwriting_overlap or low_confidence_fallback

    def check_interference_rate(
        self, answers: Sequence[ExtractedAnswer], low_confidence_fallbacks: Collection[int] = ()
    ) -> Tuple[ValidationFinding, float]:
        """Document-level interference rate against the warning and critical thresholds."""
        flagged = sum(
            1 for answer in answers if self.is_interfered(answer, answer.question_number in low_confidence_fallbacks)
        )
        rate = flagged / len(answers) if answers else 0.0
        critical = rate > self.config.interference_critical_threshold
        warning = rate > self.config.interference_warning_threshold
        if critical:
            severity = Severity.CRITICAL
        elif warning:
            severity = Severity.WARNING
        else:
            severity = Severity.INFO
        return (
            ValidationFinding(
                type=FindingType.INTERFERENCE,
                passed=not warning,
                confidence=clamp(1.0 - rate),
                details=f"Interference rate {rate:.0%} ({flagged} of {len(answers)} questions)",
                correction_suggested=warning,
                fallback_required=critical,
                severity=severity,
            ),
            rate,
        )

    def check_question_count(self, detected: int, expected: int) -> ValidationFinding:
        """Detected question count against the count supplied at ingestion."""
        difference = abs(detected - expected)
        passed = difference <= self.config.question_count_tolerance
        return ValidationFinding(
            type=FindingType.PATTERN,
            passed=passed,
            confidence=clamp(1.0 - difference / max(1, expected)),
            details=f"Detected {detected} questions, expected {expected}",
            correction_suggested=not passed,
            severity=Severity.INFO if passed else Severity.WARNING,
        )

    @staticmethod
    def _impossibility(question_number: int, details: str, critical: bool) -> ValidationFinding:
        return ValidationFinding(
            type=FindingType.IMPOSSIBILITY,
            passed=False,
            confidence=CRITICAL_CONFIDENCE if critical else WARNING_CONFIDENCE,
            details=details,
            correction_suggested=True,
            fallback_required=critical,
            severity=Severity.CRITICAL if critical else Severity.WARNING,
            question_number=question_number,
        )
