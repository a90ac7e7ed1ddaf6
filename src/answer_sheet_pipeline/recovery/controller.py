"""Bounded, best-of recovery of questions that failed validation."""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from answer_sheet_pipeline.config import settings
from answer_sheet_pipeline.custom_logging.log_context import map_in_context
from answer_sheet_pipeline.extraction.schemas import ExtractedAnswer, ExtractionParameters
from answer_sheet_pipeline.recovery.schemas import (
    STRATEGY_PRIORITY,
    STRATEGY_TRIGGERS,
    RecoveryAttempt,
    RecoveryOutcome,
    RecoveryStrategy,
)
from answer_sheet_pipeline.validation.schemas import FindingType, ValidationFinding, ValidationReport

logger = logging.getLogger(__name__)

MIN_TOLERANCE_SCALE = 0.2

Reextract = Callable[[int, ExtractionParameters], ExtractedAnswer]
Revalidate = Callable[[ExtractedAnswer], List[ValidationFinding]]


def _alternative_methods() -> Tuple[str, ...]:
    return tuple(method.strip() for method in settings.ALTERNATIVE_METHODS.split(",") if method.strip())


@dataclass
class RecoveryConfig:
    """Retry budget and parameter steps for recovery."""

    max_retries: int = settings.MAX_RETRIES
    noise_filtering_increment: float = settings.NOISE_FILTERING_INCREMENT
    acceptance_threshold: float = settings.RECOVERY_ACCEPTANCE_THRESHOLD
    refocus_step: float = settings.REFOCUS_STEP
    alternative_methods: Tuple[str, ...] = field(default_factory=_alternative_methods)
    max_workers: int = settings.RECOVERY_MAX_WORKERS


class RecoveryController:
    """Selects a recovery strategy per failing question and retries it within the retry budget."""

    def __init__(self, config: Optional[RecoveryConfig] = None):
        self.config = config or RecoveryConfig()

    def affected_questions(
        self, answers: Sequence[ExtractedAnswer], report: ValidationReport
    ) -> Dict[int, List[ValidationFinding]]:
        """Failing question-level findings of every question that needs recovery.

        A question needs recovery when one of its failing findings is an impossibility or requires fallback,
        or when it has any failing finding and its confidence is below the acceptance threshold.
        """
        affected = {}
        for answer in answers:
            failing = [finding for finding in report.for_question(answer.question_number) if not finding.passed]
            if not failing:
                continue
            critical = any(
                finding.type == FindingType.IMPOSSIBILITY or finding.fallback_required for finding in failing
            )
            if critical or answer.confidence < self.config.acceptance_threshold:
                affected[answer.question_number] = failing
        return affected

    @staticmethod
    def select_strategy(findings: Sequence[ValidationFinding]) -> RecoveryStrategy:
        """Highest-priority strategy triggered by the failing findings; manual review when none applies."""
        candidates = [STRATEGY_TRIGGERS[f.type] for f in findings if not f.passed and f.type in STRATEGY_TRIGGERS]
        if not candidates:
            return RecoveryStrategy.MANUAL_REVIEW
        return max(candidates, key=STRATEGY_PRIORITY.__getitem__)

    def parameters_for(self, strategy: RecoveryStrategy, attempt: int) -> ExtractionParameters:
        """Extraction parameters of the given 1-based attempt."""
        if strategy == RecoveryStrategy.REGION_REFOCUS:
            scale = max(MIN_TOLERANCE_SCALE, 1.0 - self.config.refocus_step * attempt)
            return ExtractionParameters(tolerance_scale=scale, tight_crop=True, attempt=attempt)
        if strategy == RecoveryStrategy.NOISE_FILTERING:
            return ExtractionParameters(
                noise_filter_strength=self.config.noise_filtering_increment * attempt, attempt=attempt
            )
        if strategy == RecoveryStrategy.ALTERNATIVE_METHOD and self.config.alternative_methods:
            methods = self.config.alternative_methods
            return ExtractionParameters(method=methods[(attempt - 1) % len(methods)], attempt=attempt)
        return ExtractionParameters(attempt=attempt)

    def recover(
        self,
        answers: Sequence[ExtractedAnswer],
        report: ValidationReport,
        reextract: Reextract,
        revalidate: Revalidate,
    ) -> Dict[int, RecoveryOutcome]:
        """Recovers every affected question.

        Questions recover concurrently; the attempts of one question run in sequence.

        Args:
            answers (Sequence[ExtractedAnswer]): Current best answer per question.
            report (ValidationReport): Validation report of those answers.
            reextract (Reextract): Re-extracts one question with the given parameters.
            revalidate (Revalidate): Question-level findings of a candidate answer.

        Returns:
            Dict[int, RecoveryOutcome]: Outcome per affected question number.
        """
        affected = self.affected_questions(answers, report)
        if not affected:
            logger.info("No questions require recovery")
            return {}

        by_question = {answer.question_number: answer for answer in answers}
        jobs = [
            (by_question[number], self.select_strategy(findings)) for number, findings in sorted(affected.items())
        ]
        logger.info(
            "Recovering questions "
            + ", ".join(f"{answer.question_number} ({strategy.value})" for answer, strategy in jobs)
        )

        workers = max(1, min(self.config.max_workers, len(jobs)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            outcomes = list(
                map_in_context(
                    executor,
                    lambda answer, strategy: self.recover_question(answer, strategy, reextract, revalidate),
                    [answer for answer, _ in jobs],
                    [strategy for _, strategy in jobs],
                )
            )
        return {outcome.question_number: outcome for outcome in outcomes}

    def recover_question(
        self,
        answer: ExtractedAnswer,
        strategy: RecoveryStrategy,
        reextract: Reextract,
        revalidate: Revalidate,
    ) -> RecoveryOutcome:
        """Runs the bounded best-of loop for one question.

        A candidate is accepted only if it scores above the best so far, so the accepted confidence never
        decreases. The loop stops once the best answer is resolved or the retry budget is spent.
        """
        number = answer.question_number
        best, best_score = answer, self.acceptance_score(answer)
        attempts: List[RecoveryAttempt] = []

        if strategy != RecoveryStrategy.MANUAL_REVIEW and not self.is_resolved(best, revalidate(best)):
            for attempt in range(1, self.config.max_retries + 1):
                parameters = self.parameters_for(strategy, attempt)
                candidate = reextract(number, parameters)
                score = self.acceptance_score(candidate, best)
                accepted = score > best_score
                attempts.append(
                    RecoveryAttempt(
                        attempt=attempt,
                        strategy=strategy,
                        parameters=asdict(parameters),
                        resulting_confidence=score,
                        accepted=accepted,
                    )
                )
                logger.debug(
                    f"Question {number} {strategy.value} attempt {attempt}: score {score:.2f} "
                    f"({'accepted' if accepted else 'rejected'}, best {max(score, best_score):.2f})"
                )
                if accepted:
                    best, best_score = candidate, score
                if self.is_resolved(best, revalidate(best)):
                    break

        resolved = self.is_resolved(best, revalidate(best))
        if resolved:
            steps: Tuple[str, ...] = (strategy.value, "recovered") if attempts else ()
            reason = None
            logger.info(f"Question {number} resolved after {len(attempts)} {strategy.value} attempts")
        else:
            steps = (strategy.value, "manual_review") if attempts else ("manual_review",)
            reason = f"unresolved after {len(attempts)} {strategy.value} attempts"
            logger.warning(f"Question {number} needs manual review: {reason}")

        return RecoveryOutcome(
            question_number=number,
            strategy=strategy,
            attempts=tuple(attempts),
            best_answer=best.model_copy(update={"provenance": best.provenance + steps}),
            resolved=resolved,
            reason=reason,
        )

    @staticmethod
    def acceptance_score(candidate: ExtractedAnswer, best: Optional[ExtractedAnswer] = None) -> float:
        """Confidence a candidate is judged on.

        Multi-mark candidates score 0, as does a blank candidate replacing an answer that had a value. A candidate that
        drops any option of a multi-mark best answer also scores 0, so a double fill is never resolved to one of its
        options.
        """
        if candidate.multiple_marks:
            return 0.0
        if best is not None and best.multiple_marks and set(best.raw_marks) - set(candidate.raw_marks):
            return 0.0
        if candidate.value is None and best is not None and best.value is not None:
            return 0.0
        return candidate.confidence

    def is_resolved(self, answer: ExtractedAnswer, findings: Sequence[ValidationFinding]) -> bool:
        """True when the answer reaches the acceptance threshold with no impossibility left.

        A failing finding that requires fallback keeps the question open unless the answer was cross-validated.
        """
        if self.acceptance_score(answer) < self.config.acceptance_threshold:
            return False
        failing = [finding for finding in findings if not finding.passed]
        if any(finding.type == FindingType.IMPOSSIBILITY for finding in failing):
            return False
        return answer.cross_validated or not any(finding.fallback_required for finding in failing)
