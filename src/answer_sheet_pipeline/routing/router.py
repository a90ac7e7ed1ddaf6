"""Batches questions per processing tier, dispatches them concurrently and escalates failures."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

from answer_sheet_pipeline.complexity.schemas import ComplexityScore, ProcessingTier
from answer_sheet_pipeline.config import settings
from answer_sheet_pipeline.custom_logging.log_context import submit_in_context
from answer_sheet_pipeline.extraction.schemas import ExtractedAnswer
from answer_sheet_pipeline.routing.schemas import (
    Batch,
    FallbackEvent,
    FallbackReason,
    RiskLevel,
    RoutingResult,
    TierOutcome,
    TierRequest,
)
from answer_sheet_pipeline.routing.tier_clients import TierCallError, TierClient
from answer_sheet_pipeline.templates.schemas import QuestionType
from answer_sheet_pipeline.utils.confidence import clamp

logger = logging.getLogger(__name__)

TIMEOUT_ERROR = "timeout"


@dataclass
class RouterConfig:
    """Batching, cost and escalation settings."""

    max_batch_size: int = settings.MAX_BATCH_SIZE
    fallback_confidence_threshold: float = settings.FALLBACK_CONFIDENCE_THRESHOLD
    min_escalation_complexity: float = settings.MIN_ESCALATION_COMPLEXITY
    cheap_unit_cost: float = settings.CHEAP_TIER_UNIT_COST
    expensive_unit_cost: float = settings.EXPENSIVE_TIER_UNIT_COST
    chars_per_work_unit: int = settings.TEXT_CHARS_PER_WORK_UNIT
    batch_timeout_seconds: float = settings.BATCH_TIMEOUT_SECONDS
    disagreement_penalty: float = settings.TIER_DISAGREEMENT_PENALTY


class BatchRouter:
    """Routes questions to the cheap or expensive tier and tracks cost and fallbacks."""

    def __init__(self, tier_clients: Mapping[ProcessingTier, TierClient], config: Optional[RouterConfig] = None):
        """Initializes the router.

        Args:
            tier_clients (Mapping[ProcessingTier, TierClient]): One client per tier.
            config (Optional[RouterConfig]): Router settings; defaults come from settings.
        """
        self.tier_clients = tier_clients
        self.config = config or RouterConfig()

    def route(
        self,
        answers: Sequence[ExtractedAnswer],
        scores: Sequence[ComplexityScore],
        requests: Mapping[int, TierRequest],
    ) -> RoutingResult:
        """Runs every question through its recommended tier, escalating failures.

        Cheap-tier questions are escalated to the expensive tier, one question per call, when the call failed or
        timed out, the response was incomplete, or the confidence fell below the fallback threshold while the
        complexity score was above the escalation minimum. Failed expensive-tier questions get one individual retry.

        Args:
            answers (Sequence[ExtractedAnswer]): Initial extractions.
            scores (Sequence[ComplexityScore]): Complexity scores for the same questions.
            requests (Mapping[int, TierRequest]): Tier request per question number.

        Returns:
            RoutingResult: Batches, escalation batches, final outcome per question and fallback events.
        """
        batches = self.build_batches(answers, scores)
        logger.info(
            f"Routing {len(answers)} questions in {len(batches)} batches "
            f"({sum(1 for b in batches if b.tier == ProcessingTier.CHEAP)} cheap)"
        )
        outcomes = self._dispatch(batches, requests)

        score_by_question = {score.question_number: score for score in scores}
        answer_by_question = {answer.question_number: answer for answer in answers}
        events: List[FallbackEvent] = []
        for question_number in sorted(outcomes):
            outcome = outcomes[question_number]
            reason = self._fallback_reason(outcome, score_by_question[question_number])
            if reason is None:
                continue
            if outcome.tier == ProcessingTier.EXPENSIVE and reason == FallbackReason.LOW_CONFIDENCE:
                continue
            events.append(
                FallbackEvent(
                    question_number=question_number,
                    reason=reason,
                    from_tier=outcome.tier,
                    to_tier=ProcessingTier.EXPENSIVE,
                )
            )
            logger.warning(f"Question {question_number} escalated from {outcome.tier.value} tier ({reason.value})")

        escalation_batches = [
            self._make_batch(
                f"fallback-{event.question_number}",
                ProcessingTier.EXPENSIVE,
                [answer_by_question[event.question_number]],
                fallback_strategy="individual",
            )
            for event in events
        ]
        if escalation_batches:
            for question_number, outcome in self._dispatch(escalation_batches, requests).items():
                outcomes[question_number] = outcome.model_copy(update={"escalated": True})

        return RoutingResult(
            batches=tuple(batches),
            escalation_batches=tuple(escalation_batches),
            outcomes=outcomes,
            fallback_events=tuple(events),
        )

    def verify(self, answer: ExtractedAnswer, request: TierRequest) -> TierOutcome:
        """Asks the expensive tier about a single question, outside of batch routing."""
        batch = self._make_batch(
            f"verify-{answer.question_number}", ProcessingTier.EXPENSIVE, [answer], fallback_strategy="individual"
        )
        return self._dispatch([batch], {request.question_number: request})[answer.question_number]

    def build_batches(self, answers: Sequence[ExtractedAnswer], scores: Sequence[ComplexityScore]) -> List[Batch]:
        """Groups questions of the same recommended tier into batches of at most max_batch_size.

        Every question lands in exactly one batch, in question-number order within its tier.
        """
        tier_by_question = {score.question_number: score.recommended_tier for score in scores}
        grouped: Dict[ProcessingTier, List[ExtractedAnswer]] = {ProcessingTier.CHEAP: [], ProcessingTier.EXPENSIVE: []}
        for answer in sorted(answers, key=lambda a: a.question_number):
            grouped[tier_by_question[answer.question_number]].append(answer)

        size = max(1, self.config.max_batch_size)
        batches = []
        for tier, group in grouped.items():
            for index, start in enumerate(range(0, len(group), size)):
                batches.append(self._make_batch(f"{tier.value}-{index + 1}", tier, group[start : start + size]))
        return batches

    def work_units(self, answer: ExtractedAnswer) -> float:
        """Estimated work for one question: one unit, plus text length for written answers."""
        units = 1.0
        if answer.question_type != QuestionType.MULTIPLE_CHOICE and answer.value:
            units += len(answer.value) / self.config.chars_per_work_unit
        return units

    def unit_cost(self, tier: ProcessingTier) -> float:
        return self.config.cheap_unit_cost if tier == ProcessingTier.CHEAP else self.config.expensive_unit_cost

    def merge(self, answer: ExtractedAnswer, outcome: TierOutcome) -> ExtractedAnswer:
        """Folds a tier outcome into an answer, returning a new answer.

        Agreement marks the answer cross-validated and keeps the higher confidence; disagreement sets the review
        flag and lowers confidence. A tier never supplies the value itself, and multi-mark answers stay unresolved.
        """
        provenance = answer.provenance + (("escalated",) if outcome.escalated else ()) + (f"tier:{outcome.tier.value}",)
        update: dict = {"tier": outcome.tier.value, "provenance": provenance}
        if not outcome.succeeded or answer.multiple_marks:
            return answer.model_copy(update=update)

        if _same_value(answer.value, outcome.value):
            update["cross_validated"] = True
            update["confidence"] = clamp(max(answer.confidence, outcome.confidence))
        else:
            logger.info(
                f"Question {answer.question_number}: {outcome.tier.value} tier read {outcome.value!r}, "
                f"extraction read {answer.value!r}"
            )
            update["review_flag"] = True
            update["confidence"] = clamp(answer.confidence * self.config.disagreement_penalty)
        return answer.model_copy(update=update)

    def _fallback_reason(self, outcome: TierOutcome, score: ComplexityScore) -> Optional[FallbackReason]:
        if outcome.error == TIMEOUT_ERROR:
            return FallbackReason.TIMEOUT
        if outcome.error is not None:
            return FallbackReason.ERROR
        if not outcome.complete:
            return FallbackReason.INCOMPLETE
        if (
            outcome.confidence < self.config.fallback_confidence_threshold
            and score.score > self.config.min_escalation_complexity
        ):
            return FallbackReason.LOW_CONFIDENCE
        return None

    def _make_batch(
        self,
        batch_id: str,
        tier: ProcessingTier,
        answers: Sequence[ExtractedAnswer],
        fallback_strategy: Optional[str] = None,
    ) -> Batch:
        units = sum(self.work_units(answer) for answer in answers)
        cost = units * self.unit_cost(tier)
        baseline = units * self.config.expensive_unit_cost
        return Batch(
            batch_id=batch_id,
            tier=tier,
            question_numbers=tuple(answer.question_number for answer in answers),
            estimated_work_units=units,
            estimated_cost=cost,
            cost_savings=max(0.0, baseline - cost),
            risk_level=self._risk_level(answers),
            fallback_strategy=fallback_strategy or ("retry" if tier == ProcessingTier.CHEAP else "individual"),
        )

    @staticmethod
    def _risk_level(answers: Sequence[ExtractedAnswer]) -> RiskLevel:
        confidences = [answer.confidence for answer in answers]
        lowest, spread = min(confidences), max(confidences) - min(confidences)
        if lowest < 0.5 or spread > 0.4:
            return RiskLevel.HIGH
        if lowest < 0.7 or spread > 0.2:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def _dispatch(self, batches: Sequence[Batch], requests: Mapping[int, TierRequest]) -> Dict[int, TierOutcome]:
        """Calls the tiers concurrently; batches still running at the timeout are cancelled and marked failed."""
        if not batches:
            return {}

        timeout = self.config.batch_timeout_seconds
        deadline = time.monotonic() + timeout
        executor = ThreadPoolExecutor(max_workers=max(1, self.config.max_batch_size))
        futures = {submit_in_context(executor, self._call, batch, requests, deadline): batch for batch in batches}
        try:
            done, not_done = wait(futures, timeout=timeout)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        outcomes: Dict[int, TierOutcome] = {}
        for future in done:
            outcomes.update(future.result())
        for future in not_done:
            future.cancel()
            batch = futures[future]
            logger.warning(f"Batch {batch.batch_id} timed out after {timeout}s, questions {batch.question_numbers}")
            for question_number in batch.question_numbers:
                outcomes[question_number] = TierOutcome(
                    question_number=question_number, tier=batch.tier, complete=False, error=TIMEOUT_ERROR
                )
        return outcomes

    def _call(self, batch: Batch, requests: Mapping[int, TierRequest], deadline: float) -> Dict[int, TierOutcome]:
        client = self.tier_clients[batch.tier]
        try:
            responses = client.process_batch([requests[n] for n in batch.question_numbers], deadline)
        except TierCallError as e:
            logger.warning(f"Batch {batch.batch_id} failed: {e}")
            return self._failed(batch, str(e))
        except Exception as e:
            logger.error(f"Unexpected error in batch {batch.batch_id}: {e}", exc_info=True)
            return self._failed(batch, str(e) or type(e).__name__)

        by_question = {response.question_number: response for response in responses}
        outcomes = {}
        for question_number in batch.question_numbers:
            response = by_question.get(question_number)
            if response is None or response.confidence is None:
                outcomes[question_number] = TierOutcome(
                    question_number=question_number,
                    tier=batch.tier,
                    value=response.value if response else None,
                    complete=False,
                )
            else:
                outcomes[question_number] = TierOutcome(
                    question_number=question_number,
                    tier=batch.tier,
                    value=response.value,
                    confidence=response.confidence,
                )
        return outcomes

    @staticmethod
    def _failed(batch: Batch, error: str) -> Dict[int, TierOutcome]:
        return {
            question_number: TierOutcome(question_number=question_number, tier=batch.tier, complete=False, error=error)
            for question_number in batch.question_numbers
        }


def _same_value(extracted: Optional[str], read: Optional[str]) -> bool:
    if extracted is None or read is None:
        return extracted is None and read is None
    return " ".join(extracted.split()).casefold() == " ".join(read.split()).casefold()
