import time
from typing import List, Sequence

import pytest
from conftest import EchoTierClient, FailingTierClient

from answer_sheet_pipeline.complexity.schemas import ComplexityScore, ProcessingTier
from answer_sheet_pipeline.extraction.schemas import ExtractedAnswer
from answer_sheet_pipeline.routing.router import BatchRouter, RouterConfig
from answer_sheet_pipeline.routing.schemas import FallbackReason, RiskLevel, TierOutcome, TierRequest, TierResponse
from answer_sheet_pipeline.routing.tier_clients import TierClient
from answer_sheet_pipeline.templates.schemas import QuestionType


class SlowTierClient(TierClient):
    def process_batch(self, requests: Sequence[TierRequest], deadline: float) -> List[TierResponse]:
        time.sleep(0.5)
        return []


class SilentTierClient(TierClient):
    """Answers without reporting a confidence."""

    def process_batch(self, requests: Sequence[TierRequest], deadline: float) -> List[TierResponse]:
        return [TierResponse(question_number=r.question_number, value=r.extracted_value) for r in requests]


def answer(number, value="A", confidence=0.95, **kwargs):
    return ExtractedAnswer(
        question_number=number,
        question_type=kwargs.pop("question_type", QuestionType.MULTIPLE_CHOICE),
        value=value,
        confidence=confidence,
        extraction_method="bubble_marks",
        provenance=("template_aware", "bubble_marks"),
        **kwargs,
    )


def score(number, tier=ProcessingTier.CHEAP, value=10.0):
    return ComplexityScore(question_number=number, score=value, recommended_tier=tier, decision_confidence=90.0)


def requests_for(answers):
    return {
        a.question_number: TierRequest(
            question_number=a.question_number, question_type=a.question_type, extracted_value=a.value
        )
        for a in answers
    }


def test_every_question_lands_in_exactly_one_batch():
    router = BatchRouter({}, RouterConfig(max_batch_size=3))
    answers = [answer(n) for n in range(1, 11)]
    scores = [score(n, ProcessingTier.EXPENSIVE if n % 4 == 0 else ProcessingTier.CHEAP) for n in range(1, 11)]

    batches = router.build_batches(answers, scores)

    numbers = [n for batch in batches for n in batch.question_numbers]
    assert sorted(numbers) == list(range(1, 11))
    assert all(batch.size <= 3 for batch in batches)
    assert [b.batch_id for b in batches] == ["cheap-1", "cheap-2", "cheap-3", "expensive-1"]
    assert batches[-1].question_numbers == (4, 8)
    assert all(b.tier == ProcessingTier.EXPENSIVE for b in batches if 4 in b.question_numbers)


def test_batch_cost_and_savings():
    router = BatchRouter({}, RouterConfig(cheap_unit_cost=0.001, expensive_unit_cost=0.01))

    batch = router.build_batches([answer(1), answer(2)], [score(1), score(2)])[0]

    assert batch.estimated_work_units == 2.0
    assert batch.estimated_cost == pytest.approx(0.002)
    assert batch.cost_savings == pytest.approx(0.018)
    assert batch.fallback_strategy == "retry"


def test_text_answers_cost_more_work():
    router = BatchRouter({}, RouterConfig(chars_per_work_unit=10))

    units = router.work_units(answer(1, value="x" * 25, question_type=QuestionType.TEXT))

    assert units == pytest.approx(3.5)


@pytest.mark.parametrize(
    "confidences, expected",
    [((0.95, 0.9), RiskLevel.LOW), ((0.95, 0.65), RiskLevel.MEDIUM), ((0.95, 0.4), RiskLevel.HIGH)],
)
def test_risk_level(confidences, expected):
    router = BatchRouter({})
    answers = [answer(n, confidence=c) for n, c in enumerate(confidences, start=1)]

    assert router.build_batches(answers, [score(n) for n in range(1, len(answers) + 1)])[0].risk_level == expected


def test_clean_routing_has_no_fallbacks(echo_tiers):
    router = BatchRouter(echo_tiers)
    answers = [answer(n) for n in range(1, 4)]

    result = router.route(answers, [score(n) for n in range(1, 4)], requests_for(answers))

    assert result.fallbacks_triggered == 0
    assert result.escalation_batches == ()
    assert set(result.outcomes) == {1, 2, 3}
    assert all(o.tier == ProcessingTier.CHEAP and o.succeeded for o in result.outcomes.values())
    assert echo_tiers[ProcessingTier.EXPENSIVE].calls == []


def test_failed_cheap_batch_escalates_each_question():
    tiers = {
        ProcessingTier.CHEAP: FailingTierClient(ProcessingTier.CHEAP),
        ProcessingTier.EXPENSIVE: EchoTierClient(ProcessingTier.EXPENSIVE),
    }
    answers = [answer(1), answer(2)]

    result = BatchRouter(tiers).route(answers, [score(1), score(2)], requests_for(answers))

    assert [e.reason for e in result.fallback_events] == [FallbackReason.ERROR, FallbackReason.ERROR]
    assert [b.question_numbers for b in result.escalation_batches] == [(1,), (2,)]
    assert sorted(tiers[ProcessingTier.EXPENSIVE].calls) == [[1], [2]]
    assert all(o.escalated and o.tier == ProcessingTier.EXPENSIVE for o in result.outcomes.values())
    assert result.cost_savings < sum(b.cost_savings for b in result.batches)


def test_low_confidence_escalates_only_above_minimum_complexity():
    tiers = {
        ProcessingTier.CHEAP: EchoTierClient(ProcessingTier.CHEAP, confidence=0.5),
        ProcessingTier.EXPENSIVE: EchoTierClient(ProcessingTier.EXPENSIVE),
    }
    answers = [answer(1), answer(2)]
    scores = [score(1, value=10.0), score(2, value=20.0)]

    result = BatchRouter(tiers).route(answers, scores, requests_for(answers))

    assert [(e.question_number, e.reason) for e in result.fallback_events] == [(2, FallbackReason.LOW_CONFIDENCE)]
    assert result.outcomes[1].tier == ProcessingTier.CHEAP
    assert result.outcomes[2].escalated


def test_missing_confidence_is_incomplete():
    tiers = {
        ProcessingTier.CHEAP: SilentTierClient(ProcessingTier.CHEAP),
        ProcessingTier.EXPENSIVE: EchoTierClient(ProcessingTier.EXPENSIVE),
    }
    answers = [answer(1)]

    result = BatchRouter(tiers).route(answers, [score(1)], requests_for(answers))

    assert result.fallback_events[0].reason == FallbackReason.INCOMPLETE


def test_slow_batch_times_out_and_escalates():
    tiers = {
        ProcessingTier.CHEAP: SlowTierClient(ProcessingTier.CHEAP),
        ProcessingTier.EXPENSIVE: EchoTierClient(ProcessingTier.EXPENSIVE),
    }
    router = BatchRouter(tiers, RouterConfig(batch_timeout_seconds=0.05))
    answers = [answer(1)]

    result = router.route(answers, [score(1)], requests_for(answers))

    assert result.fallback_events[0].reason == FallbackReason.TIMEOUT
    assert result.outcomes[1].escalated
    assert result.outcomes[1].succeeded


def test_failed_expensive_question_retried_individually(failing_tiers):
    answers = [answer(1)]

    result = BatchRouter(failing_tiers).route(
        answers, [score(1, ProcessingTier.EXPENSIVE, 60.0)], requests_for(answers)
    )

    assert result.fallback_events[0].from_tier == ProcessingTier.EXPENSIVE
    assert failing_tiers[ProcessingTier.EXPENSIVE].calls == [[1], [1]]
    assert not result.outcomes[1].succeeded


def test_merge_agreement_cross_validates():
    router = BatchRouter({})
    outcome = TierOutcome(question_number=1, tier=ProcessingTier.CHEAP, value="a", confidence=0.97)

    merged = router.merge(answer(1, value="A", confidence=0.9), outcome)

    assert merged.cross_validated
    assert merged.confidence == 0.97
    assert merged.tier == "cheap"
    assert merged.provenance[-1] == "tier:cheap"


def test_merge_disagreement_flags_review():
    router = BatchRouter({}, RouterConfig(disagreement_penalty=0.5))
    outcome = TierOutcome(question_number=1, tier=ProcessingTier.EXPENSIVE, value="B", confidence=0.99, escalated=True)

    merged = router.merge(answer(1, value="A", confidence=0.9), outcome)

    assert merged.value == "A"
    assert merged.review_flag
    assert not merged.cross_validated
    assert merged.confidence == pytest.approx(0.45)
    assert merged.provenance[-2:] == ("escalated", "tier:expensive")


def test_merge_leaves_multi_mark_answers_unresolved():
    router = BatchRouter({})
    multi = answer(1, value=None, raw_marks=("A", "C"), confidence=0.9)
    outcome = TierOutcome(question_number=1, tier=ProcessingTier.EXPENSIVE, value="A", confidence=0.99)

    merged = router.merge(multi, outcome)

    assert merged.value is None
    assert merged.multiple_marks
    assert not merged.cross_validated
    assert merged.confidence == 0.9


def test_verify_calls_expensive_tier(echo_tiers):
    router = BatchRouter(echo_tiers)
    a = answer(3, value="C")

    outcome = router.verify(a, requests_for([a])[3])

    assert outcome.tier == ProcessingTier.EXPENSIVE
    assert outcome.value == "C"
    assert echo_tiers[ProcessingTier.EXPENSIVE].calls == [[3]]
