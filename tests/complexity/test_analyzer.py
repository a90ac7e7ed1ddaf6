import pytest

from answer_sheet_pipeline.complexity.analyzer import ComplexityAnalyzer, ComplexityConfig
from answer_sheet_pipeline.complexity.schemas import ProcessingTier
from answer_sheet_pipeline.extraction.schemas import BubbleQuality, ExtractedAnswer
from answer_sheet_pipeline.templates.schemas import QuestionType

OPTIONS = ("A", "B", "C", "D", "E")


def mc(value="B", confidence=0.95, quality=BubbleQuality.HEAVY, **kwargs):
    return ExtractedAnswer(
        question_number=kwargs.pop("question_number", 1),
        question_type=QuestionType.MULTIPLE_CHOICE,
        value=value,
        confidence=confidence,
        extraction_method="bubble_marks",
        bubble_quality=quality,
        valid_options=OPTIONS,
        **kwargs,
    )


@pytest.fixture
def analyzer():
    return ComplexityAnalyzer(ComplexityConfig(simple_threshold=25.0))


def test_clean_cross_validated_bubble_is_cheap(analyzer):
    score = analyzer.analyze(mc(cross_validated=True))

    assert score.score == pytest.approx(2.25)
    assert score.recommended_tier == ProcessingTier.CHEAP
    assert score.decision_confidence == 100.0
    assert score.contributing_factors["extraction_confidence"] == pytest.approx(1.5)
    assert score.reasoning.startswith("cheap tier: score ")


def test_multiple_marks_go_expensive(analyzer):
    score = analyzer.analyze(mc(value=None, confidence=0.9, raw_marks=("A", "C")))

    assert score.contributing_factors["multiple_marks"] == 30.0
    assert score.contributing_factors["no_value"] == 20.0
    assert score.score == pytest.approx(73.25)
    assert score.recommended_tier == ProcessingTier.EXPENSIVE
    assert "multiple marks" in score.reasoning


def test_blank_bubble_row_goes_expensive(analyzer):
    score = analyzer.analyze(mc(value=None, confidence=0.9, quality=BubbleQuality.EMPTY))

    assert score.contributing_factors["bubble_quality"] == 20.0
    assert score.score == pytest.approx(74.5)
    assert score.recommended_tier == ProcessingTier.EXPENSIVE


def test_invalid_option_and_unknown_quality_add_penalties(analyzer):
    score = analyzer.analyze(mc(value="F", quality=None))

    assert score.contributing_factors["invalid_format"] == 15.0
    assert score.contributing_factors["bubble_quality"] == 10.0


@pytest.mark.parametrize("question_type, penalty", [(QuestionType.TEXT, 25.0), (QuestionType.ESSAY, 40.0)])
def test_written_answers_carry_type_penalty(analyzer, question_type, penalty):
    answer = ExtractedAnswer(
        question_number=2,
        question_type=question_type,
        value="osmosis",
        confidence=0.9,
        extraction_method="text_recognition",
    )

    score = analyzer.analyze(answer)

    assert score.contributing_factors["question_type"] == penalty
    assert score.contributing_factors["bubble_quality"] == 0.0
    assert score.recommended_tier == ProcessingTier.EXPENSIVE


def test_score_is_clamped(analyzer):
    worst = mc(value=None, confidence=0.0, quality=BubbleQuality.OVERFILLED, raw_marks=("A", "B"), review_flag=True)

    assert analyzer.analyze(worst).score == 100.0


def test_threshold_is_configurable():
    lenient = ComplexityAnalyzer(ComplexityConfig(simple_threshold=80.0))

    assert lenient.analyze(mc(value=None, confidence=0.9, quality=BubbleQuality.EMPTY)).recommended_tier == (
        ProcessingTier.CHEAP
    )


def test_analyze_all_keeps_order(analyzer):
    scores = analyzer.analyze_all([mc(question_number=n) for n in (3, 1, 2)])

    assert [s.question_number for s in scores] == [3, 1, 2]


def test_answer_clarity():
    assert ComplexityAnalyzer.answer_clarity(mc(cross_validated=True)) == pytest.approx(97.0)
    assert ComplexityAnalyzer.answer_clarity(mc(value=None, confidence=0.1, quality=BubbleQuality.EMPTY)) == 0.0
