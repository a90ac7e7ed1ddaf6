import pytest

from answer_sheet_pipeline.extraction.schemas import ExtractedAnswer
from answer_sheet_pipeline.templates.schemas import QuestionType
from answer_sheet_pipeline.validation.engine import ValidationConfig, ValidationEngine
from answer_sheet_pipeline.validation.schemas import FindingType, Severity

OPTIONS = ("A", "B", "C", "D", "E")


def mc_answer(number=1, value="A", confidence=0.95, **kwargs):
    defaults = dict(
        question_number=number,
        question_type=QuestionType.MULTIPLE_CHOICE,
        value=value,
        confidence=confidence,
        extraction_method="bubble_marks",
        valid_options=OPTIONS,
    )
    defaults.update(kwargs)
    return ExtractedAnswer(**defaults)


def text_answer(number=1, value="mitochondria", confidence=0.9, **kwargs):
    return ExtractedAnswer(
        question_number=number,
        question_type=QuestionType.TEXT,
        value=value,
        confidence=confidence,
        extraction_method="text_recognition",
        **kwargs,
    )


@pytest.fixture
def engine():
    return ValidationEngine(ValidationConfig())


def test_clean_answers_pass(engine):
    answers = [mc_answer(n, position=(100.0, 50.0 * n), expected_position=(100.0, 50.0 * n)) for n in range(1, 6)]

    report = engine.validate(answers, expected_question_count=5)

    assert report.failing() == []
    assert report.pass_rate == 1.0
    assert not report.requires_reprocessing


def test_multiple_fills_is_a_critical_impossibility(engine):
    answer = mc_answer(value=None, raw_marks=("A", "C"))

    findings = engine.check_impossibility(answer)

    assert len(findings) == 1
    assert findings[0].type == FindingType.IMPOSSIBILITY
    assert findings[0].severity == Severity.CRITICAL
    assert findings[0].fallback_required
    assert findings[0].correction_suggested
    assert findings[0].confidence == 0.95
    assert "A, C" in findings[0].details


def test_value_outside_options_is_critical(engine):
    findings = engine.check_impossibility(mc_answer(value="F"))

    assert [f.severity for f in findings] == [Severity.CRITICAL]


def test_low_confidence_value_is_a_warning_without_fallback(engine):
    findings = engine.check_impossibility(mc_answer(confidence=0.55))

    assert len(findings) == 1
    assert findings[0].severity == Severity.WARNING
    assert not findings[0].fallback_required
    assert findings[0].confidence == 0.7


def test_any_impossibility_requires_reprocessing(engine):
    report = engine.validate([mc_answer(confidence=0.55), mc_answer(2)])

    assert report.requires_reprocessing


def test_mark_on_expected_position_passes_geometry(engine):
    finding = engine.check_geometry(mc_answer(position=(500.0, 150.0), expected_position=(500.0, 150.0)))

    assert finding.passed
    assert finding.confidence == 1.0
    assert not finding.correction_suggested
    assert not finding.fallback_required
    assert finding.severity == Severity.INFO


@pytest.mark.parametrize(
    "offset, passed, correction, fallback",
    [
        (10.0, True, False, False),
        (20.0, False, False, False),
        (25.0, False, True, False),
        (40.0, False, True, True),
    ],
)
def test_geometry_thresholds(engine, offset, passed, correction, fallback):
    finding = engine.check_geometry(mc_answer(position=(500.0 + offset, 150.0), expected_position=(500.0, 150.0)))

    assert finding.passed is passed
    assert finding.correction_suggested is correction
    assert finding.fallback_required is fallback
    assert 0.0 <= finding.confidence <= 1.0


def test_geometry_skipped_without_positions(engine):
    assert engine.check_geometry(mc_answer()) is None


def test_blank_answer_is_not_interference(engine):
    blank = mc_answer(value=None, confidence=0.9)

    assert engine.check_interference(blank) is None


@pytest.mark.parametrize(
    "confidence, overlap, fallback_flag, flagged, fallback",
    [
        (0.45, False, False, True, False),
        (0.25, False, False, True, True),
        (0.9, True, False, True, False),
        (0.9, False, True, True, False),
        (0.9, False, False, False, False),
    ],
)
def test_interference_per_question(engine, confidence, overlap, fallback_flag, flagged, fallback):
    answer = text_answer(confidence=confidence, handwriting_overlap=overlap)

    finding = engine.check_interference(answer, fallback_flag)

    assert (finding is not None) is flagged
    if finding is not None:
        assert not finding.passed
        assert finding.fallback_required is fallback


@pytest.mark.parametrize(
    "flagged, passed, fallback",
    [
        (6, True, False),
        (7, False, False),
        (8, False, False),
        (9, False, True),
    ],
)
def test_interference_rate_thresholds(engine, flagged, passed, fallback):
    answers = [text_answer(n, handwriting_overlap=n <= flagged) for n in range(1, 21)]

    finding, rate = engine.check_interference_rate(answers)

    assert rate == pytest.approx(flagged / 20)
    assert finding.passed is passed
    assert finding.fallback_required is fallback
    assert finding.question_number is None


def test_low_confidence_fallbacks_count_as_interference(engine):
    answers = [text_answer(n) for n in range(1, 11)]

    _, rate = engine.check_interference_rate(answers, low_confidence_fallbacks={1, 2, 3, 4})

    assert rate == pytest.approx(0.4)


def test_pattern_check_fails_at_twenty_percent(engine):
    answers = [mc_answer(n, confidence=0.65 if n <= 2 else 0.95) for n in range(1, 11)]

    finding, fraction = engine.check_pattern_consistency(answers)

    assert fraction == pytest.approx(0.2)
    assert not finding.passed


def test_pattern_check_passes_below_threshold(engine):
    answers = [mc_answer(n, confidence=0.65 if n == 1 else 0.95) for n in range(1, 11)]

    finding, _ = engine.check_pattern_consistency(answers)

    assert finding.passed


def test_anomaly_reasons(engine):
    assert engine.anomaly_reasons(mc_answer(confidence=0.5)) == ["scattered marks", "incomplete fill"]
    assert engine.anomaly_reasons(mc_answer(confidence=0.65)) == ["scattered marks"]
    assert engine.anomaly_reasons(mc_answer(value=None, confidence=0.9)) == []


def test_text_outside_length_band_is_reported(engine):
    findings = engine.check_anomalies(text_answer(value="x" * 150, format_valid=False))

    assert len(findings) == 1
    assert findings[0].type == FindingType.PATTERN
    assert not findings[0].passed


@pytest.mark.parametrize("detected, passed", [(20, True), (18, True), (22, True), (17, False), (23, False)])
def test_question_count_tolerance(engine, detected, passed):
    assert engine.check_question_count(detected, 20).passed is passed


def test_report_pass_rate_and_lookup(engine):
    answers = [mc_answer(1), mc_answer(2, value=None, raw_marks=("B", "D"))]

    report = engine.validate(answers)

    assert [f.type for f in report.for_question(2)] == [FindingType.IMPOSSIBILITY]
    assert len(report.document_level()) == 2
    assert 0.0 < report.pass_rate < 1.0
    assert report.failing(FindingType.IMPOSSIBILITY)[0].question_number == 2
