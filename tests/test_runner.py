"""Tests for the pipeline runner module."""

from unittest import mock

import pytest

from answer_sheet_pipeline.aggregation.schemas import FinalAnswerRecord, ProcessingResult, ProcessingSummary
from answer_sheet_pipeline.orchestration.context import AnswerSheetDocument
from answer_sheet_pipeline.runner import main
from answer_sheet_pipeline.templates.schemas import PrimaryFormat, QuestionType
from answer_sheet_pipeline.uuid_generators.document_uuid import DocumentIdentifier

CONTENT = b"%PDF-1.4 answer sheet"


@pytest.fixture
def scan(tmp_path):
    path = tmp_path / "sheet_01.pdf"
    path.write_bytes(CONTENT)
    return path


@pytest.fixture
def result():
    record = FinalAnswerRecord(
        question_number=1,
        question_type=QuestionType.MULTIPLE_CHOICE,
        value="B",
        confidence=0.92,
        validation_passed=True,
        extraction_method="bubble_marks",
        provenance_chain=("template_aware", "bubble_marks", "tier:cheap"),
    )
    summary = ProcessingSummary(
        document_id="doc",
        template_id="test_creator_standard",
        template_match_confidence=0.98,
        primary_format=PrimaryFormat.BUBBLE_SHEET,
        question_count=1,
        quality_score=0.95,
        total_processing_time_ms=12.0,
    )
    return ProcessingResult(records=(record,), summary=summary)


@mock.patch("answer_sheet_pipeline.runner.build_pipeline")
@mock.patch("answer_sheet_pipeline.runner.logger")
def test_main_successful_execution(mock_logger, mock_build_pipeline, scan, result):
    """Test that main executes successfully with valid input."""
    mock_pipeline = mock.Mock()
    mock_pipeline.process_document.return_value = result
    mock_build_pipeline.return_value = mock_pipeline

    exit_code = main([str(scan)])

    assert exit_code == 0
    mock_build_pipeline.assert_called_once()
    mock_pipeline.process_document.assert_called_once()
    mock_logger.info.assert_any_call("Pipeline runner started.")
    mock_logger.info.assert_any_call("Pipeline runner finished successfully.")


@mock.patch("answer_sheet_pipeline.runner.build_pipeline")
@mock.patch("answer_sheet_pipeline.runner.logger")
def test_main_handles_pipeline_exception(mock_logger, mock_build_pipeline, scan):
    """Test that main logs critical error when pipeline raises exception."""
    mock_pipeline = mock.Mock()
    mock_pipeline.process_document.side_effect = Exception("Pipeline error")
    mock_build_pipeline.return_value = mock_pipeline

    exit_code = main([str(scan)])

    assert exit_code == 1
    mock_pipeline.process_document.assert_called_once()
    mock_logger.critical.assert_called_once_with("Pipeline runner encountered a fatal error.", exc_info=True)


@mock.patch("answer_sheet_pipeline.runner.build_pipeline")
@mock.patch("answer_sheet_pipeline.runner.logger")
def test_main_creates_correct_document(mock_logger, mock_build_pipeline, scan, result):
    """Test that main builds the document from the file on disk."""
    mock_pipeline = mock.Mock()
    mock_pipeline.process_document.return_value = result
    mock_build_pipeline.return_value = mock_pipeline

    main([str(scan), "--expected-questions", "20"])

    document = mock_pipeline.process_document.call_args.args[0]
    assert isinstance(document, AnswerSheetDocument)
    assert document.document_id == DocumentIdentifier.for_content("sheet_01.pdf", CONTENT).generate_uuid()
    assert document.filename == "sheet_01.pdf"
    assert document.content == CONTENT
    assert document.expected_question_count == 20


@mock.patch("answer_sheet_pipeline.runner.build_pipeline")
@mock.patch("answer_sheet_pipeline.runner.logger")
def test_main_without_expected_question_count(mock_logger, mock_build_pipeline, scan, result):
    mock_pipeline = mock.Mock()
    mock_pipeline.process_document.return_value = result
    mock_build_pipeline.return_value = mock_pipeline

    main([str(scan)])

    document = mock_pipeline.process_document.call_args.args[0]
    assert document.expected_question_count is None
