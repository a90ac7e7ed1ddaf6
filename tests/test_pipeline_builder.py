"""Tests for the pipeline_builder module."""

from unittest.mock import call, patch

import pytest

from answer_sheet_pipeline.complexity.schemas import ProcessingTier
from answer_sheet_pipeline.pipeline_builder import build_pipeline
from answer_sheet_pipeline.routing.router import BatchRouter
from answer_sheet_pipeline.templates.registry import TemplateRegistry, default_registry
from answer_sheet_pipeline.templates.schemas import QuestionType


@pytest.fixture
def mock_textractor():
    """Mock Textractor instance."""
    with patch("answer_sheet_pipeline.pipeline_builder.Textractor") as mock:
        yield mock


@pytest.fixture
def mock_settings():
    """Mock settings."""
    with patch("answer_sheet_pipeline.pipeline_builder.settings") as mock:
        mock.AWS_REGION = "eu-west-2"
        mock.CHEAP_TIER_MODEL_ID = "cheap-model-id"
        mock.EXPENSIVE_TIER_MODEL_ID = "expensive-model-id"
        yield mock


@pytest.fixture
def mock_tier_client():
    """Mock Bedrock tier client class."""
    with patch("answer_sheet_pipeline.pipeline_builder.BedrockTierClient") as mock:
        yield mock


@pytest.fixture
def mock_pipeline():
    with patch("answer_sheet_pipeline.pipeline_builder.Pipeline") as mock:
        yield mock


def test_build_pipeline_creates_textractor_with_region(mock_textractor, mock_settings, mock_tier_client, mock_pipeline):
    """Test that Textractor is instantiated with correct AWS region."""
    build_pipeline()

    mock_textractor.assert_called_once_with(region_name="eu-west-2")


def test_build_pipeline_creates_a_client_per_tier(mock_textractor, mock_settings, mock_tier_client, mock_pipeline):
    """Test that each processing tier gets its own Bedrock model."""
    build_pipeline()

    assert mock_tier_client.call_args_list == [
        call(ProcessingTier.CHEAP, "cheap-model-id"),
        call(ProcessingTier.EXPENSIVE, "expensive-model-id"),
    ]
    router = mock_pipeline.call_args.kwargs["router"]
    assert isinstance(router, BatchRouter)


def test_build_pipeline_registers_a_strategy_per_question_type(
    mock_textractor, mock_settings, mock_tier_client, mock_pipeline
):
    """Test that the answer extractor handles every question type."""
    build_pipeline()

    answer_extractor = mock_pipeline.call_args.kwargs["answer_extractor"]
    assert set(answer_extractor.strategy_handlers) == {
        QuestionType.MULTIPLE_CHOICE,
        QuestionType.TEXT,
        QuestionType.ESSAY,
    }


def test_build_pipeline_uses_default_registry(mock_textractor, mock_settings, mock_tier_client, mock_pipeline):
    build_pipeline()

    registry = mock_pipeline.call_args.kwargs["registry"]
    assert len(registry) == len(default_registry())


def test_build_pipeline_passes_custom_registry_through(
    mock_textractor, mock_settings, mock_tier_client, mock_pipeline
):
    registry = TemplateRegistry([default_registry().get("test_creator_standard")])

    build_pipeline(registry=registry)

    kwargs = mock_pipeline.call_args.kwargs
    assert kwargs["registry"] is registry
    assert kwargs["template_recognizer"].registry is registry


def test_build_pipeline_creates_pipeline_with_all_components(
    mock_textractor, mock_settings, mock_tier_client, mock_pipeline
):
    """Test that Pipeline is instantiated with all required components."""
    build_pipeline()

    assert set(mock_pipeline.call_args.kwargs) == {
        "registry",
        "template_recognizer",
        "roi_manager",
        "mark_detector",
        "discriminator",
        "answer_extractor",
        "complexity_analyzer",
        "router",
        "validation_engine",
        "recovery_controller",
        "aggregator",
    }


def test_build_pipeline_returns_pipeline_instance(mock_textractor, mock_settings, mock_tier_client, mock_pipeline):
    """Test that build_pipeline returns a Pipeline instance."""
    result = build_pipeline()

    assert result == mock_pipeline.return_value
