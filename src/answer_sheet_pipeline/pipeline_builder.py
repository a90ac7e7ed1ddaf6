"""Pipeline builder responsible for creating the answer sheet pipeline components."""

import logging
from typing import Optional

from textractor import Textractor

from answer_sheet_pipeline.aggregation.aggregator import ResultAggregator
from answer_sheet_pipeline.complexity.analyzer import ComplexityAnalyzer
from answer_sheet_pipeline.complexity.schemas import ProcessingTier
from answer_sheet_pipeline.config import settings
from answer_sheet_pipeline.custom_logging.log_context import setup_logging
from answer_sheet_pipeline.extraction.answer_extractor import AnswerExtractor
from answer_sheet_pipeline.extraction.extraction_config import ExtractionConfig
from answer_sheet_pipeline.extraction.fill_sampler import FillSampler
from answer_sheet_pipeline.extraction.strategies.bubble_marks import BubbleMarkStrategy
from answer_sheet_pipeline.extraction.strategies.text_answer import TextAnswerStrategy
from answer_sheet_pipeline.extraction.text_recognizer import TextractTextRecognizer
from answer_sheet_pipeline.marks.detector import MarkDetector
from answer_sheet_pipeline.marks.discriminator import StrokeFeatureDiscriminator
from answer_sheet_pipeline.orchestration.pipeline import Pipeline
from answer_sheet_pipeline.recovery.controller import RecoveryController
from answer_sheet_pipeline.regions.roi_manager import RoiManager
from answer_sheet_pipeline.routing.router import BatchRouter
from answer_sheet_pipeline.routing.tier_clients import BedrockTierClient
from answer_sheet_pipeline.templates.recognizer import ComponentFormatClassifier, TemplateRecognizer
from answer_sheet_pipeline.templates.registry import TemplateRegistry, default_registry
from answer_sheet_pipeline.templates.schemas import QuestionType
from answer_sheet_pipeline.validation.engine import ValidationEngine

setup_logging()
logger = logging.getLogger(__name__)


def build_pipeline(registry: Optional[TemplateRegistry] = None) -> Pipeline:
    """Constructs the pipeline with all its dependencies.

    This acts as the composition root for the application.

    Args:
        registry (TemplateRegistry): Templates to recognize; the built-in registry when omitted.

    Returns:
        Pipeline: A fully configured instance of the answer sheet pipeline.
    """
    registry = registry or default_registry()

    # --- Recognition and regions ---
    template_recognizer = TemplateRecognizer(registry=registry, format_classifier=ComponentFormatClassifier())
    roi_manager = RoiManager()

    # --- Marks ---
    mark_detector = MarkDetector()
    discriminator = StrokeFeatureDiscriminator()

    # --- Extraction Strategies ---
    extraction_config = ExtractionConfig()
    text_recognizer = TextractTextRecognizer(textractor=Textractor(region_name=settings.AWS_REGION))
    bubble_strategy = BubbleMarkStrategy(roi_manager, FillSampler(), extraction_config)
    text_strategy = TextAnswerStrategy(
        roi_manager,
        text_recognizer,
        min_length=extraction_config.text_min_length,
        max_length=extraction_config.text_max_length,
        config=extraction_config,
    )
    essay_strategy = TextAnswerStrategy(
        roi_manager,
        text_recognizer,
        min_length=extraction_config.essay_min_length,
        max_length=extraction_config.essay_max_length,
        config=extraction_config,
    )

    strategy_handlers = {
        QuestionType.MULTIPLE_CHOICE: bubble_strategy,
        QuestionType.TEXT: text_strategy,
        QuestionType.ESSAY: essay_strategy,
    }
    answer_extractor = AnswerExtractor(strategy_handlers=strategy_handlers, config=extraction_config)

    # --- Processing tiers ---
    tier_clients = {
        ProcessingTier.CHEAP: BedrockTierClient(ProcessingTier.CHEAP, settings.CHEAP_TIER_MODEL_ID),
        ProcessingTier.EXPENSIVE: BedrockTierClient(ProcessingTier.EXPENSIVE, settings.EXPENSIVE_TIER_MODEL_ID),
    }

    # --- Construct and Return the Pipeline ---
    return Pipeline(
        registry=registry,
        template_recognizer=template_recognizer,
        roi_manager=roi_manager,
        mark_detector=mark_detector,
        discriminator=discriminator,
        answer_extractor=answer_extractor,
        complexity_analyzer=ComplexityAnalyzer(),
        router=BatchRouter(tier_clients),
        validation_engine=ValidationEngine(),
        recovery_controller=RecoveryController(),
        aggregator=ResultAggregator(),
    )
