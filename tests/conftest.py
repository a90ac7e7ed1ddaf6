"""Shared fixtures: fake processing tiers, a fixed text recognizer and a pipeline factory."""

from typing import List, Optional, Sequence

import pytest

from answer_sheet_pipeline.aggregation.aggregator import ResultAggregator
from answer_sheet_pipeline.complexity.analyzer import ComplexityAnalyzer
from answer_sheet_pipeline.complexity.schemas import ProcessingTier
from answer_sheet_pipeline.extraction.answer_extractor import AnswerExtractor
from answer_sheet_pipeline.extraction.extraction_config import ExtractionConfig
from answer_sheet_pipeline.extraction.fill_sampler import FillSampler
from answer_sheet_pipeline.extraction.strategies.bubble_marks import BubbleMarkStrategy
from answer_sheet_pipeline.extraction.strategies.text_answer import TextAnswerStrategy
from answer_sheet_pipeline.extraction.text_recognizer import TextReading, TextRecognizer
from answer_sheet_pipeline.marks.detector import MarkDetector
from answer_sheet_pipeline.marks.discriminator import StrokeFeatureDiscriminator
from answer_sheet_pipeline.orchestration.pipeline import Pipeline
from answer_sheet_pipeline.recovery.controller import RecoveryController
from answer_sheet_pipeline.regions.roi_manager import RoiManager
from answer_sheet_pipeline.routing.router import BatchRouter
from answer_sheet_pipeline.routing.schemas import TierRequest, TierResponse
from answer_sheet_pipeline.routing.tier_clients import TierCallError, TierClient
from answer_sheet_pipeline.templates.recognizer import ComponentFormatClassifier, TemplateRecognizer
from answer_sheet_pipeline.templates.registry import TemplateRegistry, default_registry
from answer_sheet_pipeline.templates.schemas import QuestionType
from answer_sheet_pipeline.validation.engine import ValidationEngine


class EchoTierClient(TierClient):
    """Tier that agrees with the scanner's reading at a fixed confidence."""

    def __init__(self, tier: ProcessingTier, confidence: float = 0.95):
        super().__init__(tier)
        self.confidence = confidence
        self.calls: List[List[int]] = []

    def process_batch(self, requests: Sequence[TierRequest], deadline: float) -> List[TierResponse]:
        self.calls.append([request.question_number for request in requests])
        return [
            TierResponse(question_number=r.question_number, value=r.extracted_value, confidence=self.confidence)
            for r in requests
        ]


class FailingTierClient(TierClient):
    """Tier whose every call fails."""

    def __init__(self, tier: ProcessingTier):
        super().__init__(tier)
        self.calls: List[List[int]] = []

    def process_batch(self, requests: Sequence[TierRequest], deadline: float) -> List[TierResponse]:
        self.calls.append([request.question_number for request in requests])
        raise TierCallError("service unavailable")


class FixedTextRecognizer(TextRecognizer):
    """Reads every box as the same text."""

    def __init__(self, text: str = "photosynthesis", confidence: float = 0.9):
        self.reading = TextReading(text=text, confidence=confidence)
        self.calls = 0

    def recognize(self, image) -> TextReading:
        self.calls += 1
        return self.reading


def make_pipeline(
    registry: Optional[TemplateRegistry] = None,
    tier_clients=None,
    text_recognizer: Optional[TextRecognizer] = None,
    validation_engine: Optional[ValidationEngine] = None,
    recovery_controller: Optional[RecoveryController] = None,
) -> Pipeline:
    """Builds a real pipeline around fake tiers and a fixed text recognizer."""
    registry = registry or default_registry()
    tier_clients = tier_clients or {
        ProcessingTier.CHEAP: EchoTierClient(ProcessingTier.CHEAP),
        ProcessingTier.EXPENSIVE: EchoTierClient(ProcessingTier.EXPENSIVE),
    }
    text_recognizer = text_recognizer or FixedTextRecognizer()
    roi_manager = RoiManager()
    config = ExtractionConfig()
    strategy_handlers = {
        QuestionType.MULTIPLE_CHOICE: BubbleMarkStrategy(roi_manager, FillSampler(), config),
        QuestionType.TEXT: TextAnswerStrategy(
            roi_manager, text_recognizer, config.text_min_length, config.text_max_length, config
        ),
        QuestionType.ESSAY: TextAnswerStrategy(
            roi_manager, text_recognizer, config.essay_min_length, config.essay_max_length, config
        ),
    }
    return Pipeline(
        registry=registry,
        template_recognizer=TemplateRecognizer(registry, ComponentFormatClassifier()),
        roi_manager=roi_manager,
        mark_detector=MarkDetector(),
        discriminator=StrokeFeatureDiscriminator(),
        answer_extractor=AnswerExtractor(strategy_handlers, config),
        complexity_analyzer=ComplexityAnalyzer(),
        router=BatchRouter(tier_clients),
        validation_engine=validation_engine or ValidationEngine(),
        recovery_controller=recovery_controller or RecoveryController(),
        aggregator=ResultAggregator(),
    )


@pytest.fixture
def echo_tiers():
    return {
        ProcessingTier.CHEAP: EchoTierClient(ProcessingTier.CHEAP),
        ProcessingTier.EXPENSIVE: EchoTierClient(ProcessingTier.EXPENSIVE),
    }


@pytest.fixture
def failing_tiers():
    return {
        ProcessingTier.CHEAP: FailingTierClient(ProcessingTier.CHEAP),
        ProcessingTier.EXPENSIVE: FailingTierClient(ProcessingTier.EXPENSIVE),
    }


@pytest.fixture
def text_recognizer():
    return FixedTextRecognizer()
