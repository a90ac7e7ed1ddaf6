"""Scores how hard each question was to extract and recommends a processing tier."""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from answer_sheet_pipeline.complexity.schemas import ComplexityScore, ProcessingTier
from answer_sheet_pipeline.config import settings
from answer_sheet_pipeline.extraction.schemas import BubbleQuality, ExtractedAnswer
from answer_sheet_pipeline.templates.schemas import QuestionType
from answer_sheet_pipeline.utils.confidence import clamp, clamp_score

logger = logging.getLogger(__name__)

TYPE_PENALTIES = {
    QuestionType.MULTIPLE_CHOICE: 0.0,
    QuestionType.TEXT: 25.0,
    QuestionType.ESSAY: 40.0,
}
UNKNOWN_TYPE_PENALTY = 15.0

QUALITY_BONUS = {
    BubbleQuality.HEAVY: 25.0,
    BubbleQuality.MEDIUM: 15.0,
    BubbleQuality.LIGHT: 5.0,
    BubbleQuality.EMPTY: -20.0,
    BubbleQuality.OVERFILLED: -20.0,
}


@dataclass
class ComplexityConfig:
    """Tier boundary for complexity scores."""

    simple_threshold: float = settings.SIMPLE_COMPLEXITY_THRESHOLD


class ComplexityAnalyzer:
    """Turns an ExtractedAnswer into a ComplexityScore."""

    def __init__(self, config: Optional[ComplexityConfig] = None):
        self.config = config or ComplexityConfig()

    def analyze_all(self, answers: Sequence[ExtractedAnswer]) -> List[ComplexityScore]:
        """Scores every answer; logs the tier split."""
        scores = [self.analyze(answer) for answer in answers]
        cheap = sum(1 for score in scores if score.recommended_tier == ProcessingTier.CHEAP)
        logger.info(f"Complexity analysis: {cheap} cheap-tier, {len(scores) - cheap} expensive-tier questions")
        return scores

    def analyze(self, answer: ExtractedAnswer) -> ComplexityScore:
        """Scores one answer on the 0-100 factor scale.

        Args:
            answer (ExtractedAnswer): The question's initial extraction.

        Returns:
            ComplexityScore: Score, recommended tier, decision confidence and the factors behind them.
        """
        confidence = clamp(answer.confidence) * 100
        clarity = self.answer_clarity(answer)
        quality = answer.bubble_quality
        has_value = answer.value is not None
        invalid_format = has_value and not self._value_valid(answer)

        factors: Dict[str, float] = {
            "extraction_confidence": (100 - confidence) * 0.3,
            "answer_clarity": (100 - clarity) * 0.25,
            "multiple_marks": 30.0 if answer.multiple_marks else 0.0,
            "review_flag": 25.0 if answer.review_flag else 0.0,
            "not_cross_validated": 0.0 if answer.cross_validated else 15.0,
            "bubble_quality": self._quality_penalty(answer),
            "question_type": TYPE_PENALTIES.get(answer.question_type, UNKNOWN_TYPE_PENALTY),
            "no_value": 20.0 if not has_value else 0.0,
            "invalid_format": 15.0 if invalid_format else 0.0,
        }
        score = clamp_score(sum(factors.values()))
        tier = ProcessingTier.CHEAP if score <= self.config.simple_threshold else ProcessingTier.EXPENSIVE

        return ComplexityScore(
            question_number=answer.question_number,
            score=score,
            recommended_tier=tier,
            decision_confidence=self._decision_confidence(score, confidence, answer),
            contributing_factors=factors,
            reasoning=self._reasoning(score, tier, confidence, quality, answer),
        )

    @staticmethod
    def answer_clarity(answer: ExtractedAnswer) -> float:
        """Clarity of the answer on the 0-100 scale, from confidence, fill quality and cross-validation."""
        clarity = clamp(answer.confidence) * 100 * 0.6
        if answer.bubble_quality is not None:
            clarity += QUALITY_BONUS.get(answer.bubble_quality, 0.0)
        if answer.cross_validated:
            clarity += 10.0
        if answer.value is not None and ComplexityAnalyzer._value_valid(answer):
            clarity += 5.0
        return clamp_score(clarity)

    @staticmethod
    def _value_valid(answer: ExtractedAnswer) -> bool:
        if answer.question_type == QuestionType.MULTIPLE_CHOICE:
            return answer.value in answer.valid_options if answer.valid_options else True
        return answer.format_valid

    @staticmethod
    def _quality_penalty(answer: ExtractedAnswer) -> float:
        if answer.question_type != QuestionType.MULTIPLE_CHOICE:
            return 0.0
        quality = answer.bubble_quality
        if quality in (BubbleQuality.EMPTY, BubbleQuality.OVERFILLED):
            return 20.0
        if quality is None or quality == BubbleQuality.UNKNOWN:
            return 10.0
        return 0.0

    @staticmethod
    def _decision_confidence(score: float, confidence: float, answer: ExtractedAnswer) -> float:
        decision = 80.0
        if score <= 20 or score >= 80:
            decision += 15
        if 40 <= score <= 60:
            decision -= 20
        if answer.cross_validated and confidence > 85:
            decision += 10
        if answer.multiple_marks or answer.review_flag:
            decision += 10
        if answer.bubble_quality in (BubbleQuality.HEAVY, BubbleQuality.MEDIUM):
            decision += 5
        return clamp(decision, 50.0, 100.0)

    @staticmethod
    def _reasoning(
        score: float,
        tier: ProcessingTier,
        confidence: float,
        quality: Optional[BubbleQuality],
        answer: ExtractedAnswer,
    ) -> str:
        parts = [f"score {score:.1f}", f"confidence {confidence:.0f}%"]
        if quality is not None:
            parts.append(f"{quality.value} fill")
        if answer.multiple_marks:
            parts.append("multiple marks")
        if answer.cross_validated:
            parts.append("cross-validated")
        if answer.value is None:
            parts.append("no value")
        return f"{tier.value} tier: " + ", ".join(parts)
