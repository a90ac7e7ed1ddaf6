"""Text recognition for free-text answer boxes."""

import logging
from abc import ABC, abstractmethod
from statistics import mean

import numpy as np
from PIL import Image
from pydantic import BaseModel, ConfigDict, Field
from textractor import Textractor

logger = logging.getLogger(__name__)


class TextRecognitionError(Exception):
    """Raised when a text recognition call fails."""


class TextReading(BaseModel):
    """Recognized text with its confidence in [0, 1]."""

    model_config = ConfigDict(frozen=True)

    text: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class TextRecognizer(ABC):
    """Abstract base class for text recognizers."""

    @abstractmethod
    def recognize(self, image: np.ndarray) -> TextReading:
        """Reads the text in a grayscale crop.

        Args:
            image: Grayscale crop of one answer box.

        Returns:
            The recognized text and its confidence.
        """


class TextractTextRecognizer(TextRecognizer):
    """Reads handwriting and print with Amazon Textract's synchronous text detection."""

    def __init__(self, textractor: Textractor):
        """Initializes the recognizer.

        Args:
            textractor (Textractor): Textractor client used for detect_document_text calls.
        """
        self.textractor = textractor

    def recognize(self, image: np.ndarray) -> TextReading:
        """Reads the text in a grayscale crop.

        Args:
            image (np.ndarray): Grayscale crop of one answer box.

        Returns:
            TextReading: Lines joined with newlines; confidence is the mean line confidence.

        Raises:
            TextRecognitionError: If the Textract call fails.
        """
        try:
            document = self.textractor.detect_document_text(file_source=Image.fromarray(image), save_image=False)
        except Exception as e:
            logger.error(f"Textract text detection failed: {e}")
            raise TextRecognitionError(f"Failed to detect text: {str(e)}") from e

        lines = list(document.lines)
        if not lines:
            return TextReading()

        # Textract reports percentages; textractor may already have normalized them.
        confidences = [line.confidence / 100 if line.confidence > 1 else line.confidence for line in lines]
        text = "\n".join(line.text for line in lines)
        return TextReading(text=text, confidence=max(0.0, min(1.0, mean(confidences))))
