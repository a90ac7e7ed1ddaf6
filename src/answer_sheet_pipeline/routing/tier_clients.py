"""Clients for the cheap and expensive processing tiers."""

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from answer_sheet_pipeline.complexity.schemas import ProcessingTier
from answer_sheet_pipeline.config import settings
from answer_sheet_pipeline.routing.schemas import TierRequest, TierResponse

logger = logging.getLogger(__name__)

PROMPT = (
    "You are checking answers read from a scanned answer sheet. For each question below you get the image of its "
    "answer area and the value read by the scanner. Read the answer yourself. For multiple choice give the single "
    "filled option letter, or null if none or several are filled. For written answers transcribe the text. "
    'Reply with JSON only: {"answers": [{"question_number": <int>, "value": <string or null>, '
    '"confidence": <number between 0 and 1>}]}'
)


class TierCallError(Exception):
    """Raised when a tier call fails or returns an unusable response."""


class TierClient(ABC):
    """Abstract base class for processing tier clients."""

    def __init__(self, tier: ProcessingTier):
        self.tier = tier

    @abstractmethod
    def process_batch(self, requests: Sequence[TierRequest], deadline: float) -> List[TierResponse]:
        """Processes one batch of questions.

        Args:
            requests: The questions of the batch.
            deadline: time.monotonic() value after which the call must not start.

        Returns:
            One response per question the tier answered; missing questions count as incomplete.

        Raises:
            TierCallError: If the call fails.
        """


class BedrockTierClient(TierClient):
    """Reads answer crops with a Bedrock model through the Converse API."""

    def __init__(
        self,
        tier: ProcessingTier,
        model_id: str,
        client=None,
        max_tokens: int = settings.TIER_MAX_TOKENS,
    ):
        """Initializes the client.

        Args:
            tier (ProcessingTier): The tier this client serves.
            model_id (str): Bedrock model id.
            client: Optional bedrock-runtime client; one is created for settings.AWS_REGION when omitted.
            max_tokens (int): Response token limit.
        """
        super().__init__(tier)
        self.model_id = model_id
        self.max_tokens = max_tokens
        self.client = client or boto3.client(
            "bedrock-runtime",
            region_name=settings.AWS_REGION,
            config=Config(read_timeout=settings.BATCH_TIMEOUT_SECONDS, retries={"max_attempts": 2}),
        )

    def process_batch(self, requests: Sequence[TierRequest], deadline: float) -> List[TierResponse]:
        """Sends every crop of the batch in one Converse call and parses the JSON answer list.

        Args:
            requests (Sequence[TierRequest]): The questions of the batch.
            deadline (float): time.monotonic() value after which the call must not start.

        Returns:
            List[TierResponse]: Parsed responses.

        Raises:
            TierCallError: If the deadline has passed, the call fails or the reply is not valid JSON.
        """
        if time.monotonic() >= deadline:
            raise TierCallError("Deadline passed before the tier call started.")

        content: List[dict] = [{"text": PROMPT}]
        for request in requests:
            content.append({"text": self._describe(request)})
            if request.image_png:
                content.append({"image": {"format": "png", "source": {"bytes": request.image_png}}})

        logger.debug(f"Calling {self.model_id} for questions {[r.question_number for r in requests]}")
        try:
            response = self.client.converse(
                modelId=self.model_id,
                messages=[{"role": "user", "content": content}],
                inferenceConfig={"maxTokens": self.max_tokens, "temperature": 0},
            )
            reply = response["output"]["message"]["content"][0]["text"]
        except (ClientError, BotoCoreError, KeyError, IndexError) as e:
            raise TierCallError(f"{self.tier.value} tier call failed: {str(e)}") from e

        return self._parse(reply)

    @staticmethod
    def _describe(request: TierRequest) -> str:
        description = f"Question {request.question_number} ({request.question_type.value})"
        if request.valid_options:
            description += f", options {'/'.join(request.valid_options)}"
        return f"{description}, scanner read: {json.dumps(request.extracted_value)}"

    @staticmethod
    def _parse(reply: str) -> List[TierResponse]:
        start, end = reply.find("{"), reply.rfind("}")
        if start == -1 or end < start:
            raise TierCallError("Tier reply did not contain JSON.")
        try:
            payload = json.loads(reply[start : end + 1])
        except json.JSONDecodeError as e:
            raise TierCallError(f"Tier reply was not valid JSON: {e}") from e

        responses = []
        for item in payload.get("answers", []):
            if not isinstance(item, dict) or "question_number" not in item:
                continue
            confidence: Optional[float] = item.get("confidence")
            if confidence is not None:
                confidence = max(0.0, min(1.0, float(confidence)))
            value = item.get("value")
            responses.append(
                TierResponse(
                    question_number=int(item["question_number"]),
                    value=str(value).strip() if value is not None else None,
                    confidence=confidence,
                )
            )
        return responses
