"""Deterministic UUIDs for answer sheet documents."""

import hashlib
import logging
import uuid

from pydantic import BaseModel, ConfigDict, field_validator

from answer_sheet_pipeline.config import settings

logger = logging.getLogger(__name__)

NAMESPACE_ANSWER_SHEETS = uuid.UUID(settings.SYSTEM_UUID_NAMESPACE)


class DocumentIdentifier(BaseModel):
    """Natural key of an uploaded answer sheet: its file name and a digest of its bytes."""

    model_config = ConfigDict(frozen=True)

    source_file_name: str
    content_digest: str

    @field_validator("source_file_name")
    @classmethod
    def normalize_file_name(cls, v: str) -> str:
        """Strips and lowercases the file name so the same upload always hashes the same way."""
        return (v or "").strip().lower()

    @classmethod
    def for_content(cls, source_file_name: str, content: bytes) -> "DocumentIdentifier":
        return cls(source_file_name=source_file_name, content_digest=hashlib.sha256(content).hexdigest())

    def generate_uuid(self) -> str:
        """Creates a deterministic Version 5 UUID from this object's data."""
        data_string = f"{self.source_file_name}-{self.content_digest}"
        logger.debug(f"Generating UUID with data string: {data_string}")
        return str(uuid.uuid5(NAMESPACE_ANSWER_SHEETS, data_string))
