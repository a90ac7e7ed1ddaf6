import hashlib
import uuid
from unittest.mock import patch

import pytest

from answer_sheet_pipeline.uuid_generators.document_uuid import DocumentIdentifier

MOCK_NAMESPACE_UUID = "1b671a64-40d5-491e-99b0-da01ff1f3341"
MOCK_NAMESPACE_OBJ = uuid.UUID(MOCK_NAMESPACE_UUID)


@pytest.fixture
def content():
    return b"\x89PNG scanned answer sheet"


@patch(
    "answer_sheet_pipeline.uuid_generators.document_uuid.NAMESPACE_ANSWER_SHEETS",
    MOCK_NAMESPACE_OBJ,
)
def test_generates_correct_and_valid_uuid(content):
    """Tests the UUID is the v5 hash of the normalized file name and the content digest."""
    digest = hashlib.sha256(content).hexdigest()
    expected_uuid = str(uuid.uuid5(MOCK_NAMESPACE_OBJ, f"sheet_01.png-{digest}"))

    actual_uuid = DocumentIdentifier.for_content("  Sheet_01.PNG ", content).generate_uuid()

    assert actual_uuid == expected_uuid
    try:
        uuid.UUID(actual_uuid, version=5)
    except ValueError:
        pytest.fail(f"The generated string '{actual_uuid}' is not a valid UUID.")


def test_is_deterministic(content):
    uuid1 = DocumentIdentifier.for_content("sheet.png", content).generate_uuid()
    uuid2 = DocumentIdentifier.for_content("sheet.png", content).generate_uuid()

    assert uuid1 == uuid2


def test_is_sensitive_to_input_changes(content):
    """Tests if changing the file name or the bytes results in a different UUID."""
    base_uuid = DocumentIdentifier.for_content("sheet.png", content).generate_uuid()

    assert base_uuid != DocumentIdentifier.for_content("other.png", content).generate_uuid()
    assert base_uuid != DocumentIdentifier.for_content("sheet.png", content + b"!").generate_uuid()
