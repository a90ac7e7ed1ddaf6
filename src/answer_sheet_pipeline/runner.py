"""Pipeline runner responsible for creating the pipeline and processing one answer sheet."""

import argparse
import logging
from pathlib import Path
from typing import Optional, Sequence

from answer_sheet_pipeline.custom_logging.log_context import setup_logging
from answer_sheet_pipeline.orchestration.context import AnswerSheetDocument
from answer_sheet_pipeline.pipeline_builder import build_pipeline
from answer_sheet_pipeline.uuid_generators.document_uuid import DocumentIdentifier

setup_logging()
logger = logging.getLogger(__name__)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Extract and validate the answers on a scanned answer sheet.")
    parser.add_argument("path", type=Path, help="PDF or image of the answer sheet")
    parser.add_argument("--expected-questions", type=int, default=None, help="number of questions on the sheet")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the application runner.

    Returns:
        int: Process exit code; 1 when the document could not be processed.
    """
    args = parse_args(argv)
    logger.info("Pipeline runner started.")

    content = args.path.read_bytes()
    document = AnswerSheetDocument(
        document_id=DocumentIdentifier.for_content(args.path.name, content).generate_uuid(),
        filename=args.path.name,
        content=content,
        expected_question_count=args.expected_questions,
    )

    pipeline = build_pipeline()
    try:
        result = pipeline.process_document(document)
    except Exception:
        logger.critical("Pipeline runner encountered a fatal error.", exc_info=True)
        return 1

    summary = result.summary
    logger.info(
        f"Template {summary.template_id or 'generic'} ({summary.template_match_confidence:.2f}), "
        f"{summary.question_count} questions, quality {summary.quality_score:.2f}, "
        f"{summary.manual_review_count} for manual review"
    )
    for record in result.records:
        logger.info(
            f"Q{record.question_number}: {record.value!r} confidence {record.confidence:.2f} "
            f"passed={record.validation_passed} provenance={record.provenance}"
        )
    logger.info("Pipeline runner finished successfully.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
