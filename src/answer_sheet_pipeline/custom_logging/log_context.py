"""Custom logging context to include answer sheet document IDs in log messages."""

import logging
from concurrent.futures import Executor, Future
from contextvars import ContextVar, copy_context
from typing import Callable, Iterable, Iterator, Optional, TypeVar

from answer_sheet_pipeline.config import settings

T = TypeVar("T")

# Id of the answer sheet currently being processed.
document_id_context: ContextVar[Optional[str]] = ContextVar("document_id", default=None)


class ContextFilter(logging.Filter):
    """Prefixes log records with the id of the answer sheet being processed."""

    def filter(self, record):
        """Prefixes the record message with the current document id, once per record.

        Args:
            record (logging.LogRecord): The log record to modify.

        Returns:
            bool: Always returns True.
        """
        document_id = document_id_context.get()
        if document_id and getattr(record, "document_id", None) is None:
            record.document_id = document_id
            record.msg = f"[{document_id}] {record.msg}"
        return True


def submit_in_context(executor: Executor, fn: Callable[..., T], *args, **kwargs) -> "Future[T]":
    """Submits fn to the executor so that it runs with a copy of the caller's context variables.

    Worker threads start with an empty context; without the copy their log records lose the document id.
    """
    return executor.submit(copy_context().run, fn, *args, **kwargs)


def map_in_context(executor: Executor, fn: Callable[..., T], *iterables: Iterable) -> Iterator[T]:
    """Like Executor.map, with every call running in its own copy of the caller's context."""
    calls = [(copy_context(), args) for args in zip(*iterables)]
    return executor.map(lambda call: call[0].run(fn, *call[1]), calls)


def setup_logging():
    """Call this once at app startup."""
    root_logger = logging.getLogger()

    # Clear any existing handlers (prevents duplicates)
    root_logger.handlers.clear()

    handler = logging.StreamHandler()
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())

    root_logger.addHandler(handler)
    root_logger.setLevel(settings.LOG_LEVEL)
