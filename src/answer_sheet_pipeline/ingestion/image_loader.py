"""Decoding of answer sheet document bytes into grayscale page images."""

import logging

import cv2
import numpy as np
from pdf2image import convert_from_bytes
from pdf2image.exceptions import PDFPageCountError, PDFSyntaxError

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"


class DocumentLoadError(Exception):
    """Raised when document bytes cannot be decoded into a page image."""


def load_page_image(document_bytes: bytes) -> np.ndarray:
    """Decodes the first page of a document into a grayscale image.

    PDFs are rasterized with pdf2image; anything else is handed to OpenCV's image decoder.

    Args:
        document_bytes (bytes): Raw PDF, PNG, JPEG or TIFF bytes.

    Returns:
        np.ndarray: 2-D uint8 array, 0 = black ink, 255 = paper.

    Raises:
        DocumentLoadError: If the bytes are empty or cannot be decoded.
    """
    if not document_bytes:
        raise DocumentLoadError("Document is empty.")

    if document_bytes[:4] == PDF_MAGIC:
        try:
            pages = convert_from_bytes(document_bytes, first_page=1, last_page=1, grayscale=True)
        except (PDFPageCountError, PDFSyntaxError) as e:
            raise DocumentLoadError(f"Could not rasterize PDF: {e}") from e
        if not pages:
            raise DocumentLoadError("PDF has no pages.")
        image = np.array(pages[0].convert("L"))
    else:
        buffer = np.frombuffer(document_bytes, dtype=np.uint8)
        image = cv2.imdecode(buffer, cv2.IMREAD_GRAYSCALE)
        if image is None:
            raise DocumentLoadError("Could not decode image bytes.")

    logger.debug(f"Loaded page image {image.shape[1]}x{image.shape[0]}")
    return image
