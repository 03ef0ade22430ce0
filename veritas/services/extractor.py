# =============================================================================
# Text Extraction — Docling for PDF/DOCX, plain read for TXT/MD
# =============================================================================
#
# Converts an uploaded file to one plain-text string for the chunker.
# Structure (headings, tables, pages) is flattened: the chunker works on
# characters and separators only.
#
# Pipeline position: Step 1 of ingestion (extract → chunk → embed → store).
# =============================================================================

from __future__ import annotations

import logging
from pathlib import Path

from docling.datamodel.base_models import InputFormat
from docling.datamodel.pipeline_options import PdfPipelineOptions
from docling.document_converter import DocumentConverter, PdfFormatOption

logger = logging.getLogger(__name__)

PLAIN_TEXT_EXTENSIONS = frozenset({"txt", "md"})
CONVERTED_EXTENSIONS = frozenset({"pdf", "docx"})
SUPPORTED_EXTENSIONS = PLAIN_TEXT_EXTENSIONS | CONVERTED_EXTENSIONS


class TextExtractionError(RuntimeError):
    """The file exists and has a supported type, but could not be read."""


# ---------------------------------------------------------------------------
# Docling Converter — Lazy Singleton
# ---------------------------------------------------------------------------
# Initialization loads layout models (a few seconds on first use), so one
# converter is shared by every document a worker processes.
# ---------------------------------------------------------------------------

_converter: DocumentConverter | None = None


def _get_converter() -> DocumentConverter:
    """Lazily initialize and cache the Docling DocumentConverter."""
    global _converter
    if _converter is None:
        logger.info("Initializing Docling DocumentConverter (first use)...")
        pipeline_options = PdfPipelineOptions()
        pipeline_options.do_table_structure = True
        pipeline_options.do_ocr = True

        _converter = DocumentConverter(
            allowed_formats=[InputFormat.PDF, InputFormat.DOCX],
            format_options={
                InputFormat.PDF: PdfFormatOption(pipeline_options=pipeline_options),
            },
        )
    return _converter


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def file_extension(file_name: str) -> str:
    """Lowercased extension without the dot ("" if none)."""
    return Path(file_name).suffix.lower().lstrip(".")


def extract_text(file_path: str) -> str:
    """
    Extract plain text from a PDF, DOCX, TXT or MD file.

    Raises:
        FileNotFoundError: The file does not exist.
        ValueError: The extension is not supported.
        TextExtractionError: Docling could not convert the file.
    """
    path = Path(file_path)
    extension = file_extension(path.name)

    if extension not in SUPPORTED_EXTENSIONS:
        raise ValueError(f"Unsupported file type: {extension or '(none)'}")
    if not path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    if extension in PLAIN_TEXT_EXTENSIONS:
        text = path.read_text(encoding="utf-8", errors="replace")
    else:
        try:
            result = _get_converter().convert(str(path))
        except Exception as exc:
            raise TextExtractionError(
                f"Docling failed to convert '{path.name}': {exc}"
            ) from exc
        text = result.document.export_to_text()

    logger.info("Extracted %d characters from '%s'", len(text), path.name)
    return text
