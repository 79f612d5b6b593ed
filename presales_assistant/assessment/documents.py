from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .storage import LocalDocumentStorage

logger = logging.getLogger(__name__)

CONVERTIBLE_MIME_TYPES = {
    "application/pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "text/html",
}


class DocumentConverter:
    """
    Abstract converter from a binary scope document to prompt-ready text.
    Implementations should be stateless and reusable.
    """

    def convert(self, path: Path) -> str:
        raise NotImplementedError


class DoclingDocumentConverter(DocumentConverter):
    """
    Docling-based converter producing markdown from PDF/Office/HTML documents.

    Requires the `docling` package (optional `documents` extra). The converter
    is built on first use because Docling loads its layout models eagerly.
    """

    def __init__(self, perform_ocr: bool = False):
        self.perform_ocr = perform_ocr
        self._converter = None

    def _get_converter(self):
        if self._converter is not None:
            return self._converter
        try:
            from docling.datamodel.base_models import InputFormat
            from docling.datamodel.pipeline_options import PdfPipelineOptions
            from docling.document_converter import DocumentConverter as DlConverter, PdfFormatOption
        except ImportError as exc:  # pragma: no cover - dependency guard
            raise RuntimeError("Docling is required to read binary scope documents. Please install 'docling'.") from exc

        pipeline_options = PdfPipelineOptions()
        pipeline_options.do_ocr = self.perform_ocr
        pipeline_options.do_table_structure = True
        self._converter = DlConverter(
            format_options={InputFormat.PDF: PdfFormatOption(pipeline_options=pipeline_options)}
        )
        return self._converter

    def convert(self, path: Path) -> str:
        result = self._get_converter().convert(path)
        return result.document.export_to_markdown()


def try_decode_utf8(data: bytes) -> Optional[str]:
    """Return the text if `data` looks like UTF-8 text, otherwise None."""
    if not data:
        return ""
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return None
    if "\ufffd" in text:
        return None
    control_count = 0
    limit = max(4, len(text) // 40)
    for ch in text:
        if not ch.isprintable() and not ch.isspace():
            control_count += 1
            if control_count > limit:
                return None
    return text


class ScopeDocumentLoader:
    """
    Turns a stored scope document into text for the prompt: plain text is
    decoded directly, convertible formats go through the converter (cached
    next to the original), anything else becomes a short placeholder note.
    """

    def __init__(self, storage: LocalDocumentStorage, converter: Optional[DocumentConverter] = None):
        self.storage = storage
        self.converter = converter or DoclingDocumentConverter()

    def load_text(self, job_id: str, path: str, mime_type: str) -> str:
        doc_path = Path(path)
        if not doc_path.exists():
            raise FileNotFoundError(f"Scope document not found at {doc_path}")
        data = doc_path.read_bytes()
        if not data:
            return ""

        decoded = try_decode_utf8(data)
        if decoded is not None:
            return decoded

        effective_mime = mime_type or "application/octet-stream"
        if effective_mime in CONVERTIBLE_MIME_TYPES:
            cached = self.storage.read_converted_text(job_id)
            if cached is not None:
                return cached
            logger.info("Converting scope document %s (%s) for job %s", doc_path.name, effective_mime, job_id)
            text = self.converter.convert(doc_path)
            self.storage.write_converted_text(job_id, text)
            return text

        logger.warning(
            "Unable to inline scope document %s (%s) as text. Using placeholder metadata.",
            doc_path.name,
            effective_mime,
        )
        return (
            f"[Scope document: {doc_path.name} ({effective_mime}), {len(data)} bytes. "
            "Binary content could not be inlined. Focus on instructions and context.]"
        )
