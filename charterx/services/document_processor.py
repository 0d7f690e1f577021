import fitz  # PyMuPDF
from docx import Document
from io import BytesIO
from typing import Any, Dict
import logging

from charterx.services.errors import ExtractionFailure, UnsupportedMediaType
from charterx.utils.logger import setup_logging

setup_logging(__name__)
logger = logging.getLogger(__name__)

PDF = "application/pdf"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
PLAIN = "text/plain"
HTML = "text/html"

# Media type -> normalizer source hint
NORMALIZER_SOURCE = {
    PDF: "extracted",
    DOCX: "extracted",
    PLAIN: "text",
    HTML: "html",
}


def base_media_type(media_type: str) -> str:
    """'text/plain; charset=utf-8' -> 'text/plain'"""
    return (media_type or "").split(";", 1)[0].strip().lower()


class DocumentProcessor:
    """Converts uploaded PDF / DOCX / text / HTML bytes to text for the normalizer"""

    def extract(self, data: bytes, media_type: str) -> Dict[str, Any]:
        """
        Extract text from raw file bytes

        Args:
            data: File content
            media_type: Declared media type of the content

        Returns:
            {"text", "media_type", "source", "pages"}; "source" is the hint to pass
            to TextNormalizer.normalize()

        Raises:
            UnsupportedMediaType: Undeclared or unsupported media type
            ExtractionFailure: The file could not be read or has no text
        """
        media = base_media_type(media_type)
        if media not in NORMALIZER_SOURCE:
            logger.error(f"✗ Unsupported media type: {media_type!r}")
            raise UnsupportedMediaType(media_type or "undeclared")

        if media == PDF:
            text, pages = self._process_pdf(data)
        elif media == DOCX:
            text, pages = self._process_docx(data), 1
        else:
            text, pages = self._decode(data), 1

        if not text.strip():
            logger.error(f"✗ No text extracted from {media} ({len(data)} bytes)")
            raise ExtractionFailure("The file contains no extractable text", context={"media_type": media})

        logger.info(f"✓ Extracted {len(text)} chars from {media} ({pages} page(s))")
        return {"text": text, "media_type": media, "source": NORMALIZER_SOURCE[media], "pages": pages}

    def extract_text(self, data: bytes, media_type: str) -> str:
        return self.extract(data, media_type)["text"]

    def _process_pdf(self, data: bytes):
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except Exception as e:
            raise ExtractionFailure(f"PDF processing error: {e}", context={"media_type": PDF}) from e

        try:
            pages = [page.get_text("text") for page in doc]
        finally:
            doc.close()
        return "\n".join(pages), len(pages)

    def _process_docx(self, data: bytes) -> str:
        try:
            doc = Document(BytesIO(data))
        except Exception as e:
            raise ExtractionFailure(f"DOCX processing error: {e}", context={"media_type": DOCX}) from e

        lines = [para.text for para in doc.paragraphs]
        # Tables keep one line per row, cells separated like the HTML path
        for table in doc.tables:
            for row in table.rows:
                lines.append(" | ".join(cell.text.strip() for cell in row.cells))
        return "\n".join(lines)

    @staticmethod
    def _decode(data: bytes) -> str:
        for encoding in ("utf-8-sig", "cp1252"):
            try:
                return data.decode(encoding)
            except UnicodeDecodeError:
                continue
        return data.decode("latin-1")
