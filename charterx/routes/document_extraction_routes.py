from fastapi import APIRouter, Depends, File, UploadFile
from datetime import datetime
import logging

from charterx.routes.dependencies import to_http_exception
from charterx.services.document_processor import DocumentProcessor
from charterx.services.errors import CharterPartyError, ValidationFailure
from charterx.services.text_normalizer import TextNormalizer
from charterx.utils.file_handler import FileHandler
from charterx.utils.logger import setup_logging

setup_logging(__name__)
logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1",
    tags=["Document Extraction"]
)

file_handler = FileHandler()
document_processor = DocumentProcessor()
normalizer = TextNormalizer()


def get_file_handler() -> FileHandler:
    return file_handler


@router.post("/extract")
async def extract_document(
    file: UploadFile = File(...),
    handler: FileHandler = Depends(get_file_handler),
):
    """Upload a PDF, DOCX, plain-text or HTML contract and get its canonical text back"""
    request_id = f"req_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
    logger.info("=" * 80)
    logger.info(f"EXTRACTION REQUEST: {request_id} ({file.filename}, {file.content_type})")
    logger.info("=" * 80)

    try:
        data = await handler.read_upload(file)
        extracted = document_processor.extract(data, file.content_type)
        canonical = normalizer.normalize(extracted["text"], extracted["source"])
        if not canonical.strip():
            raise ValidationFailure("The file contains no usable text", field="file")
        sections = normalizer.parse_sections(canonical)
    except CharterPartyError as e:
        raise to_http_exception(e)

    return {
        "request_id": request_id,
        "filename": file.filename,
        "media_type": extracted["media_type"],
        "pages": extracted["pages"],
        "text": canonical,
        "sections": [
            {"number": s.number, "heading": s.heading, "paragraphs": len(s.body)} for s in sections
        ],
    }
