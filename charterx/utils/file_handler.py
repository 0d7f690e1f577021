from fastapi import UploadFile
import logging

from charterx.config.config import Config
from charterx.services.document_processor import base_media_type
from charterx.services.errors import UnsupportedMediaType, ValidationFailure
from charterx.utils.logger import setup_logging

setup_logging(__name__)
logger = logging.getLogger(__name__)


class FileHandler:
    """Upload validation; files are read into memory and never written to disk"""

    CHUNK_SIZE = 8192

    def __init__(self, max_file_size: int = Config.MAX_UPLOAD_SIZE):
        self.max_file_size = max_file_size

    async def read_upload(self, file: UploadFile) -> bytes:
        """Read an upload after checking its declared type and size"""
        media_type = base_media_type(file.content_type or "")
        if media_type not in Config.ALLOWED_MEDIA_TYPES:
            raise UnsupportedMediaType(file.content_type or "undeclared")

        chunks = []
        total_size = 0
        while chunk := await file.read(self.CHUNK_SIZE):
            total_size += len(chunk)
            if total_size > self.max_file_size:
                raise ValidationFailure(
                    f"File too large. Max: {self.max_file_size // (1024 * 1024)}MB", field="file"
                )
            chunks.append(chunk)

        logger.info(f"Received {file.filename} ({media_type}, {total_size} bytes)")
        return b"".join(chunks)
