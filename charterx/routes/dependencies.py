from functools import lru_cache
import logging

from fastapi import Depends, HTTPException, status

from charterx.services.contract_pipeline import ContractPipeline
from charterx.services.errors import (
    CharterPartyError, ExtractionFailure, GenerationFailure, MergeFailure, RenderFailure, SessionNotFound,
    StaleRevisionError, UnsupportedMediaType, ValidationFailure,
)
from charterx.services.llm_client import GeminiTextGenerator, TextGenerator
from charterx.utils.logger import setup_logging

setup_logging(__name__)
logger = logging.getLogger(__name__)

# Most specific first: UnsupportedMediaType is an ExtractionFailure
ERROR_STATUS = [
    (SessionNotFound, status.HTTP_404_NOT_FOUND),
    (StaleRevisionError, status.HTTP_409_CONFLICT),
    (UnsupportedMediaType, status.HTTP_415_UNSUPPORTED_MEDIA_TYPE),
    (ExtractionFailure, status.HTTP_400_BAD_REQUEST),
    (ValidationFailure, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (MergeFailure, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (GenerationFailure, status.HTTP_502_BAD_GATEWAY),
    (RenderFailure, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def to_http_exception(error: CharterPartyError) -> HTTPException:
    """Map a pipeline error to its HTTP status, keeping stage and context in the detail"""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, code in ERROR_STATUS:
        if isinstance(error, error_type):
            status_code = code
            break
    if status_code >= 500:
        logger.error(f"✗ {error.stage}: {error.message}")
    else:
        logger.warning(f"{error.stage}: {error.message}")
    return HTTPException(status_code=status_code, detail=error.to_dict())


@lru_cache()
def _gemini_generator() -> GeminiTextGenerator:
    return GeminiTextGenerator()


def get_generator() -> TextGenerator:
    try:
        return _gemini_generator()
    except ValueError as e:
        logger.error(f"✗ Text generation unavailable: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "GenerationUnavailable", "stage": "generation", "detail": str(e), "context": {}},
        )


def get_pipeline(generator: TextGenerator = Depends(get_generator)) -> ContractPipeline:
    return ContractPipeline(generator)
