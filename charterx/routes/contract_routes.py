"""
Charter Party Contract session and merge routes
"""
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import HTMLResponse, Response
from pydantic import Field
from typing import Optional
import logging

from charterx.database.schemas import CamelModel
from charterx.database.session_store import SessionStore, get_store
from charterx.routes.dependencies import get_pipeline, to_http_exception
from charterx.services.contract_pipeline import ContractPipeline, export_session
from charterx.services.errors import CharterPartyError
from charterx.services.export_service import ExportService, build_print_html
from charterx.utils.logger import setup_logging

setup_logging(__name__)
logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1",
    tags=["Charter Party Contracts"]
)

# ============================================================================
# REQUEST MODELS
# ============================================================================

class MergeRequest(CamelModel):
    """The three merge inputs; minimum lengths are enforced by the pipeline"""
    fixture_recap: str = Field("", description="Fixture recap of agreed commercial terms")
    base_contract: str = Field("", description="Base contract template with numbered sections")
    negotiated_clauses: str = Field("", description="Section-tagged negotiated clauses")
    expected_revision: Optional[int] = Field(None, description="Revision the caller last saw")


def _merge_response(result, session_id: Optional[str] = None) -> dict:
    response = {
        "revision": result.document.revision,
        "document": result.document.model_dump(mode="json", by_alias=True),
        "html": result.document.to_html(),
        "warnings": [w.model_dump(mode="json", by_alias=True) for w in result.warnings],
    }
    if session_id:
        response["session_id"] = session_id
    return response


# ============================================================================
# SESSIONS
# ============================================================================

@router.post("/sessions", status_code=status.HTTP_201_CREATED)
async def create_session(store: SessionStore = Depends(get_store)):
    """Open a working session; its document lives in memory only"""
    return store.create().summary()


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, store: SessionStore = Depends(get_store)):
    try:
        return store.get(session_id).summary()
    except CharterPartyError as e:
        raise to_http_exception(e)


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str, store: SessionStore = Depends(get_store)):
    try:
        store.delete(session_id)
    except CharterPartyError as e:
        raise to_http_exception(e)
    return {"deleted": session_id}


@router.post("/sessions/{session_id}/merge")
async def merge_into_session(
    session_id: str,
    request: MergeRequest,
    store: SessionStore = Depends(get_store),
    pipeline: ContractPipeline = Depends(get_pipeline),
):
    """Merge the three inputs into a new revision of the session document"""
    logger.info("=" * 80)
    logger.info(f"MERGE REQUEST: session {session_id}")
    logger.info("=" * 80)
    try:
        session = store.get(session_id)
        result = await pipeline.merge_session(
            session,
            request.fixture_recap,
            request.base_contract,
            request.negotiated_clauses,
            request.expected_revision,
        )
    except CharterPartyError as e:
        raise to_http_exception(e)
    return _merge_response(result, session_id)


@router.get("/sessions/{session_id}/document")
async def get_document(
    session_id: str,
    format: str = Query("json", pattern="^(json|html)$"),
    store: SessionStore = Depends(get_store),
):
    """Current revision as JSON, or as the print-styled HTML preview"""
    try:
        document = store.get(session_id).require_document()
    except CharterPartyError as e:
        raise to_http_exception(e)

    if format == "html":
        return HTMLResponse(build_print_html(document.to_html(), document.title))
    return {
        "revision": document.revision,
        "document": document.model_dump(mode="json", by_alias=True),
        "html": document.to_html(),
    }


def get_exporter() -> ExportService:
    return ExportService()


@router.post("/sessions/{session_id}/export")
def export_document(
    session_id: str,
    format: str = Query("pdf", pattern="^(pdf|docx)$"),
    redline: bool = Query(False, description="Export the redline of the current revision instead"),
    store: SessionStore = Depends(get_store),
    exporter: ExportService = Depends(get_exporter),
):
    """Print-ready PDF or DOCX of the current revision (sync: FastAPI renders it in its threadpool)"""
    try:
        session = store.get(session_id)
        content, media_type = export_session(session, format, redline, exporter)
    except CharterPartyError as e:
        raise to_http_exception(e)

    filename = f"charter-party-contract-r{session.revision}{'-redline' if redline else ''}.{format}"
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ============================================================================
# STATELESS
# ============================================================================

@router.post("/merge")
async def merge(request: MergeRequest, pipeline: ContractPipeline = Depends(get_pipeline)):
    """One-shot merge: (fixture recap, base contract, negotiated clauses) -> document + warnings"""
    try:
        result = await pipeline.merge(request.fixture_recap, request.base_contract, request.negotiated_clauses)
    except CharterPartyError as e:
        raise to_http_exception(e)
    return _merge_response(result)
