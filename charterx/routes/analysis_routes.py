"""
Risk, compliance, redline and clause explanation routes

Session variants analyze the session's current revision and are refused with 409
if the document moved while the analysis ran.
"""
from fastapi import APIRouter, Depends
from pydantic import Field
import logging

from charterx.database.schemas import CamelModel, ClauseCategory
from charterx.database.session_store import SessionStore, get_store
from charterx.routes.dependencies import get_pipeline, to_http_exception
from charterx.services.contract_pipeline import ContractPipeline
from charterx.services.errors import CharterPartyError
from charterx.utils.logger import setup_logging

setup_logging(__name__)
logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1",
    tags=["Contract Analysis"]
)

# ============================================================================
# REQUEST MODELS
# ============================================================================

class AnalyzeRiskRequest(CamelModel):
    document_text: str = Field("", description="Full merged contract text (plain text or HTML)")


class ComplianceRequest(CamelModel):
    document_text: str = Field("", description="Full merged contract text (plain text or HTML)")
    fixture_recap: str = Field("", description="Fixture recap for voyage context")


class RedlineRequest(CamelModel):
    base_contract: str = Field("", description="Original base contract")
    negotiated_clauses: str = Field("", description="Negotiated clauses")
    current_document: str = Field("", description="Current merged/amended contract")


class ExplainClauseRequest(CamelModel):
    document_text: str = Field("", description="Full contract text for context")
    clause_text: str = Field("", description="The clause to explain")
    clause_id: str = Field(..., description="Identifier of the clause")
    category: ClauseCategory = Field(ClauseCategory.COMMERCIAL, description="Clause category")


def _dump(model) -> dict:
    return model.model_dump(mode="json", by_alias=True)


# ============================================================================
# SESSION ANALYSES
# ============================================================================

@router.post("/sessions/{session_id}/risk")
async def analyze_session_risk(
    session_id: str,
    store: SessionStore = Depends(get_store),
    pipeline: ContractPipeline = Depends(get_pipeline),
):
    """Risk findings for the current revision"""
    try:
        report = await pipeline.analyze_session_risk(store.get(session_id))
    except CharterPartyError as e:
        raise to_http_exception(e)
    return _dump(report)


@router.post("/sessions/{session_id}/compliance")
async def check_session_compliance(
    session_id: str,
    store: SessionStore = Depends(get_store),
    pipeline: ContractPipeline = Depends(get_pipeline),
):
    """Checklist status and scores for the current revision"""
    try:
        report = await pipeline.check_session_compliance(store.get(session_id))
    except CharterPartyError as e:
        raise to_http_exception(e)
    return _dump(report)


@router.post("/sessions/{session_id}/redline")
async def redline_session(
    session_id: str,
    store: SessionStore = Depends(get_store),
    pipeline: ContractPipeline = Depends(get_pipeline),
):
    """Base contract vs current revision"""
    try:
        report = await pipeline.redline_session(store.get(session_id))
    except CharterPartyError as e:
        raise to_http_exception(e)
    return _dump(report)


# ============================================================================
# STATELESS
# ============================================================================

@router.post("/analyze-risk")
async def analyze_risk(request: AnalyzeRiskRequest, pipeline: ContractPipeline = Depends(get_pipeline)):
    try:
        report = await pipeline.analyze_risk(request.document_text)
    except CharterPartyError as e:
        raise to_http_exception(e)
    return _dump(report)


@router.post("/check-compliance")
async def check_compliance(request: ComplianceRequest, pipeline: ContractPipeline = Depends(get_pipeline)):
    try:
        report = await pipeline.check_compliance(request.document_text, request.fixture_recap)
    except CharterPartyError as e:
        raise to_http_exception(e)
    return _dump(report)


@router.post("/generate-redline")
async def generate_redline(request: RedlineRequest, pipeline: ContractPipeline = Depends(get_pipeline)):
    try:
        report = await pipeline.generate_redline(
            request.base_contract, request.negotiated_clauses, request.current_document
        )
    except CharterPartyError as e:
        raise to_http_exception(e)
    return _dump(report)


@router.post("/explain-clause")
async def explain_clause(request: ExplainClauseRequest, pipeline: ContractPipeline = Depends(get_pipeline)):
    """Plain-language risks and benefits of one clause"""
    try:
        explanation = await pipeline.explain_clause(
            request.document_text, request.clause_text, request.clause_id, request.category
        )
    except CharterPartyError as e:
        raise to_http_exception(e)
    return _dump(explanation)
