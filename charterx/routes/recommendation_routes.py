"""
Clause recommendation routes: generate, accept, reject
"""
from fastapi import APIRouter, Depends
from pydantic import Field
from typing import Optional
import logging

from charterx.database.schemas import CamelModel
from charterx.database.session_store import SessionStore, get_store
from charterx.routes.dependencies import get_pipeline, to_http_exception
from charterx.services.contract_pipeline import ContractPipeline
from charterx.services.errors import CharterPartyError
from charterx.utils.logger import setup_logging

setup_logging(__name__)
logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1",
    tags=["Clause Recommendations"]
)


class RecommendRequest(CamelModel):
    fixture_recap: str = Field("", description="Fixture recap of agreed commercial terms")
    base_contract: str = Field("", description="Base contract template")


class AcceptRequest(CamelModel):
    expected_revision: Optional[int] = Field(None, description="Revision the caller last saw")


def _recommendation_response(recommendations) -> dict:
    """Rejected clauses are hidden from the current set"""
    return {
        "recommended_clauses": [
            c.model_dump(mode="json", by_alias=True) for c in recommendations.visible()
        ],
        "summary": recommendations.summary,
        "coverage_score": recommendations.coverage_score,
    }


@router.post("/sessions/{session_id}/recommendations")
async def recommend_for_session(
    session_id: str,
    store: SessionStore = Depends(get_store),
    pipeline: ContractPipeline = Depends(get_pipeline),
):
    """(Re)generate recommendations from the session's recap and base contract"""
    try:
        recommendations = await pipeline.recommend_session(store.get(session_id))
    except CharterPartyError as e:
        raise to_http_exception(e)
    return _recommendation_response(recommendations)


@router.post("/sessions/{session_id}/recommendations/{clause_id}/accept")
async def accept_recommendation(
    session_id: str,
    clause_id: str,
    request: Optional[AcceptRequest] = None,
    store: SessionStore = Depends(get_store),
    pipeline: ContractPipeline = Depends(get_pipeline),
):
    """Append the clause to the document as a new revision"""
    expected = request.expected_revision if request else None
    try:
        session = store.get(session_id)
        document, section = await pipeline.accept_recommendation(session, clause_id, expected)
    except CharterPartyError as e:
        raise to_http_exception(e)

    return {
        "revision": document.revision,
        "section": section.model_dump(mode="json", by_alias=True),
        "document": document.model_dump(mode="json", by_alias=True),
        "html": document.to_html(),
    }


@router.post("/sessions/{session_id}/recommendations/{clause_id}/reject")
async def reject_recommendation(
    session_id: str,
    clause_id: str,
    store: SessionStore = Depends(get_store),
    pipeline: ContractPipeline = Depends(get_pipeline),
):
    try:
        session = store.get(session_id)
        clause = await pipeline.reject_recommendation(session, clause_id)
    except CharterPartyError as e:
        raise to_http_exception(e)
    return {
        "clause": clause.model_dump(mode="json", by_alias=True),
        **_recommendation_response(session.recommendations),
    }


@router.post("/recommend-clauses")
async def recommend_clauses(request: RecommendRequest, pipeline: ContractPipeline = Depends(get_pipeline)):
    try:
        recommendations = await pipeline.recommend_clauses(request.fixture_recap, request.base_contract)
    except CharterPartyError as e:
        raise to_http_exception(e)
    return _recommendation_response(recommendations)
