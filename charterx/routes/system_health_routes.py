from fastapi import APIRouter, Depends

from charterx.config.config import Config
from charterx.database.session_store import SessionStore, get_store
from charterx.services.compliance_checker import COMPLIANCE_CHECKLIST
from charterx.services.llm_tracker import usage_manager

router = APIRouter(
    tags=["System Health"]
)


@router.get("/health")
async def health_check(store: SessionStore = Depends(get_store)):
    """Service status, model configuration and text generation usage"""
    return {
        "status": "healthy",
        "version": "1.0.0",
        "models": {
            "text_generation": Config.GEMINI_MODEL,
            "configured": bool(Config.GEMINI_API_KEY),
        },
        "sessions": {
            "active": len(store),
            "ttl_seconds": store.ttl_seconds,
        },
        "llm_usage": usage_manager.get_overall_stats(),
    }


@router.get("/")
async def root():
    return {
        "service": "CharterX - Charter Party Contract merge and consistency pipeline",
        "version": "1.0.0",
        "endpoints": {
            "sessions": {
                "create": "POST /api/v1/sessions",
                "get": "GET /api/v1/sessions/{session_id}",
                "delete": "DELETE /api/v1/sessions/{session_id}",
                "merge": "POST /api/v1/sessions/{session_id}/merge",
                "document": "GET /api/v1/sessions/{session_id}/document?format=json|html",
                "export": "POST /api/v1/sessions/{session_id}/export?format=pdf|docx",
            },
            "analysis": {
                "risk": "POST /api/v1/sessions/{session_id}/risk",
                "compliance": "POST /api/v1/sessions/{session_id}/compliance",
                "redline": "POST /api/v1/sessions/{session_id}/redline",
                "explain_clause": "POST /api/v1/explain-clause",
            },
            "recommendations": {
                "generate": "POST /api/v1/sessions/{session_id}/recommendations",
                "accept": "POST /api/v1/sessions/{session_id}/recommendations/{clause_id}/accept",
                "reject": "POST /api/v1/sessions/{session_id}/recommendations/{clause_id}/reject",
            },
            "stateless": {
                "merge": "POST /api/v1/merge",
                "analyze_risk": "POST /api/v1/analyze-risk",
                "check_compliance": "POST /api/v1/check-compliance",
                "recommend_clauses": "POST /api/v1/recommend-clauses",
                "generate_redline": "POST /api/v1/generate-redline",
            },
            "extraction": "POST /api/v1/extract",
            "system": {
                "health": "/health",
                "docs": "/docs",
            },
        },
        "compliance_checklist_items": len(COMPLIANCE_CHECKLIST),
        "usage": {
            "1_session": "POST /api/v1/sessions",
            "2_merge": "POST /api/v1/sessions/{session_id}/merge with fixtureRecap, baseContract, negotiatedClauses",
            "3_review": "POST /api/v1/sessions/{session_id}/risk, /compliance, /redline, /recommendations",
            "4_export": "POST /api/v1/sessions/{session_id}/export?format=pdf",
        },
    }
