import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from charterx.database.session_store import SessionStore, get_store
from charterx.main import app
from charterx.routes.dependencies import get_generator
from charterx.services.errors import GenerationFailure

from conftest import BASE_CONTRACT, FIXTURE_RECAP, NEGOTIATED_CLAUSES


MERGE_BODY = {
    "fixtureRecap": FIXTURE_RECAP,
    "baseContract": BASE_CONTRACT,
    "negotiatedClauses": NEGOTIATED_CLAUSES,
}


@pytest.fixture
def client(fake_generator):
    store = SessionStore()
    app.dependency_overrides[get_generator] = lambda: fake_generator
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def session_id(client):
    response = client.post("/api/v1/sessions")
    assert response.status_code == 201
    return response.json()["session_id"]


def merge(client, session_id, **overrides):
    return client.post(f"/api/v1/sessions/{session_id}/merge", json={**MERGE_BODY, **overrides})


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["sessions"]["active"] == 0
    assert "total_llm_calls" in body["llm_usage"]


def test_root_lists_endpoints(client):
    assert "merge" in client.get("/").json()["endpoints"]["sessions"]


def test_session_merge(client, session_id, fake_generator):
    response = merge(client, session_id)
    assert response.status_code == 200
    body = response.json()

    assert body["revision"] == 1
    assert body["session_id"] == session_id
    sections = body["document"]["sections"]
    assert {"sectionId", "number", "heading", "category", "body", "provenance"} <= set(sections[0])
    assert body["warnings"][0]["resolution"] == "negotiated"
    assert body["warnings"][0]["sectionId"] == sections[-1]["sectionId"]
    assert "<article" in body["html"]
    assert fake_generator.count("merge") == 1


def test_short_input_is_rejected_without_generation(client, session_id, fake_generator):
    response = merge(client, session_id, negotiatedClauses="")
    assert response.status_code == 422
    assert response.json()["detail"]["context"]["field"] == "negotiated_clauses"
    assert fake_generator.count() == 0


def test_stale_revision_conflict(client, session_id):
    assert merge(client, session_id).status_code == 200
    response = merge(client, session_id, expectedRevision=0)
    assert response.status_code == 409
    assert response.json()["detail"]["context"]["current_revision"] == 1


def test_unknown_session(client):
    assert client.get("/api/v1/sessions/nope").status_code == 404
    assert merge(client, "nope").status_code == 404


def test_generation_failure_maps_to_bad_gateway(client, session_id, fake_generator):
    fake_generator.responses["merge"] = GenerationFailure("merge", "upstream generation error: quota")
    response = merge(client, session_id)
    assert response.status_code == 502
    assert response.json()["detail"]["stage"] == "generation"
    assert client.get(f"/api/v1/sessions/{session_id}").json()["revision"] == 0


def test_document_html_preview(client, session_id):
    merge(client, session_id)
    response = client.get(f"/api/v1/sessions/{session_id}/document", params={"format": "html"})
    assert response.status_code == 200
    assert "text/html" in response.headers["content-type"]
    assert "Times New Roman" in response.text


def test_document_before_merge(client, session_id):
    assert client.get(f"/api/v1/sessions/{session_id}/document").status_code == 422


def test_session_analyses(client, session_id):
    merge(client, session_id)
    risk = client.post(f"/api/v1/sessions/{session_id}/risk")
    compliance = client.post(f"/api/v1/sessions/{session_id}/compliance")
    redline = client.post(f"/api/v1/sessions/{session_id}/redline")

    assert risk.status_code == compliance.status_code == redline.status_code == 200
    assert risk.json()["revision"] == 1
    assert len(compliance.json()["complianceItems"]) == 18
    stats = redline.json()["changeStats"]
    assert stats["total"] == stats["added"] + stats["removed"] + stats["modified"]


def test_recommendation_flow(client, session_id, fake_generator):
    fake_generator.responses["recommend_clauses"] = {
        "recommendedClauses": [
            {"clauseId": "governing-law", "category": "legal", "title": "Governing Law",
             "clauseText": "This contract is governed by English law.", "priority": "high"},
            {"clauseId": "ice", "category": "operational", "title": "Ice",
             "clauseText": "Vessel not to force ice.", "priority": "low"},
        ],
    }
    merge(client, session_id)
    generated = client.post(f"/api/v1/sessions/{session_id}/recommendations")
    assert [c["clauseId"] for c in generated.json()["recommendedClauses"]] == ["governing-law", "ice"]

    rejected = client.post(f"/api/v1/sessions/{session_id}/recommendations/ice/reject")
    assert [c["clauseId"] for c in rejected.json()["recommended_clauses"]] == ["governing-law"]

    accepted = client.post(
        f"/api/v1/sessions/{session_id}/recommendations/governing-law/accept", json={"expectedRevision": 1}
    )
    assert accepted.status_code == 200
    assert accepted.json()["revision"] == 2
    assert accepted.json()["section"]["provenance"] == "recommended"

    again = client.post(f"/api/v1/sessions/{session_id}/recommendations/governing-law/accept")
    assert again.status_code == 422


def test_export_pdf(client, session_id):
    merge(client, session_id)
    response = client.post(f"/api/v1/sessions/{session_id}/export", params={"format": "pdf"})
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.content.startswith(b"%PDF")
    assert "charter-party-contract-r1.pdf" in response.headers["content-disposition"]


def test_export_needs_no_generator(client, session_id):
    merge(client, session_id)

    def unavailable():
        raise HTTPException(status_code=503, detail="GEMINI_API_KEY is not set")

    app.dependency_overrides[get_generator] = unavailable
    assert client.post(f"/api/v1/sessions/{session_id}/merge", json=MERGE_BODY).status_code == 503

    response = client.post(f"/api/v1/sessions/{session_id}/export", params={"format": "docx"})
    assert response.status_code == 200
    assert response.content.startswith(b"PK")


def test_stateless_merge(client):
    response = client.post("/api/v1/merge", json=MERGE_BODY)
    assert response.status_code == 200
    assert "session_id" not in response.json()


def test_stateless_check_compliance_reports_missing_governing_law(client):
    response = client.post(
        "/api/v1/check-compliance", json={"documentText": BASE_CONTRACT, "fixtureRecap": FIXTURE_RECAP}
    )
    assert response.status_code == 200
    issues = [i["itemId"] for i in response.json()["criticalIssues"]]
    assert "legal-governing-law" in issues


def test_explain_clause(client):
    response = client.post("/api/v1/explain-clause", json={
        "documentText": BASE_CONTRACT,
        "clauseText": "NOR valid by email (WIPON)",
        "clauseId": "4",
        "category": "operational",
    })
    assert response.status_code == 200
    assert response.json()["riskLevel"] == "medium"


def test_extract_plain_text(client):
    response = client.post(
        "/api/v1/extract",
        files={"file": ("contract.txt", BASE_CONTRACT.encode("utf-8"), "text/plain")},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["text"].startswith("# CHARTER PARTY CONTRACT")
    assert [s["number"] for s in body["sections"]] == [None, "1", "2", "3", "4"]


def test_extract_unsupported_type(client):
    response = client.post("/api/v1/extract", files={"file": ("logo.png", b"\x89PNG", "image/png")})
    assert response.status_code == 415
