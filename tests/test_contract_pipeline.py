import asyncio

import pytest

from charterx.database.schemas import ClauseCategory, Provenance, Severity
from charterx.database.session_store import SessionStore
from charterx.services.contract_pipeline import ContractPipeline, validate_text
from charterx.services.errors import GenerationFailure, StaleRevisionError, ValidationFailure

from conftest import BASE_CONTRACT, FIXTURE_RECAP, NEGOTIATED_CLAUSES, FakeGenerator, run


RECOMMENDATIONS = {
    "recommendedClauses": [
        {"clauseId": "governing-law", "category": "legal", "title": "Governing Law",
         "clauseText": "This contract is governed by English law.", "priority": "high"},
    ],
}


@pytest.fixture
def generator(fake_generator):
    fake_generator.responses["recommend_clauses"] = RECOMMENDATIONS
    return fake_generator


@pytest.fixture
def pipeline(generator):
    return ContractPipeline(generator)


@pytest.fixture
def session():
    return SessionStore().create()


def merge_session(pipeline, session, expected_revision=None):
    return pipeline.merge_session(session, FIXTURE_RECAP, BASE_CONTRACT, NEGOTIATED_CLAUSES, expected_revision)


# ----------------------------------------------------------------------
# Input validation
# ----------------------------------------------------------------------

def test_validate_text():
    assert validate_text("base_contract", "1. Vessel MV TEST") == "1. Vessel MV TEST"
    with pytest.raises(ValidationFailure) as excinfo:
        validate_text("base_contract", "   short  ")
    assert excinfo.value.field == "base_contract"
    assert "at least 10 characters" in excinfo.value.message


def test_empty_negotiated_clauses_rejected_before_generation(pipeline, generator):
    with pytest.raises(ValidationFailure) as excinfo:
        run(pipeline.merge(FIXTURE_RECAP, BASE_CONTRACT, ""))
    assert excinfo.value.field == "negotiated_clauses"
    assert generator.count() == 0


def test_stateless_operations_validate_inputs(pipeline, generator):
    with pytest.raises(ValidationFailure):
        run(pipeline.analyze_risk("tiny"))
    with pytest.raises(ValidationFailure):
        run(pipeline.check_compliance(BASE_CONTRACT, ""))
    with pytest.raises(ValidationFailure):
        run(pipeline.generate_redline(BASE_CONTRACT, NEGOTIATED_CLAUSES, ""))
    with pytest.raises(ValidationFailure):
        run(pipeline.explain_clause(BASE_CONTRACT, "", "4", ClauseCategory.OPERATIONAL))
    assert generator.count() == 0


def test_generation_failure_is_not_retried():
    generator = FakeGenerator({"merge": GenerationFailure("merge", "generation timed out after 120s")})
    with pytest.raises(GenerationFailure):
        run(ContractPipeline(generator).merge(FIXTURE_RECAP, BASE_CONTRACT, NEGOTIATED_CLAUSES))
    assert generator.count("merge") == 1


def test_explain_clause(pipeline, generator):
    explanation = run(pipeline.explain_clause(
        BASE_CONTRACT, "NOR valid by email (WIPON)", "4", ClauseCategory.OPERATIONAL
    ))
    assert explanation.risk_level == Severity.MEDIUM
    assert generator.count("explain_clause") == 1


def test_stateless_export(pipeline):
    assert pipeline.export("<h1>Charter Party Contract</h1><p>Text</p>", "pdf").startswith(b"%PDF")


# ----------------------------------------------------------------------
# Session mutations
# ----------------------------------------------------------------------

def test_merge_session_commits_revisions(pipeline, session):
    run(merge_session(pipeline, session))
    assert session.revision == 1
    first_ids = session.document.section_ids()

    run(merge_session(pipeline, session, expected_revision=1))
    assert session.revision == 2
    assert session.document.section_ids() == first_ids
    assert session.inputs.base_contract == BASE_CONTRACT


def test_merge_with_stale_revision_is_refused(pipeline, session, generator):
    run(merge_session(pipeline, session))
    calls = generator.count()
    with pytest.raises(StaleRevisionError):
        run(merge_session(pipeline, session, expected_revision=0))
    assert session.revision == 1
    assert generator.count() == calls


def test_failed_merge_leaves_previous_revision(pipeline, session, generator):
    run(merge_session(pipeline, session))
    document = session.document

    generator.responses["merge"] = GenerationFailure("merge", "upstream generation error")
    with pytest.raises(GenerationFailure):
        run(merge_session(pipeline, session))
    assert session.document is document
    assert session.revision == 1


def test_cancelled_merge_leaves_previous_revision(pipeline, session, generator):
    async def scenario():
        await merge_session(pipeline, session)
        generator.hold()
        task = asyncio.create_task(merge_session(pipeline, session))
        await generator.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    run(scenario())
    assert session.revision == 1
    assert not session.lock.locked()


def test_accept_recommendation_bumps_revision_and_clears_reports(pipeline, session):
    run(merge_session(pipeline, session))
    run(pipeline.analyze_session_risk(session))
    assert session.risk_report is not None
    run(pipeline.recommend_session(session))

    document, section = run(pipeline.accept_recommendation(session, "governing-law", expected_revision=1))

    assert document.revision == 2
    assert session.document is document
    assert section.provenance == Provenance.RECOMMENDED
    assert session.risk_report is None
    assert session.recommendations.get("governing-law").status.value == "accepted"


def test_accept_without_recommendations_is_refused(pipeline, session):
    run(merge_session(pipeline, session))
    with pytest.raises(ValidationFailure):
        run(pipeline.accept_recommendation(session, "governing-law"))
    assert session.revision == 1


def test_failed_accept_leaves_session_untouched(pipeline, session):
    run(merge_session(pipeline, session))
    run(pipeline.recommend_session(session))
    with pytest.raises(ValidationFailure):
        run(pipeline.accept_recommendation(session, "rec-unknown"))
    assert session.revision == 1
    assert session.recommendations.get("governing-law").status.value == "proposed"


def test_reject_then_regenerate(pipeline, session):
    run(merge_session(pipeline, session))
    run(pipeline.recommend_session(session))
    run(pipeline.reject_recommendation(session, "governing-law"))
    assert session.recommendations.visible() == []

    regenerated = run(pipeline.recommend_session(session))
    assert [c.clause_id for c in regenerated.visible()] == ["governing-law"]


# ----------------------------------------------------------------------
# Session analyses
# ----------------------------------------------------------------------

def test_analyses_require_a_document(pipeline, session):
    with pytest.raises(ValidationFailure):
        run(pipeline.analyze_session_risk(session))


def test_analyses_are_tagged_and_stored(pipeline, session):
    run(merge_session(pipeline, session))
    risk = run(pipeline.analyze_session_risk(session))
    compliance = run(pipeline.check_session_compliance(session))
    redline = run(pipeline.redline_session(session))

    assert risk.revision == compliance.revision == redline.revision == 1
    assert session.summary()["reports"] == {
        "risk": True, "compliance": True, "redline": True, "recommendations": False,
    }


def test_analysis_of_superseded_revision_is_not_stored(pipeline, session, generator):
    async def scenario():
        await merge_session(pipeline, session)
        gate = generator.hold()
        analysis = asyncio.create_task(pipeline.analyze_session_risk(session))
        await generator.started.wait()

        # A merge lands while the analysis is waiting on the model
        generator.gate = None
        await merge_session(pipeline, session)
        gate.set()
        await analysis

    with pytest.raises(StaleRevisionError):
        run(scenario())
    assert session.revision == 2
    assert session.risk_report is None


def test_recommendations_for_superseded_inputs_are_not_stored(pipeline, session, generator):
    async def scenario():
        await merge_session(pipeline, session)
        gate = generator.hold()
        recommending = asyncio.create_task(pipeline.recommend_session(session))
        await generator.started.wait()

        # A re-merge with a new recap lands while the old recap is being assessed
        generator.gate = None
        await pipeline.merge_session(
            session, FIXTURE_RECAP.replace("Santos", "Paranagua"), BASE_CONTRACT, NEGOTIATED_CLAUSES
        )
        gate.set()
        await recommending

    with pytest.raises(StaleRevisionError):
        run(scenario())
    assert session.revision == 2
    assert session.inputs.fixture_recap.count("Paranagua") == 1
    assert session.recommendations is None
    with pytest.raises(ValidationFailure):
        run(pipeline.accept_recommendation(session, "governing-law"))


def test_export_session(pipeline, session):
    run(merge_session(pipeline, session))
    content, media_type = pipeline.export_session(session, "docx")
    assert content.startswith(b"PK")
    assert media_type.endswith("wordprocessingml.document")


def test_redline_export_needs_current_redline(pipeline, session):
    run(merge_session(pipeline, session))
    with pytest.raises(ValidationFailure):
        pipeline.export_session(session, "pdf", redline=True)

    run(pipeline.redline_session(session))
    content, _ = pipeline.export_session(session, "pdf", redline=True)
    assert content.startswith(b"%PDF")
