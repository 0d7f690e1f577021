import pytest

from charterx.database.schemas import Category, ClauseStatus, Provenance
from charterx.services.clause_recommender import ClauseRecommender, slugify
from charterx.services.errors import ValidationFailure
from charterx.services.merger_service import document_from_text

from conftest import BASE_CONTRACT, FIXTURE_RECAP, FakeGenerator, run


RECOMMENDATIONS = {
    "recommendedClauses": [
        {"clauseId": "governing-law", "category": "legal", "title": "Governing Law",
         "clauseText": "This CP shall be governed by English law.", "priority": "high",
         "reasoning": "No governing law clause"},
        {"category": "arbitration", "title": "Arbitration (LMAA)",
         "clauseText": "Disputes to London arbitration.\n\nLMAA Terms to apply.", "priority": "high"},
        {"clauseId": "governing-law", "category": "insurance", "title": "P&I Insurance",
         "clauseText": "Owners to maintain P&I entry.", "priority": "medium"},
        {"category": "operational", "title": "Ice", "clauseText": "   "},
    ],
    "summary": "Legal protections are missing",
}


@pytest.fixture
def recommender():
    return ClauseRecommender(FakeGenerator({"recommend_clauses": RECOMMENDATIONS}))


@pytest.fixture
def recommendations(recommender):
    return run(recommender.recommend(FIXTURE_RECAP, BASE_CONTRACT))


def test_ids_are_derived_and_unique(recommendations):
    ids = [c.clause_id for c in recommendations.recommended_clauses]
    assert ids == ["governing-law", "rec-arbitration-lmaa", "rec-p-i-insurance"]
    assert all(c.status == ClauseStatus.PROPOSED for c in recommendations.recommended_clauses)


def test_clause_text_is_spelled_out_and_empty_drafts_skipped(recommendations):
    governing_law = recommendations.get("governing-law")
    assert governing_law.clause_text == "This Charter Party Contract shall be governed by English law."
    assert recommendations.get("rec-ice") is None
    assert recommendations.summary == "Legal protections are missing"


def test_coverage_score_comes_from_the_base_contract(recommendations):
    assert 0 < recommendations.coverage_score < 100


def test_accept_appends_exactly_one_recommended_section(recommender, recommendations):
    document = document_from_text(BASE_CONTRACT)
    before = len(document.sections)

    section = recommender.accept(document, recommendations, "rec-arbitration-lmaa")

    assert len(document.sections) == before + 1
    assert document.sections[-1] is section
    assert section.provenance == Provenance.RECOMMENDED
    assert section.category == Category.LEGAL
    assert section.number == "5"
    assert section.body == ["Disputes to London arbitration.", "LMAA Terms to apply."]
    assert section.section_id not in document.section_ids()[:-1]
    assert recommendations.get("rec-arbitration-lmaa").status == ClauseStatus.ACCEPTED


def test_accepting_twice_is_refused(recommender, recommendations):
    document = document_from_text(BASE_CONTRACT)
    recommender.accept(document, recommendations, "governing-law")
    with pytest.raises(ValidationFailure):
        recommender.accept(document, recommendations, "governing-law")
    assert len([s for s in document.sections if s.provenance == Provenance.RECOMMENDED]) == 1


def test_unknown_clause_is_refused(recommender, recommendations):
    with pytest.raises(ValidationFailure):
        recommender.accept(document_from_text(BASE_CONTRACT), recommendations, "rec-nothing")
    with pytest.raises(ValidationFailure):
        recommender.reject(recommendations, "rec-nothing")


def test_rejected_clause_is_hidden_and_cannot_be_accepted(recommender, recommendations):
    recommender.reject(recommendations, "rec-p-i-insurance")
    assert "rec-p-i-insurance" not in [c.clause_id for c in recommendations.visible()]
    with pytest.raises(ValidationFailure):
        recommender.accept(document_from_text(BASE_CONTRACT), recommendations, "rec-p-i-insurance")


def test_regenerating_brings_rejected_clause_back(recommender, recommendations):
    recommender.reject(recommendations, "rec-p-i-insurance")
    regenerated = run(recommender.recommend(FIXTURE_RECAP, BASE_CONTRACT))
    assert regenerated.get("rec-p-i-insurance").status == ClauseStatus.PROPOSED


def test_accepted_clause_cannot_be_rejected(recommender, recommendations):
    recommender.accept(document_from_text(BASE_CONTRACT), recommendations, "governing-law")
    with pytest.raises(ValidationFailure):
        recommender.reject(recommendations, "governing-law")


def test_slugify():
    assert slugify("Force Majeure (Pandemic)") == "force-majeure-pandemic"
    assert slugify("***") == "clause"
