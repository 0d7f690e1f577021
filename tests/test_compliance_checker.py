from charterx.database.schemas import Category, ComplianceItem, ComplianceStatus, Impact
from charterx.services.compliance_checker import (
    COMPLIANCE_CHECKLIST, ComplianceChecker, critical_issues, requires_dangerous_cargo_clause, score_items,
)
from charterx.services.merger_service import document_from_text

from conftest import BASE_CONTRACT, FIXTURE_RECAP, FakeGenerator, run


def check(text, recap=FIXTURE_RECAP, responses=None):
    generator = FakeGenerator(responses)
    report = run(ComplianceChecker(generator).check(document_from_text(text), recap))
    return report, generator


def item(report, item_id):
    return next(i for i in report.compliance_items if i.item_id == item_id)


def test_every_checklist_item_is_reported_in_order():
    report, generator = check(BASE_CONTRACT)
    assert [i.item_id for i in report.compliance_items] == [c.item_id for c in COMPLIANCE_CHECKLIST]
    assert generator.count("check_compliance") == 1


def test_missing_governing_law_is_a_critical_legal_issue():
    report, _ = check(BASE_CONTRACT)
    governing_law = item(report, "legal-governing-law")

    assert governing_law.status == ComplianceStatus.MISSING
    assert governing_law.category == Category.LEGAL
    assert governing_law.impact == Impact.CRITICAL
    assert governing_law.suggestion
    assert "legal-governing-law" in [i.item_id for i in report.critical_issues]


def test_present_items_located_by_heading():
    report, _ = check(BASE_CONTRACT)
    freight = item(report, "commercial-freight")
    assert freight.status == ComplianceStatus.PRESENT
    assert freight.location == "3. Freight Payment"
    assert freight.impact == Impact.LOW


def test_partly_covered_item_is_incomplete():
    text = "1. Voyage\nOne voyage from Santos to Rotterdam.\n\n2. Freight\nFreight USD 30 per mt."
    report, _ = check(text)
    assert item(report, "commercial-ports-laycan").status == ComplianceStatus.INCOMPLETE


def test_adding_a_missing_clause_never_lowers_the_score():
    before, _ = check(BASE_CONTRACT)
    after, _ = check(BASE_CONTRACT + "\n5. Governing Law\nThis contract is governed by English law.")

    assert item(after, "legal-governing-law").status == ComplianceStatus.PRESENT
    assert after.scores.legal > before.scores.legal
    assert after.scores.overall >= before.scores.overall


def test_model_refines_known_items_and_unknown_ids_are_ignored():
    response = {
        "assessments": [
            {"itemId": "commercial-freight", "status": "conflicting", "impact": "high",
             "description": "Two payment terms", "location": "3. Freight Payment"},
            {"itemId": "made-up-item", "status": "present"},
        ],
        "summary": "Freight terms conflict",
        "recommendations": ["Align freight payment terms"],
    }
    report, _ = check(BASE_CONTRACT, responses={"check_compliance": response})

    freight = item(report, "commercial-freight")
    assert freight.status == ComplianceStatus.CONFLICTING
    assert freight.impact == Impact.HIGH
    assert freight.description == "Two payment terms"
    assert "made-up-item" not in [i.item_id for i in report.compliance_items]
    assert len(report.compliance_items) == len(COMPLIANCE_CHECKLIST)
    assert "commercial-freight" in [i.item_id for i in report.critical_issues]
    assert report.summary == "Freight terms conflict"
    assert report.recommendations == ["Align freight payment terms"]


def test_environmental_item_mandatory_only_for_dangerous_cargo():
    grain, _ = check(BASE_CONTRACT)
    assert not item(grain, "operational-environment-safety").mandatory
    assert "operational-environment-safety" not in [i.item_id for i in grain.critical_issues]

    oil, _ = check(BASE_CONTRACT, recap=FIXTURE_RECAP.replace("soybeans", "crude oil"))
    assert item(oil, "operational-environment-safety").mandatory
    assert "operational-environment-safety" in [i.item_id for i in oil.critical_issues]


def test_requires_dangerous_cargo_clause():
    assert requires_dangerous_cargo_clause("Cargo: 30,000 mt gasoline")
    assert requires_dangerous_cargo_clause("Cargo: IMO class 5.1 fertilizer")
    assert not requires_dangerous_cargo_clause("Cargo: 50,000 mt soybeans")


def test_scores_are_weighted_per_category():
    items = [
        ComplianceItem(item_id="commercial-vessel", category=Category.COMMERCIAL, requirement="Vessel",
                       status=ComplianceStatus.PRESENT, impact=Impact.LOW),
        ComplianceItem(item_id="commercial-sublet-free", category=Category.COMMERCIAL, requirement="Other",
                       status=ComplianceStatus.MISSING, impact=Impact.LOW),
        ComplianceItem(item_id="legal-insurance", category=Category.LEGAL, requirement="Insurance",
                       status=ComplianceStatus.INCOMPLETE, impact=Impact.MEDIUM),
    ]
    scores = score_items(items)
    # vessel weighs 4 (critical in the checklist), the unknown item 1
    assert scores.commercial == 80.0
    assert scores.legal == 50.0
    assert scores.operational == 100.0
    assert scores.overall == round((80.0 + 50.0 + 100.0) / 3, 1)


def test_non_mandatory_missing_items_are_not_scored():
    items = [
        ComplianceItem(item_id="operational-environment-safety", category=Category.OPERATIONAL,
                       requirement="Env", status=ComplianceStatus.MISSING, impact=Impact.HIGH, mandatory=False),
    ]
    assert score_items(items).operational == 100.0
    assert critical_issues(items) == []
