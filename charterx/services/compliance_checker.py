"""
Compliance Checker

Validates a merged Charter Party Contract against a fixed checklist of mandatory
clause categories. A keyword scan over the document gives every checklist item a
baseline status; the model then refines status, impact, suggestion and location
for the items it recognises. Scores are always computed here, never by the model.
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from charterx.database.schemas import (
    Category, ComplianceItem, ComplianceOutput, ComplianceReport, ComplianceScores, ComplianceStatus,
    Document, Impact,
)
from charterx.services.errors import GenerationFailure
from charterx.services.llm_client import TextGenerator
from charterx.services.topic_classifier import KeywordTopicClassifier, TopicClassifier
from charterx.utils.logger import setup_logging

setup_logging(__name__)
logger = logging.getLogger(__name__)

OPERATION = "check_compliance"

SYSTEM_PROMPT = (
    "You are a maritime compliance expert specializing in Charter Party Contract requirements."
)


@dataclass(frozen=True)
class ChecklistItem:
    item_id: str
    category: Category
    requirement: str
    topics: Tuple[str, ...]
    impact: Impact
    suggestion: str
    mandatory: bool = True


COMPLIANCE_CHECKLIST: List[ChecklistItem] = [
    # Commercial
    ChecklistItem("commercial-vessel", Category.COMMERCIAL, "Vessel identification and specifications",
                  ("vessel",), Impact.CRITICAL,
                  "Name the vessel with its IMO number, flag and main particulars"),
    ChecklistItem("commercial-cargo", Category.COMMERCIAL, "Cargo description and quantity",
                  ("cargo",), Impact.CRITICAL,
                  "Describe the cargo and state the quantity with its tolerance"),
    ChecklistItem("commercial-ports-laycan", Category.COMMERCIAL, "Loading/discharge ports and laycan",
                  ("ports", "laycan"), Impact.CRITICAL,
                  "State the load and discharge ports and the laydays/cancelling window"),
    ChecklistItem("commercial-freight", Category.COMMERCIAL, "Freight rate and payment terms",
                  ("freight",), Impact.CRITICAL,
                  "State the freight rate, currency, when freight is earned and when it is payable"),
    ChecklistItem("commercial-demurrage", Category.COMMERCIAL, "Demurrage/despatch provisions",
                  ("demurrage",), Impact.HIGH,
                  "Set the demurrage rate per day pro rata and any despatch rate"),
    ChecklistItem("commercial-laytime", Category.COMMERCIAL, "Laytime calculations and notice requirements",
                  ("laytime",), Impact.HIGH,
                  "Define allowed laytime, excepted periods and when laytime commences"),
    # Legal
    ChecklistItem("legal-governing-law", Category.LEGAL, "Governing law and jurisdiction",
                  ("governing_law",), Impact.CRITICAL,
                  "Add a clause stating the governing law (e.g. English law) and jurisdiction"),
    ChecklistItem("legal-arbitration", Category.LEGAL, "Arbitration and dispute resolution",
                  ("arbitration",), Impact.HIGH,
                  "Add an arbitration clause naming the seat and the rules (e.g. LMAA Terms)"),
    ChecklistItem("legal-force-majeure", Category.LEGAL, "Force majeure provisions",
                  ("force_majeure",), Impact.HIGH,
                  "Define force majeure events, notice and their effect on laytime and cancellation"),
    ChecklistItem("legal-liability", Category.LEGAL, "Liability and indemnity clauses",
                  ("liability",), Impact.HIGH,
                  "Allocate cargo liability (e.g. Hague-Visby Rules) and mutual indemnities"),
    ChecklistItem("legal-insurance", Category.LEGAL, "Insurance requirements",
                  ("insurance",), Impact.MEDIUM,
                  "Require P&I entry and hull and machinery cover for the duration"),
    ChecklistItem("legal-termination", Category.LEGAL, "Termination and cancellation rights",
                  ("termination",), Impact.MEDIUM,
                  "State the cancelling date and the parties' termination rights"),
    # Operational
    ChecklistItem("operational-nor", Category.OPERATIONAL, "Notice of readiness (NOR) procedures",
                  ("nor",), Impact.HIGH,
                  "Specify how and when NOR may be tendered (WIBON/WIPON, office hours, email)"),
    ChecklistItem("operational-bunkering-deviation", Category.OPERATIONAL, "Bunkering and deviation rights",
                  ("bunkering", "deviation"), Impact.MEDIUM,
                  "State the owners' liberty to bunker and deviate and any limits on it"),
    ChecklistItem("operational-sublet", Category.OPERATIONAL, "Sub-chartering permissions",
                  ("sublet",), Impact.LOW,
                  "State whether charterers may sublet, with charterers remaining responsible"),
    ChecklistItem("operational-agency", Category.OPERATIONAL, "Agency and port operations",
                  ("agency",), Impact.MEDIUM,
                  "Say which party appoints and pays agents at each port"),
    ChecklistItem("operational-documentation", Category.OPERATIONAL, "Documentation requirements",
                  ("documentation",), Impact.MEDIUM,
                  "Cover bills of lading issuance and the certificates the vessel must carry"),
    ChecklistItem("operational-environment-safety", Category.OPERATIONAL, "Environmental and safety standards",
                  ("environment_safety",), Impact.HIGH,
                  "Require MARPOL/ISM/ISPS compliance and dangerous cargo handling where relevant",
                  mandatory=False),
]

CHECKLIST_BY_ID: Dict[str, ChecklistItem] = {item.item_id: item for item in COMPLIANCE_CHECKLIST}

STATUS_VALUE = {
    ComplianceStatus.PRESENT: 1.0,
    ComplianceStatus.INCOMPLETE: 0.5,
    ComplianceStatus.CONFLICTING: 0.25,
    ComplianceStatus.MISSING: 0.0,
}
IMPACT_WEIGHT = {Impact.CRITICAL: 4, Impact.HIGH: 3, Impact.MEDIUM: 2, Impact.LOW: 1}

# Cargo that makes the environmental / safety item mandatory
_DANGEROUS_CARGO_RE = re.compile(
    r"\b(?:dangerous|hazardous|imdg|chemicals?|oil|petroleum|crude|gasoline|naphtha|lng|lpg)\b"
    r"|\bIMO(?:\s+class|\s+cargo|\s+[1-9](?:\.\d)?\b)",
    re.IGNORECASE,
)


def requires_dangerous_cargo_clause(fixture_recap: str) -> bool:
    return bool(_DANGEROUS_CARGO_RE.search(fixture_recap or ""))


def score_items(items: List[ComplianceItem]) -> ComplianceScores:
    """
    Weighted presence/completeness per category, 0-100

    Weights come from the static checklist; a non-mandatory item that is
    missing is left out. Overall is the unweighted mean of the three categories,
    so turning a missing item into a present one never lowers it.
    """
    totals: Dict[Category, float] = {c: 0.0 for c in Category}
    weights: Dict[Category, float] = {c: 0.0 for c in Category}

    for item in items:
        if not item.mandatory and item.status == ComplianceStatus.MISSING:
            continue
        static = CHECKLIST_BY_ID.get(item.item_id)
        weight = IMPACT_WEIGHT[static.impact if static else item.impact]
        totals[item.category] += weight * STATUS_VALUE[item.status]
        weights[item.category] += weight

    category_scores = {
        c: round(100.0 * totals[c] / weights[c], 1) if weights[c] else 100.0 for c in Category
    }
    overall = round(sum(category_scores.values()) / len(category_scores), 1)
    return ComplianceScores(
        overall=overall,
        commercial=category_scores[Category.COMMERCIAL],
        legal=category_scores[Category.LEGAL],
        operational=category_scores[Category.OPERATIONAL],
    )


def critical_issues(items: List[ComplianceItem]) -> List[ComplianceItem]:
    return [
        item for item in items
        if item.impact == Impact.CRITICAL
        or (item.mandatory and item.status in (ComplianceStatus.MISSING, ComplianceStatus.CONFLICTING))
    ]


class ComplianceChecker:
    """Checks one Document revision against COMPLIANCE_CHECKLIST"""

    def __init__(self, generator: TextGenerator, classifier: Optional[TopicClassifier] = None):
        self.generator = generator
        self.classifier = classifier or KeywordTopicClassifier()

    def baseline(self, document: Document, fixture_recap: str = "") -> List[ComplianceItem]:
        """Keyword-scan status for every checklist item, in checklist order"""
        dangerous = requires_dangerous_cargo_clause(fixture_recap)
        section_topics = [
            (section, self.classifier.topics(section.heading), self.classifier.topics(section.text))
            for section in document.sections
        ]

        items: List[ComplianceItem] = []
        for entry in COMPLIANCE_CHECKLIST:
            found: Dict[str, str] = {}
            for topic in entry.topics:
                # Prefer a section whose heading names the topic over a passing mention
                for section, heading_topics, _ in section_topics:
                    if topic in heading_topics:
                        found[topic] = section.title
                        break
                else:
                    for section, _, body_topics in section_topics:
                        if topic in body_topics:
                            found[topic] = section.title
                            break

            if len(found) == len(entry.topics):
                status = ComplianceStatus.PRESENT
            elif found:
                status = ComplianceStatus.INCOMPLETE
            else:
                status = ComplianceStatus.MISSING

            mandatory = entry.mandatory or (entry.item_id == "operational-environment-safety" and dangerous)
            locations = list(dict.fromkeys(found.values()))
            items.append(ComplianceItem(
                item_id=entry.item_id,
                category=entry.category,
                requirement=entry.requirement,
                status=status,
                impact=Impact.LOW if status == ComplianceStatus.PRESENT else entry.impact,
                suggestion="" if status == ComplianceStatus.PRESENT else entry.suggestion,
                description=self._describe(entry, status, found),
                location=", ".join(locations) if locations else None,
                mandatory=mandatory,
            ))
        return items

    @staticmethod
    def _describe(entry: ChecklistItem, status: ComplianceStatus, found: Dict[str, str]) -> str:
        if status == ComplianceStatus.PRESENT:
            return f"{entry.requirement} addressed"
        if status == ComplianceStatus.INCOMPLETE:
            missing = [t.replace("_", " ") for t in entry.topics if t not in found]
            return f"{entry.requirement} only partly addressed; no wording on {', '.join(missing)}"
        return f"No clause addresses {entry.requirement.lower()}"

    async def check(self, document: Document, fixture_recap: str) -> ComplianceReport:
        """
        Check compliance of one document snapshot

        Args:
            document: The revision to check (read only)
            fixture_recap: Recap giving voyage context (e.g. dangerous cargo)

        Returns:
            ComplianceReport tagged with document.revision

        Raises:
            GenerationFailure: The model call failed or returned nothing usable
        """
        start_time = time.time()
        logger.info("=" * 80)
        logger.info(f"Compliance check for {document.document_id} (revision {document.revision})")
        logger.info("=" * 80)

        items = self.baseline(document, fixture_recap)
        by_id = {item.item_id: item for item in items}
        baseline_missing = sum(1 for i in items if i.status == ComplianceStatus.MISSING)
        logger.info(f"Keyword baseline: {len(items) - baseline_missing}/{len(items)} items found")

        output = await self.generator.generate(
            OPERATION, self._build_prompt(document, fixture_recap, items), ComplianceOutput,
            system=SYSTEM_PROMPT,
        )
        if output is None:
            raise GenerationFailure(OPERATION, "model returned no compliance assessment")

        refined = 0
        for assessment in output.assessments:
            item = by_id.get(assessment.item_id)
            if item is None:
                logger.warning(f"Ignoring assessment for unknown checklist item '{assessment.item_id}'")
                continue
            update = {"status": assessment.status}
            if assessment.impact is not None:
                update["impact"] = assessment.impact
            if assessment.suggestion:
                update["suggestion"] = assessment.suggestion
            if assessment.description:
                update["description"] = assessment.description
            if assessment.location:
                update["location"] = assessment.location
            by_id[item.item_id] = item.model_copy(update=update)
            refined += 1

        items = [by_id[entry.item_id] for entry in COMPLIANCE_CHECKLIST]
        scores = score_items(items)
        issues = critical_issues(items)

        logger.info(f"✓ Refined {refined} item(s); overall {scores.overall} "
                    f"(commercial {scores.commercial}, legal {scores.legal}, operational {scores.operational}); "
                    f"{len(issues)} critical issue(s) in {time.time() - start_time:.2f}s")

        return ComplianceReport(
            revision=document.revision,
            compliance_items=items,
            scores=scores,
            summary=output.summary,
            critical_issues=issues,
            recommendations=output.recommendations,
        )

    def _build_prompt(self, document: Document, fixture_recap: str, items: List[ComplianceItem]) -> str:
        checklist = "\n".join(
            f"- {item.item_id} [{item.category.value}] {item.requirement} "
            f"(keyword scan: {item.status.value}{', found in ' + item.location if item.location else ''})"
            for item in items
        )
        return f"""Analyze the provided contract against mandatory compliance standards.

Inputs:
1) Contract Text:
{document.to_text()}

2) Fixture Recap:
{fixture_recap}

Verify each checklist item below. The keyword scan is only a hint; read the clauses.

{checklist}

For each checklist item return an assessment with:
1. itemId exactly as listed above
2. status: present, missing, incomplete, or conflicting
3. impact: critical, high, medium, or low
4. suggestion: specific wording or action to address the issue
5. description: what you found
6. location: the section where it is found or should be added

Also return a short summary and a list of recommendations that must be addressed before contract execution."""
