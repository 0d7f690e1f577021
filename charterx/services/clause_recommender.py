"""
Clause Recommender

Proposes clauses missing from the base contract given the voyage described in
the fixture recap. Works from the base contract, not the merged document, so the
recommendations reflect gaps against the voyage's needs rather than what
negotiation already patched.

Lifecycle per clause: proposed -> accepted (appended to the Document with
provenance "recommended") or proposed -> rejected (hidden from the current set
only; regenerating may bring the same clause back).
"""

import logging
import re
import time
from typing import List, Optional, Set

from charterx.database.schemas import (
    Category, ClauseCategory, ClauseStatus, Document, Provenance, RecommendationOutput, RecommendationSet,
    RecommendedClause, Section,
)
from charterx.services.compliance_checker import ComplianceChecker, score_items
from charterx.services.errors import GenerationFailure, ValidationFailure
from charterx.services.llm_client import TextGenerator
from charterx.services.merger_service import document_from_text, spell_out_cp
from charterx.services.topic_classifier import KeywordTopicClassifier, TopicClassifier
from charterx.utils.logger import setup_logging

setup_logging(__name__)
logger = logging.getLogger(__name__)

OPERATION = "recommend_clauses"

SYSTEM_PROMPT = (
    "You are an expert maritime lawyer with 20+ years experience in Charter Party Contracts. "
    "You understand the commercial, legal, and operational risks in shipping and can identify "
    "gaps in contract coverage."
)

# Recommendation category -> section category of the accepted clause
SECTION_CATEGORY = {
    ClauseCategory.COMMERCIAL: Category.COMMERCIAL,
    ClauseCategory.LEGAL: Category.LEGAL,
    ClauseCategory.OPERATIONAL: Category.OPERATIONAL,
    ClauseCategory.INSURANCE: Category.LEGAL,
    ClauseCategory.ARBITRATION: Category.LEGAL,
    ClauseCategory.FORCE_MAJEURE: Category.LEGAL,
}


def slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:48].rstrip("-") or "clause"


class ClauseRecommender:
    """Generates recommendation sets and applies accept/reject decisions"""

    def __init__(self, generator: TextGenerator, classifier: Optional[TopicClassifier] = None):
        self.generator = generator
        self.classifier = classifier or KeywordTopicClassifier()
        self.checker = ComplianceChecker(generator, self.classifier)

    async def recommend(self, fixture_recap: str, base_contract: str) -> RecommendationSet:
        """
        Recommend additional clauses for the voyage

        Args:
            fixture_recap: Recap of agreed commercial terms
            base_contract: The base contract template (not the merged document)

        Returns:
            RecommendationSet with every clause in state "proposed"

        Raises:
            GenerationFailure: The model call failed or returned nothing usable
        """
        start_time = time.time()
        logger.info("=" * 80)
        logger.info("Recommending clauses")
        logger.info(f"Recap: {len(fixture_recap)} chars | Base contract: {len(base_contract)} chars")
        logger.info("=" * 80)

        base_document = document_from_text(base_contract, self.classifier)
        coverage = score_items(self.checker.baseline(base_document, fixture_recap)).overall
        logger.info(f"Base contract coverage: {coverage}")

        output = await self.generator.generate(
            OPERATION, self._build_prompt(fixture_recap, base_contract), RecommendationOutput,
            system=SYSTEM_PROMPT,
        )
        if output is None:
            raise GenerationFailure(OPERATION, "model returned no recommendations")

        clauses: List[RecommendedClause] = []
        used: Set[str] = set()
        for draft in output.recommended_clauses:
            if not draft.clause_text.strip():
                logger.warning(f"Skipping recommendation '{draft.title}' with no clause text")
                continue
            clause_id = draft.clause_id
            if not clause_id or clause_id in used:
                clause_id = self._derive_id(draft.title, used)
            used.add(clause_id)
            clauses.append(RecommendedClause(
                clause_id=clause_id,
                category=draft.category,
                title=spell_out_cp(draft.title),
                description=draft.description,
                clause_text=spell_out_cp(draft.clause_text),
                priority=draft.priority,
                reasoning=draft.reasoning,
            ))

        logger.info(f"✓ {len(clauses)} recommendation(s) in {time.time() - start_time:.2f}s")
        return RecommendationSet(recommended_clauses=clauses, summary=output.summary, coverage_score=coverage)

    @staticmethod
    def _derive_id(title: str, used: Set[str]) -> str:
        base = f"rec-{slugify(title)}"
        clause_id, n = base, 2
        while clause_id in used:
            clause_id = f"{base}-{n}"
            n += 1
        return clause_id

    def accept(self, document: Document, recommendations: RecommendationSet, clause_id: str) -> Section:
        """
        Append a proposed clause to the document as a new section

        Mutates both arguments; callers working on a committed revision pass copies.

        Raises:
            ValidationFailure: Unknown clause, or clause not in state "proposed"
        """
        clause = recommendations.get(clause_id)
        if clause is None:
            raise ValidationFailure(f"Unknown recommended clause '{clause_id}'", field="clause_id")
        if clause.status != ClauseStatus.PROPOSED:
            raise ValidationFailure(
                f"Recommended clause '{clause_id}' is already {clause.status.value}", field="clause_id"
            )

        section = Section(
            section_id=document.allocate_section_id(),
            number=str(document.max_number() + 1),
            heading=clause.title,
            category=SECTION_CATEGORY[clause.category],
            body=[p.strip() for p in re.split(r"\n\s*\n", clause.clause_text) if p.strip()],
            provenance=Provenance.RECOMMENDED,
            raw_source=clause.clause_text,
        )
        document.sections.append(section)
        clause.status = ClauseStatus.ACCEPTED

        logger.info(f"✓ Accepted '{clause_id}' as section {section.section_id} ({section.title})")
        return section

    def reject(self, recommendations: RecommendationSet, clause_id: str) -> RecommendedClause:
        """Hide a proposed clause from the current set"""
        clause = recommendations.get(clause_id)
        if clause is None:
            raise ValidationFailure(f"Unknown recommended clause '{clause_id}'", field="clause_id")
        if clause.status == ClauseStatus.ACCEPTED:
            raise ValidationFailure(f"Recommended clause '{clause_id}' is already accepted", field="clause_id")

        clause.status = ClauseStatus.REJECTED
        logger.info(f"Rejected '{clause_id}'")
        return clause

    def _build_prompt(self, fixture_recap: str, base_contract: str) -> str:
        return f"""Analyze the provided fixture recap and base contract to recommend additional clauses that should be included for comprehensive coverage.

Inputs:
1) Fixture Recap:
{fixture_recap}

2) Base Contract:
{base_contract}

Your task is to:
1. Analyze the commercial terms, cargo type, voyage details, and existing clauses
2. Identify gaps in coverage that could lead to disputes or legal issues
3. Recommend specific clauses with full text that should be added
4. Provide reasoning for each recommendation

Clause categories: commercial, legal, operational, insurance, arbitration, force_majeure.
Consider payment terms, demurrage/despatch, laytime, governing law, arbitration, bunkering, deviation, sub-chartering, agency, P&I and hull cover, force majeure (pandemic, war, sanctions, natural disasters), dangerous cargo, ice and environmental compliance.

For each recommendation provide a stable clauseId (lowercase, hyphenated), the category, a title, a one-line description, complete clause text ready for insertion, a priority (high, medium or low) and the reasoning based on the specific voyage/cargo details.
Never abbreviate Charter Party Contract."""
