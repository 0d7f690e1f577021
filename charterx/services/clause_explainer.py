"""
Clause explanation: plain-language risks and benefits of one clause, read in the
context of the whole contract
"""

import logging

from charterx.database.schemas import ClauseCategory, ClauseExplanation
from charterx.services.errors import GenerationFailure
from charterx.services.llm_client import TextGenerator
from charterx.utils.logger import setup_logging

setup_logging(__name__)
logger = logging.getLogger(__name__)

OPERATION = "explain_clause"

SYSTEM_PROMPT = (
    "You are an expert maritime lawyer with 20+ years experience in Charter Party Contracts. "
    "You understand both the legal and commercial implications of contract clauses and can "
    "explain complex legal concepts in plain language."
)


class ClauseExplainer:

    def __init__(self, generator: TextGenerator):
        self.generator = generator

    async def explain(
        self,
        document_text: str,
        clause_text: str,
        clause_id: str,
        category: ClauseCategory,
    ) -> ClauseExplanation:
        logger.info(f"Explaining clause {clause_id} ({category.value}, {len(clause_text)} chars)")

        prompt = f"""Analyze the provided clause within the context of the full contract and explain its implications in plain language.

Inputs:
1) Contract Text:
{document_text}

2) Clause Text:
{clause_text}

3) Clause ID: {clause_id}
4) Clause Category: {category.value}

Your task is to:
1. Analyze the specific clause within the context of the entire contract
2. Identify potential risks and benefits
3. Provide clear, plain-language explanations
4. Assess the overall risk level (low, medium or high)
5. Give actionable recommendations

Focus on how the clause affects the commercial relationship, its legal implications and enforceability, the potential for disputes, alignment with industry standards and its impact on other contract sections. Write for shipowners, charterers, brokers and insurers."""

        explanation = await self.generator.generate(OPERATION, prompt, ClauseExplanation, system=SYSTEM_PROMPT)
        if explanation is None:
            raise GenerationFailure(OPERATION, "model returned no explanation")

        logger.info(f"✓ Clause {clause_id}: risk level {explanation.risk_level.value}")
        return explanation
