"""
Consistency / Risk Analyzer

Scans a merged Charter Party Contract for missing, duplicated or contradictory
clauses and terminology. Runs against one Document snapshot and never mutates it.

Deterministic checks run first (duplicate headings, empty sections, unresolved
placeholders, leftover acronyms, vessel name drift); the model then adds its own
findings. Every finding must cite a section of the analyzed revision or it is
dropped.
"""

import logging
import re
import time
from collections import Counter
from typing import Dict, List, Optional

from charterx.database.schemas import Document, Finding, RiskAnalysisOutput, RiskReport, Severity
from charterx.services.errors import GenerationFailure
from charterx.services.llm_client import TextGenerator
from charterx.services.merger_service import (
    CP_ACRONYM_RE, FACT_ALIASES, PLACEHOLDER_RE, VESSEL_MENTION_RE, VESSEL_PREFIX_RE, alias_key
)
from charterx.services.text_normalizer import PREAMBLE_HEADING, normalize_heading
from charterx.utils.logger import setup_logging

setup_logging(__name__)
logger = logging.getLogger(__name__)

OPERATION = "analyze_risk"

SYSTEM_PROMPT = (
    "You are an expert legal contract analyst specializing in identifying risks, conflicts, "
    "and inconsistencies in Charter Party Contracts (shipping agreements)."
)

_SECTION_REF_RE = re.compile(r"^(?:clause|section|article|cl\.?|sec\.?)?\s*(?P<number>\d{1,3})\b", re.IGNORECASE)

_SEVERITY_ORDER = {Severity.HIGH: 0, Severity.MEDIUM: 1, Severity.LOW: 2}


def resolve_section_id(document: Document, reference: str) -> Optional[str]:
    """
    Map a model-supplied section reference onto a section id of this revision

    Accepts an exact id ("sec-004"), a number ("4", "Clause 4", "Section 4.2")
    or a heading. Returns None when nothing matches.
    """
    if not reference:
        return None
    reference = reference.strip().strip("[]").strip()

    if document.get_section(reference) is not None:
        return reference

    match = _SECTION_REF_RE.match(reference)
    if match:
        section = document.find_by_number(str(int(match.group("number"))))
        if section is not None:
            return section.section_id

    key = normalize_heading(reference)
    for section in document.sections:
        if key and (normalize_heading(section.heading) == key or normalize_heading(section.title) == key):
            return section.section_id
    return None


def _vessel_core(mention: str) -> str:
    return " ".join(VESSEL_PREFIX_RE.sub("", mention).upper().split())


class RiskAnalyzer:
    """Produces a RiskReport for one Document revision"""

    def __init__(self, generator: TextGenerator):
        self.generator = generator

    async def analyze(self, document: Document) -> RiskReport:
        """
        Analyze one document snapshot

        Args:
            document: The revision to analyze (read only)

        Returns:
            RiskReport tagged with document.revision

        Raises:
            GenerationFailure: The model call failed or returned nothing usable
        """
        start_time = time.time()
        logger.info("=" * 80)
        logger.info(f"Risk analysis for {document.document_id} (revision {document.revision}, "
                    f"{len(document.sections)} sections)")
        logger.info("=" * 80)

        findings, notes = self.deterministic_findings(document)
        logger.info(f"Deterministic checks: {len(findings)} finding(s), {len(notes)} note(s)")

        output = await self.generator.generate(
            OPERATION, self._build_prompt(document), RiskAnalysisOutput, system=SYSTEM_PROMPT
        )
        if output is None:
            raise GenerationFailure(OPERATION, "model returned no risk analysis")

        dropped = 0
        for finding in output.risks:
            section_id = resolve_section_id(document, finding.section_id)
            if section_id is None:
                dropped += 1
                logger.warning(f"Dropping finding with unknown section reference '{finding.section_id}'")
                continue
            findings.append(finding.model_copy(update={"section_id": section_id}))

        for note in output.consistency_findings:
            if note and note not in notes:
                notes.append(note)

        findings = self._order(document, findings)
        logger.info(f"✓ {len(findings)} finding(s), {len(notes)} consistency note(s), {dropped} dropped "
                    f"in {time.time() - start_time:.2f}s")
        return RiskReport(
            document_id=document.document_id,
            revision=document.revision,
            risks=findings,
            consistency_findings=notes,
        )

    def deterministic_findings(self, document: Document):
        """Structural checks that need no model; returns (findings, consistency notes)"""
        findings: List[Finding] = []
        notes: List[str] = []

        # Duplicate headings
        seen: Dict[str, str] = {}
        for section in document.sections:
            key = normalize_heading(section.heading)
            if key in seen:
                findings.append(Finding(
                    section_id=section.section_id,
                    severity=Severity.MEDIUM,
                    note=f"Heading '{section.heading}' duplicates section {seen[key]}",
                    suggestion="Merge the duplicated clauses or give them distinct headings",
                ))
            else:
                seen[key] = section.title

        for section in document.sections:
            if not section.text.strip() and section.heading != PREAMBLE_HEADING:
                findings.append(Finding(
                    section_id=section.section_id,
                    severity=Severity.LOW,
                    note=f"Section {section.title} has a heading but no wording",
                    suggestion="Add the clause text or remove the empty heading",
                ))

            for match in PLACEHOLDER_RE.finditer(section.text):
                name = match.group("a") or match.group("b") or match.group("c")
                if match.group("a") or alias_key(name) in FACT_ALIASES:
                    findings.append(Finding(
                        section_id=section.section_id,
                        severity=Severity.HIGH,
                        note=f"Unresolved placeholder '{match.group(0)}' in section {section.title}",
                        suggestion="Fill in the value from the fixture recap",
                    ))

            if CP_ACRONYM_RE.search(section.heading) or CP_ACRONYM_RE.search(section.text):
                findings.append(Finding(
                    section_id=section.section_id,
                    severity=Severity.LOW,
                    note=f"Section {section.title} uses the acronym 'CP'",
                    suggestion="Write 'Charter Party Contract' in full",
                ))

        # Vessel name drift
        mentions: Dict[str, List[str]] = {}
        counts: Counter = Counter()
        for section in document.sections:
            for match in VESSEL_MENTION_RE.finditer(section.text):
                core = _vessel_core(match.group(0))
                counts[core] += 1
                mentions.setdefault(core, [])
                if section.section_id not in mentions[core]:
                    mentions[core].append(section.section_id)

        if len(counts) > 1:
            canonical = counts.most_common(1)[0][0]
            others = [name for name in counts if name != canonical]
            notes.append(f"The vessel is referred to as {canonical} and also as {', '.join(others)}")
            for name in others:
                for section_id in mentions[name]:
                    findings.append(Finding(
                        section_id=section_id,
                        severity=Severity.HIGH,
                        note=f"Vessel named '{name}' here but '{canonical}' elsewhere",
                        suggestion=f"Use the vessel name '{canonical}' consistently",
                    ))

        return findings, notes

    def _build_prompt(self, document: Document) -> str:
        return f"""You will analyze the provided Charter Party Contract text and identify any potential issues.

Return an array of risks, conflicts, and inconsistencies found in the contract. For each risk give:
- sectionId: the bracketed id of the section it concerns (for example "sec-004")
- severity: high, medium or low
- note: a detailed description of the issue
- suggestion: a suggested redline or action to address the risk

Also return consistencyFindings: issues that span the whole document (terminology drift, conflicting dates or figures) rather than one section.

Each section below starts with its id in square brackets.

**CHARTER PARTY CONTRACT:**
{document.labelled_text()}"""

    @staticmethod
    def _order(document: Document, findings: List[Finding]) -> List[Finding]:
        position = {section_id: i for i, section_id in enumerate(document.section_ids())}
        return sorted(findings, key=lambda f: (position[f.section_id], _SEVERITY_ORDER[f.severity]))
