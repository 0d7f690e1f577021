"""
Merge Engine

Combines a base contract, a fixture recap and negotiated clauses into one
Document:

1. Parse the base contract into ordered sections (numbering and headings kept)
2. Extract recap facts and splice them into matching sections
3. Apply negotiated clauses; a negotiated clause always wins over existing
   wording, and every override is recorded as a MergeWarning
4. Rewrite alternate spellings of defined terms (vessel, charterer, owner)
5. Spell out the "CP" acronym everywhere

The only external call is the recap fact extraction; with a fixed generator
the merge is a pure function of its inputs.
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from charterx.database.schemas import (
    Category, Document, MergeResult, MergeWarning, Provenance, RecapFacts, Section
)
from charterx.services.errors import GenerationFailure, MergeFailure
from charterx.services.llm_client import TextGenerator
from charterx.services.text_normalizer import ParsedSection, TextNormalizer, normalize_heading
from charterx.services.topic_classifier import KeywordTopicClassifier, TopicClassifier
from charterx.utils.logger import setup_logging

setup_logging(__name__)
logger = logging.getLogger(__name__)

OPERATION = "merge"
GIST_LENGTH = 80
CATEGORY_ORDER = [Category.COMMERCIAL, Category.LEGAL, Category.OPERATIONAL]
FIXTURE_PARTICULARS_HEADING = "Fixture Particulars"
CHARTER_PARTY_SPELLED_OUT = "Charter Party Contract"

# fact key -> (display label, target topics in order of preference; empty = preamble)
FACT_TARGETS: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    "vessel": ("Vessel", ("vessel",)),
    "charterer": ("Charterer", ()),
    "owner": ("Owner", ()),
    "laycan": ("Laycan", ("laycan", "ports", "cargo")),
    "load_port": ("Load Port", ("ports", "cargo")),
    "discharge_port": ("Discharge Port", ("ports", "cargo")),
    "cargo": ("Cargo", ("cargo",)),
    "quantity": ("Quantity", ("cargo",)),
    "freight_rate": ("Freight Rate", ("freight",)),
    "demurrage_rate": ("Demurrage Rate", ("demurrage",)),
}

# recap key spellings -> fact key
FACT_ALIASES: Dict[str, str] = {
    "vessel": "vessel", "vessel name": "vessel", "vessel_name": "vessel", "ship": "vessel",
    "mv": "vessel", "m/v": "vessel",
    "charterer": "charterer", "charterers": "charterer",
    "owner": "owner", "owners": "owner", "shipowner": "owner", "shipowners": "owner",
    "disponent owner": "owner", "disponent owners": "owner",
    "laycan": "laycan", "lay/can": "laycan", "laydays": "laycan", "laydays/cancelling": "laycan",
    "load port": "load_port", "load_port": "load_port", "loading port": "load_port",
    "port of loading": "load_port", "pol": "load_port", "loadport": "load_port",
    "discharge port": "discharge_port", "discharge_port": "discharge_port",
    "discharging port": "discharge_port", "port of discharge": "discharge_port",
    "pod": "discharge_port", "disport": "discharge_port",
    "freight": "freight_rate", "freight rate": "freight_rate", "freight_rate": "freight_rate",
    "rate": "freight_rate",
    "cargo": "cargo", "commodity": "cargo",
    "quantity": "quantity", "qty": "quantity", "cargo quantity": "quantity",
    "demurrage": "demurrage_rate", "demurrage rate": "demurrage_rate",
    "demurrage_rate": "demurrage_rate", "dem/des": "demurrage_rate",
}

_RECAP_LINE_RE = re.compile(r"^\s*[-*•]?\s*(?P<key>[A-Za-z][A-Za-z /_]{0,30}?)\s*(?::|=|\s-\s)\s*(?P<value>\S.*?)\s*$")
# "MT" right after a figure is the tonnage unit ("50,000 MT"), not a tanker prefix
VESSEL_MENTION_RE = re.compile(r"(?<![\d.,]\s)(?<![\d.,]\s\s)\b(?:M\.?/?V\.?|M\.?/?T\.?)\s+[A-Z0-9][A-Z0-9\-]*(?:\s+[A-Z0-9][A-Z0-9\-]*)*\b")
PLACEHOLDER_RE = re.compile(r"\{\{\s*(?P<a>[A-Za-z][A-Za-z _/]*?)\s*\}\}|\[(?P<b>[A-Za-z][A-Za-z _/]*?)\]|<(?P<c>[A-Za-z][A-Za-z _/]*?)>")
VESSEL_PREFIX_RE = re.compile(r"^(?:M\.?/?V\.?|M\.?/?T\.?|S\.?S\.?)\s+", re.IGNORECASE)
_VESSEL_PREFIX_PATTERN = r"(?:M\.?/?V\.?|M\.?/?T\.?|S\.?S\.?)"
_COMPANY_SUFFIX_RE = re.compile(
    r"[\s,]+(?:Ltd\.?|Limited|LLC|L\.L\.C\.|Inc\.?|Incorporated|Corp\.?|Corporation|S\.A\.|SA|GmbH|AG|"
    r"Pte\.?\s+Ltd\.?|Co\.?|PLC|plc|B\.V\.|N\.V\.|AS|A/S)$"
)
_COMPANY_SUFFIX_PATTERN = (
    r"(?:,?\s+(?:Pte\.?\s+Ltd\.?|Ltd\.?|Limited|LLC|L\.L\.C\.|Inc\.?|Incorporated|Corp\.?|Corporation|"
    r"S\.A\.|SA|GmbH|AG|Co\.?|PLC|plc|B\.V\.|N\.V\.|AS|A/S))?"
)
CP_ACRONYM_RE = re.compile(r"\bC/?P(?P<plural>s?)\b")


@dataclass
class NegotiatedClause:
    """One section-tagged entry of the negotiated clauses input"""
    number: Optional[str]
    heading: Optional[str]
    text: str
    position: int


def gist(text: str, length: int = GIST_LENGTH) -> str:
    text = " ".join(text.split())
    return text if len(text) <= length else text[:length].rstrip() + "..."


def spell_out_cp(text: str) -> str:
    """Replace the CP / C/P acronym with the spelled-out contract name"""
    return CP_ACRONYM_RE.sub(
        lambda m: CHARTER_PARTY_SPELLED_OUT + ("s" if m.group("plural") else ""), text
    )


def alias_key(key: str) -> str:
    return " ".join(key.lower().replace("_", " ").split())


def parse_recap_facts(fixture_recap: str) -> RecapFacts:
    """
    Deterministic key/value extraction from a fixture recap

    Recognises "Key: value", "Key = value" and "Key - value" lines, plus a
    narrative "MV NAME" mention for the vessel when no key names it.
    """
    facts: Dict[str, str] = {}
    for line in fixture_recap.splitlines():
        match = _RECAP_LINE_RE.match(line)
        if not match:
            continue
        key = FACT_ALIASES.get(alias_key(match.group("key")))
        if key is None:
            key = FACT_ALIASES.get(match.group("key").strip().lower())
        if key and key not in facts:
            facts[key] = match.group("value").strip().rstrip(".;")

    if "vessel" not in facts:
        narrative = VESSEL_MENTION_RE.search(fixture_recap)
        if narrative:
            facts["vessel"] = narrative.group(0).strip()

    return RecapFacts(**facts)


def document_from_text(
    text: str,
    classifier: Optional[TopicClassifier] = None,
    normalizer: Optional[TextNormalizer] = None,
    provenance: Provenance = Provenance.BASE,
) -> Document:
    """Parse free text into a Document without merging anything into it"""
    classifier = classifier or KeywordTopicClassifier()
    normalizer = normalizer or TextNormalizer()

    document = Document(revision=1)
    for item in normalizer.to_sections(text):
        document.sections.append(Section(
            section_id=document.allocate_section_id(),
            number=item.number,
            heading=item.heading,
            category=classifier.classify(f"{item.heading}\n{item.text}"),
            body=list(item.body),
            provenance=provenance,
            raw_source=item.raw,
            source_heading=item.heading,
        ))
    return document


class MergeEngine:
    """Merges base contract + fixture recap + negotiated clauses into one Document"""

    def __init__(
        self,
        generator: TextGenerator,
        classifier: Optional[TopicClassifier] = None,
        normalizer: Optional[TextNormalizer] = None,
    ):
        self.generator = generator
        self.classifier = classifier or KeywordTopicClassifier()
        self.normalizer = normalizer or TextNormalizer()

    async def merge(
        self,
        fixture_recap: str,
        base_contract: str,
        negotiated_clauses: str,
        previous: Optional[Document] = None,
    ) -> MergeResult:
        """
        Produce the merged Document and its ordered warnings

        Args:
            fixture_recap: Recap of agreed commercial terms
            base_contract: Base contract template with numbered sections
            negotiated_clauses: Section-tagged override text
            previous: The session's current revision, if any; matching sections
                keep their ids and the document keeps its identity

        Returns:
            MergeResult with the new Document (revision = previous + 1) and warnings

        Raises:
            GenerationFailure: Recap fact extraction failed
            MergeFailure: The merged document is empty or unusable
        """
        start_time = time.time()
        revision = (previous.revision + 1) if previous else 1
        warnings: List[MergeWarning] = []

        logger.info("=" * 80)
        logger.info(f"Merging Charter Party Contract (revision {revision})")
        logger.info(f"Base: {len(base_contract)} chars | Recap: {len(fixture_recap)} chars | "
                    f"Negotiated: {len(negotiated_clauses)} chars")
        logger.info("=" * 80)

        # Step 1: structure
        parsed = self.normalizer.to_sections(base_contract)
        if not parsed:
            raise MergeFailure("Base contract has no parsable content", warnings)

        reuse = _IdReuse(previous)
        document = self._build_document(parsed, previous, revision, reuse)
        logger.info(f"[1/5] Parsed {len(document.sections)} base sections")

        # Step 2: recap facts
        facts = await self._extract_facts(fixture_recap)
        logger.info(f"[2/5] Recap facts: {sorted(facts.filled())}")
        appended: List[Section] = []
        self._splice_facts(document, facts, appended, warnings, revision, reuse)

        # Step 3: negotiated clauses
        clauses = self._parse_negotiated(negotiated_clauses)
        logger.info(f"[3/5] Applying {len(clauses)} negotiated clause(s)")
        self._apply_negotiated(document, clauses, appended, warnings, revision, reuse)
        self._append_in_category_order(document, appended)

        # Step 4: defined terms
        rewrites = self._enforce_defined_terms(document, facts)
        logger.info(f"[4/5] Defined-term rewrites: {rewrites}")

        # Step 5: formatting contract
        self._spell_out_acronyms(document)
        warnings = [
            w.model_copy(update={"description": spell_out_cp(w.description)}) for w in warnings
        ]

        if document.is_empty():
            logger.error("✗ Merge produced an empty document")
            raise MergeFailure("Merge produced an empty document", warnings)

        logger.info(f"[5/5] ✓ Merged {len(document.sections)} sections with {len(warnings)} warning(s) "
                    f"in {time.time() - start_time:.2f}s")
        return MergeResult(document=document, warnings=warnings)

    # ------------------------------------------------------------------
    # Step 1
    # ------------------------------------------------------------------

    def _build_document(
        self,
        parsed: List[ParsedSection],
        previous: Optional[Document],
        revision: int,
        reuse: "_IdReuse",
    ) -> Document:
        if previous:
            document = Document(
                document_id=previous.document_id,
                title=previous.title,
                revision=revision,
                next_section_seq=previous.next_section_seq,
            )
        else:
            document = Document(revision=revision)

        for item in parsed:
            section_id = reuse.take(item.number, item.heading) or document.allocate_section_id()
            document.sections.append(Section(
                section_id=section_id,
                number=item.number,
                heading=item.heading,
                category=self.classifier.classify(f"{item.heading}\n{item.text}"),
                body=list(item.body),
                provenance=Provenance.BASE,
                raw_source=item.raw,
                source_heading=item.heading,
            ))
        return document

    # ------------------------------------------------------------------
    # Step 2
    # ------------------------------------------------------------------

    async def _extract_facts(self, fixture_recap: str) -> RecapFacts:
        facts = parse_recap_facts(fixture_recap)

        prompt = f"""You are a contract automation assistant for Charter Party Contracts (shipping agreements between a shipowner and a charterer).

Extract the commercial facts from the fixture recap below. Use the exact wording of the recap for each value. Leave a field null when the recap does not state it.

Fields: vessel, charterer, owner, laycan, loadPort, dischargePort, freightRate, cargo, quantity, demurrageRate.

**FIXTURE RECAP:**
{fixture_recap}"""

        extracted = await self.generator.generate(OPERATION, prompt, RecapFacts)
        if extracted is None:
            raise GenerationFailure(OPERATION, "model returned no recap facts")

        # Deterministic key/value parse wins; the model only fills gaps
        merged = extracted.filled()
        merged.update(facts.filled())
        return RecapFacts(**merged)

    def _splice_facts(
        self,
        document: Document,
        facts: RecapFacts,
        appended: List[Section],
        warnings: List[MergeWarning],
        revision: int,
        reuse: "_IdReuse",
    ):
        values = facts.filled()
        placed = set()

        # Placeholder substitution: {{vessel}}, [VESSEL], <vessel>
        for section in document.sections:
            substituted = False

            def substitute(match):
                nonlocal substituted
                name = match.group("a") or match.group("b") or match.group("c")
                key = FACT_ALIASES.get(alias_key(name))
                if key and key in values:
                    placed.add(key)
                    substituted = True
                    return values[key]
                return match.group(0)

            section.heading = PLACEHOLDER_RE.sub(substitute, section.heading)
            section.body = [PLACEHOLDER_RE.sub(substitute, p) for p in section.body]
            if substituted:
                section.provenance = Provenance.RECAP

        # Best-effort insertion for facts with no placeholder
        particulars: Optional[Section] = None
        for key, value in values.items():
            if key in placed:
                continue
            label, topics = FACT_TARGETS[key]
            target = self._fact_target(document, topics)

            if target is None:
                if particulars is None:
                    particulars = Section(
                        section_id=reuse.take(None, FIXTURE_PARTICULARS_HEADING) or document.allocate_section_id(),
                        heading=FIXTURE_PARTICULARS_HEADING,
                        category=Category.COMMERCIAL,
                        provenance=Provenance.RECAP,
                        source_heading=FIXTURE_PARTICULARS_HEADING,
                    )
                    appended.append(particulars)
                    warnings.append(MergeWarning(
                        section_id=particulars.section_id,
                        description="Some recap facts had no matching section and were collected "
                                    f"in a new '{FIXTURE_PARTICULARS_HEADING}' section",
                        resolution="appended",
                        revision=revision,
                    ))
                particulars.body.append(f"{label}: {value}")
                continue

            if value.lower() in target.text.lower() or value.lower() in target.heading.lower():
                continue
            target.body.append(f"{label}: {value}")
            if target.provenance == Provenance.BASE:
                target.provenance = Provenance.RECAP

    def _fact_target(self, document: Document, topics: Tuple[str, ...]) -> Optional[Section]:
        if not topics:
            # Parties belong in the preamble, or the opening section when there is none
            return document.sections[0] if document.sections else None
        for topic in topics:
            for section in document.sections:
                if topic in self.classifier.topics(section.heading):
                    return section
        return None

    # ------------------------------------------------------------------
    # Step 3
    # ------------------------------------------------------------------

    def _parse_negotiated(self, negotiated_clauses: str) -> List[NegotiatedClause]:
        clauses: List[NegotiatedClause] = []
        for position, item in enumerate(self.normalizer.to_sections(negotiated_clauses)):
            if not item.has_explicit_heading:
                # Untagged text: matched by topic only
                clauses.append(NegotiatedClause(None, None, item.text, position))
            elif item.body:
                heading = None if item.heading == f"Clause {item.number}" else item.heading
                clauses.append(NegotiatedClause(item.number, heading, item.text, position))
            else:
                # A tag line with nothing after it: the line itself is the clause
                clauses.append(NegotiatedClause(item.number, None, item.heading, position))
        return clauses

    def _match_section(self, document: Document, clause: NegotiatedClause) -> Optional[Section]:
        # (a) explicit section number
        if clause.number:
            section = document.find_by_number(clause.number)
            if section is not None:
                return section

        # (b) normalised heading equality
        if clause.heading:
            key = normalize_heading(clause.heading)
            for section in document.sections:
                if normalize_heading(section.heading) == key:
                    return section

        # (c) primary topic shared with exactly one section heading
        topic = self.classifier.primary_topic(f"{clause.heading or ''}\n{clause.text}")
        if topic:
            candidates = [s for s in document.sections if topic in self.classifier.topics(s.heading)]
            if len(candidates) == 1:
                return candidates[0]
        return None

    def _apply_negotiated(
        self,
        document: Document,
        clauses: List[NegotiatedClause],
        appended: List[Section],
        warnings: List[MergeWarning],
        revision: int,
        reuse: "_IdReuse",
    ):
        overridden: Dict[str, int] = {}

        for clause in clauses:
            section = self._match_section(document, clause)
            if section is None:
                section = next((s for s in appended if clause.heading and
                                normalize_heading(s.heading) == normalize_heading(clause.heading)), None)

            new_body = [p.strip() for p in clause.text.split("\n\n") if p.strip()]

            if section is None:
                heading = clause.heading or self._heading_for(clause.text)
                number = clause.number
                new_section = Section(
                    section_id=reuse.take(None, heading) or document.allocate_section_id(),
                    number=number,
                    heading=heading,
                    category=self.classifier.classify(f"{heading}\n{clause.text}"),
                    body=new_body,
                    provenance=Provenance.NEGOTIATED,
                    raw_source=clause.text,
                    source_heading=heading,
                )
                appended.append(new_section)
                warnings.append(MergeWarning(
                    section_id=new_section.section_id,
                    description=f"Negotiated clause '{gist(clause.text)}' matched no base section; "
                                f"appended as new section '{heading}'",
                    resolution="appended",
                    revision=revision,
                ))
                continue

            old_text = section.text
            if section.section_id in overridden:
                warnings.append(MergeWarning(
                    section_id=section.section_id,
                    description=f"Section {section.title}: later negotiated clause supersedes earlier "
                                f"negotiated wording \"{gist(old_text)}\"",
                    resolution="negotiated (most recent)",
                    revision=revision,
                ))
            elif old_text.strip():
                warnings.append(MergeWarning(
                    section_id=section.section_id,
                    description=f"Section {section.title}: negotiated clause overrides existing wording "
                                f"\"{gist(old_text)}\"",
                    resolution="negotiated",
                    revision=revision,
                ))

            section.body = new_body
            section.provenance = Provenance.NEGOTIATED
            overridden[section.section_id] = clause.position

    def _heading_for(self, text: str) -> str:
        topic = self.classifier.primary_topic(text)
        return self.classifier.label(topic) if topic else "Additional Clause"

    def _append_in_category_order(self, document: Document, appended: List[Section]):
        """
        New sections go after the base structure, grouped commercial, legal,
        operational, and numbered on from the highest existing number
        """
        ordered = sorted(appended, key=lambda s: CATEGORY_ORDER.index(s.category))
        used = {s.number for s in document.sections if s.number}
        for section in ordered:
            if section.number is None or section.number in used:
                section.number = str(document.max_number() + 1)
            used.add(section.number)
            document.sections.append(section)

    # ------------------------------------------------------------------
    # Steps 4 and 5
    # ------------------------------------------------------------------

    def _enforce_defined_terms(self, document: Document, facts: RecapFacts) -> int:
        patterns = []
        if facts.vessel:
            vessel_pattern = _vessel_alternates(facts.vessel)
            if vessel_pattern:
                patterns.append((vessel_pattern, facts.vessel))
        for name in (facts.charterer, facts.owner):
            if name:
                company_pattern = _company_alternates(name)
                if company_pattern:
                    patterns.append((company_pattern, name))

        rewrites = 0
        for pattern, canonical in patterns:
            for section in document.sections:
                new_body = []
                for paragraph in section.body:
                    replaced, count = pattern.subn(canonical, paragraph)
                    rewrites += count if replaced != paragraph else 0
                    new_body.append(replaced)
                section.body = new_body
                section.heading = pattern.sub(canonical, section.heading)
        return rewrites

    def _spell_out_acronyms(self, document: Document):
        document.title = spell_out_cp(document.title)
        for section in document.sections:
            section.heading = spell_out_cp(section.heading)
            section.body = [spell_out_cp(p) for p in section.body]


def _vessel_alternates(canonical: str) -> Optional[re.Pattern]:
    """MV/M.V./M/V/MT/SS + core name in any case, or the bare core name in capitals"""
    core = VESSEL_PREFIX_RE.sub("", canonical.strip())
    if len(core) < 3:
        return None
    core_pattern = r"\s+".join(re.escape(part) for part in core.split())
    return re.compile(
        rf"(?<![\w/.])(?:(?i:{_VESSEL_PREFIX_PATTERN}\s+{core_pattern})|(?:{core_pattern}))(?![\w])"
    )


def _company_alternates(canonical: str) -> Optional[re.Pattern]:
    """Company name with or without its legal suffix, any case"""
    core = _COMPANY_SUFFIX_RE.sub("", canonical.strip())
    if len(core) < 4:
        return None
    core_pattern = r"\s+".join(re.escape(part) for part in core.split())
    return re.compile(rf"(?<![\w])(?:{core_pattern}){_COMPANY_SUFFIX_PATTERN}(?![\w])", re.IGNORECASE)


class _IdReuse:
    """
    Hands out section ids of the previous revision to sections that still match

    Keys are headings as parsed, so rewrites applied later in the merge
    (placeholders, defined terms, CP) do not change a section's identity.
    """

    def __init__(self, previous: Optional[Document]):
        self._by_key: Dict[Tuple[Optional[str], str], str] = {}
        self._by_heading: Dict[str, List[str]] = {}
        self._used = set()
        if previous:
            for section in previous.sections:
                heading = normalize_heading(section.match_heading)
                self._by_key.setdefault((section.number, heading), section.section_id)
                self._by_heading.setdefault(heading, []).append(section.section_id)

    def take(self, number: Optional[str], heading: str) -> Optional[str]:
        key = normalize_heading(heading)
        candidate = self._by_key.get((number, key))
        if candidate is None:
            ids = self._by_heading.get(key, [])
            candidate = ids[0] if len(ids) == 1 else None
        if candidate is None or candidate in self._used:
            return None
        self._used.add(candidate)
        return candidate
