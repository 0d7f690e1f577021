"""
Redline Generator

Compares the original base contract with the current (merged or amended)
Document and produces:

- the current document as HTML with inline change markup
  (additions <ins> green, removals <del> red strike-through, modifications <mark> yellow)
- one RedlineChange per contiguous change, anchored on a current section
- aggregate counts, always computed here

Stripping the markup (drop <del> with its content, unwrap <ins>/<mark>) gives back
the visible text of Document.to_html().
"""

import difflib
import logging
import time
from html import escape
from typing import Dict, List, Optional, Tuple

from bs4 import BeautifulSoup

from charterx.database.schemas import (
    ChangeStats, ChangeType, Document, RedlineChange, RedlineOutput, RedlineReport, Section, Severity,
)
from charterx.services.errors import GenerationFailure
from charterx.services.llm_client import TextGenerator
from charterx.services.merger_service import gist
from charterx.services.text_normalizer import ParsedSection, TextNormalizer, collapse_whitespace, normalize_heading
from charterx.utils.logger import setup_logging

setup_logging(__name__)
logger = logging.getLogger(__name__)

OPERATION = "generate_redline"

SYSTEM_PROMPT = (
    "You are a contract redlining expert with extensive experience in maritime law and charter "
    "party contracts. You understand the importance of tracking changes for legal compliance and "
    "commercial clarity."
)

ADDED_CLASS = "redline-added"
REMOVED_CLASS = "redline-removed"
MODIFIED_CLASS = "redline-modified"

ADDED_STYLE = "background-color: #d4edda; color: #155724; text-decoration: none;"
REMOVED_STYLE = "background-color: #f8d7da; color: #721c24; text-decoration: line-through;"
MODIFIED_STYLE = "background-color: #fff3cd; color: #856404;"

_BREAK = "\n"


def _ins(text: str) -> str:
    return f'<ins class="{ADDED_CLASS}" style="{ADDED_STYLE}">{escape(text)}</ins>'


def _del(text: str) -> str:
    return f'<del class="{REMOVED_CLASS}" style="{REMOVED_STYLE}">{escape(text)}</del>'


def _mark(text: str, was: str) -> str:
    return (f'<mark class="{MODIFIED_CLASS}" style="{MODIFIED_STYLE}" '
            f'title="{escape("was: " + gist(was))}">{escape(text)}</mark>')


def strip_redline_markup(redlined_html: str) -> str:
    """Remove removals with their content and unwrap additions and modifications"""
    soup = BeautifulSoup(redlined_html, "html.parser")
    for tag in soup.find_all("del", class_=REMOVED_CLASS):
        tag.decompose()
    for tag in soup.find_all(["ins", "mark"], class_=[ADDED_CLASS, MODIFIED_CLASS]):
        tag.unwrap()
    return str(soup)


def visible_text(html_text: str) -> str:
    """Whitespace-collapsed text a reader sees in the rendered HTML"""
    return collapse_whitespace(BeautifulSoup(html_text, "html.parser").get_text(" "))


def _tokens(paragraphs: List[str]) -> List[str]:
    tokens: List[str] = []
    for i, paragraph in enumerate(paragraphs):
        if i:
            tokens.append(_BREAK)
        tokens.extend(paragraph.split())
    return tokens


def _words(tokens: List[str]) -> str:
    return " ".join(t for t in tokens if t != _BREAK)


class _SectionDiff:
    """Word-level diff of one aligned section pair, rendered into current paragraphs"""

    def __init__(self, old_paragraphs: List[str], new_paragraphs: List[str]):
        self.old = _tokens(old_paragraphs)
        self.new = _tokens(new_paragraphs)
        self.paragraphs: List[List[str]] = [[]]
        self.changes: List[Tuple[ChangeType, Optional[str], Optional[str]]] = []

    def run(self) -> List[str]:
        matcher = difflib.SequenceMatcher(None, self.old, self.new, autojunk=False)
        for tag, i1, i2, j1, j2 in matcher.get_opcodes():
            old_words, new_words = _words(self.old[i1:i2]), _words(self.new[j1:j2])

            if tag == "equal":
                self._emit(self.new[j1:j2], escape)
            elif tag == "insert" or (tag == "replace" and not old_words):
                self._emit(self.new[j1:j2], _ins)
                if new_words:
                    self.changes.append((ChangeType.ADDED, None, new_words))
            elif tag == "delete" or (tag == "replace" and not new_words):
                self._emit(self.new[j1:j2], escape)
                if old_words:
                    self.paragraphs[-1].append(_del(old_words))
                    self.changes.append((ChangeType.REMOVED, old_words, None))
            else:
                self._emit(self.new[j1:j2], lambda text: _mark(text, old_words))
                self.changes.append((ChangeType.MODIFIED, old_words, new_words))

        return ["<p>" + " ".join(parts) + "</p>" for parts in self.paragraphs if parts]

    def _emit(self, tokens: List[str], wrap):
        run: List[str] = []
        for token in tokens:
            if token == _BREAK:
                if run:
                    self.paragraphs[-1].append(wrap(" ".join(run)))
                    run = []
                self.paragraphs.append([])
            else:
                run.append(token)
        if run:
            self.paragraphs[-1].append(wrap(" ".join(run)))


class RedlineGenerator:
    """Builds a RedlineReport for (base contract, current document)"""

    def __init__(self, generator: TextGenerator, normalizer: Optional[TextNormalizer] = None):
        self.generator = generator
        self.normalizer = normalizer or TextNormalizer()

    async def generate(self, base_contract: str, negotiated_clauses: str, current: Document) -> RedlineReport:
        """
        Compare the base contract with the current document

        Args:
            base_contract: The original base contract text
            negotiated_clauses: The negotiated clauses (context for change descriptions)
            current: The document revision to redline (read only)

        Returns:
            RedlineReport tagged with current.revision

        Raises:
            GenerationFailure: The model call failed or returned nothing usable
        """
        start_time = time.time()
        logger.info("=" * 80)
        logger.info(f"Redline for {current.document_id} (revision {current.revision})")
        logger.info("=" * 80)

        base_sections = self.normalizer.to_sections(base_contract)
        alignment = self.align(base_sections, current.sections)
        logger.info(f"Aligned {len(alignment)}/{len(current.sections)} current sections "
                    f"with {len(base_sections)} base sections")

        redlined_html, changes = self._build(base_sections, current, alignment)
        summary = "No differences between the base contract and the current document."

        if changes:
            output = await self.generator.generate(
                OPERATION, self._build_prompt(base_contract, negotiated_clauses, changes), RedlineOutput,
                system=SYSTEM_PROMPT,
            )
            if output is None:
                raise GenerationFailure(OPERATION, "model returned no redline assessment")

            by_id = {change.change_id: change for change in changes}
            for assessment in output.assessments:
                change = by_id.get(assessment.change_id)
                if change is None:
                    logger.warning(f"Ignoring assessment for unknown change '{assessment.change_id}'")
                    continue
                change.impact = assessment.impact
                if assessment.description:
                    change.description = assessment.description
            summary = output.summary or summary

        stats = ChangeStats.from_changes(changes)
        logger.info(f"✓ {stats.total} change(s): {stats.added} added, {stats.removed} removed, "
                    f"{stats.modified} modified in {time.time() - start_time:.2f}s")

        return RedlineReport(
            revision=current.revision,
            redlined_contract=redlined_html,
            changes=changes,
            summary=summary,
            change_stats=stats,
        )

    @staticmethod
    def align(base_sections: List[ParsedSection], current_sections: List[Section]) -> Dict[int, int]:
        """
        Map current section index -> base section index

        Passes, each base section used once: number + heading, heading, number.
        """
        alignment: Dict[int, int] = {}
        used = set()
        passes = [
            lambda b, c: b.number == c.number and normalize_heading(b.heading) == normalize_heading(c.heading),
            lambda b, c: normalize_heading(b.heading) == normalize_heading(c.heading),
            lambda b, c: b.number is not None and b.number == c.number,
        ]
        for same in passes:
            for ci, section in enumerate(current_sections):
                if ci in alignment:
                    continue
                for bi, base in enumerate(base_sections):
                    if bi not in used and same(base, section):
                        alignment[ci] = bi
                        used.add(bi)
                        break
        return alignment

    def _build(
        self,
        base_sections: List[ParsedSection],
        current: Document,
        alignment: Dict[int, int],
    ) -> Tuple[str, List[RedlineChange]]:
        changes: List[RedlineChange] = []

        def record(change_type: ChangeType, section: Section, original: Optional[str], new: Optional[str],
                   description: str):
            changes.append(RedlineChange(
                change_id=f"chg-{len(changes) + 1:03d}",
                type=change_type,
                section_id=section.section_id,
                section=section.title,
                original_text=original,
                new_text=new,
                description=description,
                impact=Severity.LOW,
            ))

        # Removed base sections, keyed by the current section they follow (None = before the first)
        aligned_base = {bi: ci for ci, bi in alignment.items()}
        removed_after: Dict[Optional[int], List[ParsedSection]] = {}
        anchor: Optional[int] = None
        for bi, base in enumerate(base_sections):
            if bi in aligned_base:
                anchor = aligned_base[bi]
            else:
                removed_after.setdefault(anchor, []).append(base)

        def render_removed(sections: List[ParsedSection], anchor_section: Section) -> str:
            html = []
            for base in sections:
                title = f"{base.number}. {base.heading}" if base.number else base.heading
                paragraphs = "".join(f"<p>{_del(p)}</p>" for p in base.body)
                html.append(f'<div class="{REMOVED_CLASS}-section"><h2>{_del(title)}</h2>{paragraphs}</div>')
                record(ChangeType.REMOVED, anchor_section, f"{title}\n{base.text}".strip(), None,
                       f"Base section '{title}' removed")
            return "".join(html)

        parts = [f'<article class="charter-party-contract redline"><h1>{escape(current.title)}</h1>']
        for ci, section in enumerate(current.sections):
            if ci == 0 and None in removed_after:
                parts.append(render_removed(removed_after[None], section))

            head = (f'<section id="{section.section_id}" data-provenance="{section.provenance.value}" '
                    f'data-category="{section.category.value}">')

            if ci not in alignment:
                paragraphs = "".join(f"<p>{_ins(p)}</p>" for p in section.body)
                parts.append(f"{head}<h2>{_ins(section.title)}</h2>{paragraphs}</section>")
                record(ChangeType.ADDED, section, None, f"{section.title}\n{section.text}".strip(),
                       f"Section {section.title} added ({section.provenance.value})")
            else:
                base = base_sections[alignment[ci]]
                base_title = f"{base.number}. {base.heading}" if base.number else base.heading
                if collapse_whitespace(base_title) != collapse_whitespace(section.title):
                    title_html = _mark(section.title, base_title)
                    record(ChangeType.MODIFIED, section, base_title, section.title,
                           f"Heading changed from '{base_title}' to '{section.title}'")
                else:
                    title_html = escape(section.title)

                diff = _SectionDiff(base.body, section.body)
                paragraphs = "".join(diff.run())
                for change_type, original, new in diff.changes:
                    verb = {ChangeType.ADDED: "Added", ChangeType.REMOVED: "Removed",
                            ChangeType.MODIFIED: "Modified"}[change_type]
                    record(change_type, section, original, new,
                           f"{verb} wording in section {section.title}: \"{gist(new or original)}\"")
                parts.append(f"{head}<h2>{title_html}</h2>{paragraphs}</section>")

            if ci in removed_after:
                parts.append(render_removed(removed_after[ci], section))

        parts.append("</article>")
        return "".join(parts), changes

    def _build_prompt(self, base_contract: str, negotiated_clauses: str, changes: List[RedlineChange]) -> str:
        listing = "\n".join(
            f"- {c.change_id} [{c.type.value}] section {c.section}: "
            f"before={gist(c.original_text or '', 200)!r} after={gist(c.new_text or '', 200)!r}"
            for c in changes
        )
        return f"""Assess the changes between the base contract and the final merged contract.

Inputs:
1) Base Contract:
{base_contract}

2) Negotiated Clauses:
{negotiated_clauses}

3) Changes detected:
{listing}

For each change return an assessment with:
- changeId exactly as listed
- impact: high, medium or low, judging the commercial and legal impact
- description: what was changed and why it matters

Also return a summary of the redline. Do not add, merge or drop changes."""
