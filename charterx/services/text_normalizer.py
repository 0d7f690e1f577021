"""
Text normalization

Turns plain text, HTML fragments and text extracted from uploaded files into one
canonical, section-addressable form:

    # 4. Demurrage and Despatch
    Demurrage at USD 12,000 per day pro rata.

    NOR to be tendered WIBON.

Heading lines start with "# " (optionally followed by a section number); every
other non-empty line is one body paragraph; paragraphs are separated by a blank
line. Purely syntactic - no content is judged, and no non-empty content is dropped.
"""

import html
import re
import unicodedata
from dataclasses import dataclass, field
from typing import List, Optional

from bs4 import BeautifulSoup
from bs4.element import Comment, Declaration, Doctype, NavigableString, ProcessingInstruction, Tag

HEADING_MARK = "# "
PREAMBLE_HEADING = "Preamble"

_HEADING_TAGS = {"h1", "h2", "h3", "h4", "h5", "h6"}
_BLOCK_TAGS = {
    "div", "p", "article", "section", "main", "aside", "header", "footer", "blockquote",
    "li", "ul", "ol", "dl", "dt", "dd", "table", "thead", "tbody", "tr", "pre", "hr",
} | _HEADING_TAGS
_CELL_TAGS = {"td", "th"}
_CELL_SEPARATOR = " | "
_NOISE_TAGS = ["script", "style", "noscript"]

_HTML_HINT_RE = re.compile(
    r"<\s*/?\s*(?:p|div|h[1-6]|br|li|ul|ol|table|tr|td|section|article|span|strong|b|em|i|u|body|html)\b[^>]*>",
    re.IGNORECASE,
)

# "4. Heading", "Clause 4 - Heading", "Section 4: Heading", "ARTICLE 4 Heading"
_NUMBERED_HEADING_RE = re.compile(
    r"^(?:(?:clause|section|article|art\.)\s+(?P<n1>\d{1,3})[.):]?"
    r"|(?P<n2>\d{1,3})\.(?!\d))"
    r"\s*(?:[-–—:]\s*)?(?P<rest>\S.*)?$",
    re.IGNORECASE,
)
_MARKDOWN_HEADING_RE = re.compile(r"^#{1,6}\s+(?P<rest>.+)$")
_CANONICAL_NUMBER_RE = re.compile(r"^(?P<number>\d{1,3})\.\s+(?P<heading>.+)$")
_HEADING_BODY_SPLIT_RE = re.compile(r"^(?P<heading>[^:]{2,80}?)\s*(?::|\s[-–—]\s)\s*(?P<body>\S.*)$")
_HYPHEN_BREAK_RE = re.compile(r"(\w)-\n(\w)")

_CHAR_MAP = {
    "\u00a0": " ", "\u2009": " ", "\u202f": " ", "\t": " ",
    "\u2018": "'", "\u2019": "'", "\u201c": "\"", "\u201d": "\"",
    "\u200b": "", "\ufeff": "",
}

MAX_HEADING_WORDS = 8
MAX_HEADING_CHARS = 80


@dataclass
class ParsedSection:
    """One section recovered from canonical text"""
    number: Optional[str]
    heading: str
    body: List[str] = field(default_factory=list)
    raw: str = ""
    has_explicit_heading: bool = True

    @property
    def text(self) -> str:
        return "\n\n".join(self.body)


def looks_like_html(text: str) -> bool:
    return bool(_HTML_HINT_RE.search(text or ""))


def collapse_whitespace(text: str) -> str:
    return " ".join(text.split())


def _clean_chars(text: str) -> str:
    text = unicodedata.normalize("NFKC", text)
    for src, dst in _CHAR_MAP.items():
        text = text.replace(src, dst)
    return text.replace("\r\n", "\n").replace("\r", "\n")


class TextNormalizer:
    """Canonicalizes heterogeneous contract input for structural parsing"""

    def normalize(self, text: str, source: str = "auto") -> str:
        """
        Convert input text into canonical form

        Args:
            text: Raw input (plain text, HTML fragment, or extracted file text)
            source: "text", "html", "extracted" or "auto" (detect HTML by its tags)

        Returns:
            Canonical text (may be empty only when the input had no visible content)
        """
        if not text:
            return ""

        if source == "html" or (source == "auto" and looks_like_html(text)):
            lines = self._html_to_lines(text)
        else:
            cleaned = _clean_chars(html.unescape(text))
            cleaned = _HYPHEN_BREAK_RE.sub(r"\1\2", cleaned) if source == "extracted" else cleaned
            lines = [line for line in cleaned.split("\n")]

        return self._canonicalize_lines(lines)

    # ------------------------------------------------------------------
    # HTML
    # ------------------------------------------------------------------

    def _html_to_lines(self, fragment: str) -> List[str]:
        soup = BeautifulSoup(fragment, "html.parser")
        for tag in soup.find_all(_NOISE_TAGS):
            tag.decompose()

        lines: List[str] = []
        buffer: List[str] = []
        list_item = [False]

        def flush():
            # Drop the separator after the last cell of a row, never cell content
            while buffer and (buffer[-1] is _CELL_SEPARATOR or not buffer[-1].strip()):
                if buffer.pop() is _CELL_SEPARATOR:
                    break
            text = collapse_whitespace(_clean_chars("".join(buffer)))
            buffer.clear()
            if text:
                lines.append(f"- {text}" if list_item[0] else text)
                list_item[0] = False

        def walk(node: Tag):
            for child in node.children:
                if isinstance(child, (Comment, Declaration, Doctype, ProcessingInstruction)):
                    continue
                if isinstance(child, NavigableString):
                    buffer.append(str(child))
                    continue
                if not isinstance(child, Tag):
                    continue

                name = child.name
                if name == "br":
                    flush()
                elif name in _HEADING_TAGS:
                    flush()
                    heading = collapse_whitespace(_clean_chars(child.get_text(" ")))
                    if heading:
                        lines.append(f"{HEADING_MARK}{heading}")
                elif name in _BLOCK_TAGS:
                    flush()
                    if name == "li":
                        list_item[0] = True
                    walk(child)
                    flush()
                    if name == "li":
                        list_item[0] = False
                elif name in _CELL_TAGS:
                    walk(child)
                    buffer.append(_CELL_SEPARATOR)
                else:
                    walk(child)

        walk(soup)
        flush()
        return lines

    # ------------------------------------------------------------------
    # Canonical form
    # ------------------------------------------------------------------

    def _canonicalize_lines(self, lines: List[str]) -> str:
        out: List[str] = []
        for raw_line in lines:
            line = collapse_whitespace(raw_line)
            if not line:
                continue

            heading = self._detect_heading(line)
            if heading is None:
                out.append(line)
                continue

            number, title, body = heading
            out.append(f"{HEADING_MARK}{number}. {title}" if number else f"{HEADING_MARK}{title}")
            if body:
                out.append(body)

        return "\n\n".join(out)

    def _detect_heading(self, line: str):
        """Return (number, heading, first_body_line) or None for body text"""
        markdown = _MARKDOWN_HEADING_RE.match(line)
        if markdown:
            rest = markdown.group("rest").strip()
            numbered = _NUMBERED_HEADING_RE.match(rest)
            if numbered and numbered.group("rest"):
                number = numbered.group("n1") or numbered.group("n2")
                return number, numbered.group("rest").strip().rstrip(":"), None
            return None, rest.rstrip(":"), None

        numbered = _NUMBERED_HEADING_RE.match(line)
        if numbered:
            number = numbered.group("n1") or numbered.group("n2")
            rest = (numbered.group("rest") or "").strip()
            if not rest:
                return number, f"Clause {number}", None
            return (number,) + self._split_heading(number, rest)

        if self._is_caps_heading(line):
            return None, line.rstrip(":"), None
        return None

    @staticmethod
    def _split_heading(number: str, rest: str):
        split = _HEADING_BODY_SPLIT_RE.match(rest)
        if split and len(split.group("heading").split()) <= MAX_HEADING_WORDS:
            return split.group("heading").strip(), split.group("body").strip()

        words = rest.split()
        if len(rest) <= MAX_HEADING_CHARS and (
            len(words) <= MAX_HEADING_WORDS or not rest.endswith((".", ";", ","))
        ):
            return rest.rstrip(".:").strip(), None

        return f"Clause {number}", rest

    @staticmethod
    def _is_caps_heading(line: str) -> bool:
        if line.startswith("- "):
            return False
        letters = [c for c in line if c.isalpha()]
        if len(letters) < 3 or len(line.split()) > MAX_HEADING_WORDS:
            return False
        return all(c.isupper() for c in letters) and not line.endswith((".", ";", ","))

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def parse_sections(self, canonical: str) -> List[ParsedSection]:
        """
        Split canonical text into ordered sections

        Text before the first heading becomes a "Preamble" section.
        """
        sections: List[ParsedSection] = []
        current: Optional[ParsedSection] = None

        for line in canonical.split("\n"):
            line = line.strip()
            if not line:
                continue

            if line.startswith(HEADING_MARK):
                heading_text = line[len(HEADING_MARK):].strip()
                match = _CANONICAL_NUMBER_RE.match(heading_text)
                if match:
                    current = ParsedSection(number=match.group("number"), heading=match.group("heading").strip())
                else:
                    current = ParsedSection(number=None, heading=heading_text)
                current.raw = line
                sections.append(current)
                continue

            if current is None:
                current = ParsedSection(number=None, heading=PREAMBLE_HEADING, has_explicit_heading=False)
                sections.append(current)
            current.body.append(line)
            current.raw = f"{current.raw}\n{line}" if current.raw else line

        return sections

    def to_sections(self, text: str, source: str = "auto") -> List[ParsedSection]:
        return self.parse_sections(self.normalize(text, source))


def normalize_heading(heading: str) -> str:
    """Comparison key for headings: lowercase alphanumerics only"""
    return " ".join(re.sub(r"[^a-z0-9 ]+", " ", heading.lower()).split())
