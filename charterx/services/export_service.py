"""
Export Service

Renders contract HTML to print-ready PDF (PyMuPDF Story) or DOCX (python-docx).
Both formats use the same print stylesheet as the HTML preview: A4, 25mm margins,
Times New Roman 12pt, headings 20/16/14pt. Redline markup survives export.
"""

import logging
from dataclasses import dataclass
from html import escape
from io import BytesIO

import fitz  # PyMuPDF
from bs4 import BeautifulSoup
from bs4.element import Comment, NavigableString, Tag
from docx import Document as DocxDocument
from docx.enum.text import WD_ALIGN_PARAGRAPH, WD_COLOR_INDEX
from docx.shared import Mm, Pt, RGBColor

from charterx.config.config import Config
from charterx.services.errors import RenderFailure, ValidationFailure
from charterx.utils.logger import setup_logging

setup_logging(__name__)
logger = logging.getLogger(__name__)

PDF_MEDIA_TYPE = "application/pdf"
DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
EXPORT_FORMATS = {"pdf": PDF_MEDIA_TYPE, "docx": DOCX_MEDIA_TYPE}

PAPER_SIZES_MM = {"A4": (210, 297), "LETTER": (215.9, 279.4), "A3": (297, 420)}

FONT_FAMILY = "Times New Roman"
BODY_SIZE_PT = 12
HEADING_SIZES_PT = {1: 20, 2: 16, 3: 14}

PRINT_STYLESHEET = f"""
@page {{ size: A4; margin: 25mm; }}
body {{ font-family: "{FONT_FAMILY}", Times, serif; font-size: {BODY_SIZE_PT}pt; line-height: 1.6; color: #000000; }}
h1 {{ font-size: {HEADING_SIZES_PT[1]}pt; font-weight: bold; text-align: center; margin: 0 0 16pt 0; }}
h2 {{ font-size: {HEADING_SIZES_PT[2]}pt; font-weight: bold; margin: 14pt 0 6pt 0; }}
h3 {{ font-size: {HEADING_SIZES_PT[3]}pt; font-weight: bold; margin: 10pt 0 4pt 0; }}
p {{ margin: 0 0 8pt 0; text-align: justify; }}
table {{ border-collapse: collapse; width: 100%; margin: 8pt 0; }}
th, td {{ border: 1px solid #000000; padding: 4pt; text-align: left; }}
ins.redline-added {{ background-color: #d4edda; color: #155724; text-decoration: none; }}
del.redline-removed {{ background-color: #f8d7da; color: #721c24; text-decoration: line-through; }}
mark.redline-modified {{ background-color: #fff3cd; color: #856404; }}
""".strip()


@dataclass
class PageOptions:
    size: str = Config.PAGE_SIZE
    margin_mm: float = Config.PAGE_MARGIN_MM

    def paper_mm(self):
        try:
            return PAPER_SIZES_MM[self.size.upper()]
        except KeyError:
            raise ValidationFailure(f"Unsupported page size: {self.size}", field="page_size")


def build_print_html(body_html: str, title: str = "Charter Party Contract") -> str:
    """Wrap a document fragment in the canonical print page (used by preview and export)"""
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{escape(title)}</title><style>{PRINT_STYLESHEET}</style></head>"
        f"<body>{body_html}</body></html>"
    )


class ExportService:
    """render(html, format, page_options) -> bytes"""

    def render(self, html: str, fmt: str, page_options: PageOptions = None) -> bytes:
        """
        Render contract HTML to a print-ready artifact

        Args:
            html: Document or redline HTML fragment (or a full print page)
            fmt: "pdf" or "docx"
            page_options: Paper size and margins; defaults from Config

        Returns:
            The artifact bytes

        Raises:
            ValidationFailure: Unknown format or page size
            RenderFailure: The renderer failed
        """
        fmt = (fmt or "").lower()
        if fmt not in EXPORT_FORMATS:
            raise ValidationFailure(f"Unsupported export format: {fmt}", field="format")
        page_options = page_options or PageOptions()
        page_options.paper_mm()

        logger.info(f"Rendering {fmt.upper()} ({len(html)} chars of HTML, {page_options.size}, "
                    f"{page_options.margin_mm}mm margins)")
        try:
            data = self._render_pdf(html, page_options) if fmt == "pdf" else self._render_docx(html, page_options)
        except (ValidationFailure, RenderFailure):
            raise
        except Exception as e:
            logger.error(f"✗ {fmt.upper()} rendering failed: {e}")
            raise RenderFailure(f"{fmt.upper()} rendering failed: {e}", context={"format": fmt}) from e

        logger.info(f"✓ Rendered {fmt.upper()}: {len(data)} bytes")
        return data

    # ------------------------------------------------------------------
    # PDF
    # ------------------------------------------------------------------

    def _render_pdf(self, html: str, page_options: PageOptions) -> bytes:
        width_mm, height_mm = page_options.paper_mm()
        to_pt = 72 / 25.4
        mediabox = fitz.Rect(0, 0, width_mm * to_pt, height_mm * to_pt)
        margin = page_options.margin_mm * to_pt
        where = mediabox + (margin, margin, -margin, -margin)

        story = fitz.Story(html=self._body(html), user_css=PRINT_STYLESHEET)
        buffer = BytesIO()
        writer = fitz.DocumentWriter(buffer)
        more = 1
        while more:
            device = writer.begin_page(mediabox)
            more, _ = story.place(where)
            story.draw(device)
            writer.end_page()
        writer.close()
        return buffer.getvalue()

    @staticmethod
    def _body(html: str) -> str:
        soup = BeautifulSoup(html, "html.parser")
        body = soup.body
        return body.decode_contents() if body else html

    # ------------------------------------------------------------------
    # DOCX
    # ------------------------------------------------------------------

    def _render_docx(self, html: str, page_options: PageOptions) -> bytes:
        doc = DocxDocument()
        width_mm, height_mm = page_options.paper_mm()
        for section in doc.sections:
            section.page_width = Mm(width_mm)
            section.page_height = Mm(height_mm)
            section.top_margin = section.bottom_margin = Mm(page_options.margin_mm)
            section.left_margin = section.right_margin = Mm(page_options.margin_mm)

        normal = doc.styles["Normal"]
        normal.font.name = FONT_FAMILY
        normal.font.size = Pt(BODY_SIZE_PT)
        normal.paragraph_format.line_spacing = 1.6

        soup = BeautifulSoup(self._body(html), "html.parser")
        self._add_blocks(doc, soup)

        buffer = BytesIO()
        doc.save(buffer)
        return buffer.getvalue()

    def _add_blocks(self, doc, node: Tag):
        for child in node.children:
            if isinstance(child, Comment):
                continue
            if isinstance(child, NavigableString):
                if child.strip():
                    doc.add_paragraph(child.strip())
                continue
            if not isinstance(child, Tag):
                continue

            name = child.name
            if name in ("h1", "h2", "h3", "h4", "h5", "h6"):
                level = min(int(name[1]), 3)
                heading = doc.add_heading(level=level)
                if level == 1:
                    heading.alignment = WD_ALIGN_PARAGRAPH.CENTER
                self._add_runs(heading, child, size=HEADING_SIZES_PT[level], bold=True)
            elif name == "p":
                paragraph = doc.add_paragraph()
                paragraph.alignment = WD_ALIGN_PARAGRAPH.JUSTIFY
                self._add_runs(paragraph, child)
            elif name == "li":
                self._add_runs(doc.add_paragraph(style="List Bullet"), child)
            elif name == "table":
                self._add_table(doc, child)
            elif name in ("style", "script", "head", "title"):
                continue
            else:
                self._add_blocks(doc, child)

    def _add_runs(self, paragraph, node: Tag, size: int = None, bold: bool = False, kind: str = None):
        for child in node.children:
            if isinstance(child, Comment):
                continue
            if isinstance(child, NavigableString):
                text = str(child)
                if not text:
                    continue
                run = paragraph.add_run(text)
                run.font.name = FONT_FAMILY
                run.font.size = Pt(size or BODY_SIZE_PT)
                run.bold = bold or None
                if kind == "ins":
                    run.font.highlight_color = WD_COLOR_INDEX.BRIGHT_GREEN
                    run.font.color.rgb = RGBColor(0x15, 0x57, 0x24)
                elif kind == "del":
                    run.font.strike = True
                    run.font.color.rgb = RGBColor(0x72, 0x1C, 0x24)
                elif kind == "mark":
                    run.font.highlight_color = WD_COLOR_INDEX.YELLOW
                    run.font.color.rgb = RGBColor(0x85, 0x64, 0x04)
            elif isinstance(child, Tag):
                if child.name == "br":
                    paragraph.add_run().add_break()
                    continue
                child_kind = child.name if child.name in ("ins", "del", "mark") else kind
                child_bold = bold or child.name in ("strong", "b")
                self._add_runs(paragraph, child, size=size, bold=child_bold, kind=child_kind)

    def _add_table(self, doc, table: Tag):
        rows = table.find_all("tr")
        if not rows:
            return
        width = max(len(r.find_all(["td", "th"])) for r in rows)
        if width == 0:
            return
        docx_table = doc.add_table(rows=len(rows), cols=width)
        docx_table.style = "Table Grid"
        for r, row in enumerate(rows):
            for c, cell in enumerate(row.find_all(["td", "th"])):
                docx_table.cell(r, c).text = cell.get_text(" ", strip=True)
