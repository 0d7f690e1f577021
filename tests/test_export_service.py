from io import BytesIO

import pytest
from docx import Document as DocxDocument

from charterx.services.errors import ValidationFailure
from charterx.services.export_service import (
    FONT_FAMILY, PRINT_STYLESHEET, ExportService, PageOptions, build_print_html,
)
from charterx.services.merger_service import document_from_text
from charterx.services.redline_generator import _del, _ins, _mark

from conftest import BASE_CONTRACT


exporter = ExportService()


@pytest.fixture
def html():
    return build_print_html(document_from_text(BASE_CONTRACT).to_html())


def test_print_page_carries_the_stylesheet(html):
    assert "Times New Roman" in PRINT_STYLESHEET
    assert "size: A4; margin: 25mm" in PRINT_STYLESHEET
    assert PRINT_STYLESHEET in html
    assert "<h2>1. Vessel Identification</h2>" in html


def test_pdf_export(html):
    data = exporter.render(html, "pdf")
    assert data.startswith(b"%PDF")


def test_docx_export_keeps_structure_and_font(html):
    data = exporter.render(html, "DOCX")
    assert data.startswith(b"PK")

    doc = DocxDocument(BytesIO(data))
    texts = [p.text for p in doc.paragraphs]
    assert "1. Vessel Identification" in texts
    assert doc.styles["Normal"].font.name == FONT_FAMILY
    assert round(doc.sections[0].left_margin.mm) == 25
    assert round(doc.sections[0].page_width.mm) == 210


def test_docx_export_formats_redline_runs():
    fragment = f"<p>Freight {_del('5 banking days')} {_ins('3 days')} {_mark('USD 32', 'USD 30')}</p>"
    doc = DocxDocument(BytesIO(exporter.render(fragment, "docx")))
    runs = {run.text: run for run in doc.paragraphs[0].runs}

    assert runs["5 banking days"].font.strike
    assert runs["3 days"].font.highlight_color is not None
    assert runs["USD 32"].font.highlight_color is not None


def test_docx_export_tables():
    fragment = "<table><tr><th>Load Port</th><th>Discharge Port</th></tr><tr><td>Santos</td><td>Rotterdam</td></tr></table>"
    doc = DocxDocument(BytesIO(exporter.render(fragment, "docx")))
    assert doc.tables[0].cell(1, 1).text == "Rotterdam"


def test_unknown_format_is_refused(html):
    with pytest.raises(ValidationFailure) as excinfo:
        exporter.render(html, "odt")
    assert excinfo.value.field == "format"


def test_unknown_page_size_is_refused(html):
    with pytest.raises(ValidationFailure):
        exporter.render(html, "pdf", PageOptions(size="B7"))


def test_letter_page_size():
    assert PageOptions(size="letter").paper_mm() == (215.9, 279.4)
