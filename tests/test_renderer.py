import fitz
import pytest

from conftest import definition, make_pdf, page_text, widget_values
from pdf_templates.errors import InvalidDocument
from pdf_templates.mapping import parse_mapping
from pdf_templates.pdf_utils import CHECK_FONT, CHECK_GLYPH, SIGNATURE_COLOR, TEXT_COLOR, TEXT_PADDING, measure_text
from pdf_templates.renderer import RenderEngine, RenderReport, open_document


@pytest.fixture
def engine():
    return RenderEngine()


def test_native_text_fill_round_trips(engine, form_pdf):
    mapping = parse_mapping([definition(id="company", dataKey="legal_name", pdfFieldName="company_name")])
    with open_document(form_pdf) as doc:
        report = RenderReport()
        engine.fill_native_fields(doc, mapping, {"legal_name": "Acme Rò S.r.l."}, report)
        filled = doc.tobytes()

    assert report.native_skipped == []
    assert report.native_filled == ["company"]
    assert widget_values(filled)["company_name"] == "Acme Rò S.r.l."


def test_native_checkbox_fill(engine, form_pdf):
    mapping = parse_mapping([definition(id="terms", type="checkbox", dataKey="accepted", pdfFieldName="accept_terms")])
    with open_document(form_pdf) as doc:
        engine.fill_native_fields(doc, mapping, {"accepted": True}, RenderReport())
        checked = widget_values(doc.tobytes())["accept_terms"]
    with open_document(form_pdf) as doc:
        engine.fill_native_fields(doc, mapping, {"accepted": False}, RenderReport())
        unchecked = widget_values(doc.tobytes())["accept_terms"]

    assert checked not in ("Off", False, None, "")
    assert unchecked in ("Off", False)


def test_bound_native_field_is_filled_and_flattened(engine, form_pdf):
    mapping = parse_mapping([definition(id="company", dataKey="legal_name", pdfFieldName="company_name")])
    result = engine.render_report(form_pdf, mapping, {"legal_name": "Acme Rò S.r.l."})

    assert result.report.native_filled == ["company"]
    assert result.report.flattened
    assert widget_values(result.pdf_bytes) == {}
    assert "S.r.l." in page_text(result.pdf_bytes)


def test_bound_definition_is_also_drawn_at_its_rectangle(engine, form_pdf):
    mapping = parse_mapping(
        [definition(id="company", dataKey="legal_name", pdfFieldName="company_name", x=0.5, y=0.8, width=0.4)]
    )
    result = engine.render_report(form_pdf, mapping, {"legal_name": "ACME"})
    placement = result.report.overlay_for("company")

    assert result.report.native_filled == ["company"]
    assert placement is not None
    assert placement.text == "ACME"
    assert placement.x == pytest.approx(0.5 * 595 + TEXT_PADDING)
    assert placement.baseline_y < 842 * 0.2


def test_unmapped_native_fields_are_still_flattened(engine, form_pdf):
    output = engine.render(form_pdf, [], {})
    assert widget_values(output) == {}


def test_flatten_without_form_is_a_no_op(engine, monkeypatch):
    calls = []
    monkeypatch.setattr(fitz.Document, "bake", lambda self, *a, **kw: calls.append(kw))
    pdf = make_pdf(page_text="Condizioni generali")

    with open_document(pdf) as doc:
        assert engine.flatten(doc) is True
        assert doc[0].get_text() == page_text(pdf)

    assert calls == []


def test_flatten_failure_is_not_fatal(engine, form_pdf, monkeypatch):
    def broken_bake(self, *args, **kwargs):
        raise RuntimeError("malformed AcroForm")

    monkeypatch.setattr(fitz.Document, "bake", broken_bake)
    mapping = parse_mapping([definition(id="note", dataKey="note")])
    result = engine.render_report(form_pdf, mapping, {"note": "still drawn"})

    assert result.report.flattened is False
    assert result.pdf_bytes.startswith(b"%PDF")
    assert "still drawn" in page_text(result.pdf_bytes)


def test_missing_native_field_falls_back_to_overlay(engine, blank_pdf):
    mapping = parse_mapping([definition(id="company", dataKey="legal_name", pdfFieldName="not_in_form")])
    result = engine.render_report(blank_pdf, mapping, {"legal_name": "Acme S.p.A."})

    assert result.report.native_skipped == ["company"]
    assert result.report.overlay_for("company") is not None
    assert "Acme S.p.A." in page_text(result.pdf_bytes)


def test_kind_mismatch_skips_native_fill(engine, form_pdf):
    mapping = parse_mapping([definition(id="terms", dataKey="accepted", pdfFieldName="accept_terms")])
    result = engine.render_report(form_pdf, mapping, {"accepted": "yes"})
    assert result.report.native_skipped == ["terms"]
    assert result.report.overlay_for("terms").text == "yes"


def test_overlay_placement_for_amount(engine, blank_pdf):
    mapping = parse_mapping(
        [definition(id="amount", dataKey="amount", x=0.1, y=0.2, width=0.3, height=0.05, fontSize=20)]
    )
    result = engine.render_report(blank_pdf, mapping, {"amount": 12345.6})
    placement = result.report.overlay_for("amount")

    assert placement.text == "12345.6"
    assert placement.font_size <= 20
    assert measure_text("12345.6", placement.font_size) <= 0.3 * 595 - 2 * TEXT_PADDING
    expected_baseline = 842 - 0.2 * 842 - 0.05 * 842 + (0.05 * 842 - placement.font_size) / 2
    assert placement.baseline_y == pytest.approx(expected_baseline)
    assert placement.x == pytest.approx(0.1 * 595 + TEXT_PADDING)
    assert placement.color == TEXT_COLOR
    assert "12345.6" in page_text(result.pdf_bytes)


def test_long_value_is_shrunk_to_fit(engine, blank_pdf):
    name = "Fratelli Esposito Costruzioni Generali e Ristrutturazioni S.r.l."
    mapping = parse_mapping([definition(id="name", dataKey="name", width=0.3, fontSize=14)])
    placement = engine.render_report(blank_pdf, mapping, {"name": name}).report.overlay_for("name")

    assert placement.font_size < 14
    assert measure_text(name, placement.font_size) <= 0.3 * 595 - 2 * TEXT_PADDING


def test_checkbox_false_draws_nothing(engine, blank_pdf):
    mapping = parse_mapping([definition(id="vat_exempt", type="checkbox", dataKey="vat_exempt")])
    result = engine.render_report(blank_pdf, mapping, {"vat_exempt": False})
    assert result.report.overlays == []


def test_checkbox_true_draws_checkmark(engine, blank_pdf):
    mapping = parse_mapping([definition(id="vat_exempt", type="checkbox", dataKey="vat_exempt", fontSize=10)])
    result = engine.render_report(blank_pdf, mapping, {"vat_exempt": True})
    placement = result.report.overlay_for("vat_exempt")

    assert placement.text == CHECK_GLYPH
    assert placement.fontname == CHECK_FONT
    assert placement.font_size == 12
    assert placement.x == pytest.approx(0.1 * 595 + TEXT_PADDING)


def test_signature_uses_distinct_ink(engine, blank_pdf):
    mapping = parse_mapping([definition(id="sig", type="signature", dataKey="signer")])
    placement = engine.render_report(blank_pdf, mapping, {"signer": "Mario Rossi"}).report.overlay_for("sig")
    assert placement.color == SIGNATURE_COLOR
    assert placement.text == "Mario Rossi"


def test_missing_data_keys_are_skipped(engine, blank_pdf):
    mapping = parse_mapping([definition(id="a", dataKey="present"), definition(id="b", dataKey="absent")])
    result = engine.render_report(blank_pdf, mapping, {"present": "here", "other": None})
    assert [p.definition_id for p in result.report.overlays] == ["a"]


def test_overlay_on_second_page(engine):
    pdf = make_pdf(pages=2)
    mapping = parse_mapping([definition(id="p2", dataKey="v", page=1)])
    output = engine.render(pdf, mapping, {"v": "second page"})
    assert "second page" in page_text(output, page_number=1)
    assert "second page" not in page_text(output, page_number=0)


def test_unknown_page_at_render_time_is_invalid(engine, blank_pdf):
    mapping = parse_mapping([definition(id="p5", dataKey="v", page=5)])
    with pytest.raises(InvalidDocument):
        engine.render(blank_pdf, mapping, {"v": "x"})


def test_render_rejects_non_pdf(engine):
    with pytest.raises(InvalidDocument):
        engine.render(b"not a pdf", [], {})


def test_render_does_not_mutate_input(engine, form_pdf):
    original = bytes(form_pdf)
    mapping = parse_mapping([definition(id="company", dataKey="n", pdfFieldName="company_name")])
    engine.render(form_pdf, mapping, {"n": "Acme"})
    assert form_pdf == original
