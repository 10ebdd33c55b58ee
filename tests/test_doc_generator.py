"""
Tests for document assembly.

Checks that:
1. Rendering twice gives identical HTML
2. Print and interactive modes compute identical numbers
3. Unknown blocks and failing renderers leave placeholders, not crashes
4. Overlay exclusions and image overrides show up in the output
"""

import sys
import os
import json
from datetime import datetime, timezone

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from doc_generator import DocGenerator, RenderContext, main
from composition.models import OverlaySnapshot


NOW = datetime(2024, 3, 5, 12, 0, tzinfo=timezone.utc)


def sample_template():
    return [
        {"id": "settings", "type": "document-settings", "content": {"pageSize": "A4", "marginTop": 12}},
        {"id": "header", "type": "header", "content": {"documentTitle": "Quote for {{ client_name }}"}},
        {"id": "client", "type": "client-info"},
        {"id": "products", "type": "products", "content": {"title": "Window Treatments"}},
        {"id": "totals", "type": "totals"},
        {"id": "terms", "type": "terms-conditions", "content": {"term1": "Valid until {{ valid_until }}"}},
        {"id": "footer", "type": "footer"},
    ]


def sample_project_data():
    return {
        "project": {"name": "Smith Residence", "quote_number": "Q-7"},
        "client": {"name": "Jane <Smith>"},
        "businessSettings": {"company_name": "Drape & Co", "currency": "USD"},
        "items": [
            {
                "id": "p1",
                "name": "Curtain Panel",
                "room_name": "Living Room",
                "total_cost": 170,
                "image_url": "https://example.com/p1.png",
                "children": [
                    {"name": "Fabric: Linen", "category": "fabric", "total": 100, "isChild": True},
                    {"name": "Lining Types: Blockout Lining", "category": "option", "total": 20,
                     "isChild": True},
                    {"name": "Lining Types Colour: White", "category": "option", "total": 0, "isChild": True},
                    {"name": "Hardware Type: Rod", "category": "hardware_accessory", "total": 0,
                     "isChild": True},
                    {"name": "Select Rod: Wooden Rod", "category": "hardware_accessory", "total": 50,
                     "isChild": True},
                ],
            },
            {"id": "p2", "name": "Roman Blind", "room_name": "Bedroom", "total_cost": 80},
            {"id": "s1", "name": "Installation", "total_cost": 50},
        ],
        "subtotal": 300,
        "taxAmount": 30,
        "total": 330,
        "payment": {"type": "deposit", "amount": 100},
    }


def render(mode="print", **context):
    ctx = RenderContext(mode=mode, now=NOW, **context)
    return DocGenerator().render(sample_template(), sample_project_data(), ctx)


def test_render_is_deterministic():
    assert render().html == render().html
    assert render("interactive").html == render("interactive").html


def test_settings_block_is_not_rendered_but_sets_page():
    doc = render()
    assert [b.id for b in doc.blocks] == ["header", "client", "products", "totals", "terms", "footer"]
    assert doc.page.margins.top == 12
    assert "@page" in doc.html
    assert "12mm" in doc.html


def test_print_and_interactive_numbers_agree():
    overlay = OverlaySnapshot(excluded_item_ids=["p2"])
    printed = render("print", overlay=overlay)
    interactive = render("interactive", overlay=overlay)
    assert [b.data for b in printed.blocks] == [b.data for b in interactive.blocks]


def test_line_items_data():
    data = render().block("products").data
    assert [room["name"] for room in data["rooms"]] == ["Living Room", "Bedroom"]
    living = data["rooms"][0]
    assert living["subtotal"] == 170
    panel = living["items"][0]
    assert panel["breakdown_total"] == 170
    assert [e["name"] for e in panel["breakdown"]] == ["Rod", "Fabric", "Lining Types"]
    assert data["services"] == [{"id": "s1", "name": "Installation", "total": 50}]
    assert data["services_subtotal"] == 50


def test_totals_data():
    data = render().block("totals").data
    assert data["subtotal"] == 300
    assert data["tax_amount"] == 30
    assert data["total"] == 330
    assert data["deposit_amount"] == 100
    assert data["balance_due"] == 230
    assert "comparison_total" not in data


def test_comparison_adds_difference():
    previous = sample_project_data()
    previous["total"] = 300
    doc = render(comparison=previous)
    data = doc.block("totals").data
    assert data["comparison_total"] == 300
    assert data["difference"] == 30
    assert "Previous total" in doc.block("totals").html


def test_tokens_are_substituted_and_escaped():
    doc = render()
    header = doc.block("header").html
    assert "Quote for Jane &lt;Smith&gt;" in header
    assert "{{" not in doc.html


def test_interactive_mode_has_affordances_print_mode_does_not():
    overlay = OverlaySnapshot(excluded_item_ids=["p2"])
    interactive = render("interactive", overlay=overlay).block("products").html
    printed = render("print", overlay=overlay).block("products").html

    assert 'data-action="toggle-exclusion"' in interactive
    assert 'contenteditable="true"' in interactive
    assert "is-excluded" in interactive
    assert 'data-item-id="p2"' in interactive

    assert "contenteditable" not in printed
    assert "toggle-exclusion" not in printed
    assert "Roman Blind" not in printed


def test_excluded_item_is_display_only():
    overlay = OverlaySnapshot(excluded_item_ids=["p2"])
    doc = render(overlay=overlay)
    rooms = doc.block("products").data["rooms"]
    assert [room["name"] for room in rooms] == ["Living Room"]
    # tax and total still come from the project data
    assert doc.block("totals").data["total"] == 330


def test_image_override_replaces_item_image():
    overlay = OverlaySnapshot(image_overrides={"p1": "https://example.com/new.png"})
    html = render(overlay=overlay).block("products").html
    assert "https://example.com/new.png" in html
    assert "https://example.com/p1.png" not in html


def test_block_display_override_hides_breakdown():
    template = [{"id": "products", "type": "line-items", "content": {"layout": "simple"}}]
    doc = DocGenerator().render(template, sample_project_data(), RenderContext(now=NOW))
    panel = doc.block("products").data["rooms"][0]["items"][0]
    assert panel["breakdown"] == []


def test_elegant_theme_keeps_numbers():
    default = render()
    elegant = render(theme="elegant")
    assert "item-card" in elegant.block("products").html
    assert [b.data for b in default.blocks] == [b.data for b in elegant.blocks]


def test_unknown_block_gets_placeholder():
    template = [{"id": "x", "type": "hologram"}, {"id": "t", "type": "text", "content": {"text": "Hi"}}]
    doc = DocGenerator().render(template, {}, RenderContext(now=NOW))
    assert [b.id for b in doc.blocks] == ["x", "t"]
    assert "block-unknown" in doc.block("x").html
    assert doc.block("x").data == {}
    assert "Hi" in doc.block("t").html


def test_failing_renderer_is_contained():
    gen = DocGenerator()

    def explode(block, content, state):
        raise RuntimeError("boom")

    gen._renderers["totals"] = explode
    doc = gen.render(sample_template(), sample_project_data(), RenderContext(now=NOW))
    assert "could not be rendered" in doc.block("totals").html
    assert doc.block("footer") is not None


def test_empty_project_data_renders():
    doc = DocGenerator().render(sample_template(), None, RenderContext())
    assert len(doc.blocks) == 6
    assert doc.block("totals").data["total"] is None


def test_render_pdf_requires_print_mode():
    doc = render("interactive")
    with pytest.raises(ValueError):
        DocGenerator().render_pdf(doc, "unused.pdf")


def test_cli_writes_html(tmp_path):
    template_path = tmp_path / "template.json"
    data_path = tmp_path / "data.json"
    template_path.write_text(json.dumps(sample_template()))
    data_path.write_text(json.dumps(sample_project_data()))

    exit_code = main([
        "--template", str(template_path),
        "--data", str(data_path),
        "--out", str(tmp_path / "out"),
        "--html-only",
    ])

    assert exit_code == 0
    html = (tmp_path / "out" / "quote.html").read_text(encoding="utf-8")
    assert "Window Treatments" in html
