"""
Tests for the FastAPI PDF service. PDF rendering itself is replaced with a
stub so no browser or native library is needed.
"""

import sys
import os
from pathlib import Path

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient

import pdf_service
from doc_generator import DocGenerator


TEMPLATE = [
    {"id": "header", "type": "header", "content": {"documentTitle": "Quote {{ quote_number }}"}},
    {"id": "products", "type": "line-items"},
]

PROJECT_DATA = {
    "project": {"quote_number": "Q-55"},
    "items": [{"id": "p1", "name": "Roller Blind", "total_cost": 120}],
}


def fake_render_pdf(self, document, out_pdf, *, base_url=None):
    assert document.mode == "print"
    Path(out_pdf).write_bytes(b"%PDF-1.4\n" + document.html.encode("utf-8"))
    return out_pdf


def test_generate_streams_pdf(monkeypatch):
    monkeypatch.setattr(DocGenerator, "render_pdf", fake_render_pdf)
    client = TestClient(pdf_service.app)

    response = client.post("/generate", json={"template": TEMPLATE, "project_data": PROJECT_DATA})

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert 'filename="quote.pdf"' in response.headers["content-disposition"]
    assert response.content.startswith(b"%PDF")
    assert b"Quote Q-55" in response.content


def test_generate_reports_missing_renderer(monkeypatch):
    def no_renderer(self, document, out_pdf, *, base_url=None):
        raise RuntimeError("No PDF renderers available")

    monkeypatch.setattr(DocGenerator, "render_pdf", no_renderer)
    client = TestClient(pdf_service.app)

    response = client.post("/generate", json={"template": TEMPLATE, "project_data": PROJECT_DATA})
    assert response.status_code == 503


def test_preview_returns_print_html():
    client = TestClient(pdf_service.app)
    response = client.post("/preview", json={
        "template": TEMPLATE,
        "project_data": PROJECT_DATA,
        "overlay": {"excluded_item_ids": ["p1"]},
    })

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert "@page" in response.text
    assert "contenteditable" not in response.text.split("</style>")[1]
    assert "Roller Blind" not in response.text


def test_generate_pdf_helper_forces_print_mode(monkeypatch):
    monkeypatch.setattr(DocGenerator, "render_pdf", fake_render_pdf)
    from doc_generator import RenderContext

    pdf = pdf_service.generate_pdf(TEMPLATE, PROJECT_DATA, context=RenderContext(mode="interactive"))
    assert pdf.startswith(b"%PDF")
    assert b"mode-print" in pdf
