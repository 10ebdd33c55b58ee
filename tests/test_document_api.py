"""
Tests for the document API blueprint using Flask's test client.
"""

import sys
import os
import re

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app import create_app
from DatabaseConfig import BlockDataStore, get_engine
from enhanced_error_handler import PersistenceError
import pdf_service


TEMPLATE = [
    {"id": "header", "type": "header", "content": {"documentTitle": "Quote"}},
    {"id": "products", "type": "products"},
    {"id": "totals", "type": "totals"},
]

PROJECT_DATA = {
    "businessSettings": {"company_name": "Drape & Co", "currency": "USD"},
    "items": [
        {"id": "p1", "name": "Curtain Panel", "room_name": "Living Room", "total_cost": 170},
        {"id": "p2", "name": "Roman Blind", "room_name": "Bedroom", "total_cost": 80},
    ],
    "subtotal": 250,
    "total": 250,
}


class FailingStore(BlockDataStore):
    def save(self, document_id, block_id, key, value):
        raise PersistenceError("disk full")


def make_client(store):
    app = create_app({'OVERLAY_DEBOUNCE_SECONDS': 0, 'FETCH_TIMEOUT_SECONDS': 5}, store=store)
    app.testing = True
    return app, app.test_client()


@pytest.fixture
def store():
    return BlockDataStore(get_engine("sqlite://"))


@pytest.fixture
def api(store):
    app, client = make_client(store)
    yield app, client
    app.extensions['document_api'].close()


def render(client, **extra):
    body = {"template": TEMPLATE, "project_data": PROJECT_DATA, **extra}
    response = client.post('/api/documents/render', json=body)
    assert response.status_code == 200
    return response.get_json()["document"]


def block(document, block_id):
    return next(b for b in document["blocks"] if b["id"] == block_id)


def test_render_interactive_by_default(api):
    _, client = api
    document = render(client)
    assert document["mode"] == "interactive"
    assert [b["id"] for b in document["blocks"]] == ["header", "products", "totals"]
    assert 'data-action="toggle-exclusion"' in document["html"]
    assert block(document, "totals")["data"]["total"] == 250


def test_render_rejects_bad_requests(api):
    _, client = api
    assert client.post('/api/documents/render', data="nope").status_code == 400
    response = client.post('/api/documents/render', json={"template": [], "mode": "sideways"})
    assert response.status_code == 400
    assert response.get_json()["success"] is False


def test_exclusion_toggle_round_trip(api, store):
    app, client = api
    response = client.post('/api/documents/doc-1/blocks/products/exclusions/p2')
    assert response.get_json() == {
        "success": True, "item_id": "p2", "excluded": True, "excluded_item_ids": ["p2"],
    }

    document = render(client, document_id="doc-1", mode="print")
    rooms = block(document, "products")["data"]["rooms"]
    assert [room["name"] for room in rooms] == ["Living Room"]
    # display only: the total is still the project total
    assert block(document, "totals")["data"]["total"] == 250

    app.extensions['document_api'].flush("doc-1", timeout=5)
    assert store.load("doc-1", "products") == {"excluded_item_ids": ["p2"]}

    response = client.post('/api/documents/doc-1/blocks/products/exclusions/p2')
    assert response.get_json()["excluded"] is False


def test_image_override(api):
    _, client = api
    url = '/api/documents/doc-1/blocks/products/images/p1'
    response = client.put(url, json={"url": "https://example.com/new.png"})
    assert response.get_json()["image_overrides"] == {"p1": "https://example.com/new.png"}

    document = render(client, document_id="doc-1")
    assert "https://example.com/new.png" in block(document, "products")["html"]

    assert client.put(url, json={"url": 5}).status_code == 400
    assert client.put(url, json={}).status_code == 400

    response = client.delete(url)
    assert response.get_json()["image_overrides"] == {}


def test_text_edit_applies_to_render(api, store):
    app, client = api
    response = client.put('/api/documents/doc-1/blocks/header/text',
                          json={"field": "documentTitle", "value": "Revised Quote"})
    assert response.status_code == 200

    document = render(client, document_id="doc-1")
    assert "Revised Quote" in block(document, "header")["html"]

    app.extensions['document_api'].flush("doc-1", timeout=5)
    assert store.load("doc-1", "header") == {"documentTitle": "Revised Quote"}

    assert client.put('/api/documents/doc-1/blocks/header/text', json={"value": "x"}).status_code == 400


def test_saved_text_is_used_by_a_fresh_app(store):
    store.save("doc-9", "header", "documentTitle", "From Storage")
    app, client = make_client(store)
    try:
        document = render(client, document_id="doc-9")
        assert "From Storage" in block(document, "header")["html"]
    finally:
        app.extensions['document_api'].close()


def test_failed_persistence_is_reported():
    app, client = make_client(FailingStore(get_engine("sqlite://")))
    try:
        client.post('/api/documents/doc-1/blocks/products/exclusions/p1')
        app.extensions['document_api'].flush("doc-1", timeout=5)

        notes = client.get('/api/documents/doc-1/notifications').get_json()["notifications"]
        assert notes == ["Your change to excluded item ids could not be saved."]
        assert client.get('/api/documents/doc-1/notifications').get_json()["notifications"] == []

        # optimistic state is kept
        document = render(client, document_id="doc-1", mode="print")
        assert [r["name"] for r in block(document, "products")["data"]["rooms"]] == ["Bedroom"]
    finally:
        app.extensions['document_api'].close()


def test_comparison_selection(api, store):
    _, client = api
    store.save_project_snapshot("proj-1", "v1", {"total": 200})
    store.save_project_snapshot("proj-1", "v2", {"total": 220})

    assert client.post('/api/documents/doc-1/comparison', json={"project_id": "proj-1"}).status_code == 400
    client.post('/api/documents/doc-1/comparison', json={"project_id": "proj-1", "version": "v1"})
    response = client.post('/api/documents/doc-1/comparison', json={"project_id": "proj-1", "version": "v2"})
    assert response.get_json()["generation"] == 2

    totals = block(render(client, document_id="doc-1"), "totals")["data"]
    assert totals["comparison_total"] == 220
    assert totals["difference"] == 30


def test_pdf_export(api, monkeypatch):
    _, client = api
    captured = {}

    def fake_generate_pdf(template, project_data, *, context=None):
        captured["mode"] = context.mode
        return b"%PDF-1.4 fake"

    monkeypatch.setattr(pdf_service, "generate_pdf", fake_generate_pdf)
    response = client.post('/api/documents/doc-1/pdf', json={"template": TEMPLATE, "project_data": PROJECT_DATA})
    assert response.status_code == 200
    assert response.mimetype == "application/pdf"
    assert response.data.startswith(b"%PDF")
    assert captured["mode"] == "print"


def test_pdf_export_without_renderer(api, monkeypatch):
    _, client = api

    def no_renderer(template, project_data, *, context=None):
        raise RuntimeError("No PDF renderers available")

    monkeypatch.setattr(pdf_service, "generate_pdf", no_renderer)
    response = client.post('/api/documents/doc-1/pdf', json={"template": TEMPLATE})
    assert response.status_code == 503
    assert response.get_json()["success"] is False


def test_tokens_listing(api):
    _, client = api
    data = client.get('/api/documents/tokens').get_json()
    assert "client_name" in data["tokens"]
    assert "line-items" in data["block_types"]
    assert data["block_aliases"]["products"] == "line-items"


def test_health(api):
    _, client = api
    data = client.get('/health').get_json()
    assert data["database"]["connection"] is True


def test_pdf_export_busy(api, monkeypatch):
    import concurrency_manager

    _, client = api
    monkeypatch.setattr(concurrency_manager.export_slots, "max_concurrent", 0)
    response = client.post('/api/documents/doc-1/pdf', json={"template": TEMPLATE})
    assert response.status_code == 503
    assert response.get_json()["success"] is False


def test_dates_fall_back_to_today(api):
    _, client = api
    response = client.post('/api/documents/render', json={
        "template": [{"id": "t", "type": "text", "content": {"text": "Date: [{{ date }}] Valid: [{{ valid_until }}]"}}],
        "project_data": {"project": {"quote_number": "Q-1"}},
    })
    html = block(response.get_json()["document"], "t")["html"]
    assert "Date: []" not in html
    assert re.search(r"Date: \[\d{2}/\d{2}/\d{4}\] Valid: \[\d{2}/\d{2}/\d{4}\]", html)


def test_render_returns_block_html(api):
    _, client = api
    document = render(client)
    assert all(b["html"] for b in document["blocks"])
    assert "Curtain Panel" in block(document, "products")["html"]
