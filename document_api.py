#!/usr/bin/env python3
"""
Document API - render block templates and edit per-document overlay state
"""

import io
import threading
from typing import Any, Dict, List, Optional

from flask import Blueprint, request, jsonify, current_app, send_file

from composition.blocks import BLOCK_TYPES, BLOCK_ALIASES, parse_template
from composition.models import DisplaySettings, OverlaySnapshot
from composition.overlay import EditableOverlay, EXCLUDED_KEY, IMAGE_OVERRIDES_KEY
from composition.tokens import TOKEN_NAMES
from concurrency_manager import LatestOnlyFetcher, limit_concurrent_exports
from DatabaseConfig import BlockDataStore
from deployment_config import DeploymentConfig
from doc_generator import DocGenerator, RenderContext
from enhanced_error_handler import create_error_response, error_handler
import pdf_service

# Create Blueprint for the document API
document_bp = Blueprint('document_api', __name__, url_prefix='/api/documents')

OVERLAY_KEYS = (EXCLUDED_KEY, IMAGE_OVERRIDES_KEY)


class DocumentService:
    """Per-application registry of overlays, notifications and comparison fetchers"""

    def __init__(self, store: BlockDataStore, *, debounce_seconds: float = 1.0, fetch_workers: int = 2,
                 fetch_timeout: float = 10.0):
        self.store = store
        self.debounce_seconds = debounce_seconds
        self.fetch_workers = fetch_workers
        self.fetch_timeout = fetch_timeout
        self.generator = DocGenerator()
        self._lock = threading.Lock()
        self._overlays: Dict[tuple, EditableOverlay] = {}
        self._notifications: Dict[str, List[str]] = {}
        self._fetchers: Dict[str, LatestOnlyFetcher] = {}

    # ----------------------- overlays -----------------------

    def overlay(self, doc_id: str, block_id: str) -> EditableOverlay:
        key = (str(doc_id), str(block_id))
        with self._lock:
            existing = self._overlays.get(key)
            if existing is not None:
                return existing
        saved = self.store.load(doc_id, block_id)
        with self._lock:
            if key not in self._overlays:
                self._overlays[key] = EditableOverlay.from_saved(
                    block_id,
                    saved,
                    self.store.persist_fn(doc_id),
                    notify=lambda message: self._notify(doc_id, message),
                    debounce_seconds=self.debounce_seconds,
                )
            return self._overlays[key]

    def _document_overlays(self, doc_id: str) -> List[EditableOverlay]:
        with self._lock:
            return [o for (d, _), o in sorted(self._overlays.items(), key=lambda kv: kv[0]) if d == str(doc_id)]

    def snapshot(self, doc_id: str) -> OverlaySnapshot:
        """Union of every products block's exclusions and image overrides for doc_id."""
        excluded = set()
        images: Dict[str, Optional[str]] = {}
        # live overlays are ahead of the store while writes are queued
        live = {o.block_id: o.snapshot() for o in self._document_overlays(doc_id)}
        for block_id, values in sorted(self.store.load(doc_id).items()):
            if block_id in live:
                continue
            if isinstance(values.get(EXCLUDED_KEY), list):
                excluded.update(str(i) for i in values[EXCLUDED_KEY])
            if isinstance(values.get(IMAGE_OVERRIDES_KEY), dict):
                images.update(values[IMAGE_OVERRIDES_KEY])
        for snap in live.values():
            excluded.update(snap.excluded_item_ids)
            images.update(snap.image_overrides)
        return OverlaySnapshot(excluded_item_ids=excluded, image_overrides=images)

    def text_edits(self, doc_id: str) -> Dict[str, Dict[str, Any]]:
        edits: Dict[str, Dict[str, Any]] = {}
        for block_id, values in self.store.load(doc_id).items():
            for key, value in values.items():
                if key not in OVERLAY_KEYS:
                    edits.setdefault(block_id, {})[key] = value
        for overlay in self._document_overlays(doc_id):
            for block_id, fields in overlay.text_edits().items():
                edits.setdefault(block_id, {}).update(fields)
        return edits

    def apply_text_edits(self, doc_id: str, template) -> List[Dict[str, Any]]:
        """Template blocks with saved and pending text edits written into their content."""
        edits = self.text_edits(doc_id)
        blocks = []
        for block in parse_template(template):
            data = block.model_dump()
            if block.id in edits:
                data['content'] = {**block.content, **edits[block.id]}
            blocks.append(data)
        return blocks

    def flush(self, doc_id: Optional[str] = None, timeout: Optional[float] = None):
        for (d, _), overlay in list(self._overlays.items()):
            if doc_id is None or d == str(doc_id):
                overlay.flush(timeout)

    # ----------------------- notifications -----------------------

    def _notify(self, doc_id: str, message: str):
        with self._lock:
            self._notifications.setdefault(str(doc_id), []).append(message)

    def pop_notifications(self, doc_id: str) -> List[str]:
        with self._lock:
            return self._notifications.pop(str(doc_id), [])

    # ----------------------- comparison -----------------------

    def select_comparison(self, doc_id: str, project_id: str, version: str) -> int:
        with self._lock:
            fetcher = self._fetchers.get(str(doc_id))
            if fetcher is None:
                fetcher = LatestOnlyFetcher(lambda key: self.store.get_project_snapshot(*key),
                                            max_workers=self.fetch_workers)
                self._fetchers[str(doc_id)] = fetcher
        return fetcher.select((str(project_id), str(version)))

    def comparison(self, doc_id: Optional[str]):
        if doc_id is None:
            return None
        with self._lock:
            fetcher = self._fetchers.get(str(doc_id))
        if fetcher is None:
            return None
        return fetcher.current(timeout=self.fetch_timeout)

    # ----------------------- rendering -----------------------

    def context(self, payload: Dict[str, Any], doc_id: Optional[str], mode: str) -> RenderContext:
        return RenderContext.from_config(
            mode=mode,
            settings=DisplaySettings.model_validate(payload.get('settings') or {}),
            overlay=self.snapshot(doc_id) if doc_id else OverlaySnapshot(),
            comparison=payload.get('comparison') or self.comparison(doc_id),
        )

    def close(self):
        with self._lock:
            overlays = list(self._overlays.values())
            fetchers = list(self._fetchers.values())
            self._overlays.clear()
            self._fetchers.clear()
        for overlay in overlays:
            overlay.close()
        for fetcher in fetchers:
            fetcher.close()


def _service() -> DocumentService:
    return current_app.extensions['document_api']


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


def _error(message, code, details=None):
    response, status = create_error_response(message, code, details)
    return jsonify(response), status


def _document_payload(document) -> Dict[str, Any]:
    return {
        'mode': document.mode,
        'page': document.page.model_dump(mode='json'),
        'blocks': [{'id': b.id, 'type': b.type, 'html': b.html, 'data': b.data} for b in document.blocks],
        'html': document.html,
    }


@document_bp.route('/render', methods=['POST'])
def render_document():
    """
    Render a template against project data
    Body: {template, project_data, mode?, settings?, document_id?, comparison?}
    """
    data = _json_body()
    if data is None:
        return _error('No JSON data provided', 400)

    mode = data.get('mode', 'interactive')
    if mode not in ('interactive', 'print'):
        return _error(f'Unknown mode: {mode}', 400)

    service = _service()
    doc_id = data.get('document_id')
    template = data.get('template', [])
    try:
        if doc_id:
            template = service.apply_text_edits(doc_id, template)
        document = service.generator.render(template, data.get('project_data') or {},
                                            service.context(data, doc_id, mode))
    except Exception as e:
        error_handler.log_error('render_error', e, {'document_id': doc_id})
        current_app.logger.error(f"Render failed for document {doc_id}: {e}")
        return _error('Document could not be rendered', 500, {'document_id': doc_id})

    current_app.logger.info(f"Rendered {len(document.blocks)} blocks in {mode} mode")
    return jsonify({'success': True, 'document': _document_payload(document)})


@document_bp.route('/<doc_id>/blocks/<block_id>/exclusions/<item_id>', methods=['POST'])
def toggle_exclusion(doc_id, block_id, item_id):
    overlay = _service().overlay(doc_id, block_id)
    excluded = overlay.toggle_exclusion(item_id)
    current_app.logger.info(f"Item {item_id} in {doc_id}/{block_id} excluded={excluded}")
    return jsonify({
        'success': True,
        'item_id': item_id,
        'excluded': excluded,
        'excluded_item_ids': sorted(overlay.snapshot().excluded_item_ids),
    })


@document_bp.route('/<doc_id>/blocks/<block_id>/images/<item_id>', methods=['PUT', 'DELETE'])
def image_override(doc_id, block_id, item_id):
    """PUT {url} sets the override (null hides the image); DELETE restores the item's own image"""
    overlay = _service().overlay(doc_id, block_id)
    if request.method == 'DELETE':
        overlay.clear_image_override(item_id)
    else:
        data = _json_body()
        if data is None or 'url' not in data:
            return _error('Body must contain url', 400)
        url = data['url']
        if url is not None and not isinstance(url, str):
            return _error('url must be a string or null', 400)
        overlay.set_image_override(item_id, url)
    return jsonify({'success': True, 'image_overrides': overlay.snapshot().image_overrides})


@document_bp.route('/<doc_id>/blocks/<block_id>/text', methods=['PUT'])
def update_text(doc_id, block_id):
    """Body: {field, value, overlay_block_id?}"""
    data = _json_body()
    if data is None or not data.get('field'):
        return _error('Body must contain field', 400)
    value = data.get('value')
    if value is not None and not isinstance(value, str):
        return _error('value must be a string', 400)

    overlay = _service().overlay(doc_id, data.get('overlay_block_id') or block_id)
    overlay.update_text(block_id, data['field'], value or "")
    return jsonify({'success': True, 'block_id': block_id, 'field': data['field']})


@document_bp.route('/<doc_id>/notifications', methods=['GET'])
def notifications(doc_id):
    return jsonify({'success': True, 'notifications': _service().pop_notifications(doc_id)})


@document_bp.route('/<doc_id>/comparison', methods=['POST'])
def select_comparison(doc_id):
    """Body: {project_id, version}; later renders of doc_id compare against it"""
    data = _json_body()
    if data is None or not data.get('project_id') or not data.get('version'):
        return _error('Body must contain project_id and version', 400)
    generation = _service().select_comparison(doc_id, data['project_id'], data['version'])
    return jsonify({'success': True, 'generation': generation})


@document_bp.route('/<doc_id>/pdf', methods=['POST'])
@limit_concurrent_exports
def export_pdf(doc_id):
    data = _json_body()
    if data is None:
        return _error('No JSON data provided', 400)

    service = _service()
    template = service.apply_text_edits(doc_id, data.get('template', []))
    try:
        pdf_bytes = pdf_service.generate_pdf(template, data.get('project_data') or {},
                                             context=service.context(data, doc_id, 'print'))
    except RuntimeError as e:
        current_app.logger.error(f"PDF export failed for {doc_id}: {e}")
        return _error('No PDF renderer available', 503, {'reason': str(e)})

    return send_file(
        io.BytesIO(pdf_bytes),
        mimetype='application/pdf',
        as_attachment=True,
        download_name=f"{data.get('filename') or doc_id}.pdf",
    )


@document_bp.route('/tokens', methods=['GET'])
def list_tokens():
    return jsonify({
        'success': True,
        'tokens': list(TOKEN_NAMES),
        'block_types': list(BLOCK_TYPES),
        'block_aliases': dict(BLOCK_ALIASES),
    })


def register_document_api(app, store: Optional[BlockDataStore] = None):
    """Attach the blueprint and its DocumentService to app"""
    service = DocumentService(
        store or BlockDataStore(),
        debounce_seconds=app.config.get('OVERLAY_DEBOUNCE_SECONDS', DeploymentConfig.OVERLAY_DEBOUNCE_SECONDS),
        fetch_workers=app.config.get('FETCH_WORKERS', DeploymentConfig.FETCH_WORKERS),
        fetch_timeout=app.config.get('FETCH_TIMEOUT_SECONDS', DeploymentConfig.FETCH_TIMEOUT_SECONDS),
    )
    app.extensions['document_api'] = service
    app.register_blueprint(document_bp)
    return service
