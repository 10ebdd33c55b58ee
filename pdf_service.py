# FastAPI microservice exposing POST /generate and POST /preview
# Inputs: JSON body {"template": [...blocks], "project_data": {...}, "settings": {...}}
# Outputs: streams back the print-mode PDF, or the print HTML for preview

import io
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import HTMLResponse, StreamingResponse
from pydantic import BaseModel, Field

from doc_generator import DocGenerator, RenderContext
from composition.models import DisplaySettings, OverlaySnapshot

app = FastAPI(title="Quote Document PDF Generator")


class GenerateRequest(BaseModel):
    template: Union[List[Dict[str, Any]], Dict[str, Any]] = Field(default_factory=list)
    project_data: Dict[str, Any] = Field(default_factory=dict)
    settings: Optional[DisplaySettings] = None
    overlay: Optional[OverlaySnapshot] = None
    comparison: Optional[Dict[str, Any]] = None


def _print_document(body: GenerateRequest, gen: DocGenerator):
    context = RenderContext.from_config(
        mode="print",
        settings=body.settings,
        overlay=body.overlay,
        comparison=body.comparison,
    )
    return gen.render(body.template, body.project_data, context)


@app.post("/generate")
def generate(body: GenerateRequest, filename: str = Query("quote.pdf")):
    gen = DocGenerator()
    document = _print_document(body, gen)

    with tempfile.TemporaryDirectory() as tmpdir:
        pdf_path = Path(tmpdir) / "quote.pdf"
        try:
            gen.render_pdf(document, str(pdf_path))
        except RuntimeError as e:
            raise HTTPException(503, str(e))
        buf = io.BytesIO(pdf_path.read_bytes())

    return StreamingResponse(
        buf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@app.post("/preview", response_class=HTMLResponse)
def preview(body: GenerateRequest):
    return HTMLResponse(_print_document(body, DocGenerator()).html)


# ---- Optional helpers for Flask apps (importable from document_api.py) ----

def generate_pdf(template, project_data, *, context: Optional[RenderContext] = None) -> bytes:
    """
    Render a print-mode PDF in a temp dir and return its bytes.
    Designed to be used from Flask routes.
    """
    context = context or RenderContext.from_config()
    if context.mode != "print":
        context = context.model_copy(update={"mode": "print"})
    gen = DocGenerator()
    document = gen.render(template, project_data, context)

    with tempfile.TemporaryDirectory() as tmpdir:
        out_pdf = Path(tmpdir) / "quote.pdf"
        gen.render_pdf(document, str(out_pdf))
        return out_pdf.read_bytes()
