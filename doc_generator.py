# doc_generator.py
"""
DEVNOTE: block-template document assembly with pluggable PDF renderers
======================================================================

A template is an ordered list of typed blocks.  DocGenerator.render() walks
the blocks, resolves each one's content and display settings, and renders it
with Jinja2 into either:

* interactive mode - edit affordances (exclusion toggles, image overrides,
  contenteditable text) and excluded rows kept visible but dimmed;
* print mode - no affordances, wrapped in a page with @page geometry.

Both modes share one computation path, so every number in RenderedBlock.data
is identical between them.

PDF export hands a print-mode Document to the first renderer that works:
1. PRIMARY: Playwright + Chromium
2. FALLBACK: WeasyPrint (if Cairo/Pango available)
3. FALLBACK: wkhtmltopdf via pdfkit (if binary in PATH)

Python: 3.10+
"""

from __future__ import annotations
import sys
import json
import logging
import subprocess
from pathlib import Path
from typing import Dict, Any, Optional, List, Literal, Tuple
from datetime import datetime, timezone

# PDF renderer imports
try:
    from playwright.sync_api import sync_playwright
    _HAVE_PLAYWRIGHT = True
except ImportError:
    _HAVE_PLAYWRIGHT = False

try:
    from weasyprint import HTML
    _HAVE_WEASY = True
except (ImportError, OSError):
    _HAVE_WEASY = False

try:
    import pdfkit
    _HAVE_WKHTMLTOPDF = True
except ImportError:
    _HAVE_WKHTMLTOPDF = False

from pydantic import BaseModel, Field, field_validator

# Third-party deps:
#   pip install jinja2 pydantic
#   optional PDF: pip install playwright weasyprint pdfkit
from jinja2 import Environment, DictLoader, select_autoescape

from composition.models import ProjectData, DisplaySettings, OverlaySnapshot, LineItem
from composition.blocks import (
    Block,
    PageSettings,
    parse_template,
    resolve_content,
    page_settings,
)
from composition.breakdown import group_breakdown
from composition.partition import partition_items, is_excluded
from composition.tokens import TokenResolver, join_present
from composition.formatting import format_currency, format_quantity, sum_money, to_decimal
from enhanced_error_handler import error_handler, log_performance, UnknownBlockTypeError
from deployment_config import DeploymentConfig

logger = logging.getLogger(__name__)


# ----------------------- Render inputs & outputs -----------------------

class RenderContext(BaseModel):
    """Everything a render pass needs besides the template and the project data."""

    mode: Literal["interactive", "print"] = "print"
    settings: DisplaySettings = Field(default_factory=DisplaySettings)
    overlay: OverlaySnapshot = Field(default_factory=OverlaySnapshot)
    now: Optional[datetime] = None
    default_currency: str = "USD"
    default_timezone: str = "UTC"
    default_date_format: Optional[str] = None
    theme: Optional[Literal["default", "elegant"]] = None
    comparison: Optional[ProjectData] = None
    page_defaults: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("comparison", mode="before")
    @classmethod
    def _comparison(cls, value):
        if value is None or isinstance(value, ProjectData):
            return value
        return ProjectData.from_raw(value)

    @field_validator("settings", mode="before")
    @classmethod
    def _settings(cls, value):
        return DisplaySettings() if value is None else value

    @field_validator("overlay", mode="before")
    @classmethod
    def _overlay(cls, value):
        return OverlaySnapshot() if value is None else value

    @classmethod
    def from_config(cls, **overrides) -> "RenderContext":
        """Context seeded from DeploymentConfig defaults, with now set to the current UTC time unless given."""
        defaults = DeploymentConfig.render_defaults()
        values = {
            'default_currency': defaults['default_currency'],
            'default_timezone': defaults['default_timezone'],
            'default_date_format': defaults['default_date_format'],
            'theme': defaults['theme'] if defaults['theme'] in ("default", "elegant") else None,
            'page_defaults': DeploymentConfig.page_defaults(),
            'now': datetime.now(timezone.utc),
        }
        values.update(overrides)
        return cls(**values)

    @property
    def interactive(self) -> bool:
        return self.mode == "interactive"


class RenderedBlock(BaseModel):
    id: str
    type: str
    html: str
    data: Dict[str, Any] = Field(default_factory=dict)


class Document(BaseModel):
    mode: Literal["interactive", "print"]
    page: PageSettings
    blocks: List[RenderedBlock] = Field(default_factory=list)
    html: str = ""

    def block(self, block_id: str) -> Optional[RenderedBlock]:
        return next((b for b in self.blocks if b.id == block_id), None)


class _RenderState:
    """Per-pass values shared by block renderers."""

    def __init__(self, data: ProjectData, context: RenderContext, page: PageSettings):
        self.data = data
        self.context = context
        self.page = page
        self.theme = context.theme or page.theme or "default"
        self.resolver = TokenResolver(
            data,
            now=context.now,
            default_currency=context.default_currency,
            default_timezone=context.default_timezone,
            default_date_format=context.default_date_format,
        )
        self.currency = self.resolver.currency_code

    def money(self, value) -> str:
        return format_currency(value, self.currency)


# ----------------------- Renderer Classes -----------------------

def _margin_args(page: PageSettings) -> Dict[str, str]:
    m = page.margins
    return {"top": f"{m.top:g}mm", "right": f"{m.right:g}mm", "bottom": f"{m.bottom:g}mm", "left": f"{m.left:g}mm"}


class PlaywrightChromiumRenderer:
    """Primary renderer using Playwright + Chromium headless."""

    @staticmethod
    def ensure_playwright_installed():
        """Try to install chromium if not available."""
        try:
            with sync_playwright() as p:
                browser = p.chromium.launch()
                browser.close()
                return True
        except Exception:
            try:
                logger.info("Installing Playwright Chromium...")
                subprocess.run([sys.executable, "-m", "playwright", "install", "chromium"], check=True)
                return True
            except Exception as e:
                raise RuntimeError(
                    f"Playwright Chromium not available. Please run: python -m playwright install chromium\n"
                    f"Error: {e}"
                )

    @classmethod
    def print_pdf(cls, html_string: str, base_url: str, out_pdf: str, page_settings: PageSettings) -> str:
        """Generate PDF using Playwright + Chromium."""
        cls.ensure_playwright_installed()

        with sync_playwright() as p:
            browser = p.chromium.launch()
            page = browser.new_page()
            page.set_content(html_string, wait_until="networkidle")

            Path(out_pdf).parent.mkdir(parents=True, exist_ok=True)
            page.pdf(
                path=out_pdf,
                format=page_settings.size,
                landscape=page_settings.orientation == "landscape",
                margin=_margin_args(page_settings),
                display_header_footer=True,
                header_template="<div></div>",
                footer_template='<div style="font-size:10px; text-align:center; width:100%;">Page <span class="pageNumber"></span> of <span class="totalPages"></span></div>',
                print_background=True
            )
            browser.close()

        return out_pdf


class WeasyPrintRenderer:
    """Fallback renderer using WeasyPrint; page geometry comes from the @page rule."""

    @classmethod
    def write_pdf(cls, html_string: str, base_url: str, out_pdf: str, page_settings: PageSettings) -> str:
        """Generate PDF using WeasyPrint."""
        if not _HAVE_WEASY:
            raise RuntimeError("WeasyPrint not available. Install with: pip install weasyprint")

        Path(out_pdf).parent.mkdir(parents=True, exist_ok=True)
        HTML(string=html_string, base_url=base_url).write_pdf(out_pdf)
        return out_pdf


class WkhtmltopdfRenderer:
    """Fallback renderer using the wkhtmltopdf binary through pdfkit."""

    @classmethod
    def write_pdf(cls, html_string: str, base_url: str, out_pdf: str, page_settings: PageSettings) -> str:
        """Generate PDF using wkhtmltopdf."""
        if not _HAVE_WKHTMLTOPDF:
            raise RuntimeError("wkhtmltopdf not available. Install wkhtmltopdf and ensure it's in PATH.")

        Path(out_pdf).parent.mkdir(parents=True, exist_ok=True)
        margins = _margin_args(page_settings)
        options = {
            "page-size": page_settings.size,
            "orientation": page_settings.orientation.title(),
            "margin-top": margins["top"],
            "margin-right": margins["right"],
            "margin-bottom": margins["bottom"],
            "margin-left": margins["left"],
            "footer-center": "Page [page] of [topage]",
            "footer-font-size": "10",
            "encoding": "UTF-8",
            "quiet": "",
        }
        pdfkit.from_string(html_string, out_pdf, options=options)
        return out_pdf


# ----------------------- HTML Templates & CSS -----------------------

BLOCK_TEMPLATES = {
    "macros.html": r"""
{% macro editable(value, field, block_id, interactive, tag="span", cls="") -%}
{%- if interactive -%}
<{{ tag }} class="editable {{ cls }}" contenteditable="true" data-block-id="{{ block_id }}" data-field="{{ field }}">{{ value }}</{{ tag }}>
{%- elif value -%}
<{{ tag }} class="{{ cls }}">{{ value }}</{{ tag }}>
{%- endif -%}
{%- endmacro %}

{% macro item_actions(item, interactive, show_images) -%}
{%- if interactive -%}
<div class="item-actions">
  <button type="button" class="exclusion-toggle" data-action="toggle-exclusion" data-item-id="{{ item.id }}" aria-pressed="{{ 'true' if item.excluded else 'false' }}">{{ "Include" if item.excluded else "Exclude" }}</button>
  {%- if show_images %}
  <button type="button" class="image-override" data-action="replace-image" data-item-id="{{ item.id }}">Change image</button>
  {%- endif %}
</div>
{%- endif -%}
{%- endmacro %}

{% macro services_section(c, block_id, services, services_subtotal, money, interactive) -%}
{%- if services -%}
<div class="services">
  <h3 class="services-title">{{ editable(c.services_title, "servicesTitle", block_id, interactive) }}</h3>
  <table class="items-table services-table">
    <tbody>
    {%- for item in services %}
      <tr class="service-row{% if item.excluded %} is-excluded{% endif %}"{% if interactive %} data-item-id="{{ item.id }}"{% endif %}>
        <td class="item-name">{{ item.name }}{% if item.description %}<div class="item-description">{{ item.description }}</div>{% endif %}</td>
        <td class="num">{{ money(item.total) }}</td>
        {%- if interactive %}<td class="col-actions">{{ item_actions(item, interactive, false) }}</td>{% endif %}
      </tr>
    {%- endfor %}
    </tbody>
    <tfoot>
      <tr class="services-subtotal"><td>Services subtotal</td><td class="num">{{ money(services_subtotal) }}</td>{% if interactive %}<td></td>{% endif %}</tr>
    </tfoot>
  </table>
</div>
{%- endif -%}
{%- endmacro %}
""",

    "header.html": r"""{% from "macros.html" import editable %}
<header class="block block-header layout-{{ c.layout }}" data-block-id="{{ block_id }}">
  <div class="company">
    {%- if c.show_logo and logo_url %}
    <img class="logo logo-{{ c.logo_size }}" src="{{ logo_url }}" alt="Company Logo">
    {%- endif %}
    {%- if company_name %}<div class="company-name">{{ company_name }}</div>{% endif %}
    {%- if company_address %}<div class="company-address">{{ company_address }}</div>{% endif %}
    {%- if company_contact %}<div class="company-contact">{{ company_contact }}</div>{% endif %}
  </div>
  <div class="document-meta">
    <h1>{{ editable(c.document_title, "documentTitle", block_id, interactive) }}</h1>
    {%- if c.tagline or interactive %}
    <div class="tagline">{{ editable(c.tagline, "tagline", block_id, interactive) }}</div>
    {%- endif %}
    {%- if quote_number %}<div class="quote-number">{{ c.quote_number_label }} {{ quote_number }}</div>{% endif %}
    {%- if date %}<div class="quote-date">Date: {{ date }}</div>{% endif %}
    {%- if valid_until %}<div class="valid-until">Valid until: {{ valid_until }}</div>{% endif %}
  </div>
</header>
""",

    "client_info.html": r"""{% from "macros.html" import editable %}
<section class="block block-client-info" data-block-id="{{ block_id }}">
  <h3>{{ editable(c.title, "title", block_id, interactive) }}</h3>
  {%- if client_name %}<div class="client-name">{{ client_name }}</div>{% endif %}
  {%- if c.show_client_company and client_company %}<div class="client-company">{{ client_company }}</div>{% endif %}
  {%- if c.show_client_address and client_address %}<div class="client-address">{{ client_address }}</div>{% endif %}
  {%- if c.show_client_email and client_email %}<div class="client-email">{{ client_email }}</div>{% endif %}
  {%- if c.show_client_phone and client_phone %}<div class="client-phone">{{ client_phone }}</div>{% endif %}
</section>
""",

    "text.html": r"""{% from "macros.html" import editable %}
<section class="block block-text" data-block-id="{{ block_id }}">
  {%- if c.title or interactive %}
  <h3>{{ editable(c.title, "title", block_id, interactive) }}</h3>
  {%- endif %}
  {{ editable(c.text, "text", block_id, interactive, tag="div", cls="text-body") }}
</section>
""",

    "line_items_default.html": r"""{% from "macros.html" import editable, item_actions, services_section %}
<section class="block block-line-items theme-default layout-{{ settings.layout }}" data-block-id="{{ block_id }}">
  {%- if c.title or interactive %}
  <h2>{{ editable(c.title, "title", block_id, interactive) }}</h2>
  {%- endif %}
  {%- for room in rooms %}
  <div class="room" data-room="{{ room.name }}">
    {%- if room.name %}<h3 class="room-name">{{ room.name }}</h3>{% endif %}
    <table class="items-table">
      <thead>
        <tr>
          {%- if settings.show_images %}<th class="col-image"></th>{% endif %}
          <th>{{ c.header_description }}</th>
          <th class="num">{{ c.header_qty }}</th>
          <th class="num">{{ c.header_unit_price }}</th>
          <th class="num">{{ c.header_total }}</th>
          {%- if interactive %}<th class="col-actions"></th>{% endif %}
        </tr>
      </thead>
      <tbody>
      {%- for item in room.rows %}
        <tr class="item-row{% if item.excluded %} is-excluded{% endif %}"{% if interactive %} data-item-id="{{ item.id }}"{% endif %}>
          {%- if settings.show_images %}
          <td class="col-image">{% if item.image %}<img class="item-image" src="{{ item.image }}" alt="{{ item.name }}">{% endif %}</td>
          {%- endif %}
          <td class="item-name"><strong>{{ item.name }}</strong>{% if item.description %}<div class="item-description">{{ item.description }}</div>{% endif %}</td>
          <td class="num">{{ item.quantity }}</td>
          <td class="num">{{ money(item.unit_price) }}</td>
          <td class="num total-cell">{{ money(item.total) }}</td>
          {%- if interactive %}<td class="col-actions">{{ item_actions(item, interactive, settings.show_images) }}</td>{% endif %}
        </tr>
        {%- for entry in item.entries %}
        <tr class="breakdown-row{% if entry.isHardwareGroup %} hardware-group{% endif %}{% if item.excluded %} is-excluded{% endif %}">
          {%- if settings.show_images %}<td class="col-image"></td>{% endif %}
          <td class="breakdown-name">{{ entry.name }}{% if entry.description %}: <span class="breakdown-description">{{ entry.description }}</span>{% endif %}</td>
          <td class="num"></td>
          <td class="num"></td>
          <td class="num">{{ money(entry.total_cost) }}</td>
          {%- if interactive %}<td class="col-actions"></td>{% endif %}
        </tr>
        {%- endfor %}
      {%- endfor %}
      </tbody>
      <tfoot>
        <tr class="room-subtotal">
          <td colspan="{{ label_span }}">Subtotal{% if room.name %} ({{ room.name }}){% endif %}</td>
          <td class="num">{{ money(room.subtotal) }}</td>
          {%- if interactive %}<td class="col-actions"></td>{% endif %}
        </tr>
      </tfoot>
    </table>
  </div>
  {%- endfor %}
  {{ services_section(c, block_id, services, services_subtotal, money, interactive) }}
</section>
""",

    "line_items_elegant.html": r"""{% from "macros.html" import editable, item_actions, services_section %}
<section class="block block-line-items theme-elegant layout-{{ settings.layout }}" data-block-id="{{ block_id }}">
  {%- if c.title or interactive %}
  <h2 class="elegant-title">{{ editable(c.title, "title", block_id, interactive) }}</h2>
  {%- endif %}
  {%- for room in rooms %}
  <div class="room-card" data-room="{{ room.name }}">
    {%- if room.name %}<h3 class="room-name">{{ room.name }}</h3>{% endif %}
    {%- for item in room.rows %}
    <article class="item-card{% if item.excluded %} is-excluded{% endif %}"{% if interactive %} data-item-id="{{ item.id }}"{% endif %}>
      {%- if settings.show_images and item.image %}
      <img class="item-image" src="{{ item.image }}" alt="{{ item.name }}">
      {%- endif %}
      <div class="item-body">
        <div class="item-heading">
          <span class="item-name">{{ item.name }}</span>
          <span class="item-total">{{ money(item.total) }}</span>
        </div>
        {%- if item.quantity %}<div class="item-quantity">{{ c.header_qty }}: {{ item.quantity }}{% if item.unit_price is not none %} &middot; {{ money(item.unit_price) }}{% endif %}</div>{% endif %}
        {%- if item.description %}<p class="item-description">{{ item.description }}</p>{% endif %}
        {%- if item.entries %}
        <ul class="breakdown">
          {%- for entry in item.entries %}
          <li class="{% if entry.isHardwareGroup %}hardware-group{% endif %}">
            <span class="breakdown-name">{{ entry.name }}</span>
            {%- if entry.description %}<span class="breakdown-description">{{ entry.description }}</span>{% endif %}
            <span class="amount">{{ money(entry.total_cost) }}</span>
          </li>
          {%- endfor %}
        </ul>
        {%- endif %}
      </div>
      {{ item_actions(item, interactive, settings.show_images) }}
    </article>
    {%- endfor %}
    <div class="room-subtotal"><span>Subtotal{% if room.name %} ({{ room.name }}){% endif %}</span><span class="amount">{{ money(room.subtotal) }}</span></div>
  </div>
  {%- endfor %}
  {{ services_section(c, block_id, services, services_subtotal, money, interactive) }}
</section>
""",

    "totals_default.html": r"""{% from "macros.html" import editable %}
<section class="block block-totals theme-default" data-block-id="{{ block_id }}">
  {%- if c.title %}<h3>{{ editable(c.title, "title", block_id, interactive) }}</h3>{% endif %}
  <table class="totals-table">
    <tbody>
    {%- for row in rows %}
      <tr class="totals-row {{ row.cls }}"><th>{{ row.label }}</th><td class="num">{{ row.value }}</td></tr>
    {%- endfor %}
    </tbody>
  </table>
</section>
""",

    "totals_elegant.html": r"""{% from "macros.html" import editable %}
<section class="block block-totals theme-elegant" data-block-id="{{ block_id }}">
  <div class="totals-card">
    {%- if c.title %}<h3>{{ editable(c.title, "title", block_id, interactive) }}</h3>{% endif %}
    <dl class="totals-list">
    {%- for row in rows %}
      <div class="totals-row {{ row.cls }}"><dt>{{ row.label }}</dt><dd>{{ row.value }}</dd></div>
    {%- endfor %}
    </dl>
  </div>
</section>
""",

    "terms.html": r"""{% from "macros.html" import editable %}
<section class="block block-terms" data-block-id="{{ block_id }}">
  <h3>{{ editable(c.title, "title", block_id, interactive) }}</h3>
  {%- if terms %}
  <ol class="terms-list">
    {%- for term in terms %}
    <li>{{ editable(term, "term" ~ loop.index, block_id, interactive) }}</li>
    {%- endfor %}
  </ol>
  {%- endif %}
</section>
""",

    "signature.html": r"""{% from "macros.html" import editable %}
<section class="block block-signature" data-block-id="{{ block_id }}">
  <h3>{{ editable(c.title, "title", block_id, interactive) }}</h3>
  <p class="authorization">{{ editable(c.authorization_text, "authorizationText", block_id, interactive) }}</p>
  <div class="signature-lines">
    <div class="signature-line"><div class="line"></div><span>{{ c.client_signature_label }}</span></div>
    <div class="signature-line"><div class="line"></div><span>{{ c.company_signature_label }}</span></div>
    {%- if c.show_date %}<div class="signature-line"><div class="line"></div><span>Date</span></div>{% endif %}
  </div>
  {%- if c.thank_you_text or interactive %}
  <p class="thank-you">{{ editable(c.thank_you_text, "thankYouText", block_id, interactive) }}</p>
  {%- endif %}
</section>
""",

    "footer.html": r"""{% from "macros.html" import editable %}
<footer class="block block-footer" data-block-id="{{ block_id }}">
  {%- if c.text or interactive %}<div class="footer-text">{{ editable(c.text, "text", block_id, interactive) }}</div>{% endif %}
  {%- if c.show_contact and contact %}<div class="footer-contact">{{ contact }}</div>{% endif %}
  {%- if c.show_registration and registration %}<div class="footer-registration">{{ registration }}</div>{% endif %}
</footer>
""",

    "payment_details.html": r"""{% from "macros.html" import editable %}
<section class="block block-payment-details" data-block-id="{{ block_id }}">
  <h3>{{ editable(c.title, "title", block_id, interactive) }}</h3>
  {%- if c.payment_methods %}
  <div class="payment-methods">
    <h4>Payment Methods</h4>
    <ul>{% for method in c.payment_methods %}<li>{{ method }}</li>{% endfor %}</ul>
  </div>
  {%- endif %}
  {%- if c.payment_schedule %}
  <div class="payment-schedule">
    <h4>Payment Schedule</h4>
    <ul>{% for step in c.payment_schedule %}<li>{{ step }}</li>{% endfor %}</ul>
  </div>
  {%- endif %}
  {%- if c.show_deposit and deposit %}
  <div class="payment-amounts">
    <div class="deposit"><span>Deposit</span><span class="amount">{{ deposit }}</span></div>
    {%- if balance %}<div class="balance"><span>Balance due</span><span class="amount">{{ balance }}</span></div>{% endif %}
  </div>
  {%- endif %}
  {%- if c.show_bank_details and bank_details %}<div class="bank-details">{{ bank_details }}</div>{% endif %}
</section>
""",

    "installation_details.html": r"""{% from "macros.html" import editable %}
<section class="block block-installation-details" data-block-id="{{ block_id }}">
  <h3>{{ editable(c.title, "title", block_id, interactive) }}</h3>
  {%- if c.show_installation_date and installation_date %}<div class="installation-date">Scheduled: {{ installation_date }}</div>{% endif %}
  {%- if c.text or interactive %}{{ editable(c.text, "text", block_id, interactive, tag="div", cls="text-body") }}{% endif %}
  {%- if c.show_services and services %}
  <ul class="installation-services">
    {%- for service in services %}<li><span>{{ service.name }}</span> <span class="amount">{{ money(service.total) }}</span></li>{% endfor %}
  </ul>
  {%- endif %}
</section>
""",

    "project_scope.html": r"""{% from "macros.html" import editable %}
<section class="block block-project-scope" data-block-id="{{ block_id }}">
  <h3>{{ editable(c.title, "title", block_id, interactive) }}</h3>
  <div class="scope-columns">
    {%- if c.included %}
    <div class="scope-included"><h4>Included</h4><ul>{% for line in c.included %}<li>{{ line }}</li>{% endfor %}</ul></div>
    {%- endif %}
    {%- if c.excluded %}
    <div class="scope-excluded"><h4>Not included</h4><ul>{% for line in c.excluded %}<li>{{ line }}</li>{% endfor %}</ul></div>
    {%- endif %}
  </div>
</section>
""",

    "divider.html": r"""<hr class="block block-divider" data-block-id="{{ block_id }}" style="border: 0; border-top: {{ c.thickness }}px {{ c.style }} {{ c.color }};">
""",

    "spacer.html": r"""<div class="block block-spacer" data-block-id="{{ block_id }}" style="height: {{ c.height }}px;"></div>
""",

    "unknown.html": r"""<div class="block block-diagnostic block-unknown" data-block-id="{{ block_id }}" role="note">Unknown block type &ldquo;{{ block_type }}&rdquo; was skipped.</div>
""",

    "failed.html": r"""<div class="block block-diagnostic block-failed" data-block-id="{{ block_id }}" role="note">This {{ block_type }} block could not be rendered.</div>
""",

    "document.html": r"""<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{{ title }}</title>
<style>
{{ css|safe }}
{%- if mode == "print" %}
@page {
  size: {{ page.css_size() }};
  margin: {{ page.margins.css() }};
}
{%- endif %}
</style>
</head>
<body class="mode-{{ mode }} theme-{{ theme }}">
{%- if mode == "print" %}
<div class="page page-{{ page.size|lower }} {{ page.orientation }}"{% if page.background %} style="background: {{ page.background }};"{% endif %}>
{%- else %}
<div class="document document-interactive" data-mode="interactive"{% if page.background %} style="background: {{ page.background }};"{% endif %}>
{%- endif %}
{%- for block in blocks %}
{{ block.html|safe }}
{%- endfor %}
</div>
</body>
</html>
""",
}

CSS_DEFAULT = r"""
body {
  font-family: Helvetica, Arial, sans-serif;
  font-size: 11px;
  line-height: 1.35;
  color: #111;
  margin: 0;
  padding: 0;
}

.block { margin: 0 0 18px 0; }
.num { text-align: right; white-space: nowrap; }
.amount { font-variant-numeric: tabular-nums; }

/* Header */
.block-header {
  display: flex;
  justify-content: space-between;
  align-items: flex-start;
  padding-bottom: 10px;
  border-bottom: 2px solid #111;
}
.block-header.layout-centered { flex-direction: column; align-items: center; text-align: center; }
.block-header h1 { font-size: 20px; margin: 0 0 4px 0; }
.company-name { font-size: 14px; font-weight: bold; }
.company-address, .company-contact { font-size: 10px; color: #444; }
.logo-small { height: 40px; }
.logo-medium { height: 70px; }
.logo-large { height: 110px; }

/* Line items: default theme */
.items-table {
  width: 100%;
  border-collapse: collapse;
  page-break-inside: auto;
}
.items-table th,
.items-table td {
  border-bottom: 1px solid #d1d5db;
  padding: 5px 6px;
  vertical-align: top;
}
.items-table th { background: #f3f4f6; font-size: 10px; text-align: left; }
.items-table thead { display: table-header-group; }
.items-table tr { page-break-inside: avoid; }
.room-name { font-size: 13px; margin: 12px 0 6px 0; }
.item-image { max-width: 64px; max-height: 64px; object-fit: contain; }
.item-description { font-size: 10px; color: #555; }
.breakdown-row td { font-size: 10px; color: #444; border-bottom: 1px dotted #e5e7eb; }
.breakdown-row .breakdown-name { padding-left: 18px; }
.breakdown-row.hardware-group .breakdown-name { font-weight: bold; }
.room-subtotal td { font-weight: bold; border-top: 1px solid #111; }
.services-subtotal td { font-weight: bold; }

/* Line items: elegant theme */
.theme-elegant .elegant-title { font-family: Georgia, serif; font-weight: normal; letter-spacing: 0.04em; }
.room-card { border: 1px solid #e7e2d8; border-radius: 8px; padding: 12px 14px; margin-bottom: 14px; background: #fcfbf8; }
.item-card { display: flex; gap: 12px; padding: 10px 0; border-bottom: 1px solid #eee8dc; page-break-inside: avoid; }
.item-card:last-of-type { border-bottom: 0; }
.item-body { flex: 1; }
.item-heading { display: flex; justify-content: space-between; font-weight: bold; }
.item-card .breakdown { list-style: none; margin: 6px 0 0 0; padding: 0; font-size: 10px; color: #555; }
.item-card .breakdown li { display: flex; gap: 6px; }
.item-card .breakdown .amount { margin-left: auto; }
.room-card .room-subtotal { display: flex; justify-content: space-between; font-weight: bold; padding-top: 8px; }

/* Totals */
.totals-table { margin-left: auto; min-width: 45%; border-collapse: collapse; }
.totals-table th { text-align: left; font-weight: normal; padding: 3px 12px 3px 0; }
.totals-table td { padding: 3px 0; }
.totals-row.grand-total th,
.totals-row.grand-total td { font-weight: bold; font-size: 13px; border-top: 2px solid #111; }
.totals-row.comparison { color: #555; }
.totals-card { margin-left: auto; width: 50%; border: 1px solid #e7e2d8; border-radius: 8px; padding: 12px 16px; background: #fcfbf8; }
.totals-list { margin: 0; }
.totals-list .totals-row { display: flex; justify-content: space-between; padding: 3px 0; }
.totals-list dd { margin: 0; }

/* Other blocks */
.terms-list { padding-left: 18px; font-size: 10px; }
.signature-lines { display: flex; gap: 24px; margin-top: 28px; }
.signature-line { flex: 1; font-size: 10px; }
.signature-line .line { border-bottom: 1px solid #111; height: 28px; margin-bottom: 4px; }
.block-footer { border-top: 1px solid #d1d5db; padding-top: 8px; font-size: 9px; color: #555; text-align: center; }
.scope-columns { display: flex; gap: 24px; }
.bank-details { font-size: 10px; margin-top: 6px; }
.block-diagnostic { border: 1px dashed #b91c1c; color: #b91c1c; padding: 8px; font-size: 10px; }

/* Interactive affordances */
.document-interactive .editable { outline: 1px dashed transparent; min-width: 1em; display: inline-block; }
.document-interactive .editable:hover { outline-color: #93c5fd; }
.is-excluded { opacity: 0.45; text-decoration: line-through; }
.item-actions button { font-size: 9px; margin: 0 2px; }

@media print {
  .item-actions, .editable[contenteditable] { outline: none; }
  .block-line-items tfoot { display: table-row-group; }
}
"""


# ----------------------- Helpers -----------------------

def _text(value) -> str:
    return "" if value is None else str(value).strip()


def _substitute_content(content, resolver: TokenResolver):
    """Run every string (and list-of-strings) field of a content model through the resolver."""
    updates = {}
    for name in type(content).model_fields:
        value = getattr(content, name)
        if isinstance(value, str):
            updates[name] = resolver.substitute(value)
        elif isinstance(value, list) and all(isinstance(v, str) for v in value):
            updates[name] = [resolver.substitute(v) for v in value]
    return content.model_copy(update=updates) if updates else content


class DocGenerator:
    """Assembles a block template and project data into a Document."""

    def __init__(self, *, css_override: Optional[str] = None):
        self.css = Path(css_override).read_text() if css_override else CSS_DEFAULT
        self.env = Environment(loader=DictLoader(BLOCK_TEMPLATES), autoescape=select_autoescape(["html"]))
        self._renderers = {
            "header": self._render_header,
            "client-info": self._render_client_info,
            "text": self._render_text,
            "line-items": self._render_line_items,
            "totals": self._render_totals,
            "terms": self._render_terms,
            "signature": self._render_signature,
            "footer": self._render_footer,
            "payment-details": self._render_payment_details,
            "installation-details": self._render_installation_details,
            "project-scope": self._render_project_scope,
            "divider": self._render_simple("divider.html"),
            "spacer": self._render_simple("spacer.html"),
        }

    def _template(self, name: str, **ctx) -> str:
        return self.env.get_template(name).render(**ctx)

    # -------- block renderers: each returns (html, data) --------

    def _render_simple(self, template_name):
        def render(block: Block, content, state: _RenderState) -> Tuple[str, Dict[str, Any]]:
            return self._template(template_name, c=content, block_id=block.id), {}
        return render

    def _render_header(self, block, content, state):
        r = state.resolver
        company_name = _text(content.company_name) or r.resolve("company_name")
        contact = join_present([r.resolve("company_phone"), r.resolve("company_email"),
                                r.resolve("company_website")], " | ")
        html = self._template(
            "header.html",
            c=content,
            block_id=block.id,
            interactive=state.context.interactive,
            logo_url=state.data.resolved_business.company_logo_url,
            company_name=company_name,
            company_address=r.resolve("company_address"),
            company_contact=contact,
            quote_number=r.resolve("quote_number"),
            date=r.resolve("date"),
            valid_until=r.resolve("valid_until"),
        )
        return html, {}

    def _render_client_info(self, block, content, state):
        r = state.resolver
        html = self._template(
            "client_info.html",
            c=content,
            block_id=block.id,
            interactive=state.context.interactive,
            client_name=r.resolve("client_name"),
            client_company=r.resolve("client_company"),
            client_address=r.resolve("client_address"),
            client_email=r.resolve("client_email"),
            client_phone=r.resolve("client_phone"),
        )
        return html, {}

    def _render_text(self, block, content, state):
        html = self._template("text.html", c=content, block_id=block.id, interactive=state.context.interactive)
        return html, {}

    def _item_view(self, item: LineItem, settings: DisplaySettings, state: _RenderState,
                   excluded: bool) -> Dict[str, Any]:
        entries = []
        if settings.show_detailed_breakdown and settings.layout == "detailed":
            entries = group_breakdown(item.children, state.currency)
        return {
            "id": item.id or "",
            "name": item.display_name,
            "description": _text(item.description),
            "quantity": format_quantity(item.quantity),
            "unit_price": item.unit_price,
            "total": item.line_total,
            "image": state.context.overlay.image_for(item) if settings.show_images else None,
            "excluded": excluded,
            "entries": entries,
        }

    @staticmethod
    def _item_data(view: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": view["id"],
            "name": view["name"],
            "total": view["total"],
            "breakdown": [e.model_dump() for e in view["entries"]],
            "breakdown_total": sum_money(e.total_cost for e in view["entries"]),
        }

    def _render_line_items(self, block, content, state):
        settings = state.context.settings.merged_with(content.display_overrides())
        overlay = state.context.overlay
        interactive = state.context.interactive
        parts = partition_items(
            state.data.line_items,
            group_by_room=settings.group_by_room,
            excluded_ids=overlay.excluded_item_ids,
            edit_mode=interactive,
        )

        rooms, room_data = [], []
        for room, items in parts.grouped.items():
            views = [self._item_view(item, settings, state, is_excluded(item, overlay.excluded_item_ids))
                     for item in items]
            rooms.append({"name": room, "subtotal": parts.subtotals[room], "rows": views})
            counted = [self._item_data(v) for v in views if not v["excluded"]]
            if counted:
                room_data.append({"name": room, "subtotal": parts.subtotals[room], "items": counted})

        services = [
            {
                "id": item.id or "",
                "name": item.display_name,
                "description": _text(item.description),
                "total": item.line_total,
                "excluded": is_excluded(item, overlay.excluded_item_ids),
            }
            for item in parts.services
        ]

        label_span = 3 + (1 if settings.show_images else 0)
        html = self._template(
            f"line_items_{state.theme}.html",
            c=content,
            block_id=block.id,
            interactive=interactive,
            settings=settings,
            rooms=rooms,
            services=services,
            services_subtotal=parts.services_subtotal,
            money=state.money,
            label_span=label_span,
        )
        data = {
            "rooms": room_data,
            "services": [{"id": s["id"], "name": s["name"], "total": s["total"]}
                         for s in services if not s["excluded"]],
            "services_subtotal": parts.services_subtotal,
            "subtotal": state.data.subtotal,
        }
        return html, data

    def _totals_data(self, content, state: _RenderState) -> Dict[str, Any]:
        d = state.data
        r = state.resolver
        data = {
            "subtotal": d.subtotal,
            "discount": d.discount,
            "tax_rate": r.tax_rate(),
            "tax_amount": d.tax_amount,
            "total": d.total,
            "deposit_amount": r.deposit_amount(),
            "balance_due": r.balance_due(),
        }
        comparison = state.context.comparison
        if comparison is not None and content.show_comparison:
            data["comparison_total"] = comparison.total
            if comparison.total is not None and d.total is not None:
                data["difference"] = float(to_decimal(d.total) - to_decimal(comparison.total))
            else:
                data["difference"] = None
        return data

    def _render_totals(self, block, content, state):
        r = state.resolver
        data = self._totals_data(content, state)
        rows = []
        if content.show_subtotal and data["subtotal"] is not None:
            rows.append({"label": "Subtotal", "value": r.resolve("subtotal"), "cls": "subtotal"})
        if content.show_discount and data["discount"]:
            rows.append({"label": "Discount", "value": f"-{r.resolve('discount')}", "cls": "discount"})
        if content.show_tax and data["tax_amount"] is not None:
            label = r.resolve("tax_label") or "Tax"
            rate = r.resolve("tax_rate")
            rows.append({"label": f"{label} ({rate})" if rate else label, "value": r.resolve("tax_amount"),
                         "cls": "tax"})
        if data["total"] is not None:
            rows.append({"label": "Total", "value": r.resolve("total"), "cls": "grand-total"})
        if content.show_deposit and data["deposit_amount"] is not None:
            rows.append({"label": "Deposit", "value": r.resolve("deposit_amount"), "cls": "deposit"})
            rows.append({"label": "Balance due", "value": r.resolve("balance_due"), "cls": "balance"})
        if "comparison_total" in data and data["comparison_total"] is not None:
            rows.append({"label": "Previous total", "value": state.money(data["comparison_total"]),
                         "cls": "comparison"})
            if data["difference"] is not None:
                diff = data["difference"]
                sign = "+" if diff > 0 else ""
                rows.append({"label": "Difference", "value": f"{sign}{state.money(diff)}",
                             "cls": "comparison difference"})

        html = self._template(
            f"totals_{state.theme}.html",
            c=content,
            block_id=block.id,
            interactive=state.context.interactive,
            rows=rows,
        )
        return html, data

    def _render_terms(self, block, content, state):
        terms = list(content.terms)
        if not terms:
            default_terms = state.resolver.resolve("terms")
            terms = [line.strip() for line in default_terms.splitlines() if line.strip()]
        html = self._template("terms.html", c=content, block_id=block.id,
                              interactive=state.context.interactive, terms=terms)
        return html, {}

    def _render_signature(self, block, content, state):
        html = self._template("signature.html", c=content, block_id=block.id,
                              interactive=state.context.interactive)
        return html, {}

    def _render_footer(self, block, content, state):
        r = state.resolver
        contact = join_present([r.resolve("company_name"), r.resolve("company_phone"),
                                r.resolve("company_email"), r.resolve("company_website")], " | ")
        html = self._template(
            "footer.html",
            c=content,
            block_id=block.id,
            interactive=state.context.interactive,
            contact=contact,
            registration=r.resolve("company_registration_footer"),
        )
        return html, {}

    def _render_payment_details(self, block, content, state):
        r = state.resolver
        data = {"deposit_amount": r.deposit_amount(), "balance_due": r.balance_due()}
        html = self._template(
            "payment_details.html",
            c=content,
            block_id=block.id,
            interactive=state.context.interactive,
            deposit=r.resolve("deposit_amount"),
            balance=r.resolve("balance_due"),
            bank_details=r.resolve("company_bank_details"),
        )
        return html, data

    def _render_installation_details(self, block, content, state):
        overlay = state.context.overlay
        parts = partition_items(state.data.line_items, excluded_ids=overlay.excluded_item_ids)
        services = [{"name": s.display_name, "total": s.line_total} for s in parts.services]
        html = self._template(
            "installation_details.html",
            c=content,
            block_id=block.id,
            interactive=state.context.interactive,
            installation_date=state.resolver.resolve("installation_date"),
            services=services,
            money=state.money,
        )
        return html, {"services_subtotal": parts.services_subtotal}

    def _render_project_scope(self, block, content, state):
        html = self._template("project_scope.html", c=content, block_id=block.id,
                              interactive=state.context.interactive)
        return html, {}

    # -------- document assembly --------

    def render_block(self, block: Block, state: _RenderState) -> RenderedBlock:
        """Render one block; unknown types and renderer failures become placeholders."""
        try:
            content = resolve_content(block)
        except UnknownBlockTypeError as e:
            error_handler.log_error('unknown_block', e, {'block_id': block.id, 'block_type': block.type},
                                    level=logging.WARNING)
            html = self._template("unknown.html", block_id=block.id, block_type=block.type)
            return RenderedBlock(id=block.id, type=block.canonical_type, html=html, data={})

        renderer = self._renderers[block.canonical_type]
        try:
            content = _substitute_content(content, state.resolver)
            html, data = renderer(block, content, state)
        except Exception as e:
            error_handler.log_error('render_error', e, {'block_id': block.id, 'block_type': block.canonical_type})
            html = self._template("failed.html", block_id=block.id, block_type=block.canonical_type)
            data = {}
        return RenderedBlock(id=block.id, type=block.canonical_type, html=html, data=data)

    @log_performance
    def render(self, template, project_data, context: Optional[RenderContext] = None) -> Document:
        """Render template against project_data.  Equal inputs give byte-identical output."""
        context = context or RenderContext()
        data = ProjectData.from_raw(project_data)
        blocks = parse_template(template)
        page = page_settings(blocks, context.page_defaults or DeploymentConfig.page_defaults())
        state = _RenderState(data, context, page)

        rendered = [self.render_block(block, state) for block in blocks if not block.is_document_settings]

        title = state.resolver.resolve("quote_number") or state.resolver.resolve("project_name") or "Document"
        html = self._template(
            "document.html",
            title=title,
            css=self.css,
            mode=context.mode,
            theme=state.theme,
            page=page,
            blocks=rendered,
        )
        return Document(mode=context.mode, page=page, blocks=rendered, html=html)

    # -------- PDF rendering with pluggable renderers --------
    def render_pdf(self, document: Document, out_pdf: str, *, base_url: Optional[str] = None) -> str:
        """Write a print-mode Document to out_pdf with the first renderer that works."""
        if document.mode != "print":
            raise ValueError("PDF export needs a print-mode document")

        html = document.html
        page = document.page
        base_url_resolved = base_url or str(Path.cwd())

        # Try renderers in order of preference
        errors = []

        # 1. Try Playwright (primary)
        if _HAVE_PLAYWRIGHT:
            try:
                return PlaywrightChromiumRenderer.print_pdf(html, base_url_resolved, out_pdf, page)
            except Exception as e:
                errors.append(f"Playwright: {e}")

        # 2. Try WeasyPrint (fallback)
        if _HAVE_WEASY:
            try:
                return WeasyPrintRenderer.write_pdf(html, base_url_resolved, out_pdf, page)
            except Exception as e:
                errors.append(f"WeasyPrint: {e}")

        # 3. Try wkhtmltopdf (fallback)
        if _HAVE_WKHTMLTOPDF:
            try:
                return WkhtmltopdfRenderer.write_pdf(html, base_url_resolved, out_pdf, page)
            except Exception as e:
                errors.append(f"wkhtmltopdf: {e}")

        # No renderers available
        error_msg = "No PDF renderers available. Install one of:\n"
        if not _HAVE_PLAYWRIGHT:
            error_msg += "1. Playwright (recommended): pip install playwright && playwright install chromium\n"
        if not _HAVE_WEASY:
            error_msg += "2. WeasyPrint: pip install weasyprint\n"
        if not _HAVE_WKHTMLTOPDF:
            error_msg += "3. wkhtmltopdf: pip install pdfkit and install the wkhtmltopdf binary\n"

        if errors:
            error_msg += f"\nErrors encountered: {'; '.join(errors)}"

        raise RuntimeError(error_msg)


# ----------------------- CLI -----------------------

def _load_json(p: str) -> Any:
    return json.loads(Path(p).read_text(encoding="utf-8"))


def main(argv: Optional[List[str]] = None):
    import argparse
    ap = argparse.ArgumentParser(description="Render a block template and project data into a document.")
    ap.add_argument("--template", required=True, help="JSON template file (list of blocks)")
    ap.add_argument("--data", required=True, help="JSON project data file")
    ap.add_argument("--out", help="Output directory", default="build")
    ap.add_argument("--name", default="quote", help="Base name for output files")
    ap.add_argument("--mode", choices=["print", "interactive"], default="print")
    ap.add_argument("--theme", choices=["default", "elegant"], default=None)
    ap.add_argument("--css", default=None)
    ap.add_argument("--html-only", action="store_true", help="Skip PDF export")
    ap.add_argument("--base-url", default=None)
    args = ap.parse_args(argv)

    DeploymentConfig.configure_logging()
    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)

    gen = DocGenerator(css_override=args.css)
    context = RenderContext.from_config(mode=args.mode, theme=args.theme, now=datetime.now())
    document = gen.render(_load_json(args.template), _load_json(args.data), context)

    html_path = out_dir / f"{args.name}.html"
    html_path.write_text(document.html, encoding="utf-8")
    print(f"HTML written: {html_path}")

    if args.html_only or args.mode != "print":
        print("PDF export skipped.")
        return 0

    pdf_path = gen.render_pdf(document, str(out_dir / f"{args.name}.pdf"), base_url=args.base_url)
    print(f"PDF written: {pdf_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
