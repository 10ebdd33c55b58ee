"""
Template blocks and their typed content.

A template is an ordered list of ``{id, type, content}`` blocks.  ``content``
is an open mapping until dispatch, when it is validated against the content
model registered for the block's canonical type.  Content that fails
validation falls back to that model's defaults.
"""

import logging
import re
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from enhanced_error_handler import error_handler, UnknownBlockTypeError

logger = logging.getLogger(__name__)

DOCUMENT_SETTINGS = "document-settings"

BLOCK_ALIASES = {
    "products": "line-items",
    "items": "line-items",
    "terms-conditions": "terms",
    "payment-info": "payment-details",
    "document-header": "header",
    "quote-header": "header",
    "summary": "totals",
    "total": "totals",
}


def canonical_type(block_type) -> str:
    text = str(block_type or "").strip().lower()
    return BLOCK_ALIASES.get(text, text)


def _numbered(data: dict, prefix: str) -> List[str]:
    """Collect legacy ``prefix1``, ``prefix2`` ... keys in numeric order."""
    pattern = re.compile(rf"^{prefix}(\d+)$")
    found = []
    for key, value in data.items():
        match = pattern.match(str(key))
        if match and isinstance(value, str) and value.strip():
            found.append((int(match.group(1)), value))
    return [value for _, value in sorted(found)]


class BlockContent(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class HeaderContent(BlockContent):
    document_title: str = Field(default="Quote", alias="documentTitle")
    tagline: str = ""
    layout: Literal["centered", "left", "split"] = "centered"
    show_logo: bool = Field(default=True, alias="showLogo")
    logo_size: Literal["small", "medium", "large"] = Field(default="medium", alias="logoSize")
    quote_number_label: str = Field(default="Quote #", alias="quoteNumberLabel")
    company_name: Optional[str] = Field(default=None, alias="companyName")


class ClientInfoContent(BlockContent):
    title: str = "Bill To:"
    show_client_company: bool = Field(default=True, alias="showClientCompany")
    show_client_email: bool = Field(default=True, alias="showClientEmail")
    show_client_phone: bool = Field(default=True, alias="showClientPhone")
    show_client_address: bool = Field(default=True, alias="showClientAddress")


class TextContent(BlockContent):
    title: str = ""
    text: str = ""


class LineItemsContent(BlockContent):
    title: str = "Line Items"
    services_title: str = Field(default="Services", alias="servicesTitle")
    header_description: str = Field(default="Description", alias="headerDescription")
    header_qty: str = Field(default="Qty", alias="headerQty")
    header_unit_price: str = Field(default="Unit Price", alias="headerUnitPrice")
    header_total: str = Field(default="Total", alias="headerTotal")
    # display overrides, None means "use the document setting"
    show_detailed_breakdown: Optional[bool] = Field(default=None, alias="showDetailedBreakdown")
    show_images: Optional[bool] = Field(default=None, alias="showImages")
    group_by_room: Optional[bool] = Field(default=None, alias="groupByRoom")
    layout: Optional[Literal["simple", "detailed"]] = None

    def display_overrides(self) -> Dict[str, Any]:
        return {
            "showDetailedBreakdown": self.show_detailed_breakdown,
            "showImages": self.show_images,
            "groupByRoom": self.group_by_room,
            "layout": self.layout,
        }


class TotalsContent(BlockContent):
    title: str = ""
    show_subtotal: bool = Field(default=True, alias="showSubtotal")
    show_discount: bool = Field(default=True, alias="showDiscount")
    show_tax: bool = Field(default=True, alias="showTax")
    show_deposit: bool = Field(default=True, alias="showDeposit")
    show_comparison: bool = Field(default=True, alias="showComparison")


class TermsContent(BlockContent):
    title: str = "Terms & Conditions"
    terms: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _legacy_terms(cls, data):
        if isinstance(data, dict) and not data.get("terms"):
            data = {**data, "terms": _numbered(data, "term")}
        return data


class SignatureContent(BlockContent):
    title: str = "Authorization"
    authorization_text: str = Field(
        default="By signing below, you authorize us to proceed with this work as described:",
        alias="authorizationText")
    client_signature_label: str = Field(default="Client Signature", alias="clientSignatureLabel")
    company_signature_label: str = Field(default="Authorized Signature", alias="companySignatureLabel")
    thank_you_text: str = Field(default="", alias="thankYouText")
    show_date: bool = Field(default=True, alias="showDate")


class FooterContent(BlockContent):
    text: str = ""
    show_contact: bool = Field(default=True, alias="showContact")
    show_registration: bool = Field(default=True, alias="showRegistration")


class PaymentDetailsContent(BlockContent):
    title: str = "Payment Information"
    payment_methods: List[str] = Field(default_factory=list, alias="paymentMethods")
    payment_schedule: List[str] = Field(default_factory=list, alias="paymentSchedule")
    show_bank_details: bool = Field(default=True, alias="showBankDetails")
    show_deposit: bool = Field(default=True, alias="showDeposit")

    @model_validator(mode="before")
    @classmethod
    def _legacy_lists(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if not data.get("paymentMethods") and not data.get("payment_methods"):
            data["paymentMethods"] = _numbered(data, "paymentMethod")
        if not data.get("paymentSchedule") and not data.get("payment_schedule"):
            data["paymentSchedule"] = _numbered(data, "paymentSchedule")
        return data


class InstallationDetailsContent(BlockContent):
    title: str = "Installation Details"
    text: str = ""
    show_installation_date: bool = Field(default=True, alias="showInstallationDate")
    show_services: bool = Field(default=True, alias="showServices")


class ProjectScopeContent(BlockContent):
    title: str = "Project Scope"
    included: List[str] = Field(default_factory=list)
    excluded: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _legacy_lists(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for name in ("included", "excluded"):
            if not isinstance(data.get(name), list):
                data[name] = _numbered(data, name)
        return data


class DividerContent(BlockContent):
    style: Literal["solid", "dashed", "dotted"] = "solid"
    color: str = "#e5e7eb"
    thickness: int = Field(default=1, ge=0, le=20)


class SpacerContent(BlockContent):
    height: int = Field(default=24, ge=0, le=400)


class Margins(BaseModel):
    top: float = Field(default=18, ge=0)
    right: float = Field(default=16, ge=0)
    bottom: float = Field(default=20, ge=0)
    left: float = Field(default=16, ge=0)

    def css(self) -> str:
        return f"{self.top:g}mm {self.right:g}mm {self.bottom:g}mm {self.left:g}mm"


class PageSettings(BlockContent):
    """Page metadata carried by the reserved document-settings block."""
    size: Literal["A4", "Letter", "Legal", "A3", "A5"] = Field(default="A4", alias="pageSize")
    orientation: Literal["portrait", "landscape"] = "portrait"
    margins: Margins = Field(default_factory=Margins)
    background: Optional[str] = Field(default=None, alias="backgroundColor")
    theme: Optional[Literal["default", "elegant"]] = None

    @field_validator("size", mode="before")
    @classmethod
    def _size(cls, value):
        if isinstance(value, str):
            for size in ("A4", "Letter", "Legal", "A3", "A5"):
                if size.lower() == value.strip().lower():
                    return size
        return value

    @model_validator(mode="before")
    @classmethod
    def _flat_margins(cls, data):
        # marginTop / marginRight ... are accepted alongside a margins mapping
        if isinstance(data, dict) and "margins" not in data:
            flat = {edge: data[f"margin{edge.title()}"] for edge in ("top", "right", "bottom", "left")
                    if f"margin{edge.title()}" in data}
            if flat:
                data = {**data, "margins": flat}
        return data

    @classmethod
    def from_defaults(cls, defaults: Dict[str, Any]) -> "PageSettings":
        return cls.model_validate({
            "size": defaults.get("size", "A4"),
            "orientation": defaults.get("orientation", "portrait"),
            "margins": defaults.get("margins_mm") or {},
        })

    def css_size(self) -> str:
        return f"{self.size} {self.orientation}"


BLOCK_CONTENT_MODELS = {
    "header": HeaderContent,
    "client-info": ClientInfoContent,
    "text": TextContent,
    "line-items": LineItemsContent,
    "totals": TotalsContent,
    "terms": TermsContent,
    "signature": SignatureContent,
    "footer": FooterContent,
    "payment-details": PaymentDetailsContent,
    "installation-details": InstallationDetailsContent,
    "project-scope": ProjectScopeContent,
    "divider": DividerContent,
    "spacer": SpacerContent,
    DOCUMENT_SETTINGS: PageSettings,
}

BLOCK_TYPES = tuple(t for t in BLOCK_CONTENT_MODELS if t != DOCUMENT_SETTINGS)


class Block(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    type: str = ""
    content: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", "type", mode="before")
    @classmethod
    def _stringify(cls, value):
        return "" if value is None else str(value)

    @field_validator("content", mode="before")
    @classmethod
    def _content(cls, value):
        return value if isinstance(value, dict) else {}

    @property
    def canonical_type(self) -> str:
        return canonical_type(self.type)

    @property
    def is_document_settings(self) -> bool:
        return self.canonical_type == DOCUMENT_SETTINGS


def parse_template(raw) -> List[Block]:
    """Blocks in template order.  Accepts a list or a ``{"blocks": [...]}`` mapping."""
    if isinstance(raw, dict):
        raw = raw.get("blocks")
    if not isinstance(raw, (list, tuple)):
        return []
    blocks = []
    for index, item in enumerate(raw):
        if isinstance(item, Block):
            blocks.append(item)
            continue
        if not isinstance(item, dict):
            error_handler.log_error('missing_data', TypeError(f"block {index} is {type(item).__name__}"),
                                    {'operation': 'parse_template'}, level=logging.WARNING)
            continue
        data = dict(item)
        if not data.get("id"):
            data["id"] = f"block-{index}"
        blocks.append(Block.model_validate(data))
    return blocks


def resolve_content(block: Block) -> BlockContent:
    """Typed content for block; raises UnknownBlockTypeError for unregistered types."""
    model = BLOCK_CONTENT_MODELS.get(block.canonical_type)
    if model is None:
        raise UnknownBlockTypeError(f"Unknown block type: {block.type!r}")
    try:
        return model.model_validate(block.content)
    except ValidationError as e:
        error_handler.log_error('missing_data', e, {'block_id': block.id, 'block_type': block.canonical_type},
                                level=logging.WARNING)
        return model()


def page_settings(blocks: List[Block], defaults: Optional[Dict[str, Any]] = None) -> PageSettings:
    """Page geometry from the first document-settings block, else from defaults."""
    base = PageSettings.from_defaults(defaults or {})
    for block in blocks:
        if block.is_document_settings:
            content = dict(block.content)
            for name, info in PageSettings.model_fields.items():
                if info.alias and name in content:
                    content[info.alias] = content.pop(name)
            # unset edges keep the configured margins
            margins = base.margins.model_dump()
            if isinstance(content.get("margins"), dict):
                margins.update(content["margins"])
            for edge in ("top", "right", "bottom", "left"):
                if f"margin{edge.title()}" in content:
                    margins[edge] = content.pop(f"margin{edge.title()}")
            content["margins"] = margins
            try:
                return PageSettings.model_validate({**base.model_dump(by_alias=True, exclude={"margins"}), **content})
            except ValidationError as e:
                error_handler.log_error('missing_data', e, {'block_id': block.id},
                                        level=logging.WARNING)
                return base
    return base
