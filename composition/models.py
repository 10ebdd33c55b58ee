"""
Pydantic models for the data the composition engine consumes and produces.

Every input model is lenient: fields are optional, unknown keys are kept,
numbers arrive as numbers or numeric strings, and a subtree that is not a
mapping is treated as absent.  Nothing here raises on bad project data when
entered through ``ProjectData.from_raw``.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, Dict, FrozenSet, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.functional_validators import BeforeValidator

from enhanced_error_handler import error_handler

logger = logging.getLogger(__name__)


# ----------------------- Lenient field types -----------------------

def _coerce_float(value):
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = value.strip().replace(",", "")
        if not cleaned:
            return None
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None


def _coerce_str(value):
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _coerce_bool(value):
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(value, (int, float)):
        return bool(value)
    return None


def _mapping_or_none(value):
    if isinstance(value, BaseModel):
        return value
    return value if isinstance(value, dict) else None


def _list_or_empty(value):
    return list(value) if isinstance(value, (list, tuple)) else []


Money = Annotated[Optional[float], BeforeValidator(_coerce_float)]
Text = Annotated[Optional[str], BeforeValidator(_coerce_str)]
Flag = Annotated[Optional[bool], BeforeValidator(_coerce_bool)]


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


# ----------------------- Project data -----------------------

class Client(_Lenient):
    id: Text = None
    name: Text = None
    email: Text = None
    phone: Text = None
    address: Text = None
    city: Text = None
    state: Text = None
    zip_code: Text = None
    country: Text = None
    company_name: Text = None
    client_type: Text = None  # B2B | B2C

    @property
    def is_business(self) -> bool:
        return (self.client_type or "").upper() == "B2B"


class Project(_Lenient):
    id: Text = None
    name: Text = None
    status: Text = None
    job_number: Text = None
    quote_number: Text = None
    created_at: Any = None
    quote_date: Any = None
    start_date: Any = None
    due_date: Any = None
    completion_date: Any = None
    installation_date: Any = None
    valid_until: Any = None
    notes: Text = None
    client: Annotated[Optional[Client], BeforeValidator(_mapping_or_none)] = None


class BusinessSettings(_Lenient):
    company_name: Text = None
    legal_name: Text = None
    address: Text = None
    city: Text = None
    state: Text = None
    zip_code: Text = None
    country: Text = None
    business_phone: Text = None
    business_email: Text = None
    website: Text = None
    company_logo_url: Text = None
    abn: Text = None
    registration_number: Text = None
    tax_number: Text = None
    bank_name: Text = None
    bank_account_name: Text = None
    bank_account_number: Text = None
    bank_bsb: Text = None
    bank_sort_code: Text = None
    bank_routing_number: Text = None
    bank_iban: Text = None
    bank_swift_bic: Text = None
    bank_ifsc: Text = None
    bank_transit_number: Text = None
    bank_branch_code: Text = None
    locale: Text = None
    timezone: Text = None
    date_format: Text = None
    currency: Text = None
    tax_type: Text = None
    tax_rate: Money = None
    document_language: Text = None
    quote_validity_days: Money = None
    default_terms: Text = None


class Payment(_Lenient):
    type: Text = None  # full | deposit
    amount: Money = None
    percentage: Money = None
    status: Text = None


class BreakdownComponent(_Lenient):
    """A raw priced sub-part of a line item."""
    name: Text = None
    category: Text = None
    description: Text = None
    quantity: Money = None
    unit: Text = None
    unit_price: Money = None
    total: Money = None
    total_cost: Money = None
    image_url: Text = None
    color: Text = None
    isChild: Flag = None
    isAccessory: Flag = None
    isHardwareGroup: Flag = None
    hardwareItems: Annotated[List[Any], BeforeValidator(_list_or_empty)] = Field(default_factory=list)

    @property
    def amount(self) -> float:
        if self.total is not None:
            return self.total
        return self.total_cost or 0.0


class LineItem(_Lenient):
    id: Text = None
    name: Text = None
    treatment_type: Text = None
    room_name: Text = None
    quantity: Money = None
    unit_price: Money = None
    total_cost: Money = None
    total: Money = None
    description: Text = None
    image_url: Text = None
    image_url_override: Text = None
    category: Text = None
    children: Annotated[List[Any], BeforeValidator(_list_or_empty)] = Field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.name or self.treatment_type or ""

    @property
    def line_total(self) -> float:
        """total_cost, falling back to total, then unit_price."""
        for value in (self.total_cost, self.total, self.unit_price):
            if value is not None:
                return value
        return 0.0


def _items_list(value):
    items = []
    for raw in _list_or_empty(value):
        if isinstance(raw, LineItem):
            items.append(raw)
        elif isinstance(raw, dict):
            items.append(raw)
        else:
            error_handler.log_error('missing_data', TypeError(f"line item is {type(raw).__name__}, not a mapping"),
                                    {'operation': 'load_items'}, level=logging.WARNING)
    return items


class ProjectData(_Lenient):
    project: Annotated[Optional[Project], BeforeValidator(_mapping_or_none)] = None
    client: Annotated[Optional[Client], BeforeValidator(_mapping_or_none)] = None
    business_settings: Annotated[Optional[BusinessSettings], BeforeValidator(_mapping_or_none)] = Field(
        default=None, alias="businessSettings")
    items: Annotated[List[LineItem], BeforeValidator(_items_list)] = Field(default_factory=list)
    treatments: Annotated[List[LineItem], BeforeValidator(_items_list)] = Field(default_factory=list)
    currency: Text = None
    subtotal: Money = None
    tax_amount: Money = Field(default=None, alias="taxAmount")
    tax_rate: Money = Field(default=None, alias="taxRate")
    discount: Money = None
    total: Money = None
    payment: Annotated[Optional[Payment], BeforeValidator(_mapping_or_none)] = None

    @field_validator("discount", mode="before")
    @classmethod
    def _discount_amount(cls, value):
        # Discounts sometimes arrive as {"amount": .., "percentage": ..}
        if isinstance(value, dict):
            return value.get("amount")
        return value

    @classmethod
    def from_raw(cls, payload: Any) -> "ProjectData":
        """Build from untrusted JSON; falls back to an empty snapshot rather than raising."""
        if isinstance(payload, ProjectData):
            return payload
        if not isinstance(payload, dict):
            return cls()
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            error_handler.log_error('missing_data', e, {'operation': 'ProjectData.from_raw'},
                                    level=logging.WARNING)
            return cls()

    @property
    def resolved_client(self) -> Client:
        if self.client is not None:
            return self.client
        if self.project is not None and self.project.client is not None:
            return self.project.client
        return Client()

    @property
    def resolved_project(self) -> Project:
        return self.project or Project()

    @property
    def resolved_business(self) -> BusinessSettings:
        return self.business_settings or BusinessSettings()

    @property
    def line_items(self) -> List[LineItem]:
        return self.items or self.treatments


# ----------------------- Derived entries -----------------------

class BreakdownEntry(BaseModel):
    """One row of a grouped breakdown.  Produced per render, never stored."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    category: str = "other"
    description: str = ""
    quantity: Optional[float] = None
    unit: str = ""
    unit_price: Optional[float] = None
    total_cost: float = 0.0
    image_url: Optional[str] = None
    color: Optional[str] = None
    isAccessory: bool = False
    isHardwareGroup: bool = False
    hardwareItems: Optional[List["BreakdownEntry"]] = None

    def as_component(self) -> Dict[str, Any]:
        """Re-wrap as a pseudo-component so the grouper can be fed its own output."""
        data = self.model_dump()
        data["total"] = self.total_cost
        data["isChild"] = True
        return data


# ----------------------- Settings & overlay -----------------------

_SETTING_KEYS = {
    "showDetailedBreakdown": "show_detailed_breakdown",
    "showImages": "show_images",
    "groupByRoom": "group_by_room",
    "layout": "layout",
}


class DisplaySettings(_Lenient):
    show_detailed_breakdown: bool = Field(default=True, alias="showDetailedBreakdown")
    show_images: bool = Field(default=True, alias="showImages")
    group_by_room: bool = Field(default=True, alias="groupByRoom")
    layout: Literal["simple", "detailed"] = "detailed"

    def merged_with(self, overrides: Optional[Mapping[str, Any]]) -> "DisplaySettings":
        """Per-block values win field by field; absent or None values keep the default."""
        if not overrides:
            return self
        updates = {}
        for key, field_name in _SETTING_KEYS.items():
            value = overrides.get(key, overrides.get(field_name))
            if value is None:
                continue
            if field_name == "layout":
                if value in ("simple", "detailed"):
                    updates[field_name] = value
            else:
                coerced = _coerce_bool(value)
                if coerced is not None:
                    updates[field_name] = coerced
        return self.model_copy(update=updates) if updates else self


class OverlaySnapshot(BaseModel):
    """Read-only view of the editable overlay handed to one render pass."""
    model_config = ConfigDict(frozen=True)

    excluded_item_ids: FrozenSet[str] = frozenset()
    image_overrides: Dict[str, Optional[str]] = Field(default_factory=dict)

    @field_validator("excluded_item_ids", mode="before")
    @classmethod
    def _ids(cls, value):
        if not isinstance(value, (list, tuple, set, frozenset)):
            return frozenset()
        return frozenset(str(v) for v in value if v is not None)

    @field_validator("image_overrides", mode="before")
    @classmethod
    def _overrides(cls, value):
        if not isinstance(value, Mapping):
            return {}
        return {str(k): (v if v is None or isinstance(v, str) else str(v)) for k, v in value.items()}

    def is_excluded(self, item_id) -> bool:
        return item_id is not None and str(item_id) in self.excluded_item_ids

    def image_for(self, item: LineItem) -> Optional[str]:
        """Override wins (None hides the image), then the item's own override, then its image."""
        if item.id is not None and item.id in self.image_overrides:
            return self.image_overrides[item.id]
        return item.image_url_override or item.image_url
