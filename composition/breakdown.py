"""
Breakdown grouping for line-item children.

Raw priced components go through three passes:

1. classify/relabel  - "Label: Value" names are split, option labels are
   tidied and accessories are marked as sub-items;
2. parent/child merge - entries whose type key is another entry's key plus a
   known suffix (``lining_type`` + ``_colour``) fold into that entry;
3. hardware grouping - hardware rows collapse into one summary entry, and
   zero-price chooser rows ("Hardware Type: Rod") are dropped.

Running the grouper on its own output returns the same entries.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, ValidationError

from enhanced_error_handler import error_handler, MalformedComponentError
from .models import BreakdownComponent, BreakdownEntry
from .formatting import format_currency, format_quantity, sum_money, to_decimal

logger = logging.getLogger(__name__)

# Bump the version whenever CHILD_SUFFIXES changes, saved documents may
# group differently afterwards.
BREAKDOWN_SUFFIX_TABLE_VERSION = 1

_SUFFIX_STEMS = (
    "colour", "color", "size", "style", "finish", "material", "track", "rod",
    "width", "length", "height", "chain", "slat", "vane", "louvre",
)
CHILD_SUFFIXES = tuple(sorted(
    set(_SUFFIX_STEMS) | {f"{stem}s" for stem in _SUFFIX_STEMS},
    key=lambda s: (-len(s), s),
))

HARDWARE_CATEGORIES = ("hardware", "hardware_accessory")
OPTION_CATEGORIES = ("option", "options")
ACCESSORY_PREFIX = "└ "
CHOOSER_KEYS = ("hardware", "type")

_SELECTION_VERBS = re.compile(r"^(selected|select|choose)\b\s*", re.IGNORECASE)


@dataclass
class _Row:
    entry: BreakdownEntry
    key: str
    hardware: bool = False
    merged: bool = False
    group: bool = False
    members: List[BreakdownEntry] = field(default_factory=list)


def normalize_key(text: str) -> str:
    """Type key of a label: "Lining Types Colour" -> "lining_types_colour"."""
    key = (text or "").lower()
    key = re.sub(r"[\s\-]+", "_", key)
    key = re.sub(r"[^a-z0-9_]", "", key)
    key = re.sub(r"_+", "_", key)
    return key.strip("_")


def strip_child_suffix(key: str) -> Optional[str]:
    for suffix in CHILD_SUFFIXES:
        tail = f"_{suffix}"
        if key.endswith(tail) and len(key) > len(tail):
            return key[:-len(tail)]
    return None


def _skip(reason: str, raw: Any):
    error_handler.log_error(
        'malformed_component',
        MalformedComponentError(reason),
        {'component': repr(raw)[:200]},
        level=logging.WARNING,
    )


def _as_dict(raw: Any) -> Optional[dict]:
    if isinstance(raw, BreakdownEntry):
        return raw.as_component()
    if isinstance(raw, BaseModel):
        return raw.model_dump()
    if isinstance(raw, dict):
        return raw
    return None


def _entry_from(data: dict) -> BreakdownEntry:
    fields = {k: data[k] for k in BreakdownEntry.model_fields if data.get(k) is not None}
    return BreakdownEntry.model_validate(fields)


# ----------------------- Stage A -----------------------

def _relabel(raw: Any, currency: Optional[str]) -> Optional[_Row]:
    data = _as_dict(raw)
    if data is None:
        _skip(f"component is {type(raw).__name__}, not a mapping", raw)
        return None
    try:
        comp = BreakdownComponent.model_validate(data)
    except ValidationError as e:
        _skip(f"component failed validation: {e.error_count()} errors", raw)
        return None

    name = (comp.name or "").strip()
    if not comp.isChild:
        _skip("component is not flagged isChild", raw)
        return None
    if not name:
        _skip("component has no name", raw)
        return None

    if comp.isHardwareGroup:
        try:
            entry = _entry_from({**data, 'total_cost': comp.amount, 'hardwareItems': None})
            items = [_entry_from(_as_dict(item)) for item in comp.hardwareItems if _as_dict(item) is not None]
        except ValidationError as e:
            _skip(f"hardware group failed validation: {e.error_count()} errors", raw)
            return None
        entry = entry.model_copy(update={'isHardwareGroup': True, 'hardwareItems': items})
        return _Row(entry=entry, key=normalize_key(name), hardware=True, group=True)

    category = (comp.category or "other").strip().lower()
    description = (comp.description or "").strip()
    label = name
    if not description and ":" in name:
        head, _, value = name.partition(":")
        # ": Extra" has no label to split off
        if head.strip():
            label, description = head.strip(), value.strip()
    if category in OPTION_CATEGORIES:
        label = label.replace("_", " ").title()

    is_accessory = category == "hardware_accessory" or bool(comp.isAccessory)
    if is_accessory:
        quantity = comp.quantity or 0
        if quantity > 1 and " × " not in description:
            unit_price = comp.unit_price
            if unit_price is None:
                unit_price = float(to_decimal(comp.amount) / to_decimal(quantity))
            detail = f"{format_quantity(quantity)} × {format_currency(unit_price, currency)}"
            description = f"{description} ({detail})" if description else detail
        if not label.startswith(ACCESSORY_PREFIX):
            label = ACCESSORY_PREFIX + label

    entry = BreakdownEntry(
        name=label,
        category=category,
        description=description,
        quantity=comp.quantity,
        unit=comp.unit or "",
        unit_price=comp.unit_price,
        total_cost=comp.amount,
        image_url=comp.image_url,
        color=comp.color,
        isAccessory=is_accessory,
    )
    key = normalize_key(label[len(ACCESSORY_PREFIX):] if is_accessory else label)
    return _Row(entry=entry, key=key, hardware=category in HARDWARE_CATEGORIES or is_accessory)


# ----------------------- Stage B -----------------------

def _suffix_title(child_key: str, root_key: str) -> str:
    rest = child_key[len(root_key):] if child_key.startswith(root_key) else child_key
    return rest.strip("_").replace("_", " ").title()


def _merge(rows: List[_Row]) -> List[_Row]:
    first_by_key = {}
    for index, row in enumerate(rows):
        if not row.group:
            first_by_key.setdefault(row.key, index)

    parent_of = {}
    for index, row in enumerate(rows):
        if row.group:
            continue
        base = strip_child_suffix(row.key)
        if base is not None and base in first_by_key:
            parent_of[index] = first_by_key[base]

    def root(index):
        while index in parent_of:
            index = parent_of[index]
        return index

    children_of = {}
    for index in range(len(rows)):
        if index in parent_of:
            children_of.setdefault(root(index), []).append(index)

    merged = []
    for index, row in enumerate(rows):
        if index in parent_of:
            continue
        children = children_of.get(index)
        if not children:
            merged.append(row)
            continue

        parent = row.entry
        details = [parent.description] if parent.description else []
        for child_index in children:
            child = rows[child_index]
            if child.entry.description:
                details.append(f"{_suffix_title(child.key, row.key)}: {child.entry.description}")
        members = [parent] + [rows[i].entry for i in children]
        entry = parent.model_copy(update={
            'description': "; ".join(details),
            'total_cost': sum_money(m.total_cost for m in members),
            'image_url': parent.image_url or next((m.image_url for m in members if m.image_url), None),
            'color': parent.color or next((m.color for m in members if m.color), None),
        })
        merged.append(_Row(
            entry=entry,
            key=row.key,
            hardware=row.hardware,
            merged=True,
            members=members,
        ))
    return merged


# ----------------------- Stage C -----------------------

def _is_chooser(key: str) -> bool:
    return key in CHOOSER_KEYS or key.endswith("_type") or key.endswith("_types")


def is_meaningless(row: _Row) -> bool:
    """A zero-price pick with nothing else to show, e.g. "Hardware Type: Rod"."""
    entry = row.entry
    if row.merged or row.group:
        return False
    if to_decimal(entry.total_cost) != 0 or entry.image_url or entry.color:
        return False
    return not entry.description or _is_chooser(row.key)


def _group_name(entries: List[BreakdownEntry]) -> str:
    chosen = next((e for e in entries if e.category == "hardware"), None)
    if chosen is None:
        chosen = next((e for e in entries if e.isAccessory), entries[0])
    name = chosen.name
    if name.startswith(ACCESSORY_PREFIX):
        name = name[len(ACCESSORY_PREFIX):]
    name = _SELECTION_VERBS.sub("", name.strip()).strip()
    return name or chosen.description or "Hardware"


def _consolidate(rows: List[_Row]) -> List[BreakdownEntry]:
    groups = [r.entry for r in rows if r.group]
    loose = [r for r in rows if r.hardware and not r.group]
    others = [r.entry for r in rows if not r.hardware]

    retained = []
    for row in loose:
        if is_meaningless(row):
            logger.debug(f"Dropping empty hardware selection {row.entry.name!r}")
        else:
            retained.append(row.entry)

    if groups:
        group = groups[0]
        if retained or len(groups) > 1:
            items = [item for g in groups for item in (g.hardwareItems or [])] + retained
            group = group.model_copy(update={
                'hardwareItems': items,
                'total_cost': sum_money([g.total_cost for g in groups] + [e.total_cost for e in retained]),
                'description': "; ".join(i.description for i in items if i.description),
            })
        return [group] + others

    if not retained:
        return others

    group = BreakdownEntry(
        name=_group_name(retained),
        category="hardware",
        description="; ".join(e.description for e in retained if e.description),
        total_cost=sum_money(e.total_cost for e in retained),
        image_url=next((e.image_url for e in retained if e.image_url), None),
        isHardwareGroup=True,
        hardwareItems=retained,
    )
    return [group] + others


def group_breakdown(children: Optional[Iterable[Any]], currency: Optional[str] = None) -> List[BreakdownEntry]:
    """Group a line item's raw child components into display entries."""
    if not isinstance(children, (list, tuple)):
        return []
    rows = [row for row in (_relabel(raw, currency) for raw in children) if row is not None]
    if not rows:
        return []
    return _consolidate(_merge(rows))
