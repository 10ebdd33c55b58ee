"""Split line items into room buckets and a trailing services section."""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from .formatting import sum_money
from .models import LineItem

logger = logging.getLogger(__name__)

DEFAULT_ROOM = "Unassigned Room"
UNGROUPED = ""

SERVICE_KEYWORDS = ("install", "installation", "measure", "measurement", "service", "fitting")
_SERVICE_PATTERN = re.compile(r"\b(" + "|".join(SERVICE_KEYWORDS) + r")\w*", re.IGNORECASE)


@dataclass
class ItemPartition:
    grouped: Dict[str, List[LineItem]] = field(default_factory=dict)
    subtotals: Dict[str, float] = field(default_factory=dict)
    services: List[LineItem] = field(default_factory=list)
    services_subtotal: float = 0.0
    hidden_hardware: List[LineItem] = field(default_factory=list)

    @property
    def rooms(self) -> List[str]:
        return list(self.grouped.keys())


def is_service(item: LineItem) -> bool:
    if (item.category or "").strip().lower() == "service":
        return True
    text = " ".join(t for t in (item.treatment_type, item.name) if t)
    return bool(_SERVICE_PATTERN.search(text))


def is_hardware_only(item: LineItem) -> bool:
    return (item.category or "").strip().lower() == "hardware" and not (item.treatment_type or "").strip()


def is_excluded(item: LineItem, excluded_ids) -> bool:
    return item.id is not None and str(item.id) in excluded_ids


def partition_items(items: Iterable, *, group_by_room: bool = True, excluded_ids=(),
                    edit_mode: bool = False) -> ItemPartition:
    """
    Bucket items by room (or into one implicit bucket) and pull services out.

    Subtotals only count visible, non-excluded rows.  Outside edit mode an
    excluded row is dropped entirely; in edit mode it stays listed so the
    author can see what will disappear.
    """
    excluded = frozenset(str(i) for i in (excluded_ids or ()))
    result = ItemPartition()
    counted: Dict[str, List[float]] = {}
    service_totals: List[float] = []

    for raw in items or ():
        if isinstance(raw, dict):
            raw = LineItem.model_validate(raw)
        if not isinstance(raw, LineItem):
            logger.warning(f"Skipping line item of type {type(raw).__name__}")
            continue
        item = raw
        if is_hardware_only(item):
            result.hidden_hardware.append(item)
            continue

        skip = is_excluded(item, excluded)
        if skip and not edit_mode:
            continue

        if is_service(item):
            result.services.append(item)
            if not skip:
                service_totals.append(item.line_total)
            continue

        room = ((item.room_name or "").strip() or DEFAULT_ROOM) if group_by_room else UNGROUPED
        result.grouped.setdefault(room, []).append(item)
        counted.setdefault(room, [])
        if not skip:
            counted[room].append(item.line_total)

    result.subtotals = {room: sum_money(counted[room]) for room in result.grouped}
    result.services_subtotal = sum_money(service_totals)
    return result
