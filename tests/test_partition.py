"""
Tests for room/service partitioning of line items.
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from composition.partition import partition_items, is_service, DEFAULT_ROOM, UNGROUPED
from composition.models import LineItem


def sample_items():
    return [
        {"id": "1", "name": "Curtain Panel", "room_name": "Living Room", "total_cost": 270.10},
        {"id": "2", "name": "Roman Blind", "room_name": "Bedroom", "total_cost": 180},
        {"id": "3", "name": "Sheer", "room_name": "Living Room", "total_cost": 99.95},
        {"id": "4", "name": "Installation", "total_cost": 120},
        {"id": "5", "name": "Wall bracket", "category": "hardware", "total_cost": 15},
        {"id": "6", "name": "Blind", "total": 60},
    ]


def test_rooms_keep_first_seen_order():
    parts = partition_items(sample_items())
    assert parts.rooms == ["Living Room", "Bedroom", DEFAULT_ROOM]


def test_subtotals_are_exact():
    parts = partition_items(sample_items())
    assert parts.subtotals["Living Room"] == 370.05
    assert parts.subtotals["Bedroom"] == 180
    assert parts.subtotals[DEFAULT_ROOM] == 60


def test_services_are_separated():
    parts = partition_items(sample_items())
    assert [i.id for i in parts.services] == ["4"]
    assert parts.services_subtotal == 120
    assert all(i.id != "4" for items in parts.grouped.values() for i in items)


def test_hardware_only_items_are_hidden():
    parts = partition_items(sample_items())
    assert [i.id for i in parts.hidden_hardware] == ["5"]
    assert all(i.id != "5" for items in parts.grouped.values() for i in items)


def test_room_subtotals_add_up_to_visible_items():
    parts = partition_items(sample_items())
    visible = sum(i.line_total for items in parts.grouped.values() for i in items)
    assert round(sum(parts.subtotals.values()), 2) == round(visible, 2)


def test_excluded_items_dropped_outside_edit_mode():
    parts = partition_items(sample_items(), excluded_ids={"3", "4"})
    assert [i.id for i in parts.grouped["Living Room"]] == ["1"]
    assert parts.subtotals["Living Room"] == 270.10
    assert parts.services == []
    assert parts.services_subtotal == 0


def test_excluded_items_listed_in_edit_mode_but_not_counted():
    parts = partition_items(sample_items(), excluded_ids=["3"], edit_mode=True)
    assert [i.id for i in parts.grouped["Living Room"]] == ["1", "3"]
    assert parts.subtotals["Living Room"] == 270.10


def test_single_bucket_when_not_grouping():
    parts = partition_items(sample_items(), group_by_room=False)
    assert parts.rooms == [UNGROUPED]
    assert len(parts.grouped[UNGROUPED]) == 4


def test_non_mapping_items_are_skipped():
    parts = partition_items(["oops", None, {"id": "a", "name": "Blind", "total_cost": 10}])
    assert parts.subtotals == {DEFAULT_ROOM: 10}


def test_service_detection():
    assert is_service(LineItem(name="Measure and quote"))
    assert is_service(LineItem(name="Curtain", category="service"))
    assert is_service(LineItem(treatment_type="Installation"))
    assert not is_service(LineItem(name="Roller blind"))
