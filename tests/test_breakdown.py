"""
Tests for breakdown grouping of line-item children.

Covers the curtain panel example, the three grouping stages, and the
properties the grouper guarantees:
1. Running it on its own output changes nothing
2. The sum of entry totals equals the sum of the input totals
3. Zero-price chooser rows vanish once a real hardware pick exists
4. Merged children are emitted at their parent's position, whatever order they arrive in
"""

import sys
import os
from decimal import Decimal

# Add the parent directory to the path so we can import the composition package
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from composition.breakdown import (
    group_breakdown,
    normalize_key,
    strip_child_suffix,
    CHILD_SUFFIXES,
    BREAKDOWN_SUFFIX_TABLE_VERSION,
)


def curtain_panel_children():
    return [
        {"name": "Fabric: Linen", "category": "fabric", "total": 100, "isChild": True},
        {"name": "Lining Types: Blockout Lining", "category": "option", "total": 20, "isChild": True},
        {"name": "Lining Types Colour: White", "category": "option", "total": 0, "isChild": True},
        {"name": "Hardware Type: Rod", "category": "hardware_accessory", "total": 0, "isChild": True},
        {"name": "Select Rod: Wooden Rod", "category": "hardware_accessory", "total": 50, "isChild": True},
    ]


def dumps(entries):
    return [e.model_dump() for e in entries]


def total_of(entries):
    return sum(Decimal(str(e.total_cost)) for e in entries)


def test_curtain_panel_example():
    entries = group_breakdown(curtain_panel_children())

    assert len(entries) == 3

    hardware = entries[0]
    assert hardware.isHardwareGroup
    assert hardware.name == "Rod"
    assert hardware.total_cost == 50
    assert len(hardware.hardwareItems) == 1
    assert hardware.hardwareItems[0].description == "Wooden Rod"

    fabric = entries[1]
    assert fabric.name == "Fabric"
    assert fabric.description == "Linen"
    assert fabric.total_cost == 100

    lining = entries[2]
    assert lining.name == "Lining Types"
    assert lining.description == "Blockout Lining; Colour: White"
    assert lining.total_cost == 20


def test_grouping_is_idempotent():
    once = group_breakdown(curtain_panel_children())
    twice = group_breakdown(once)
    assert dumps(twice) == dumps(once)


def test_value_is_conserved():
    children = curtain_panel_children()
    entries = group_breakdown(children)
    assert total_of(entries) == sum(Decimal(str(c["total"])) for c in children)


def test_decimal_sums_do_not_drift():
    children = [
        {"name": "Track", "category": "hardware", "total": 0.1, "isChild": True},
        {"name": "Track Colour", "category": "hardware", "description": "White", "total": 0.2,
         "isChild": True},
    ]
    entries = group_breakdown(children)
    assert len(entries) == 1
    assert entries[0].total_cost == 0.3


def test_meaningless_selection_dropped_only_with_real_hardware():
    only_chooser = [
        {"name": "Hardware Type: Rod", "category": "hardware_accessory", "total": 0, "isChild": True},
        {"name": "Fabric: Linen", "category": "fabric", "total": 100, "isChild": True},
    ]
    entries = group_breakdown(only_chooser)
    assert [e.name for e in entries] == ["Fabric"]
    assert not any(e.isHardwareGroup for e in entries)


def test_zero_price_hardware_with_image_is_kept():
    children = [
        {"name": "Bracket", "category": "hardware", "total": 0, "isChild": True,
         "image_url": "https://example.com/bracket.png"},
    ]
    entries = group_breakdown(children)
    assert len(entries) == 1
    assert entries[0].isHardwareGroup
    assert entries[0].hardwareItems[0].image_url == "https://example.com/bracket.png"


def test_merge_is_order_independent():
    parent = {"name": "Lining Types: Blockout Lining", "category": "option", "total": 20, "isChild": True}
    child = {"name": "Lining Types Colour: White", "category": "option", "total": 5, "isChild": True}
    other = {"name": "Fabric: Linen", "category": "fabric", "total": 100, "isChild": True}

    forward = group_breakdown([other, parent, child])
    backward = group_breakdown([child, other, parent])

    assert [e.name for e in forward] == ["Fabric", "Lining Types"]
    # the child arrives first but is emitted at its parent's position
    assert [e.name for e in backward] == ["Fabric", "Lining Types"]
    assert forward[1].total_cost == backward[1].total_cost == 25
    assert forward[1].description == "Blockout Lining; Colour: White"


def test_chained_suffixes_merge_into_root():
    children = [
        {"name": "Track", "category": "option", "description": "Ceiling", "total": 30, "isChild": True},
        {"name": "Track Colour", "category": "option", "description": "Black", "total": 0, "isChild": True},
        {"name": "Track Colour Finish", "category": "option", "description": "Matte", "total": 4,
         "isChild": True},
    ]
    entries = group_breakdown(children)
    assert len(entries) == 1
    assert entries[0].total_cost == 34
    assert entries[0].description == "Ceiling; Colour: Black; Colour Finish: Matte"


def test_malformed_components_are_skipped():
    children = [
        "not a mapping",
        None,
        {"category": "fabric", "total": 10, "isChild": True},  # no name
        {"name": "Not a child", "total": 10},
        {"name": "Fabric: Linen", "category": "fabric", "total": 100, "isChild": True},
    ]
    entries = group_breakdown(children)
    assert [e.name for e in entries] == ["Fabric"]


def test_non_list_input_gives_no_entries():
    assert group_breakdown(None) == []
    assert group_breakdown({"name": "Fabric"}) == []
    assert group_breakdown([]) == []


def test_accessory_quantity_detail():
    children = [
        {"name": "Finial", "category": "hardware_accessory", "quantity": 2, "unit_price": 7.5,
         "total": 15, "isChild": True},
    ]
    entries = group_breakdown(children, "USD")
    item = entries[0].hardwareItems[0]
    assert item.name == "└ Finial"
    assert item.description == "2 × $7.50"


def test_existing_group_absorbs_new_hardware():
    children = [
        {"name": "Rod", "category": "hardware", "total": 50, "isChild": True, "isHardwareGroup": True,
         "hardwareItems": [{"name": "└ Select Rod", "category": "hardware_accessory",
                            "description": "Wooden Rod", "total_cost": 50, "isAccessory": True}]},
        {"name": "Bracket", "category": "hardware_accessory", "description": "Steel", "total": 8,
         "isChild": True},
    ]
    entries = group_breakdown(children)
    assert len(entries) == 1
    assert entries[0].total_cost == 58
    assert [i.description for i in entries[0].hardwareItems] == ["Wooden Rod", "Steel"]


def test_key_helpers():
    assert normalize_key("Lining Types Colour") == "lining_types_colour"
    assert normalize_key("  Roll-up  Blind! ") == "roll_up_blind"
    assert strip_child_suffix("lining_types_colour") == "lining_types"
    assert strip_child_suffix("colour") is None
    assert strip_child_suffix("hardware_type") is None
    # longest suffix is tried first
    assert CHILD_SUFFIXES.index("colours") < CHILD_SUFFIXES.index("colour")
    assert BREAKDOWN_SUFFIX_TABLE_VERSION >= 1


def test_hardware_child_does_not_pull_option_parent_into_hardware_group():
    children = [
        {"name": "Curtain: Pinch Pleat", "category": "option", "total": 200, "isChild": True},
        {"name": "Curtain Track: Silent Gliss", "category": "hardware", "total": 80, "isChild": True},
    ]
    entries = group_breakdown(children)
    assert [(e.name, e.isHardwareGroup, e.total_cost) for e in entries] == [("Curtain", False, 280.0)]
    assert entries[0].category == "option"


def test_name_without_label_keeps_whole_name():
    children = [{"name": ": Extra", "category": "other", "total": 12, "isChild": True}]
    once = group_breakdown(children)
    assert [(e.name, e.description) for e in once] == [(": Extra", "")]
    assert dumps(group_breakdown(once)) == dumps(once)
