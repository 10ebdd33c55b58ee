"""
Document composition module for quotes, invoices and work orders.

This module turns a block template plus raw project data into priced,
formatted document content.

Key functions:
- group_breakdown(children, currency): Collapse a line item's priced child
  components into display entries (option merges, one hardware summary).
- partition_items(items, ...): Split line items into room buckets and a
  trailing services section with per-bucket subtotals.
- TokenResolver(project_data).substitute(text): Fill ``{{ token }}``
  placeholders with formatted business, client, date and money values.
"""

from .models import ProjectData, LineItem, BreakdownComponent, BreakdownEntry, DisplaySettings, OverlaySnapshot
from .breakdown import group_breakdown, CHILD_SUFFIXES, BREAKDOWN_SUFFIX_TABLE_VERSION
from .partition import partition_items, ItemPartition, is_excluded
from .tokens import TokenResolver, TOKEN_NAMES, resolve_token, substitute_tokens
from .blocks import Block, PageSettings, parse_template, resolve_content, page_settings
from .overlay import EditableOverlay

__all__ = [
    "ProjectData", "LineItem", "BreakdownComponent", "BreakdownEntry", "DisplaySettings", "OverlaySnapshot",
    "group_breakdown", "CHILD_SUFFIXES", "BREAKDOWN_SUFFIX_TABLE_VERSION",
    "partition_items", "ItemPartition", "is_excluded",
    "TokenResolver", "TOKEN_NAMES", "resolve_token", "substitute_tokens",
    "Block", "PageSettings", "parse_template", "resolve_content", "page_settings",
    "EditableOverlay",
]
