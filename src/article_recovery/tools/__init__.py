"""Deterministic tools: markdown section surgery and fix dispatch."""

from .dispatch import FixPlan, SectionFixGroup, plan_fixes
from .sections import (
    Section,
    find_section,
    get_section_content,
    insert_section,
    parse_sections,
    replace_section,
)

__all__ = [
    "FixPlan",
    "Section",
    "SectionFixGroup",
    "find_section",
    "get_section_content",
    "insert_section",
    "parse_sections",
    "plan_fixes",
    "replace_section",
]
