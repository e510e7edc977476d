"""
Template Resolution

Dotted-path lookups against the nested data store and {{ key }} substitution.
"""

import json
import logging
import re
from collections.abc import Mapping, Sequence
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")
SINGLE_PLACEHOLDER_PATTERN = re.compile(r"^\{\{\s*([\w.]+)\s*\}\}$")


class _Missing:
    """Sentinel for a path that does not exist (distinct from a stored None)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()


def get_nested(data: Any, path: str) -> Any:
    """
    Look up a dot-notation path in nested mappings.

    Integer segments index into lists, so "items.0.name" works.

    Args:
        data: Root mapping (usually the data store)
        path: Dot-separated key path, e.g. "userInput.text"

    Returns:
        The value at the path, or MISSING on the first missing link
    """
    current = data
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                return MISSING
            current = current[part]
        elif (
            isinstance(current, Sequence)
            and not isinstance(current, (str, bytes))
            and part.isdigit()
        ):
            index = int(part)
            if index >= len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


def stringify(value: Any) -> str:
    """Convert a store value to text for interpolation into a larger string."""
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, indent=2, default=str)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def resolve_template(
    template: Any, store: Mapping, warnings: Optional[List[str]] = None
) -> Any:
    """
    Resolve {{ key }} placeholders in a template against the store.

    A template that is exactly one placeholder returns the raw value so
    non-string data (images, objects, numbers) flows through untouched.
    If that key is missing the template is returned unchanged.

    Anything else is treated as text: each placeholder is replaced by the
    stringified value. Placeholders whose key is missing stay verbatim and
    a warning is logged (and appended to ``warnings`` when given).

    Args:
        template: Template string (non-strings are returned as-is)
        store: Nested data store
        warnings: Optional list collecting non-fatal warnings

    Returns:
        Resolved value
    """
    if not isinstance(template, str):
        return template

    single = SINGLE_PLACEHOLDER_PATTERN.match(template.strip())
    if single:
        value = get_nested(store, single.group(1))
        return template if value is MISSING else value

    def replace(match: "re.Match[str]") -> str:
        key = match.group(1)
        value = get_nested(store, key)
        if value is MISSING or value is None:
            message = f'Template key "{key}" not found in data store.'
            logger.warning(message)
            if warnings is not None:
                warnings.append(message)
            return match.group(0)
        return stringify(value)

    return PLACEHOLDER_PATTERN.sub(replace, template)

