"""Utility functions shared by the template model, resolver and renderer.

Provides placeholder-token helpers for the ``{{fieldName}}`` wire syntax,
field-name normalization and safe string conversion of resolved values.
"""

from __future__ import annotations

import math
import re
import uuid
from typing import Any

# Placeholder tokens are double curly braces with no padding around the name
FIELD_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")
PLACEHOLDER_PATTERN = re.compile(r"\{\{([A-Za-z0-9_]+)\}\}")


def string_or_empty(value: Any) -> str:
    """Safely convert value to string, returning empty string for None/NaN.

    Parameters
    ----------
    value : Any
        Value to convert (may be None, NaN, empty string, or any type)

    Returns
    -------
    str
        Stringified value or empty string for None/NaN values

    Examples
    --------
    >>> string_or_empty(42)
    '42'
    >>> string_or_empty(None)
    ''
    """
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).strip()


def is_blank(value: Any) -> bool:
    """Return True if value renders as an empty string."""
    return string_or_empty(value) == ""


def placeholder_token(field_name: str) -> str:
    """Build the ``{{fieldName}}`` token for a dynamic field.

    Raises
    ------
    ValueError
        If field_name does not match ``[A-Za-z0-9_]+``.
    """
    if not is_valid_field_name(field_name):
        raise ValueError(
            f"Invalid field name {field_name!r}: "
            "must match [A-Za-z0-9_]+ to be used as a placeholder"
        )
    return "{{" + field_name + "}}"


def is_valid_field_name(field_name: str | None) -> bool:
    if not isinstance(field_name, str):
        return False
    return FIELD_NAME_PATTERN.match(field_name) is not None


def extract_placeholders(content: str) -> list[str]:
    """Extract placeholder names from rendered template HTML, in order.

    Unlike a set, the returned list keeps duplicates so callers can check
    that every token appears exactly once.

    Examples
    --------
    >>> extract_placeholders("<div>{{patient_name}}</div><div>{{age}}</div>")
    ['patient_name', 'age']
    """
    return PLACEHOLDER_PATTERN.findall(content)


def field_name_from_label(label: str | None, index: int) -> str:
    """Derive a placeholder-safe field name from a human label.

    Lower-cases the label and replaces whitespace runs with underscores;
    any remaining characters outside ``[A-Za-z0-9_]`` are dropped. Falls back
    to ``field_<index>`` when nothing usable remains.

    Examples
    --------
    >>> field_name_from_label("Patient Name", 0)
    'patient_name'
    >>> field_name_from_label("Doctor's Signature", 3)
    'doctors_signature'
    >>> field_name_from_label(None, 3)
    'field_3'
    """
    if label:
        candidate = re.sub(r"\s+", "_", label.strip().lower())
        candidate = re.sub(r"[^A-Za-z0-9_]", "", candidate)
        if candidate:
            return candidate
    return f"field_{index}"


def new_element_id(prefix: str) -> str:
    """Generate a unique, stable element id such as ``field-3f9a1c2b7d4e``."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"
