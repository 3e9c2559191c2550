# src/routing/prompts.py — v1
"""Screening prompt rendering with {{dotted.path}} placeholders."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from stagegate.core.errors import ValidationError

_PLACEHOLDER_RE = re.compile(r"\{\{([^}]+)\}\}")


def _lookup(context: Mapping[str, Any], path: str) -> str:
    value: Any = context
    for key in path.strip().split("."):
        if isinstance(value, Mapping) and key in value:
            value = value[key]
        else:
            return ""
    return "" if value is None else str(value)


def build_screening_prompt(template: str, context: Mapping[str, Any] | None = None) -> str:
    """Substitute {{review.title}}-style placeholders from a nested mapping.

    Unknown placeholders render as empty strings.
    """
    if not isinstance(template, str) or not template:
        raise ValidationError("Template must be a non-empty string")
    ctx = context or {}
    return _PLACEHOLDER_RE.sub(lambda m: _lookup(ctx, m.group(1)), template)
