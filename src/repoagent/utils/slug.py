"""Utilities for generating branch-safe, length-limited slugs."""

from __future__ import annotations

import re
from typing import Pattern

_NON_ALNUM: Pattern[str] = re.compile(r"[^a-z0-9]+")

DEFAULT_SLUG_LENGTH = 64


def slugify(
    value: str | None,
    *,
    fallback: str = "task",
    max_length: int = DEFAULT_SLUG_LENGTH,
) -> str:
    """Normalize ``value`` into a lowercase, hyphen-separated slug.

    Runs of characters outside ``[a-z0-9]`` collapse into a single hyphen and
    leading/trailing hyphens are trimmed.  The result is capped at
    ``max_length`` characters; an empty result falls back to ``fallback``.
    """
    slug = _normalize(value or "")
    if len(slug) > max_length:
        slug = slug[:max_length].rstrip("-")
    if not slug:
        slug = _normalize(fallback)[:max_length] or "task"
    return slug


def _normalize(value: str) -> str:
    return _NON_ALNUM.sub("-", value.strip().lower()).strip("-")


__all__ = ["DEFAULT_SLUG_LENGTH", "slugify"]
