"""
Ingredient list parsing and normalization.

Label text nests sub-ingredients in brackets, e.g.
  "Sugar, Chocolate (cocoa mass, sugar, emulsifier (soy lecithin)), Salt"
Only top-level commas separate ingredients.
"""
from __future__ import annotations
import re
from typing import Iterable, List

_OPENERS = "([{"
_CLOSERS = ")]}"
_WHITESPACE = re.compile(r"\s+")


def parse_ingredient_list(text: str) -> List[str]:
    """Split a label's ingredient text on commas at bracket depth 0."""
    if not text:
        return []

    parts: List[str] = []
    current: List[str] = []
    depth = 0
    for char in text:
        if char in _OPENERS:
            depth += 1
        elif char in _CLOSERS:
            depth = max(0, depth - 1)
        if char == "," and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))

    return normalize_ingredients(p.strip().rstrip(".") for p in parts)


def normalize_ingredients(items: Iterable[str]) -> List[str]:
    """Trim, collapse whitespace, drop empties, de-duplicate keeping first occurrence."""
    seen = set()
    result: List[str] = []
    for item in items:
        if not isinstance(item, str):
            continue
        cleaned = _WHITESPACE.sub(" ", item).strip()
        if not cleaned or cleaned in seen:
            continue
        seen.add(cleaned)
        result.append(cleaned)
    return result
