"""Two-stage JSON parsing for free-text model output.

Stage one parses the whole response. Stage two looks for a fenced code block,
or failing that the first balanced top-level object/array, and parses that.
Each stage returns a ``ParseResult`` instead of raising.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```", re.IGNORECASE)


@dataclass(frozen=True)
class ParseResult:
    value: object = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: object) -> ParseResult:
        return cls(value=value)

    @classmethod
    def failure(cls, error: str) -> ParseResult:
        return cls(error=error)


def _loads(text: str) -> ParseResult:
    try:
        return ParseResult.success(json.loads(text))
    except json.JSONDecodeError as e:
        return ParseResult.failure(f"invalid JSON: {e}")


def extract_fenced_block(src: str) -> str | None:
    match = _FENCE_RE.search(src)
    if not match:
        return None
    block = match.group(1).strip()
    return block or None


def extract_json_substring(src: str) -> str | None:
    """Return the first balanced top-level ``{...}`` or ``[...]`` in ``src``."""
    first_obj = src.find("{")
    first_arr = src.find("[")
    if first_obj == -1 and first_arr == -1:
        return None
    if first_arr == -1 or (first_obj != -1 and first_obj < first_arr):
        open_ch, close_ch, start = "{", "}", first_obj
    else:
        open_ch, close_ch, start = "[", "]", first_arr

    depth = 0
    in_string = False
    escape = False
    for idx in range(start, len(src)):
        ch = src[idx]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
            continue
        if ch == open_ch:
            depth += 1
        elif ch == close_ch:
            depth -= 1
            if depth == 0:
                return src[start : idx + 1]
    return None


def parse_strict(text: str) -> ParseResult:
    if not text or not text.strip():
        return ParseResult.failure("empty text")
    return _loads(text.strip())


def parse_embedded(text: str) -> ParseResult:
    if not text:
        return ParseResult.failure("empty text")

    candidates: list[str] = []
    fenced = extract_fenced_block(text)
    if fenced:
        candidates.append(fenced)
    bracketed = extract_json_substring(fenced or text)
    if bracketed and bracketed not in candidates:
        candidates.append(bracketed)
    if fenced:
        outer = extract_json_substring(text)
        if outer and outer not in candidates:
            candidates.append(outer)

    if not candidates:
        return ParseResult.failure("no JSON structure found")

    last_error = "no JSON structure found"
    for candidate in candidates:
        result = _loads(candidate)
        if result.ok:
            return result
        last_error = result.error or last_error
        logger.debug("Embedded JSON candidate rejected: %s", last_error)
    return ParseResult.failure(last_error)


def parse_llm_json(text: str) -> ParseResult:
    """Strict parse, then fall back to extracting an embedded structure."""
    result = parse_strict(text)
    if result.ok:
        return result
    return parse_embedded(text)
