"""
Structured-output extraction from free-form model text.

Models wrap JSON in prose or markdown fences often enough that a plain
``json.loads`` is not sufficient. ``extract_json_from_text`` tries, in order:
the whole string, fenced code blocks, then every balanced ``{...}``/``[...]``
span. ``parse_quality_text`` is a degraded regex reader for quality scores
used only when no JSON can be recovered; its numbers are good enough for the
regeneration threshold and nothing more.
"""

import json
import logging
import re
from typing import Any, Dict, Iterator, List, Optional

from ..exceptions import ValidationError
from ..models import QualityScore, rescale_bare_score

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*\s*\n?(.*?)```", re.DOTALL)
_CLOSERS = {"{": "}", "[": "]"}

QUALITY_CATEGORIES = ("accuracy", "completeness", "professionalism", "seo", "accessibility", "design")
_NUMBER = r"(\d+(?:\.\d+)?)\s*(?:/\s*(10|100)\b|(%))?"
_OVERALL_RE = re.compile(r"overall(?:\s+(?:quality|score))*\s*(?:score)?\s*(?:is|of|[:=\-])?\s*" + _NUMBER, re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Return the body of the first fenced block, or the text unchanged."""
    if not text:
        return text
    match = _FENCE_RE.search(text)
    return match.group(1).strip() if match else text.strip()


def _balanced_spans(text: str) -> Iterator[str]:
    """Yield every balanced JSON-looking span, outermost first, in order."""
    for start, ch in enumerate(text):
        if ch not in _CLOSERS:
            continue
        depth = 0
        in_string = False
        escaped = False
        for end in range(start, len(text)):
            c = text[end]
            if in_string:
                if escaped:
                    escaped = False
                elif c == "\\":
                    escaped = True
                elif c == '"':
                    in_string = False
                continue
            if c == '"':
                in_string = True
            elif c in "{[":
                depth += 1
            elif c in "}]":
                depth -= 1
                if depth == 0:
                    yield text[start:end + 1]
                    break


def extract_json_from_text(text: str, prompt_id: Optional[str] = None) -> Any:
    """Parse the first JSON document found in model output.

    Raises:
        ValidationError: when nothing parseable is present
    """
    if not text or not text.strip():
        raise ValidationError("Empty model output", prompt_id=prompt_id)

    stripped = text.strip()
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        pass

    for block in _FENCE_RE.findall(stripped):
        try:
            return json.loads(block.strip())
        except json.JSONDecodeError:
            continue

    for span in _balanced_spans(stripped):
        try:
            return json.loads(span)
        except json.JSONDecodeError:
            continue

    raise ValidationError(f"No JSON object found in model output ({len(text)} chars)", prompt_id=prompt_id)


def _normalise(value: str, denominator: Optional[str], percent: Optional[str]) -> Optional[float]:
    v = float(value)
    if denominator:
        v = v / float(denominator)
    elif percent:
        v = v / 100
    else:
        v = rescale_bare_score(v)
    if v is not None and 0 <= v <= 1:
        return v
    return None


def _bullets_after(heading: str, text: str) -> List[str]:
    match = re.search(rf"{heading}\s*:?\s*\n((?:\s*[-*\d.]+\s+.+\n?)+)", text, re.IGNORECASE)
    if not match:
        return []
    items = []
    for line in match.group(1).splitlines():
        line = re.sub(r"^\s*(?:[-*]|\d+\.)\s+", "", line).strip()
        if line:
            items.append(line)
    return items


def parse_quality_text(text: str) -> QualityScore:
    """Best-effort quality score from prose such as ``Overall score: 72/100``.

    The returned score is flagged ``degraded``.

    Raises:
        ValidationError: when no overall score can be found
    """
    overall = None
    for match in _OVERALL_RE.finditer(text or ""):
        overall = _normalise(*match.groups())
        if overall is not None:
            break
    if overall is None:
        raise ValidationError("No overall score found in quality text", prompt_id="score_website")

    per_category: Dict[str, float] = {}
    for category in QUALITY_CATEGORIES:
        m = re.search(rf"\b{category}\b\s*[:=\-]?\s*" + _NUMBER, text, re.IGNORECASE)
        if m:
            v = _normalise(*m.groups())
            if v is not None:
                per_category[category] = v

    logger.warning("Quality score parsed from text fallback: overall=%.2f", overall)
    return QualityScore(
        overall=overall,
        per_category=per_category,
        issues=_bullets_after("issues", text),
        suggestions=_bullets_after("suggestions", text),
        degraded=True,
    )
