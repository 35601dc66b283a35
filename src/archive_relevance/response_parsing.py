"""
Parsing of query-refinement payloads.

A refinement service (a hosted language model in production) answers with
loosely shaped JSON-like data: a bare string, ``{"text": ...}``, a chat
message whose content is a list of parts, or a completion with
``choices``. The text is pulled out by trying an ordered list of
extraction strategies, and the first JSON object inside that text is
turned into a RefinementPlan. Nothing here talks to the network.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .constants import RefinementConstants
from .exceptions import PayloadParseError

logger = logging.getLogger(__name__)

TextStrategy = Callable[[Any], Optional[str]]


@dataclass
class RefinementPlan:
    """A refined search query proposed for `source`."""

    source: str
    optimized_query: str
    keywords: List[str] = field(default_factory=list)
    confidence: Optional[float] = None
    model: Optional[str] = None
    rationale: Optional[str] = None


def _join_parts(content: Any) -> Optional[str]:
    if isinstance(content, str):
        return content
    if isinstance(content, (list, tuple)):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, Mapping) and isinstance(part.get("text"), str):
                parts.append(part["text"])
        return "".join(parts)
    return None


def _plain_string(payload: Any) -> Optional[str]:
    return payload if isinstance(payload, str) else None


def _text_field(payload: Any) -> Optional[str]:
    if isinstance(payload, Mapping) and isinstance(payload.get("text"), str):
        return payload["text"]
    return None


def _output_field(payload: Any) -> Optional[str]:
    if isinstance(payload, Mapping) and isinstance(payload.get("output"), str):
        return payload["output"]
    return None


def _message_content(payload: Any) -> Optional[str]:
    if not isinstance(payload, Mapping):
        return None
    message = payload.get("message")
    if not isinstance(message, Mapping):
        return None
    return _join_parts(message.get("content"))


def _first_choice(payload: Any) -> Optional[str]:
    if not isinstance(payload, Mapping):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, (list, tuple)) or not choices:
        return None
    first = choices[0]
    return _text_field(first) or _message_content(first)


RESPONSE_TEXT_STRATEGIES: Sequence[TextStrategy] = (
    _plain_string,
    _text_field,
    _output_field,
    _message_content,
    _first_choice,
)


def coerce_response_text(payload: Any, strategies: Sequence[TextStrategy] = RESPONSE_TEXT_STRATEGIES) -> Optional[str]:
    """Text from the first strategy that recognizes the payload's shape."""
    for strategy in strategies:
        text = strategy(payload)
        if text is not None:
            return text
    return None


def load_plan_payload(text: str) -> Dict[str, Any]:
    """
    Decode the outermost ``{...}`` span of `text`.

    Raises:
        PayloadParseError: no object span, invalid JSON, or a non-object value
    """
    if not isinstance(text, str):
        raise PayloadParseError("Refinement response is not text")
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        raise PayloadParseError("Refinement response holds no JSON object")
    try:
        payload = json.loads(text[start : end + 1])
    except json.JSONDecodeError as e:
        raise PayloadParseError(f"Refinement response is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise PayloadParseError("Refinement response JSON is not an object")
    return payload


def extract_json_candidate(text: str) -> Optional[Dict[str, Any]]:
    try:
        return load_plan_payload(text)
    except PayloadParseError as e:
        logger.warning("Ignoring refinement payload: %s", e)
        return None


def normalize_confidence(value: Any) -> Optional[float]:
    """Fractions pass through, percentages (1, 100] are scaled, anything else is None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return None
    if 0 <= value <= 1:
        return float(value)
    if 1 < value <= RefinementConstants.MAX_CONFIDENCE_PERCENT:
        return value / 100.0
    return None


def _first_text(payload: Mapping[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _first_list(payload: Mapping[str, Any], *keys: str) -> List[Any]:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, list):
            return value
    return []


def _plan_keywords(entries: Sequence[Any]) -> List[str]:
    keywords: List[str] = []
    seen = set()
    for entry in entries:
        if not isinstance(entry, str) or not entry.strip():
            continue
        trimmed = entry.strip()
        if trimmed.lower() in seen:
            continue
        seen.add(trimmed.lower())
        keywords.append(trimmed)
        if len(keywords) >= RefinementConstants.MAX_PLAN_KEYWORDS:
            break
    return keywords


def build_plan_from_payload(source: str, model: Optional[str], payload: Mapping[str, Any]) -> Optional[RefinementPlan]:
    optimized = _first_text(payload, "optimized_query", "optimizedQuery", "search_query", "query") or source
    if not optimized:
        return None
    confidence = None
    for key in ("confidence", "score", "certainty", "probability"):
        if payload.get(key) is not None:
            confidence = normalize_confidence(payload[key])
            break
    return RefinementPlan(
        source=source,
        optimized_query=optimized,
        keywords=_plan_keywords(_first_list(payload, "keywords", "terms", "focus_terms")),
        confidence=confidence,
        model=_first_text(payload, "model") or model,
        rationale=_first_text(payload, "rationale", "reason"),
    )


def parse_refinement_response(source: str, model: Optional[str], raw: Any) -> RefinementPlan:
    """
    Turn a raw refinement response into a plan.

    Never raises: an unusable response yields a plan that echoes `source`.
    """
    source = source.strip() if isinstance(source, str) else ""
    text = coerce_response_text(raw)
    payload = extract_json_candidate(text) if text else None
    plan = build_plan_from_payload(source, model, payload) if payload is not None else None
    return plan or RefinementPlan(source=source, optimized_query=source, model=model)
