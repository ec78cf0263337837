"""Tolerant field extraction from interpretation text.

Every public function here returns a dict and never raises: structured JSON
when the text carries it, coarse keyword/regex matches otherwise.
"""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Any

from delegation_api.models import InterpretationResult

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
_JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")
_FENCED_JSON_PATTERN = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```", flags=re.IGNORECASE)

_BUDGET_PATTERNS = [
    re.compile(r"\$\s?(\d+(?:[.,]\d+)?)"),
    re.compile(r"\b(\d+(?:\.\d+)?)\s*(?:dollars|usd|bucks)\b", flags=re.IGNORECASE),
    re.compile(r"\b(?:under|below|within|max(?:imum)?|budget(?: of)?)\s+(\d+(?:\.\d+)?)\b", re.I),
]
_PRODUCT_PATTERN = re.compile(
    r"\b(?:buy|order|purchase|find|get|shop for)\s+(?:me\s+)?(?:a|an|some|the|new)?\s*"
    r"([a-z0-9][a-z0-9 -]*?)(?=\s+(?:under|below|for|within|with|from|that|by)\b|[.,;!?]|$)",
    flags=re.IGNORECASE,
)
_TICKETS_PATTERN = re.compile(r"\b(\d{1,2})\s*(?:movie\s+)?(?:tickets?|seats?|people)\b", re.I)
_LOCATION_PATTERN = re.compile(r"\b(?:in|near|at)\s+([A-Z][A-Za-z]+(?:\s+[A-Z][A-Za-z0-9]+)*)")
_SHOWTIME_PATTERN = re.compile(r"\b(\d{1,2}(?::\d{2})?\s*(?:am|pm))\b", flags=re.IGNORECASE)

MOVIE_GENRES = (
    "marvel",
    "action",
    "comedy",
    "horror",
    "drama",
    "animated",
    "sci-fi",
    "thriller",
    "romance",
    "documentary",
)
TIME_OF_DAY = ("morning", "afternoon", "evening", "night")
CASUAL_TONE_MARKERS = ("casual", "friendly", "informal", "hey", "thanks!")


def parse_structured(interpretation: InterpretationResult | str | None) -> dict[str, Any] | None:
    """Phase 1: return a structured payload if one can be found, else None."""
    if interpretation is None:
        return None
    if isinstance(interpretation, InterpretationResult):
        if interpretation.fields:
            return dict(interpretation.fields)
        text = interpretation.text
    else:
        text = interpretation

    candidates: list[str] = []
    fenced = _FENCED_JSON_PATTERN.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    greedy = _JSON_OBJECT_PATTERN.search(text)
    if greedy:
        candidates.append(greedy.group(0))

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return parsed
    if candidates:
        logger.debug("interpretation_parse event=json_rejected chars=%d", len(text))
    return None


def interpretation_text(interpretation: InterpretationResult | str | None) -> str:
    if interpretation is None:
        return ""
    if isinstance(interpretation, InterpretationResult):
        return interpretation.text
    return interpretation


def extract_message_fields(text: str) -> dict[str, Any]:
    if not text.strip():
        return {"recipients": [], "subject": None, "content": None, "tone": None}
    recipients = _dedupe(EMAIL_PATTERN.findall(text))
    lowered = text.lower()
    tone = "casual" if any(marker in lowered for marker in CASUAL_TONE_MARKERS) else "professional"
    subject: str | None = None
    if "thank" in lowered:
        subject = "Thank you"
    elif "follow up" in lowered or "follow-up" in lowered:
        subject = "Following up"
    elif "meeting" in lowered:
        subject = "Meeting"
    return {
        "recipients": recipients,
        "subject": subject,
        "content": text.strip() or None,
        "tone": tone,
    }


def extract_shopping_fields(text: str) -> dict[str, Any]:
    product: str | None = None
    match = _PRODUCT_PATTERN.search(text)
    if match:
        product = " ".join(match.group(1).split()).lower() or None

    budget: float | None = None
    for pattern in _BUDGET_PATTERNS:
        budget_match = pattern.search(text)
        if budget_match:
            budget = _to_float(budget_match.group(1))
            if budget is not None:
                break

    return {
        "productName": product,
        "budget": budget,
        "specifications": text.strip() or None,
    }


def extract_entertainment_fields(text: str) -> dict[str, Any]:
    lowered = text.lower()
    genre = next((genre for genre in MOVIE_GENRES if genre in lowered), None)
    time_of_day = next((slot for slot in TIME_OF_DAY if slot in lowered), None)
    showtime = _SHOWTIME_PATTERN.search(text)
    tickets_match = _TICKETS_PATTERN.search(text)
    location_match = _LOCATION_PATTERN.search(text)
    return {
        "movieType": genre,
        "preferredTime": showtime.group(1) if showtime else time_of_day,
        "location": location_match.group(1) if location_match else None,
        "tickets": int(tickets_match.group(1)) if tickets_match else None,
    }


KEYWORD_EXTRACTORS = {
    "message": extract_message_fields,
    "shopping": extract_shopping_fields,
    "entertainment": extract_entertainment_fields,
}


def resolve_fields(
    interpretation: InterpretationResult | str | None,
    *,
    category: str,
    defaults: dict[str, Any],
) -> tuple[dict[str, Any], str]:
    """Run the full fallback chain and report which phase produced the fields.

    Structured values win, keyword matches fill the gaps, and ``defaults`` fill
    whatever is still missing.
    """
    try:
        structured = parse_structured(interpretation) or {}
    except Exception:  # noqa: BLE001
        logger.warning("interpretation_parse event=structured_failed category=%s", category)
        structured = {}

    extractor = KEYWORD_EXTRACTORS.get(category, extract_message_fields)
    try:
        keyword_fields = extractor(interpretation_text(interpretation))
    except Exception:  # noqa: BLE001
        logger.warning("interpretation_parse event=keyword_failed category=%s", category)
        keyword_fields = {}

    merged = dict(defaults)
    for key, value in keyword_fields.items():
        if _present(value):
            merged[key] = value
    for key, value in structured.items():
        if _present(value):
            merged[key] = value

    if structured:
        source = "structured"
    elif any(_present(value) for value in keyword_fields.values()):
        source = "keywords"
    else:
        source = "defaults"
    return merged, source


def coerce_list(value: Any) -> list[str]:
    if isinstance(value, str):
        found = EMAIL_PATTERN.findall(value)
        return found or [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    return []


def coerce_int(value: Any, *, default: int, minimum: int = 1, maximum: int = 20) -> int:
    try:
        parsed = float(str(value).strip())
    except (TypeError, ValueError, OverflowError):
        return default
    if not math.isfinite(parsed):
        return default
    number = int(parsed)
    return max(minimum, min(maximum, number))


def coerce_float(value: Any, *, default: float) -> float:
    parsed: float | None = None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            parsed = float(value)
        except OverflowError:
            return default
    elif isinstance(value, str):
        parsed = _to_float(value.replace("$", "").strip())
    if parsed is None or not math.isfinite(parsed):
        return default
    return parsed


def _to_float(raw: str) -> float | None:
    try:
        parsed = float(raw.replace(",", ""))
    except ValueError:
        return None
    return parsed if math.isfinite(parsed) else None


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, list, tuple, dict)):
        return len(value) > 0
    return True


def _dedupe(values: list[str]) -> list[str]:
    seen: set[str] = set()
    output: list[str] = []
    for value in values:
        key = value.lower()
        if key in seen:
            continue
        seen.add(key)
        output.append(value)
    return output
