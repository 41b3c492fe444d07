"""
Preprocessing for listing data fed into a downstream ingestion pipeline.

Sanitizes scraped HTML, strips portal markers, optionally anonymizes PII,
normalizes units and currency, and splits descriptions into token-sized
chunks. Translation is relayed to the LLM through a caller-supplied
`translator`; nothing here talks to the network directly.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

import structlog

from .errors import LLMError

log = structlog.get_logger()

DEFAULT_CHUNK_TOKENS = 500
CHARS_PER_TOKEN = 4

SQM_TO_SQFT = 10.7639

AED_RATES = {
    "AED": 1.0,
    "USD": 3.6725,
    "EUR": 4.0173,
    "GBP": 4.6723,
}

_PROPERTY_TYPES = {
    "apartment": "Apartment",
    "flat": "Apartment",
    "villa": "Villa",
    "house": "Villa",
    "townhouse": "Townhouse",
    "duplex": "Duplex",
    "penthouse": "Penthouse",
    "commercial": "Commercial",
    "office": "Office",
    "retail": "Retail",
    "land": "Land",
    "plot": "Land",
}

_SQM_UNITS = {"sqm", "sq m", "square meter", "square meters", "m²", "m2"}

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")
_MARKER_RE = re.compile(r"\[(?:BAYUT_EXCLUSIVE|PROPERTY_FINDER_EXCLUSIVE|AGENT_REF:[^\]]+)\]", re.IGNORECASE)
_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+")

_EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
_PHONE_RE = re.compile(r"(\+\d{1,3}[\s.-])?\(?\d{2,3}\)?[\s.-]?\d{3}[\s.-]?\d{4}")
_ID_RE = re.compile(r"\b[A-Z0-9]{3,4}-[A-Z0-9]{5,6}-[A-Z0-9]\b")

Translator = Callable[[str, str, str], Awaitable[str]]

SAMPLE_PROPERTIES: list[dict[str, Any]] = [
    {
        "id": "sample-1",
        "title": "<b>Luxury 2BR</b> with Marina View",
        "description": (
            "<p>Stunning apartment in Dubai Marina. [BAYUT_EXCLUSIVE] Contact agent@example.com "
            "or +971 50 123 4567 for viewings.</p> Close to the metro. Fully furnished."
        ),
        "price": 500000,
        "currency": "USD",
        "size": 120,
        "area_unit": "sqm",
        "propertyType": "flat",
        "originalLanguage": "en",
        "createdAt": "2024-01-15T10:00:00Z",
    }
]


def sanitize_text(text: str) -> str:
    out = _TAG_RE.sub(" ", text)
    out = out.replace("&nbsp;", " ").replace("&amp;", "&")
    return _WS_RE.sub(" ", out).strip()


def strip_markers(text: str) -> str:
    return _WS_RE.sub(" ", _MARKER_RE.sub("", text)).strip()


def anonymize_data(text: str) -> str:
    out = _EMAIL_RE.sub("[EMAIL_REDACTED]", text)
    out = _PHONE_RE.sub("[PHONE_REDACTED]", out)
    return _ID_RE.sub("[ID_REDACTED]", out)


def convert_to_square_feet(value: float, unit: str) -> float:
    if unit.strip().lower() in _SQM_UNITS:
        return round(value * SQM_TO_SQFT, 2)
    return value


def convert_to_aed(value: float, currency: str) -> float:
    return value * AED_RATES.get(currency.strip().upper(), 1.0)


def standardize_property_type(value: str) -> str:
    lowered = value.strip().lower()
    if lowered in _PROPERTY_TYPES:
        return _PROPERTY_TYPES[lowered]
    # "townhouse" must win over "house"
    for key in sorted(_PROPERTY_TYPES, key=len, reverse=True):
        if key in lowered:
            return _PROPERTY_TYPES[key]
    return value


def chunk_text(text: str, max_tokens: int = DEFAULT_CHUNK_TOKENS) -> list[str]:
    """Split text at sentence boundaries into chunks of roughly `max_tokens` tokens."""
    if max_tokens <= 0:
        raise ValueError("max_tokens must be > 0.")
    if not text.strip():
        return []
    limit = max_tokens * CHARS_PER_TOKEN
    sentences = _SENTENCE_RE.findall(text)
    consumed = sum(len(s) for s in sentences)
    tail = text[consumed:] if consumed else text
    if sentences and tail.strip():
        sentences.append(tail)
    elif not sentences:
        sentences = [text]

    chunks: list[str] = []
    current = ""
    for sentence in sentences:
        if current and len(current) + len(sentence) > limit:
            chunks.append(current.strip())
            current = ""
        current += sentence
    if current.strip():
        chunks.append(current.strip())
    return chunks


def process_description(description: str, chunk_size: int = DEFAULT_CHUNK_TOKENS) -> list[str]:
    return chunk_text(strip_markers(sanitize_text(description)), chunk_size)


def _iso(value: Any) -> Any:
    if not isinstance(value, str) or not value:
        return value
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).isoformat()
    except ValueError:
        return value


def normalize_property(prop: dict[str, Any]) -> dict[str, Any]:
    out = copy.deepcopy(prop)
    if isinstance(out.get("price"), (int, float)):
        out["price"] = convert_to_aed(out["price"], str(out.get("currency") or "AED"))
        out["currency"] = "AED"
    if isinstance(out.get("size"), (int, float)) and out.get("area_unit"):
        out["size"] = convert_to_square_feet(out["size"], str(out["area_unit"]))
        out["area_unit"] = "sqft"
    for field in ("createdAt", "updatedAt"):
        if field in out:
            out[field] = _iso(out[field])
    if isinstance(out.get("propertyType"), str):
        out["propertyType"] = standardize_property_type(out["propertyType"])
    return out


def sanitize_property(prop: dict[str, Any]) -> dict[str, Any]:
    out = dict(prop)
    if isinstance(out.get("description"), str):
        out["description"] = strip_markers(sanitize_text(out["description"]))
    if isinstance(out.get("title"), str):
        out["title"] = sanitize_text(out["title"])
    return out


async def _translate_property(
    prop: dict[str, Any],
    translator: Translator,
    source: str,
    target: str,
    target_code: str,
) -> dict[str, Any]:
    out = dict(prop)
    try:
        for field in ("title", "description"):
            if isinstance(out.get(field), str) and out[field]:
                out[field] = await translator(out[field], source, target)
    except LLMError as e:
        log.warning("ingestion_translation_failed", error=e.message, target=target)
        return prop
    out["originalLanguage"] = target_code
    return out


async def process_properties(
    properties: list[dict[str, Any]],
    options: dict[str, Any] | None = None,
    *,
    translator: Translator | None = None,
) -> list[dict[str, Any]]:
    opts = options or {}
    chunk_size = opts.get("chunkSize")
    processed: list[dict[str, Any]] = []
    for prop in properties:
        item = sanitize_property(normalize_property(prop))
        language = prop.get("originalLanguage")
        if translator is not None:
            if opts.get("translateToEnglish") and language == "ar":
                item = await _translate_property(item, translator, "Arabic", "English", "en")
            elif opts.get("translateToArabic") and language == "en":
                item = await _translate_property(item, translator, "English", "Arabic", "ar")
        if opts.get("removePII"):
            for field in ("title", "description"):
                if isinstance(item.get(field), str):
                    item[field] = anonymize_data(item[field])
        if chunk_size and isinstance(item.get("description"), str):
            item["descriptionChunks"] = chunk_text(item["description"], int(chunk_size))
        processed.append(item)
    return processed
