from __future__ import annotations

import json
import logging
import re
from typing import Any

from .config import LEGACY_STANCES, STANCES
from .models import DraftEntry
from .utils import normalize_whitespace


log = logging.getLogger(__name__)

CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")
TRAILING_COMMA_RE = re.compile(r",\s*([\]}])")
FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)


class DraftParseError(ValueError):
    pass


def _escape_raw_newlines(raw: str) -> str:
    """Escape control characters that appear inside JSON string literals only."""
    out: list[str] = []
    in_string = False
    escaped = False
    for char in raw:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            elif char == "\n":
                char = "\\n"
            elif char == "\r":
                char = "\\r"
            elif char == "\t":
                char = "\\t"
            elif CONTROL_CHARS_RE.match(char):
                char = " "
        elif char == '"':
            in_string = True
        out.append(char)
    return "".join(out)


def safe_parse_ai_json(text: str, expect_array: bool = True) -> Any | None:
    """Parse JSON out of a model response.

    Stages: strict parse, repair (trailing commas, raw control characters),
    code-fence stripping, then outermost bracket extraction. Returns None when
    every stage fails.
    """
    if not text:
        return None
    pattern = r"\[[\s\S]*\]" if expect_array else r"\{[\s\S]*\}"
    match = re.search(pattern, text)
    if not match:
        log.debug("No JSON %s found in response.", "array" if expect_array else "object")
        return None
    raw = match.group(0)

    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        pass

    repaired = TRAILING_COMMA_RE.sub(r"\1", _escape_raw_newlines(raw))
    try:
        result = json.loads(repaired)
        log.debug("JSON repaired (escapes/trailing commas).")
        return result
    except json.JSONDecodeError:
        pass

    unfenced = TRAILING_COMMA_RE.sub(r"\1", _escape_raw_newlines(FENCE_RE.sub("", raw).replace("```", "")))
    try:
        result = json.loads(unfenced)
        log.debug("JSON repaired (code fences removed).")
        return result
    except json.JSONDecodeError:
        pass

    start_char, end_char = ("[", "]") if expect_array else ("{", "}")
    start_idx = raw.find(start_char)
    end_idx = raw.rfind(end_char)
    if start_idx != -1 and end_idx > start_idx:
        extracted = CONTROL_CHARS_RE.sub(" ", raw[start_idx : end_idx + 1])
        extracted = TRAILING_COMMA_RE.sub(r"\1", extracted)
        try:
            result = json.loads(extracted)
            log.debug("JSON repaired (core block extracted).")
            return result
        except json.JSONDecodeError:
            pass

    log.warning("JSON repair failed, all stages exhausted.")
    return None


def normalize_stance(value: Any) -> str:
    stance = normalize_whitespace(str(value or "")).lower()
    return LEGACY_STANCES.get(stance, stance)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _as_keywords(value: Any) -> list[str]:
    if isinstance(value, str):
        value = re.split(r"[,;，、]", value)
    if not isinstance(value, list):
        return []
    return [normalize_whitespace(str(item)) for item in value if normalize_whitespace(str(item))]


def draft_from_mapping(item: dict, default_source_url: str | None = None) -> DraftEntry:
    """Coerce one loosely-typed record into a DraftEntry; accepts legacy key names."""
    if not isinstance(item, dict):
        raise DraftParseError(f"draft item must be an object, got {type(item).__name__}")
    return DraftEntry(
        topic_code=_as_text(item.get("topic_code") or item.get("freq") or item.get("topic")),
        stance=normalize_stance(item.get("stance")),
        title=_as_text(item.get("title")),
        author_name=_as_text(item.get("author_name") or item.get("author")),
        body_text=_as_text(item.get("body_text") or item.get("content") or item.get("body")),
        author_bio=_as_text(item.get("author_bio")),
        source_description=_as_text(item.get("source_description") or item.get("source")),
        source_url=_as_text(item.get("source_url")) or default_source_url,
        keywords=_as_keywords(item.get("keywords")),
    )


def parse_drafts(text: str, default_source_url: str | None = None) -> list[DraftEntry]:
    """Turn a raw model response into drafts. Raises DraftParseError if nothing parses."""
    text = text or ""
    array_idx = text.find("[")
    object_idx = text.find("{")
    array_first = array_idx != -1 and (object_idx == -1 or array_idx < object_idx)
    payload = safe_parse_ai_json(text, expect_array=array_first)
    if payload is None:
        payload = safe_parse_ai_json(text, expect_array=not array_first)
    if payload is None:
        raise DraftParseError("response did not contain parseable JSON")
    if isinstance(payload, dict):
        payload = payload.get("items", payload.get("entries", [payload]))
    if not isinstance(payload, list):
        raise DraftParseError("response JSON is not a list of drafts")

    drafts: list[DraftEntry] = []
    for item in payload:
        try:
            drafts.append(draft_from_mapping(item, default_source_url=default_source_url))
        except DraftParseError as exc:
            log.warning("Dropping malformed draft item: %s", exc)
    return drafts


def is_valid_stance(stance: str) -> bool:
    return stance in STANCES
