from __future__ import annotations

import hashlib
import html
import re
from datetime import datetime, timezone
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from .config import VIDEO_URL_PATTERNS


TRACKING_PARAMS = {
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "fbclid",
    "gclid",
    "ref",
    "source",
    "mc_cid",
    "mc_eid",
    "_ga",
    "_gl",
    "yclid",
    "msclkid",
}
UTM_PREFIX = "utm_"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def normalize_whitespace(value: str) -> str:
    return re.sub(r"\s+", " ", value or "").strip()


def visible_char_count(value: str | None) -> int:
    """Length of the text once whitespace runs are collapsed and the ends trimmed."""
    if not value or not isinstance(value, str):
        return 0
    return len(normalize_whitespace(value))


def strip_html(value: str) -> str:
    text = re.sub(r"<[^>]+>", " ", value or "")
    text = html.unescape(text)
    return normalize_whitespace(text)


def stable_id(*parts: str) -> str:
    payload = "|".join(part for part in parts if part)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def canonicalize_url(url: str | None) -> str | None:
    """Normalize a source URL for duplicate detection.

    - Force https and drop a leading ``www.``
    - Strip tracking query parameters, sort the rest
    - Remove trailing slashes and the fragment
    """
    if not url or not url.strip():
        return None
    cleaned = url.strip()
    try:
        parsed = urlparse(cleaned)
    except ValueError:
        return cleaned.lower()
    if not parsed.netloc:
        return cleaned.lower()

    netloc = parsed.netloc.lower()
    if netloc.startswith("www."):
        netloc = netloc[4:]
    path = re.sub(r"/+$", "", parsed.path) or "/"
    query_pairs = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if key.lower() not in TRACKING_PARAMS and not key.lower().startswith(UTM_PREFIX)
    ]
    query_pairs.sort(key=lambda pair: pair[0])
    return urlunparse(("https", netloc, path, "", urlencode(query_pairs), ""))


def is_video_url(url: str | None) -> bool:
    lowered = (url or "").lower()
    return any(pattern in lowered for pattern in VIDEO_URL_PATTERNS)


def safe_sentence(text: str, max_chars: int = 220) -> str:
    cleaned = normalize_whitespace(text)
    if len(cleaned) <= max_chars:
        return cleaned
    truncated = cleaned[: max_chars - 1]
    period_idx = truncated.rfind(".")
    if period_idx > 80:
        return truncated[: period_idx + 1]
    return truncated + "..."
