from __future__ import annotations

import logging
import re
from collections import Counter

from .config import (
    CORE_SLOTS,
    DOMAINS,
    LENGTH_THRESHOLDS,
    PROVENANCE_HEDGE_PATTERNS,
    SLOT_BY_CODE,
    domain_of,
)
from .models import CheckResult, DayPolicy, DraftEntry, PublishedEntry, ValidationReport
from .parsing import is_valid_stance, normalize_stance
from .utils import is_video_url, visible_char_count


log = logging.getLogger(__name__)

BLOCK = "BLOCK"
WARN = "WARN"

HEDGE_RES = [re.compile(pattern, re.IGNORECASE) for pattern in PROVENANCE_HEDGE_PATTERNS]
AUTHOR_FORBIDDEN_CHARS = set("<>{}")
MIN_AUTHOR_CHARS = 2
MIN_SOURCE_DESCRIPTION_CHARS = 10
KEYWORD_RANGE = (3, 5)


def find_hedge(text: str | None) -> str | None:
    """Return the first provenance-hedge phrase found in text, if any."""
    if not text:
        return None
    for pattern in HEDGE_RES:
        match = pattern.search(text)
        if match:
            return match.group(0)
    return None


def min_length_for(context: str) -> int:
    try:
        return LENGTH_THRESHOLDS[context]
    except KeyError:
        raise ValueError(f"unknown validation context: {context}") from None


def _check(name: str, category: str, severity: str, passed: bool, message: str = "") -> CheckResult:
    return CheckResult(name=name, category=category, severity=severity, passed=passed, message="" if passed else message)


def check_provenance(draft: DraftEntry) -> CheckResult:
    for field_name in ("body_text", "author_name", "author_bio", "source_description", "title"):
        hedge = find_hedge(getattr(draft, field_name))
        if hedge:
            return _check(
                "no_provenance_hedge",
                "authenticity",
                BLOCK,
                False,
                f"{field_name} contains speculative provenance phrase '{hedge}'",
            )
    return _check("no_provenance_hedge", "authenticity", BLOCK, True)


def check_required_fields(draft: DraftEntry) -> CheckResult:
    missing = [
        name
        for name in ("topic_code", "stance", "title", "author_name", "body_text")
        if not visible_char_count(getattr(draft, name))
    ]
    return _check("required_fields", "structure", BLOCK, not missing, f"missing {', '.join(missing)}")


def check_topic(draft: DraftEntry) -> CheckResult:
    return _check(
        "valid_topic",
        "structure",
        BLOCK,
        draft.topic_code in SLOT_BY_CODE,
        f"unknown topic code '{draft.topic_code}'",
    )


def check_stance(draft: DraftEntry) -> CheckResult:
    return _check(
        "valid_stance",
        "structure",
        BLOCK,
        is_valid_stance(normalize_stance(draft.stance)),
        f"stance must be yes or no, got '{draft.stance}'",
    )


def check_length(draft: DraftEntry, min_length: int) -> CheckResult:
    length = visible_char_count(draft.body_text)
    return _check(
        "content_length",
        "structure",
        BLOCK,
        length >= min_length,
        f"body has {length} visible characters, needs {min_length}",
    )


def check_author(draft: DraftEntry) -> CheckResult:
    name = draft.author_name or ""
    if visible_char_count(name) < MIN_AUTHOR_CHARS:
        return _check("author_name_format", "author", BLOCK, False, "author name too short")
    if find_hedge(name):
        return _check("author_name_format", "author", BLOCK, False, "author name is a provenance phrase")
    if AUTHOR_FORBIDDEN_CHARS & set(name):
        return _check("author_name_format", "author", BLOCK, False, "author name contains markup characters")
    return _check("author_name_format", "author", BLOCK, True)


def check_source(draft: DraftEntry) -> CheckResult:
    return _check(
        "source_present",
        "source",
        WARN,
        visible_char_count(draft.source_description) > MIN_SOURCE_DESCRIPTION_CHARS,
        "source description is missing or too vague",
    )


def check_keywords(draft: DraftEntry) -> CheckResult:
    low, high = KEYWORD_RANGE
    count = len(draft.keywords or [])
    return _check("keyword_count", "source", WARN, low <= count <= high, f"{count} keywords, expected {low}-{high}")


def validate_draft(draft: DraftEntry, context: str = "generation") -> ValidationReport:
    """Run every named check against one draft.

    The context picks the visible-length threshold: ``generation`` (700),
    ``publish`` (300) or ``audit`` (500). Any failed BLOCK check blocks the
    draft; WARN failures are only reported.
    """
    min_length = min_length_for(context)
    report = ValidationReport(
        checks=[
            check_provenance(draft),
            check_required_fields(draft),
            check_topic(draft),
            check_stance(draft),
            check_length(draft, min_length),
            check_author(draft),
            check_source(draft),
            check_keywords(draft),
        ]
    )
    if report.blocked:
        log.debug("Draft '%s' blocked: %s", draft.title[:60], report.summary())
    return report


def validate_batch(drafts: list[DraftEntry], context: str = "generation") -> dict:
    reports = [validate_draft(draft, context) for draft in drafts]
    return {
        "total": len(reports),
        "passed": sum(1 for report in reports if report.passed),
        "warned": sum(1 for report in reports if report.passed and report.warnings),
        "blocked": sum(1 for report in reports if report.blocked),
        "reports": reports,
    }


def entry_as_draft(entry: PublishedEntry) -> DraftEntry:
    return DraftEntry(
        topic_code=entry.topic_code,
        stance=entry.stance,
        title=entry.title,
        author_name=entry.author_name,
        body_text=entry.body_text,
        author_bio=entry.author_bio,
        source_description=entry.source_description,
        source_url=entry.source_url,
        keywords=list(entry.keywords),
    )


def audit_day(entries: list[PublishedEntry], policy: DayPolicy) -> dict:
    """Quota and content audit of one published day."""
    errors: list[str] = []
    warnings: list[str] = []

    total = len(entries)
    video_count = sum(1 for entry in entries if is_video_url(entry.source_url))
    non_video_count = total - video_count

    if total < policy.min_items:
        errors.append(f"{total} entries, below the minimum of {policy.min_items}")
    if total > policy.max_items:
        errors.append(f"{total} entries, above the maximum of {policy.max_items}")

    if not policy.content_type_flex:
        if video_count < policy.min_video_items:
            warnings.append(f"{video_count} video entries, expected at least {policy.min_video_items}")
        if non_video_count < policy.min_non_video_items:
            warnings.append(f"{non_video_count} non-video entries, expected at least {policy.min_non_video_items}")
        if policy.max_non_video_items is not None and non_video_count > policy.max_non_video_items:
            warnings.append(f"{non_video_count} non-video entries, expected at most {policy.max_non_video_items}")

    slot_counts = Counter(entry.topic_code for entry in entries)
    if not policy.is_theme_day:
        cap = policy.max_per_slot or 1
        for code, count in sorted(slot_counts.items()):
            if count > cap:
                errors.append(f"slot {code} used {count} times, cap is {cap}")

    if not policy.frequency_flex:
        covered = {domain_of(code) for code in slot_counts}
        missing = [DOMAINS[domain] for domain in DOMAINS if domain not in covered]
        if missing:
            warnings.append(f"domains not covered: {', '.join(missing)}")
        missing_core = [code for code in CORE_SLOTS if code not in slot_counts]
        if missing_core:
            warnings.append(f"core slots not covered: {', '.join(missing_core)}")

    entry_failures: dict[int | None, str] = {}
    for entry in entries:
        report = validate_draft(entry_as_draft(entry), context="audit")
        if report.blocked:
            entry_failures[entry.id] = report.summary()
    for entry_id, summary in entry_failures.items():
        errors.append(f"entry {entry_id}: {summary}")

    return {
        "total": total,
        "video": video_count,
        "non_video": non_video_count,
        "slot_counts": dict(slot_counts),
        "errors": errors,
        "warnings": warnings,
        "ok": not errors,
    }
