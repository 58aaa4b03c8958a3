from __future__ import annotations

from collections import Counter

from .config import CORE_SLOTS, DOMAINS, TOPIC_SLOTS, domain_of
from .models import DayPolicy, Gap, PublishedEntry
from .utils import is_video_url


def compute_gap(day: str, policy: DayPolicy, entries: list[PublishedEntry]) -> Gap:
    """Remaining capacity for a date, by total count, content type and topic slot.

    Always derived from the entries passed in; callers re-read the store before
    every call so allocations made earlier in the same run are reflected.
    """
    current_count = len(entries)
    video_count = sum(1 for entry in entries if is_video_url(entry.source_url))
    non_video_count = current_count - video_count
    slot_counts = Counter(entry.topic_code for entry in entries)
    used_slots = set(slot_counts)

    missing_core: list[str] = []
    if not policy.frequency_flex:
        missing_core = [code for code in CORE_SLOTS if code not in used_slots]

    return Gap(
        date=day,
        current_count=current_count,
        total_gap=max(0, policy.min_items - current_count),
        video_gap=max(0, policy.min_video_items - video_count),
        non_video_gap=max(0, policy.min_non_video_items - non_video_count),
        used_slots=used_slots,
        missing_core_slots=missing_core,
        available_slots=[slot.code for slot in TOPIC_SLOTS if slot.code not in used_slots],
        remaining_capacity=max(0, policy.max_items - current_count),
        slot_counts=dict(slot_counts),
    )


def missing_domains(gap: Gap) -> list[str]:
    covered = {domain_of(code) for code in gap.used_slots}
    return [domain for domain in DOMAINS if domain not in covered]


def slot_limit(policy: DayPolicy) -> int | None:
    # An uncapped slot is a theme-day privilege; ordinary days fall back to one.
    if policy.max_per_slot is None:
        return None if policy.is_theme_day else 1
    return policy.max_per_slot


def slot_has_room(gap: Gap, policy: DayPolicy, topic_code: str) -> bool:
    limit = slot_limit(policy)
    if limit is None:
        return True
    if limit == 1:
        return topic_code in gap.available_slots
    return gap.slot_counts.get(topic_code, 0) < limit
