from __future__ import annotations

import logging

from .config import TITLE_SIMILARITY_THRESHOLD
from .models import DraftEntry
from .store import PublishedStore
from .utils import canonicalize_url, normalize_whitespace


log = logging.getLogger(__name__)


def title_similarity(left: str, right: str) -> float:
    """Jaccard ratio over the sets of characters in two titles (whitespace ignored)."""
    left_chars = set(normalize_whitespace(left).lower().replace(" ", ""))
    right_chars = set(normalize_whitespace(right).lower().replace(" ", ""))
    if not left_chars or not right_chars:
        return 0.0
    return len(left_chars & right_chars) / len(left_chars | right_chars)


class DuplicateDetector:
    """URL identity across all dates plus title similarity within a date window."""

    def __init__(
        self,
        store: PublishedStore,
        window_days: int = 0,
        threshold: float = TITLE_SIMILARITY_THRESHOLD,
    ) -> None:
        self.store = store
        self.window_days = window_days
        self.threshold = threshold

    def check(self, day: str, draft: DraftEntry) -> tuple[bool, str]:
        normalized = canonicalize_url(draft.source_url)
        if normalized:
            existing = self.store.find_by_normalized_url(normalized)
            if existing is not None:
                return True, f"source URL already published on {existing.date} (entry {existing.id})"

        for entry in self.store.entries_in_window(day, self.window_days):
            ratio = title_similarity(draft.title, entry.title)
            if ratio >= self.threshold:
                return True, f"title {ratio:.0%} similar to entry {entry.id} '{entry.title[:60]}'"
        return False, ""
