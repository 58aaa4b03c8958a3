from __future__ import annotations

import logging

from .config import domain_of
from .gap import missing_domains, slot_has_room, slot_limit
from .models import AllocationOutcome, DayPolicy, DraftEntry, Gap
from .store import REJECTED, PublishedStore


log = logging.getLogger(__name__)


class Allocator:
    """Places a validated, non-duplicate draft into a day's topic slots."""

    def __init__(self, store: PublishedStore) -> None:
        self.store = store

    def precheck(self, draft: DraftEntry, gap: Gap, policy: DayPolicy) -> str | None:
        """Reason the draft cannot be placed against this gap, or None."""
        if gap.remaining_capacity <= 0:
            return f"daily maximum of {policy.max_items} reached"
        if not slot_has_room(gap, policy, draft.topic_code):
            return f"slot {draft.topic_code} is not available"
        if not policy.frequency_flex:
            # Keep room for the domains still missing before repeating one.
            open_domains = missing_domains(gap)
            if open_domains and domain_of(draft.topic_code) not in open_domains:
                if 0 < gap.total_gap <= len(open_domains):
                    return f"domain {domain_of(draft.topic_code)} already covered, still missing {''.join(open_domains)}"
        return None

    def allocate(self, day: str, draft: DraftEntry, gap: Gap, policy: DayPolicy) -> AllocationOutcome:
        reason = self.precheck(draft, gap, policy)
        if reason:
            return AllocationOutcome(REJECTED, reason)
        outcome = self.store.insert(day, draft, max_items=policy.max_items, slot_limit=slot_limit(policy))
        if outcome.published:
            log.info("Allocated %s/%s: %s", day, draft.topic_code, draft.title[:60])
        else:
            log.info("Allocation of %s/%s skipped (%s): %s", day, draft.topic_code, outcome.status, outcome.reason)
        return outcome
