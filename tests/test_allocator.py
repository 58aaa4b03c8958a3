##########################################################################################
#
# Script name: test_allocator.py
#
# Description: Slot, cap and domain-balance rules applied at allocation time.
#
##########################################################################################

from conftest import make_draft
from radar_feed.allocator import Allocator
from radar_feed.gap import compute_gap
from radar_feed.models import DayPolicy
from radar_feed.store import PUBLISHED, REJECTED


DAY = '2026-03-10'
ORDINARY = DayPolicy(min_items=6, max_items=8)
THEME = DayPolicy(min_items=20, max_items=30, max_per_slot=None, frequency_flex=True, is_theme_day=True)


def _allocate(allocator, published, policy, draft):
    gap = compute_gap(DAY, policy, published.entries_for_date(DAY))
    return allocator.allocate(DAY, draft, gap, policy)


def test_used_slot_is_rejected_on_ordinary_day(published) -> None:
    allocator = Allocator(published)
    assert _allocate(allocator, published, ORDINARY, make_draft('T1', title='a', source_url='https://e.com/1')).published
    outcome = _allocate(allocator, published, ORDINARY, make_draft('T1', title='b', source_url='https://e.com/2'))
    assert outcome.status == REJECTED
    assert 'T1' in outcome.reason


def test_domain_repeat_waits_until_other_domains_are_covered(published) -> None:
    allocator = Allocator(published)
    _allocate(allocator, published, ORDINARY, make_draft('T1', title='a', source_url='https://e.com/1'))
    # T2 is a free slot but the tech domain is covered and five domains still need one entry each.
    outcome = _allocate(allocator, published, ORDINARY, make_draft('T2', title='b', source_url='https://e.com/2'))
    assert outcome.status == REJECTED
    assert 'domain' in outcome.reason


def test_domain_repeat_allowed_when_gap_exceeds_missing_domains(published) -> None:
    allocator = Allocator(published)
    policy = DayPolicy(min_items=8, max_items=10)
    _allocate(allocator, published, policy, make_draft('T1', title='a', source_url='https://e.com/1'))
    # 7 still needed, 5 domains missing: room for a second tech entry.
    assert _allocate(allocator, published, policy, make_draft('T2', title='b', source_url='https://e.com/2')).published


def test_daily_maximum(published) -> None:
    allocator = Allocator(published)
    policy = DayPolicy(min_items=1, max_items=2, frequency_flex=True)
    for idx, code in enumerate(['T1', 'P1']):
        assert _allocate(allocator, published, policy, make_draft(code, title=code, source_url=f'https://e.com/{idx}')).published
    outcome = _allocate(allocator, published, policy, make_draft('H1', title='H1', source_url='https://e.com/9'))
    assert outcome.status == REJECTED
    assert 'maximum' in outcome.reason


def test_theme_day_allows_repeated_slot(published) -> None:
    allocator = Allocator(published)
    for idx in range(3):
        outcome = _allocate(allocator, published, THEME, make_draft('P3', title=f'entry {idx}', source_url=f'https://e.com/{idx}'))
        assert outcome.status == PUBLISHED
    assert published.slot_counts(DAY) == {'P3': 3}


def test_capped_theme_day_stops_at_cap(published) -> None:
    allocator = Allocator(published)
    policy = DayPolicy(min_items=10, max_items=15, max_per_slot=2, frequency_flex=True, is_theme_day=True)
    results = [
        _allocate(allocator, published, policy, make_draft('P3', title=f'entry {idx}', source_url=f'https://e.com/{idx}')).status
        for idx in range(3)
    ]
    assert results == [PUBLISHED, PUBLISHED, REJECTED]


def test_stale_gap_is_caught_by_the_store(published) -> None:
    allocator = Allocator(published)
    stale_gap = compute_gap(DAY, ORDINARY, [])
    assert allocator.allocate(DAY, make_draft('T1', title='a', source_url='https://e.com/1'), stale_gap, ORDINARY).published
    outcome = allocator.allocate(DAY, make_draft('T1', title='b', source_url='https://e.com/2'), stale_gap, ORDINARY)
    assert not outcome.published
    assert published.count_for_date(DAY) == 1


def test_domain_repeat_allowed_once_minimum_is_met(published) -> None:
    allocator = Allocator(published)
    policy = DayPolicy(min_items=1, max_items=3)
    assert _allocate(allocator, published, policy, make_draft('T1', title='a', source_url='https://e.com/1')).published
    # Minimum met: nothing left to reserve for the five uncovered domains.
    assert _allocate(allocator, published, policy, make_draft('T2', title='b', source_url='https://e.com/2')).published
