##########################################################################################
#
# Script name: test_generation.py
#
# Description: Generation loop end to end against in-memory stores.
#
##########################################################################################

from datetime import timedelta

from conftest import NOW, distinct_title, make_candidate, make_draft
from radar_feed.config import domain_of
from radar_feed.generation import GenerationLoop
from radar_feed.models import (
    BUDGET_EXHAUSTED,
    CIRCUIT_BREAKER,
    DRY_RUN,
    GAP_CLOSED,
    NO_CANDIDATES,
    RunOptions,
)
from radar_feed.store import BLOCKED, DUPLICATE, PUBLISHED, REJECTED
from radar_feed.synthesizer import StaticSynthesizer, SynthesisError


DAY = '2026-03-10'
THEME_DAY = '2026-01-20'


class FlakySynthesizer:
    '''Fails for the listed candidate ids and delegates the rest.'''

    def __init__(
        self,
        failing: set[str],
        fallback: StaticSynthesizer | None = None,
        error: type[Exception] = SynthesisError,
    ) -> None:
        self.failing = failing
        self.fallback = fallback or StaticSynthesizer()
        self.error = error
        self.calls: list[str] = []

    def synthesize(self, candidate):
        self.calls.append(candidate.id)
        if candidate.id in self.failing:
            raise self.error(f'timeout for {candidate.id}')
        return self.fallback.synthesize(candidate)


def _queue(candidate_store, codes: list[str], start: int = 0, **candidate_fields) -> dict:
    '''Queue one candidate per topic code, newest first, each yielding one draft.'''
    drafts = {}
    for offset, code in enumerate(codes):
        idx = start + offset
        candidate_id = f'c{idx:02d}'
        candidate = make_candidate(candidate_id, discovered_at=NOW - timedelta(minutes=idx), **candidate_fields)
        candidate_store.add(candidate)
        drafts[candidate_id] = [make_draft(code, title=distinct_title(idx), source_url=candidate.url)]
    return drafts


def _loop(resolver, published, candidate_store, synthesizer) -> GenerationLoop:
    return GenerationLoop(resolver=resolver, published=published, candidates=candidate_store, synthesizer=synthesizer)


def test_ordinary_day_fills_distinct_domains(resolver, published, candidate_store) -> None:
    codes = ['T1', 'T2', 'P1', 'P2', 'H1', 'Φ1', 'R1', 'F1', 'H2', 'F2']
    drafts = _queue(candidate_store, codes)
    loop = _loop(resolver, published, candidate_store, StaticSynthesizer(drafts))

    result = loop.run_generation(DAY, now=NOW)

    entries = published.entries_for_date(DAY)
    domains = [domain_of(entry.topic_code) for entry in entries]
    assert 6 <= len(entries) <= 8
    assert len(domains) == len(set(domains))
    assert result.terminal_reason == GAP_CLOSED
    assert result.published == len(entries)
    assert result.eligible == 10
    # Default budget is two calls per allowed entry.
    assert result.synthesis_budget == 16
    # T2 and P2 wait behind the uncovered domains.
    assert result.synthesis_calls == 8
    assert candidate_store.get('c00').consumed
    assert candidate_store.get('c00').skip_reason == 'allocated'
    assert not candidate_store.get('c01').consumed
    assert candidate_store.get('c01').failure_count == 1


def test_run_is_idempotent_once_gap_closed(resolver, published, candidate_store) -> None:
    drafts = _queue(candidate_store, ['T1', 'P1', 'H1', 'Φ1', 'R1', 'F1', 'T2', 'P2'])
    synthesizer = StaticSynthesizer(drafts)
    loop = _loop(resolver, published, candidate_store, synthesizer)
    loop.run_generation(DAY, now=NOW)
    calls_after_first = len(synthesizer.calls)

    again = loop.run_generation(DAY, now=NOW)
    assert again.terminal_reason == GAP_CLOSED
    assert again.published == 0
    assert again.synthesis_calls == 0
    assert len(synthesizer.calls) == calls_after_first
    assert published.count_for_date(DAY) == 6


def test_circuit_breaker_trips_after_consecutive_failures(resolver, published, candidate_store) -> None:
    _queue(candidate_store, ['T1', 'P1', 'H1', 'Φ1', 'R1', 'F1', 'T2', 'P2'])
    failing = {f'c{idx:02d}' for idx in range(8)}
    loop = _loop(resolver, published, candidate_store, FlakySynthesizer(failing))

    result = loop.run_generation(DAY, RunOptions(max_consecutive_failures=5, max_synthesis_calls=20), now=NOW)
    assert result.terminal_reason == CIRCUIT_BREAKER
    assert result.published == 0
    assert result.failed == 5
    assert result.synthesis_calls == 5
    assert len(result.failures) == 5
    # One failure each is below the retry limit.
    assert not candidate_store.get('c00').consumed


def test_circuit_breaker_with_default_options(resolver, published, candidate_store) -> None:
    _queue(candidate_store, ['T1', 'P1', 'H1', 'Φ1', 'R1', 'F1'])
    failing = {f'c{idx:02d}' for idx in range(6)}
    result = _loop(resolver, published, candidate_store, FlakySynthesizer(failing)).run_generation(DAY, now=NOW)
    assert result.terminal_reason == CIRCUIT_BREAKER
    assert result.synthesis_calls == 5


def test_unexpected_synthesizer_exception_is_a_candidate_failure(resolver, published, candidate_store) -> None:
    drafts = _queue(candidate_store, ['T1', 'P1', 'H1', 'Φ1', 'R1', 'F1', 'T2'])
    synthesizer = FlakySynthesizer({'c00'}, StaticSynthesizer(drafts), error=TimeoutError)

    result = _loop(resolver, published, candidate_store, synthesizer).run_generation(DAY, now=NOW)
    assert result.terminal_reason == GAP_CLOSED
    assert result.failed == 1
    assert result.failures[0].startswith('c00: TimeoutError')
    assert result.published == 6
    assert candidate_store.get('c00').failure_count == 1


def test_unexpected_exceptions_trip_the_breaker(resolver, published, candidate_store) -> None:
    _queue(candidate_store, ['T1', 'P1', 'H1', 'Φ1'])
    failing = {f'c{idx:02d}' for idx in range(4)}
    synthesizer = FlakySynthesizer(failing, error=TimeoutError)

    result = _loop(resolver, published, candidate_store, synthesizer).run_generation(
        DAY, RunOptions(max_consecutive_failures=3), now=NOW
    )
    assert result.terminal_reason == CIRCUIT_BREAKER
    assert result.failed == 3
    assert synthesizer.calls == ['c00', 'c01', 'c02']


def test_successful_allocation_resets_failure_counter(resolver, published, candidate_store) -> None:
    codes = ['T1', 'P1', 'H1', 'Φ1', 'R1', 'F1', 'T2', 'P2', 'H2', 'F2']
    drafts = _queue(candidate_store, codes)
    failing = {'c00', 'c01', 'c02', 'c03', 'c05', 'c06', 'c07', 'c08'}
    loop = _loop(resolver, published, candidate_store, FlakySynthesizer(failing, StaticSynthesizer(drafts)))

    result = loop.run_generation(DAY, RunOptions(max_consecutive_failures=5, max_synthesis_calls=10), now=NOW)
    assert result.terminal_reason != CIRCUIT_BREAKER
    assert result.terminal_reason == BUDGET_EXHAUSTED
    assert result.published == 2
    assert result.failed == 8


def test_budget_exhausted(resolver, published, candidate_store) -> None:
    drafts = _queue(candidate_store, ['T1', 'P1', 'H1', 'Φ1', 'R1', 'F1'])
    synthesizer = StaticSynthesizer(drafts)
    result = _loop(resolver, published, candidate_store, synthesizer).run_generation(
        DAY, RunOptions(max_synthesis_calls=3), now=NOW
    )
    assert result.terminal_reason == BUDGET_EXHAUSTED
    assert result.published == 3
    assert len(synthesizer.calls) == 3


def test_no_candidates(resolver, published, candidate_store) -> None:
    result = _loop(resolver, published, candidate_store, StaticSynthesizer()).run_generation(DAY, now=NOW)
    assert result.terminal_reason == NO_CANDIDATES
    assert result.scanned == 0


def test_queue_exhausted_before_gap_closes(resolver, published, candidate_store) -> None:
    drafts = _queue(candidate_store, ['T1', 'P1'])
    result = _loop(resolver, published, candidate_store, StaticSynthesizer(drafts)).run_generation(DAY, now=NOW)
    assert result.terminal_reason == NO_CANDIDATES
    assert result.published == 2


def test_dry_run_scores_without_synthesizing(resolver, published, candidate_store) -> None:
    _queue(candidate_store, ['T1', 'P1', 'H1'])
    candidate_store.add(
        make_candidate('cook', title='Knife skills', description='Dinner tips.', origin='Cooking Channel')
    )
    synthesizer = StaticSynthesizer()
    result = _loop(resolver, published, candidate_store, synthesizer).run_generation(
        DAY, RunOptions(dry_run=True), now=NOW
    )
    assert result.terminal_reason == DRY_RUN
    assert result.eligible == 3
    assert result.scanned == 4
    assert synthesizer.calls == []
    assert published.count_for_date(DAY) == 0
    assert not candidate_store.get('cook').consumed
    assert len(candidate_store.pending()) == 4


def test_dry_run_without_synthesizer(resolver, published, candidate_store) -> None:
    _queue(candidate_store, ['T1'])
    result = _loop(resolver, published, candidate_store, None).run_generation(DAY, RunOptions(dry_run=True), now=NOW)
    assert result.terminal_reason == DRY_RUN


def test_source_filter_limits_candidates(resolver, published, candidate_store) -> None:
    drafts = _queue(candidate_store, ['T1', 'P1'])
    article = make_candidate(
        'art',
        kind='article',
        duration_minutes=None,
        origin='Foreign Affairs',
        title='Foreign Affairs essay on democracy',
        url='https://www.foreignaffairs.com/essay',
    )
    candidate_store.add(article)
    drafts['art'] = [make_draft('H1', title=distinct_title(50), source_url=article.url)]
    synthesizer = StaticSynthesizer(drafts)
    result = _loop(resolver, published, candidate_store, synthesizer).run_generation(
        DAY, RunOptions(source_filter='article'), now=NOW
    )
    assert synthesizer.calls == ['art']
    assert result.published == 1


def test_empty_and_blocked_drafts_count_toward_breaker(resolver, published, candidate_store) -> None:
    drafts = _queue(candidate_store, ['T1', 'P1', 'H1', 'Φ1', 'R1', 'F1'])
    drafts['c00'] = []
    for candidate_id in ('c01', 'c02'):
        drafts[candidate_id][0].author_name = '?'
    loop = _loop(resolver, published, candidate_store, StaticSynthesizer(drafts))

    result = loop.run_generation(DAY, RunOptions(max_consecutive_failures=3, max_synthesis_calls=10), now=NOW)
    assert result.terminal_reason == CIRCUIT_BREAKER
    assert result.published == 0
    assert result.skipped == 3
    assert any('no qualifying draft' in reason for reason in result.skips)
    assert any('quality gate' in reason for reason in result.skips)


def test_duplicate_url_within_run_is_skipped(resolver, published, candidate_store) -> None:
    drafts = _queue(candidate_store, ['T1', 'P1'])
    drafts['c01'][0].source_url = 'https://youtube.com/watch?v=c00&utm_source=feed'
    result = _loop(resolver, published, candidate_store, StaticSynthesizer(drafts)).run_generation(DAY, now=NOW)
    assert result.published == 1
    assert any('duplicate' in reason for reason in result.skips)


def test_entries_per_candidate(resolver, published, candidate_store) -> None:
    drafts = _queue(candidate_store, ['T1'])
    drafts['c00'].append(make_draft('P1', title=distinct_title(40), source_url='https://example.com/extra'))
    loop = _loop(resolver, published, candidate_store, StaticSynthesizer(drafts))

    result = loop.run_generation(DAY, RunOptions(entries_per_candidate=2), now=NOW)
    assert result.published == 2
    assert result.synthesis_calls == 1


def test_theme_day_places_repeated_slots(resolver, published, candidate_store) -> None:
    off_topic = dict(title='Knife skills', description='Dinner tips.', origin='Cooking Channel', duration_minutes=25)
    drafts = _queue(candidate_store, ['P3'] * 30, **off_topic)
    loop = _loop(resolver, published, candidate_store, StaticSynthesizer(drafts))

    result = loop.run_generation(THEME_DAY, RunOptions(max_synthesis_calls=30), now=NOW)
    assert result.is_theme_day
    assert result.event == 'Davos Forum'
    assert result.eligible == 30
    assert result.terminal_reason == GAP_CLOSED
    assert published.slot_counts(THEME_DAY) == {'P3': 20}
    assert published.count_for_date(THEME_DAY) <= 30


def test_theme_day_off_topic_content_still_faces_authenticity_check(resolver, published, candidate_store) -> None:
    off_topic = dict(title='Knife skills', description='Dinner tips.', origin='Cooking Channel', duration_minutes=25)
    drafts = _queue(candidate_store, ['P3', 'P3'], **off_topic)
    hedged = drafts['c00'][0]
    hedged.body_text = 'This opinion was inferred from metadata only. ' + hedged.body_text
    loop = _loop(resolver, published, candidate_store, StaticSynthesizer(drafts))

    result = loop.run_generation(THEME_DAY, RunOptions(max_synthesis_calls=5), now=NOW)
    assert result.published == 1
    assert any('no_provenance_hedge' in reason for reason in result.skips)
    assert [entry.title for entry in published.entries_for_date(THEME_DAY)] == [distinct_title(1)]


def test_manual_submission_goes_through_gate_dedup_and_slots(resolver, published, candidate_store) -> None:
    loop = _loop(resolver, published, candidate_store, None)

    short = loop.submit_manual_entry(DAY, make_draft('T1', title=distinct_title(0), body_length=299))
    assert short.status == BLOCKED

    ok = loop.submit_manual_entry(DAY, make_draft('T1', title=distinct_title(1), body_length=300, stance='A'))
    assert ok.status == PUBLISHED
    assert ok.entry.stance == 'yes'

    dup = loop.submit_manual_entry(DAY, make_draft('P1', title=distinct_title(2), source_url='https://example.com/a/'))
    assert dup.status == DUPLICATE

    taken = loop.submit_manual_entry(DAY, make_draft('T1', title=distinct_title(3), source_url='https://example.com/b'))
    assert taken.status == REJECTED
    assert published.count_for_date(DAY) == 1
