##########################################################################################
#
# Script name: generation.py
#
# Description: Generation loop controller. Resolves the day policy, measures the gap,
#              and walks ranked candidates through synthesis, the quality gate,
#              duplicate detection and allocation until the day is filled or a stop
#              condition trips.
#
##########################################################################################

import logging
import time
from dataclasses import replace
from datetime import datetime

from .allocator import Allocator
from .candidates import CandidateSource
from .config import SYNTHESIS_CALLS_PER_ITEM
from .day_rules import DayRuleResolver
from .dedupe import DuplicateDetector
from .gap import compute_gap
from .models import (
    BUDGET_EXHAUSTED,
    CIRCUIT_BREAKER,
    DRY_RUN,
    GAP_CLOSED,
    NO_CANDIDATES,
    AllocationOutcome,
    CandidateUnit,
    DayPolicy,
    DraftEntry,
    Gap,
    RunOptions,
    RunResult,
)
from .parsing import normalize_stance
from .quality import validate_draft
from .store import BLOCKED, DUPLICATE, CandidateStore, PublishedStore
from .synthesizer import SynthesisError, Synthesizer
from .utils import utc_now_iso


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(__name__)


# ****************************************************************************************
# Functions
# ****************************************************************************************


class GenerationLoop:
    def __init__(
        self,
        resolver: DayRuleResolver,
        published: PublishedStore,
        candidates: CandidateStore,
        synthesizer: Synthesizer | None,
        source: CandidateSource | None = None,
        detector: DuplicateDetector | None = None,
        allocator: Allocator | None = None,
    ) -> None:
        self.resolver = resolver
        self.published = published
        self.candidates = candidates
        self.synthesizer = synthesizer
        self.source = source or CandidateSource(candidates)
        self.detector = detector or DuplicateDetector(published)
        self.allocator = allocator or Allocator(published)

    def current_gap(self, day: str, policy: DayPolicy) -> Gap:
        # Always re-read: earlier allocations in this run change the answer.
        return compute_gap(day, policy, self.published.entries_for_date(day))

    def _stop_reason(self, gap: Gap, result: RunResult, failures: int, options: RunOptions) -> str | None:
        if not gap.needs_more:
            return GAP_CLOSED
        if failures >= options.max_consecutive_failures:
            return CIRCUIT_BREAKER
        if result.synthesis_calls >= result.synthesis_budget:
            return BUDGET_EXHAUSTED
        return None

    def _record_synthesis_failure(
        self,
        candidate: CandidateUnit,
        error: str,
        failures: int,
        options: RunOptions,
        result: RunResult,
    ) -> None:
        result.failed += 1
        result.failures.append(f'{candidate.id}: {error}')
        retired = self.candidates.record_failure(candidate.id, options.max_candidate_failures)
        log.warning(
            'Synthesis failed for %s (%d in a row%s): %s',
            candidate.id,
            failures,
            ', retired' if retired else '',
            error,
        )

    def _place_drafts(
        self,
        day: str,
        policy: DayPolicy,
        candidate: CandidateUnit,
        drafts: list[DraftEntry],
        options: RunOptions,
        result: RunResult,
    ) -> tuple[int, bool]:
        '''
        Gate, dedupe and allocate one candidate's drafts. Returns the number placed
        and whether any draft passed the quality gate.
        '''
        placed = 0
        any_valid = False
        for draft in drafts:
            if placed >= options.entries_per_candidate:
                break
            gap = self.current_gap(day, policy)
            if not gap.needs_more:
                break

            report = validate_draft(draft, context='generation')
            if report.blocked:
                result.skips.append(f'{candidate.id} {draft.topic_code}: quality gate: {report.summary()}')
                continue
            any_valid = True
            for warning in report.warnings:
                log.debug('Draft warning for %s: %s', candidate.id, warning.message)

            is_dup, reason = self.detector.check(day, draft)
            if is_dup:
                result.skips.append(f'{candidate.id} {draft.topic_code}: duplicate: {reason}')
                continue

            outcome = self.allocator.allocate(day, draft, gap, policy)
            if outcome.published:
                placed += 1
                result.published += 1
                result.published_ids.append(outcome.entry.id)
            else:
                result.skips.append(f'{candidate.id} {draft.topic_code}: {outcome.status}: {outcome.reason}')
        return placed, any_valid

    def run_generation(self, day: str, options: RunOptions | None = None, now: datetime | None = None) -> RunResult:
        options = options or RunOptions()
        started = time.monotonic()
        result = RunResult(date=day, started_at=utc_now_iso())

        policy = self.resolver.resolve(day)
        result.is_theme_day = policy.is_theme_day
        result.event = policy.event
        if options.max_synthesis_calls is None:
            result.synthesis_budget = policy.max_items * SYNTHESIS_CALLS_PER_ITEM
        else:
            result.synthesis_budget = options.max_synthesis_calls
        log.info(
            'Run for %s: min=%d max=%d per-slot=%s theme=%s budget=%d',
            day,
            policy.min_items,
            policy.max_items,
            policy.max_per_slot,
            policy.event or 'no',
            result.synthesis_budget,
        )

        gap = self.current_gap(day, policy)
        if not gap.needs_more:
            log.info('Gap for %s is already closed (%d entries).', day, gap.current_count)
            return self._finish(result, GAP_CLOSED, started)

        eligible, rejected = self.source.pull(
            policy,
            source_filter=options.source_filter,
            now=now,
            mark_rejected=not options.dry_run,
        )
        result.scanned = len(eligible) + len(rejected)
        result.eligible = len(eligible)
        for candidate, reason in rejected:
            result.skipped += 1
            result.skips.append(f'{candidate.id}: ineligible: {reason}')

        if not eligible:
            log.warning('No eligible candidates for %s (%d scanned).', day, result.scanned)
            return self._finish(result, NO_CANDIDATES, started)

        if options.dry_run:
            for candidate in eligible:
                log.info('[dry-run] %.1f  %s  %s', candidate.priority_score, candidate.id, candidate.title[:70])
            return self._finish(result, DRY_RUN, started)

        if self.synthesizer is None:
            raise RuntimeError('No synthesizer configured. Use --dry-run or set OPENAI_API_KEY.')

        consecutive_failures = 0
        reason = None
        for candidate in eligible:
            gap = self.current_gap(day, policy)
            reason = self._stop_reason(gap, result, consecutive_failures, options)
            if reason:
                break

            result.synthesis_calls += 1
            try:
                drafts = self.synthesizer.synthesize(candidate)
            except SynthesisError as exc:
                consecutive_failures += 1
                self._record_synthesis_failure(candidate, str(exc), consecutive_failures, options, result)
                continue
            except Exception as exc:  # noqa: BLE001
                log.exception('Unexpected synthesizer error for %s', candidate.id)
                consecutive_failures += 1
                error = f'{type(exc).__name__}: {exc}'
                self._record_synthesis_failure(candidate, error, consecutive_failures, options, result)
                continue

            result.synthesized += 1
            placed, any_valid = self._place_drafts(day, policy, candidate, drafts, options, result)
            if placed:
                consecutive_failures = 0
                self.candidates.mark_consumed(candidate.id, 'allocated')
                continue

            result.skipped += 1
            if not drafts:
                result.skips.append(f'{candidate.id}: no qualifying draft')
            if not any_valid:
                consecutive_failures += 1
            self.candidates.record_failure(candidate.id, options.max_candidate_failures)
        else:
            gap = self.current_gap(day, policy)
            reason = self._stop_reason(gap, result, consecutive_failures, options) or NO_CANDIDATES

        return self._finish(result, reason, started)

    def submit_manual_entry(self, day: str, draft: DraftEntry) -> AllocationOutcome:
        '''
        Publish a hand-written entry. It skips the synthesizer only; the quality
        gate (publish threshold), duplicate detection and slot rules still apply.
        '''
        policy = self.resolver.resolve(day)
        draft = replace(draft, stance=normalize_stance(draft.stance))
        report = validate_draft(draft, context='publish')
        if report.blocked:
            return AllocationOutcome(BLOCKED, report.summary())
        is_dup, reason = self.detector.check(day, draft)
        if is_dup:
            return AllocationOutcome(DUPLICATE, reason)
        return self.allocator.allocate(day, draft, self.current_gap(day, policy), policy)

    def _finish(self, result: RunResult, reason: str, started: float) -> RunResult:
        result.terminal_reason = reason
        result.duration_seconds = round(time.monotonic() - started, 3)
        log.info(
            'Run for %s finished: %s (published=%d skipped=%d failed=%d calls=%d)',
            result.date,
            reason,
            result.published,
            result.skipped,
            result.failed,
            result.synthesis_calls,
        )
        return result
