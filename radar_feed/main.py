##########################################################################################
#
# Script name: main.py
#
# Description: CLI entrypoint for filling a day of the opinion radar.
#
##########################################################################################

import argparse
import logging
import os
import sys
from datetime import date, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .candidates import CandidateRanker, CandidateSource, build_sample_candidates, import_candidates, load_ranking_config
from .config import DEFAULT_MAX_CONSECUTIVE_FAILURES
from .day_rules import DEFAULT_DAY_RULES_PATH, DayRuleResolver, YamlConfigProvider
from .generation import GenerationLoop
from .models import RunOptions
from .parsing import DraftParseError, parse_drafts
from .quality import audit_day, validate_batch
from .report import write_run_report
from .store import CandidateStore, PublishedStore, RadarDatabase
from .synthesizer import OpenAISynthesizer, StaticSynthesizer, SynthesisError


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(os.path.basename(sys.argv[0]))
log.setLevel(logging.DEBUG)
log.propagate = False
formatter = logging.Formatter(
    '%(asctime)-15s [%(funcName)25s:%(lineno)-5s] %(levelname)-8s %(message)s'
)

# File handler for logging
fh = logging.FileHandler('radar_feed.log', mode='w')
fh.setLevel(logging.DEBUG)
fh.setFormatter(formatter)
if not any(isinstance(handler, logging.FileHandler) for handler in log.handlers):
    log.addHandler(fh)

root_log = logging.getLogger()
root_log.setLevel(logging.DEBUG)
if not any(isinstance(handler, logging.FileHandler) for handler in root_log.handlers):
    root_log.addHandler(fh)


# ****************************************************************************************
# Functions
# ****************************************************************************************


def _resolve_feed_date(explicit_date: str | None) -> str:
    if explicit_date:
        return explicit_date
    tz_name = os.getenv('FEED_TIMEZONE') or 'Asia/Shanghai'
    try:
        now = datetime.now(ZoneInfo(tz_name))
    except (ZoneInfoNotFoundError, ValueError):
        now = datetime.now(ZoneInfo('UTC'))
    return now.strftime('%Y-%m-%d')


def _build_synthesizer(use_sample_data: bool, candidates: CandidateStore, dry_run: bool):
    if use_sample_data:
        return StaticSynthesizer.from_samples(candidates.pending())
    # Dry runs and manual submissions never call the model.
    if dry_run:
        return None
    return OpenAISynthesizer()


def submit_entries(loop: GenerationLoop, feed_date: str, path: str) -> int:
    with open(path, 'r', encoding='utf-8') as handle:
        drafts = parse_drafts(handle.read())
    totals = validate_batch(drafts, context='publish')
    log.info(
        'Submitting %d entries for %s: %d pass the gate (%d with warnings), %d blocked',
        totals['total'],
        feed_date,
        totals['passed'],
        totals['warned'],
        totals['blocked'],
    )
    published = 0
    for draft in drafts:
        outcome = loop.submit_manual_entry(feed_date, draft)
        if outcome.published:
            published += 1
            log.info('Published manual entry %s: %s', outcome.entry.id, draft.title[:60])
        else:
            log.warning('Manual entry "%s" not published (%s): %s', draft.title[:60], outcome.status, outcome.reason)
    return published


def run_daily_radar(args: argparse.Namespace) -> int:
    feed_date = _resolve_feed_date(args.date)
    db = RadarDatabase(args.db)
    try:
        published = PublishedStore(db)
        candidates = CandidateStore(db)

        if args.import_candidates:
            import_candidates(args.import_candidates, candidates)
        if args.sample:
            for candidate in build_sample_candidates():
                candidates.add(candidate)
            log.debug('Seeded sample candidates.')

        origins, people = load_ranking_config(args.sources) if os.path.exists(args.sources) else (None, None)
        source = CandidateSource(candidates, CandidateRanker(origins=origins, people=people))
        resolver = DayRuleResolver(YamlConfigProvider(args.day_rules))
        loop = GenerationLoop(
            resolver=resolver,
            published=published,
            candidates=candidates,
            synthesizer=_build_synthesizer(args.sample, candidates, args.dry_run or bool(args.submit)),
            source=source,
        )

        if args.submit:
            count = submit_entries(loop, feed_date, args.submit)
            log.info('Published %d manual entr%s for %s', count, 'y' if count == 1 else 'ies', feed_date)
            return 0

        options = RunOptions(
            max_consecutive_failures=args.max_consecutive_failures,
            max_synthesis_calls=args.max_synthesis_calls,
            dry_run=args.dry_run,
            source_filter=args.source_filter,
        )
        result = loop.run_generation(feed_date, options)
        entries = published.entries_for_date(feed_date)
        audit = audit_day(entries, resolver.resolve(feed_date))
        for message in audit['errors']:
            log.warning('Audit: %s', message)
        for message in audit['warnings']:
            log.info('Audit: %s', message)
        report_path = write_run_report(result, args.output_dir, audit=audit, entries=entries)
        log.info('Run report written to %s', report_path)
        return 0
    finally:
        db.close()


# ****************************************************************************************
# Handle the arguments
# ****************************************************************************************


def handle_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Fill a day of the opinion radar from queued candidates.')
    parser.add_argument('--date', help='Date string in YYYY-MM-DD format.', default=None)
    parser.add_argument('--db', default=os.getenv('RADAR_DB_PATH') or 'radar.db', help='Path to the SQLite database.')
    parser.add_argument('--day-rules', default=str(DEFAULT_DAY_RULES_PATH), help='Path to day rules YAML.')
    parser.add_argument('--sources', default='config/sources.yaml', help='Path to ranking origins/people YAML.')
    parser.add_argument('--output-dir', default='runs', help='Directory where run reports are written.')
    parser.add_argument('--dry-run', action='store_true', help='Score and log candidates without synthesizing.')
    parser.add_argument('--max-consecutive-failures', type=int, default=DEFAULT_MAX_CONSECUTIVE_FAILURES)
    parser.add_argument(
        '--max-synthesis-calls',
        type=int,
        default=None,
        help='Synthesis call budget. Defaults to twice the day maximum.',
    )
    parser.add_argument('--source-filter', default=None, help='"video", "article" or an origin name fragment.')
    parser.add_argument('--import-candidates', default=None, help='JSON or JSON-lines file of candidates to queue.')
    parser.add_argument('--submit', default=None, help='JSON file of hand-written entries to publish.')
    parser.add_argument(
        '--sample',
        action='store_true',
        help='Use local sample candidates and drafts and skip all network requests.',
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose output to stdout.')
    parser.add_argument('-q', '--quiet', action='store_true', help='Minimal stdout.')
    args = parser.parse_args()

    # Configure stdout logging based on arguments
    ch = logging.StreamHandler(sys.stdout)
    if args.verbose:
        ch.setLevel(logging.DEBUG)
    elif args.quiet:
        ch.setLevel(logging.ERROR)
    else:
        ch.setLevel(logging.INFO)
    ch.setFormatter(formatter)
    log.addHandler(ch)
    root_log.addHandler(ch)

    log.debug('Checking script requirements...')
    if not args.verbose and not args.quiet:
        log.debug('No output level specified. Defaulting to INFO.')

    log.info('++++++++++++++++++++++++++++++++++++++++++++++')
    log.info('+  %s', os.path.basename(sys.argv[0]))
    log.info('+  Python Version: %s', sys.version.split()[0])
    log.info('+  Today is: %s', date.today())
    log.info('++++++++++++++++++++++++++++++++++++++++++++++')
    return args


# ****************************************************************************************
# Main
# ****************************************************************************************


def main() -> None:
    args = handle_args()
    try:
        code = run_daily_radar(args)
    except (OSError, DraftParseError, SynthesisError, ValueError) as exc:
        log.error('Run aborted: %s', exc)
        code = 1
    sys.exit(code)


if __name__ == '__main__':
    main()
