##########################################################################################
#
# Script name: conftest.py
#
# Description: Shared fixtures: in-memory stores and draft/candidate builders.
#
##########################################################################################

from datetime import datetime, timedelta, timezone

import pytest

from radar_feed.day_rules import DayRuleResolver, StaticConfigProvider
from radar_feed.models import CandidateUnit, DraftEntry
from radar_feed.store import CandidateStore, PublishedStore, RadarDatabase


NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

ORDINARY_RULES = {
    'default_rules': {
        'min_items': 6,
        'max_items': 8,
        'max_per_slot': 1,
        'min_duration': 40,
    },
    'theme_days': [
        {
            'event': 'Davos Forum',
            'start': '2026-01-19',
            'end': '2026-01-23',
            'rules': {
                'min_items': 20,
                'max_items': 30,
                'max_per_slot': None,
                'min_duration': 20,
                'frequency_flex': True,
                'content_type_flex': True,
            },
        },
    ],
}


def body_of(length: int) -> str:
    text = 'The speaker argues the point from the record and the numbers. ' * (length // 40 + 2)
    text = text[:length]
    if text.endswith(' '):
        text = text[:-1] + 'x'
    return text


def make_draft(
    topic_code: str = 'T1',
    title: str = 'AI gap',
    source_url: str | None = 'https://example.com/a',
    body_length: int = 800,
    **overrides,
) -> DraftEntry:
    fields = dict(
        topic_code=topic_code,
        stance='yes',
        title=title,
        author_name='Demis Hassabis',
        body_text=body_of(body_length),
        author_bio='CEO of Google DeepMind',
        source_description='Lex Fridman Podcast, 2026-03-01 episode',
        source_url=source_url,
        keywords=['ai', 'labour', 'inequality'],
    )
    fields.update(overrides)
    return DraftEntry(**fields)


def make_candidate(candidate_id: str, **overrides) -> CandidateUnit:
    fields = dict(
        id=candidate_id,
        kind='video',
        title=f'Lex Fridman Podcast interview {candidate_id}',
        description='Long-form conversation about AI and society.',
        published_at=NOW - timedelta(days=3),
        duration_minutes=95,
        origin='Lex Fridman Podcast',
        url=f'https://www.youtube.com/watch?v={candidate_id}',
        discovered_at=NOW - timedelta(hours=1),
    )
    fields.update(overrides)
    return CandidateUnit(**fields)


@pytest.fixture
def db():
    database = RadarDatabase(':memory:')
    yield database
    database.close()


@pytest.fixture
def published(db) -> PublishedStore:
    return PublishedStore(db)


@pytest.fixture
def candidate_store(db) -> CandidateStore:
    return CandidateStore(db)


@pytest.fixture
def resolver() -> DayRuleResolver:
    return DayRuleResolver(StaticConfigProvider(ORDINARY_RULES))


def distinct_title(idx: int) -> str:
    # Disjoint character sets so title similarity never flags two test entries.
    base = 0x4E00 + 3 * idx
    return ''.join(chr(base + offset) for offset in range(3))
