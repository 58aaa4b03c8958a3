##########################################################################################
#
# Script name: store.py
#
# Description: SQLite persistence for published entries and the candidate queue.
#              Uniqueness constraints on (date, topic slot) and normalized source URL
#              are the only guard shared between concurrent runs.
#
##########################################################################################

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator

from .config import CANDIDATE_QUEUE_LIMIT
from .models import AllocationOutcome, CandidateUnit, DraftEntry, PublishedEntry
from .utils import canonicalize_url, utc_now_iso


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(__name__)

SCHEMA = '''
CREATE TABLE IF NOT EXISTS published_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    date TEXT NOT NULL,
    topic_code TEXT NOT NULL,
    stance TEXT NOT NULL,
    title TEXT NOT NULL,
    author_name TEXT NOT NULL,
    author_bio TEXT DEFAULT '',
    source_description TEXT DEFAULT '',
    source_url TEXT,
    normalized_url TEXT UNIQUE,
    body_text TEXT NOT NULL,
    keywords TEXT DEFAULT '[]',
    slot_ordinal INTEGER NOT NULL DEFAULT 0,
    day_ordinal INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(date, topic_code, slot_ordinal),
    UNIQUE(date, day_ordinal)
);
CREATE INDEX IF NOT EXISTS idx_published_date ON published_entries(date);

CREATE TABLE IF NOT EXISTS candidates (
    id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT DEFAULT '',
    published_at TEXT,
    duration_minutes INTEGER,
    origin TEXT DEFAULT '',
    url TEXT DEFAULT '',
    full_text TEXT DEFAULT '',
    discovered_at TEXT NOT NULL,
    consumed INTEGER NOT NULL DEFAULT 0,
    failure_count INTEGER NOT NULL DEFAULT 0,
    skip_reason TEXT DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_candidates_pending ON candidates(consumed, discovered_at);
'''

PUBLISHED = 'published'
EXISTS = 'exists'
CONFLICT = 'conflict'
REJECTED = 'rejected'
BLOCKED = 'blocked'
DUPLICATE = 'duplicate'


# ****************************************************************************************
# Functions
# ****************************************************************************************


def _first_free_ordinal(taken: set[int]) -> int:
    ordinal = 0
    while ordinal in taken:
        ordinal += 1
    return ordinal


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _row_to_entry(row: sqlite3.Row) -> PublishedEntry:
    return PublishedEntry(
        id=row['id'],
        date=row['date'],
        topic_code=row['topic_code'],
        stance=row['stance'],
        title=row['title'],
        author_name=row['author_name'],
        body_text=row['body_text'],
        author_bio=row['author_bio'] or '',
        source_description=row['source_description'] or '',
        source_url=row['source_url'],
        normalized_url=row['normalized_url'],
        keywords=json.loads(row['keywords'] or '[]'),
        created_at=row['created_at'],
        updated_at=row['updated_at'],
    )


def _row_to_candidate(row: sqlite3.Row) -> CandidateUnit:
    return CandidateUnit(
        id=row['id'],
        kind=row['kind'],
        title=row['title'],
        description=row['description'] or '',
        published_at=_parse_iso(row['published_at']),
        duration_minutes=row['duration_minutes'],
        origin=row['origin'] or '',
        url=row['url'] or '',
        full_text=row['full_text'] or '',
        discovered_at=_parse_iso(row['discovered_at']),
        consumed=bool(row['consumed']),
        failure_count=row['failure_count'],
        skip_reason=row['skip_reason'] or '',
    )


class RadarDatabase:
    '''
    Owns the SQLite connection. An in-memory database (":memory:") is kept on a
    single connection so both stores share it.
    '''

    def __init__(self, db_path: str = 'radar.db') -> None:
        self.db_path = db_path
        if db_path != ':memory:':
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        if db_path != ':memory:':
            self.conn.execute('PRAGMA journal_mode=WAL;')
        self.conn.executescript(SCHEMA)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            self.conn.execute('BEGIN IMMEDIATE')
            try:
                yield self.conn
            except Exception:
                self.conn.execute('ROLLBACK')
                raise
            self.conn.execute('COMMIT')

    def close(self) -> None:
        self.conn.close()


class PublishedStore:
    def __init__(self, db: RadarDatabase) -> None:
        self.db = db

    def entries_for_date(self, day: str) -> list[PublishedEntry]:
        rows = self.db.conn.execute(
            'SELECT * FROM published_entries WHERE date = ? ORDER BY day_ordinal, id',
            (day,),
        ).fetchall()
        return [_row_to_entry(row) for row in rows]

    def entries_in_window(self, day: str, window_days: int = 0) -> list[PublishedEntry]:
        start = (date.fromisoformat(day) - timedelta(days=max(0, window_days))).isoformat()
        rows = self.db.conn.execute(
            'SELECT * FROM published_entries WHERE date BETWEEN ? AND ? ORDER BY date, id',
            (start, day),
        ).fetchall()
        return [_row_to_entry(row) for row in rows]

    def count_for_date(self, day: str) -> int:
        row = self.db.conn.execute('SELECT COUNT(*) AS n FROM published_entries WHERE date = ?', (day,)).fetchone()
        return int(row['n'])

    def slot_counts(self, day: str) -> dict[str, int]:
        rows = self.db.conn.execute(
            'SELECT topic_code, COUNT(*) AS n FROM published_entries WHERE date = ? GROUP BY topic_code',
            (day,),
        ).fetchall()
        return {row['topic_code']: int(row['n']) for row in rows}

    def find_by_normalized_url(self, normalized_url: str | None) -> PublishedEntry | None:
        if not normalized_url:
            return None
        row = self.db.conn.execute(
            'SELECT * FROM published_entries WHERE normalized_url = ?',
            (normalized_url,),
        ).fetchone()
        return _row_to_entry(row) if row else None

    def get(self, entry_id: int) -> PublishedEntry | None:
        row = self.db.conn.execute('SELECT * FROM published_entries WHERE id = ?', (entry_id,)).fetchone()
        return _row_to_entry(row) if row else None

    def insert(
        self,
        day: str,
        draft: DraftEntry,
        max_items: int,
        slot_limit: int | None,
    ) -> AllocationOutcome:
        '''
        Append a draft as a published entry in a single transaction. Capacity is
        re-checked inside the transaction; any uniqueness violation is a benign
        skip. Re-submitting the same logical entry returns the stored row.
        '''
        normalized_url = canonicalize_url(draft.source_url)
        now = utc_now_iso()
        try:
            with self.db.transaction() as conn:
                rows = conn.execute(
                    'SELECT * FROM published_entries WHERE date = ?',
                    (day,),
                ).fetchall()
                for row in rows:
                    if row['topic_code'] != draft.topic_code or row['title'] != draft.title:
                        continue
                    if row['normalized_url'] == normalized_url:
                        return AllocationOutcome(EXISTS, 'entry already published', _row_to_entry(row))

                if len(rows) >= max_items:
                    return AllocationOutcome(REJECTED, f'daily maximum of {max_items} reached')
                slot_taken = {row['slot_ordinal'] for row in rows if row['topic_code'] == draft.topic_code}
                if slot_limit is not None and len(slot_taken) >= slot_limit:
                    return AllocationOutcome(REJECTED, f'slot {draft.topic_code} is full')

                cursor = conn.execute(
                    '''
                    INSERT INTO published_entries (
                        date, topic_code, stance, title, author_name, author_bio,
                        source_description, source_url, normalized_url, body_text,
                        keywords, slot_ordinal, day_ordinal, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ''',
                    (
                        day,
                        draft.topic_code,
                        draft.stance,
                        draft.title,
                        draft.author_name,
                        draft.author_bio,
                        draft.source_description,
                        draft.source_url,
                        normalized_url,
                        draft.body_text,
                        json.dumps(draft.keywords, ensure_ascii=False),
                        _first_free_ordinal(slot_taken),
                        _first_free_ordinal({row['day_ordinal'] for row in rows}),
                        now,
                        now,
                    ),
                )
                entry_id = cursor.lastrowid
        except sqlite3.IntegrityError as exc:
            log.info('Insert conflict for %s/%s treated as skip: %s', day, draft.topic_code, exc)
            return AllocationOutcome(CONFLICT, f'uniqueness conflict: {exc}')
        return AllocationOutcome(PUBLISHED, '', self.get(entry_id))

    def update_entry(self, entry_id: int, **fields) -> PublishedEntry | None:
        allowed = {
            'stance',
            'title',
            'author_name',
            'author_bio',
            'source_description',
            'body_text',
            'keywords',
            'source_url',
        }
        updates = {key: value for key, value in fields.items() if key in allowed}
        if not updates:
            return self.get(entry_id)
        if 'keywords' in updates:
            updates['keywords'] = json.dumps(updates['keywords'], ensure_ascii=False)
        if 'source_url' in updates:
            updates['normalized_url'] = canonicalize_url(updates['source_url'])
        updates['updated_at'] = utc_now_iso()
        assignments = ', '.join(f'{key} = ?' for key in updates)
        with self.db.transaction() as conn:
            conn.execute(
                f'UPDATE published_entries SET {assignments} WHERE id = ?',
                (*updates.values(), entry_id),
            )
        return self.get(entry_id)


class CandidateStore:
    def __init__(self, db: RadarDatabase) -> None:
        self.db = db

    def add(self, candidate: CandidateUnit) -> bool:
        discovered_at = candidate.discovered_at or datetime.now(timezone.utc)
        with self.db.transaction() as conn:
            cursor = conn.execute(
                '''
                INSERT OR IGNORE INTO candidates (
                    id, kind, title, description, published_at, duration_minutes,
                    origin, url, full_text, discovered_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ''',
                (
                    candidate.id,
                    candidate.kind,
                    candidate.title,
                    candidate.description,
                    _iso(candidate.published_at),
                    candidate.duration_minutes,
                    candidate.origin,
                    candidate.url,
                    candidate.full_text,
                    _iso(discovered_at),
                ),
            )
        return cursor.rowcount == 1

    def get(self, candidate_id: str) -> CandidateUnit | None:
        row = self.db.conn.execute('SELECT * FROM candidates WHERE id = ?', (candidate_id,)).fetchone()
        return _row_to_candidate(row) if row else None

    def pending(self, limit: int = CANDIDATE_QUEUE_LIMIT) -> list[CandidateUnit]:
        rows = self.db.conn.execute(
            'SELECT * FROM candidates WHERE consumed = 0 ORDER BY discovered_at DESC LIMIT ?',
            (limit,),
        ).fetchall()
        return [_row_to_candidate(row) for row in rows]

    def mark_consumed(self, candidate_id: str, reason: str = '') -> None:
        with self.db.transaction() as conn:
            conn.execute(
                'UPDATE candidates SET consumed = 1, skip_reason = ? WHERE id = ?',
                (reason, candidate_id),
            )

    def record_failure(self, candidate_id: str, max_failures: int) -> bool:
        '''Increment the failure count; returns True once the candidate is retired.'''
        with self.db.transaction() as conn:
            conn.execute(
                'UPDATE candidates SET failure_count = failure_count + 1 WHERE id = ?',
                (candidate_id,),
            )
            row = conn.execute('SELECT failure_count FROM candidates WHERE id = ?', (candidate_id,)).fetchone()
            retired = row is not None and row['failure_count'] >= max_failures
            if retired:
                conn.execute(
                    "UPDATE candidates SET consumed = 1, skip_reason = 'retry limit reached' WHERE id = ?",
                    (candidate_id,),
                )
        return retired
