from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path

import yaml
from dateutil import parser as date_parser

from .config import (
    DURATION_BONUS_TIERS,
    MAX_CANDIDATE_AGE_DAYS,
    NOTABLE_PEOPLE,
    TOPIC_KEYWORDS,
    TRACKED_ORIGINS,
)
from .models import CandidateUnit, DayPolicy
from .store import CandidateStore
from .utils import normalize_whitespace, stable_id, strip_html


log = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
ISO_DURATION_RE = re.compile(r"PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")


def parse_iso_duration(value: str | int | float | None) -> int:
    """Minutes from an ISO-8601 duration such as PT1H23M45S; 30s or more rounds up."""
    if value is None or value == "":
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip()
    if text.isdigit():
        return int(text)
    match = ISO_DURATION_RE.fullmatch(text)
    if not match:
        return 0
    hours, minutes, seconds = (int(part or 0) for part in match.groups())
    return hours * 60 + minutes + (1 if seconds >= 30 else 0)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _search_text(candidate: CandidateUnit) -> str:
    return f"{candidate.title} {candidate.description} {candidate.origin}".lower()


def _keyword_pattern(keyword: str) -> re.Pattern:
    return re.compile(rf"(?<![a-z0-9]){re.escape(keyword.lower())}(?![a-z0-9])")


def load_ranking_config(path: str | Path) -> tuple[list[dict], list[dict]]:
    """Origins and notable people from a YAML file; missing lists keep the defaults."""
    with open(path, "r", encoding="utf-8") as handle:
        payload = yaml.safe_load(handle) or {}
    origins = payload.get("origins") or TRACKED_ORIGINS
    people = payload.get("people") or NOTABLE_PEOPLE
    if not isinstance(origins, list) or not isinstance(people, list):
        raise ValueError("origins and people must be lists")
    return origins, people


class CandidateRanker:
    def __init__(
        self,
        origins: list[dict] | None = None,
        people: list[dict] | None = None,
        topic_keywords: dict[str, list[str]] | None = None,
        max_age_days: int = MAX_CANDIDATE_AGE_DAYS,
    ) -> None:
        self.origins = origins if origins is not None else TRACKED_ORIGINS
        self.people = people if people is not None else NOTABLE_PEOPLE
        keywords = topic_keywords if topic_keywords is not None else TOPIC_KEYWORDS
        self._keyword_patterns = [
            _keyword_pattern(keyword) for words in keywords.values() for keyword in words
        ]
        self.max_age_days = max_age_days

    def match_origin(self, candidate: CandidateUnit) -> dict | None:
        text = _search_text(candidate)
        for origin in self.origins:
            if origin["name"].lower() in text:
                return origin
        return None

    def mentioned_people(self, candidate: CandidateUnit) -> list[dict]:
        text = f"{candidate.title} {candidate.description}".lower()
        return [person for person in self.people if person["name"].lower() in text]

    def has_topic_keyword(self, candidate: CandidateUnit) -> bool:
        text = _search_text(candidate)
        return any(pattern.search(text) for pattern in self._keyword_patterns)

    def score(self, candidate: CandidateUnit) -> float:
        score = 0.0
        origin = self.match_origin(candidate)
        if origin:
            score += float(origin.get("priority", 0)) * 10
        for person in self.mentioned_people(candidate):
            score += float(person.get("priority", 0)) * 5
        duration = candidate.duration_minutes or 0
        for threshold, bonus in DURATION_BONUS_TIERS:
            if duration >= threshold:
                score += bonus
                break
        return score

    def check_eligibility(
        self,
        candidate: CandidateUnit,
        policy: DayPolicy,
        now: datetime | None = None,
    ) -> tuple[bool, str]:
        now = _as_utc(now) or datetime.now(timezone.utc)
        if candidate.kind == "video":
            duration = candidate.duration_minutes or 0
            if duration < policy.min_duration:
                return False, f"duration {duration}min < {policy.min_duration}min"

        published_at = _as_utc(candidate.published_at)
        if published_at is not None and now - published_at > timedelta(days=self.max_age_days):
            age_days = (now - published_at).days
            return False, f"published {age_days} days ago, older than {self.max_age_days} days"

        # Theme days admit anything long enough; topic relevance is not checked.
        if policy.is_theme_day:
            return True, "theme day"

        if self.match_origin(candidate) or self.mentioned_people(candidate):
            return True, "tracked origin"
        if self.has_topic_keyword(candidate):
            return True, "topic keyword"
        return False, "no tracked origin or topic keyword"

    def rank(
        self,
        candidates: list[CandidateUnit],
        policy: DayPolicy,
        now: datetime | None = None,
    ) -> tuple[list[CandidateUnit], list[tuple[CandidateUnit, str]]]:
        eligible: list[CandidateUnit] = []
        rejected: list[tuple[CandidateUnit, str]] = []
        for candidate in candidates:
            if candidate.consumed:
                continue
            ok, reason = self.check_eligibility(candidate, policy, now=now)
            if not ok:
                rejected.append((candidate, reason))
                continue
            candidate.priority_score = self.score(candidate)
            eligible.append(candidate)
        eligible.sort(
            key=lambda item: (item.priority_score, _as_utc(item.discovered_at) or EPOCH),
            reverse=True,
        )
        return eligible, rejected


def apply_source_filter(candidates: list[CandidateUnit], source_filter: str | None) -> list[CandidateUnit]:
    if not source_filter:
        return candidates
    wanted = source_filter.strip().lower()
    if wanted in {"video", "article"}:
        return [candidate for candidate in candidates if candidate.kind == wanted]
    return [candidate for candidate in candidates if wanted in candidate.origin.lower()]


class CandidateSource:
    """Pulls unconsumed candidates from the queue and returns them ranked."""

    def __init__(self, store: CandidateStore, ranker: CandidateRanker | None = None) -> None:
        self.store = store
        self.ranker = ranker or CandidateRanker()

    def pull(
        self,
        policy: DayPolicy,
        source_filter: str | None = None,
        now: datetime | None = None,
        mark_rejected: bool = True,
    ) -> tuple[list[CandidateUnit], list[tuple[CandidateUnit, str]]]:
        pending = apply_source_filter(self.store.pending(), source_filter)
        eligible, rejected = self.ranker.rank(pending, policy, now=now)
        if mark_rejected:
            for candidate, reason in rejected:
                self.store.mark_consumed(candidate.id, reason)
        for candidate in eligible:
            log.debug(
                "Candidate %s scored %.1f: %s",
                candidate.id,
                candidate.priority_score,
                candidate.title[:60],
            )
        return eligible, rejected


def _parse_datetime(value) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    try:
        return _as_utc(date_parser.parse(str(value)))
    except (ValueError, TypeError, OverflowError):
        return None


def candidate_from_record(record: dict) -> CandidateUnit:
    title = strip_html(str(record.get("title") or ""))
    if not title:
        raise ValueError("candidate record is missing a title")
    url = str(record.get("url") or "").strip()
    kind = str(record.get("kind") or ("video" if record.get("duration") else "article")).lower()
    if kind not in {"video", "article"}:
        raise ValueError(f"unsupported candidate kind: {kind}")
    duration = record.get("duration_minutes", record.get("duration"))
    return CandidateUnit(
        id=str(record.get("id") or stable_id(url, title)),
        kind=kind,
        title=title,
        description=strip_html(str(record.get("description") or "")),
        published_at=_parse_datetime(record.get("published_at") or record.get("publishedAt")),
        duration_minutes=parse_iso_duration(duration) if kind == "video" else None,
        origin=normalize_whitespace(str(record.get("origin") or record.get("channel") or "")),
        url=url,
        full_text=str(record.get("full_text") or record.get("transcript") or ""),
        discovered_at=_parse_datetime(record.get("discovered_at")) or datetime.now(timezone.utc),
    )


def import_candidates(path: str | Path, store: CandidateStore) -> int:
    """Load a JSON list or JSON-lines drop file into the candidate queue."""
    text = Path(path).read_text(encoding="utf-8").strip()
    if not text:
        return 0
    if text.startswith("["):
        records = json.loads(text)
    else:
        records = [json.loads(line) for line in text.splitlines() if line.strip()]
    added = 0
    for record in records:
        try:
            candidate = candidate_from_record(record)
        except ValueError as exc:
            log.warning("Skipping candidate record: %s", exc)
            continue
        if store.add(candidate):
            added += 1
    log.info("Imported %d new candidate(s) from %s", added, path)
    return added


def build_sample_candidates(now: datetime | None = None) -> list[CandidateUnit]:
    now = now or datetime.now(timezone.utc)
    templates = [
        ("Lex Fridman Podcast", "Demis Hassabis on AGI, alignment and scientific discovery", 150),
        ("Foreign Affairs", "Francis Fukuyama: can liberal democracy survive complexity?", 75),
        ("Long Now Foundation", "Yuval Noah Harari on the history of civilisation and collapse", 95),
        ("Santa Fe Institute", "David Chalmers on consciousness, free will and meaning", 110),
        ("Closer To Truth", "Charles Taylor on faith in a secular age", 62),
        ("Bridgewater", "Ray Dalio on debt cycles, inflation and the changing world order", 85),
    ]
    candidates: list[CandidateUnit] = []
    for idx in range(12):
        origin, title, duration = templates[idx % len(templates)]
        url = f"https://www.youtube.com/watch?v=sample{idx:03d}"
        candidates.append(
            CandidateUnit(
                id=stable_id(url, title),
                kind="video",
                title=f"{title} ({idx + 1})",
                description=f"Long-form conversation published by {origin}.",
                published_at=now - timedelta(days=idx + 1),
                duration_minutes=duration,
                origin=origin,
                url=url,
                discovered_at=now - timedelta(hours=idx),
            )
        )
    return candidates
