from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from .config import (
    DEFAULT_MAX_CANDIDATE_FAILURES,
    DEFAULT_MAX_CONSECUTIVE_FAILURES,
)


GAP_CLOSED = "gap-closed"
BUDGET_EXHAUSTED = "budget-exhausted"
CIRCUIT_BREAKER = "circuit-breaker"
NO_CANDIDATES = "no-candidates"
DRY_RUN = "dry-run"


@dataclass(frozen=True)
class DayPolicy:
    min_items: int
    max_items: int
    max_per_slot: int | None = 1
    min_duration: int = 40
    min_video_items: int = 1
    min_non_video_items: int = 5
    max_non_video_items: int | None = 7
    frequency_flex: bool = False
    content_type_flex: bool = False
    min_content_length: int = 300
    is_theme_day: bool = False
    event: str | None = None
    event_en: str | None = None
    focus: str | None = None


@dataclass
class Gap:
    date: str
    current_count: int
    total_gap: int
    video_gap: int
    non_video_gap: int
    used_slots: set[str]
    missing_core_slots: list[str]
    available_slots: list[str]
    remaining_capacity: int
    slot_counts: dict[str, int] = field(default_factory=dict)

    @property
    def needs_more(self) -> bool:
        return self.total_gap > 0


@dataclass
class CandidateUnit:
    id: str
    kind: str
    title: str
    description: str = ""
    published_at: datetime | None = None
    duration_minutes: int | None = None
    origin: str = ""
    url: str = ""
    full_text: str = ""
    discovered_at: datetime | None = None
    priority_score: float = 0.0
    consumed: bool = False
    failure_count: int = 0
    skip_reason: str = ""


@dataclass
class DraftEntry:
    topic_code: str
    stance: str
    title: str
    author_name: str
    body_text: str
    author_bio: str = ""
    source_description: str = ""
    source_url: str | None = None
    keywords: list[str] = field(default_factory=list)


@dataclass
class PublishedEntry:
    id: int | None
    date: str
    topic_code: str
    stance: str
    title: str
    author_name: str
    body_text: str
    author_bio: str = ""
    source_description: str = ""
    source_url: str | None = None
    normalized_url: str | None = None
    keywords: list[str] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""


@dataclass
class CheckResult:
    name: str
    category: str
    severity: str
    passed: bool
    message: str


@dataclass
class ValidationReport:
    checks: list[CheckResult] = field(default_factory=list)

    @property
    def errors(self) -> list[CheckResult]:
        return [check for check in self.checks if not check.passed and check.severity == "BLOCK"]

    @property
    def warnings(self) -> list[CheckResult]:
        return [check for check in self.checks if not check.passed and check.severity == "WARN"]

    @property
    def blocked(self) -> bool:
        return bool(self.errors)

    @property
    def passed(self) -> bool:
        return not self.blocked

    def summary(self) -> str:
        if not self.errors:
            return "ok"
        return "; ".join(f"{check.name}: {check.message}" for check in self.errors)


@dataclass
class AllocationOutcome:
    status: str
    reason: str = ""
    entry: PublishedEntry | None = None

    @property
    def published(self) -> bool:
        return self.status == "published"


@dataclass
class RunOptions:
    max_consecutive_failures: int = DEFAULT_MAX_CONSECUTIVE_FAILURES
    max_synthesis_calls: int | None = None
    dry_run: bool = False
    source_filter: str | None = None
    entries_per_candidate: int = 1
    max_candidate_failures: int = DEFAULT_MAX_CANDIDATE_FAILURES


@dataclass
class RunResult:
    date: str
    is_theme_day: bool = False
    event: str | None = None
    scanned: int = 0
    eligible: int = 0
    synthesized: int = 0
    published: int = 0
    skipped: int = 0
    failed: int = 0
    synthesis_calls: int = 0
    synthesis_budget: int = 0
    terminal_reason: str = ""
    skips: list[str] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)
    published_ids: list[int] = field(default_factory=list)
    started_at: str = ""
    duration_seconds: float = 0.0
