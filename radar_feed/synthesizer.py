##########################################################################################
#
# Script name: synthesizer.py
#
# Description: Synthesizer boundary. Turns one candidate into draft opinion entries
#              through the OpenAI API, with transport retries and defensive parsing.
#
##########################################################################################

import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Protocol

import openai
import requests
from openai import OpenAI
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import GENERATION_MIN_LENGTH, SLOT_BY_CODE, TOPIC_SLOTS
from .models import CandidateUnit, DraftEntry
from .parsing import DraftParseError, is_valid_stance, parse_drafts
from .utils import safe_sentence, strip_html


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    'You are the content analyst for a daily opinion radar. Extract only opinions the '
    'speaker actually expressed. Return strict JSON only, no markdown.'
)

ROOT_DIR = Path(__file__).resolve().parent.parent
SYSTEM_PROMPT_PATH = Path(os.getenv('SYSTEM_PROMPT_FILE') or (ROOT_DIR / 'prompts' / 'system.md'))
USER_AGENT = 'radar-feed-bot/1.0'
MAX_SOURCE_CHARS = 8000
TRANSPORT_ATTEMPTS = 3

RETRYABLE_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
)


# ****************************************************************************************
# Exceptions
# ****************************************************************************************


class SynthesisError(Exception):
    '''
    Transport, timeout or parse failure while synthesizing a candidate.
    '''


# ****************************************************************************************
# Functions
# ****************************************************************************************


class Synthesizer(Protocol):
    def synthesize(self, candidate: CandidateUnit) -> list[DraftEntry]: ...


def meets_contract(draft: DraftEntry, min_length: int = GENERATION_MIN_LENGTH) -> bool:
    return (
        draft.topic_code in SLOT_BY_CODE
        and is_valid_stance(draft.stance)
        and len(draft.body_text or '') >= min_length
    )


def filter_contract(drafts: list[DraftEntry], min_length: int = GENERATION_MIN_LENGTH) -> list[DraftEntry]:
    kept = [draft for draft in drafts if meets_contract(draft, min_length)]
    if len(kept) < len(drafts):
        log.debug('Dropped %d draft(s) that missed the generation contract.', len(drafts) - len(kept))
    return kept


@lru_cache(maxsize=1)
def _load_system_prompt() -> str:
    if not SYSTEM_PROMPT_PATH.exists():
        return DEFAULT_SYSTEM_PROMPT
    try:
        content = SYSTEM_PROMPT_PATH.read_text(encoding='utf-8').strip()
    except OSError as exc:
        log.warning('Failed reading system prompt file %s: %s', SYSTEM_PROMPT_PATH, exc)
        return DEFAULT_SYSTEM_PROMPT
    return content or DEFAULT_SYSTEM_PROMPT


def fetch_source_text(url: str, timeout: float = 15.0) -> str:
    '''Best-effort article text for candidates that arrive with metadata only.'''
    if not url:
        return ''
    try:
        response = requests.get(url, headers={'User-Agent': USER_AGENT}, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        log.warning('Could not fetch source text from %s: %s', url, exc)
        return ''
    return strip_html(response.text)[:MAX_SOURCE_CHARS]


def build_prompt(candidate: CandidateUnit, source_text: str) -> str:
    slot_lines = '\n'.join(
        f'{slot.code}: {slot.core_question} (yes: {slot.yes_label} / no: {slot.no_label})'
        for slot in TOPIC_SLOTS
    )
    published = candidate.published_at.date().isoformat() if candidate.published_at else 'unknown'
    material = source_text or 'No transcript or article text is available; metadata only.'
    return (
        'Topic slots:\n'
        f'{slot_lines}\n\n'
        'Source metadata:\n'
        f'- title: {candidate.title}\n'
        f'- origin: {candidate.origin or "unknown"}\n'
        f'- kind: {candidate.kind}\n'
        f'- published: {published}\n'
        f'- url: {candidate.url or "n/a"}\n'
        f'- description: {safe_sentence(candidate.description, 300)}\n\n'
        'Source material:\n'
        f'{material[:MAX_SOURCE_CHARS]}\n\n'
        'For each opinion the speaker or author actually argues, produce one item with:\n'
        '"topic_code" (one code from the list), "stance" ("yes" or "no"), "title",\n'
        '"author_name", "author_bio", "source_description" (date, outlet, programme),\n'
        '"source_url", "body_text" (at least '
        f'{GENERATION_MIN_LENGTH} characters, quoting the source), "keywords" (3-5).\n'
        'Never infer opinions from metadata. If the material does not support any slot,\n'
        'return an empty list.\n'
        'Return a JSON object with exact shape: {"items": [...]}'
    )


class OpenAISynthesizer:
    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        fetch_text: bool = True,
        client: OpenAI | None = None,
    ) -> None:
        self.model = model or os.getenv('OPENAI_MODEL') or 'gpt-5-mini'
        self.timeout = timeout or float(os.getenv('OPENAI_TIMEOUT') or 90)
        self.fetch_text = fetch_text
        if client is None:
            key = api_key or os.getenv('OPENAI_API_KEY')
            if not key:
                raise SynthesisError('OPENAI_API_KEY is not configured')
            client = OpenAI(api_key=key, timeout=self.timeout, max_retries=0)
        self.client = client

    @retry(
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        stop=stop_after_attempt(TRANSPORT_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    def _complete(self, prompt: str) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            response_format={'type': 'json_object'},
            messages=[
                {'role': 'system', 'content': _load_system_prompt()},
                {'role': 'user', 'content': prompt},
            ],
            timeout=self.timeout,
        )
        choices = getattr(response, 'choices', None)
        if not choices:
            raise SynthesisError('synthesis response has no choices')
        message = getattr(choices[0], 'message', None)
        if message is None:
            raise SynthesisError('synthesis response choice has no message')
        return message.content or ''

    def synthesize(self, candidate: CandidateUnit) -> list[DraftEntry]:
        source_text = candidate.full_text
        if not source_text and self.fetch_text and candidate.kind == 'article':
            source_text = fetch_source_text(candidate.url)
        prompt = build_prompt(candidate, source_text)
        try:
            content = self._complete(prompt)
        except openai.OpenAIError as exc:
            raise SynthesisError(f'synthesis request failed for {candidate.id}: {exc}') from exc
        try:
            drafts = parse_drafts(content, default_source_url=candidate.url or None)
        except DraftParseError as exc:
            raise SynthesisError(f'unparseable synthesis response for {candidate.id}: {exc}') from exc
        return filter_contract(drafts)


class StaticSynthesizer:
    '''
    Serves pre-built drafts keyed by candidate id. Used for sample runs and
    for replaying drafts exported from the review tool.
    '''

    def __init__(self, drafts_by_candidate: dict[str, list[DraftEntry]] | None = None) -> None:
        self.drafts_by_candidate = drafts_by_candidate or {}
        self.calls: list[str] = []

    def synthesize(self, candidate: CandidateUnit) -> list[DraftEntry]:
        self.calls.append(candidate.id)
        return filter_contract(list(self.drafts_by_candidate.get(candidate.id, [])))

    @classmethod
    def from_samples(cls, candidates: list[CandidateUnit]) -> 'StaticSynthesizer':
        return cls(build_sample_drafts(candidates))

    @classmethod
    def from_json(cls, path: str) -> 'StaticSynthesizer':
        with open(path, 'r', encoding='utf-8') as handle:
            payload = json.load(handle)
        drafts = {
            candidate_id: parse_drafts(json.dumps(items, ensure_ascii=False))
            for candidate_id, items in payload.items()
        }
        return cls(drafts)


SAMPLE_SPEAKERS = {
    'Lex Fridman Podcast': ('Demis Hassabis', 'CEO of Google DeepMind', ('T1', 'T3')),
    'Foreign Affairs': ('Francis Fukuyama', 'Political scientist, Stanford University', ('P1', 'P3')),
    'Long Now Foundation': ('Yuval Noah Harari', 'Historian and author', ('H1', 'H3')),
    'Santa Fe Institute': ('David Chalmers', 'Philosopher of mind, NYU', ('Φ1', 'Φ2')),
    'Closer To Truth': ('Charles Taylor', 'Philosopher, McGill University', ('R1', 'R2')),
    'Bridgewater': ('Ray Dalio', 'Founder of Bridgewater Associates', ('F1', 'F2')),
}


def _sample_body(speaker: str, question: str, label: str, origin: str) -> str:
    paragraphs = [
        f'{speaker} takes up the question "{question}" and lands on "{label}".',
        f'Over the conversation published by {origin}, {speaker} walks through the historical '
        'record, the incentives of the institutions involved and the places where the common '
        'framing breaks down, arguing that the usual debate confuses short-run noise with '
        'structural change.',
        f'The strongest part of the argument is the list of concrete signals {speaker} would '
        'watch over the next decade: who captures the gains, which rules are rewritten, and '
        'whether ordinary people can still see and contest the decisions that shape their lives.',
        f'{speaker} closes by conceding the best counterargument and explaining why it does not '
        'change the overall judgement, while naming the evidence that would force a rethink.',
    ]
    return '\n\n'.join(paragraphs)


def build_sample_drafts(candidates: list[CandidateUnit]) -> dict[str, list[DraftEntry]]:
    '''One ready-made draft per sample candidate, rotating through each speaker's slots.'''
    drafts: dict[str, list[DraftEntry]] = {}
    seen: dict[str, int] = {}
    for candidate in candidates:
        speaker_info = SAMPLE_SPEAKERS.get(candidate.origin)
        if not speaker_info:
            continue
        speaker, bio, codes = speaker_info
        turn = seen.get(candidate.origin, 0)
        seen[candidate.origin] = turn + 1
        slot = SLOT_BY_CODE[codes[turn % len(codes)]]
        stance = 'yes' if turn % 2 == 0 else 'no'
        label = slot.yes_label if stance == 'yes' else slot.no_label
        drafts[candidate.id] = [
            DraftEntry(
                topic_code=slot.code,
                stance=stance,
                title=f'{speaker.split()[-1]}: {label}',
                author_name=speaker,
                body_text=_sample_body(speaker, slot.core_question, label, candidate.origin),
                author_bio=bio,
                source_description=f'{candidate.origin}, {candidate.title}',
                source_url=candidate.url,
                keywords=[slot.domain, slot.code, speaker.split()[-1].lower()],
            )
        ]
    return drafts
