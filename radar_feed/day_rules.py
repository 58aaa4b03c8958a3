##########################################################################################
#
# Script name: day_rules.py
#
# Description: Resolves the publishing quota policy for a calendar date (ordinary day
#              defaults merged with theme-day overrides).
#
##########################################################################################

import logging
import os
from datetime import date, datetime
from pathlib import Path
from typing import Any, Protocol

import yaml

from .config import SAFE_DEFAULT_RULES
from .models import DayPolicy


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).resolve().parent.parent
DEFAULT_DAY_RULES_PATH = Path(os.getenv('DAY_RULES_FILE') or (ROOT_DIR / 'config' / 'day_rules.yaml'))

POLICY_FIELDS = (
    'min_items',
    'max_items',
    'max_per_slot',
    'min_duration',
    'min_video_items',
    'min_non_video_items',
    'max_non_video_items',
    'frequency_flex',
    'content_type_flex',
    'min_content_length',
)
NULLABLE_FIELDS = {'max_per_slot', 'max_non_video_items'}
BOOL_FIELDS = {'frequency_flex', 'content_type_flex'}

# camelCase keys accepted for configs exported from the admin tooling.
CAMEL_ALIASES = {
    'minItems': 'min_items',
    'maxItems': 'max_items',
    'maxPerSlot': 'max_per_slot',
    'maxPerFreq': 'max_per_slot',
    'minDuration': 'min_duration',
    'minVideoItems': 'min_video_items',
    'minNonVideoItems': 'min_non_video_items',
    'maxNonVideoItems': 'max_non_video_items',
    'frequencyFlex': 'frequency_flex',
    'contentTypeFlex': 'content_type_flex',
    'minContentLength': 'min_content_length',
}


# ****************************************************************************************
# Exceptions
# ****************************************************************************************


class PolicyConfigError(Exception):
    '''
    Raised internally when the day rules document is unreadable or inconsistent.
    '''


# ****************************************************************************************
# Config providers
# ****************************************************************************************


class ConfigProvider(Protocol):
    def load(self) -> dict: ...

    def reload(self) -> None: ...


class StaticConfigProvider:
    def __init__(self, payload: dict | None) -> None:
        self._payload = payload
        self.reloads = 0

    def load(self) -> dict:
        if self._payload is None:
            raise PolicyConfigError('no day rules configured')
        return self._payload

    def update(self, payload: dict | None) -> None:
        self._payload = payload

    def reload(self) -> None:
        self.reloads += 1


class YamlConfigProvider:
    '''
    Reads the day rules YAML file and caches it until reload() is called or the
    file modification time changes.
    '''

    def __init__(self, path: str | Path = DEFAULT_DAY_RULES_PATH) -> None:
        self.path = Path(path)
        self._cached: dict | None = None
        self._cached_mtime: float | None = None

    def _current_mtime(self) -> float | None:
        try:
            return self.path.stat().st_mtime
        except OSError:
            return None

    def load(self) -> dict:
        mtime = self._current_mtime()
        if self._cached is not None and mtime == self._cached_mtime:
            return self._cached
        try:
            with open(self.path, 'r', encoding='utf-8') as handle:
                payload = yaml.safe_load(handle) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise PolicyConfigError(f'failed reading {self.path}: {exc}') from exc
        if not isinstance(payload, dict):
            raise PolicyConfigError(f'{self.path} must contain a mapping')
        self._cached = payload
        self._cached_mtime = mtime
        log.debug('Loaded day rules from %s', self.path)
        return payload

    def reload(self) -> None:
        self._cached = None
        self._cached_mtime = None


# ****************************************************************************************
# Functions
# ****************************************************************************************


def _date_key(value: str | date | datetime) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()[:10]


def _normalize_rules(raw: Any) -> dict:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise PolicyConfigError('rules must be a mapping')
    rules: dict = {}
    for key, value in raw.items():
        name = CAMEL_ALIASES.get(key, key)
        if name in POLICY_FIELDS:
            rules[name] = value
    return rules


def _theme_day_matches(theme_day: dict, day: str) -> bool:
    dates = theme_day.get('dates')
    if dates:
        return day in {_date_key(item) for item in dates}
    start = theme_day.get('start')
    end = theme_day.get('end') or start
    if not start:
        return False
    return _date_key(start) <= day <= _date_key(end)


def _coerce_field(name: str, value: Any) -> Any:
    if value is None:
        if name in NULLABLE_FIELDS:
            return None
        raise PolicyConfigError(f'{name} cannot be null')
    if name in BOOL_FIELDS:
        if isinstance(value, str):
            return value.strip().lower() in {'1', 'true', 'yes', 'on'}
        return bool(value)
    return int(value)


def build_policy(rules: dict, theme_day: dict | None = None) -> DayPolicy:
    values = {}
    for name in POLICY_FIELDS:
        try:
            values[name] = _coerce_field(name, rules.get(name, SAFE_DEFAULT_RULES[name]))
        except (TypeError, ValueError) as exc:
            raise PolicyConfigError(f'invalid value for {name}: {rules.get(name)!r}') from exc
    if values['min_items'] > values['max_items']:
        raise PolicyConfigError(f'min_items {values["min_items"]} exceeds max_items {values["max_items"]}')
    if values['max_per_slot'] is not None and values['max_per_slot'] < 1:
        raise PolicyConfigError('max_per_slot must be null or >= 1')
    if theme_day:
        event = theme_day.get('event')
        return DayPolicy(
            **values,
            is_theme_day=True,
            event=event,
            event_en=theme_day.get('event_en') or event,
            focus=theme_day.get('focus'),
        )
    return DayPolicy(**values)


def safe_default_policy() -> DayPolicy:
    return build_policy(dict(SAFE_DEFAULT_RULES))


class DayRuleResolver:
    def __init__(self, provider: ConfigProvider | None = None) -> None:
        self.provider = provider or YamlConfigProvider()

    def reload(self) -> None:
        self.provider.reload()

    def resolve(self, day: str | date | datetime) -> DayPolicy:
        '''
        Return the policy for a date. Theme-day overrides win on every field they
        set; missing fields inherit the defaults. Never raises: an unreadable or
        malformed source yields the hard-coded safe default.
        '''
        day_key = _date_key(day)
        try:
            payload = self.provider.load()
            defaults = _normalize_rules(payload.get('default_rules', payload.get('defaultRules')))
            theme_days = payload.get('theme_days', payload.get('themeDays')) or []
            if not isinstance(theme_days, list):
                raise PolicyConfigError('theme_days must be a list')
            for theme_day in theme_days:
                if not isinstance(theme_day, dict) or not _theme_day_matches(theme_day, day_key):
                    continue
                merged = {**defaults, **_normalize_rules(theme_day.get('rules'))}
                policy = build_policy(merged, theme_day=theme_day)
                log.debug('Date %s is a theme day (%s).', day_key, policy.event)
                return policy
            return build_policy(defaults)
        except Exception as exc:  # noqa: BLE001
            log.warning('Day rules unavailable for %s, using safe defaults: %s', day_key, exc)
            return safe_default_policy()
