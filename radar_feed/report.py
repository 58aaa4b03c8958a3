##########################################################################################
#
# Script name: report.py
#
# Description: Run report persistence. Writes one JSON report per run date and keeps
#              a bounded newest-first index of past runs.
#
##########################################################################################

import json
from dataclasses import asdict
from pathlib import Path

from .models import PublishedEntry, RunResult


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

INDEX_LIMIT = 90


# ****************************************************************************************
# Functions
# ****************************************************************************************


def _entry_to_json(entry: PublishedEntry) -> dict:
    return {
        'id': entry.id,
        'topic_code': entry.topic_code,
        'stance': entry.stance,
        'title': entry.title,
        'author_name': entry.author_name,
        'source_url': entry.source_url,
        'keywords': entry.keywords,
    }


def _read_index(path: Path) -> list[dict]:
    if not path.exists():
        return []
    with path.open('r', encoding='utf-8') as handle:
        payload = json.load(handle)
    if isinstance(payload, list):
        return payload
    return []


def _update_index(existing: list[dict], result: RunResult, audit: dict | None, limit: int = INDEX_LIMIT) -> list[dict]:
    entries = [entry for entry in existing if entry.get('date') != result.date]
    entries.append(
        {
            'date': result.date,
            'terminal_reason': result.terminal_reason,
            'published': result.published,
            'total_entries': audit.get('total') if audit else None,
            'audit_ok': audit.get('ok') if audit else None,
            'started_at': result.started_at,
        }
    )
    entries.sort(key=lambda item: item.get('date', ''), reverse=True)
    return entries[:limit]


def write_run_report(
    result: RunResult,
    output_dir: str,
    audit: dict | None = None,
    entries: list[PublishedEntry] | None = None,
) -> Path:
    root = Path(output_dir)
    root.mkdir(parents=True, exist_ok=True)

    payload = {
        'result': asdict(result),
        'audit': audit,
        'entries': [_entry_to_json(entry) for entry in entries or []],
    }
    report_path = root / f'{result.date}.json'
    report_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding='utf-8')

    index_path = root / 'index.json'
    index = _update_index(_read_index(index_path), result, audit)
    index_path.write_text(json.dumps(index, ensure_ascii=False, indent=2), encoding='utf-8')
    return report_path
