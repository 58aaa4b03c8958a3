##########################################################################################
#
# Script name: test_day_rules.py
#
# Description: Day policy resolution, theme-day overrides and safe fallback.
#
##########################################################################################

import yaml

from radar_feed.day_rules import DayRuleResolver, StaticConfigProvider, YamlConfigProvider


RULES = {
    'default_rules': {'min_items': 6, 'max_items': 8, 'max_per_slot': 1, 'min_duration': 40},
    'theme_days': [
        {
            'event': 'Davos Forum',
            'start': '2026-01-19',
            'end': '2026-01-23',
            'rules': {'min_items': 20, 'max_items': 30, 'max_per_slot': None, 'frequency_flex': True},
        },
        {
            'event': 'Munich Security Conference',
            'dates': ['2026-02-13', '2026-02-14'],
            'rules': {'minItems': 10, 'maxItems': 15, 'maxPerFreq': 3},
        },
    ],
}


def test_ordinary_day_uses_defaults() -> None:
    policy = DayRuleResolver(StaticConfigProvider(RULES)).resolve('2026-03-01')
    assert (policy.min_items, policy.max_items, policy.max_per_slot) == (6, 8, 1)
    assert not policy.is_theme_day
    assert policy.event is None


def test_theme_day_range_overrides_and_inherits() -> None:
    policy = DayRuleResolver(StaticConfigProvider(RULES)).resolve('2026-01-21')
    assert policy.is_theme_day
    assert policy.event == 'Davos Forum'
    assert policy.min_items == 20
    assert policy.max_per_slot is None
    assert policy.frequency_flex
    # Not overridden, so inherited from the defaults.
    assert policy.min_duration == 40


def test_theme_day_date_list_accepts_camel_case_keys() -> None:
    resolver = DayRuleResolver(StaticConfigProvider(RULES))
    policy = resolver.resolve('2026-02-14')
    assert policy.is_theme_day
    assert (policy.min_items, policy.max_items, policy.max_per_slot) == (10, 15, 3)
    assert not resolver.resolve('2026-02-15').is_theme_day


def test_missing_source_falls_back_to_safe_default(tmp_path) -> None:
    resolver = DayRuleResolver(YamlConfigProvider(tmp_path / 'missing.yaml'))
    policy = resolver.resolve('2026-03-01')
    assert (policy.min_items, policy.max_items, policy.max_per_slot) == (6, 8, 1)
    assert not policy.is_theme_day


def test_malformed_source_falls_back_to_safe_default(tmp_path) -> None:
    path = tmp_path / 'day_rules.yaml'
    path.write_text('default_rules: [this, is, not, a, mapping', encoding='utf-8')
    policy = DayRuleResolver(YamlConfigProvider(path)).resolve('2026-03-01')
    assert (policy.min_items, policy.max_items, policy.max_per_slot) == (6, 8, 1)


def test_inconsistent_rules_fall_back_to_safe_default() -> None:
    bad = {'default_rules': {'min_items': 9, 'max_items': 4}}
    policy = DayRuleResolver(StaticConfigProvider(bad)).resolve('2026-03-01')
    assert (policy.min_items, policy.max_items) == (6, 8)

    zero_cap = {'default_rules': {'min_items': 2, 'max_items': 4, 'max_per_slot': 0}}
    assert DayRuleResolver(StaticConfigProvider(zero_cap)).resolve('2026-03-01').max_per_slot == 1


def test_yaml_provider_reload_picks_up_changes(tmp_path) -> None:
    path = tmp_path / 'day_rules.yaml'
    path.write_text(yaml.safe_dump({'default_rules': {'min_items': 6, 'max_items': 8}}), encoding='utf-8')
    provider = YamlConfigProvider(path)
    resolver = DayRuleResolver(provider)
    assert resolver.resolve('2026-03-01').max_items == 8

    path.write_text(yaml.safe_dump({'default_rules': {'min_items': 4, 'max_items': 5}}), encoding='utf-8')
    resolver.reload()
    policy = resolver.resolve('2026-03-01')
    assert (policy.min_items, policy.max_items) == (4, 5)


def test_static_provider_update_and_reload() -> None:
    provider = StaticConfigProvider(None)
    resolver = DayRuleResolver(provider)
    assert resolver.resolve('2026-03-01').max_items == 8

    provider.update({'default_rules': {'min_items': 1, 'max_items': 2}})
    resolver.reload()
    assert resolver.resolve('2026-03-01').max_items == 2
    assert provider.reloads == 1
