from __future__ import annotations

import logging
import os
import uuid
from typing import Any, Dict, List, Optional, Tuple

import yaml

from core.intervals import find_gaps, validate_rule_set
from core.models import PrivacyType, QueueRule, RuleKind, SlowRule, StallRule
from core.utils import parse_byte_size

# snake_case key -> camelCase alias accepted from API-style exports
_ALIASES = {
    'id': 'id',
    'name': 'name',
    'enabled': 'enabled',
    'max_strikes': 'maxStrikes',
    'privacy_type': 'privacyType',
    'min_completion_percentage': 'minCompletionPercentage',
    'max_completion_percentage': 'maxCompletionPercentage',
    'delete_private_torrents_from_client': 'deletePrivateTorrentsFromClient',
    'reset_strikes_on_progress': 'resetStrikesOnProgress',
    'minimum_progress': 'minimumProgress',
    'min_speed': 'minSpeed',
    'max_time_hours': 'maxTimeHours',
    'ignore_above_size': 'ignoreAboveSize',
}


def load_yaml(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        return {}
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
            return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError) as e:
        logging.warning(f'Config file {path} could not be read: {e}')
        return {}


def _get_env(key: str, default: Any = None) -> Any:
    return os.environ.get(key, default)


def env_flag(key: str, default: bool = False) -> bool:
    val = _get_env(key)
    if val is None:
        return default
    return str(val).strip().lower() in ('true', '1', 'yes')


def _pick(raw: Dict[str, Any], key: str, default: Any = None) -> Any:
    if key in raw:
        return raw[key]
    alias = _ALIASES.get(key)
    if alias and alias in raw:
        return raw[alias]
    return default


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes', 'on')
    return bool(value)


def _nz(v, cast, default):
    try:
        return cast(v)
    except (TypeError, ValueError):
        return default


def _stable_rule_id(kind: RuleKind, name: str) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f'queue-rule:{kind.value}:{name}'))


_SIZE_LABELS = {
    'min_speed': 'minimum speed',
    'ignore_above_size': 'ignore above size',
}


def _byte_size_field(raw: Dict[str, Any], key: str, rule_name: str, errors: List[str]) -> Optional[int]:
    value = _pick(raw, key)
    try:
        return parse_byte_size(value)
    except ValueError:
        logging.warning(f'Rule {rule_name}: ignoring invalid {key} value {value!r}')
        errors.append(f'Invalid {_SIZE_LABELS[key]} format: {value!r}')
        return None


def build_rule(kind: RuleKind, raw: Dict[str, Any]) -> QueueRule:
    name = str(_pick(raw, 'name', '') or '').strip()
    rule_id = _pick(raw, 'id') or _stable_rule_id(kind, name)
    try:
        privacy = PrivacyType.parse(_pick(raw, 'privacy_type', PrivacyType.PUBLIC))
    except ValueError:
        logging.warning(f'Rule {name}: unknown privacy type {_pick(raw, "privacy_type")!r}; using public')
        privacy = PrivacyType.PUBLIC
    common = dict(
        id=str(rule_id),
        name=name,
        enabled=_as_bool(_pick(raw, 'enabled'), True),
        max_strikes=_nz(_pick(raw, 'max_strikes', 3), int, 3),
        privacy_type=privacy,
        min_completion_percentage=_nz(_pick(raw, 'min_completion_percentage', 0), int, 0),
        max_completion_percentage=_nz(_pick(raw, 'max_completion_percentage', 100), int, 100),
        delete_private_torrents_from_client=_as_bool(_pick(raw, 'delete_private_torrents_from_client'), False),
        reset_strikes_on_progress=_as_bool(_pick(raw, 'reset_strikes_on_progress'), True),
    )
    if kind is RuleKind.STALL:
        mp = _pick(raw, 'minimum_progress')
        return StallRule(minimum_progress=_nz(mp, float, None) if mp not in (None, '') else None, **common)
    errors: List[str] = []
    min_speed = _byte_size_field(raw, 'min_speed', name, errors)
    ignore_above_size = _byte_size_field(raw, 'ignore_above_size', name, errors)
    return SlowRule(
        min_speed=min_speed,
        max_time_hours=max(0.0, _nz(_pick(raw, 'max_time_hours', 0), float, 0.0)),
        ignore_above_size=ignore_above_size,
        field_errors=tuple(errors),
        **common,
    )


class ConfigAccessor:
    def __init__(self, cfg: Dict[str, Any]) -> None:
        self.cfg = cfg if isinstance(cfg, dict) else {}

    def general(self, key: str, default: Any = None) -> Any:
        gen = self.cfg.get('general') if isinstance(self.cfg.get('general'), dict) else {}
        return gen.get(key, default)

    def ignored_downloads(self) -> List[str]:
        ign = self.cfg.get('ignored_downloads')
        if not isinstance(ign, list):
            return []
        return [str(x) for x in ign if x not in (None, '')]

    def raw_rules(self, kind: RuleKind) -> List[Dict[str, Any]]:
        rules = self.cfg.get('rules') if isinstance(self.cfg.get('rules'), dict) else {}
        items = rules.get(kind.value) if isinstance(rules.get(kind.value), list) else []
        return [r for r in items if isinstance(r, dict)]

    def stall_rules(self) -> List[StallRule]:
        return [build_rule(RuleKind.STALL, r) for r in self.raw_rules(RuleKind.STALL)]  # type: ignore[misc]

    def slow_rules(self) -> List[SlowRule]:
        return [build_rule(RuleKind.SLOW, r) for r in self.raw_rules(RuleKind.SLOW)]  # type: ignore[misc]

    def rules(self) -> Tuple[List[StallRule], List[SlowRule]]:
        return self.stall_rules(), self.slow_rules()

    def strike_file_path(self) -> str:
        return str(self.general('strike_file_path') or _get_env('STRIKE_FILE_PATH', '/app/data/strikes.json'))

    def debug_logging(self) -> bool:
        val = self.general('debug_logging')
        return env_flag('DEBUG_LOGGING', False) if val is None else _as_bool(val, False)

    def structured_logs(self) -> bool:
        val = self.general('structured_logs')
        return env_flag('STRUCTURED_LOGS', True) if val is None else _as_bool(val, True)


def sanitize_config(cfg: Dict[str, Any], debug_logging: bool = False) -> Dict[str, Any]:
    if not isinstance(cfg, dict):
        return {}
    out = dict(cfg)

    gen = out.get('general') if isinstance(out.get('general'), dict) else {}
    if gen:
        for flag in ('debug_logging', 'structured_logs'):
            if flag in gen:
                gen[flag] = _as_bool(gen[flag], False)
        out['general'] = gen

    ign = out.get('ignored_downloads')
    if ign is not None and not isinstance(ign, list):
        out['ignored_downloads'] = [str(ign)]

    rules = out.get('rules') if isinstance(out.get('rules'), dict) else {}
    cleaned_rules: Dict[str, List[Dict[str, Any]]] = {}
    for kind in RuleKind:
        items = rules.get(kind.value)
        if items is None:
            continue
        if not isinstance(items, list):
            if debug_logging:
                logging.warning(f'Ignoring {kind.value} rules: expected a list, got {type(items).__name__}')
            continue
        cleaned = []
        for r in items:
            if not isinstance(r, dict):
                if debug_logging:
                    logging.warning(f'Ignoring invalid {kind.value} rule entry: {r!r}')
                continue
            r = dict(r)
            for key in ('max_strikes', 'min_completion_percentage', 'max_completion_percentage'):
                for k in (key, _ALIASES[key]):
                    if k in r:
                        r[k] = _nz(r[k], int, r[k])
            for k in ('max_time_hours', 'maxTimeHours'):
                if k in r:
                    r[k] = max(0.0, _nz(r[k], float, 0.0))
            cleaned.append(r)
        cleaned_rules[kind.value] = cleaned
    if rules:
        out['rules'] = cleaned_rules
    return out


def validate_config(cfg: Dict[str, Any], debug_logging: bool = False) -> List[str]:
    """Log configuration problems and return them; never raises."""
    problems: List[str] = []
    acc = ConfigAccessor(cfg)
    for kind in RuleKind:
        rules = [build_rule(kind, r) for r in acc.raw_rules(kind)]
        result = validate_rule_set(rules)
        if not result.is_valid:
            problems.extend(f'{kind.value} rules: {d}' for d in result.details)
        if debug_logging and rules:
            for gap in find_gaps(rules):
                logging.info(
                    f'{kind.value} rules: no coverage for {gap.privacy_type.label} torrents '
                    f'between {gap.start:g}% and {gap.end:g}%'
                )
    for p in problems:
        logging.warning(p)
    return problems
