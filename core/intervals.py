"""Consistency checks for queue rules.

Enabled rules of one kind must not cover the same completion percentage for
the same privacy class. ``both`` rules take part in the public and the private
checks. Problems come back as :class:`ValidationResult` values; nothing here
raises for a bad configuration.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from core.models import (
    IntervalGap,
    PrivacyType,
    QueueRule,
    RuleConflict,
    SlowRule,
    StallRule,
    ValidationResult,
)


def overlap_range(a: QueueRule, b: QueueRule) -> Optional[Tuple[int, int]]:
    """Return the shared completion range of two rules, or ``None``.

    Coverage is ``(min, max]`` with 0 included for rules starting at 0, so
    touching rules do not overlap and zero-width rules above 0 cover nothing.
    """
    a_lo, a_hi = a.min_completion_percentage, a.max_completion_percentage
    b_lo, b_hi = b.min_completion_percentage, b.max_completion_percentage
    if a_hi < a_lo or b_hi < b_lo:
        return None
    start = max(a_lo, b_lo)
    end = min(a_hi, b_hi)
    if start < end:
        return start, end
    if start == end == 0 and a_lo == 0 and b_lo == 0:
        return 0, 0
    return None


def validate_rule_fields(rule: QueueRule) -> ValidationResult:
    problems: List[str] = list(rule.field_errors)
    if not (rule.name or '').strip():
        problems.append('Rule name cannot be empty')
    if rule.max_strikes < 3:
        problems.append('Max strikes must be at least 3')
    lo, hi = rule.min_completion_percentage, rule.max_completion_percentage
    if not 0 <= lo <= 100:
        problems.append('Minimum completion percentage must be between 0 and 100')
    if not 0 <= hi <= 100:
        problems.append('Maximum completion percentage must be between 0 and 100')
    if hi < lo:
        problems.append(
            'Maximum completion percentage must be greater than or equal to the minimum completion percentage'
        )
    if isinstance(rule, StallRule):
        mp = rule.minimum_progress
        if mp is not None and not 0 <= mp <= 100:
            problems.append('Minimum progress must be between 0 and 100')
    if isinstance(rule, SlowRule):
        if rule.max_time_hours < 0:
            problems.append('Maximum time cannot be negative')
        if rule.min_speed is not None and rule.min_speed < 0:
            problems.append('Minimum speed cannot be negative')
        if rule.ignore_above_size is not None and rule.ignore_above_size < 0:
            problems.append('Ignore above size cannot be negative')
        if not rule.min_speed and not rule.max_time_hours:
            problems.append('Either minimum speed or maximum time must be specified')
    if problems:
        label = rule.name or rule.id
        return ValidationResult.failure(f'Rule {label} is invalid: ' + '; '.join(problems), problems)
    return ValidationResult.success()


def find_conflicts(candidate: QueueRule, existing_rules: Iterable[QueueRule]) -> List[RuleConflict]:
    conflicts: List[RuleConflict] = []
    if not candidate.enabled:
        return conflicts
    for other in existing_rules:
        if other.id == candidate.id or not other.enabled:
            continue
        if not candidate.privacy_type.intersects(other.privacy_type):
            continue
        shared = overlap_range(candidate, other)
        if shared is None:
            continue
        # report once per concrete privacy class both rules apply to
        for privacy in PrivacyType.PUBLIC, PrivacyType.PRIVATE:
            if privacy in candidate.privacy_type.concrete() and privacy in other.privacy_type.concrete():
                conflicts.append(RuleConflict(other.id, other.name, privacy, shared[0], shared[1]))
    return conflicts


def validate_rule(candidate: QueueRule, existing_rules: Sequence[QueueRule]) -> ValidationResult:
    logging.debug(f'Rule {candidate.name}: validating {candidate.kind.value} rule intervals')
    fields = validate_rule_fields(candidate)
    if not fields.is_valid:
        return fields

    same_kind = [r for r in existing_rules if r.kind is candidate.kind]
    conflicts = find_conflicts(candidate, same_kind)
    if not conflicts:
        return ValidationResult.success()

    details = []
    names: List[str] = []
    for c in conflicts:
        detail = c.describe(candidate.name)
        logging.warning(detail)
        details.append(detail)
        if c.rule_name not in names:
            names.append(c.rule_name)
    return ValidationResult.failure(
        'Rule creates overlapping intervals with existing rules: ' + ', '.join(names),
        details,
        conflicts,
    )


def validate_rule_set(rules: Sequence[QueueRule]) -> ValidationResult:
    details: List[str] = []
    conflicts: List[RuleConflict] = []
    seen_pairs = set()
    for idx, rule in enumerate(rules):
        fields = validate_rule_fields(rule)
        if not fields.is_valid:
            details.extend(f'{rule.name or rule.id}: {p}' for p in fields.details)
            continue
        for c in find_conflicts(rule, [r for r in rules if r.kind is rule.kind]):
            pair = (frozenset((rule.id, c.rule_id)), c.privacy_type)
            if pair in seen_pairs:
                continue
            seen_pairs.add(pair)
            conflicts.append(c)
            details.append(c.describe(rule.name))
    if details:
        return ValidationResult.failure(
            f'Rule set has {len(details)} problem(s)', details, conflicts
        )
    return ValidationResult.success()


def _gaps_for_privacy(rules: Sequence[QueueRule], privacy: PrivacyType) -> List[IntervalGap]:
    relevant = [r for r in rules if r.privacy_type in (privacy, PrivacyType.BOTH)]
    if not relevant:
        return [IntervalGap(privacy, 0, 100)]

    intervals = []
    for r in relevant:
        start = max(0, min(100, r.min_completion_percentage))
        end = max(0, min(100, r.max_completion_percentage))
        if end >= start:
            intervals.append((start, end))
    intervals.sort()

    gaps: List[IntervalGap] = []
    covered_to = 0
    for start, end in intervals:
        if start > covered_to:
            gaps.append(IntervalGap(privacy, covered_to, start))
        covered_to = max(covered_to, end)
        if covered_to >= 100:
            break
    if covered_to < 100:
        gaps.append(IntervalGap(privacy, covered_to, 100))
    return gaps


def find_gaps(rules: Iterable[QueueRule]) -> List[IntervalGap]:
    enabled = [r for r in rules if r.enabled]
    gaps = _gaps_for_privacy(enabled, PrivacyType.PUBLIC) + _gaps_for_privacy(enabled, PrivacyType.PRIVATE)
    logging.debug(f'Found {len(gaps)} gap(s) in coverage for {len(enabled)} enabled rule(s)')
    return gaps


def gaps_by_kind(rules: Iterable[QueueRule]) -> Dict[str, List[IntervalGap]]:
    rules = list(rules)
    return {
        kind.kind.value: find_gaps([r for r in rules if isinstance(r, kind)])
        for kind in (StallRule, SlowRule)
    }
