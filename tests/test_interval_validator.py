import importlib

import pytest


models = importlib.import_module('core.models')
intervals = importlib.import_module('core.intervals')


def _stall(name, lo, hi, privacy='public', **kw):
    return models.StallRule(
        name=name,
        id=kw.pop('id', name),
        privacy_type=models.PrivacyType.parse(privacy),
        min_completion_percentage=lo,
        max_completion_percentage=hi,
        **kw,
    )


def _slow(name, lo, hi, privacy='public', **kw):
    kw.setdefault('min_speed', 1024 * 1024)
    kw.setdefault('max_time_hours', 1)
    return models.SlowRule(
        name=name,
        id=kw.pop('id', name),
        privacy_type=models.PrivacyType.parse(privacy),
        min_completion_percentage=lo,
        max_completion_percentage=hi,
        **kw,
    )


def test_overlap_is_rejected():
    result = intervals.validate_rule(_stall('new', 40, 60), [_stall('existing', 0, 50)])
    assert result.is_valid is False
    assert 'existing' in result.error_message
    assert result.conflicts[0].start == 40 and result.conflicts[0].end == 50


def test_candidate_spanning_two_rules_names_both_subranges():
    a = _stall('A', 0, 50)
    b = _stall('B', 50, 100)
    result = intervals.validate_rule(_stall('C', 40, 60), [a, b])
    assert result.is_valid is False
    assert 'A' in result.error_message and 'B' in result.error_message
    ranges = {(c.rule_name, c.start, c.end) for c in result.conflicts}
    assert ranges == {('A', 40, 50), ('B', 50, 60)}
    assert any('40%-50%' in d for d in result.details)
    assert any('50%-60%' in d for d in result.details)


def test_touching_ranges_are_allowed():
    assert intervals.validate_rule(_stall('high', 40, 80), [_stall('low', 0, 40)]).is_valid


def test_disjoint_ranges_are_allowed():
    assert intervals.validate_rule(_stall('high', 41, 80), [_stall('low', 0, 40)]).is_valid


def test_zero_width_rule_inside_existing_range_is_allowed():
    assert intervals.validate_rule(_stall('point', 30, 30), [_stall('band', 10, 40)]).is_valid


def test_two_rules_covering_zero_conflict():
    result = intervals.validate_rule(_stall('zero', 0, 0), [_stall('band', 0, 40)])
    assert result.is_valid is False
    assert (result.conflicts[0].start, result.conflicts[0].end) == (0, 0)


def test_both_rule_conflicts_with_public_rule():
    result = intervals.validate_rule(_stall('pub', 50, 70), [_stall('any', 20, 60, 'both')])
    assert result.is_valid is False
    assert [c.privacy_type for c in result.conflicts] == [models.PrivacyType.PUBLIC]


def test_both_vs_both_reports_each_privacy_class():
    result = intervals.validate_rule(_stall('x', 0, 50, 'both'), [_stall('y', 10, 20, 'both')])
    assert {c.privacy_type for c in result.conflicts} == {models.PrivacyType.PUBLIC, models.PrivacyType.PRIVATE}
    # rule is only named once in the summary
    assert result.error_message.endswith('existing rules: y')


def test_public_and_private_rules_do_not_conflict():
    assert intervals.validate_rule(_stall('pub', 0, 100), [_stall('priv', 0, 100, 'private')]).is_valid


def test_disabled_rules_are_ignored():
    existing = _stall('off', 30, 70, enabled=False)
    assert intervals.validate_rule(_stall('on', 40, 60), [existing]).is_valid
    assert intervals.validate_rule(_stall('cand', 40, 60, enabled=False), [_stall('on', 30, 70)]).is_valid


def test_update_excludes_prior_version_of_same_rule():
    old = _stall('rule', 0, 50, id='r1')
    updated = _stall('rule renamed', 10, 60, id='r1')
    assert intervals.validate_rule(updated, [old]).is_valid


def test_other_kind_rules_are_not_compared():
    assert intervals.validate_rule(_slow('slow', 0, 100), [_stall('stall', 0, 100)]).is_valid


def test_slow_rule_overlap_detected():
    result = intervals.validate_rule(_slow('b', 40, 80), [_slow('a', 10, 50)])
    assert result.is_valid is False


@pytest.mark.parametrize('kwargs,needle', [
    ({'max_strikes': 2}, 'Max strikes'),
    ({'name': '  '}, 'name cannot be empty'),
])
def test_field_problems_are_reported_not_raised(kwargs, needle):
    name = kwargs.pop('name', 'r')
    rule = _stall(name, 0, 50, id='id1', **kwargs)
    result = intervals.validate_rule(rule, [])
    assert result.is_valid is False
    assert any(needle in d for d in result.details)


def test_out_of_range_bounds_reported():
    result = intervals.validate_rule_fields(_stall('r', 60, 120))
    assert result.is_valid is False
    assert any('between 0 and 100' in d for d in result.details)
    inverted = intervals.validate_rule_fields(_stall('r', 60, 40))
    assert any('greater than or equal' in d for d in inverted.details)


def test_slow_rule_needs_speed_or_time():
    rule = _slow('r', 0, 100, min_speed=None, max_time_hours=0)
    result = intervals.validate_rule_fields(rule)
    assert result.is_valid is False
    assert any('minimum speed or maximum time' in d for d in result.details)


def test_stall_minimum_progress_range():
    assert intervals.validate_rule_fields(_stall('r', 0, 100, minimum_progress=5)).is_valid
    assert not intervals.validate_rule_fields(_stall('r', 0, 100, minimum_progress=150)).is_valid


def test_validate_rule_set_reports_each_conflict_once():
    rule_set = [_stall('a', 0, 60), _stall('b', 40, 100), _stall('c', 0, 100, 'private')]
    result = intervals.validate_rule_set(rule_set)
    assert result.is_valid is False
    assert len(result.conflicts) == 1


def test_validator_agrees_with_matching():
    # any accepted pair never matches the same point
    rules_mod = importlib.import_module('core.rules')
    bands = [(0, 0), (0, 30), (10, 10), (30, 60), (45, 55), (60, 100), (99, 100)]
    for a_lo, a_hi in bands:
        for b_lo, b_hi in bands:
            a = _stall('a', a_lo, a_hi)
            b = _stall('b', b_lo, b_hi)
            accepted = intervals.validate_rule(b, [a]).is_valid
            points = [p / 2 for p in range(0, 201)]
            shared = any(a.covers(p) and b.covers(p) for p in points)
            assert accepted is not shared, (a_lo, a_hi, b_lo, b_hi)
            if accepted:
                mgr = rules_mod.RuleManager([a, b])
                for p in points:
                    hits = [r for r in (a, b) if r.covers(p)]
                    assert mgr.match_stall(False, p) is (hits[0] if hits else None)
