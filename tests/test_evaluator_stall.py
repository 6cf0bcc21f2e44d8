import importlib

import pytest


models = importlib.import_module('core.models')
rules = importlib.import_module('core.rules')
evaluator_mod = importlib.import_module('core.evaluator')
strikes = importlib.import_module('storage.strikes')

KEY_KIND = models.RuleKind.STALL


def _rule(**kw):
    base = dict(
        name='Stall public',
        id='stall-1',
        privacy_type=models.PrivacyType.PUBLIC,
        min_completion_percentage=0,
        max_completion_percentage=50,
        max_strikes=3,
    )
    base.update(kw)
    return models.StallRule(**base)


def _torrent(pct=10.0, private=False, h='abc'):
    return models.TorrentSnapshot(hash=h, name='Some.Torrent', is_private=private,
                                  completion_percentage=pct, state='stalled')


def _evaluator(*stall_rules):
    return evaluator_mod.RuleEvaluator(rules.RuleManager(stall_rules))


class CountingStore(strikes.InMemoryStrikeStore):
    def __init__(self):
        super().__init__()
        self.reads = 0
        self.writes = 0

    def get(self, key):
        self.reads += 1
        return super().get(key)

    def set(self, key, record):
        self.writes += 1
        super().set(key, record)


class BrokenStore(strikes.InMemoryStrikeStore):
    def get(self, key):
        raise strikes.StrikeStoreError('store down')


def test_no_matching_rule_is_noop():
    store = CountingStore()
    decision = _evaluator(_rule()).evaluate_stall(_torrent(pct=80), store)
    assert tuple(decision) == (False, models.DeleteReason.NONE, False)
    assert store.reads == 0 and store.writes == 0


def test_third_strike_removes():
    ev = _evaluator(_rule())
    store = strikes.InMemoryStrikeStore()
    results = [ev.evaluate_stall(_torrent(), store) for _ in range(3)]
    assert [d.should_remove for d in results] == [False, False, True]
    assert [d.strikes for d in results] == [1, 2, 3]
    assert results[-1].reason is models.DeleteReason.STALLED


def test_strikes_strictly_increase_without_progress():
    ev = _evaluator(_rule(max_strikes=6))
    store = strikes.InMemoryStrikeStore()
    key = strikes.make_strike_key('abc', KEY_KIND)
    counts = []
    for _ in range(6):
        ev.evaluate_stall(_torrent(pct=10), store)
        counts.append(store.get(key).count)
    assert counts == [1, 2, 3, 4, 5, 6]


def test_one_read_and_one_write_per_call():
    store = CountingStore()
    _evaluator(_rule()).evaluate_stall(_torrent(), store)
    assert store.reads == 1 and store.writes == 1


def test_progress_resets_strikes():
    ev = _evaluator(_rule())
    store = strikes.InMemoryStrikeStore()
    key = strikes.make_strike_key('abc', KEY_KIND)
    store.set(key, models.StrikeRecord(2, 10.0))
    decision = ev.evaluate_stall(_torrent(pct=15), store)
    assert decision.should_remove is False
    assert store.get(key).count == 0
    assert store.get(key).last_progress_percentage == 15


def test_progress_without_reset_still_strikes():
    ev = _evaluator(_rule(reset_strikes_on_progress=False))
    store = strikes.InMemoryStrikeStore()
    key = strikes.make_strike_key('abc', KEY_KIND)
    store.set(key, models.StrikeRecord(2, 10.0))
    decision = ev.evaluate_stall(_torrent(pct=15), store)
    assert decision.should_remove is True
    assert store.get(key).count == 3


def test_below_minimum_progress_is_exempt():
    store = CountingStore()
    decision = _evaluator(_rule(minimum_progress=5)).evaluate_stall(_torrent(pct=2), store)
    assert decision.should_remove is False
    assert store.writes == 0


def test_at_minimum_progress_strikes():
    store = strikes.InMemoryStrikeStore()
    decision = _evaluator(_rule(minimum_progress=5)).evaluate_stall(_torrent(pct=5), store)
    assert decision.strikes == 1


@pytest.mark.parametrize('flag,private,expected', [
    (True, True, True),
    (True, False, False),
    (False, True, False),
])
def test_delete_from_client_only_for_private_with_flag(flag, private, expected):
    rule = _rule(privacy_type=models.PrivacyType.BOTH, delete_private_torrents_from_client=flag)
    ev = _evaluator(rule)
    store = strikes.InMemoryStrikeStore()
    torrent = _torrent(private=private)
    for _ in range(2):
        assert ev.evaluate_stall(torrent, store).delete_from_client is False
    decision = ev.evaluate_stall(torrent, store)
    assert decision.should_remove is True
    assert decision.delete_from_client is expected


def test_store_failure_propagates():
    with pytest.raises(strikes.StrikeStoreError):
        _evaluator(_rule()).evaluate_stall(_torrent(), BrokenStore())


def test_strikes_are_tracked_per_torrent():
    ev = _evaluator(_rule())
    store = strikes.InMemoryStrikeStore()
    ev.evaluate_stall(_torrent(h='one'), store)
    ev.evaluate_stall(_torrent(h='one'), store)
    ev.evaluate_stall(_torrent(h='two'), store)
    assert store.get(strikes.make_strike_key('one', KEY_KIND)).count == 2
    assert store.get(strikes.make_strike_key('two', KEY_KIND)).count == 1


def test_stall_strike_does_not_depend_on_snapshot_state():
    torrent = models.TorrentSnapshot(hash='abc', completion_percentage=10.0, state='downloading')
    decision = _evaluator(_rule()).evaluate_stall(torrent, strikes.InMemoryStrikeStore())
    assert decision.strikes == 1
