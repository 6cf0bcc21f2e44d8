from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from core.evaluator import RuleEvaluator
from core.events import EventBus
from core.models import Decision, RuleKind, TorrentSnapshot
from core.utils import is_ignored
from storage.strikes import StrikeStore, make_strike_key, split_strike_key


class Metrics:
    def __init__(self) -> None:
        self.processed = 0
        self.ignored = 0
        self.removed = 0
        self.strike_increased = 0
        self.strike_reset = 0
        self.pruned = 0
        self.extra: Dict[str, int] = {}

    def bump(self, key: str, amount: int = 1) -> None:
        if hasattr(self, key) and key != 'extra':
            setattr(self, key, getattr(self, key) + amount)
        else:
            self.extra[key] = self.extra.get(key, 0) + amount

    def get(self, key: str, default: int = 0) -> int:
        if hasattr(self, key) and key != 'extra':
            return getattr(self, key)
        return self.extra.get(key, default)


@dataclass
class Removal:
    torrent: TorrentSnapshot
    kind: RuleKind
    decision: Decision


@dataclass
class SweepReport:
    metrics: Metrics
    removals: List[Removal] = field(default_factory=list)
    decisions: Dict[str, Dict[str, Decision]] = field(default_factory=dict)


def _evaluate_locked(
    evaluator: RuleEvaluator,
    kind: RuleKind,
    torrent: TorrentSnapshot,
    store: StrikeStore,
) -> tuple:
    key = make_strike_key(torrent.hash, kind)
    with store.lock(key):
        before = store.get(key)
        decision = evaluator.evaluate(kind, torrent, store)
    return before, decision


def _check(
    evaluator: RuleEvaluator,
    kind: RuleKind,
    torrent: TorrentSnapshot,
    store: StrikeStore,
    metrics: Metrics,
    bus: Optional[EventBus],
) -> Decision:
    before, decision = _evaluate_locked(evaluator, kind, torrent, store)
    prev = before.count if before else 0
    if decision.strikes > prev:
        metrics.bump('strike_increased')
        if bus is not None:
            bus.log('strike', kind=kind.value, hash=torrent.hash, name=torrent.name,
                    rule=decision.rule_name, strikes=decision.strikes)
    elif prev > 0 and decision.strikes == 0 and decision.rule_name is not None:
        after = store.get(make_strike_key(torrent.hash, kind))
        if after is not None and after.count == 0:
            metrics.bump('strike_reset')
            if bus is not None:
                bus.log('strike_reset', kind=kind.value, hash=torrent.hash, name=torrent.name,
                        rule=decision.rule_name, previous=prev)
    return decision


def run_sweep(
    torrents: Iterable[TorrentSnapshot],
    evaluator: RuleEvaluator,
    store: StrikeStore,
    *,
    ignored_downloads: Sequence[str] = (),
    event_bus: Optional[EventBus] = None,
    prune: bool = True,
) -> SweepReport:
    """Run one inspection pass over ``torrents``.

    Slow rules apply to downloading torrents with non-zero speed, stall rules
    to stalled ones. Strike records of removed torrents are dropped, and with
    ``prune`` so are records of torrents no longer present.
    """
    metrics = Metrics()
    report = SweepReport(metrics=metrics)
    seen = set()

    for torrent in torrents:
        torrent_hash = str(torrent.hash).lower()
        if torrent_hash in seen:
            continue
        seen.add(torrent_hash)
        metrics.bump('processed')

        if is_ignored(torrent, ignored_downloads):
            metrics.bump('ignored')
            logging.info(f'Torrent {torrent.label}: skip | download is ignored')
            if event_bus is not None:
                event_bus.log('ignored', hash=torrent.hash, name=torrent.name)
            continue

        results: Dict[str, Decision] = {}
        removed_by: Optional[RuleKind] = None
        if torrent.is_downloading() and torrent.download_speed > 0:
            results[RuleKind.SLOW.value] = _check(evaluator, RuleKind.SLOW, torrent, store, metrics, event_bus)
            if results[RuleKind.SLOW.value].should_remove:
                removed_by = RuleKind.SLOW
        if removed_by is None and torrent.is_stalled():
            results[RuleKind.STALL.value] = _check(evaluator, RuleKind.STALL, torrent, store, metrics, event_bus)
            if results[RuleKind.STALL.value].should_remove:
                removed_by = RuleKind.STALL
        report.decisions[torrent.hash] = results

        if removed_by is not None:
            decision = results[removed_by.value]
            report.removals.append(Removal(torrent, removed_by, decision))
            metrics.bump('removed')
            for kind in RuleKind:
                key = make_strike_key(torrent.hash, kind)
                with store.lock(key):
                    store.remove(key)
            if event_bus is not None:
                event_bus.log('remove', kind=removed_by.value, hash=torrent.hash, name=torrent.name,
                              reason=decision.reason.value, rule=decision.rule_name,
                              delete_from_client=decision.delete_from_client)

    if prune:
        for key in store.keys():
            _, stored_hash = split_strike_key(key)
            if stored_hash.lower() not in seen:
                with store.lock(key):
                    store.remove(key)
                metrics.bump('pruned')
    return report


def summarize(metrics: Metrics, store: StrikeStore) -> Dict[str, Any]:
    by_kind: Dict[str, int] = {kind.value: 0 for kind in RuleKind}
    active = 0
    for key in store.keys():
        record = store.get(key)
        if record is None or record.count <= 0:
            continue
        active += 1
        kind, _ = split_strike_key(key)
        if kind is not None:
            by_kind[kind.value] += 1
    return {
        'processed': metrics.processed,
        'ignored': metrics.ignored,
        'removed': metrics.removed,
        'strike_increased': metrics.strike_increased,
        'strike_reset': metrics.strike_reset,
        'pruned': metrics.pruned,
        'items_with_strikes': active,
        'strikes_by_kind': by_kind,
    }
