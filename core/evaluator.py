from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

from core.models import (
    Decision,
    DeleteReason,
    QueueRule,
    RuleKind,
    SlowRule,
    StallRule,
    StrikeRecord,
    TorrentSnapshot,
)
from core.rules import RuleManager
from core.utils import estimate_eta_seconds, format_byte_size
from storage.strikes import StrikeStore, make_strike_key


def _stall_exempt(rule: StallRule, torrent: TorrentSnapshot) -> Optional[str]:
    if rule.minimum_progress is not None and torrent.completion_percentage < rule.minimum_progress:
        return f'completion {torrent.completion_percentage:g}% below minimum progress {rule.minimum_progress:g}%'
    return None


def _stall_reason(_rule: StallRule, _torrent: TorrentSnapshot) -> Optional[DeleteReason]:
    # stall detection belongs to the caller; every stall evaluation is a strike
    return DeleteReason.STALLED


def _slow_exempt(rule: SlowRule, torrent: TorrentSnapshot) -> Optional[str]:
    if rule.ignore_above_size is not None and torrent.size > rule.ignore_above_size:
        return f'size {format_byte_size(torrent.size)} above {format_byte_size(rule.ignore_above_size)}'
    return None


def _slow_reason(rule: SlowRule, torrent: TorrentSnapshot) -> Optional[DeleteReason]:
    if rule.min_speed and torrent.download_speed < rule.min_speed:
        return DeleteReason.SLOW_SPEED
    if rule.max_time_hours and rule.max_time_hours > 0:
        if estimate_eta_seconds(torrent) > rule.max_time_hours * 3600:
            return DeleteReason.SLOW_TIME
    return None


_EXEMPT: Dict[RuleKind, Callable[..., Optional[str]]] = {
    RuleKind.STALL: _stall_exempt,
    RuleKind.SLOW: _slow_exempt,
}
_REASON: Dict[RuleKind, Callable[..., Optional[DeleteReason]]] = {
    RuleKind.STALL: _stall_reason,
    RuleKind.SLOW: _slow_reason,
}


class RuleEvaluator:
    """Turns a matched rule plus strike history into a removal decision.

    Each call does one read and at most one write on the strike store. Store
    errors propagate; retrying is up to the caller.
    """

    def __init__(self, manager: RuleManager) -> None:
        self.manager = manager

    def evaluate_stall(self, torrent: TorrentSnapshot, store: StrikeStore) -> Decision:
        return self.evaluate(RuleKind.STALL, torrent, store)

    def evaluate_slow(self, torrent: TorrentSnapshot, store: StrikeStore) -> Decision:
        return self.evaluate(RuleKind.SLOW, torrent, store)

    def evaluate(self, kind: RuleKind, torrent: TorrentSnapshot, store: StrikeStore) -> Decision:
        kind = RuleKind(kind)
        rule = self.manager.match(kind, torrent)
        if rule is None:
            return Decision.keep()

        exempt = _EXEMPT[kind](rule, torrent)
        if exempt:
            logging.debug(f'Torrent {torrent.label}: skip {kind.value} rule {rule.name} | {exempt}')
            return Decision.keep(rule.name)

        return self._apply_strikes(kind, rule, torrent, store)

    def _apply_strikes(
        self,
        kind: RuleKind,
        rule: QueueRule,
        torrent: TorrentSnapshot,
        store: StrikeStore,
    ) -> Decision:
        key = make_strike_key(torrent.hash, kind)
        current = torrent.completion_percentage
        record = store.get(key)

        if rule.reset_strikes_on_progress and record is not None and current > record.last_progress_percentage:
            if record.count > 0:
                logging.debug(
                    f'Torrent {torrent.label}: progress detected '
                    f'({record.last_progress_percentage:g}% -> {current:g}%) | resetting {kind.value} strikes from {record.count} to 0'
                )
            store.set(key, StrikeRecord(0, current))
            return Decision.keep(rule.name)

        reason = _REASON[kind](rule, torrent)
        if reason is None:
            return Decision.keep(rule.name, record.count if record else 0)

        count = (record.count if record else 0) + 1
        store.set(key, StrikeRecord(count, current))
        logging.info(f'Torrent {torrent.label}: strike {count}/{rule.max_strikes} | reason {reason.value} | rule {rule.name}')

        if count < rule.max_strikes:
            return Decision.keep(rule.name, count)

        if count > rule.max_strikes:
            logging.warning(f'Torrent {torrent.label}: removed item keeps coming back ({count} strikes)')
        logging.info(f'Torrent {torrent.label}: max strikes reached | reason {reason.value} | rule {rule.name}')
        return Decision(
            should_remove=True,
            reason=reason,
            delete_from_client=bool(rule.delete_private_torrents_from_client and torrent.is_private),
            rule_name=rule.name,
            strikes=count,
        )
