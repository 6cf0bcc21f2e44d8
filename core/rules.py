from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple, TypeVar

from core.intervals import find_conflicts
from core.models import QueueRule, RuleConflict, RuleKind, SlowRule, StallRule, TorrentSnapshot

TRule = TypeVar('TRule', bound=QueueRule)


def _pick_one(matched: Sequence[TRule]) -> TRule:
    # narrowest band first, then smallest id
    return min(matched, key=lambda r: (r.width, r.id))


def match_rule(rules: Sequence[TRule], is_private: bool, completion_percentage: float) -> Optional[TRule]:
    matched = [
        r for r in rules
        if r.enabled and r.matches_privacy(is_private) and r.covers(completion_percentage)
    ]
    if not matched:
        return None
    if len(matched) > 1:
        chosen = _pick_one(matched)
        logging.warning(
            f"Multiple {chosen.kind.value} rules matched private={is_private} "
            f"completion={completion_percentage:g}%: {', '.join(r.name for r in matched)}; using {chosen.name}"
        )
        return chosen
    return matched[0]


class RuleManager:
    def __init__(self, stall_rules: Sequence[StallRule] = (), slow_rules: Sequence[SlowRule] = ()) -> None:
        self.stall_rules: List[StallRule] = list(stall_rules)
        self.slow_rules: List[SlowRule] = list(slow_rules)

    def rules_for(self, kind: RuleKind) -> List[QueueRule]:
        if kind is RuleKind.STALL:
            return list(self.stall_rules)
        return list(self.slow_rules)

    def match_stall(self, is_private: bool, completion_percentage: float) -> Optional[StallRule]:
        return match_rule(self.stall_rules, is_private, completion_percentage)

    def match_slow(self, is_private: bool, completion_percentage: float) -> Optional[SlowRule]:
        return match_rule(self.slow_rules, is_private, completion_percentage)

    def match(self, kind: RuleKind, torrent: TorrentSnapshot) -> Optional[QueueRule]:
        rule = match_rule(self.rules_for(kind), torrent.is_private, torrent.completion_percentage)
        if rule is None:
            logging.debug(f'Torrent {torrent.label}: no {kind.value} rule matched')
        return rule

    def find_ambiguous_matches(self, kind: RuleKind) -> List[Tuple[QueueRule, RuleConflict]]:
        rules = self.rules_for(kind)
        out: List[Tuple[QueueRule, RuleConflict]] = []
        seen = set()
        for rule in rules:
            for conflict in find_conflicts(rule, rules):
                pair = (frozenset((rule.id, conflict.rule_id)), conflict.privacy_type)
                if pair in seen:
                    continue
                seen.add(pair)
                out.append((rule, conflict))
        return out
