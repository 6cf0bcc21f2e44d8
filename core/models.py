from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Iterator, List, Optional, Tuple


class PrivacyType(str, Enum):
    PUBLIC = 'public'
    PRIVATE = 'private'
    BOTH = 'both'

    @classmethod
    def parse(cls, value: Any) -> 'PrivacyType':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f'Unknown privacy type: {value!r}') from None

    def intersects(self, other: 'PrivacyType') -> bool:
        if self is PrivacyType.BOTH or other is PrivacyType.BOTH:
            return True
        return self is other

    def concrete(self) -> Tuple['PrivacyType', ...]:
        # Both expands to the two concrete classes
        if self is PrivacyType.BOTH:
            return (PrivacyType.PUBLIC, PrivacyType.PRIVATE)
        return (self,)

    @property
    def label(self) -> str:
        return self.value.capitalize()


class RuleKind(str, Enum):
    STALL = 'stall'
    SLOW = 'slow'


class DeleteReason(str, Enum):
    NONE = 'none'
    STALLED = 'stalled'
    SLOW_SPEED = 'slow_speed'
    SLOW_TIME = 'slow_time'


def _new_rule_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class QueueRule:
    """Health policy covering one privacy class and a completion band.

    A rule covers completion percentage ``p`` when ``min < p <= max``; a rule
    starting at 0 also covers 0 itself. Adjacent rules such as ``[0, 50]`` and
    ``[50, 100]`` share no point.
    """

    kind: ClassVar[RuleKind]

    name: str
    id: str = field(default_factory=_new_rule_id)
    enabled: bool = True
    max_strikes: int = 3
    privacy_type: PrivacyType = PrivacyType.PUBLIC
    min_completion_percentage: int = 0
    max_completion_percentage: int = 100
    delete_private_torrents_from_client: bool = False
    reset_strikes_on_progress: bool = True
    # problems found while building the rule from config, e.g. unparsable sizes
    field_errors: Tuple[str, ...] = field(default=(), compare=False)

    @property
    def width(self) -> int:
        return self.max_completion_percentage - self.min_completion_percentage

    def matches_privacy(self, is_private: bool) -> bool:
        if self.privacy_type is PrivacyType.BOTH:
            return True
        if self.privacy_type is PrivacyType.PRIVATE:
            return bool(is_private)
        return not is_private

    def covers(self, completion_percentage: float) -> bool:
        lo = self.min_completion_percentage
        hi = self.max_completion_percentage
        if hi < lo:
            return False
        if lo == 0:
            lower_ok = completion_percentage >= 0
        else:
            lower_ok = completion_percentage > lo
        return lower_ok and completion_percentage <= hi

    def describe(self) -> str:
        return (
            f"{self.name} ({self.privacy_type.label} "
            f"{self.min_completion_percentage}%-{self.max_completion_percentage}%)"
        )


@dataclass(frozen=True)
class StallRule(QueueRule):
    kind: ClassVar[RuleKind] = RuleKind.STALL

    # completion percentage below which stall strikes are not given
    minimum_progress: Optional[float] = None


@dataclass(frozen=True)
class SlowRule(QueueRule):
    kind: ClassVar[RuleKind] = RuleKind.SLOW

    min_speed: Optional[int] = None  # bytes per second
    max_time_hours: float = 0.0
    ignore_above_size: Optional[int] = None  # bytes


@dataclass(frozen=True)
class TorrentSnapshot:
    hash: str
    name: str = ''
    is_private: bool = False
    completion_percentage: float = 0.0
    download_speed: int = 0
    size: int = 0
    eta: Optional[int] = None  # seconds
    trackers: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    category: Optional[str] = None
    state: str = 'downloading'

    def is_stalled(self) -> bool:
        return self.state == 'stalled'

    def is_downloading(self) -> bool:
        return self.state == 'downloading'

    @property
    def label(self) -> str:
        return self.name or self.hash


@dataclass
class StrikeRecord:
    count: int = 0
    last_progress_percentage: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {'count': self.count, 'last_progress_percentage': self.last_progress_percentage}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StrikeRecord':
        return cls(
            count=int(data.get('count') or 0),
            last_progress_percentage=float(data.get('last_progress_percentage') or 0.0),
        )


@dataclass(frozen=True)
class IntervalGap:
    privacy_type: PrivacyType
    start: float
    end: float

    def to_dict(self) -> Dict[str, Any]:
        return {'privacy_type': self.privacy_type.value, 'start': self.start, 'end': self.end}


@dataclass(frozen=True)
class RuleConflict:
    rule_id: str
    rule_name: str
    privacy_type: PrivacyType
    start: float
    end: float

    def describe(self, candidate_name: str) -> str:
        return (
            f"Rule {candidate_name} overlaps for {self.privacy_type.label} torrents with rule "
            f"{self.rule_name} (both cover {self.start:g}%-{self.end:g}%)"
        )


@dataclass
class ValidationResult:
    is_valid: bool
    error_message: Optional[str] = None
    details: List[str] = field(default_factory=list)
    conflicts: List[RuleConflict] = field(default_factory=list)

    @classmethod
    def success(cls) -> 'ValidationResult':
        return cls(is_valid=True)

    @classmethod
    def failure(
        cls,
        message: str,
        details: Optional[List[str]] = None,
        conflicts: Optional[List[RuleConflict]] = None,
    ) -> 'ValidationResult':
        return cls(
            is_valid=False,
            error_message=message,
            details=list(details or []),
            conflicts=list(conflicts or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'is_valid': self.is_valid,
            'error_message': self.error_message,
            'details': list(self.details),
        }


@dataclass(frozen=True)
class Decision:
    should_remove: bool = False
    reason: DeleteReason = DeleteReason.NONE
    delete_from_client: bool = False
    rule_name: Optional[str] = None
    strikes: int = 0

    def __iter__(self) -> Iterator[Any]:
        # unpacks as (should_remove, reason, delete_from_client)
        return iter((self.should_remove, self.reason, self.delete_from_client))

    @classmethod
    def keep(cls, rule_name: Optional[str] = None, strikes: int = 0) -> 'Decision':
        return cls(rule_name=rule_name, strikes=strikes)
