from __future__ import annotations

import math
import re
from typing import Any, Dict, Iterable, Optional

from core.models import TorrentSnapshot

_SIZE_RE = re.compile(r'^\s*(\d+(?:\.\d+)?)\s*([kmgtp]?i?b?)\s*(?:/s)?\s*$', re.IGNORECASE)
_SIZE_UNITS = {
    '': 1,
    'b': 1,
    'k': 1024,
    'm': 1024 ** 2,
    'g': 1024 ** 3,
    't': 1024 ** 4,
    'p': 1024 ** 5,
}

# Client state names mapped onto the states the engine cares about
_STATE_ALIASES = {
    'stalleddl': 'stalled',
    'stalled': 'stalled',
    'downloading': 'downloading',
    'forceddl': 'downloading',
    'download': 'downloading',
    'queueddl': 'queued',
    'queued': 'queued',
    'download_wait': 'queued',
    'pauseddl': 'paused',
    'stoppeddl': 'paused',
    'paused': 'paused',
    'checkingdl': 'checking',
    'checking': 'checking',
    'check_wait': 'checking',
    'uploading': 'seeding',
    'stalledup': 'seeding',
    'seeding': 'seeding',
    'seed': 'seeding',
}


def parse_byte_size(value: Any) -> Optional[int]:
    """Parse ``"1 MB"``, ``"5GiB"``, ``"100KB/s"`` or a plain number into bytes.

    Units are binary (1 KB = 1024 bytes). Empty values give ``None``;
    unparsable ones raise ``ValueError``.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f'Invalid byte size: {value!r}')
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f'Byte size cannot be negative: {value!r}')
        return int(value)
    text = str(value).strip()
    if not text:
        return None
    m = _SIZE_RE.match(text)
    if not m:
        raise ValueError(f'Invalid byte size: {value!r}')
    number = float(m.group(1))
    unit = m.group(2).lower().rstrip('b').rstrip('i')
    return int(number * _SIZE_UNITS[unit])


def format_byte_size(value: Optional[int]) -> str:
    if value is None:
        return 'unset'
    size = float(value)
    for unit in ('B', 'KB', 'MB', 'GB', 'TB'):
        if size < 1024 or unit == 'TB':
            return f'{size:.0f} {unit}' if unit == 'B' else f'{size:.2f} {unit}'
        size /= 1024
    return f'{value} B'


def get_progress_percent(item: Dict[str, Any]) -> Optional[float]:
    # Explicit percentage wins; qBittorrent style 0..1 progress otherwise
    for key in ('completion_percentage', 'completionPercentage', 'percent_done'):
        val = item.get(key)
        if val is not None:
            try:
                return max(0.0, min(100.0, float(val)))
            except (TypeError, ValueError):
                return None
    prog = item.get('progress')
    if prog is not None:
        try:
            pct = float(prog)
            if pct <= 1.0:
                pct *= 100.0
            return max(0.0, min(100.0, pct))
        except (TypeError, ValueError):
            return None
    size = item.get('size') or item.get('total_size')
    left = item.get('sizeleft') if item.get('sizeleft') is not None else item.get('amount_left')
    try:
        if size and left is not None and int(size) > 0:
            return max(0.0, min(100.0, (int(size) - int(left)) / int(size) * 100.0))
    except (TypeError, ValueError):
        return None
    return None


def estimate_eta_seconds(torrent: TorrentSnapshot) -> float:
    if torrent.eta is not None and torrent.eta >= 0:
        return float(torrent.eta)
    if torrent.download_speed <= 0:
        return math.inf
    remaining = max(0.0, torrent.size * (1.0 - torrent.completion_percentage / 100.0))
    return remaining / torrent.download_speed


def normalize_state(state: Any) -> str:
    raw = str(state or '').strip().lower()
    return _STATE_ALIASES.get(raw, raw or 'downloading')


def _as_str_tuple(value: Any) -> tuple:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(s.strip() for s in value.split(',') if s.strip())
    out = []
    for v in value:
        if isinstance(v, dict):
            v = v.get('url') or v.get('name')
        if v:
            out.append(str(v))
    return tuple(out)


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def snapshot_from_item(item: Dict[str, Any]) -> TorrentSnapshot:
    torrent_hash = item.get('hash') or item.get('hashString') or item.get('downloadId') or ''
    if not torrent_hash:
        raise ValueError('Torrent item has no hash')
    private = item.get('is_private', item.get('isPrivate', item.get('private', False)))
    eta = item.get('eta')
    # qBittorrent reports 8640000 for "infinite"
    eta_val = _as_int(eta, -1) if eta is not None else None
    if eta_val is not None and (eta_val < 0 or eta_val >= 8640000):
        eta_val = None
    return TorrentSnapshot(
        hash=str(torrent_hash).lower(),
        name=str(item.get('name') or item.get('title') or ''),
        is_private=bool(private),
        completion_percentage=get_progress_percent(item) or 0.0,
        download_speed=_as_int(item.get('download_speed', item.get('dlspeed', item.get('rateDownload'))), 0),
        size=_as_int(item.get('size', item.get('total_size', item.get('totalSize'))), 0),
        eta=eta_val,
        trackers=_as_str_tuple(item.get('trackers')),
        tags=_as_str_tuple(item.get('tags')),
        category=item.get('category') or None,
        state=normalize_state(item.get('state')),
    )


def is_ignored(torrent: TorrentSnapshot, patterns: Iterable[str]) -> bool:
    pats = [str(p).lower() for p in (patterns or []) if p]
    if not pats:
        return False
    if torrent.hash.lower() in pats:
        return True
    name = torrent.name.lower()
    category = (torrent.category or '').lower()
    tags = [t.lower() for t in torrent.tags]
    trackers = [t.lower() for t in torrent.trackers]
    for pat in pats:
        if pat in name:
            return True
        if category and pat == category:
            return True
        if pat in tags:
            return True
        if any(pat in tr for tr in trackers):
            return True
    return False
