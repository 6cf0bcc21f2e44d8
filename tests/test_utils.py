import importlib
import math

import pytest


utils = importlib.import_module('core.utils')
models = importlib.import_module('core.models')


@pytest.mark.parametrize('value,expected', [
    ('1 MB', 1024 ** 2),
    ('5GiB', 5 * 1024 ** 3),
    ('100KB/s', 100 * 1024),
    ('1.5 kb', 1536),
    ('512', 512),
    (2048, 2048),
    ('', None),
    (None, None),
])
def test_parse_byte_size(value, expected):
    assert utils.parse_byte_size(value) == expected


@pytest.mark.parametrize('value', ['fast', '10 XB', -1, True])
def test_parse_byte_size_rejects_garbage(value):
    with pytest.raises(ValueError):
        utils.parse_byte_size(value)


def test_format_byte_size():
    assert utils.format_byte_size(None) == 'unset'
    assert utils.format_byte_size(512) == '512 B'
    assert utils.format_byte_size(1536) == '1.50 KB'


def test_snapshot_from_qbittorrent_item():
    snap = utils.snapshot_from_item({
        'hash': 'ABCDEF',
        'name': 'Some.Show.S01E01',
        'progress': 0.5,
        'dlspeed': 2048,
        'size': 1000,
        'eta': 8640000,
        'state': 'stalledDL',
        'tags': 'tv, hd',
        'category': 'sonarr',
        'private': True,
    })
    assert snap.hash == 'abcdef'
    assert snap.completion_percentage == 50.0
    assert snap.download_speed == 2048
    assert snap.eta is None
    assert snap.is_stalled()
    assert snap.tags == ('tv', 'hd')
    assert snap.category == 'sonarr'
    assert snap.is_private is True


def test_snapshot_progress_from_sizeleft_and_explicit_percentage():
    snap = utils.snapshot_from_item({'downloadId': 'X1', 'size': 200, 'sizeleft': 50, 'state': 'downloading'})
    assert snap.completion_percentage == 75.0
    snap = utils.snapshot_from_item({'hash': 'x2', 'completionPercentage': 42, 'eta': 60})
    assert snap.completion_percentage == 42.0
    assert snap.eta == 60
    assert snap.is_downloading()


def test_snapshot_requires_hash():
    with pytest.raises(ValueError):
        utils.snapshot_from_item({'name': 'nameless'})


def test_estimate_eta_seconds():
    t = models.TorrentSnapshot(hash='h', completion_percentage=50.0, size=1000, download_speed=100)
    assert utils.estimate_eta_seconds(t) == 5.0
    assert utils.estimate_eta_seconds(models.TorrentSnapshot(hash='h', eta=30)) == 30.0
    assert utils.estimate_eta_seconds(models.TorrentSnapshot(hash='h', size=1000)) == math.inf


def test_is_ignored_matches_hash_name_category_tag_and_tracker():
    t = models.TorrentSnapshot(hash='abc', name='Linux.Distro.ISO', category='software',
                               tags=('keep',), trackers=('https://tracker.example.org/announce',))
    assert not utils.is_ignored(t, [])
    assert utils.is_ignored(t, ['ABC'])
    assert utils.is_ignored(t, ['distro'])
    assert utils.is_ignored(t, ['Software'])
    assert utils.is_ignored(t, ['keep'])
    assert utils.is_ignored(t, ['example.org'])
    assert not utils.is_ignored(t, ['soft', 'other'])
