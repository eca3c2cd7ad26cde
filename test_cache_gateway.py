import json
import threading
import time

import pytest

from conftest import FakeInsightGenerator, FakeSpotifyClient, make_play, make_track
from errors import UpstreamUnavailable
from utils.cache_gateway import (
    RECOMMENDATIONS_TTL,
    STATS_TTL,
    StatsCache,
    _ledger_lock,
    _ledger_locks,
    is_ledger_key,
    listening_time_seen_key,
    listening_time_key,
    normalize_time_range,
    recently_played_key,
    top_artists_key,
    top_tracks_key,
)


@pytest.fixture
def cache(kv, spotify, insight_generator):
    return StatsCache(kv, spotify, 'u1', insight_generator=insight_generator)


def test_key_scheme():
    assert top_tracks_key('u1', 'short_term', 10) == 'user:u1:top-tracks:short_term:10'
    assert top_artists_key('u1', 'long_term', 50) == 'user:u1:top-artists:long_term:50'
    assert recently_played_key('u1', 20) == 'user:u1:recently-played:20'
    assert listening_time_key('u1') == 'user:u1:listening-time'


def test_keys_are_deterministic_and_distinct():
    assert top_tracks_key('u1', 'short_term', 10) == top_tracks_key('u1', 'short_term', 10)
    keys = {top_tracks_key('u1', tr, limit) for tr in ('short_term', 'medium_term', 'long_term') for limit in (10, 20, 50)}
    assert len(keys) == 9
    assert recently_played_key('u1', 20) != recently_played_key('u1', 20, grouped=True)
    assert top_tracks_key('u1', 'short_term', 10) != top_artists_key('u1', 'short_term', 10)


def test_unknown_time_range_normalizes_to_medium_term():
    assert normalize_time_range('forever') == 'medium_term'
    assert normalize_time_range(None) == 'medium_term'
    assert top_tracks_key('u1', 'bogus', 10) == top_tracks_key('u1', 'medium_term', 10)


def test_ledger_key_detection():
    assert is_ledger_key('u1', 'user:u1:listening-time')
    assert is_ledger_key('u1', listening_time_seen_key('u1'))
    assert not is_ledger_key('u1', 'user:u1:top-tracks:short_term:10')


def test_top_tracks_miss_fetches_shapes_and_stores(cache, kv, spotify):
    tracks = cache.top_tracks('short_term', 10)

    assert spotify.call_names() == ['get_top_tracks']
    assert tracks[0] == {
        'id': 't1', 'name': 'Track t1', 'artist': 'Artist', 'album': 'Album t1',
        'spotifyUrl': 'https://open.spotify.com/track/t1', 'imageUrl': 'https://img/t1.jpg',
        'popularity': 50, 'duration': 180000, 'previewUrl': None,
    }
    key = 'user:u1:top-tracks:short_term:10'
    assert json.loads(kv.get(key)) == tracks
    assert kv.ttls[key] == STATS_TTL


def test_cache_hit_makes_no_spotify_calls(cache, kv, spotify):
    kv.put('user:u1:top-tracks:medium_term:10', json.dumps([{'id': 'cached'}]), ttl=STATS_TTL)

    assert cache.top_tracks('medium_term', 10) == [{'id': 'cached'}]
    assert spotify.calls == []


def test_force_bypasses_cache_and_overwrites(cache, kv, spotify):
    kv.put('user:u1:top-artists:medium_term:10', json.dumps([{'id': 'stale'}]), ttl=STATS_TTL)

    artists = cache.top_artists('medium_term', 10, force=True)

    assert spotify.call_names() == ['get_top_artists']
    assert artists[0]['id'] == 'ar1'
    assert json.loads(kv.get('user:u1:top-artists:medium_term:10')) == artists


def test_upstream_failure_propagates_without_writing(cache, kv, spotify):
    kv.put('user:u1:top-tracks:medium_term:10', json.dumps([{'id': 'old'}]), ttl=STATS_TTL)
    spotify.failing.add('get_top_tracks')

    with pytest.raises(UpstreamUnavailable):
        cache.top_tracks('medium_term', 10, force=True)
    with pytest.raises(UpstreamUnavailable):
        cache.top_tracks('medium_term', 20)

    assert json.loads(kv.get('user:u1:top-tracks:medium_term:10')) == [{'id': 'old'}]
    assert kv.get('user:u1:top-tracks:medium_term:20') is None


def test_artist_shape_defaults_missing_image(cache, spotify):
    spotify.top_artists_items = [{'id': 'x', 'name': 'No Pic', 'genres': None, 'popularity': 3, 'images': []}]
    assert cache.top_artists() == [{'id': 'x', 'name': 'No Pic', 'genres': [], 'popularity': 3, 'imageUrl': None}]


def test_recently_played_grouping(cache, kv, spotify):
    a = make_track('a', artists=('One', 'Two'))
    b = make_track('b')
    spotify.recent_items = [
        make_play(a, '2024-01-01T12:00:00Z'),
        make_play(b, '2024-01-01T11:00:00Z'),
        make_play(a, '2024-01-01T10:00:00Z'),
        make_play(a, '2024-01-01T13:00:00Z'),
    ]

    grouped = cache.recently_played(20, grouped=True)

    assert [(t['id'], t['playCount'], t['playedAt']) for t in grouped] == [
        ('a', 3, '2024-01-01T13:00:00Z'),
        ('b', 1, '2024-01-01T11:00:00Z'),
    ]
    assert grouped[0]['artist'] == 'One, Two'
    assert json.loads(kv.get('user:u1:recently-played:20:grouped')) == grouped


def test_recently_played_ungrouped_keeps_every_play(cache, spotify):
    a = make_track('a')
    spotify.recent_items = [make_play(a, '2024-01-01T12:00:00Z'), make_play(a, '2024-01-01T10:00:00Z')]

    tracks = cache.recently_played(20)

    assert len(tracks) == 2
    assert 'playCount' not in tracks[0]
    assert tracks[0]['playedAt'] == '2024-01-01T12:00:00Z'


def test_playlists_are_shaped_and_cached(cache, kv, spotify):
    spotify.playlist_items = [{
        'id': 'p1', 'name': 'Mix', 'description': '', 'images': [],
        'tracks': {'total': 12}, 'owner': {'id': 'u1', 'display_name': 'Me'}, 'public': True,
        'external_urls': {'spotify': 'https://open.spotify.com/playlist/p1'},
    }]

    playlists = cache.playlists()

    assert playlists == [{
        'id': 'p1', 'name': 'Mix', 'description': None, 'imageUrl': None, 'trackCount': 12,
        'owner': 'Me', 'public': True, 'spotifyUrl': 'https://open.spotify.com/playlist/p1',
    }]
    assert kv.ttls['user:u1:playlists'] == STATS_TTL


def _recent(*plays):
    return [make_play(make_track(track_id, duration_ms=duration), played_at) for track_id, played_at, duration in plays]


def test_listening_time_creates_persistent_ledger(cache, kv, spotify):
    spotify.recent_items = _recent(
        ('a', '2024-01-01T10:00:00Z', 180000),
        ('b', '2024-01-01T11:00:00Z', 120000),
        ('c', '2024-01-02T09:00:00Z', 60000),
    )

    cache.listening_time(days=36500)

    assert json.loads(kv.get('user:u1:listening-time')) == {'2024-01-01': 300000, '2024-01-02': 60000}
    assert kv.ttls['user:u1:listening-time'] is None
    assert spotify.calls == [('get_recently_played', 20)]


def test_listening_time_returns_minutes_for_window(cache, spotify):
    spotify.recent_items = _recent(('a', '2024-01-01T10:00:00Z', 180000), ('c', '2024-01-02T09:00:00Z', 60000))

    assert cache.listening_time(days=36500) == [
        {'date': '2024-01-01', 'minutes': 3},
        {'date': '2024-01-02', 'minutes': 1},
    ]
    assert cache.listening_time(days=7) == []


def test_listening_time_force_fetches_larger_batch_but_keeps_history(cache, kv, spotify):
    kv.put('user:u1:listening-time', json.dumps({'2023-12-31': 1000}))
    spotify.recent_items = _recent(('a', '2024-01-01T10:00:00Z', 5000))

    cache.listening_time(days=36500, force=True)

    assert spotify.calls == [('get_recently_played', 50)]
    assert json.loads(kv.get('user:u1:listening-time')) == {'2023-12-31': 1000, '2024-01-01': 5000}


def test_listening_time_does_not_double_count_overlapping_fetches(cache, kv, spotify):
    spotify.recent_items = _recent(('a', '2024-01-01T10:00:00Z', 5000), ('b', '2024-01-01T11:00:00Z', 7000))
    cache.listening_time(days=36500)
    cache.listening_time(days=36500)

    spotify.recent_items = _recent(('c', '2024-01-01T12:00:00Z', 1000)) + spotify.recent_items
    cache.listening_time(days=36500)

    assert json.loads(kv.get('user:u1:listening-time')) == {'2024-01-01': 13000}
    assert len(json.loads(kv.get(listening_time_seen_key('u1')))) == 3


def test_listening_time_without_dedupe_adds_every_batch(kv, spotify):
    cache = StatsCache(kv, spotify, 'u1', dedupe_plays=False)
    spotify.recent_items = _recent(('a', '2024-01-01T10:00:00Z', 5000))

    cache.listening_time(days=36500)
    cache.listening_time(days=36500)

    assert json.loads(kv.get('user:u1:listening-time')) == {'2024-01-01': 10000}
    assert kv.get(listening_time_seen_key('u1')) is None


def test_forced_listening_time_backfills_older_plays_exactly_once(cache, kv, spotify):
    spotify.recent_items = _recent(*[
        (f't{minute}', f'2024-01-01T10:{minute:02d}:00Z', 60000) for minute in reversed(range(50))
    ])

    cache.listening_time(days=36500)
    assert json.loads(kv.get('user:u1:listening-time')) == {'2024-01-01': 20 * 60000}

    cache.listening_time(days=36500, force=True)
    assert json.loads(kv.get('user:u1:listening-time')) == {'2024-01-01': 50 * 60000}

    cache.listening_time(days=36500, force=True)
    cache.listening_time(days=36500)
    assert json.loads(kv.get('user:u1:listening-time')) == {'2024-01-01': 50 * 60000}


class SlowSpotifyClient(FakeSpotifyClient):
    def get_recently_played(self, limit=20):
        plays = super().get_recently_played(limit)
        time.sleep(0.05)
        return plays


def test_concurrent_listening_time_calls_keep_both_batches(kv):
    first = SlowSpotifyClient(recent=_recent(('a', '2024-01-01T10:00:00Z', 1000)))
    second = SlowSpotifyClient(recent=_recent(('b', '2024-01-02T10:00:00Z', 2000)))
    threads = [
        threading.Thread(target=StatsCache(kv, client, 'u1').listening_time, kwargs={'days': 36500})
        for client in (first, second)
    ]

    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert json.loads(kv.get('user:u1:listening-time')) == {'2024-01-01': 1000, '2024-01-02': 2000}
    assert len(json.loads(kv.get(listening_time_seen_key('u1')))) == 2


def test_ledger_locks_are_shared_per_user_and_released():
    lock = _ledger_lock('u-lock')
    assert _ledger_lock('u-lock') is lock
    assert _ledger_lock('u-other') is not lock

    del lock
    assert 'u-lock' not in _ledger_locks


def test_listening_time_upstream_failure_leaves_ledger_untouched(cache, kv, spotify):
    kv.put('user:u1:listening-time', json.dumps({'2024-01-01': 1000}))
    spotify.failing.add('get_recently_played')

    with pytest.raises(UpstreamUnavailable):
        cache.listening_time()

    assert json.loads(kv.get('user:u1:listening-time')) == {'2024-01-01': 1000}


def test_recommendations_are_cached_for_a_day(cache, kv, spotify):
    payload = cache.recommendations()

    assert payload['patterns'] == ['loves guitars']
    assert payload['recommendedArtists'] == [{'name': 'Band', 'notFound': True}]
    assert kv.ttls['user:u1:recommendations'] == RECOMMENDATIONS_TTL

    spotify.calls.clear()
    assert cache.recommendations() == payload
    assert spotify.calls == []


def test_malformed_ai_reply_renders_fallback_and_is_not_cached(kv, spotify):
    cache = StatsCache(kv, spotify, 'u1', insight_generator=FakeInsightGenerator('I think you like rock music!'))

    payload = cache.recommendations()

    assert payload['patterns'] == ['Based on your listening history']
    assert payload['recommendedTracks'] == []
    assert payload['recommendedArtists'] == []
    assert payload['recommendedAlbums'] == []
    assert payload['recommendedGenres'] == []
    assert payload['userTaste']['topTracks'] == ['Track t1 by Artist', 'Track t2 by Artist']
    assert kv.get('user:u1:recommendations') is None
