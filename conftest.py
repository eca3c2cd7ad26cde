import os
import time

import pytest

# Must be set before the app module is imported
os.environ.setdefault('DATABASE_URL', 'sqlite://')
os.environ.setdefault('LOG_FILE', '')
os.environ.setdefault('SESSION_SECRET', 'test-secret')

from errors import UpstreamUnavailable  # noqa: E402
from kv_store import KVStore  # noqa: E402


class MemoryKVStore(KVStore):
    """In-memory KVStore with the same TTL semantics as SQLKVStore"""

    def __init__(self, clock=time.time):
        self.clock = clock
        self.data = {}
        self.expiry = {}
        self.ttls = {}
        self.puts = []

    def _live(self, key):
        expires = self.expiry.get(key)
        if expires is not None and self.clock() >= expires:
            self.data.pop(key, None)
            self.expiry.pop(key, None)
            return False
        return key in self.data

    def get(self, key):
        return self.data[key] if self._live(key) else None

    def put(self, key, value, ttl=None):
        self.data[key] = value
        self.ttls[key] = ttl
        self.expiry[key] = self.clock() + ttl if ttl else None
        self.puts.append(key)

    def delete(self, key):
        self.data.pop(key, None)
        self.expiry.pop(key, None)

    def list_keys(self, prefix):
        return sorted(k for k in list(self.data) if k.startswith(prefix) and self._live(k))


def make_track(track_id, name=None, artists=('Artist',), duration_ms=180000,
               popularity=50, explicit=False, image=True):
    return {
        'id': track_id,
        'name': name or f'Track {track_id}',
        'artists': [{'id': f'a-{a}', 'name': a} for a in artists],
        'album': {
            'id': f'al-{track_id}',
            'name': f'Album {track_id}',
            'images': [{'url': f'https://img/{track_id}.jpg', 'height': 640, 'width': 640}] if image else [],
        },
        'duration_ms': duration_ms,
        'popularity': popularity,
        'explicit': explicit,
        'preview_url': None,
        'external_urls': {'spotify': f'https://open.spotify.com/track/{track_id}'},
    }


def make_artist(artist_id, name=None, genres=('indie',), popularity=60):
    return {
        'id': artist_id,
        'name': name or f'Artist {artist_id}',
        'genres': list(genres),
        'popularity': popularity,
        'images': [{'url': f'https://img/{artist_id}.jpg'}],
        'external_urls': {'spotify': f'https://open.spotify.com/artist/{artist_id}'},
    }


def make_play(track, played_at):
    return {'track': track, 'played_at': played_at, 'context': None}


class FakeSpotifyClient:
    """Records every call; failing methods raise UpstreamUnavailable"""

    def __init__(self, top_tracks=None, top_artists=None, recent=None, playlists=None):
        self.top_tracks_items = top_tracks if top_tracks is not None else [make_track('t1'), make_track('t2')]
        self.top_artists_items = top_artists if top_artists is not None else [make_artist('ar1')]
        self.recent_items = recent if recent is not None else []
        self.playlist_items = playlists if playlists is not None else []
        self.search_results = {}
        self.calls = []
        self.failing = set()

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.failing:
            raise UpstreamUnavailable(f"{name} failed", status=500)

    def get_top_tracks(self, time_range='medium_term', limit=10):
        self._record('get_top_tracks', time_range, limit)
        return self.top_tracks_items[:limit]

    def get_top_artists(self, time_range='medium_term', limit=10):
        self._record('get_top_artists', time_range, limit)
        return self.top_artists_items[:limit]

    def get_recently_played(self, limit=20):
        self._record('get_recently_played', limit)
        return self.recent_items[:limit]

    def get_user_playlists(self, limit=20):
        self._record('get_user_playlists', limit)
        return self.playlist_items

    def get_playlist_tracks(self, playlist_id, limit=50):
        self._record('get_playlist_tracks', playlist_id)
        return [{'track': t} for t in self.top_tracks_items]

    def search_artist(self, name):
        self._record('search_artist', name)
        return self.search_results.get(('artist', name))

    def search_album(self, name):
        self._record('search_album', name)
        return self.search_results.get(('album', name))

    def search_track(self, name, artist=None):
        self._record('search_track', name, artist)
        return self.search_results.get(('track', name))

    def call_names(self):
        return [c[0] for c in self.calls]


class FakeInsightGenerator:
    def __init__(self, reply='{"patterns": ["loves guitars"], "recommendedArtists": ["Band"]}'):
        self.reply = reply
        self.prompts = []

    def generate_recommendations(self, taste):
        from utils.ai_analysis import parse_recommendations

        self.prompts.append(taste)
        if isinstance(self.reply, Exception):
            raise self.reply
        return parse_recommendations(self.reply)


@pytest.fixture
def kv():
    return MemoryKVStore()


@pytest.fixture
def spotify():
    return FakeSpotifyClient()


@pytest.fixture
def insight_generator():
    return FakeInsightGenerator()


@pytest.fixture
def flask_app():
    from app import app, db

    app.config['TESTING'] = True
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
