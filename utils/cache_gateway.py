"""
Read-through cache policy for every statistics resource.

Each resource kind has a fixed key scheme and TTL. A cache hit never touches
Spotify; a miss or a forced refresh fetches, shapes, stores and returns. A
failed fetch propagates and leaves the stored entry untouched.

The listening-time ledger is the exception: it is the system of record, so
every call reads it, merges a fresh batch of plays into it and writes it back
without a TTL.
"""

import json
import logging
import threading
import weakref

from spotify_data_cleaner import (
    PlayEvent,
    group_recent_plays,
    shape_artists,
    shape_playlists,
    shape_recent_plays,
    shape_top_tracks,
)
from utils.playtime import (
    bucket_by_day,
    filter_by_window,
    merge_ledgers,
    remember_plays,
    select_new_events,
    to_minutes_series,
)
from utils.recommendations import generate_ai_recommendation

logger = logging.getLogger(__name__)

TIME_RANGES = ('short_term', 'medium_term', 'long_term')
DEFAULT_TIME_RANGE = 'medium_term'

STATS_TTL = 3600
RECOMMENDATIONS_TTL = 86400

LISTENING_TIME_LIMIT = 20
LISTENING_TIME_FORCED_LIMIT = 50

# Entries vanish once no request holds the lock
_ledger_locks = weakref.WeakValueDictionary()
_ledger_locks_guard = threading.Lock()


def normalize_time_range(value):
    return value if value in TIME_RANGES else DEFAULT_TIME_RANGE


def user_prefix(user_id):
    return f"user:{user_id}:"


def top_tracks_key(user_id, time_range, limit):
    return f"user:{user_id}:top-tracks:{normalize_time_range(time_range)}:{limit}"


def top_artists_key(user_id, time_range, limit):
    return f"user:{user_id}:top-artists:{normalize_time_range(time_range)}:{limit}"


def recently_played_key(user_id, limit, grouped=False):
    key = f"user:{user_id}:recently-played:{limit}"
    return f"{key}:grouped" if grouped else key


def listening_time_key(user_id):
    return f"user:{user_id}:listening-time"


def listening_time_seen_key(user_id):
    return f"{listening_time_key(user_id)}:seen"


def recommendations_key(user_id):
    return f"user:{user_id}:recommendations"


def playlists_key(user_id):
    return f"user:{user_id}:playlists"


def is_ledger_key(user_id, key):
    """True for the ledger and anything stored under its namespace (its seen plays)"""
    ledger = listening_time_key(user_id)
    return key == ledger or key.startswith(f"{ledger}:")


def _ledger_lock(user_id):
    with _ledger_locks_guard:
        lock = _ledger_locks.get(user_id)
        if lock is None:
            lock = threading.Lock()
            _ledger_locks[user_id] = lock
        return lock


class StatsCache:
    """Cache gateway for one user"""

    def __init__(self, kv, spotify_client, user_id, insight_generator=None, dedupe_plays=True):
        self.kv = kv
        self.spotify = spotify_client
        self.user_id = user_id
        self.insight_generator = insight_generator
        self.dedupe_plays = dedupe_plays

    def _read_json(self, key):
        raw = self.kv.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding undecodable cache entry {key}")
            return None

    def _read_through(self, key, ttl, fetch, force=False):
        if not force:
            cached = self._read_json(key)
            if cached is not None:
                logger.debug(f"Cache hit: {key}")
                return cached

        logger.info(f"Cache {'refresh' if force else 'miss'}: {key}")
        value = fetch()
        self.kv.put(key, json.dumps(value), ttl=ttl)
        return value

    def top_tracks(self, time_range=DEFAULT_TIME_RANGE, limit=10, force=False):
        time_range = normalize_time_range(time_range)
        return self._read_through(
            top_tracks_key(self.user_id, time_range, limit), STATS_TTL,
            lambda: shape_top_tracks(self.spotify.get_top_tracks(time_range, limit)),
            force,
        )

    def top_artists(self, time_range=DEFAULT_TIME_RANGE, limit=10, force=False):
        time_range = normalize_time_range(time_range)
        return self._read_through(
            top_artists_key(self.user_id, time_range, limit), STATS_TTL,
            lambda: shape_artists(self.spotify.get_top_artists(time_range, limit)),
            force,
        )

    def recently_played(self, limit=20, force=False, grouped=False):
        def fetch():
            tracks = shape_recent_plays(self.spotify.get_recently_played(limit))
            return group_recent_plays(tracks) if grouped else tracks

        return self._read_through(recently_played_key(self.user_id, limit, grouped), STATS_TTL, fetch, force)

    def playlists(self, force=False):
        return self._read_through(
            playlists_key(self.user_id), STATS_TTL,
            lambda: shape_playlists(self.spotify.get_user_playlists()),
            force,
        )

    def recommendations(self, force=False):
        key = recommendations_key(self.user_id)
        if not force:
            cached = self._read_json(key)
            if cached is not None:
                logger.debug(f"Cache hit: {key}")
                return cached

        payload, used_fallback = generate_ai_recommendation(self.spotify, self.insight_generator)
        if used_fallback:
            logger.warning(f"Not caching fallback recommendations for {self.user_id}")
        else:
            self.kv.put(key, json.dumps(payload), ttl=RECOMMENDATIONS_TTL)
        return payload

    def listening_time(self, days=30, force=False):
        """
        Merge the latest plays into the ledger and return the requested window.

        force only widens the fetched history; the stored ledger is always
        read so accumulated days are never lost.
        """
        with _ledger_lock(self.user_id):
            ledger = self._read_json(listening_time_key(self.user_id)) or {}
            seen = (self._read_json(listening_time_seen_key(self.user_id)) or []) if self.dedupe_plays else []

            limit = LISTENING_TIME_FORCED_LIMIT if force else LISTENING_TIME_LIMIT
            events = [PlayEvent.from_item(item) for item in self.spotify.get_recently_played(limit)]
            if self.dedupe_plays:
                events = select_new_events(events, seen)

            merged = merge_ledgers(ledger, bucket_by_day(events))
            self.kv.put(listening_time_key(self.user_id), json.dumps(merged))

            if self.dedupe_plays and events:
                self.kv.put(listening_time_seen_key(self.user_id), json.dumps(remember_plays(seen, events)))

            logger.info(f"Merged {len(events)} plays into listening-time ledger for {self.user_id}")

        return to_minutes_series(filter_by_window(merged, days))
