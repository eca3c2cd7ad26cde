"""
Listening-time ledger utilities.

A ledger maps a UTC calendar date (ISO "YYYY-MM-DD") to the milliseconds
listened that day. Storage stays in milliseconds; minutes are only produced
for display so rounding never accumulates across merges.
"""

import logging
import math
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from spotify_data_cleaner import PlayEvent

logger = logging.getLogger(__name__)

Ledger = Dict[str, int]
PlayIdentity = Tuple[str, str]

# Spotify only serves the newest 50 plays, so a play that can be fetched again
# is always among the newest identities already recorded.
SEEN_PLAYS_LIMIT = 100


def parse_played_at(value) -> Optional[datetime]:
    """Parse an ISO 8601 instant into an aware UTC datetime, None if malformed"""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def bucket_by_day(events: Iterable[PlayEvent]) -> Ledger:
    """Sum event durations into UTC day buckets, skipping events with bad timestamps"""
    buckets: Ledger = {}
    skipped = 0
    for event in events:
        played_at = parse_played_at(event.played_at)
        if played_at is None:
            skipped += 1
            continue
        date_key = played_at.date().isoformat()
        buckets[date_key] = buckets.get(date_key, 0) + int(event.duration_ms or 0)

    if skipped:
        logger.warning(f"Skipped {skipped} play events with malformed timestamps")
    return buckets


def merge_ledgers(existing: Ledger, incoming: Ledger) -> Ledger:
    """Add incoming durations onto a copy of existing; neither input is mutated"""
    merged = dict(existing)
    for date_key, duration in incoming.items():
        merged[date_key] = merged.get(date_key, 0) + duration
    return merged


def filter_by_window(ledger: Ledger, window_days: int, today=None) -> Ledger:
    """Keep entries on or after (today - window_days), compared as ISO date strings"""
    today = today or datetime.now(timezone.utc).date()
    if window_days >= (today - date.min).days:
        cutoff = date.min.isoformat()
    else:
        cutoff = (today - timedelta(days=window_days)).isoformat()
    return {date_key: ms for date_key, ms in ledger.items() if date_key >= cutoff}


def to_minutes_series(ledger: Ledger) -> List[Dict]:
    return [
        {'date': date_key, 'minutes': math.floor(ledger[date_key] / 60000 + 0.5)}
        for date_key in sorted(ledger)
    ]


def play_identity(event: PlayEvent) -> Optional[PlayIdentity]:
    """(track id, normalized UTC play time), None when the timestamp is malformed"""
    played_at = parse_played_at(event.played_at)
    if played_at is None:
        return None
    return (event.track_id or '', played_at.isoformat())


def select_new_events(events: Iterable[PlayEvent], seen: Iterable) -> List[PlayEvent]:
    """
    Drop events that were already merged into the ledger.

    An event is new when its (track id, played_at) identity is not in seen,
    regardless of how old it is, so a wider fetch can still backfill older
    plays. Duplicates within the batch are kept once. Events with malformed
    timestamps pass through so bucket_by_day can account for them as skipped.
    """
    known = {tuple(identity) for identity in seen}
    fresh = []
    for event in events:
        identity = play_identity(event)
        if identity is not None:
            if identity in known:
                continue
            known.add(identity)
        fresh.append(event)
    return fresh


def remember_plays(seen: Iterable, events: Iterable[PlayEvent], limit: int = SEEN_PLAYS_LIMIT) -> List[List[str]]:
    """Add the events' identities to seen, keeping only the newest `limit` by play time"""
    identities = {tuple(identity) for identity in seen if len(identity) == 2}
    identities.update(filter(None, (play_identity(event) for event in events)))

    dated = [(parse_played_at(played_at), track_id) for track_id, played_at in identities]
    dated = sorted((d for d in dated if d[0] is not None), reverse=True)[:limit]
    return [[track_id, played_at.isoformat()] for played_at, track_id in dated]
