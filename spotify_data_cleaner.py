"""
Spotify Data Cleaner - boundary schemas for Spotify Web API responses

Provider JSON is loosely typed and occasionally incomplete (local files have no
album art, podcast episodes have no artists, removed tracks come back as null).
This module validates and defaults that JSON at the edge and projects it into the
small, stable shapes the pages consume:

- Track:    id, name, artist (comma-joined), album, popularity, duration,
            previewUrl, spotifyUrl, imageUrl, playedAt, playCount
- Artist:   id, name, genres, popularity, imageUrl
- Playlist: id, name, description, imageUrl, trackCount, owner, public, spotifyUrl

Everything past this module works on these shapes only.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Any, Optional

logger = logging.getLogger(__name__)


def first_image_url(obj: Optional[Dict[str, Any]]) -> Optional[str]:
    """URL of the first image element, or None"""
    images = (obj or {}).get('images') or []
    if images and isinstance(images[0], dict):
        return images[0].get('url')
    return None


def join_artist_names(artists: Optional[List[Dict[str, Any]]]) -> str:
    return ', '.join(a.get('name', '') for a in (artists or []) if isinstance(a, dict))


@dataclass
class PlayEvent:
    """One playback occurrence from the recently-played history"""
    track_id: Optional[str]
    played_at: Optional[str]
    duration_ms: int = 0

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'PlayEvent':
        track = item.get('track') or {}
        duration = track.get('duration_ms')
        return cls(
            track_id=track.get('id'),
            played_at=item.get('played_at'),
            duration_ms=max(0, int(duration)) if isinstance(duration, (int, float)) else 0,
        )


@dataclass
class TrackShape:
    id: Optional[str]
    name: str
    artist: str
    album: str
    spotifyUrl: Optional[str]
    imageUrl: Optional[str]
    popularity: Optional[int] = None
    duration: Optional[int] = None
    previewUrl: Optional[str] = None
    playedAt: Optional[str] = None
    playCount: Optional[int] = None
    explicit: bool = field(default=False, repr=False)

    @classmethod
    def from_track(cls, track: Dict[str, Any], played_at: Optional[str] = None) -> 'TrackShape':
        album = track.get('album') or {}
        return cls(
            id=track.get('id'),
            name=track.get('name') or '',
            artist=join_artist_names(track.get('artists')),
            album=album.get('name') or '',
            spotifyUrl=(track.get('external_urls') or {}).get('spotify'),
            imageUrl=first_image_url(album),
            popularity=track.get('popularity'),
            duration=track.get('duration_ms'),
            previewUrl=track.get('preview_url'),
            playedAt=played_at,
            explicit=bool(track.get('explicit')),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop('explicit')
        # optional fields are omitted rather than sent as null
        for optional in ('playedAt', 'playCount'):
            if data[optional] is None:
                data.pop(optional)
        return data


@dataclass
class ArtistShape:
    id: Optional[str]
    name: str
    genres: List[str]
    popularity: int
    imageUrl: Optional[str]

    @classmethod
    def from_artist(cls, artist: Dict[str, Any]) -> 'ArtistShape':
        return cls(
            id=artist.get('id'),
            name=artist.get('name') or '',
            genres=[g for g in (artist.get('genres') or []) if isinstance(g, str)],
            popularity=artist.get('popularity') or 0,
            imageUrl=first_image_url(artist),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def shape_top_tracks(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    shaped = []
    for track in items:
        if not track:
            continue
        data = TrackShape.from_track(track).to_dict()
        shaped.append(data)
    return shaped


def shape_recent_plays(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Recently-played history items keep the play timestamp; popularity/preview are not exposed"""
    shaped = []
    for item in items:
        track = item.get('track')
        if not track:
            continue
        data = TrackShape.from_track(track, played_at=item.get('played_at')).to_dict()
        data.pop('popularity')
        data.pop('previewUrl')
        shaped.append(data)
    return shaped


def shape_artists(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [ArtistShape.from_artist(artist).to_dict() for artist in items if artist]


def shape_playlists(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    playlists = []
    for playlist in items:
        if not playlist:
            continue
        owner = playlist.get('owner') or {}
        playlists.append({
            'id': playlist.get('id'),
            'name': playlist.get('name') or '',
            'description': playlist.get('description') or None,
            'imageUrl': first_image_url(playlist),
            'trackCount': (playlist.get('tracks') or {}).get('total', 0),
            'owner': owner.get('display_name') or owner.get('id') or '',
            'public': bool(playlist.get('public')),
            'spotifyUrl': (playlist.get('external_urls') or {}).get('spotify'),
        })
    return playlists


def shape_playlist_tracks(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return shape_top_tracks([item.get('track') for item in items if item])


def group_recent_plays(tracks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Collapse repeated plays of the same track into one entry.

    Each entry carries playCount and the most recent playedAt; the result is
    sorted newest first. Tracks without an id (local files) are grouped by
    name and artist.
    """
    grouped: Dict[Any, Dict[str, Any]] = {}
    for track in tracks:
        identity = track.get('id') or (track.get('name'), track.get('artist'))
        existing = grouped.get(identity)
        if existing is None:
            entry = dict(track)
            entry['playCount'] = 1
            grouped[identity] = entry
            continue
        existing['playCount'] += 1
        if (track.get('playedAt') or '') > (existing.get('playedAt') or ''):
            existing['playedAt'] = track.get('playedAt')

    return sorted(grouped.values(), key=lambda t: t.get('playedAt') or '', reverse=True)


def summarize_taste(top_tracks: List[Dict[str, Any]], top_artists: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Compact taste summary sent to the model and echoed back as userTaste"""
    genres = []
    for artist in top_artists:
        for genre in artist.get('genres') or []:
            if genre not in genres:
                genres.append(genre)

    return {
        'topArtists': [
            {'name': a.get('name'), 'genres': a.get('genres') or [], 'popularity': a.get('popularity')}
            for a in top_artists[:5]
        ],
        'topTracks': [
            {'name': t.get('name'), 'artist': join_artist_names(t.get('artists')), 'popularity': t.get('popularity')}
            for t in top_tracks[:5]
        ],
        'genres': genres[:3],
    }
