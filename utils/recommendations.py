"""
AI recommendation payload assembly.

Pulls the user's top tracks and artists, asks the insight generator for
recommendations and enriches every recommended name with Spotify search data.
"""

import logging
from concurrent.futures import ThreadPoolExecutor

from errors import UpstreamUnavailable
from spotify_data_cleaner import first_image_url, join_artist_names, summarize_taste

logger = logging.getLogger(__name__)

TASTE_SAMPLE_SIZE = 5


def _lookup(label, name, search, shape):
    try:
        hit = search()
    except UpstreamUnavailable as e:
        logger.warning(f"Search for {label} '{name}' failed: {e}")
        return {'name': name, 'error': True}
    if not hit:
        return {'name': name, 'notFound': True}
    return shape(hit)


def enrich_artists(spotify_client, names):
    def shape(artist):
        return {
            'name': artist.get('name'),
            'id': artist.get('id'),
            'genres': artist.get('genres') or [],
            'popularity': artist.get('popularity') or 0,
            'imageUrl': first_image_url(artist),
            'spotifyUrl': (artist.get('external_urls') or {}).get('spotify'),
        }
    return [_lookup('artist', name, lambda n=name: spotify_client.search_artist(n), shape) for name in names]


def enrich_albums(spotify_client, names):
    def shape(album):
        return {
            'name': album.get('name'),
            'id': album.get('id'),
            'artist': join_artist_names(album.get('artists')),
            'releaseDate': album.get('release_date'),
            'imageUrl': first_image_url(album),
            'spotifyUrl': (album.get('external_urls') or {}).get('spotify'),
            'totalTracks': album.get('total_tracks'),
        }
    return [_lookup('album', name, lambda n=name: spotify_client.search_album(n), shape) for name in names]


def enrich_tracks(spotify_client, tracks):
    def shape(track):
        return {
            'name': track.get('name'),
            'id': track.get('id'),
            'artist': join_artist_names(track.get('artists')),
            'album': (track.get('album') or {}).get('name'),
            'popularity': track.get('popularity'),
            'duration': track.get('duration_ms'),
            'previewUrl': track.get('preview_url'),
            'spotifyUrl': (track.get('external_urls') or {}).get('spotify'),
            'imageUrl': first_image_url(track.get('album')),
        }

    enriched = []
    for track in tracks:
        result = _lookup(
            'track', track['name'],
            lambda t=track: spotify_client.search_track(t['name'], t.get('artist')),
            shape,
        )
        if result.get('notFound') or result.get('error'):
            result['artist'] = track.get('artist')
        enriched.append(result)
    return enriched


def compute_taste_stats(top_tracks, energy=None):
    """avgPopularity and explicitRatio from top tracks; energy is the model's estimate"""
    if not top_tracks:
        return {'avgPopularity': 0, 'avgEnergy': energy, 'explicitRatio': 0}
    popularity = [t.get('popularity') or 0 for t in top_tracks]
    explicit = sum(1 for t in top_tracks if t.get('explicit'))
    return {
        'avgPopularity': round(sum(popularity) / len(popularity)),
        'avgEnergy': energy,
        'explicitRatio': round(100 * explicit / len(top_tracks)),
    }


def generate_ai_recommendation(spotify_client, insight_generator):
    """
    Build the recommendations payload.

    Returns (payload, used_fallback). Spotify failures while reading the
    user's taste propagate; a malformed model reply does not.
    """
    with ThreadPoolExecutor(max_workers=2) as executor:
        tracks_future = executor.submit(spotify_client.get_top_tracks, 'medium_term', TASTE_SAMPLE_SIZE)
        artists_future = executor.submit(spotify_client.get_top_artists, 'medium_term', TASTE_SAMPLE_SIZE)
        top_tracks = tracks_future.result()
        top_artists = artists_future.result()

    taste = summarize_taste(top_tracks, top_artists)
    insights, used_fallback = insight_generator.generate_recommendations(taste)

    results = {
        'patterns': insights['patterns'],
        'recommendedArtists': enrich_artists(spotify_client, insights['recommendedArtists']),
        'recommendedAlbums': enrich_albums(spotify_client, insights['recommendedAlbums']),
        'recommendedTracks': enrich_tracks(spotify_client, insights['recommendedTracks']),
        'recommendedGenres': insights['recommendedGenres'],
        'roast': insights['roast'],
        'personalityReading': insights['personalityReading'],
        'userTaste': {
            'topArtists': [a['name'] for a in taste['topArtists']],
            'topTracks': [f"{t['name']} by {t['artist']}" for t in taste['topTracks']],
            'genres': taste['genres'],
            'stats': compute_taste_stats(top_tracks, insights.get('energy')),
        },
    }
    logger.info(
        f"Recommendations built: {len(results['recommendedTracks'])} tracks, "
        f"{len(results['recommendedArtists'])} artists, fallback={used_fallback}"
    )
    return results, used_fallback
