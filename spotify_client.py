import logging

import requests

from errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10


class SpotifyClient:
    """Client for interacting with Spotify Web API"""

    def __init__(self, access_token, timeout=DEFAULT_TIMEOUT):
        self.access_token = access_token
        self.base_url = 'https://api.spotify.com/v1'
        self.timeout = timeout
        self.headers = {
            'Authorization': f'Bearer {access_token}',
            'Content-Type': 'application/json'
        }

    def _make_request(self, method, endpoint, params=None, **kwargs):
        """Make a request to Spotify API, raising UpstreamUnavailable on any failure"""
        url = f"{self.base_url}{endpoint}"

        try:
            response = requests.request(
                method, url, headers=self.headers, params=params, timeout=self.timeout, **kwargs
            )
        except requests.Timeout as e:
            logger.error(f"Spotify request timed out after {self.timeout}s: {method} {endpoint}")
            raise UpstreamUnavailable(f"Spotify timeout on {endpoint}") from e
        except requests.RequestException as e:
            logger.error(f"Request failed: {e}")
            raise UpstreamUnavailable(f"Spotify request failed on {endpoint}") from e

        if response.status_code == 204:  # No content
            return {}

        if response.status_code in [200, 201]:
            try:
                return response.json()
            except ValueError as e:
                logger.error(f"Spotify returned invalid JSON for {endpoint}")
                raise UpstreamUnavailable(f"Invalid JSON from {endpoint}") from e

        logger.error(f"Spotify API error: {response.status_code} - {response.text[:200]}")
        raise UpstreamUnavailable(
            f"Spotify returned {response.status_code} for {endpoint}", status=response.status_code
        )

    def _items(self, endpoint, params=None):
        data = self._make_request('GET', endpoint, params=params)
        return data.get('items') or []

    def get_user_profile(self):
        """Get current user's profile"""
        return self._make_request('GET', '/me')

    def get_user_playlists(self, limit=20):
        """Get current user's playlists"""
        return self._items('/me/playlists', {'limit': limit})

    def get_playlist_tracks(self, playlist_id, limit=50):
        """Get tracks from a playlist"""
        return self._items(f'/playlists/{playlist_id}/tracks', {'limit': limit})

    def get_recently_played(self, limit=20):
        """Get user's recently played tracks (play history items)"""
        return self._items('/me/player/recently-played', {'limit': limit})

    def get_top_tracks(self, time_range='medium_term', limit=10):
        """Get user's top tracks (short_term, medium_term, long_term)"""
        return self._items('/me/top/tracks', {'time_range': time_range, 'limit': limit})

    def get_top_artists(self, time_range='medium_term', limit=10):
        """Get user's top artists (short_term, medium_term, long_term)"""
        return self._items('/me/top/artists', {'time_range': time_range, 'limit': limit})

    def _search_first(self, query, search_type):
        data = self._make_request('GET', '/search', params={'q': query, 'type': search_type, 'limit': 1})
        items = (data.get(f'{search_type}s') or {}).get('items') or []
        return items[0] if items else None

    def search_artist(self, name):
        """Best search hit for an artist name, or None"""
        return self._search_first(name, 'artist')

    def search_album(self, name):
        """Best search hit for an album name, or None"""
        return self._search_first(name, 'album')

    def search_track(self, name, artist=None):
        """Best search hit for a track, optionally narrowed by artist"""
        query = f"{name} artist:{artist}" if artist else name
        return self._search_first(query, 'track')
