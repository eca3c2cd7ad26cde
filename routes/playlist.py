"""
Playlist routes.

The playlist list is cached like the other statistics; playlist tracks are a
straight pass-through.
"""

import logging

from flask import Blueprint, current_app, jsonify

from routes.api import build_stats_cache, flag_arg
from spotify_client import SpotifyClient
from spotify_data_cleaner import shape_playlist_tracks
from utils.spotify_auth import get_authenticated_user

logger = logging.getLogger(__name__)

# Create playlist blueprint
playlist_bp = Blueprint('playlist', __name__)


@playlist_bp.route('/api/spotify/playlists')
def playlists():
    user = get_authenticated_user()
    return jsonify({'playlists': build_stats_cache(user).playlists(force=flag_arg('force'))})


@playlist_bp.route('/api/spotify/playlists/<playlist_id>/tracks')
def playlist_tracks(playlist_id):
    user = get_authenticated_user()
    spotify_client = SpotifyClient(user.access_token, timeout=current_app.config['SPOTIFY_TIMEOUT_SECONDS'])
    tracks = shape_playlist_tracks(spotify_client.get_playlist_tracks(playlist_id))
    logger.info(f"Fetched {len(tracks)} tracks for playlist {playlist_id}")
    return jsonify({'tracks': tracks})
