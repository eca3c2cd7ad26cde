"""
AI-powered recommendation routes.

Recommendations are cached for a day; a malformed model reply still renders
the generic fallback payload.
"""

from flask import Blueprint, jsonify

from routes.api import build_stats_cache, flag_arg
from utils.spotify_auth import get_authenticated_user

# Create AI blueprint
ai_bp = Blueprint('ai', __name__)


@ai_bp.route('/api/spotify/recommendations')
def recommendations():
    user = get_authenticated_user()
    payload = build_stats_cache(user).recommendations(force=flag_arg('force', 'regenerate'))
    return jsonify(payload)
