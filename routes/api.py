"""
Listening statistics API.

Every endpoint resolves the signed-in user first, then goes through the
cache gateway. Upstream and store failures propagate to the app error
handler as JSON errors.
"""

import logging

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import text

from app import db
from kv_store import SQLKVStore
from llm_utils import recommendation_breaker
from spotify_client import SpotifyClient
from utils.ai_analysis import GeminiInsightGenerator
from utils.cache_gateway import StatsCache
from utils.refresh import RefreshOrchestrator
from utils.spotify_auth import get_authenticated_user

logger = logging.getLogger(__name__)

# Create API blueprint
api_bp = Blueprint('api', __name__)


def int_arg(name, default):
    """Positive integer query parameter, default when missing or invalid"""
    try:
        value = int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def flag_arg(*names):
    return any((request.args.get(name) or '').lower() == 'true' for name in names)


def get_kv_store():
    return SQLKVStore(db)


def build_stats_cache(user):
    config = current_app.config
    spotify_client = SpotifyClient(user.access_token, timeout=config['SPOTIFY_TIMEOUT_SECONDS'])
    insight_generator = GeminiInsightGenerator(
        config.get('GEMINI_API_KEY'),
        model_name=config['GEMINI_MODEL'],
        timeout=config['LLM_TIMEOUT_SECONDS'],
    )
    return StatsCache(
        get_kv_store(), spotify_client, user.id,
        insight_generator=insight_generator,
        dedupe_plays=config['LISTENING_TIME_DEDUPE'],
    )


@api_bp.route('/api/spotify/stats/top-tracks')
def top_tracks():
    user = get_authenticated_user()
    tracks = build_stats_cache(user).top_tracks(
        request.args.get('time_range'), int_arg('limit', 10), force=flag_arg('force')
    )
    return jsonify({'tracks': tracks})


@api_bp.route('/api/spotify/stats/top-artists')
def top_artists():
    user = get_authenticated_user()
    artists = build_stats_cache(user).top_artists(
        request.args.get('time_range'), int_arg('limit', 10), force=flag_arg('force')
    )
    return jsonify({'artists': artists})


@api_bp.route('/api/spotify/stats/recently-played')
def recently_played():
    user = get_authenticated_user()
    tracks = build_stats_cache(user).recently_played(
        int_arg('limit', 20), force=flag_arg('force'), grouped=flag_arg('group')
    )
    return jsonify({'tracks': tracks})


@api_bp.route('/api/spotify/stats/listening-time')
def listening_time():
    user = get_authenticated_user()
    series = build_stats_cache(user).listening_time(int_arg('days', 30), force=flag_arg('force'))
    return jsonify({'listeningTime': series})


@api_bp.route('/api/spotify/stats/refresh', methods=['POST'])
def refresh_stats():
    """Recompute every cached statistic, then drop stale entries except the ledger"""
    user = get_authenticated_user()
    app = current_app._get_current_object()

    orchestrator = RefreshOrchestrator(
        get_kv_store(), build_stats_cache(user),
        max_workers=app.config['REFRESH_MAX_WORKERS'],
        context_factory=app.app_context,
    )
    report = orchestrator.refresh_all()

    return jsonify({
        'success': True,
        'message': 'All Spotify stats refreshed successfully',
        'refreshed': report.refreshed,
        'failed': report.failed,
    })


@api_bp.route('/health')
def health():
    try:
        db.session.execute(text('SELECT 1'))
        return jsonify({'status': 'ok', 'database': 'ok', 'llm': recommendation_breaker.get_status()})
    except Exception as e:
        logger.error(f"Health check database probe failed: {e}")
        return jsonify({'status': 'degraded', 'database': 'unreachable', 'llm': recommendation_breaker.get_status()}), 503
