"""
Routes package for the Spotalyst application.

This package contains all route handlers organized by functionality:
- auth: Spotify sign-in, callback and sign-out
- api: cached listening statistics and the bulk refresh
- playlist: playlist listing and playlist tracks
- ai: AI taste commentary and recommendations
"""

from .auth import auth_bp
from .api import api_bp
from .playlist import playlist_bp
from .ai import ai_bp


def register_routes(app):
    """Register all route blueprints with the Flask app"""
    app.register_blueprint(auth_bp)
    app.register_blueprint(api_bp)
    app.register_blueprint(playlist_bp)
    app.register_blueprint(ai_bp)
