"""
Authentication routes for Spotify OAuth.

Establishes the session identity every statistics endpoint depends on.
"""

import logging
from datetime import datetime

from flask import Blueprint, current_app, jsonify, redirect, request, session

from app import db
from models import User
from spotify_client import SpotifyClient
from utils.spotify_auth import generate_auth_url, exchange_code_for_token

logger = logging.getLogger(__name__)

# Create authentication blueprint
auth_bp = Blueprint('auth', __name__)


@auth_bp.route('/login')
def login():
    """Initiate Spotify OAuth flow"""
    auth_url, state = generate_auth_url()
    logger.info(f"Redirecting to Spotify authorization (state {state})")
    return redirect(auth_url)


@auth_bp.route('/callback')
def callback():
    """Handle the Spotify OAuth callback and store the user's tokens"""
    error = request.args.get('error')
    if error:
        logger.warning(f"Spotify authorization denied: {error}")
        return jsonify({'error': 'Authorization denied', 'code': 'unauthenticated'}), 401

    try:
        token_info = exchange_code_for_token(request.args.get('code'), request.args.get('state'))
        spotify_client = SpotifyClient(
            token_info['access_token'], timeout=current_app.config['SPOTIFY_TIMEOUT_SECONDS']
        )
        profile = spotify_client.get_user_profile()
    except ValueError as e:
        logger.error(f"OAuth configuration error: {e}")
        return jsonify({'error': 'Sign-in is not configured', 'code': 'configuration_error'}), 500

    user = db.session.get(User, profile['id'])
    if not user:
        user = User(id=profile['id'])
        db.session.add(user)

    user.display_name = profile.get('display_name')
    user.email = profile.get('email')
    images = profile.get('images') or []
    user.image_url = images[0].get('url') if images else None
    user.access_token = token_info['access_token']
    if token_info.get('refresh_token'):
        user.refresh_token = token_info['refresh_token']
    user.token_expires_at = token_info['expires_at']
    user.last_login = datetime.utcnow()
    db.session.commit()

    session['user_id'] = user.id
    logger.info(f"User {user.id} signed in")
    return redirect('/')


@auth_bp.route('/logout')
def logout():
    """Clear the session"""
    user_id = session.pop('user_id', None)
    session.clear()
    if user_id:
        logger.info(f"User {user_id} signed out")
    return jsonify({'success': True})
