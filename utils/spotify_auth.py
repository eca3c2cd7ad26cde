"""
Spotify OAuth utilities and session identity.

This module resolves the signed-in user and keeps their access token fresh.
"""

import base64
import logging
import secrets
from datetime import datetime, timedelta
from urllib.parse import urlencode

import requests
from flask import current_app, request, session

from errors import Unauthenticated, UpstreamUnavailable

logger = logging.getLogger(__name__)

AUTHORIZE_URL = 'https://accounts.spotify.com/authorize'
TOKEN_URL = 'https://accounts.spotify.com/api/token'
SCOPES = 'user-read-private user-read-email user-read-recently-played user-top-read playlist-read-private'


def get_redirect_uri():
    """Configured redirect URI, or one derived from the current request host"""
    configured = current_app.config.get('SPOTIFY_REDIRECT_URI')
    if configured:
        return configured.strip().rstrip(';').rstrip()
    return f"{request.scheme}://{request.host}/callback"


def _basic_auth_header():
    client_id = current_app.config.get('SPOTIFY_CLIENT_ID')
    client_secret = current_app.config.get('SPOTIFY_CLIENT_SECRET')
    if not client_id or not client_secret:
        raise ValueError("SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET must be set")
    auth_b64 = base64.b64encode(f"{client_id}:{client_secret}".encode('utf-8')).decode('utf-8')
    return {
        'Authorization': f'Basic {auth_b64}',
        'Content-Type': 'application/x-www-form-urlencoded'
    }


def _token_request(data):
    try:
        response = requests.post(
            TOKEN_URL, headers=_basic_auth_header(), data=data,
            timeout=current_app.config.get('SPOTIFY_TIMEOUT_SECONDS', 10),
        )
    except requests.RequestException as e:
        logger.error(f"Token request failed: {e}")
        raise UpstreamUnavailable("Spotify token endpoint unreachable") from e

    if response.status_code != 200:
        logger.error(f"Token request failed with status {response.status_code}: {response.text[:200]}")
        raise UpstreamUnavailable("Spotify token request rejected", status=response.status_code)
    return response.json()


def generate_auth_url():
    """Generate Spotify authorization URL with proper parameters"""
    state = secrets.token_urlsafe(16)
    session['oauth_state'] = state

    auth_params = {
        'response_type': 'code',
        'client_id': current_app.config.get('SPOTIFY_CLIENT_ID'),
        'scope': SCOPES,
        'redirect_uri': get_redirect_uri(),
        'state': state
    }
    logger.info(f"Generated authorization URL for state: {state}")
    return f"{AUTHORIZE_URL}?{urlencode(auth_params)}", state


def exchange_code_for_token(code, state):
    """Exchange authorization code for access token"""
    session_state = session.pop('oauth_state', None)
    if not state or state != session_state:
        logger.error("OAuth state mismatch")
        raise Unauthenticated("Security check failed (invalid state)")

    token_data = _token_request({
        'grant_type': 'authorization_code',
        'code': code,
        'redirect_uri': get_redirect_uri()
    })

    access_token = token_data.get('access_token')
    if not access_token:
        raise UpstreamUnavailable("No access token in Spotify response")

    expires_in = token_data.get('expires_in', 3600)
    return {
        'access_token': access_token,
        'refresh_token': token_data.get('refresh_token'),
        'expires_in': expires_in,
        'expires_at': datetime.utcnow() + timedelta(seconds=expires_in)
    }


def refresh_user_token(user):
    """Refresh user's access token; False when the user has to sign in again"""
    if not user.refresh_token:
        return False

    from app import db

    try:
        token_data = _token_request({
            'grant_type': 'refresh_token',
            'refresh_token': user.refresh_token
        })
    except UpstreamUnavailable as e:
        logger.error(f"Token refresh failed for {user.id}: {e}")
        return False

    user.access_token = token_data['access_token']
    if 'refresh_token' in token_data:
        user.refresh_token = token_data['refresh_token']
    user.token_expires_at = datetime.utcnow() + timedelta(seconds=token_data.get('expires_in', 3600))
    db.session.commit()
    return True


def get_authenticated_user():
    """Signed-in user with a valid access token, or raise Unauthenticated"""
    from app import db
    from models import User

    user_id = session.get('user_id')
    if not user_id:
        raise Unauthenticated("No user in session")

    user = db.session.get(User, user_id)
    if not user:
        session.pop('user_id', None)
        raise Unauthenticated(f"Unknown user {user_id}")

    if user.is_token_expired() and not refresh_user_token(user):
        raise Unauthenticated(f"Token refresh failed for {user_id}")

    return user
