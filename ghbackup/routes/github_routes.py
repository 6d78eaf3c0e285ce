"""
GitHub routes - OAuth hand-off that starts repository discovery.

/import redirects to GitHub's consent page, carrying the caller's query string
(e.g. user=true&starred=true) through the OAuth state. /callback exchanges the
code for a token and queues a discovery job with those choices.
"""

from urllib.parse import parse_qs, urlencode

import httpx
from flask import Blueprint, current_app, jsonify, redirect, request

from ghbackup.scheduler import trigger_discovery_now


bp = Blueprint('github', __name__)

AUTHORIZE_URL = 'https://github.com/login/oauth/authorize'
ACCESS_TOKEN_URL = 'https://github.com/login/oauth/access_token'
OAUTH_SCOPE = 'repo'


class OAuthError(Exception):
    """Raised when the authorization code cannot be exchanged for a token."""
    pass


def _redirect_uri() -> str:
    return current_app.config['PUBLIC_URL'].rstrip('/') + '/callback'


def exchange_code(code: str) -> str:
    """
    Exchange an OAuth authorization code for an access token.

    Args:
        code: Code handed to /callback by GitHub

    Returns:
        Access token

    Raises:
        OAuthError: If GitHub rejects the code or cannot be reached
    """
    try:
        response = httpx.post(
            ACCESS_TOKEN_URL,
            data={
                'client_id': current_app.config['GITHUB_CLIENT_ID'],
                'client_secret': current_app.config['GITHUB_CLIENT_SECRET'],
                'code': code,
                'redirect_uri': _redirect_uri(),
            },
            headers={'Accept': 'application/json'},
            timeout=30.0
        )
        response.raise_for_status()
        payload = response.json()
    except (httpx.HTTPError, ValueError) as e:
        raise OAuthError(f"Token exchange failed: {e}")

    token = payload.get('access_token')
    if not token:
        raise OAuthError(payload.get('error_description') or payload.get('error') or 'No access token returned')
    return token


@bp.route('/import', methods=['GET'])
def github_import():
    """
    Send the user to GitHub to authorize repository discovery.

    Query parameters are passed through the OAuth state:
        - user: 'true' to import owned repositories
        - starred: 'true' to import starred repositories
    """
    params = {
        'client_id': current_app.config['GITHUB_CLIENT_ID'],
        'redirect_uri': _redirect_uri(),
        'scope': OAUTH_SCOPE,
        'state': request.query_string.decode('utf-8'),
        'approval_prompt': 'force',
    }
    return redirect(f"{AUTHORIZE_URL}?{urlencode(params)}", code=307)


@bp.route('/callback', methods=['GET'])
def github_callback():
    """
    Complete the OAuth flow and queue discovery in the background.

    Returns:
        Script closing the popup window
    """
    state = parse_qs(request.args.get('state', ''))
    want_owned = state.get('user', [''])[0] == 'true'
    want_starred = state.get('starred', [''])[0] == 'true'

    code = request.args.get('code', '')
    if not code:
        return jsonify({'error': 'code query parameter missing'}), 400

    try:
        token = exchange_code(code)
    except OAuthError as e:
        current_app.logger.warning(f"GitHub authorization failed: {e}")
        return jsonify({'error': str(e)}), 400

    trigger_discovery_now(token, want_owned, want_starred)
    return '<script>window.close();</script>'
