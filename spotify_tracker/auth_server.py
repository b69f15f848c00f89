"""
Browser-based authorization-code flow.

GET /          -> link to the Spotify authorize page
GET /callback  -> exchanges ?code= for tokens and stores them
"""

from __future__ import annotations
import html
import logging
import threading
from urllib.parse import urlencode

from flask import Flask, request
from werkzeug.serving import make_server

from .tokens import AuthError, TokenRefresher

log = logging.getLogger("auth")

AUTH_URL = "https://accounts.spotify.com/authorize"
SCOPES = "user-library-read user-read-playback-state user-read-currently-playing"


def authorize_url(client_id: str, redirect_uri: str) -> str:
    query = urlencode({
        "client_id": client_id,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "scope": SCOPES,
    })
    return f"{AUTH_URL}?{query}"


def create_app(refresher: TokenRefresher, client_id: str, redirect_uri: str) -> Flask:
    app = Flask("spotify_tracker.auth")

    @app.get("/")
    def index():
        url = html.escape(authorize_url(client_id, redirect_uri), quote=True)
        return f'<a href="{url}">Click here to login with Spotify</a>'

    @app.get("/callback")
    def callback():
        code = request.args.get("code")
        if not code:
            log.error("Callback without authorization code: %s", dict(request.args))
            return "Error getting access token", 400, {"Content-Type": "text/plain"}
        try:
            refresher.exchange_code(code, redirect_uri)
        except AuthError as e:
            log.error("Error getting token: %s", e)
            return "Error getting access token", 502, {"Content-Type": "text/plain"}
        return "Authentication successful! Tokens have been saved.", 200, {"Content-Type": "text/plain"}

    return app


def serve_in_background(app: Flask, host: str, port: int):
    """Bind now (bind errors propagate to the caller) and serve from a daemon thread."""
    server = make_server(host, port, app, threaded=True)
    thread = threading.Thread(target=server.serve_forever, name="auth-server", daemon=True)
    thread.start()
    log.info("Server running at http://%s:%s", host, port)
    return server
