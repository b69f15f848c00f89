"""
Persisted OAuth tokens + lazy refresh against the Spotify token endpoint.

- Tokens live in a small JSON file ({access_token, refresh_token, expires_at}),
  written atomically so readers never see a partial file.
- A refresh response may omit refresh_token; the stored one is kept.
"""

from __future__ import annotations
import base64
import json
import logging
import os
import threading
import time
from dataclasses import dataclass

import requests

log = logging.getLogger("tokens")

TOKEN_URL = "https://accounts.spotify.com/api/token"


class AuthError(Exception): ...
class Unauthenticated(AuthError): ...
class RefreshFailed(AuthError): ...


@dataclass(frozen=True)
class AuthTokens:
    access_token: str
    refresh_token: str | None
    expires_at: int  # epoch ms

    def expired(self, now_ms: int) -> bool:
        return now_ms >= self.expires_at


class TokenStore:
    def __init__(self, path: str, clock=time.time):
        self.path = path
        self.clock = clock
        self._lock = threading.Lock()

    def load(self) -> AuthTokens | None:
        """Read persisted tokens. None means nobody has authorized yet."""
        with self._lock:
            return self._read()

    def save(self, response: dict) -> AuthTokens:
        """Persist a token endpoint response (access_token, expires_in, maybe refresh_token)."""
        with self._lock:
            previous = self._read()
            refresh_token = response.get("refresh_token") or (previous.refresh_token if previous else None)
            expires_in = int(response.get("expires_in", 3600))
            tokens = AuthTokens(
                access_token=response["access_token"],
                refresh_token=refresh_token,
                expires_at=int(self.clock() * 1000) + expires_in * 1000,
            )
            self._write(tokens)
        log.info("Tokens saved successfully")
        return tokens

    def _read(self) -> AuthTokens | None:
        if not os.path.isfile(self.path):
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return AuthTokens(
                access_token=data["access_token"],
                refresh_token=data.get("refresh_token"),
                expires_at=int(data.get("expires_at", 0)),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            log.warning("Token file %s unreadable, treating as unauthenticated: %s", self.path, e)
            return None

    def _write(self, tokens: AuthTokens) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp = f"{self.path}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(
                {
                    "access_token": tokens.access_token,
                    "refresh_token": tokens.refresh_token,
                    "expires_at": tokens.expires_at,
                },
                f,
                indent=2,
            )
        os.replace(tmp, self.path)


class TokenRefresher:
    """Hands out a usable access token, refreshing it when expired."""

    def __init__(self, store: TokenStore, client_id: str, client_secret: str, *,
                 session: requests.Session | None = None, token_url: str = TOKEN_URL,
                 timeout: float = 10, clock=time.time):
        self.store = store
        self.client_id = client_id
        self.client_secret = client_secret
        self.session = session or requests.Session()
        self.token_url = token_url
        self.timeout = timeout
        self.clock = clock

    def get_valid_access_token(self) -> str:
        tokens = self.store.load()
        if tokens is None or not tokens.access_token:
            raise Unauthenticated("No access token available. Please re-authenticate.")
        if tokens.expired(int(self.clock() * 1000)):
            log.info("Access token expired. Refreshing...")
            return self.refresh()
        return tokens.access_token

    def refresh(self) -> str:
        tokens = self.store.load()
        if tokens is None or not tokens.refresh_token:
            raise Unauthenticated("No refresh token available. Please re-authenticate.")

        data = self._post({
            "grant_type": "refresh_token",
            "refresh_token": tokens.refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        })
        saved = self.store.save(data)
        log.info("Access token refreshed successfully")
        return saved.access_token

    def exchange_code(self, code: str, redirect_uri: str) -> AuthTokens:
        """Authorization-code grant; used by the /callback handler."""
        basic = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode()).decode()
        data = self._post(
            {"grant_type": "authorization_code", "code": code, "redirect_uri": redirect_uri},
            headers={"Authorization": f"Basic {basic}"},
        )
        return self.store.save(data)

    def _post(self, body: dict, headers: dict | None = None) -> dict:
        all_headers = {"Content-Type": "application/x-www-form-urlencoded"}
        all_headers.update(headers or {})
        try:
            resp = self.session.post(self.token_url, data=body, headers=all_headers, timeout=self.timeout)
        except requests.RequestException as e:
            log.error("Error calling token endpoint: %s", e)
            raise RefreshFailed(str(e)) from e

        if not resp.ok:
            detail = f"{resp.status_code}: {resp.text[:200]}"
            log.error("Token endpoint returned %s", detail)
            raise RefreshFailed(f"Token endpoint rejected the request ({detail})") from \
                requests.HTTPError(detail, response=resp)
        try:
            data = resp.json()
        except ValueError as e:
            raise RefreshFailed("Token endpoint returned invalid JSON") from e
        if not isinstance(data, dict) or not data.get("access_token"):
            log.error("Token endpoint response lacks access_token: %s", data)
            raise RefreshFailed("Token endpoint response lacks access_token")
        return data
