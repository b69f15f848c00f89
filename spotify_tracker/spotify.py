import logging
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone

import requests

from .tokens import AuthError, TokenRefresher, Unauthenticated

log = logging.getLogger("spotify")

API_BASE = "https://api.spotify.com/v1"
CURRENTLY_PLAYING_URL = f"{API_BASE}/me/player/currently-playing"
DEVICES_URL = f"{API_BASE}/me/player/devices"
UNKNOWN = "Unknown"

# Custom error classes so callers can branch
class ProviderError(Exception): ...
class RateLimited(ProviderError): ...
class TransportError(ProviderError): ...


@dataclass(frozen=True)
class TrackSnapshot:
    song: str
    album: str | None
    artists: tuple[str, ...]
    duration_ms: int | None
    release_date: str | None
    played_at: datetime
    is_playing: bool
    album_cover_url: str | None = None
    song_uri: str | None = None
    popularity: int | None = None
    context_type: str | None = None
    context_href: str | None = None
    playlist_name: str = UNKNOWN

    @property
    def artist(self) -> str:
        return ", ".join(self.artists)

    @property
    def identity(self) -> tuple:
        return (self.song, self.artist, self.album)


class SpotifyClient:
    """
    Spotify Web API calls needed by the tracker: currently playing, active device, playlist name.
    Access tokens come from the TokenRefresher; a 401 triggers one refresh + retry.
    """
    def __init__(self, tokens: TokenRefresher, *, session: requests.Session | None = None,
                 timeout: float = 10, playlist_debounce_ms: int = 5000, clock=time.time):
        self.tokens = tokens
        self.session = session or requests.Session()
        self.timeout = timeout
        self.playlist_debounce_ms = playlist_debounce_ms
        self.clock = clock
        self._last_identity: tuple | None = None
        self._last_playlist_fetch: int | None = None  # epoch ms, process-wide

    def _get(self, url: str, token: str) -> requests.Response:
        try:
            resp = self.session.get(url, headers={"Authorization": f"Bearer {token}"}, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(str(e)) from e
        if resp.status_code == 429:
            raise RateLimited(resp.headers.get("Retry-After", "?"))
        return resp

    def _json(self, resp: requests.Response) -> dict:
        if not resp.ok:
            raise TransportError(f"HTTP {resp.status_code}: {resp.text[:200]}")
        try:
            data = resp.json()
        except ValueError as e:
            raise TransportError("invalid JSON body") from e
        if not isinstance(data, dict):
            raise TransportError(f"unexpected JSON structure: {type(data).__name__}")
        return data

    def get_current_track(self, retries: int = 1) -> TrackSnapshot | None:
        """
        None when nothing is playing or when rate limited (no retry this tick).
        Raises Unauthenticated/RefreshFailed/TransportError otherwise.
        """
        token = self.tokens.get_valid_access_token()
        try:
            resp = self._get(CURRENTLY_PLAYING_URL, token)
        except RateLimited:
            log.info("Rate limit reached. Will retry on next tick.")
            return None

        if resp.status_code == 401:
            if retries <= 0:
                raise Unauthenticated("Access token rejected after refresh")
            log.info("Access token rejected. Refreshing and retrying...")
            self.tokens.refresh()
            return self.get_current_track(retries=retries - 1)

        if resp.status_code == 204 or not resp.content:
            return None
        data = self._json(resp)
        item = data.get("item")
        if not item:
            return None

        snapshot = self._to_snapshot(data, item)

        context = data.get("context") or {}
        if not snapshot.is_playing:
            # paused snapshots never become the baseline for the playlist lookup
            return snapshot
        if (snapshot.context_type == "playlist" and context.get("href")
                and snapshot.identity != self._last_identity):
            snapshot = replace(snapshot, playlist_name=self.get_playlist_name(context["href"], token))
        self._last_identity = snapshot.identity
        return snapshot

    def _to_snapshot(self, data: dict, item: dict) -> TrackSnapshot:
        album = item.get("album") or {}
        images = album.get("images") or []
        context = data.get("context") or {}
        return TrackSnapshot(
            song=item.get("name") or "",
            album=album.get("name"),
            artists=tuple(a.get("name", "") for a in item.get("artists") or []),
            duration_ms=item.get("duration_ms"),
            release_date=album.get("release_date"),
            played_at=datetime.fromtimestamp(self.clock(), tz=timezone.utc),
            is_playing=bool(data.get("is_playing")),
            album_cover_url=images[0].get("url") if images else None,
            song_uri=item.get("uri"),
            popularity=item.get("popularity"),
            context_type=context.get("type"),
            context_href=context.get("href"),
        )

    def get_playlist_name(self, href: str, token: str | None = None) -> str:
        """Global debounce: at most one lookup per playlist_debounce_ms, else 'Unknown'."""
        now = int(self.clock() * 1000)
        if self._last_playlist_fetch is not None and now - self._last_playlist_fetch < self.playlist_debounce_ms:
            log.debug("Skipping playlist fetch to prevent too many requests.")
            return UNKNOWN
        self._last_playlist_fetch = now

        try:
            if token is None:
                token = self.tokens.get_valid_access_token()
            data = self._json(self._get(href, token))
        except (ProviderError, AuthError) as e:
            log.warning("Error fetching playlist name: %s", e)
            return UNKNOWN
        return data.get("name") or UNKNOWN

    def get_playback_device(self) -> str:
        """Type of the active device ('Computer', 'Smartphone', ...). Never raises."""
        try:
            token = self.tokens.get_valid_access_token()
            data = self._json(self._get(DEVICES_URL, token))
            for device in data.get("devices") or []:
                if isinstance(device, dict) and device.get("is_active"):
                    return device.get("type") or UNKNOWN
        except (ProviderError, AuthError) as e:
            log.warning("Error fetching playback device: %s", e)
        except Exception as e:
            log.warning("Unexpected playback device response: %s", e)
        return UNKNOWN
