"""
Environment configuration.

Everything is read from ENV VARS (a local .env file is loaded first).
Missing auth/database/genre settings are fatal at startup.
"""

from __future__ import annotations
import os
from dataclasses import dataclass

from dotenv import load_dotenv


class ConfigError(Exception): ...


REQUIRED = (
    "SPOTIFY_CLIENT_ID",
    "SPOTIFY_CLIENT_SECRET",
    "SPOTIFY_REDIRECT_URI",
    "LOCAL_IP",
    "DB_HOST",
    "DB_USER",
    "DB_PASS",
    "DB_NAME",
    "LASTFM_API_KEY",
)


@dataclass(frozen=True)
class Settings:
    client_id: str
    client_secret: str
    redirect_uri: str
    local_ip: str
    auth_port: int
    db_driver: str
    db_host: str
    db_port: int
    db_user: str
    db_pass: str
    db_name: str
    lastfm_api_key: str
    lastfm_api_secret: str | None
    musicbrainz_contact: str
    token_file: str
    poll_interval: float
    playlist_debounce_ms: int
    http_timeout: float
    log_level: str


def from_env(env=None, *, load_dotenv_file: bool = True) -> Settings:
    """Build Settings from the environment, raising ConfigError on gaps."""
    if env is None:
        if load_dotenv_file:
            load_dotenv()
        env = os.environ

    missing = [name for name in REQUIRED if not env.get(name)]
    if missing:
        raise ConfigError("Missing required configuration: " + ", ".join(missing))

    try:
        return Settings(
            client_id=env["SPOTIFY_CLIENT_ID"],
            client_secret=env["SPOTIFY_CLIENT_SECRET"],
            redirect_uri=env["SPOTIFY_REDIRECT_URI"],
            local_ip=env["LOCAL_IP"],
            auth_port=int(env.get("AUTH_PORT", "3616")),
            db_driver=env.get("DB_DRIVER", "mysql+pymysql"),
            db_host=env["DB_HOST"],
            db_port=int(env.get("DB_PORT") or "3306"),
            db_user=env["DB_USER"],
            db_pass=env["DB_PASS"],
            db_name=env["DB_NAME"],
            lastfm_api_key=env["LASTFM_API_KEY"],
            lastfm_api_secret=env.get("LASTFM_API_SECRET") or None,
            musicbrainz_contact=env.get("MUSICBRAINZ_CONTACT", ""),
            token_file=env.get("TOKEN_FILE", "tokens.json"),
            poll_interval=max(1.0, float(env.get("POLL_INTERVAL", "1"))),
            playlist_debounce_ms=int(env.get("PLAYLIST_DEBOUNCE_MS", "5000")),
            http_timeout=float(env.get("HTTP_TIMEOUT", "10")),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )
    except ValueError as e:
        raise ConfigError(f"Invalid numeric configuration: {e}") from e
