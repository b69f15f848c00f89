import logging
from concurrent.futures import ThreadPoolExecutor

from .auth_server import create_app, serve_in_background
from .commit_queue import CommitQueue
from .config import ConfigError, Settings, from_env
from .genres import GenreResolver, LastFMTagSource, MusicBrainzTagSource
from .scheduler import Scheduler
from .spotify import SpotifyClient
from .state import SessionTracker
from .storage import PersistenceSink, create_tables, make_engine
from .tokens import TokenRefresher, TokenStore

log = logging.getLogger("spotify-tracker")

NOISY_LOGGERS = ["urllib3", "httpx", "httpcore", "pylast", "musicbrainzngs", "werkzeug"]
SHUTDOWN_FLUSH_SECONDS = 10


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        force=True,  # ensure our config is used even if libs pre-configure logging
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def load_settings() -> Settings:
    try:
        return from_env()
    except ConfigError as e:
        raise SystemExit(str(e))


def main():
    settings = load_settings()
    setup_logging(settings.log_level)

    store = TokenStore(settings.token_file)
    refresher = TokenRefresher(store, settings.client_id, settings.client_secret, timeout=settings.http_timeout)

    try:
        serve_in_background(create_app(refresher, settings.client_id, settings.redirect_uri),
                            settings.local_ip, settings.auth_port)
    except OSError as e:
        raise SystemExit(f"Cannot bind authorization listener on {settings.local_ip}:{settings.auth_port}: {e}")

    if store.load() is None:
        log.warning("No tokens stored yet. Open http://%s:%s/ to authorize.", settings.local_ip, settings.auth_port)

    spotify = SpotifyClient(refresher, timeout=settings.http_timeout,
                            playlist_debounce_ms=settings.playlist_debounce_ms)
    genres = GenreResolver(
        LastFMTagSource(settings.lastfm_api_key, settings.lastfm_api_secret),
        MusicBrainzTagSource(settings.musicbrainz_contact),
    )
    commits = CommitQueue(PersistenceSink(make_engine(settings)))
    executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="genres")
    tracker = SessionTracker(spotify, genres, commits, executor)

    log.info("Starting Spotify listening tracker. Poll interval: %ss | Token file: %s | DB: %s@%s:%s/%s",
             settings.poll_interval, settings.token_file,
             settings.db_user, settings.db_host, settings.db_port, settings.db_name)
    try:
        Scheduler(tracker.poll, settings.poll_interval).run()
    except KeyboardInterrupt:
        log.info("Shutting down…")
    finally:
        # The open session is not committed; only already finished ones are flushed.
        executor.shutdown(wait=False, cancel_futures=True)
        if not commits.close(SHUTDOWN_FLUSH_SECONDS):
            log.warning("Shutdown with %s commit(s) still pending", commits.size())


def setup_db():
    settings = load_settings()
    setup_logging(settings.log_level)
    engine = make_engine(settings)
    try:
        create_tables(engine)
    finally:
        engine.dispose()


if __name__ == "__main__":
    main()
