import logging
from datetime import date, datetime, timezone

from sqlalchemy import (
    Column, Date, DateTime, Integer, MetaData, String, Table, URL,
    create_engine, func, insert, select, update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .state import SessionRecord

log = logging.getLogger("storage")

metadata = MetaData()

playbacks = Table(
    "playbacks", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("song", String(255), nullable=False),
    Column("album", String(255)),
    Column("artist", String(255), nullable=False),
    Column("genres", String(255)),
    Column("duration_ms", Integer, nullable=False),
    Column("seconds_played", Integer, nullable=False),
    Column("played_at", DateTime, nullable=False),
    Column("album_cover_url", String(255)),
    Column("song_uri", String(255)),
    Column("track_popularity", Integer),
    Column("playback_device", String(255)),
    Column("release_date", Date),
    Column("playlist_name", String(255)),
)

artists = Table(
    "artists", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("artist_name", String(255), nullable=False),
    Column("seconds_played", Integer, default=0),
    Column("played_at", DateTime, nullable=False),
)


class PersistenceError(Exception): ...


def make_engine(settings) -> Engine:
    url = URL.create(
        drivername=settings.db_driver,
        username=settings.db_user,
        password=settings.db_pass,
        host=settings.db_host,
        port=settings.db_port,
        database=settings.db_name,
    )
    return create_engine(url, pool_pre_ping=True, pool_recycle=3600)


def create_tables(engine: Engine) -> None:
    """Create `playbacks` and `artists` if they do not exist yet."""
    metadata.create_all(engine)
    log.info("Tables `playbacks` and `artists` setup completed.")


def parse_release_date(value: str | None) -> date | None:
    """Spotify gives YYYY, YYYY-MM or YYYY-MM-DD depending on precision."""
    if not value:
        return None
    parts = value.split("-")
    try:
        year = int(parts[0])
        month = int(parts[1]) if len(parts) > 1 else 1
        day = int(parts[2]) if len(parts) > 2 else 1
        return date(year, month, day)
    except ValueError:
        return None


def _db_time(ts: datetime) -> datetime:
    # DATETIME columns hold naive UTC
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)


class PersistenceSink:
    def __init__(self, engine: Engine):
        self.engine = engine

    def commit(self, record: SessionRecord) -> None:
        """Append one playbacks row. Raises PersistenceError; the row is not retried."""
        row = {
            "song": record.song,
            "album": record.album,
            "artist": record.artist,
            "genres": record.genres,
            "duration_ms": record.duration_ms or 0,
            "seconds_played": record.seconds_played,
            "played_at": _db_time(record.played_at),
            "album_cover_url": record.album_cover_url,
            "song_uri": record.song_uri,
            "track_popularity": record.popularity,
            "playback_device": record.playback_device,
            "release_date": parse_release_date(record.release_date),
            "playlist_name": record.playlist_name,
        }
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(playbacks).values(**row))
        except SQLAlchemyError as e:
            raise PersistenceError(f"could not save {record.song!r}: {e}") from e

        log.info("Track saved to database: %s - %s | genres=%s device=%s popularity=%s "
                 "release=%s playlist=%s seconds=%s",
                 record.artist, record.song, record.genres, record.playback_device,
                 record.popularity, record.release_date, record.playlist_name, record.seconds_played)

    def commit_artists(self, record: SessionRecord) -> list[str]:
        """Add seconds_played to every credited artist. Returns the names that failed."""
        played_at = _db_time(record.played_at)
        failed = []
        for name in record.artist_names:
            try:
                self._upsert_artist(name, record.seconds_played, played_at)
            except SQLAlchemyError as e:
                log.error("Error saving artist (%s) to database: %s", name, e)
                failed.append(name)
                continue
            log.info("Artist saved to database: %s (+%ss, played at %s)", name, record.seconds_played, played_at)
        return failed

    def _upsert_artist(self, name: str, seconds: int, played_at: datetime) -> None:
        with self.engine.begin() as conn:
            existing = conn.execute(
                select(artists.c.id, artists.c.played_at)
                .where(artists.c.artist_name == name)
                .limit(1)
            ).first()
            if existing is None:
                conn.execute(insert(artists).values(artist_name=name, seconds_played=seconds, played_at=played_at))
                return
            latest = max(existing.played_at, played_at) if existing.played_at else played_at
            conn.execute(
                update(artists)
                .where(artists.c.id == existing.id)
                .values(seconds_played=func.coalesce(artists.c.seconds_played, 0) + seconds, played_at=latest)
            )
