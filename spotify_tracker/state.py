import enum
import logging
import threading
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field
from datetime import datetime

from .spotify import UNKNOWN, ProviderError, TrackSnapshot
from .tokens import AuthError

log = logging.getLogger("tracker")


class PlaybackState(enum.Enum):
    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"


# -------------------------
# Immutable row handed to the persistence sink
# -------------------------
@dataclass(frozen=True)
class SessionRecord:
    song: str
    album: str | None
    artist: str
    genres: str
    duration_ms: int | None
    seconds_played: int
    played_at: datetime
    album_cover_url: str | None
    song_uri: str | None
    popularity: int | None
    playback_device: str
    release_date: str | None
    playlist_name: str

    @property
    def artist_names(self) -> list[str]:
        return [a.strip() for a in self.artist.split(", ") if a.strip()]


@dataclass(eq=False)
class Session:
    """One contiguous run of the same track being played."""
    track: TrackSnapshot
    seconds_played: int = 1
    genres: list[str] | None = None
    finalized: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def identity(self) -> tuple:
        return self.track.identity

    def attach_genres(self, genres: list[str]) -> bool:
        """Attach late genre results; refused once the session was finalized."""
        with self._lock:
            if self.finalized:
                return False
            self.genres = list(genres)
            return True

    def finalize(self, playback_device: str) -> SessionRecord:
        with self._lock:
            self.finalized = True
            genres = ", ".join(self.genres) if self.genres else UNKNOWN
        t = self.track
        return SessionRecord(
            song=t.song,
            album=t.album,
            artist=t.artist,
            genres=genres,
            duration_ms=t.duration_ms,
            seconds_played=self.seconds_played,
            played_at=t.played_at,
            album_cover_url=t.album_cover_url,
            song_uri=t.song_uri,
            popularity=t.popularity,
            playback_device=playback_device,
            release_date=t.release_date,
            playlist_name=t.playlist_name or UNKNOWN,
        )


class SessionTracker:
    """Turns one snapshot per tick into listening sessions.

    One tick is one second of listening. A session ends only when a different
    track is seen playing; pausing or losing the snapshot keeps it open.
    Finished sessions are resolved to a SessionRecord and handed to the commit
    queue; genre lookups run on the executor and attach to the session object
    they were started for, or are dropped if that session has since finished.

    Not thread-safe: observe()/poll() must be called from one tick at a time.
    """

    def __init__(self, provider, genres, commits, executor: Executor):
        self.provider = provider
        self.genres = genres
        self.commits = commits
        self.executor = executor
        self.current: Session | None = None
        self.state = PlaybackState.IDLE
        self._no_data_logged = False

    @property
    def seconds_played(self) -> int:
        return self.current.seconds_played if self.current else 0

    def poll(self) -> None:
        """Fetch one snapshot and observe it. Never raises on fetch errors."""
        try:
            snapshot = self.provider.get_current_track()
        except (ProviderError, AuthError) as e:
            log.warning("Error fetching currently playing track: %s", e)
            snapshot = None
        except Exception:
            log.exception("Unexpected error fetching currently playing track")
            snapshot = None
        self.observe(snapshot)

    def observe(self, snapshot: TrackSnapshot | None) -> None:
        if snapshot is None:
            if not self._no_data_logged:
                log.info("No song is currently playing.")
                self._no_data_logged = True
            self._pause()
            return
        self._no_data_logged = False

        if not snapshot.is_playing:
            self._pause()
            return

        if self.current is not None and self.current.identity == snapshot.identity:
            if self.state == PlaybackState.PAUSED:
                log.info("Playback resumed.")
            self.current.seconds_played += 1
        else:
            if self.current is not None:
                self.finalize()
            self._open(snapshot)
        self.state = PlaybackState.PLAYING

    def _pause(self) -> None:
        if self.state == PlaybackState.PLAYING:
            log.info("Playback paused.")
            self.state = PlaybackState.PAUSED

    def _open(self, snapshot: TrackSnapshot) -> None:
        session = Session(track=snapshot)
        self.current = session
        log.info("Now playing: %s - %s [%s] (%s ms)",
                 snapshot.artist, snapshot.song, snapshot.album, snapshot.duration_ms)
        future = self.executor.submit(self.genres.resolve, snapshot.artist, snapshot.song)
        future.add_done_callback(lambda f: self._genres_done(session, f))

    def _genres_done(self, session: Session, future: Future) -> None:
        try:
            genres = future.result()
        except Exception as e:
            log.warning("Genre resolution failed for %s: %s", session.track.song, e)
            return
        if session.attach_genres(genres):
            log.info("Genres for %s - %s: %s", session.track.artist, session.track.song, ", ".join(genres))
        else:
            log.info("Discarding late genres for already saved track %s", session.track.song)

    def finalize(self) -> SessionRecord | None:
        """Close the open session and queue it for persistence."""
        session = self.current
        if session is None:
            return None
        try:
            device = self.provider.get_playback_device()
        except Exception:
            log.exception("Error resolving playback device for %s", session.track.song)
            device = UNKNOWN
        self.current = None
        record = session.finalize(device)
        self.commits.submit(record)
        return record
