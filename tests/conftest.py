import os
import sys
from concurrent.futures import Future
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

# Make the package importable without an install
_ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if _ROOT_DIR not in sys.path:
    sys.path.insert(0, _ROOT_DIR)

from spotify_tracker.spotify import TrackSnapshot
from spotify_tracker.storage import metadata


def make_snapshot(song="Song A", artists=("Artist A",), album="Album A", is_playing=True, **kw) -> TrackSnapshot:
    fields = dict(
        song=song,
        album=album,
        artists=tuple(artists),
        duration_ms=200000,
        release_date="2020-01-02",
        played_at=datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc),
        is_playing=is_playing,
        album_cover_url="http://img/a.jpg",
        song_uri=f"spotify:track:{song}",
        popularity=50,
    )
    fields.update(kw)
    return TrackSnapshot(**fields)


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text=None, headers=None):
        self.status_code = status_code
        self._json = json_data
        if text is None:
            text = "" if json_data is None else "json"
        self.text = text
        self.content = text.encode()
        self.headers = headers or {}

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._json is None:
            raise ValueError("no json")
        return self._json


class FakeSession:
    """Replays queued responses per URL (or raises queued exceptions)."""

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, method, url, *responses):
        self.routes.setdefault((method, url), []).extend(responses)

    def _next(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        queue = self.routes.get((method, url))
        if not queue:
            raise AssertionError(f"unexpected {method} {url}")
        resp = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(resp, Exception):
            raise resp
        return resp

    def get(self, url, **kwargs):
        return self._next("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, **kwargs)

    def count(self, method, url):
        return sum(1 for m, u, _ in self.calls if m == method and u == url)


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeProvider:
    """SpotifyClient stand-in for the tracker."""

    def __init__(self, snapshots=(), device="Computer"):
        self.snapshots = list(snapshots)
        self.device = device
        self.device_calls = 0

    def get_current_track(self):
        item = self.snapshots.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get_playback_device(self):
        self.device_calls += 1
        return self.device


class FakeGenres:
    def __init__(self, genres=("rock",)):
        self.genres = list(genres)
        self.calls = []

    def resolve(self, artist, track):
        self.calls.append((artist, track))
        return list(self.genres)


class RecordingCommits:
    def __init__(self):
        self.records = []

    def submit(self, record):
        self.records.append(record)


class InlineExecutor:
    """Runs submitted work immediately on the calling thread."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class ManualExecutor:
    """Holds submitted work until the test completes it."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def complete_all(self):
        pending, self.pending = self.pending, []
        for future, fn, args, kwargs in pending:
            future.set_result(fn(*args, **kwargs))


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def clock():
    return FakeClock()
