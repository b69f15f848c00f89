import logging

import musicbrainzngs as mb
import pylast

log = logging.getLogger("genres")

UNKNOWN_GENRES = ["Unknown"]


class LastFMTagSource:
    """Top tags of a track on Last.fm (read-only, API key only)."""

    def __init__(self, api_key: str, api_secret: str | None = None, network: pylast.LastFMNetwork | None = None):
        self.network = network or pylast.LastFMNetwork(api_key=api_key, api_secret=api_secret or "")

    def tags(self, artist: str, track: str) -> list[str]:
        try:
            top = self.network.get_track(artist, track).get_top_tags()
        except pylast.WSError as e:
            # 6 = track not found; not worth more than debug
            log.debug("Last.fm tag lookup failed: code=%s msg=%s", getattr(e, "status", "?"), e)
            return []
        except Exception as e:
            log.warning("Error fetching genre from Last.fm: %s", e)
            return []
        return [t.item.get_name() for t in top if t.item is not None]


class MusicBrainzTagSource:
    """Tags of the best matching MusicBrainz recording."""

    def __init__(self, contact: str = "", app: str = "spotify-tracker", version: str = "1.0"):
        mb.set_useragent(app, version, contact=contact or None)

    def tags(self, artist: str, track: str) -> list[str]:
        try:
            res = mb.search_recordings(artist=artist, recording=track, limit=1)
        except mb.MusicBrainzError as e:
            log.warning("Error fetching genre from MusicBrainz: %s", e)
            return []
        except Exception as e:
            log.warning("Unexpected MusicBrainz response: %s", e)
            return []

        recordings = res.get("recording-list") or []
        if not recordings:
            return []
        return [t["name"] for t in recordings[0].get("tag-list") or [] if t.get("name")]


class GenreResolver:
    """Primary source first, secondary only when primary has nothing, else ['Unknown']."""

    def __init__(self, primary, secondary):
        self.primary = primary
        self.secondary = secondary

    def resolve(self, artist: str, track: str) -> list[str]:
        genres = self._safe(self.primary, artist, track)
        if genres:
            return genres
        log.info("No tags from %s for %s - %s, falling back to %s",
                 type(self.primary).__name__, artist, track, type(self.secondary).__name__)
        genres = self._safe(self.secondary, artist, track)
        return genres or list(UNKNOWN_GENRES)

    @staticmethod
    def _safe(source, artist: str, track: str) -> list[str]:
        try:
            return list(source.tags(artist, track) or [])
        except Exception as e:
            log.warning("Genre source %s failed: %s", type(source).__name__, e)
            return []
