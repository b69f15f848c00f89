"""Spotify listening tracker: polls now-playing and stores listening sessions."""

__version__ = "1.0.0"
