"""marginalia - local-first notes with a wiki-link graph."""

__version__ = "0.1.0"
