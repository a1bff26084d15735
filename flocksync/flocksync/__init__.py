"""Client-side realtime sync engine for the Flock social coordination app."""

__version__ = "0.1.0"
