"""Tag-indexed cache and API budget monitor for the Glocal platform."""

__version__ = "0.1.0"
