"""siphon: replicate third-party APIs into relational mirror tables."""

__version__ = "0.1.0"
