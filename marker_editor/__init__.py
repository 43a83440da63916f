"""Marker Editor: bulk edit intro, credits and ad markers in a media server database."""

__version__ = "1.0.0"
