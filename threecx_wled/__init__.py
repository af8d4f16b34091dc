"""Bridge 3CX presence to a WLED LED strip, with a live dashboard."""

__version__ = "1.0.0"
