"""Snake species identification server."""

__version__ = "0.1.0"
