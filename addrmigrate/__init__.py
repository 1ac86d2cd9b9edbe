"""Legacy delivery address normalization and deduplication migration."""

__version__ = "0.1.0"
