"""MBS catalog ingestion and hybrid search service."""

__version__ = "1.0.0"
