"""PDF library service: object storage, document metadata, AI summaries and translations."""

__version__ = "1.0.0"
