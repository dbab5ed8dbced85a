"""pairview: pair-trading series ingestion, synthesis, and persistence."""

__version__ = "0.1.0"
