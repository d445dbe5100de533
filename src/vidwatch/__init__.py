"""vidwatch - background agent that watches a video feed for new items."""

__version__ = "0.6.0"
