"""Remote feed fetching and parsing.

The feed is a hosted table (a Google Sheets gviz query by default) whose rows
describe videos: column 0 holds the title and column 1 a URL from which the
11-character video id is extracted.
"""

from .fetcher import FeedFetcher, TitleResolver
from .models import UNRESOLVED_TITLE, Record
from .parser import extract_payload, extract_video_id, parse_feed, parse_rows

__all__ = [
    "FeedFetcher",
    "TitleResolver",
    "Record",
    "UNRESOLVED_TITLE",
    "extract_payload",
    "extract_video_id",
    "parse_feed",
    "parse_rows",
]
