"""Feed record model."""

from dataclasses import dataclass, field

# Title used when the feed row has none; treated as "not yet resolved"
UNRESOLVED_TITLE = "New Video"


@dataclass(frozen=True)
class Record:
    """A single video listed in the feed.

    Identity is the id alone: two records with the same id and different
    titles compare equal.
    """

    id: str
    title: str = field(default=UNRESOLVED_TITLE, compare=False)

    @property
    def has_title(self) -> bool:
        """Whether the title came from somewhere other than the sentinel."""
        return bool(self.title) and self.title != UNRESOLVED_TITLE

    def with_title(self, title: str) -> "Record":
        return Record(id=self.id, title=title)
