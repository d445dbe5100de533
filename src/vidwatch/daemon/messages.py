"""Message protocol between the daemon and foreground instances.

Every message is a JSON object tagged by ``type``. Field names on the wire
are camelCase; pydantic aliases map them to Python names.
"""

import json
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from ..feed.models import UNRESOLVED_TITLE, Record


class Message(BaseModel):
    """Base for all bus messages."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        """Serialize with wire field names, dropping unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


class VideoPayload(BaseModel):
    """A record as carried inside messages."""

    id: str = Field(pattern=r"^[A-Za-z0-9_-]{11}$")
    title: str = UNRESOLVED_TITLE

    def to_record(self) -> Record:
        return Record(id=self.id, title=self.title or UNRESOLVED_TITLE)

    @classmethod
    def from_record(cls, record: Record) -> "VideoPayload":
        return cls(id=record.id, title=record.title)


# Inbound (foreground -> daemon)


class Hello(Message):
    """Sent by a client right after connecting to announce its URL."""

    type: Literal["HELLO"] = "HELLO"
    url: str = ""


class CheckNow(Message):
    type: Literal["CHECK_NOW"] = "CHECK_NOW"


class SyncKnownIds(Message):
    """Authoritative replacement for the known set."""

    type: Literal["SYNC_KNOWN_IDS"] = "SYNC_KNOWN_IDS"
    ids: list[str] = Field(default_factory=list)


class UpdateKnownVideos(Message):
    """Authoritative replacement for the known set, with titles."""

    type: Literal["UPDATE_KNOWN_VIDEOS"] = "UPDATE_KNOWN_VIDEOS"
    videos: list[VideoPayload] = Field(default_factory=list)


class SetConfig(Message):
    type: Literal["SET_CONFIG"] = "SET_CONFIG"
    feed_url: str | None = Field(default=None, alias="feedUrl")
    poll_interval: int | None = Field(default=None, alias="pollInterval", gt=0)


# Outbound (daemon -> foreground)


class NewVideos(Message):
    type: Literal["NEW_VIDEOS"] = "NEW_VIDEOS"
    videos: list[VideoPayload] = Field(default_factory=list)

    @classmethod
    def from_records(cls, records: list[Record]) -> "NewVideos":
        return cls(videos=[VideoPayload.from_record(r) for r in records])


class PlayVideo(Message):
    type: Literal["PLAY_VIDEO"] = "PLAY_VIDEO"
    video_id: str = Field(alias="videoId")
    video_title: str | None = Field(default=None, alias="videoTitle")


class Focus(Message):
    type: Literal["FOCUS"] = "FOCUS"


class RequestKnownIds(Message):
    """Asks connected clients to answer with SYNC_KNOWN_IDS."""

    type: Literal["REQUEST_KNOWN_IDS"] = "REQUEST_KNOWN_IDS"


InboundMessage = Annotated[
    Hello | CheckNow | SyncKnownIds | UpdateKnownVideos | SetConfig,
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)


def parse_message(data: str | bytes | dict[str, Any]) -> InboundMessage:
    """Validate an inbound message.

    Args:
        data: A decoded JSON object or its text

    Returns:
        The typed message

    Raises:
        ValueError: If the data is not valid JSON or not a known message
    """
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise ValueError(f"Message is not valid JSON: {e}") from e
    return _inbound_adapter.validate_python(data)


def encode_message(message: Message) -> bytes:
    """Encode a message as one JSON line."""
    return (json.dumps(message.to_wire()) + "\n").encode("utf-8")
