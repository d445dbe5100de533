"""Tests for the message protocol and the client bus."""

import asyncio
import json
import tempfile
from pathlib import Path

import pytest

from vidwatch.daemon.bus import CLIENT_QUEUE_SIZE, BusServer, MessageBus, send_message
from vidwatch.daemon.messages import (
    CheckNow,
    Focus,
    Hello,
    NewVideos,
    PlayVideo,
    SetConfig,
    SyncKnownIds,
    UpdateKnownVideos,
    encode_message,
    parse_message,
)
from vidwatch.feed import Record


class TestMessages:
    def test_parse_known_types(self) -> None:
        assert isinstance(parse_message('{"type": "CHECK_NOW"}'), CheckNow)
        sync = parse_message({"type": "SYNC_KNOWN_IDS", "ids": ["aaaaaaaaaaa"]})
        assert isinstance(sync, SyncKnownIds)
        assert sync.ids == ["aaaaaaaaaaa"]

    def test_parse_camel_case_fields(self) -> None:
        message = parse_message(b'{"type": "SET_CONFIG", "feedUrl": "https://x", "pollInterval": 60}')
        assert isinstance(message, SetConfig)
        assert message.feed_url == "https://x"
        assert message.poll_interval == 60

    def test_update_known_videos(self) -> None:
        message = parse_message(
            {"type": "UPDATE_KNOWN_VIDEOS", "videos": [{"id": "aaaaaaaaaaa", "title": "T"}]}
        )
        assert isinstance(message, UpdateKnownVideos)
        assert message.videos[0].to_record() == Record("aaaaaaaaaaa", "T")

    @pytest.mark.parametrize(
        "data",
        [
            "not json",
            '{"type": "SELF_DESTRUCT"}',
            '{"ids": []}',
            '{"type": "SET_CONFIG", "pollInterval": 0}',
            '{"type": "UPDATE_KNOWN_VIDEOS", "videos": [{"id": "short"}]}',
        ],
        ids=["not-json", "unknown-type", "no-type", "zero-interval", "bad-id"],
    )
    def test_invalid_messages(self, data: str) -> None:
        with pytest.raises(ValueError):
            parse_message(data)

    def test_outbound_wire_format(self) -> None:
        line = encode_message(PlayVideo(video_id="aaaaaaaaaaa", video_title="Talk"))
        assert line.endswith(b"\n")
        assert json.loads(line) == {
            "type": "PLAY_VIDEO",
            "videoId": "aaaaaaaaaaa",
            "videoTitle": "Talk",
        }

    def test_unset_fields_are_omitted(self) -> None:
        assert json.loads(encode_message(PlayVideo(video_id="aaaaaaaaaaa"))) == {
            "type": "PLAY_VIDEO",
            "videoId": "aaaaaaaaaaa",
        }

    def test_new_videos_from_records(self) -> None:
        message = NewVideos.from_records([Record("aaaaaaaaaaa", "One"), Record("bbbbbbbbbbb")])
        assert message.to_wire() == {
            "type": "NEW_VIDEOS",
            "videos": [
                {"id": "aaaaaaaaaaa", "title": "One"},
                {"id": "bbbbbbbbbbb", "title": "New Video"},
            ],
        }


class TestMessageBus:
    def test_broadcast_reaches_every_client(self) -> None:
        bus = MessageBus()
        first, second = bus.connect(), bus.connect()

        assert bus.broadcast(Focus()) == 2
        assert [m.type for m in first.pending()] == ["FOCUS"]
        assert [m.type for m in second.pending()] == ["FOCUS"]

    def test_late_client_misses_earlier_messages(self) -> None:
        bus = MessageBus()
        bus.broadcast(Focus())
        late = bus.connect()
        assert late.pending() == []

    def test_disconnected_client_receives_nothing(self) -> None:
        bus = MessageBus()
        client = bus.connect()
        bus.disconnect(client)

        assert bus.broadcast(Focus()) == 0
        bus.send(client, Focus())
        assert client.pending() == []

    def test_broadcast_without_clients(self) -> None:
        assert MessageBus().broadcast(Focus()) == 0

    def test_clients_by_url(self) -> None:
        bus = MessageBus()
        app = bus.connect("http://localhost:8000/?v=aaaaaaaaaaa")
        bus.connect("http://elsewhere/")
        bus.connect()
        assert bus.clients(url_prefix="http://localhost:8000/") == [app]
        assert len(bus.clients()) == 3

    def test_slow_client_drops_oldest(self) -> None:
        bus = MessageBus()
        client = bus.connect()
        for i in range(CLIENT_QUEUE_SIZE + 5):
            bus.broadcast(PlayVideo(video_id=f"{i:011d}"))

        pending = client.pending()
        assert len(pending) == CLIENT_QUEUE_SIZE
        assert pending[0].video_id == f"{5:011d}"


class TestBusServer:
    """Exercise the Unix socket transport end to end."""

    @pytest.fixture
    def socket_path(self):
        # AF_UNIX paths are short; keep it out of pytest's long tmp_path
        with tempfile.TemporaryDirectory(prefix="vw") as directory:
            yield Path(directory) / "agent.sock"

    def test_round_trip(self, socket_path: Path) -> None:
        received: list = []

        async def handler(client, message) -> None:
            received.append((client.url, message))

        async def run() -> dict:
            bus = MessageBus()
            server = BusServer(bus, socket_path, handler)
            await server.start()
            try:
                reader, writer = await asyncio.open_unix_connection(str(socket_path))
                writer.write(encode_message(Hello(url="http://localhost:8000/")))
                writer.write(b"garbage\n")
                writer.write(encode_message(CheckNow()))
                await writer.drain()

                for _ in range(100):
                    if len(received) == 2:
                        break
                    await asyncio.sleep(0.01)

                bus.broadcast(Focus())
                line = await asyncio.wait_for(reader.readline(), timeout=2)
                writer.close()
                await writer.wait_closed()
                return json.loads(line)
            finally:
                await server.stop()

        reply = asyncio.run(run())

        assert reply == {"type": "FOCUS"}
        assert [type(m) for _, m in received] == [Hello, CheckNow]
        assert received[1][0] == "http://localhost:8000/"
        assert not socket_path.exists()

    def test_send_message(self, socket_path: Path) -> None:
        received: list = []

        async def handler(client, message) -> None:
            received.append(message)

        async def run() -> bool:
            server = BusServer(MessageBus(), socket_path, handler)
            await server.start()
            try:
                sent = await send_message(socket_path, SyncKnownIds(ids=["aaaaaaaaaaa"]))
                for _ in range(100):
                    if received:
                        break
                    await asyncio.sleep(0.01)
                return sent
            finally:
                await server.stop()

        assert asyncio.run(run()) is True
        assert received == [SyncKnownIds(ids=["aaaaaaaaaaa"])]

    def test_send_message_without_daemon(self, socket_path: Path) -> None:
        assert asyncio.run(send_message(socket_path, CheckNow(), timeout=1)) is False
