import struct
import zlib

import fakeredis
import pytest

from transcode_queue.models import MediaConfig, QueueConfig
from transcode_queue.queue import JobLifecycleManager, JobPayload, QueueStore


def _png_chunk(kind: bytes, data: bytes) -> bytes:
    crc = zlib.crc32(kind + data) & 0xFFFFFFFF
    return struct.pack(">I", len(data)) + kind + data + struct.pack(">I", crc)


@pytest.fixture
def oversized_png() -> bytes:
    """PNG whose header declares 30000x30000 pixels (over Pillow's bomb limit)."""
    header = struct.pack(">IIBBBBB", 30000, 30000, 8, 2, 0, 0, 0)
    return (
        b"\x89PNG\r\n\x1a\n"
        + _png_chunk(b"IHDR", header)
        + _png_chunk(b"IDAT", b"")
        + _png_chunk(b"IEND", b"")
    )


class FakeClock:
    """Settable unix clock for queue timestamps and backoff."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_server():
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(fake_server):
    return fakeredis.FakeRedis(server=fake_server, decode_responses=True)


@pytest.fixture
def store(redis_client):
    return QueueStore(redis_client, "test_queue")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manager(store, clock):
    return JobLifecycleManager(store, QueueConfig(max_retries=3), worker_id="w1", clock=clock)


@pytest.fixture
def make_payload():
    def _make(post_id: int = 42, **overrides) -> JobPayload:
        data = {
            "post_id": post_id,
            "video_url": f"https://cdn.example.com/videos/{post_id}.mp4",
            "thumbnail_url": f"https://cdn.example.com/thumbs/{post_id}.jpg",
            "webhook_url": "https://hooks.example.com/video",
        }
        data.update(overrides)
        return JobPayload(**data)

    return _make


@pytest.fixture
def media_config(tmp_path):
    return MediaConfig(
        media_base_path=str(tmp_path / "media"),
        media_base_url="https://media.example.com/content",
        download_retry_delays_s=[0, 0, 0],
    )
