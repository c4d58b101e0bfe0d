"""Tests for bitrate parsing and master playlist assembly."""

import pytest

from transcode_queue.errors import ErrorKind, MediaError
from transcode_queue.models import default_quality_tiers
from transcode_queue.playlist import (
    bandwidth,
    parse_bitrate,
    render_master_playlist,
    write_master_playlist,
)


class TestParseBitrate:
    """Test ffmpeg-style bitrate conversion."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("800k", 800000),
            ("800K", 800000),
            ("1.2M", 1200000),
            ("1.2m", 1200000),
            ("96000", 96000),
            ("64k", 64000),
        ],
    )
    def test_known_forms(self, value, expected):
        assert parse_bitrate(value) == expected

    def test_digits_fallback(self):
        assert parse_bitrate("128 kbps") == 128

    def test_default_when_no_digits(self):
        assert parse_bitrate("fast") == 96000
        assert parse_bitrate("") == 96000


class TestMasterPlaylist:
    """Test master.m3u8 rendering and writing."""

    def test_bandwidth_adds_audio(self):
        tiers = default_quality_tiers()
        assert bandwidth(tiers["480p"]) == 896000
        assert bandwidth(tiers["144p"]) == 264000

    def test_render(self):
        tiers = default_quality_tiers()
        text = render_master_playlist({"480p": tiers["480p"], "144p": tiers["144p"]})

        assert text.splitlines() == [
            "#EXTM3U",
            "#EXT-X-VERSION:3",
            "",
            '#EXT-X-STREAM-INF:BANDWIDTH=896000,RESOLUTION=854x480,NAME="480p"',
            "480p.m3u8",
            "",
            '#EXT-X-STREAM-INF:BANDWIDTH=264000,RESOLUTION=256x144,NAME="144p"',
            "144p.m3u8",
        ]

    def test_write_lists_only_existing_renditions(self, tmp_path):
        (tmp_path / "480p.m3u8").write_text("#EXTM3U\n")
        (tmp_path / "240p.m3u8").write_text("#EXTM3U\n")

        master = write_master_playlist(
            tmp_path, ["480p", "360p", "240p"], default_quality_tiers()
        )

        content = master.read_text()
        assert master == tmp_path / "master.m3u8"
        assert "480p.m3u8" in content
        assert "240p.m3u8" in content
        assert "360p" not in content
        assert content.index("480p") < content.index("240p")

    def test_write_without_renditions_fails(self, tmp_path):
        with pytest.raises(MediaError) as exc_info:
            write_master_playlist(tmp_path, ["480p"], default_quality_tiers())

        assert exc_info.value.kind == ErrorKind.PLAYLIST
        assert exc_info.value.message == (
            "Cannot create master playlist: no HLS renditions available"
        )
        assert not (tmp_path / "master.m3u8").exists()
