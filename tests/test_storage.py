"""Tests for output directory provisioning and filesystem helpers."""

from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from transcode_queue.errors import ErrorKind, MediaError
from transcode_queue.storage import (
    check_disk_space,
    delete_tree,
    dir_size,
    provision_output_dir,
    verify_output_dir,
)


def _usage(total, free):
    return MagicMock(total=total, used=total - free, free=free)


def _fixed_now():
    return datetime(2024, 3, 9, 12, 0, 0)


class TestDiskGate:
    """Test the free-space check that runs before any work."""

    def test_passes_with_enough_space(self, tmp_path):
        with patch("shutil.disk_usage", return_value=_usage(1000, 500)):
            assert check_disk_space(str(tmp_path), 5.0) == pytest.approx(50.0)

    def test_rejects_low_space(self, tmp_path):
        with patch("shutil.disk_usage", return_value=_usage(1000, 30)):
            with pytest.raises(MediaError) as exc_info:
                check_disk_space(str(tmp_path), 5.0)

        err = exc_info.value
        assert err.kind == ErrorKind.FILESYSTEM
        assert err.message == "Insufficient disk space: only 3.00% free. Processing halted."

    def test_unreadable_volume(self, tmp_path):
        with patch("shutil.disk_usage", side_effect=FileNotFoundError("gone")):
            with pytest.raises(MediaError) as exc_info:
                check_disk_space(str(tmp_path / "missing"))
        assert exc_info.value.kind == ErrorKind.FILESYSTEM

    def test_zero_total(self, tmp_path):
        with patch("shutil.disk_usage", return_value=_usage(0, 0)):
            with pytest.raises(MediaError):
                check_disk_space(str(tmp_path))


class TestProvisionOutputDir:
    """Test per-post directory creation."""

    def test_creates_dated_directory(self, tmp_path):
        location = provision_output_dir(
            str(tmp_path), "https://media.example.com/content/", 123, now=_fixed_now
        )

        assert location.path == tmp_path / "2024" / "03" / "123"
        assert location.path.is_dir()
        assert location.url == "https://media.example.com/content/2024/03/123"
        assert location.year == "2024"
        assert location.month == "03"
        assert location.public_url("master.m3u8") == (
            "https://media.example.com/content/2024/03/123/master.m3u8"
        )

    def test_existing_directory_is_reused(self, tmp_path):
        first = provision_output_dir(str(tmp_path), "https://m", 5, now=_fixed_now)
        (first.path / "keep.txt").write_text("x")

        second = provision_output_dir(str(tmp_path), "https://m", 5, now=_fixed_now)

        assert second.path == first.path
        assert (second.path / "keep.txt").exists()

    def test_disk_gate_runs_before_mkdir(self, tmp_path):
        with patch("shutil.disk_usage", return_value=_usage(1000, 10)):
            with pytest.raises(MediaError) as exc_info:
                provision_output_dir(str(tmp_path), "https://m", 9, now=_fixed_now)

        assert "Insufficient disk space" in exc_info.value.message
        assert not (tmp_path / "2024").exists()

    def test_unwritable_directory(self, tmp_path):
        with patch("os.access", return_value=False):
            with pytest.raises(MediaError) as exc_info:
                provision_output_dir(str(tmp_path), "https://m", 9, now=_fixed_now)

        assert exc_info.value.message.startswith("Directory validation failed: ")
        assert "not writable" in exc_info.value.message


class TestVerifyOutputDir:
    """Test the path shape check."""

    def test_rejects_bad_shape(self, tmp_path):
        bad = tmp_path / "posts" / "123"
        bad.mkdir(parents=True)
        with pytest.raises(MediaError) as exc_info:
            verify_output_dir(bad)
        assert "Invalid directory structure" in exc_info.value.message

    def test_rejects_missing_directory(self, tmp_path):
        with pytest.raises(MediaError) as exc_info:
            verify_output_dir(tmp_path / "2024" / "01" / "7")
        assert "does not exist" in exc_info.value.message

    def test_accepts_valid_directory(self, tmp_path):
        good = tmp_path / "2024" / "01" / "7"
        good.mkdir(parents=True)
        verify_output_dir(good)


class TestTreeHelpers:
    """Test iterative size and delete helpers."""

    @pytest.fixture
    def tree(self, tmp_path):
        root = tmp_path / "2023" / "01" / "55"
        (root / "nested" / "deeper").mkdir(parents=True)
        (root / "a.ts").write_bytes(b"x" * 100)
        (root / "nested" / "b.ts").write_bytes(b"x" * 20)
        (root / "nested" / "deeper" / "c.m3u8").write_bytes(b"x" * 3)
        return root

    def test_dir_size(self, tree):
        assert dir_size(tree) == 123

    def test_dir_size_missing(self, tmp_path):
        assert dir_size(tmp_path / "nope") == 0

    def test_delete_tree(self, tree):
        assert delete_tree(tree) == 3
        assert not tree.exists()
        assert tree.parent.exists()

    def test_delete_missing_tree(self, tmp_path):
        assert delete_tree(Path(tmp_path / "nope")) == 0
