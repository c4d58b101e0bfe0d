"""HLS master playlist assembly."""

import logging
import re
from pathlib import Path
from typing import Dict, List

from .errors import ErrorKind, MediaError
from .models import QualityTier

logger = logging.getLogger(__name__)

DEFAULT_BITRATE = 96000

_BITRATE_RE = re.compile(r"^([\d.]+)([KM])?$")
_MULTIPLIERS = {"K": 1000, "M": 1000000, "": 1}


def parse_bitrate(value: str) -> int:
    """Convert an ffmpeg-style bitrate to bits per second.

    Supports ``800k``, ``800K``, ``1.2M``, ``1.2m`` and raw ``96000``. Anything
    else falls back to the digits found in the string, then to 96000.
    """
    text = str(value).strip().upper()

    match = _BITRATE_RE.match(text)
    if match:
        try:
            number = float(match.group(1))
        except ValueError:
            number = None
        if number is not None:
            return int(round(number * _MULTIPLIERS[match.group(2) or ""]))

    digits = re.sub(r"[^\d]", "", text)
    numeric = int(digits) if digits else 0
    return numeric if numeric > 0 else DEFAULT_BITRATE


def bandwidth(tier: QualityTier) -> int:
    return parse_bitrate(tier.bitrate) + parse_bitrate(tier.audio_bitrate)


def render_master_playlist(tiers: Dict[str, QualityTier]) -> str:
    lines: List[str] = ["#EXTM3U", "#EXT-X-VERSION:3", ""]
    for name, tier in tiers.items():
        lines.append(
            f"#EXT-X-STREAM-INF:BANDWIDTH={bandwidth(tier)},"
            f"RESOLUTION={tier.width}x{tier.height},NAME=\"{name}\""
        )
        lines.append(f"{name}.m3u8")
        lines.append("")
    return "\n".join(lines)


def write_master_playlist(
    output_dir: Path,
    renditions: List[str],
    qualities: Dict[str, QualityTier],
) -> Path:
    """Write ``master.m3u8`` listing every rendition whose playlist exists.

    Raises:
        MediaError(PLAYLIST) when no rendition playlist is on disk
    """
    available = {
        name: qualities[name]
        for name in renditions
        if name in qualities and (output_dir / f"{name}.m3u8").exists()
    }
    if not available:
        raise MediaError(
            ErrorKind.PLAYLIST, "Cannot create master playlist: no HLS renditions available"
        )

    master = output_dir / "master.m3u8"
    try:
        master.write_text(render_master_playlist(available), encoding="utf-8")
    except OSError as e:
        raise MediaError(
            ErrorKind.PLAYLIST, f"Failed to create master playlist: {e}"
        ) from e

    logger.info(
        "Created master playlist with %d renditions: %s", len(available), ", ".join(available)
    )
    return master
