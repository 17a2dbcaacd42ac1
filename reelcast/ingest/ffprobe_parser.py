from __future__ import annotations

import json
import subprocess
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from reelcast.core.errors import MetadataError

__all__ = [
    "MediaAttributes",
    "build_ffprobe_command",
    "parse_media_attributes",
    "probe_media",
]


@dataclass(slots=True, frozen=True)
class MediaAttributes:
    """Immutable media facts stored on an asset record."""

    duration_s: float
    width: int
    height: int
    size_bytes: int

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def build_ffprobe_command(target: Path) -> List[str]:
    return [
        "ffprobe",
        "-v",
        "error",
        "-show_format",
        "-show_streams",
        "-print_format",
        "json",
        str(target),
    ]


def probe_media(target: Path, *, timeout_s: float = 60.0) -> MediaAttributes:
    """Run ffprobe on ``target`` and return its media attributes.

    Args:
        target: The path to the media file.
        timeout_s: Hard limit for the ffprobe process.

    Returns:
        The parsed media attributes.

    Raises:
        MetadataError: ffprobe is missing, exits non-zero, times out, or its output
            lacks a usable duration or video stream.
    """
    command = build_ffprobe_command(target)
    try:
        proc = subprocess.run(
            command,
            check=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=timeout_s,
        )
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        raise MetadataError(f"ffprobe exited with {exc.returncode}: {stderr}") from exc
    except subprocess.TimeoutExpired as exc:
        raise MetadataError(f"ffprobe timed out after {timeout_s}s") from exc
    except FileNotFoundError as exc:
        raise MetadataError("ffprobe binary not found") from exc

    try:
        raw = json.loads(proc.stdout)
    except json.JSONDecodeError as exc:
        raise MetadataError("ffprobe produced unparseable output") from exc

    fallback_size = target.stat().st_size if target.exists() else None
    return parse_media_attributes(raw, fallback_size=fallback_size)


def parse_media_attributes(raw: Dict[str, Any], *, fallback_size: Optional[int] = None) -> MediaAttributes:
    """Normalise ffprobe JSON into :class:`MediaAttributes`.

    Args:
        raw: The raw ffprobe JSON.
        fallback_size: On-disk size used when ffprobe does not report one.

    Returns:
        The media attributes.
    """
    if not isinstance(raw, dict):
        raise MetadataError("ffprobe output is not an object")

    format_info = raw.get("format") or {}
    duration_s = _parse_duration(format_info.get("duration"))
    if duration_s is None:
        raise MetadataError("duration_unavailable")

    video = _select_video_stream([s for s in raw.get("streams") or [] if s.get("codec_type") == "video"])
    if video is None:
        raise MetadataError("no_video_stream")

    width = _int_or_none(video.get("width"))
    height = _int_or_none(video.get("height"))
    if not width or not height:
        raise MetadataError("dimensions_unavailable")

    size_bytes = _int_or_none(format_info.get("size"))
    if size_bytes is None:
        size_bytes = fallback_size
    if size_bytes is None:
        raise MetadataError("size_unavailable")

    return MediaAttributes(duration_s=duration_s, width=width, height=height, size_bytes=size_bytes)


def _parse_duration(raw_value: Any) -> Optional[float]:
    if raw_value in (None, "N/A", ""):
        return None
    try:
        value = float(raw_value)
    except (TypeError, ValueError):
        return None
    if value <= 0:
        return None
    return value


def _int_or_none(value: Any) -> Optional[int]:
    if value in (None, "N/A", ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _disposition_default(disposition: Any) -> Optional[bool]:
    if not isinstance(disposition, dict):
        return None
    default_value = disposition.get("default")
    if default_value is None:
        return None
    return bool(default_value)


def _select_video_stream(streams: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Pick the default video stream, else the one with the largest frame area."""
    if not streams:
        return None
    # Cover art is reported as a video stream with attached_pic set.
    moving = [s for s in streams if not (s.get("disposition") or {}).get("attached_pic")]
    candidates = moving or streams

    default_streams = [stream for stream in candidates if _disposition_default(stream.get("disposition")) is True]
    if default_streams:
        return default_streams[0]

    def score(item: Dict[str, Any]) -> int:
        return (_int_or_none(item.get("width")) or 0) * (_int_or_none(item.get("height")) or 0)

    return max(candidates, key=score)
