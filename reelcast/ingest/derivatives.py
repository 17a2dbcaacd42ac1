from __future__ import annotations

import asyncio
import base64
import os
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Literal, Optional, Tuple

import cv2  # type: ignore

from reelcast.core.errors import DerivativeError

PlaceholderMode = Literal["image", "color"]

PLACEHOLDER_SIZE: Tuple[int, int] = (20, 13)
PREVIEW_SUFFIX = ".mp4"


@dataclass(slots=True, frozen=True)
class Derivatives:
    placeholder: str
    preview_ref: Optional[str]


def extract_placeholder(
    video_path: Path,
    *,
    mode: PlaceholderMode = "image",
    timeout_s: float = 120.0,
) -> str:
    """Return a tiny visual proxy for the first frame of ``video_path``.

    ``image`` mode yields a 20x13 JPEG as a ``data:`` URL, ``color`` mode the average
    colour of the frame as ``#rrggbb``.
    """
    with tempfile.TemporaryDirectory(prefix="reelcast-placeholder-") as scratch:
        if mode == "color":
            frame_path = Path(scratch) / "frame.png"
            _run_ffmpeg(_first_frame_command(video_path, frame_path, (1, 1)), timeout_s)
            return _average_color(frame_path)

        frame_path = Path(scratch) / "frame.jpg"
        _run_ffmpeg(_first_frame_command(video_path, frame_path, PLACEHOLDER_SIZE, quality=5), timeout_s)
        _image_dimensions(frame_path)
        encoded = base64.b64encode(frame_path.read_bytes()).decode("ascii")
        return f"data:image/jpeg;base64,{encoded}"


def preview_path_for(preview_root: Path, content_hash: str) -> Path:
    return preview_root / f"{content_hash}{PREVIEW_SUFFIX}"


def generate_preview(
    video_path: Path,
    content_hash: str,
    preview_root: Path,
    *,
    height: int = 360,
    timeout_s: float = 900.0,
) -> str:
    """Write a reduced-resolution fast-start copy named after the content hash.

    The file is rendered under a temporary name and swapped into place, so running it
    twice for the same hash leaves a single complete preview. Returns the preview path
    relative to the parent of ``preview_root``.
    """
    preview_root.mkdir(parents=True, exist_ok=True)
    target = preview_path_for(preview_root, content_hash)
    partial = target.with_name(f"{target.name}.part")
    command = [
        "ffmpeg",
        "-nostdin",
        "-v",
        "error",
        "-i",
        str(video_path),
        "-vf",
        f"scale=-2:'min({height},ih)'",
        "-c:v",
        "libx264",
        "-preset",
        "veryfast",
        "-crf",
        "28",
        "-c:a",
        "aac",
        "-b:a",
        "96k",
        "-movflags",
        "+faststart",
        "-f",
        "mp4",
        "-y",
        str(partial),
    ]
    try:
        _run_ffmpeg(command, timeout_s)
        os.replace(partial, target)
    finally:
        partial.unlink(missing_ok=True)
    return (Path(preview_root.name) / target.name).as_posix()


async def generate_derivatives(
    video_path: Path,
    content_hash: str,
    preview_root: Path,
    *,
    placeholder_mode: PlaceholderMode = "image",
    preview_enabled: bool = True,
    preview_height: int = 360,
    timeout_s: float = 900.0,
) -> Derivatives:
    """Produce the placeholder, then the preview; either failure is fatal.

    The steps run one after the other so that no ffmpeg process is left reading
    ``video_path`` once a failure has routed the file elsewhere.
    """
    placeholder = await asyncio.to_thread(
        extract_placeholder,
        video_path,
        mode=placeholder_mode,
        timeout_s=timeout_s,
    )
    if not preview_enabled:
        return Derivatives(placeholder=placeholder, preview_ref=None)

    preview_ref = await asyncio.to_thread(
        generate_preview,
        video_path,
        content_hash,
        preview_root,
        height=preview_height,
        timeout_s=timeout_s,
    )
    return Derivatives(placeholder=placeholder, preview_ref=preview_ref)


def _first_frame_command(
    video_path: Path,
    output_path: Path,
    size: Tuple[int, int],
    *,
    quality: Optional[int] = None,
) -> List[str]:
    width, height = size
    command = [
        "ffmpeg",
        "-nostdin",
        "-v",
        "error",
        "-i",
        str(video_path),
        "-vf",
        f"select=eq(n\\,0),scale={width}:{height}",
        "-frames:v",
        "1",
        "-f",
        "image2",
    ]
    if quality is not None:
        command += ["-q:v", str(quality)]
    command += ["-y", str(output_path)]
    return command


def _run_ffmpeg(command: List[str], timeout_s: float) -> None:
    try:
        subprocess.run(command, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE, timeout=timeout_s)
    except subprocess.CalledProcessError as exc:
        stderr = exc.stderr.decode(errors="ignore") if isinstance(exc.stderr, bytes) else (exc.stderr or "")
        raise DerivativeError(f"ffmpeg exited with {exc.returncode}: {stderr.strip()}") from exc
    except subprocess.TimeoutExpired as exc:
        raise DerivativeError(f"ffmpeg timed out after {timeout_s}s") from exc
    except FileNotFoundError as exc:
        raise DerivativeError("ffmpeg binary not found") from exc


def _read_image(image_path: Path):
    image = cv2.imread(str(image_path))
    if image is None:
        raise DerivativeError(f"Failed to read generated frame at {image_path}")
    return image


def _image_dimensions(image_path: Path) -> Tuple[int, int]:
    height, width = _read_image(image_path).shape[:2]
    return width, height


def _average_color(image_path: Path) -> str:
    image = _read_image(image_path)
    blue, green, red = (int(round(channel)) for channel in cv2.mean(image)[:3])
    return f"#{red:02x}{green:02x}{blue:02x}"


__all__ = [
    "Derivatives",
    "PlaceholderMode",
    "extract_placeholder",
    "generate_preview",
    "generate_derivatives",
    "preview_path_for",
]
