from __future__ import annotations

import json
import os
import shutil
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Literal, Optional
from urllib.parse import urlparse

import yt_dlp
from yt_dlp.utils import DownloadError as YtDlpDownloadError

from reelcast.core.config import Settings
from reelcast.core.errors import DownloadError
from reelcast.core.logging import get_logger

Platform = Literal["youtube", "twitter"]

PROVENANCE_SUFFIX = ".source.json"

_PLATFORM_HOSTS: Dict[str, Platform] = {
    "youtube.com": "youtube",
    "youtu.be": "youtube",
    "twitter.com": "twitter",
    "x.com": "twitter",
}


@dataclass(slots=True)
class DownloadResult:
    url: str
    platform: str
    file_path: str
    filename: str
    downloaded_at: str

    def provenance(self) -> Dict[str, Any]:
        return {"url": self.url, "platform": self.platform, "downloaded_at": self.downloaded_at}


def detect_platform(url: str) -> Optional[Platform]:
    host = (urlparse(url).hostname or "").lower()
    for suffix, platform in _PLATFORM_HOSTS.items():
        if host == suffix or host.endswith(f".{suffix}"):
            return platform
    return None


def provenance_path_for(media_path: Path) -> Path:
    return media_path.with_name(f"{media_path.name}{PROVENANCE_SUFFIX}")


def read_provenance(media_path: Path) -> Optional[Dict[str, Any]]:
    """Return the provenance written next to ``media_path`` by :func:`download_to_intake`."""
    sidecar = provenance_path_for(media_path)
    if not sidecar.exists():
        return None
    try:
        payload = json.loads(sidecar.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        get_logger(component="downloader").warning("provenance_unreadable", path=str(sidecar))
        return None
    if not isinstance(payload, dict):
        return None
    return {key: payload.get(key) for key in ("url", "platform", "downloaded_at") if payload.get(key)}


def unique_destination(directory: Path, filename: str) -> Path:
    """Return ``directory/filename``, adding ``-1``, ``-2``... while the name is taken."""
    destination = directory / filename
    counter = 1
    stem, suffix = Path(filename).stem, Path(filename).suffix
    while destination.exists():
        destination = directory / f"{stem}-{counter}{suffix}"
        counter += 1
    return destination


def build_ydl_options(platform: Platform, staging_dir: Path, settings: Settings) -> Dict[str, Any]:
    options: Dict[str, Any] = {
        "format": "bestvideo[ext=mp4]+bestaudio[ext=m4a]/best[ext=mp4]/best",
        "merge_output_format": "mp4",
        "outtmpl": str(staging_dir / platform / "%(title)s-%(id)s.%(ext)s"),
        "noplaylist": True,
        "no_warnings": True,
        "quiet": True,
        "noprogress": True,
    }
    if platform == "twitter" and settings.twitter_cookies_file:
        options["cookiefile"] = str(settings.twitter_cookies_file)
    return options


def download_to_intake(url: str, settings: Settings) -> DownloadResult:
    """Download ``url`` with yt-dlp and drop the file plus its provenance into intake."""
    platform = detect_platform(url)
    if platform is None:
        raise DownloadError(f"unsupported_url:{url}")

    intake_dir = settings.intake_dir
    staging_dir = intake_dir / ".downloads"
    staging_dir.mkdir(parents=True, exist_ok=True)

    options = build_ydl_options(platform, staging_dir, settings)
    try:
        with yt_dlp.YoutubeDL(options) as ydl:
            info = ydl.extract_info(url, download=True)
            if info is None:
                raise DownloadError(f"yt_dlp returned no info for {url}")
            if info.get("requested_downloads"):
                requested = info["requested_downloads"][0]
                downloaded = Path(requested.get("filepath") or requested["_filename"])
            else:
                downloaded = Path(ydl.prepare_filename(info))
    except YtDlpDownloadError as exc:
        raise DownloadError(str(exc)) from exc

    if not downloaded.exists():
        raise DownloadError(f"downloaded file not found: {downloaded}")

    destination = unique_destination(intake_dir, downloaded.name)
    shutil.move(str(downloaded), str(destination))

    result = DownloadResult(
        url=url,
        platform=platform,
        file_path=str(destination),
        filename=destination.name,
        downloaded_at=datetime.now(timezone.utc).isoformat(),
    )
    provenance_path_for(destination).write_text(json.dumps(result.provenance(), indent=2), encoding="utf-8")
    get_logger(component="downloader", platform=platform).info("download_complete", url=url, file=destination.name)
    return result


def _load_download_history(history_path: Path) -> Dict[str, Any]:
    if not history_path.exists():
        return {"downloads": []}
    try:
        history = json.loads(history_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        history = None
    if not isinstance(history, dict) or not isinstance(history.get("downloads", []), list):
        get_logger(component="downloader").warning("download_history_unreadable", path=str(history_path))
        return {"downloads": []}
    return history


def append_download_history(history_path: Path, results: Iterable[DownloadResult]) -> None:
    """Append ``results`` to the JSON history; an unreadable history is started afresh."""
    entries = [asdict(result) for result in results]
    if not entries:
        return
    history = _load_download_history(history_path)
    history.setdefault("downloads", []).extend(entries)
    history_path.parent.mkdir(parents=True, exist_ok=True)
    partial = history_path.with_name(f"{history_path.name}.tmp")
    partial.write_text(json.dumps(history, indent=2), encoding="utf-8")
    os.replace(partial, history_path)


__all__ = [
    "DownloadResult",
    "PROVENANCE_SUFFIX",
    "append_download_history",
    "detect_platform",
    "download_to_intake",
    "provenance_path_for",
    "read_provenance",
    "unique_destination",
]
