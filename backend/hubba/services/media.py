from __future__ import annotations
import json
import subprocess
from dataclasses import dataclass
from pathlib import Path
from hubba.config import settings


class ProbeError(RuntimeError):
    """Raised when ffprobe cannot read the file."""


class NoVideoStream(ProbeError):
    """Raised when the container holds no video stream."""


@dataclass(frozen=True)
class VideoMetadata:
    duration: float
    width: int | None
    height: int | None
    codec: str | None

    def to_dict(self) -> dict:
        return {"duration": self.duration, "width": self.width, "height": self.height, "codec": self.codec}


class FFprobeVideoProber:
    def __init__(self, *, binary: str | None = None, timeout: float = 30.0) -> None:
        self._binary = binary or settings.ffprobe_path
        self._timeout = timeout

    def probe(self, source: Path) -> VideoMetadata:
        cmd = [
            self._binary,
            "-v",
            "error",
            "-print_format",
            "json",
            "-show_format",
            "-show_streams",
            source.as_posix(),
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, timeout=self._timeout)
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise ProbeError(f"ffprobe could not run on {source.name}: {exc}") from exc
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="ignore")
            raise ProbeError(f"ffprobe failed for {source.name}: {stderr.strip() or 'unknown error'}")
        try:
            info = json.loads(result.stdout or b"{}")
        except ValueError as exc:
            raise ProbeError(f"ffprobe returned unreadable output for {source.name}") from exc
        return parse_probe_output(info)


def parse_probe_output(info: dict) -> VideoMetadata:
    streams = info.get("streams") or []
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    if video is None:
        raise NoVideoStream("no video stream")

    # container duration first, stream duration as fallback
    raw = (info.get("format") or {}).get("duration") or video.get("duration")
    try:
        duration = float(raw)
    except (TypeError, ValueError) as exc:
        raise ProbeError("missing duration") from exc

    return VideoMetadata(
        duration=duration,
        width=int(video["width"]) if video.get("width") else None,
        height=int(video["height"]) if video.get("height") else None,
        codec=video.get("codec_name"),
    )
