from __future__ import annotations
import json
import subprocess
from pathlib import Path
import pytest
from hubba.services import media
from hubba.services.media import FFprobeVideoProber, NoVideoStream, ProbeError, parse_probe_output


def _completed(stdout: dict | bytes, returncode: int = 0, stderr: bytes = b"") -> subprocess.CompletedProcess:
    out = stdout if isinstance(stdout, bytes) else json.dumps(stdout).encode()
    return subprocess.CompletedProcess(args=["ffprobe"], returncode=returncode, stdout=out, stderr=stderr)


FFPROBE_OK = {
    "streams": [
        {"codec_type": "audio", "codec_name": "aac"},
        {"codec_type": "video", "codec_name": "h264", "width": 1080, "height": 1920, "duration": "9.980000"},
    ],
    "format": {"duration": "10.000000", "format_name": "mov,mp4,m4a,3gp,3g2,mj2"},
}


def test_probe_extracts_video_metadata(monkeypatch, tmp_path):
    calls = []

    def fake_run(cmd, capture_output, timeout):
        calls.append(cmd)
        return _completed(FFPROBE_OK)

    monkeypatch.setattr(media.subprocess, "run", fake_run)
    meta = FFprobeVideoProber(binary="ffprobe").probe(tmp_path / "clip.mp4")

    assert meta.duration == 10.0
    assert (meta.width, meta.height, meta.codec) == (1080, 1920, "h264")
    assert calls[0][0] == "ffprobe"
    assert calls[0][-1].endswith("clip.mp4")
    assert "-show_streams" in calls[0]


def test_probe_nonzero_exit_is_probe_error(monkeypatch, tmp_path):
    monkeypatch.setattr(media.subprocess, "run", lambda cmd, **kw: _completed(b"", returncode=1, stderr=b"moov atom not found"))
    with pytest.raises(ProbeError, match="moov atom not found"):
        FFprobeVideoProber().probe(tmp_path / "broken.mp4")


def test_probe_missing_binary_is_probe_error(monkeypatch, tmp_path):
    def boom(cmd, **kw):
        raise FileNotFoundError("ffprobe")
    monkeypatch.setattr(media.subprocess, "run", boom)
    with pytest.raises(ProbeError):
        FFprobeVideoProber().probe(Path(tmp_path / "x.mp4"))


def test_audio_only_file_has_no_video_stream():
    with pytest.raises(NoVideoStream):
        parse_probe_output({"streams": [{"codec_type": "audio"}], "format": {"duration": "8.0"}})


def test_stream_duration_used_when_container_has_none():
    meta = parse_probe_output({"streams": [{"codec_type": "video", "codec_name": "vp9", "duration": "6.5"}], "format": {}})
    assert meta.duration == 6.5
    assert meta.width is None


def test_missing_duration_is_probe_error():
    with pytest.raises(ProbeError):
        parse_probe_output({"streams": [{"codec_type": "video"}], "format": {}})
