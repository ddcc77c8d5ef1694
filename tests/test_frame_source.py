import json
from types import SimpleNamespace

import cv2
import pytest

from lucky_imaging import frame_source
from lucky_imaging.frame_source import (
    NoVideoStreamError,
    OpenCVFrameSource,
    UnsupportedCodecError,
    VideoOpenError,
    probe_video,
)
from lucky_imaging.frame_store import FrameStoreBuilder


class UndecodableCapture:
    """Container opens fine, but no frame can ever be grabbed."""

    def __init__(self, path):
        self.released = False

    def isOpened(self):
        return True

    def get(self, prop):
        return {
            cv2.CAP_PROP_FRAME_WIDTH: 32.0,
            cv2.CAP_PROP_FRAME_HEIGHT: 24.0,
            cv2.CAP_PROP_FRAME_COUNT: 12.0,
            cv2.CAP_PROP_FPS: 25.0,
            cv2.CAP_PROP_FOURCC: float(cv2.VideoWriter_fourcc(*"H264")),
        }.get(prop, 0.0)

    def grab(self):
        return False

    def retrieve(self):
        return False, None

    def release(self):
        self.released = True


@pytest.fixture
def undecodable(monkeypatch, tmp_path):
    monkeypatch.setattr(frame_source.cv2, "VideoCapture", UndecodableCapture)
    video = tmp_path / "jupiter.mkv"
    video.write_bytes(b"\x1aE\xdf\xa3")
    return video


def test_first_grab_failure_without_ffprobe_is_unsupported_codec(monkeypatch, undecodable):
    monkeypatch.setattr(frame_source, "probe_video", lambda path: None)

    with pytest.raises(UnsupportedCodecError) as excinfo:
        FrameStoreBuilder(superres=1.0).extract(OpenCVFrameSource(), undecodable)

    assert excinfo.value.codec == "H264"
    assert "jupiter.mkv" in str(excinfo.value)


def test_first_grab_failure_with_ffprobe_yields_empty_store(monkeypatch, undecodable, caplog):
    monkeypatch.setattr(frame_source, "probe_video", lambda path: {
        "width": 32, "height": 24, "fps": 25.0, "duration": 0.48,
        "codec": "hevc", "total_frames": 12,
    })

    source = OpenCVFrameSource()
    with caplog.at_level("WARNING", logger="lucky_imaging.frame_source"):
        store = FrameStoreBuilder(superres=1.0).extract(source, undecodable)

    assert store.is_empty
    assert source.info.codec == "hevc"
    assert "jupiter.mkv" in caplog.text


def test_probe_video_without_ffprobe_returns_none(monkeypatch, tmp_path):
    monkeypatch.setattr(frame_source.shutil, "which", lambda name: None)

    assert probe_video(tmp_path / "anything.avi") is None


def test_probe_video_raises_when_ffprobe_rejects_container(monkeypatch, tmp_path):
    monkeypatch.setattr(frame_source.shutil, "which", lambda name: "/usr/bin/ffprobe")
    monkeypatch.setattr(frame_source.subprocess, "run", lambda cmd, **kwargs: SimpleNamespace(
        returncode=1,
        stdout="",
        stderr="broken.avi: Invalid data found when processing input\n",
    ))

    with pytest.raises(VideoOpenError) as excinfo:
        probe_video(tmp_path / "broken.avi")

    assert excinfo.value.reason == "broken.avi: Invalid data found when processing input"


def test_probe_video_raises_without_video_stream(monkeypatch, tmp_path):
    output = {"streams": [{"codec_type": "audio", "codec_name": "aac"}], "format": {}}
    monkeypatch.setattr(frame_source.shutil, "which", lambda name: "/usr/bin/ffprobe")
    monkeypatch.setattr(frame_source.subprocess, "run", lambda cmd, **kwargs: SimpleNamespace(
        returncode=0, stdout=json.dumps(output), stderr="",
    ))

    with pytest.raises(NoVideoStreamError):
        probe_video(tmp_path / "podcast.mp4")


def test_probe_video_tolerates_unknown_frame_count(monkeypatch, tmp_path):
    output = {
        "streams": [{
            "codec_type": "video", "codec_name": "ffv1",
            "width": 640, "height": 480,
            "r_frame_rate": "30/1", "nb_frames": "N/A",
        }],
        "format": {"duration": "N/A"},
    }
    monkeypatch.setattr(frame_source.shutil, "which", lambda name: "/usr/bin/ffprobe")
    monkeypatch.setattr(frame_source.subprocess, "run", lambda cmd, **kwargs: SimpleNamespace(
        returncode=0, stdout=json.dumps(output), stderr="",
    ))

    info = probe_video(tmp_path / "capture.mkv")

    assert info["codec"] == "ffv1"
    assert info["fps"] == 30.0
    assert info["total_frames"] is None
