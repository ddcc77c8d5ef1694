"""
Decoded frame sources.

This module wraps the video decoding backend behind a small capability
interface (open / read / close). The rest of the package only ever sees
``VideoInfo`` and ``DecodedFrame`` objects, never backend types.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Union
import json
import logging
import shutil
import subprocess

import numpy as np
import cv2


logger = logging.getLogger(__name__)


class VideoSourceError(RuntimeError):
    """Base class for fatal input errors on one video."""

    def __init__(self, path: Union[str, Path], message: str):
        self.path = Path(path)
        super().__init__(message)


class VideoOpenError(VideoSourceError):
    """The file could not be opened or its container could not be read."""

    def __init__(self, path: Union[str, Path], reason: str):
        self.reason = reason
        super().__init__(path, f"Could not open file {path}: {reason}")


class NoVideoStreamError(VideoSourceError):
    """The container holds no video stream."""

    def __init__(self, path: Union[str, Path]):
        super().__init__(path, f"Could not find a video stream in {path}")


class UnsupportedCodecError(VideoSourceError):
    """The video stream uses a codec the backend cannot decode."""

    def __init__(self, path: Union[str, Path], codec: str):
        self.codec = codec
        super().__init__(path, f"Could not find codec: {codec} (in {path})")


@dataclass
class VideoInfo:
    """Metadata of an opened video stream."""

    path: Path
    width: int
    height: int
    fps: float
    codec: str
    frame_count: Optional[int]  # container estimate, None when unknown

    def describe(self) -> str:
        frames = str(self.frame_count) if self.frame_count is not None else "unknown"
        return (
            f"{self.path.name}: {self.width}x{self.height} @ {self.fps:.2f} fps, "
            f"codec {self.codec}, ~{frames} frames"
        )


@dataclass
class DecodedFrame:
    """One decode attempt; ``image`` is None when the frame failed to decode."""

    index: int
    image: Optional[np.ndarray]
    expected_shape: Optional[tuple[int, int]] = None  # (height, width)

    @property
    def valid(self) -> bool:
        image = self.image
        if image is None or image.size == 0:
            return False
        if image.ndim != 3 or image.shape[2] != 3 or image.dtype != np.uint8:
            return False
        if self.expected_shape is not None and image.shape[:2] != self.expected_shape:
            return False
        return True


class FrameSource(ABC):
    """
    Capability interface for a decoding backend.

    ``read`` may hand out a buffer the backend reuses on the next call,
    so consumers must copy anything they keep.
    """

    info: Optional[VideoInfo] = None

    @abstractmethod
    def open(self, path: Union[str, Path]) -> VideoInfo:
        """Open a video and return its metadata, or raise VideoSourceError."""

    @abstractmethod
    def read(self) -> Optional[DecodedFrame]:
        """Return the next decode attempt, or None at end of stream."""

    @abstractmethod
    def close(self) -> None:
        """Release backend resources. Safe to call more than once."""

    def __enter__(self) -> "FrameSource":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def probe_video(video_path: Path) -> Optional[dict]:
    """
    Get video metadata using FFprobe.

    Args:
        video_path: Path to video file

    Returns:
        Dictionary with video properties, or None if ffprobe is unavailable

    Raises:
        VideoOpenError: ffprobe could not read the container
        NoVideoStreamError: the container has no video stream
    """
    if shutil.which("ffprobe") is None:
        return None

    cmd = [
        "ffprobe", "-v", "error",
        "-print_format", "json",
        "-show_format", "-show_streams",
        str(video_path)
    ]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        logger.debug(f"ffprobe failed to run: {e}")
        return None

    if result.returncode != 0:
        reason = result.stderr.strip().splitlines()
        raise VideoOpenError(video_path, reason[-1] if reason else "ffprobe failed")

    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError:
        return None

    # Find video stream
    video_stream = None
    for stream in data.get("streams", []):
        if stream.get("codec_type") == "video":
            video_stream = stream
            break

    if video_stream is None:
        raise NoVideoStreamError(video_path)

    # Parse frame rate
    fps_str = video_stream.get("r_frame_rate", "0/1")
    if "/" in fps_str:
        num, den = map(int, fps_str.split("/"))
        fps = num / den if den else 0.0
    else:
        fps = float(fps_str)

    try:
        duration = float(data.get("format", {}).get("duration", 0) or 0)
    except ValueError:
        duration = 0.0
    nb_frames = str(video_stream.get("nb_frames", ""))  # may be "N/A"
    total_frames = int(nb_frames) if nb_frames.isdigit() else int(fps * duration)

    return {
        "width": int(video_stream.get("width", 0)),
        "height": int(video_stream.get("height", 0)),
        "fps": fps,
        "duration": duration,
        "codec": video_stream.get("codec_name", "unknown"),
        "total_frames": total_frames or None,
    }


def _fourcc_name(value: float) -> str:
    code = int(value)
    if code <= 0:
        return "unknown"
    name = "".join(chr((code >> (8 * i)) & 0xFF) for i in range(4))
    return name.strip("\x00 ") or "unknown"


class OpenCVFrameSource(FrameSource):
    """
    Decode frames with cv2.VideoCapture.

    ``grab`` drives the stream so that a frame failing in ``retrieve`` is
    reported as an invalid attempt instead of ending the stream.

    When ffprobe is unavailable and the very first ``grab`` fails on a
    container that advertises frames, the codec is taken to be unsupported.
    If ffprobe did read the stream, the same failure is logged and treated
    as end of stream, which yields an empty frame store.
    """

    def __init__(self, use_ffprobe: bool = True):
        self.use_ffprobe = use_ffprobe
        self.info: Optional[VideoInfo] = None
        self._capture: Optional[cv2.VideoCapture] = None
        self._attempts = 0
        self._probed = False

    def open(self, path: Union[str, Path]) -> VideoInfo:
        path = Path(path)
        self.close()

        if not path.exists():
            raise VideoOpenError(path, "No such file or directory")

        probe = probe_video(path) if self.use_ffprobe else None

        cap = cv2.VideoCapture(str(path))
        if not cap.isOpened():
            cap.release()
            if probe is not None:
                # Container is readable, so the decoder is what failed
                raise UnsupportedCodecError(path, probe["codec"])
            raise VideoOpenError(path, "no decoding backend could open the container")

        width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        if width <= 0 or height <= 0:
            cap.release()
            raise NoVideoStreamError(path)

        frame_count = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
        if probe is not None and probe["total_frames"]:
            frame_count = probe["total_frames"]

        self.info = VideoInfo(
            path=path,
            width=width,
            height=height,
            fps=cap.get(cv2.CAP_PROP_FPS) or (probe["fps"] if probe else 0.0),
            codec=probe["codec"] if probe else _fourcc_name(cap.get(cv2.CAP_PROP_FOURCC)),
            frame_count=frame_count if frame_count > 0 else None,
        )
        self._capture = cap
        self._attempts = 0
        self._probed = probe is not None

        logger.debug(f"Opened {self.info.describe()}")
        return self.info

    def read(self) -> Optional[DecodedFrame]:
        if self._capture is None or self.info is None:
            raise RuntimeError("Frame source is not open")

        if not self._capture.grab():
            if self._attempts == 0 and self.info.frame_count:
                if not self._probed:
                    raise UnsupportedCodecError(self.info.path, self.info.codec)
                logger.warning(
                    f"Could not decode the first frame of {self.info.path.name} "
                    f"({self.info.codec}, ~{self.info.frame_count} frames advertised)"
                )
            return None

        ok, image = self._capture.retrieve()
        frame = DecodedFrame(
            index=self._attempts,
            image=image if ok else None,
            expected_shape=(self.info.height, self.info.width),
        )
        self._attempts += 1
        return frame

    def close(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None


_AUTO = object()


class MemoryFrameSource(FrameSource):
    """
    Serve frames from memory, e.g. synthetic test sequences.

    ``None`` entries stand for frames that failed to decode. With
    ``reuse_buffer`` every frame is written into one shared array, the
    way hardware and FFmpeg decoders recycle their output buffer.
    """

    def __init__(
        self,
        frames: Sequence[Optional[np.ndarray]],
        expected_frames=_AUTO,
        reuse_buffer: bool = False,
        fps: float = 30.0,
    ):
        self.frames = list(frames)
        self.expected_frames = len(self.frames) if expected_frames is _AUTO else expected_frames
        self.reuse_buffer = reuse_buffer
        self.fps = fps
        self.info: Optional[VideoInfo] = None
        self._position: Optional[int] = None
        self._buffer: Optional[np.ndarray] = None

    def open(self, path: Union[str, Path] = "<memory>") -> VideoInfo:
        shapes = [f.shape for f in self.frames if f is not None]
        height, width = shapes[0][:2] if shapes else (0, 0)
        self.info = VideoInfo(
            path=Path(path),
            width=width,
            height=height,
            fps=self.fps,
            codec="rawvideo",
            frame_count=self.expected_frames,
        )
        self._position = 0
        return self.info

    def read(self) -> Optional[DecodedFrame]:
        if self._position is None or self.info is None:
            raise RuntimeError("Frame source is not open")
        if self._position >= len(self.frames):
            return None

        index = self._position
        self._position += 1
        image = self.frames[index]

        if image is not None and self.reuse_buffer:
            if self._buffer is None or self._buffer.shape != image.shape or self._buffer.dtype != image.dtype:
                self._buffer = np.empty_like(image)
            np.copyto(self._buffer, image)
            image = self._buffer

        expected = (self.info.height, self.info.width) if self.info.width else None
        return DecodedFrame(index=index, image=image, expected_shape=expected)

    def close(self) -> None:
        self._position = None
