"""
Frame extraction into an in-memory frame store.

This module drains a decoded frame source, drops frames that failed to
decode, optionally upsamples the rest, and keeps an independent copy
of each one in decode order.
"""

from pathlib import Path
from typing import Iterator, Optional, Union
import logging
import math

import numpy as np
import cv2

from .frame_source import FrameSource, OpenCVFrameSource
from .progress import ProgressReporter


logger = logging.getLogger(__name__)


INTERPOLATION_FLAGS = {
    "nearest": cv2.INTER_NEAREST,
    "linear": cv2.INTER_LINEAR,
    "cubic": cv2.INTER_CUBIC,
    "lanczos": cv2.INTER_LANCZOS4,
}


class FrameStore:
    """
    Ordered collection of frames from one video.

    Every frame is copied on insert; decoders recycle their output
    buffer, and storing it directly would leave every entry showing the
    last decoded frame. All frames share one shape and dtype.
    """

    def __init__(self):
        self._frames: list[np.ndarray] = []

    def append(self, frame: np.ndarray) -> None:
        self._check_geometry(frame)
        self._frames.append(np.array(frame, copy=True))

    def _adopt(self, frame: np.ndarray) -> None:
        # Caller guarantees nobody else references ``frame``
        self._check_geometry(frame)
        self._frames.append(frame)

    def _check_geometry(self, frame: np.ndarray) -> None:
        if self._frames:
            first = self._frames[0]
            if frame.shape != first.shape or frame.dtype != first.dtype:
                raise ValueError(
                    f"Frame {frame.shape}/{frame.dtype} does not match store "
                    f"geometry {first.shape}/{first.dtype}"
                )

    @property
    def shape(self) -> Optional[tuple[int, ...]]:
        """Shape shared by all frames, None when empty."""
        return self._frames[0].shape if self._frames else None

    @property
    def is_empty(self) -> bool:
        return not self._frames

    @property
    def nbytes(self) -> int:
        return sum(f.nbytes for f in self._frames)

    def __len__(self) -> int:
        return len(self._frames)

    def __iter__(self) -> Iterator[np.ndarray]:
        return iter(self._frames)

    def __getitem__(self, index):
        return self._frames[index]

    def __repr__(self) -> str:
        return f"FrameStore(frames={len(self)}, shape={self.shape})"


def resample(image: np.ndarray, scale: float, interpolation: str = "lanczos") -> np.ndarray:
    """
    Resize an image by ``scale`` in both dimensions.

    Args:
        image: Frame as (H, W, C) array
        scale: Scale factor, must be positive
        interpolation: One of INTERPOLATION_FLAGS

    Returns:
        A new array of size (round(H*scale), round(W*scale))
    """
    if scale == 1.0:
        return image.copy()

    height, width = image.shape[:2]
    new_size = (max(1, int(round(width * scale))), max(1, int(round(height * scale))))
    return cv2.resize(image, new_size, interpolation=INTERPOLATION_FLAGS[interpolation])


class FrameStoreBuilder:
    """
    Build a FrameStore from a frame source.
    """

    def __init__(
        self,
        superres: float = 2.3,
        interpolation: str = "lanczos",
        progress: Optional[ProgressReporter] = None,
    ):
        if not isinstance(superres, (int, float)) or not math.isfinite(superres) or superres <= 0:
            raise ValueError(f"superres must be a positive number, got {superres!r}")
        if interpolation not in INTERPOLATION_FLAGS:
            raise ValueError(f"Unknown interpolation: {interpolation}")
        if superres < 1.0:
            logger.warning(f"superres={superres} < 1 downsamples every frame")

        self.superres = float(superres)
        self.interpolation = interpolation
        self.progress = progress or ProgressReporter()
        self.attempts = 0

    def build(self, source: FrameSource) -> FrameStore:
        """
        Drain an opened source into a new FrameStore.

        Invalid frames are skipped but still count as attempts for
        progress. The container frame count only feeds the progress
        total; the store holds exactly the valid frames seen.

        Args:
            source: An opened FrameSource

        Returns:
            FrameStore, possibly empty
        """
        store = FrameStore()
        expected = source.info.frame_count if source.info is not None else None

        attempts = 0
        skipped = 0
        try:
            self.progress.report(attempts, expected)

            while True:
                decoded = source.read()
                if decoded is None:
                    break

                attempts += 1
                if not decoded.valid:
                    skipped += 1
                    logger.debug(f"Skipping invalid frame at attempt {decoded.index}")
                else:
                    # resample() never returns the decoder's buffer
                    store._adopt(resample(decoded.image, self.superres, self.interpolation))

                total = expected if expected is not None and expected >= attempts else None
                self.progress.report(attempts, total)

            self.attempts = attempts
            self.progress.report(attempts, attempts)
        finally:
            self.progress.close()

        if skipped:
            logger.info(f"Extracted {len(store)} frames ({skipped} invalid frames skipped)")
        else:
            logger.info(f"Extracted {len(store)} frames")
        if expected is not None and expected != attempts:
            logger.debug(f"Container advertised {expected} frames, decoded {attempts}")

        return store

    def extract(self, source: FrameSource, video_path: Union[str, Path]) -> FrameStore:
        """Open ``video_path`` on ``source``, build the store and close the source."""
        try:
            info = source.open(video_path)
            if self.superres != 1.0:
                logger.info(
                    f"Upsampling {info.width}x{info.height} frames by {self.superres:g} "
                    f"({self.interpolation})"
                )
            return self.build(source)
        finally:
            source.close()


def extract_frames(
    video_path: Union[str, Path],
    superres: float = 2.3,
    interpolation: str = "lanczos",
    source: Optional[FrameSource] = None,
    progress: Optional[ProgressReporter] = None,
) -> FrameStore:
    """
    Extract every valid frame of a video into a FrameStore.

    Args:
        video_path: Path to video file
        superres: Upsampling factor applied to each frame
        interpolation: Resampling kernel name
        source: Decoding backend (defaults to OpenCVFrameSource)
        progress: Optional progress reporter

    Returns:
        FrameStore with the valid frames in decode order
    """
    builder = FrameStoreBuilder(superres=superres, interpolation=interpolation, progress=progress)
    return builder.extract(source or OpenCVFrameSource(), video_path)
