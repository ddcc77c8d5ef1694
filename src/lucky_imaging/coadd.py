"""
Frame coaddition.

Averages every frame of a FrameStore in a float64 accumulator. The
result is left in floating point so later stages keep full precision;
``to_output_format`` performs the final narrowing.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Literal, Optional, Sequence, Union
import logging

import numpy as np

from .frame_store import FrameStore
from .progress import ProgressReporter


logger = logging.getLogger(__name__)


ACCUMULATOR_DTYPE = np.float64


class Coadder:
    """
    Average the frames of a FrameStore.
    """

    def __init__(
        self,
        num_workers: int = 1,
        progress: Optional[ProgressReporter] = None,
    ):
        if num_workers < 1:
            raise ValueError(f"num_workers must be at least 1, got {num_workers}")
        self.num_workers = num_workers
        self.progress = progress or ProgressReporter()

    def coadd(self, frames: Union[FrameStore, Sequence[np.ndarray]]) -> Optional[np.ndarray]:
        """
        Sum all frames and divide by their count.

        Each frame is widened to float64 before it is added, so 8-bit
        input never wraps no matter how many frames are summed.

        Args:
            frames: FrameStore or sequence of equally shaped frames

        Returns:
            float64 image with the frames' geometry, or None if there
            are no frames
        """
        nframes = len(frames)
        if nframes == 0:
            logger.warning("No frames to coadd")
            return None

        shape = frames[0].shape
        logger.info(f"Coadding {nframes} frames of shape {shape}")

        if self.num_workers == 1 or nframes < 2:
            accumulator = self._accumulate(frames, 0, nframes, nframes, shape)
        else:
            accumulator = self._accumulate_parallel(frames, nframes, shape)

        self.progress.report(nframes, nframes)
        self.progress.close()

        accumulator /= nframes
        return accumulator

    def _accumulate(
        self,
        frames,
        start: int,
        stop: int,
        total: int,
        shape: tuple,
        report: bool = True,
    ) -> np.ndarray:
        accumulator = np.zeros(shape, dtype=ACCUMULATOR_DTYPE)
        if report:
            self.progress.report(start, total)

        for i in range(start, stop):
            frame = frames[i]
            if frame.shape != shape:
                raise ValueError(f"Frame {i} has shape {frame.shape}, expected {shape}")
            accumulator += frame.astype(ACCUMULATOR_DTYPE)
            if report:
                self.progress.report(i + 1, total)

        return accumulator

    def _accumulate_parallel(self, frames, nframes: int, shape: tuple) -> np.ndarray:
        """Sum contiguous chunks into private accumulators, merged in chunk order."""
        workers = min(self.num_workers, nframes)
        bounds = np.linspace(0, nframes, workers + 1).astype(int)

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [
                executor.submit(self._accumulate, frames, start, stop, nframes, shape, False)
                for start, stop in zip(bounds[:-1], bounds[1:])
            ]
            accumulator = np.zeros(shape, dtype=ACCUMULATOR_DTYPE)
            done = 0
            self.progress.report(done, nframes)
            for (start, stop), future in zip(zip(bounds[:-1], bounds[1:]), futures):
                accumulator += future.result()
                done += stop - start
                self.progress.report(done, nframes)

        return accumulator


def coadd(
    frames: Union[FrameStore, Sequence[np.ndarray]],
    num_workers: int = 1,
    progress: Optional[ProgressReporter] = None,
) -> Optional[np.ndarray]:
    """Average ``frames``; returns None when there are none."""
    return Coadder(num_workers=num_workers, progress=progress).coadd(frames)


def to_output_format(image: np.ndarray, bit_depth: Literal[8, 16] = 8) -> np.ndarray:
    """
    Narrow a floating point image to an integer pixel format.

    Values are rounded to nearest and saturated at both ends of the
    output range.
    """
    if image is None:
        raise ValueError("No image to convert")

    if bit_depth == 8:
        return np.clip(np.rint(image), 0, 255).astype(np.uint8)
    elif bit_depth == 16:
        return np.clip(np.rint(image), 0, 65535).astype(np.uint16)
    raise ValueError(f"Unsupported bit depth: {bit_depth}")
