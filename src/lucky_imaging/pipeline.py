"""
Main processing pipeline for lucky imaging.

This module orchestrates the complete workflow from video input to a
sharpened coadd: frame extraction, coaddition, unsharp masking and
saving. Videos are processed one at a time, each independently.
"""

from pathlib import Path
from typing import Callable, Optional, Sequence, Union
from dataclasses import dataclass
import logging
import sys
import time

import numpy as np
import cv2

from .config import Config
from .frame_source import FrameSource, OpenCVFrameSource, VideoInfo, VideoSourceError
from .frame_store import FrameStoreBuilder
from .coadd import Coadder, to_output_format
from .sharpen import Sharpener
from .progress import LoggingProgress, ProgressReporter, TqdmProgress


logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Result of processing one video."""

    video_path: Path
    info: Optional[VideoInfo]
    coadded: Optional[np.ndarray]  # float64, not narrowed
    sharpened: Optional[np.ndarray]  # final output format; plain narrowed coadd when sharpening is off
    num_attempted_frames: int
    num_frames: int
    output_path: Optional[Path]
    coadd_path: Optional[Path]
    processing_time_seconds: float

    @property
    def success(self) -> bool:
        return self.coadded is not None


class Pipeline:
    """
    Complete processing pipeline for one or more videos.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        source_factory: Callable[[], FrameSource] = OpenCVFrameSource,
        progress_factory: Optional[Callable[[str], ProgressReporter]] = None,
    ):
        self.config = (config or Config()).validate()
        self.source_factory = source_factory
        self.progress_factory = progress_factory or self._default_progress
        self._setup_components()

    def _default_progress(self, stage: str) -> ProgressReporter:
        if not self.config.verbose:
            return ProgressReporter()
        if sys.stderr.isatty():
            return TqdmProgress(desc=stage)
        return LoggingProgress(desc=stage)

    def _setup_components(self) -> None:
        """Initialize the processing stages that hold no per-video state."""
        if self.config.coadd.nframes is not None:
            logger.debug(f"nframes={self.config.coadd.nframes} is reserved; all frames are combined")

        self.sharpener = Sharpener(self.config.sharpen, bit_depth=self.config.output.bit_depth)

    def process(
        self,
        video_path: Union[str, Path],
        output_path: Optional[Path] = None,
        save: bool = True,
    ) -> PipelineResult:
        """
        Process a video file through the complete pipeline.

        Args:
            video_path: Path to input video file
            output_path: Optional path for the output image
            save: Write results to disk

        Returns:
            PipelineResult; ``success`` is False when no valid frame was found

        Raises:
            VideoSourceError: the video could not be opened or decoded
        """
        start_time = time.time()
        video_path = Path(video_path)
        output_cfg = self.config.output

        if output_path is None:
            output_path = output_cfg.output_dir / f"{video_path.stem}_lucky.{output_cfg.final_format}"

        logger.info(f"Processing {video_path}")

        # Stage 1: Extract frames
        source = self.source_factory()
        builder = FrameStoreBuilder(
            superres=self.config.extraction.superres,
            interpolation=self.config.extraction.interpolation,
            progress=self.progress_factory("Extracting"),
        )
        store = builder.extract(source, video_path)
        info = source.info
        attempted = builder.attempts

        if store.is_empty:
            logger.warning(f"No valid frames in {video_path}, nothing to coadd")
            return PipelineResult(
                video_path=video_path,
                info=info,
                coadded=None,
                sharpened=None,
                num_attempted_frames=attempted,
                num_frames=0,
                output_path=None,
                coadd_path=None,
                processing_time_seconds=time.time() - start_time,
            )

        # Stage 2: Coadd
        coadder = Coadder(
            num_workers=self.config.coadd.num_workers,
            progress=self.progress_factory("Coadding"),
        )
        coadded = coadder.coadd(store)
        num_frames = len(store)
        del store

        # Stage 3: Sharpen
        if self.config.sharpen.enabled:
            final = self.sharpener.sharpen(coadded)
        else:
            final = to_output_format(coadded, output_cfg.bit_depth)

        # Stage 4: Save
        coadd_path = None
        if save:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            self._write_image(output_path, final)
            if output_cfg.save_coadd:
                coadd_path = output_path.with_name(f"{video_path.stem}_coadd{output_path.suffix}")
                self._write_image(coadd_path, to_output_format(coadded, output_cfg.bit_depth))
        else:
            output_path = None

        processing_time = time.time() - start_time
        logger.info(f"Processing complete in {processing_time:.1f}s")

        return PipelineResult(
            video_path=video_path,
            info=info,
            coadded=coadded,
            sharpened=final,
            num_attempted_frames=attempted,
            num_frames=num_frames,
            output_path=output_path,
            coadd_path=coadd_path,
            processing_time_seconds=processing_time,
        )

    def process_many(
        self,
        video_paths: Sequence[Union[str, Path]],
        save: bool = True,
    ) -> tuple[list[PipelineResult], list[VideoSourceError]]:
        """
        Process videos sequentially in the given order.

        A video that fails to open or decode is logged and recorded, and
        the remaining videos are still processed.

        Returns:
            (results of the videos that ran, input errors of those that did not)
        """
        results = []
        failures = []
        for video_path in video_paths:
            try:
                results.append(self.process(video_path, save=save))
            except VideoSourceError as e:
                logger.error(str(e))
                failures.append(e)
        return results, failures

    @staticmethod
    def _write_image(path: Path, image: np.ndarray) -> None:
        suffix = path.suffix.lower()
        if suffix in (".jpg", ".jpeg"):
            ok = cv2.imwrite(str(path), image, [cv2.IMWRITE_JPEG_QUALITY, 95])
        else:
            ok = cv2.imwrite(str(path), image)
        if not ok:
            raise RuntimeError(f"Could not write image: {path}")
        logger.info(f"Saved {path}")
