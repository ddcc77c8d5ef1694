"""
Lucky Imaging
=============

A Python library for lucky imaging of planets and other bright targets:
every usable frame of a telescope video is extracted, optionally
upsampled, averaged into one coadd and sharpened with an unsharp mask.

Main components:
- frame_source: Decoding backends behind an open/read/close interface
- frame_store: Extract valid frames into an in-memory frame store
- coadd: Average the stored frames in a float64 accumulator
- sharpen: Gaussian unsharp masking of the coadd
- progress: Progress reporters and message formatting
- pipeline: Orchestrate the complete per-video workflow
"""

__version__ = "0.1.0"

from .config import Config, ConfigError
from .frame_source import (
    FrameSource,
    OpenCVFrameSource,
    MemoryFrameSource,
    VideoInfo,
    DecodedFrame,
    VideoSourceError,
    VideoOpenError,
    NoVideoStreamError,
    UnsupportedCodecError,
)
from .frame_store import FrameStore, FrameStoreBuilder, extract_frames
from .coadd import Coadder, coadd, to_output_format
from .sharpen import Sharpener, unsharp_mask, normalize_kernel_size
from .pipeline import Pipeline, PipelineResult

__all__ = [
    "Config",
    "ConfigError",
    "FrameSource",
    "OpenCVFrameSource",
    "MemoryFrameSource",
    "VideoInfo",
    "DecodedFrame",
    "VideoSourceError",
    "VideoOpenError",
    "NoVideoStreamError",
    "UnsupportedCodecError",
    "FrameStore",
    "FrameStoreBuilder",
    "extract_frames",
    "Coadder",
    "coadd",
    "to_output_format",
    "Sharpener",
    "unsharp_mask",
    "normalize_kernel_size",
    "Pipeline",
    "PipelineResult",
    "__version__",
]
