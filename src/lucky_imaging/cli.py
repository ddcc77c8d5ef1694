"""
Command-line interface for lucky imaging.
"""

import sys
from pathlib import Path
from typing import Optional
import logging

import click
import cv2
import numpy as np

from . import __version__
from .config import Config, ConfigError
from .frame_source import OpenCVFrameSource, VideoSourceError
from .pipeline import Pipeline
from .progress import format_message
from .sharpen import unsharp_mask


# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def _validate_superres(ctx, param, value):
    if value is not None and not value > 0:
        raise click.BadParameter("must be a positive number")
    return value


@click.group()
@click.version_option(version=__version__)
def main():
    """Lucky imaging - coadd and sharpen telescope video recordings."""
    pass


@main.command()
@click.option(
    "-v", "--videos",
    multiple=True,
    required=True,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Input video file; extra paths may follow, e.g. -v a.avi b.avi. (Required)"
)
@click.argument(
    "extra_videos",
    nargs=-1,
    type=click.Path(dir_okay=False, path_type=Path),
)
@click.option(
    "-n", "--nframes",
    type=click.IntRange(min=1),
    default=None,
    help="Number of frames to combine (reserved, all frames are currently used)"
)
@click.option(
    "-s", "--superres",
    type=float,
    default=None,
    callback=_validate_superres,
    help="Upsampling factor applied to every frame [default: 2.3]"
)
@click.option(
    "-c", "--config",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Configuration YAML file"
)
@click.option(
    "-o", "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Output directory (default: output)"
)
@click.option("--kernel-size", type=click.IntRange(min=1), help="Unsharp mask kernel size")
@click.option("--sigma", type=click.FloatRange(min=0), help="Unsharp mask blur sigma")
@click.option("--amount", type=float, help="Sharpening strength (default: 2*sigma/100)")
@click.option("--threshold", type=click.FloatRange(min=0), help="Low-contrast threshold")
@click.option("--workers", type=click.IntRange(min=1), help="Coaddition worker threads")
@click.option("--bit-depth", type=click.Choice(["8", "16"]), help="Output bits per channel")
@click.option(
    "--format", "final_format",
    type=click.Choice(["png", "tiff", "jpg"]),
    help="Output image format"
)
@click.option("--no-sharpen", is_flag=True, help="Save the plain coadd")
@click.option("--save-coadd", is_flag=True, help="Also save the unsharpened coadd")
@click.option("-q", "--quiet", is_flag=True, help="Hide progress bars")
@click.option("--verbose", is_flag=True, help="Enable debug logging")
def process(
    videos: tuple[Path, ...],
    extra_videos: tuple[Path, ...],
    nframes: Optional[int],
    superres: Optional[float],
    config: Optional[Path],
    output_dir: Optional[Path],
    kernel_size: Optional[int],
    sigma: Optional[float],
    amount: Optional[float],
    threshold: Optional[float],
    workers: Optional[int],
    bit_depth: Optional[str],
    final_format: Optional[str],
    no_sharpen: bool,
    save_coadd: bool,
    quiet: bool,
    verbose: bool,
):
    """
    Coadd and sharpen every frame of one or more videos.

    Videos are processed in the order given; paths after -v are added
    to the list. A video that cannot be opened is reported and skipped;
    the exit code is then 1.
    """
    ctx = click.get_current_context()
    videos = tuple(videos) + tuple(extra_videos)

    # Load or create config
    try:
        cfg = Config.from_yaml(config) if config else Config()
    except ConfigError as e:
        raise click.UsageError(str(e), ctx=ctx)

    # Apply command-line overrides
    overrides = [
        (cfg.extraction, "superres", superres),
        (cfg.coadd, "nframes", nframes),
        (cfg.coadd, "num_workers", workers),
        (cfg.sharpen, "kernel_size", kernel_size),
        (cfg.sharpen, "sigma", sigma),
        (cfg.sharpen, "amount", amount),
        (cfg.sharpen, "threshold", threshold),
        (cfg.output, "output_dir", output_dir),
        (cfg.output, "bit_depth", int(bit_depth) if bit_depth else None),
        (cfg.output, "final_format", final_format),
    ]
    for section, name, value in overrides:
        if value is not None:
            setattr(section, name, value)
    if no_sharpen:
        cfg.sharpen.enabled = False
    if save_coadd:
        cfg.output.save_coadd = True
    cfg.verbose = not quiet

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        pipeline = Pipeline(cfg)
    except ConfigError as e:
        raise click.UsageError(str(e), ctx=ctx)

    failures = 0
    for video_path in videos:
        click.echo(f"Processing: {video_path}")
        try:
            result = pipeline.process(video_path)
        except VideoSourceError as e:
            failures += 1
            click.echo(format_message(f"✗ {e}", "error"), err=True)
            continue
        except Exception as e:
            failures += 1
            click.echo(format_message(f"✗ Error processing {video_path}: {e}", "error"), err=True)
            if verbose:
                import traceback
                traceback.print_exc()
            continue

        if result.success:
            click.echo(format_message("✓ Processing complete!", "success"))
            click.echo(f"  Decoded frames: {result.num_attempted_frames}")
            click.echo(f"  Coadded frames: {result.num_frames}")
            click.echo(f"  Processing time: {result.processing_time_seconds:.1f}s")
            click.echo(f"  Output: {result.output_path}")
            if result.coadd_path:
                click.echo(f"  Coadd: {result.coadd_path}")
        else:
            click.echo(format_message(f"! No valid frames in {video_path}, no image produced", "warning"))

    if failures:
        click.echo(format_message(f"{failures} of {len(videos)} videos failed", "error"), err=True)
        sys.exit(1)


@main.command()
@click.argument("video_path", type=click.Path(dir_okay=False, path_type=Path))
def info(video_path: Path):
    """
    Show the metadata of a video file.
    """
    source = OpenCVFrameSource()
    try:
        video = source.open(video_path)
    except VideoSourceError as e:
        click.echo(format_message(f"✗ {e}", "error"), err=True)
        sys.exit(1)
    finally:
        source.close()

    frames = video.frame_count if video.frame_count is not None else "unknown"
    duration = frames / video.fps if video.frame_count and video.fps else None

    click.echo("Video info:")
    click.echo(f"  Resolution: {video.width}x{video.height}")
    click.echo(f"  FPS: {video.fps:.2f}")
    click.echo(f"  Codec: {video.codec}")
    click.echo(f"  Total frames: {frames}")
    if duration is not None:
        click.echo(f"  Duration: {duration:.1f}s")


@main.command()
@click.argument("image_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "-o", "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Output image path (default: <image>_sharp.<ext>)"
)
@click.option("--kernel-size", type=click.IntRange(min=1), default=5, show_default=True)
@click.option("--sigma", type=click.FloatRange(min=0), default=3.0, show_default=True)
@click.option("--amount", type=float, default=None, help="Sharpening strength (default: 2*sigma/100)")
@click.option("--threshold", type=click.FloatRange(min=0), default=0.0, show_default=True)
def sharpen(
    image_path: Path,
    output: Optional[Path],
    kernel_size: int,
    sigma: float,
    amount: Optional[float],
    threshold: float,
):
    """
    Apply the unsharp mask to a single image.
    """
    image = cv2.imread(str(image_path), cv2.IMREAD_UNCHANGED)
    if image is None:
        click.echo(format_message(f"Could not read image: {image_path}", "error"), err=True)
        sys.exit(1)

    bit_depth = 16 if image.dtype == np.uint16 else 8
    sharpened = unsharp_mask(
        image,
        kernel_size=kernel_size,
        sigma=sigma,
        amount=amount,
        threshold=threshold,
        bit_depth=bit_depth,
    )

    if output is None:
        output = image_path.with_name(f"{image_path.stem}_sharp{image_path.suffix}")
    if not cv2.imwrite(str(output), sharpened):
        click.echo(format_message(f"Could not write image: {output}", "error"), err=True)
        sys.exit(1)
    click.echo(f"Saved sharpened image: {output}")


@main.command()
@click.argument("output_path", type=click.Path(dir_okay=False, path_type=Path))
def init_config(output_path: Path):
    """
    Create a default configuration file.
    """
    cfg = Config()
    cfg.to_yaml(output_path)
    click.echo(f"Created configuration file: {output_path}")


if __name__ == "__main__":
    main()
