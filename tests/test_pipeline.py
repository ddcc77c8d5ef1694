from pathlib import Path

import cv2
import numpy as np
import pytest

from lucky_imaging.config import Config
from lucky_imaging.frame_source import (
    MemoryFrameSource,
    OpenCVFrameSource,
    VideoOpenError,
    VideoSourceError,
)
from lucky_imaging.frame_store import extract_frames
from lucky_imaging.pipeline import Pipeline
from lucky_imaging.progress import ProgressReporter


def ramp_frames(count: int = 10, height: int = 6, width: int = 8) -> list[np.ndarray]:
    return [np.full((height, width, 3), 10 * i, dtype=np.uint8) for i in range(count)]


def make_config(tmp_path: Path, **sharpen) -> Config:
    config = Config()
    config.extraction.superres = 1.0
    config.sharpen.kernel_size = sharpen.get("kernel_size", 1)
    config.sharpen.sigma = sharpen.get("sigma", 0.0)
    config.output.output_dir = tmp_path / "output"
    config.verbose = False
    return config


def make_pipeline(config: Config, frames) -> Pipeline:
    return Pipeline(
        config,
        source_factory=lambda: MemoryFrameSource(frames),
        progress_factory=lambda stage: ProgressReporter(),
    )


def write_test_video(path: Path, frames: list[np.ndarray], fps: float = 10.0) -> Path:
    height, width = frames[0].shape[:2]
    writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*"MJPG"), fps, (width, height))
    if not writer.isOpened():
        pytest.skip("OpenCV cannot write MJPG video in this environment")
    try:
        for frame in frames:
            writer.write(frame)
    finally:
        writer.release()
    return path


def test_end_to_end_ramp(tmp_path):
    pipeline = make_pipeline(make_config(tmp_path), ramp_frames())

    result = pipeline.process("ramp.avi", save=False)

    assert result.success
    assert result.num_frames == 10
    assert result.num_attempted_frames == 10
    assert result.coadded.dtype == np.float64
    np.testing.assert_allclose(result.coadded, 45.0, atol=1e-6)
    assert result.sharpened.dtype == np.uint8
    assert result.sharpened.shape == (6, 8, 3)
    assert np.all(result.sharpened == 45)
    assert result.output_path is None


def test_end_to_end_saves_outputs(tmp_path):
    config = make_config(tmp_path, kernel_size=5, sigma=3.0)
    config.output.save_coadd = True
    pipeline = make_pipeline(config, ramp_frames())

    result = pipeline.process(Path("videos") / "jupiter.avi")

    assert result.output_path == tmp_path / "output" / "jupiter_lucky.png"
    assert result.output_path.exists()
    assert result.coadd_path == tmp_path / "output" / "jupiter_coadd.png"
    saved = cv2.imread(str(result.output_path))
    assert saved.shape == (6, 8, 3)
    assert np.all(saved == 45)


def test_superres_applies_to_pipeline_output(tmp_path):
    config = make_config(tmp_path)
    config.extraction.superres = 2.0
    pipeline = make_pipeline(config, ramp_frames(count=3))

    result = pipeline.process("small.avi", save=False)

    assert result.coadded.shape == (12, 16, 3)
    np.testing.assert_allclose(result.coadded, 10.0, atol=1e-6)


def test_sharpening_can_be_disabled(tmp_path):
    config = make_config(tmp_path, kernel_size=5, sigma=80.0)
    config.sharpen.enabled = False
    frames = [np.random.default_rng(0).integers(0, 256, (6, 8, 3), dtype=np.uint8)]

    result = make_pipeline(config, frames).process("one.avi", save=False)

    np.testing.assert_array_equal(result.sharpened, frames[0])


def test_empty_video_produces_no_image(tmp_path):
    pipeline = make_pipeline(make_config(tmp_path), [None, None])

    result = pipeline.process("broken.avi")

    assert not result.success
    assert result.coadded is None
    assert result.sharpened is None
    assert result.num_frames == 0
    assert result.num_attempted_frames == 2
    assert not (tmp_path / "output").exists()


class PickySource(MemoryFrameSource):
    def open(self, path="<memory>"):
        if Path(path).name == "bad.avi":
            raise VideoOpenError(path, "Invalid data found when processing input")
        return super().open(path)


def test_process_many_continues_after_failure(tmp_path):
    pipeline = Pipeline(
        make_config(tmp_path),
        source_factory=lambda: PickySource(ramp_frames(count=2)),
        progress_factory=lambda stage: ProgressReporter(),
    )

    results, failures = pipeline.process_many(["a.avi", "bad.avi", "c.avi"], save=False)

    assert [r.video_path.name for r in results] == ["a.avi", "c.avi"]
    assert len(failures) == 1
    assert failures[0].path.name == "bad.avi"
    assert "bad.avi" in str(failures[0])


def test_pipeline_validates_config(tmp_path):
    config = make_config(tmp_path)
    config.extraction.superres = 0.0

    with pytest.raises(ValueError):
        Pipeline(config)


def test_opencv_source_extracts_and_upsamples(tmp_path):
    frames = [np.full((24, 32, 3), 40 * i, dtype=np.uint8) for i in range(5)]
    video = write_test_video(tmp_path / "clip.avi", frames)

    native = extract_frames(video, superres=1.0)
    upsampled = extract_frames(video, superres=2.0)

    assert len(native) == 5
    assert native.shape == (24, 32, 3)
    assert len(upsampled) == 5
    assert upsampled.shape == (48, 64, 3)


def test_opencv_source_reports_missing_file(tmp_path):
    missing = tmp_path / "missing.avi"

    with pytest.raises(VideoOpenError) as excinfo:
        extract_frames(missing, superres=1.0)

    assert "missing.avi" in str(excinfo.value)


def test_opencv_source_rejects_non_video(tmp_path):
    bogus = tmp_path / "notes.avi"
    bogus.write_text("this is not a video")

    with pytest.raises(VideoSourceError):
        OpenCVFrameSource().open(bogus)
