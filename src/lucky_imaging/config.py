"""
Configuration management for the lucky imaging pipeline.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional
import math

import yaml


INTERPOLATIONS = ("nearest", "linear", "cubic", "lanczos")


class ConfigError(ValueError):
    """Raised when a configuration value is outside its valid range."""


@dataclass
class ExtractionConfig:
    """Frame extraction configuration."""

    superres: float = 2.3  # Upsampling factor applied to every frame
    interpolation: Literal["nearest", "linear", "cubic", "lanczos"] = "lanczos"


@dataclass
class CoaddConfig:
    """Coaddition configuration."""

    # Reserved for a "combine only N frames" policy; currently ignored
    nframes: Optional[int] = None
    num_workers: int = 1


@dataclass
class SharpenConfig:
    """Unsharp mask configuration."""

    enabled: bool = True
    kernel_size: int = 5
    sigma: float = 3.0
    amount: Optional[float] = None  # None couples strength to sigma
    threshold: float = 0.0


@dataclass
class OutputConfig:
    """Output configuration."""

    output_dir: Path = field(default_factory=lambda: Path("output"))
    save_coadd: bool = False
    final_format: Literal["png", "tiff", "jpg"] = "png"
    bit_depth: Literal[8, 16] = 8


@dataclass
class Config:
    """Main configuration container."""

    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    coadd: CoaddConfig = field(default_factory=CoaddConfig)
    sharpen: SharpenConfig = field(default_factory=SharpenConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    verbose: bool = True

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load configuration from YAML file."""
        with open(path, "r") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Could not parse {path}: {e}") from e
        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: dict) -> "Config":
        """Create Config from dictionary."""
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration must be a mapping, got {type(data).__name__}")

        config = cls()

        for section in ("extraction", "coadd", "sharpen", "output"):
            if section in data and not isinstance(data[section], dict):
                raise ConfigError(f"Configuration section {section!r} must be a mapping")

        try:
            if "extraction" in data:
                config.extraction = ExtractionConfig(**data["extraction"])
            if "coadd" in data:
                config.coadd = CoaddConfig(**data["coadd"])
            if "sharpen" in data:
                config.sharpen = SharpenConfig(**data["sharpen"])
            if "output" in data:
                out_data = dict(data["output"])
                if "output_dir" in out_data:
                    out_data["output_dir"] = Path(out_data["output_dir"])
                config.output = OutputConfig(**out_data)
        except TypeError as e:
            raise ConfigError(f"Invalid configuration section: {e}") from e

        config.verbose = data.get("verbose", True)

        return config

    def to_yaml(self, path: Path) -> None:
        """Save configuration to YAML file."""
        import dataclasses

        def convert(obj):
            if dataclasses.is_dataclass(obj):
                return convert(dataclasses.asdict(obj))
            elif isinstance(obj, dict):
                return {k: convert(v) for k, v in obj.items()}
            elif isinstance(obj, Path):
                return str(obj)
            return obj

        data = convert(self)
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def validate(self) -> "Config":
        """
        Check every numeric parameter before any video is touched.

        Returns:
            self, so calls can be chained

        Raises:
            ConfigError: on the first invalid value found
        """
        superres = self.extraction.superres
        if not _is_number(superres) or superres <= 0:
            raise ConfigError(f"superres must be a positive number, got {superres!r}")
        if self.extraction.interpolation not in INTERPOLATIONS:
            raise ConfigError(
                f"Unknown interpolation {self.extraction.interpolation!r}, "
                f"expected one of {', '.join(INTERPOLATIONS)}"
            )

        nframes = self.coadd.nframes
        if nframes is not None and (not _is_int(nframes) or nframes < 1):
            raise ConfigError(f"nframes must be a positive integer, got {nframes!r}")
        if not _is_int(self.coadd.num_workers) or self.coadd.num_workers < 1:
            raise ConfigError(f"num_workers must be a positive integer, got {self.coadd.num_workers!r}")

        sharpen = self.sharpen
        if not isinstance(sharpen.enabled, bool):
            raise ConfigError(f"sharpen.enabled must be true or false, got {sharpen.enabled!r}")
        if not _is_int(sharpen.kernel_size) or sharpen.kernel_size < 1:
            raise ConfigError(f"kernel_size must be a positive integer, got {sharpen.kernel_size!r}")
        if not _is_number(sharpen.sigma) or sharpen.sigma < 0:
            raise ConfigError(f"sigma must be a non-negative number, got {sharpen.sigma!r}")
        if sharpen.amount is not None and not _is_number(sharpen.amount):
            raise ConfigError(f"amount must be a number, got {sharpen.amount!r}")
        if not _is_number(sharpen.threshold) or sharpen.threshold < 0:
            raise ConfigError(f"threshold must be a non-negative number, got {sharpen.threshold!r}")

        if not isinstance(self.output.save_coadd, bool):
            raise ConfigError(f"save_coadd must be true or false, got {self.output.save_coadd!r}")
        if self.output.final_format not in ("png", "tiff", "jpg"):
            raise ConfigError(f"Unknown output format {self.output.final_format!r}")
        if not _is_int(self.output.bit_depth) or self.output.bit_depth not in (8, 16):
            raise ConfigError(f"bit_depth must be 8 or 16, got {self.output.bit_depth}")
        if self.output.final_format == "jpg" and self.output.bit_depth != 8:
            raise ConfigError("JPEG output only supports 8-bit images")

        return self


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )
