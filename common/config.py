"""
Run configuration.

Loaded from a YAML file (default: config/params.yaml) into typed sections. A
missing file yields the built-in defaults; unknown keys are rejected so typos
fail at startup instead of silently falling back.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, Optional, Type, TypeVar

import yaml

from common.errors import ConfigurationError


@dataclass
class GridSettings:
    center_easting: float = 0.0
    center_northing: float = 0.0
    delta_easting: float = 100.0     # full width [m]
    delta_northing: float = 100.0    # full height [m]
    resolution: float = 1.0          # [m/cell]

    def validate(self) -> None:
        if self.resolution <= 0:
            raise ConfigurationError("grid.resolution must be > 0")
        if self.delta_easting <= 0 or self.delta_northing <= 0:
            raise ConfigurationError("grid.delta_easting/delta_northing must be > 0")


@dataclass
class StereoSettings:
    use_every_nth_image: int = 1
    matcher: str = "bm"              # "bm" | "sgbm"
    num_disparities: int = 64
    block_size: int = 15
    min_disparity: int = 0
    uniqueness_ratio: int = 10
    texture_threshold: int = 10
    p1: int = 0                      # SGBM smoothness; 0 = derived from block_size
    p2: int = 0
    min_baseline_m: float = 0.05
    min_depth_m: float = 0.5
    max_depth_m: float = 1000.0
    pixel_step: int = 1
    use_multi_threads: bool = False
    max_workers: int = 4

    def validate(self) -> None:
        if self.use_every_nth_image < 1:
            raise ConfigurationError("stereo.use_every_nth_image must be >= 1")
        if self.matcher not in ("bm", "sgbm"):
            raise ConfigurationError(f"stereo.matcher must be 'bm' or 'sgbm', got {self.matcher!r}")
        if self.num_disparities <= 0 or self.num_disparities % 16 != 0:
            raise ConfigurationError("stereo.num_disparities must be a positive multiple of 16")
        if self.block_size < 1 or self.block_size % 2 == 0:
            raise ConfigurationError("stereo.block_size must be odd")
        if self.matcher == "bm" and self.block_size < 5:
            raise ConfigurationError("stereo.block_size must be >= 5 for block matching")
        if self.pixel_step < 1:
            raise ConfigurationError("stereo.pixel_step must be >= 1")
        if not 0 <= self.min_depth_m < self.max_depth_m:
            raise ConfigurationError("stereo depth range must satisfy 0 <= min_depth_m < max_depth_m")


@dataclass
class DsmSettings:
    fusion_rule: str = "max"

    def validate(self) -> None:
        if self.fusion_rule != "max":
            raise ConfigurationError(f"dsm.fusion_rule {self.fusion_rule!r} not supported (only 'max')")


@dataclass
class OrthoSettings:
    elevation_mode: str = "dsm"      # "dsm" | "flat"
    flat_elevation_m: float = 0.0
    colored: bool = False
    use_multi_threads: bool = False
    max_workers: int = 4
    rows_per_block: int = 64

    def validate(self) -> None:
        if self.elevation_mode not in ("dsm", "flat"):
            raise ConfigurationError(f"ortho.elevation_mode must be 'dsm' or 'flat', got {self.elevation_mode!r}")
        if self.rows_per_block < 1:
            raise ConfigurationError("ortho.rows_per_block must be >= 1")


@dataclass
class PipelineSettings:
    mode: str = "batch"              # "batch" | "incremental"
    window_size: int = 5

    def validate(self) -> None:
        if self.mode not in ("batch", "incremental"):
            raise ConfigurationError(f"pipeline.mode must be 'batch' or 'incremental', got {self.mode!r}")
        if self.window_size < 1:
            raise ConfigurationError("pipeline.window_size must be >= 1")


@dataclass
class IOSettings:
    data_directory: str = ""
    filename_poses: str = ""
    pose_format: str = "standard"
    prefix_images: str = ""
    image_extension: str = ".jpg"
    filename_camera_rig: str = ""
    point_cloud_filename: str = ""   # empty = generate from images
    camera_index: int = 0


@dataclass
class PublishSettings:
    serve: bool = False              # keep serving the last snapshot until stopped
    host: str = "127.0.0.1"
    port: int = 8000
    output_directory: str = ""       # export products on every publish when set
    orthomosaic_filename: str = "orthomosaic.jpg"
    save_geotiff: bool = False
    crs: Optional[str] = None


@dataclass
class LoggingSettings:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class Settings:
    grid: GridSettings = field(default_factory=GridSettings)
    stereo: StereoSettings = field(default_factory=StereoSettings)
    dsm: DsmSettings = field(default_factory=DsmSettings)
    ortho: OrthoSettings = field(default_factory=OrthoSettings)
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    io: IOSettings = field(default_factory=IOSettings)
    publish: PublishSettings = field(default_factory=PublishSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    def validate(self) -> "Settings":
        for f in fields(self):
            section = getattr(self, f.name)
            if hasattr(section, "validate"):
                section.validate()
        if self.pipeline.mode == "incremental" and self.io.point_cloud_filename:
            raise ConfigurationError("a point-cloud file can only be used in batch mode")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


T = TypeVar("T")


def _section(cls: Type[T], name: str, raw: Any) -> T:
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ConfigurationError(f"config section '{name}' must be a mapping")
    known = {f.name: f for f in fields(cls)}
    unknown = sorted(set(raw) - set(known))
    if unknown:
        raise ConfigurationError(f"unknown key(s) in '{name}': {', '.join(unknown)}")
    kwargs = {}
    for key, value in raw.items():
        default = getattr(cls(), key)
        if value is not None and isinstance(default, (int, float)) and not isinstance(default, bool):
            try:
                value = type(default)(value)
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"{name}.{key}: {e}") from e
        kwargs[key] = value
    return cls(**kwargs)


def settings_from_dict(raw: Optional[Dict[str, Any]]) -> Settings:
    raw = raw or {}
    if not isinstance(raw, dict):
        raise ConfigurationError("config root must be a mapping")
    known = {f.name: f for f in fields(Settings)}
    unknown = sorted(set(raw) - set(known))
    if unknown:
        raise ConfigurationError(f"unknown config section(s): {', '.join(unknown)}")
    kwargs = {}
    for name, f in known.items():
        section_cls = type(f.default_factory())  # type: ignore[misc]
        kwargs[name] = _section(section_cls, name, raw.get(name))
    return Settings(**kwargs)


def load_config(path: Optional[str] = "config/params.yaml") -> Settings:
    """
    Read a YAML config. A missing file returns defaults; an unreadable or
    malformed one raises ConfigurationError.
    """
    if not path or not Path(path).exists():
        return Settings()
    try:
        with open(path, "r") as f:
            raw = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"cannot read config {path}: {e}") from e
    return settings_from_dict(raw)
