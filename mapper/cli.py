from __future__ import annotations

import argparse
import os
import sys
from typing import List, Optional, Sequence, Tuple

from common.config import Settings, load_config
from common.errors import ConfigurationError, StageError
from common.logging_setup import get_logger, setup_logging
from common.types import CameraRig, Frame
from common.utils import parse_pair
from dense_pcl.stereo import PointCloudProducer
from dsm.surface import SurfaceFuser
from grid_map.publisher import RasterPublisher
from grid_map.raster import GeoRaster
from mapper.pipeline import MappingPipeline
from mapper_io.calibration import load_camera_rig
from mapper_io.images import build_frames, load_images, load_images_from_prefix
from mapper_io.poses import load_poses
from ortho.backward_grid import OrthoCompositor


log = get_logger("mapper")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="mapper", description="Incremental DSM + orthomosaic mapper")
    ap.add_argument("--config", default="config/params.yaml", help="YAML config (missing file = defaults)")
    ap.add_argument("--mode", choices=["batch", "incremental"], help="Processing mode")
    ap.add_argument("--center", type=str, help="Grid centre easting,northing [m]")
    ap.add_argument("--delta", type=str, help="Grid extent delta_easting,delta_northing [m]")
    ap.add_argument("--resolution", type=float, help="Cell size [m]")
    ap.add_argument("--window", type=int, help="Frames per incremental pass")
    ap.add_argument("--stride", type=int, help="Use every n-th image for stereo pairs")
    ap.add_argument("--elevation-mode", choices=["dsm", "flat"], help="Elevation used by the orthomosaic")
    ap.add_argument("--flat-elevation", type=float, help="Flat elevation [m] (flat mode / DSM fallback)")
    ap.add_argument("--colored", action="store_true", default=None, help="RGB orthomosaic instead of grayscale")
    ap.add_argument("--matcher", choices=["bm", "sgbm"], help="Stereo matcher")
    ap.add_argument("--multi-threads", action="store_true", default=None, help="Enable worker pools")
    ap.add_argument("--point-cloud", type=str, help="Use this point cloud instead of stereo (batch only)")
    ap.add_argument("--serve", action="store_true", default=None, help="Serve the map over HTTP until stopped")
    ap.add_argument("--log-level", type=str, help="DEBUG/INFO/WARNING/ERROR")
    return ap


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Command-line values win over the YAML file."""
    try:
        if args.center:
            settings.grid.center_easting, settings.grid.center_northing = parse_pair(args.center)
        if args.delta:
            settings.grid.delta_easting, settings.grid.delta_northing = parse_pair(args.delta)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e
    if args.resolution is not None:
        settings.grid.resolution = args.resolution
    if args.mode:
        settings.pipeline.mode = args.mode
    if args.window is not None:
        settings.pipeline.window_size = args.window
    if args.stride is not None:
        settings.stereo.use_every_nth_image = args.stride
    if args.elevation_mode:
        settings.ortho.elevation_mode = args.elevation_mode
    if args.flat_elevation is not None:
        settings.ortho.flat_elevation_m = args.flat_elevation
    if args.colored:
        settings.ortho.colored = True
    if args.matcher:
        settings.stereo.matcher = args.matcher
    if args.multi_threads:
        settings.stereo.use_multi_threads = True
        settings.ortho.use_multi_threads = True
    if args.point_cloud:
        settings.io.point_cloud_filename = args.point_cloud
    if args.serve:
        settings.publish.serve = True
    if args.log_level:
        settings.logging.level = args.log_level
    return settings.validate()


def _resolve(settings: Settings, path: str) -> str:
    if not path or os.path.isabs(path) or not settings.io.data_directory:
        return path
    return os.path.join(settings.io.data_directory, path)


def load_inputs(settings: Settings) -> Tuple[CameraRig, List[Frame]]:
    """Calibration, poses and images; every failure here is a ConfigurationError."""
    io = settings.io
    if not io.filename_camera_rig:
        raise ConfigurationError("io.filename_camera_rig is not set")
    if not io.filename_poses:
        raise ConfigurationError("io.filename_poses is not set")

    rig = load_camera_rig(_resolve(settings, io.filename_camera_rig))
    rig.camera(io.camera_index)
    pose_set = load_poses(_resolve(settings, io.filename_poses), io.pose_format)
    colored = settings.ortho.colored
    if io.prefix_images:
        images = load_images_from_prefix(_resolve(settings, io.prefix_images), len(pose_set), colored, io.image_extension)
    elif pose_set.image_names:
        images = load_images(io.data_directory, pose_set.image_names, colored)
    else:
        raise ConfigurationError("no image source: set io.prefix_images or use a pose format with image names")

    names = pose_set.image_names or None
    frames = build_frames(pose_set.poses, images, camera_index=io.camera_index, names=names)
    log.info("Inputs loaded", extra={"extra": {"cameras": len(rig), "frames": len(frames)}})
    return rig, frames


def build_pipeline(settings: Settings, rig: CameraRig, publisher: Optional[RasterPublisher] = None) -> MappingPipeline:
    raster = GeoRaster(settings.grid, colored=settings.ortho.colored)
    return MappingPipeline(
        rig,
        raster,
        PointCloudProducer(rig, settings.stereo),
        SurfaceFuser(settings.dsm),
        OrthoCompositor(rig, settings.ortho),
        publisher=publisher if publisher is not None else RasterPublisher(settings.publish),
        settings=settings.pipeline,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = apply_overrides(load_config(args.config), args)
        setup_logging(settings.logging.level, settings.logging.file, force=True)
        rig, frames = load_inputs(settings)
        publisher = RasterPublisher(settings.publish)
        pipeline = build_pipeline(settings, rig, publisher)

        incremental = settings.pipeline.mode == "incremental"
        if incremental and settings.publish.serve:
            publisher.start_background()
        reports = pipeline.run(frames, point_cloud=settings.io.point_cloud_filename or None)
    except ConfigurationError as e:
        print(f"configuration error: {e}", file=sys.stderr)
        return 2
    except StageError as e:
        log.error("Run aborted", extra={"extra": {"stage": e.stage, "error": str(e)}})
        return 1

    log.info(
        "Run complete",
        extra={"extra": {"mode": settings.pipeline.mode, "passes": len(reports),
                         "published": pipeline.passes_published,
                         "failed": sum(1 for r in reports if not r.ok)}},
    )
    if settings.publish.serve:
        publisher.serve_until_shutdown()
        publisher.stop()
    return 0
