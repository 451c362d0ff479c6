from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from common.config import PipelineSettings
from common.errors import ConfigurationError, StageError
from common.logging_setup import get_logger
from common.types import CameraRig, Frame, PointCloud
from common.utils import RateTimer, Stopwatch
from dense_pcl.stereo import PointCloudProducer
from dsm.surface import SurfaceFuser
from grid_map.raster import GeoRaster
from ortho.backward_grid import OrthoCompositor


log = get_logger("mapper")


class PipelineState(str, Enum):
    LOADING = "loading"
    ACCUMULATING = "accumulating"
    RECONSTRUCTING = "reconstructing"
    FUSING = "fusing"
    COMPOSITING = "compositing"
    PUBLISHING = "publishing"
    DONE = "done"            # batch run complete
    FINISHED = "finished"    # incremental input exhausted


class ProcessingWindow:
    """
    Frames accumulated since the last pass.

    add() returns True once the window holds `size` frames; drain() hands the
    frames over and clears the buffer. `consumed` counts every frame ever added.
    """

    def __init__(self, size: int):
        if size < 1:
            raise ConfigurationError("window size must be >= 1")
        self.size = int(size)
        self._frames: List[Frame] = []
        self.consumed = 0

    def add(self, frame: Frame) -> bool:
        if self.is_full:
            raise RuntimeError("window is full; drain it before adding frames")
        self._frames.append(frame)
        self.consumed += 1
        return self.is_full

    @property
    def is_full(self) -> bool:
        return len(self._frames) >= self.size

    @property
    def frames(self) -> List[Frame]:
        return list(self._frames)

    def drain(self) -> List[Frame]:
        out, self._frames = self._frames, []
        return out

    def __len__(self) -> int:
        return len(self._frames)


@dataclass
class PassReport:
    window: int
    frames: List[int] = field(default_factory=list)
    points: int = 0
    cells_fused: int = 0
    cells_composited: int = 0
    published: bool = False
    reconstruct_only: bool = False
    error: Optional[str] = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "window": self.window,
            "frames": list(self.frames),
            "points": self.points,
            "cells_fused": self.cells_fused,
            "cells_composited": self.cells_composited,
            "published": self.published,
            "reconstruct_only": self.reconstruct_only,
            "error": self.error,
            "duration_ms": round(self.duration_ms, 1),
        }


class MappingPipeline:
    """
    Drives reconstruction -> DSM fusion -> ortho compositing -> publish over
    one shared raster.

    Batch:        run_batch(frames) runs every stage once over all frames and
                  publishes once. A stage failure is fatal (StageError).
    Incremental:  consume(frame) accumulates into a ProcessingWindow; a full
                  window is drained and pushed through the stages, then the
                  raster is republished. Stereo pairing continues across
                  windows from the last selected frame of the previous one.
                  The first window is reconstructed but not fused or
                  published; its frames are composited with the second.
                  finish() drops a partial tail. A stage failure aborts only
                  the current pass.

    The raster is only written from the calling thread; the publisher receives
    a snapshot copy.
    """

    def __init__(
        self,
        rig: CameraRig,
        raster: GeoRaster,
        producer: PointCloudProducer,
        fuser: SurfaceFuser,
        compositor: OrthoCompositor,
        publisher=None,
        settings: Optional[PipelineSettings] = None,
    ):
        self.rig = rig
        self.raster = raster
        self.producer = producer
        self.fuser = fuser
        self.compositor = compositor
        self.publisher = publisher
        self.settings = settings or PipelineSettings()
        self.settings.validate()

        self.window = ProcessingWindow(self.settings.window_size)
        self.reports: List[PassReport] = []
        self.passes_published = 0
        self.tail_dropped = 0
        self._windows = 0
        self._drained = 0
        # last stride-selected frame, paired with the next window's first
        self._anchor: Optional[Frame] = None
        # reconstruct-only window, composited with the first publishing pass
        self._pending: List[Frame] = []
        self._rate = RateTimer(window=50)
        self._state = PipelineState.LOADING

    @property
    def state(self) -> PipelineState:
        return self._state

    # -------- dispatch --------

    def run(self, frames: Iterable[Frame], point_cloud: Union[PointCloud, str, None] = None) -> List[PassReport]:
        """Run in the configured mode."""
        if self.settings.mode == "batch":
            return [self.run_batch(frames, point_cloud)]
        if point_cloud is not None:
            raise ConfigurationError("a point-cloud file can only be used in batch mode")
        return self.run_incremental(frames)

    # -------- batch --------

    def run_batch(self, frames: Iterable[Frame], point_cloud: Union[PointCloud, str, None] = None) -> PassReport:
        self._state = PipelineState.LOADING
        frames = list(frames)
        if isinstance(point_cloud, str):
            point_cloud = self.producer.from_file(point_cloud)
        elif point_cloud is None:
            self.producer.validate(frames)

        self._windows += 1
        report = PassReport(window=self._windows, frames=[f.index for f in frames])
        log.info("Batch run started", extra={"extra": {"frames": len(frames), "point_cloud": point_cloud is not None}})
        failure: Optional[StageError] = None
        with Stopwatch() as sw:
            try:
                if point_cloud is None:
                    point_cloud = self._stage(PipelineState.RECONSTRUCTING, self.producer.reconstruct, frames)
                self._fuse_composite_publish(point_cloud, frames, report)
            except StageError as e:
                failure = e
        report.duration_ms = sw.ms
        self.reports.append(report)
        if failure is not None:
            report.error = str(failure)
            log.error("Batch run failed", extra={"extra": report.to_dict()})
            raise failure
        self._state = PipelineState.DONE
        log.info("Batch run done", extra={"extra": report.to_dict()})
        return report

    # -------- incremental --------

    def consume(self, frame: Frame) -> Optional[PassReport]:
        """Add one frame; runs a pass and returns its report when the window fills."""
        if self._state in (PipelineState.FINISHED, PipelineState.DONE):
            raise RuntimeError(f"pipeline already {self._state.value}")
        self.producer.validate([frame])
        self._state = PipelineState.ACCUMULATING
        log.debug("Frame consumed", extra={"extra": {**frame.to_meta(), "rate_hz": round(self._rate.tick(), 2)}})
        if not self.window.add(frame):
            return None
        return self._run_pass(self.window.drain())

    def finish(self) -> int:
        """End of input. Frames left in a partial window are dropped; returns their count."""
        tail = self.window.drain()
        self.tail_dropped = len(tail)
        if tail:
            log.info(
                "Dropping partial window at end of input",
                extra={"extra": {"frames": [f.index for f in tail], "window_size": self.window.size}},
            )
        self._state = PipelineState.FINISHED
        log.info(
            "Incremental run finished",
            extra={"extra": {"consumed": self.window.consumed, "windows": self._windows,
                             "published": self.passes_published, "dropped": self.tail_dropped}},
        )
        return self.tail_dropped

    def run_incremental(self, frames: Iterable[Frame]) -> List[PassReport]:
        frames = list(frames)
        self.producer.validate(frames)
        for frame in frames:
            self.consume(frame)
        self.finish()
        return list(self.reports)

    def _run_pass(self, frames: Sequence[Frame]) -> PassReport:
        self._windows += 1
        report = PassReport(window=self._windows, frames=[f.index for f in frames])
        # stride phase of this window within the whole stream
        offset = -self._drained % self.producer.settings.use_every_nth_image
        self._drained += len(frames)
        with Stopwatch() as sw:
            try:
                cloud = self._stage(
                    PipelineState.RECONSTRUCTING, self.producer.reconstruct, frames, self._anchor, offset
                )
                selected = self.producer.select(frames, offset)
                if selected:
                    self._anchor = selected[-1]
                report.points = len(cloud)
                if self._windows == 1:
                    # no earlier window to anchor against yet
                    report.reconstruct_only = True
                    self._pending = list(frames)
                else:
                    self._fuse_composite_publish(cloud, self._pending + list(frames), report)
                    self._pending = []
            except StageError as e:
                if e.stage == PipelineState.RECONSTRUCTING.value:
                    self._anchor = None
                report.error = str(e)
                log.error("Pass failed; continuing with next window", extra={"extra": {"window": report.window, "error": report.error}})
        report.duration_ms = sw.ms
        self.reports.append(report)
        self._state = PipelineState.ACCUMULATING
        log.info("Pass complete", extra={"extra": report.to_dict()})
        return report

    # -------- stages --------

    def _fuse_composite_publish(self, cloud: PointCloud, frames: Sequence[Frame], report: PassReport) -> None:
        report.points = len(cloud)
        fused = self._stage(PipelineState.FUSING, self.fuser.process, cloud, self.raster)
        report.cells_fused = fused.cells_touched
        composed = self._stage(PipelineState.COMPOSITING, self.compositor.process, frames, self.raster)
        report.cells_composited = composed.cells_updated
        self._stage(PipelineState.PUBLISHING, self._publish)
        report.published = True

    def _stage(self, state: PipelineState, fn: Callable, *args):
        self._state = state
        try:
            return fn(*args)
        except StageError:
            raise
        except Exception as e:
            raise StageError(state.value, f"{type(e).__name__}: {e}") from e

    def _publish(self) -> None:
        if self.publisher is not None:
            self.publisher.publish(self.raster.snapshot())
        self.passes_published += 1
