from __future__ import annotations

import os
import threading
from typing import Optional

from common.config import PublishSettings
from common.logging_setup import get_logger
from common.utils import iso_now_ms
from grid_map.export import save_geotiff, save_orthomosaic_image
from grid_map.raster import GeoRaster, LAYER_ELEVATION, LAYER_ORTHO


log = get_logger("grid_map")


class RasterPublisher:
    """
    Hands raster snapshots to the outside world.

    - publish(snapshot): publish once. The latest snapshot replaces the
      previous one; optional file products are exported.
    - serve_until_shutdown(): publish repeatedly until externally stopped
      (blocking HTTP server over the latest snapshot).
    - start_background(): same server in a daemon thread, for incremental runs.

    Callers pass a snapshot (copy); the publisher never sees the live raster.
    """

    def __init__(self, settings: Optional[PublishSettings] = None):
        self.settings = settings or PublishSettings()
        self._lock = threading.Lock()
        self._latest: Optional[GeoRaster] = None
        self._count = 0
        self._published_at: Optional[str] = None
        self._server = None
        self._thread: Optional[threading.Thread] = None

    # -------- publish --------

    def publish(self, snapshot: GeoRaster) -> None:
        with self._lock:
            self._latest = snapshot
            self._count += 1
            self._published_at = iso_now_ms()
            count = self._count
        log.info("Raster published", extra={"extra": {"count": count, **snapshot.stats()}})
        if self.settings.output_directory:
            self._export(snapshot)

    @property
    def latest(self) -> Optional[GeoRaster]:
        with self._lock:
            return self._latest

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    def status(self) -> dict:
        with self._lock:
            return {"published": self._count, "published_at": self._published_at}

    def _export(self, snapshot: GeoRaster) -> None:
        out = self.settings.output_directory
        os.makedirs(out, exist_ok=True)
        if self.settings.orthomosaic_filename:
            save_orthomosaic_image(snapshot, os.path.join(out, self.settings.orthomosaic_filename))
        if self.settings.save_geotiff:
            save_geotiff(snapshot, LAYER_ELEVATION, os.path.join(out, "dsm.tif"), crs=self.settings.crs)
            save_geotiff(snapshot, LAYER_ORTHO, os.path.join(out, "ortho.tif"), crs=self.settings.crs)

    # -------- serving --------

    def _make_server(self, host: Optional[str], port: Optional[int]):
        import uvicorn

        from grid_map.server import create_app

        config = uvicorn.Config(
            create_app(self),
            host=host or self.settings.host,
            port=int(port or self.settings.port),
            log_level="warning",
        )
        return uvicorn.Server(config)

    def serve_until_shutdown(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """Block serving the latest snapshot until interrupted (Ctrl-C / SIGTERM)."""
        if self._thread is not None and self._thread.is_alive():
            log.info("Publishing until shutdown (background server)")
            self._thread.join()
            return
        server = self._make_server(host, port)
        log.info("Publishing until shutdown", extra={"extra": {"host": server.config.host, "port": server.config.port}})
        server.run()

    def start_background(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._server = self._make_server(host, port)
        self._thread = threading.Thread(target=self._server.run, name="raster-publisher", daemon=True)
        self._thread.start()
        log.info("Publisher server started", extra={"extra": {"host": self._server.config.host, "port": self._server.config.port}})

    def stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout=5.0)
        self._server = None
        self._thread = None
