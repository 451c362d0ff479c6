from __future__ import annotations

import json

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from grid_map.export import encode_layer_png, geotiff_bytes
from grid_map.raster import GeoRaster


def _metadata(raster: GeoRaster) -> dict:
    west, south, east, north = raster.bounds
    return {
        "origin_easting": raster.origin[0],
        "origin_northing": raster.origin[1],
        "resolution": raster.resolution,
        "width": raster.width,
        "height": raster.height,
        "bounds": {"west": west, "south": south, "east": east, "north": north},
        "layers": list(raster.layer_names),
        "colored": raster.colored,
    }


def create_app(publisher) -> FastAPI:
    """
    HTTP view of the most recently published snapshot.

        GET /health               liveness + publish counter
        GET /stats                raster statistics
        GET /metadata             georeferencing of the grid
        GET /layers/{name}.png    8-bit rendering of a layer
        GET /layers/{name}.tif    GeoTIFF of a layer
    """
    app = FastAPI(title="Incremental Mapper API", version="1.0.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    def _latest() -> GeoRaster:
        snap = publisher.latest
        if snap is None:
            raise HTTPException(status_code=404, detail="nothing_published")
        return snap

    def _checked_layer(snap: GeoRaster, name: str) -> str:
        if not snap.has_layer(name):
            raise HTTPException(status_code=404, detail=f"unknown_layer:{name}")
        return name

    @app.get("/health")
    def health():
        return {"status": "ok", **publisher.status()}

    @app.get("/stats")
    def stats():
        return {"raster": _latest().stats(), **publisher.status()}

    @app.get("/metadata")
    def metadata():
        return _metadata(_latest())

    @app.get("/layers/{name}.png")
    def layer_png(name: str):
        snap = _latest()
        data = encode_layer_png(snap, _checked_layer(snap, name))
        headers = {"X-Geo-Metadata": json.dumps(_metadata(snap)), "Cache-Control": "no-store"}
        return Response(content=data, media_type="image/png", headers=headers)

    @app.get("/layers/{name}.tif")
    def layer_tif(name: str):
        snap = _latest()
        data = geotiff_bytes(snap, _checked_layer(snap, name), crs=publisher.settings.crs)
        return Response(content=data, media_type="image/tiff", headers={"Cache-Control": "no-store"})

    return app
