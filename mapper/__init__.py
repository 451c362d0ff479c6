"""
Mapper: incremental DSM + orthomosaic pipeline

Stages: PointCloudProducer -> SurfaceFuser -> OrthoCompositor -> publish,
all over one shared GeoRaster. Batch mode runs once over all frames;
incremental mode runs once per window of frames.

Entry point:
    python -m mapper --config config/params.yaml
"""
