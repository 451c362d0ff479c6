"""
Dense point clouds from posed images (rectified stereo, BM or SGBM), or from a
point-cloud file.
"""
from .stereo import PointCloudProducer

__all__ = ["PointCloudProducer"]
