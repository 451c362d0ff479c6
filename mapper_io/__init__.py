"""
Input/output adapters

- calibration.py: YAML camera rig (multi-camera `cameras:` list or one flat camera)
- poses.py: pose files (Standard, StandardNamed, COLMAP images.txt, Pix4D OPK)
- images.py: images by prefix+count or by filename list, paired with poses as Frames
- point_cloud.py: literal point sets (.txt/.xyz/.csv/.pts, ASCII .ply, .npy)

All loaders raise ConfigurationError on missing or malformed inputs.
"""
