"""Core geometry, frames, two-view initialization, AR planes and dataset loading for visual SLAM."""

__version__ = "0.1.0"

__all__ = [
    "converter",
    "twoview",
    "initializer",
    "frame",
    "ar_plane",
    "sequences",
    "rgbd_stereo",
]