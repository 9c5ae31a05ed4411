[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "orbslam_core"
version = "0.1.0"
description = "Core geometry for feature-based visual SLAM: two-view initialization, frames, pose conversions, AR planes and dataset loaders."
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = [
    "slam",
    "visual-odometry",
    "computer-vision",
    "homography",
    "fundamental-matrix",
    "triangulation",
    "stereo",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering :: Image Processing",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["orbslam_core"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
