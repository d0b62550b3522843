[build-system]
requires = ["setuptools>=61"]
build-backend = "setuptools.build_meta"

[project]
name = "monovo"
version = "0.1.0"
description = "Building blocks for semi-direct monocular visual odometry: camera models, patch alignment, map bookkeeping and homography decomposition"
requires-python = ">=3.10"
dependencies = ["numpy"]
keywords = ["visual odometry", "slam", "computer vision", "homography", "feature tracking"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Recognition",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.setuptools.packages.find]
include = ["monovo*"]

[tool.pytest.ini_options]
addopts = "-ra"
