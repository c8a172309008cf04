[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rtspmux"
version = "0.1.0"
description = "RTSP interleaved channel mapping, AVC to Annex B conversion and a streaming .mp4 writer"
requires-python = ">=3.10"
dependencies = []
keywords = ["rtsp", "rtp", "rtcp", "mp4", "h264", "annexb", "bmff"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Multimedia :: Video",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["rtspmux"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
