[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "flexwave"
version = "0.1.0"
description = "FreeDV waveform client for Flex 6000/8000 series radios: SmartSDR control protocol, VITA-49 audio streaming and 8/24 kHz resampling"
requires-python = ">=3.10"
dependencies = []
keywords = ["flexradio", "smartsdr", "vita-49", "freedv", "waveform", "ham radio", "sdr"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Telecommunications Industry",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: Ham Radio",
    "Topic :: Multimedia :: Sound/Audio",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["flexwave"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
