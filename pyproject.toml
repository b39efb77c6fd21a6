[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dexos"
version = "0.1.0"
description = "Simulated core of a small x86-64 kernel: early heap, physical and virtual memory managers, text console, block devices and small filesystems"
requires-python = ">=3.10"
dependencies = []
keywords = ["kernel", "memory-manager", "paging", "console", "block-device", "mbr", "exfat", "simulation"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Operating System Kernels",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["dexos"]

[tool.pytest.ini_options]
addopts = "-ra"
