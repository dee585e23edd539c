[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "wire"
version = "0.1.0"
description = "Cluster node building blocks: on-disk snapshot store, header-byte TCP multiplexing, streaming gzip and byte-size formatting"
requires-python = ">=3.10"
keywords = ["raft", "snapshot", "cluster", "tcp", "multiplexer", "gzip", "humanize"]
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
    "Topic :: System :: Distributed Computing",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = [
    "psutil",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["wire"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
