[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "strfrylib"
version = "0.1.0"
description = "Nostr relay building blocks: packed events, filters, subscriptions, live monitors, in-memory index scans and a websocket client"
requires-python = ">=3.10"
keywords = ["nostr", "relay", "filters", "subscriptions", "websocket", "zstd"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet",
]
dependencies = [
    "zstandard",
    "websocket-client",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["strfrylib"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
