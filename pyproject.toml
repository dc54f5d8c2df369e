[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "fileswap"
version = "0.1.0"
description = "File-backed swap space with a page-file allocator and asynchronous I/O workers"
requires-python = ">=3.10"
dependencies = []
keywords = ["swap", "memory", "page file", "allocator", "asynchronous io"]
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
    "Topic :: System :: Operating System",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["fileswap"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
