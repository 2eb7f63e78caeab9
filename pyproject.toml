[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mongostore"
version = "0.1.0"
description = "Block-based storage server for crew logs and resource files, with sabotage detection and repair"
requires-python = ">=3.10"
dependencies = []
keywords = ["filesystem", "blocks", "bitmap", "superblock", "server", "fsck"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
mongostore = "mongostore.server:main"

[tool.hatch.build.targets.wheel]
packages = ["mongostore"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
