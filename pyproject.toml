[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "v6fs"
version = "0.1.0"
description = "A small Unix-style file system: image builder, buffer cache, redo log, inodes, directories, pipes and tools"
requires-python = ">=3.10"
dependencies = []
keywords = ["filesystem", "inode", "disk-image", "mkfs", "journaling", "unix"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Education",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
    "Topic :: Education",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
v6fs-mkfs = "v6fs.mkfs:main"
v6fs-grep = "v6fs.grep:main"
v6fs-tools = "v6fs.tools:main"

[tool.hatch.build.targets.wheel]
packages = ["v6fs"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 88
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
