[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "fdtkit"
version = "1.0.0"
description = "Flattened device tree tools: convert, dump, query and edit device tree blobs"
requires-python = ">=3.10"
dependencies = []
keywords = ["device tree", "fdt", "dtb", "embedded", "firmware", "boot"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Embedded Systems",
    "Topic :: Utilities",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
fdtkit-dtc = "fdtkit.cli:main"
fdtkit-dump = "fdtkit.fdtdump:main"
fdtkit-get = "fdtkit.fdtget:main"
fdtkit-put = "fdtkit.fdtput:main"

[tool.hatch.build.targets.wheel]
packages = ["fdtkit"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 88
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
