[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rukpak"
version = "0.1.0"
description = "Bundle API models, CRD upgrade safety checks, registry+v1 to plain bundle conversion and bundle archiving"
requires-python = ">=3.10"
keywords = ["kubernetes", "operators", "bundles", "crd", "olm"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Software Distribution",
]
dependencies = [
    "pyyaml",
    "jsonschema",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
rukpak-unpack = "rukpak.unpack:main"

[tool.hatch.build.targets.wheel]
packages = ["rukpak"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
