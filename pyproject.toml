[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "urunc"
version = "0.1.0"
description = "Runtime helpers for unikernel containers: log forwarding, CLI utilities and tap-based network setup"
requires-python = ">=3.10"
dependencies = []
keywords = ["unikernel", "container", "oci", "runtime", "tap", "networking"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Operating System Kernels :: Linux",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["urunc"]

[tool.hatch.build.targets.sdist]
include = ["urunc", "tests", "README.md"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
