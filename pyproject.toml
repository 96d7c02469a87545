[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "grindscale"
version = "0.1.0"
description = "Grind-by-weight coffee scale controller with weight history, persistent settings, a grinding state machine and screen layout, runnable against a simulated load cell"
requires-python = ">=3.10"
dependencies = []
keywords = ["coffee", "grinder", "scale", "load cell", "grind-by-weight", "simulation"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering :: Instrument Drivers",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
grindscale = "grindscale.app:main"

[tool.hatch.build.targets.wheel]
packages = ["grindscale"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
