[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cpusampler"
version = "0.1.0"
description = "A sampling CPU profiler for Python programs with folded-stack and pprof output."
requires-python = ">=3.10"
dependencies = []
keywords = ["profiler", "sampling", "cpu", "pprof", "flamegraph", "sigprof"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Debuggers",
    "Topic :: System :: Benchmark",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["cpusampler"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
