[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "alumetkit"
version = "0.1.0"
description = "Measurement sources and outputs for resource and energy monitoring: CSV and InfluxDB outputs, cgroup v2, Kubernetes, OAR and Jetson INA sources, perf event names."
requires-python = ">=3.10"
dependencies = [
    "requests",
]
keywords = ["monitoring", "energy", "cgroup", "kubernetes", "influxdb", "csv", "perf", "jetson", "oar"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Science/Research",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["alumetkit"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
