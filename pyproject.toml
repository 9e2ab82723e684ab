[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "jobqueue"
version = "0.1.0"
description = "Background task queue with in-memory and Redis backends, worker threads, retries and dead-letter handling"
requires-python = ">=3.10"
keywords = ["queue", "tasks", "jobs", "redis", "worker", "background", "scheduler"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = [
    "redis",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["jobqueue"]

[tool.pytest.ini_options]
addopts = "-ra"
