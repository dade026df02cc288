[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "statsagent"
version = "0.1.0"
description = "Collection logic for a database statistics agent: host /proc statistics, disk I/O peaks, backend activity sampling and settings validation"
requires-python = ">=3.10"
dependencies = []
keywords = ["statistics", "monitoring", "database", "procfs", "diskstats"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database",
    "Topic :: System :: Monitoring",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["statsagent"]

[tool.pytest.ini_options]
addopts = "-ra"
