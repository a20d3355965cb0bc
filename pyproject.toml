[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ulogsink"
version = "0.1.0"
description = "Output sinks for netfilter packet and flow logs: text, JSON, syslog, Graphite, IPFIX, pcap and SQLite"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "netfilter",
    "ulog",
    "logging",
    "ipfix",
    "pcap",
    "graphite",
    "syslog",
    "sqlite",
    "firewall",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking :: Monitoring",
    "Topic :: System :: Logging",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["ulogsink"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 88
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
