[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sdns"
version = "0.1.0"
description = "Building blocks for a privacy-focused DNS server: middleware chain, caches, blocklists, hosts file, EDNS handling, forwarding and an HTTP control API."
requires-python = ">=3.10"
keywords = ["dns", "dnssec", "blocklist", "edns", "middleware", "cache", "forwarder"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
]
dependencies = [
    "dnspython>=2.4",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[tool.hatch.build.targets.wheel]
packages = ["sdns"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
