[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ipvsproxy"
version = "0.1.0"
description = "Building blocks for an IPVS service proxy: service and endpoint modelling, IPVS service management, and iptables hairpin and masquerade rules"
requires-python = ">=3.10"
dependencies = []
keywords = ["ipvs", "lvs", "ipvsadm", "iptables", "kubernetes", "service-proxy", "load-balancing", "dsr"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["ipvsproxy"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
