[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "nezhadash"
version = "0.1.0"
description = "Server-side building blocks for a host monitoring dashboard: DDNS updates, agent streams, notifications and service availability tracking."
requires-python = ">=3.10"
keywords = ["monitoring", "dashboard", "ddns", "webhook", "notification", "uptime"]
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
    "Topic :: System :: Monitoring",
    "Typing :: Typed",
]
dependencies = [
    "dnspython>=2.3",
    "requests>=2.28",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[tool.hatch.build.targets.wheel]
packages = ["nezhadash"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
