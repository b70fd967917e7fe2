[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pgpipe"
version = "0.1.0"
description = "Core of a pipelined asyncio PostgreSQL client: connection driver, rows, query results, COPY and transactions"
requires-python = ">=3.10"
dependencies = []
keywords = ["postgresql", "postgres", "database", "asyncio", "pipelining", "wire-protocol"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Framework :: AsyncIO",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database :: Front-Ends",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["pgpipe"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
