[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pdfrelay"
version = "0.1.0"
description = "PDF processing through interchangeable command-line engines, with fallback, form handling, metrics and webhook delivery"
requires-python = ">=3.10"
keywords = ["pdf", "merge", "split", "flatten", "qpdf", "pdfcpu", "pdftk", "webhook", "metrics"]
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
    "Topic :: Office/Business",
]
dependencies = [
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[tool.hatch.build.targets.wheel]
packages = ["pdfrelay"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
