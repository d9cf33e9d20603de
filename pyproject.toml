[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "espflashkit"
version = "0.1.0"
description = "Host-side building blocks for loading firmware into ESP chips through their ROM bootloader"
requires-python = ">=3.10"
dependencies = []
keywords = ["esp32", "esp8266", "flasher", "bootloader", "firmware", "serial"]
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
    "Topic :: Software Development :: Embedded Systems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["espflashkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
