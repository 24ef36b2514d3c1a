[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lvmdkit"
version = "0.1.0"
description = "LVM volume management: lvm command runner and report parsing, volume object model, device classes, a logical volume service and admission hooks for capacity-aware scheduling"
requires-python = ">=3.10"
dependencies = []
keywords = ["lvm", "storage", "logical-volume", "thin-provisioning", "kubernetes", "admission-webhook"]
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
    "Topic :: System :: Filesystems",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["lvmdkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
