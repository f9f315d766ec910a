[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kubeprobe"
version = "0.1.0"
description = "Kubernetes object caches, permission checks, discovery attributes, ingress annotation editing and background command actions"
requires-python = ">=3.10"
dependencies = []
keywords = ["kubernetes", "discovery", "permissions", "kubectl", "ingress"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["kubeprobe"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
