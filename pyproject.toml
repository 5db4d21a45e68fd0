[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kernelcheck"
version = "0.1.0"
description = "Static checks for GPU kernels in textual LLVM IR: barrier divergence and redundant barriers"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "gpu",
    "kernel",
    "barrier",
    "divergence",
    "static-analysis",
    "constant-propagation",
    "llvm-ir",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Quality Assurance",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
kernelcheck = "kernelcheck.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["kernelcheck"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
