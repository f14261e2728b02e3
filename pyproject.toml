[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "nix2container"
version = "0.1.0"
description = "Generate container image descriptions and reproducible layers from Nix store paths"
requires-python = ">=3.10"
dependencies = []
keywords = ["nix", "container", "oci", "image", "layers", "tar"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Software Distribution",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
nix2container = "nix2container.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["nix2container"]

[tool.pytest.ini_options]
addopts = "-ra"
