"""Describe container images and reproducible tar layers built from Nix store paths."""

__version__ = "0.1.0"