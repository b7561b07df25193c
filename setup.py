"""
Setup script for older pip versions.

Packaging metadata for bbo-cardplay lives in pyproject.toml.
"""

from setuptools import setup

# Flat module layout and console script are declared in pyproject.toml
setup()
