#!/usr/bin/env python
"""Setup script for comerws."""

from setuptools import setup, find_packages
from pathlib import Path

# Read the README file
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text()

setup(
    name="comerws",
    version="1.0.0",
    author="COMER web server developers",
    description="Backend of the COMER/COTHER protein homology search web service",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["comerws", "comerws.*"]),
    include_package_data=True,
    install_requires=[
        "click>=8.0.0",
        "pandas>=2.0",
        "biopython>=1.85",
        "pyyaml>=6.0",
        "psutil>=5.9",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.11",
    entry_points={
        "console_scripts": [
            "comerws-search=comerws.bin.comerws_cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Bio-Informatics",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
    ],
)
