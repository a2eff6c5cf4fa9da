#!/usr/bin/env python3
"""
HetCompute
Heterogeneous numeric compute engine with scalar, multithreaded, SIMD and GPU backends.
"""

from setuptools import setup, find_packages
import os
import re
import sys

# Ensure Python 3.8+
if sys.version_info < (3, 8):
    raise RuntimeError("HetCompute requires Python 3.8 or later")

# Read version from __init__.py without importing the package
here = os.path.abspath(os.path.dirname(__file__))
version_file = os.path.join(here, "hetcompute", "__init__.py")
version = "0.1.0"
if os.path.exists(version_file):
    with open(version_file, encoding="utf-8") as f:
        match = re.search(r'^__version__ = "([^"]+)"', f.read(), re.MULTILINE)
        if match:
            version = match.group(1)

# Read README
readme_file = os.path.join(here, "README.md")
with open(readme_file, "r", encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="hetcompute",
    version=version,
    description="Heterogeneous numeric compute engine with CPU, SIMD and GPU backends",
    long_description=long_description,
    long_description_content_type="text/markdown",
    license="MIT",
    packages=find_packages(exclude=["tests", "tests.*", "benchmarks", "benchmarks.*"]),
    include_package_data=True,
    python_requires=">=3.8",
    install_requires=[
        "numpy>=1.24.0",
        "psutil>=5.9.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-cov>=4.1.0",
            "pytest-benchmark>=4.0.0",
            "black>=23.3.0",
            "flake8>=6.0.0",
            "mypy>=1.4.0",
            "isort>=5.12.0",
        ],
        "test": [
            "pytest>=7.4.0",
            "pytest-cov>=4.1.0",
        ],
        "gpu": [
            "pycuda>=2022.2",
            "pyopencl>=2023.1",
        ],
        "ml": [
            "torch>=2.0.0",
            "onnxruntime>=1.15.0",
            "tensorflow>=2.13.0",
            "tensorrt>=8.6.0",
        ],
        "all": [
            "pytest>=7.4.0", "pytest-cov>=4.1.0", "pytest-benchmark>=4.0.0",
            "black>=23.3.0", "flake8>=6.0.0", "mypy>=1.4.0", "isort>=5.12.0",
            "pycuda>=2022.2", "pyopencl>=2023.1", "tensorrt>=8.6.0",
            "torch>=2.0.0", "onnxruntime>=1.15.0", "tensorflow>=2.13.0",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Scientific/Engineering",
        "Topic :: Scientific/Engineering :: Mathematics",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
    keywords=[
        "numeric", "compute-engine", "simd", "gpu-computing", "multithreading",
        "linear-algebra", "fft", "statistics",
    ],
    zip_safe=False,
    platforms=["Windows", "Linux", "macOS"],
)
