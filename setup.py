#!/usr/bin/env python3
"""
memcache-text Setup Script
==========================
Allows installation of the memcache-text package.

Usage:
    pip install -e .           # Development install
    pip install -e .[test]     # With test dependencies
    pip install .              # Regular install
"""

from setuptools import setup, find_packages

setup(
    name="memcache-text",
    version="1.0.0",
    description="asyncio client for the memcached text protocol",
    packages=find_packages(include=["memcache_text", "memcache_text.*"]),
    python_requires=">=3.10",
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    entry_points={
        "console_scripts": [
            "memcache-text=memcache_text.cli:main",
        ],
    },
)
