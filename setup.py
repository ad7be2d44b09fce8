#!/usr/bin/env python3
"""
Setup script for the scan launcher package.
"""
from setuptools import setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="scan-launcher",
    version="1.0.0",
    author="Scan Launcher Contributors",
    author_email="",
    description="Command line launcher that validates scan options and relays scanner status",
    long_description=long_description,
    long_description_content_type="text/markdown",
    py_modules=["cli", "launcher_config", "scan_dispatcher", "scan_options"],
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: System Administrators",
        "Topic :: System :: Systems Administration",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.8",
    install_requires=requirements,
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "scan-launcher=cli:main",
        ],
    },
    keywords="scanner launcher cli async status streaming",
)
