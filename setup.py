#!/usr/bin/env python3
"""
Setup configuration for spot-archiver
Keeps a personal, blacklist-aware copy of Spotify playlists curated by others
"""

from setuptools import setup, find_packages

# Read README for long description
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

# Core requirements (always installed)
core_requirements = [
    "spotipy>=2.22.1",
    "requests>=2.31.0",
    "click>=8.1.7",
    "rich-click>=1.7.0",
    "pyyaml>=6.0.1",
    "python-dotenv>=1.0.0",
    "colorama>=0.4.6",
    "APScheduler>=3.10.0,<4",
    "Pillow>=10.0.0",
]

setup(
    name="spot-archiver",
    version="1.0.0",
    author="spot-archiver contributors",
    description="Archive Spotify playlists into proxy copies that remember the tracks you removed",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["spot_archiver", "spot_archiver.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Environment :: No Input/Output (Daemon)",
        "Intended Audience :: End Users/Desktop",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Multimedia :: Sound/Audio",
    ],
    python_requires=">=3.10",
    install_requires=core_requirements,
    extras_require={
        "dev": [
            "pytest>=7.4.3",
            "black>=23.11.0",
            "flake8>=6.1.0",
            "mypy>=1.7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "spot-archiver=spot_archiver.cli:main",
        ],
    },
    keywords="spotify playlist archive sync blacklist cli",
)
