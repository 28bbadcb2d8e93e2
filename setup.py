#!/usr/bin/env python3
"""
Setup configuration for playlist-mirror
Mirror Spotify links shared in iMessage conversations into Spotify playlists
"""

from setuptools import setup, find_packages

# Read README for long description
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

# Core requirements (always installed)
core_requirements = [
    "spotipy>=2.22.1",
    "APScheduler>=3.10,<4",
    "click>=8.1.7",
    "rich-click>=1.7.0",
    "pyyaml>=6.0.1",
    "requests>=2.31.0",
    "colorama>=0.4.6",
    "python-dotenv>=1.0.0",
]

setup(
    name="playlist-mirror",
    version="0.1.0",
    author="playlist-mirror Team",
    description="Mirror Spotify links from iMessage conversations into playlists on a schedule or in real time",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["playlist_mirror", "playlist_mirror.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: End Users/Desktop",
        "License :: OSI Approved :: MIT License",
        "Operating System :: MacOS",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Multimedia :: Sound/Audio",
        "Topic :: Communications :: Chat",
    ],
    python_requires=">=3.10",
    install_requires=core_requirements,
    extras_require={
        "dev": [
            "pytest>=7.4.3",
        ],
    },
    entry_points={
        "console_scripts": [
            "playlist-mirror=playlist_mirror.cli:main",
        ],
    },
    keywords="spotify imessage playlist sync scheduler cli",
)
