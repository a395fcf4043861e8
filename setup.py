"""
audio-epistles setuptools build script.

Usage:
    # Development (editable install):
    pip install -e ".[test]"

    # Run once (cron/systemd timer):
    audio-epistles
"""

from setuptools import setup, find_namespace_packages

APP_NAME = "audio-epistles"

setup(
    name=APP_NAME,
    version="1.0.0",
    description="Publish the newest sermon from a YouTube playlist as a Spotify podcast episode",
    packages=find_namespace_packages(include=["epistles", "epistles.*"]),
    py_modules=["main"],
    install_requires=[
        "requests>=2.28.0",
        "selenium>=4.11.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            "audio-epistles=main:main",
        ],
    },
)
