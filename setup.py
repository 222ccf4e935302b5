#!/usr/bin/env python3
"""
Setup script for the BarTender status bar client
"""

from setuptools import setup, find_namespace_packages

setup(
    name="bartender-client",
    version="0.1.0",
    description="Client for the BarTender status bar server (UDP handshake, heartbeats, status updates)",
    packages=find_namespace_packages(include=["client", "client.*", "shared", "shared.*"]),
    install_requires=[
        "typer>=0.12.3,<0.26",
        "rich>=13.9.2",
        "PyYAML>=6.0.1",
    ],
    extras_require={
        "test": [
            "pytest>=8.4.2",
        ],
    },
    python_requires=">=3.8",
    entry_points={
        'console_scripts': [
            'bartender-client=client.cli:main',
        ],
    },
)
