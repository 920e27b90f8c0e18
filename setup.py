#!/usr/bin/env python3
"""
Setup script for the WebSocket relay and signaling server
"""

from setuptools import setup, find_namespace_packages

setup(
    name="relay-signal",
    version="0.1.0",
    description="Real-time WebSocket message relay and WebRTC signaling server",
    packages=find_namespace_packages(include=["server", "server.*", "shared", "shared.*", "client", "client.*"]),
    install_requires=[
        "websockets>=15.0,<16",
        "click>=8.1.7",
        "typer>=0.12.3",
        "rich>=13.9.2",
        "PyYAML>=6.0.1",
        "psutil>=5.9.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.4.2",
            "pytest-asyncio>=1.2.0",
        ],
    },
    python_requires=">=3.10",
    entry_points={
        'console_scripts': [
            'relay-server=server.cli:main',
            'relay-client=client.relay_cli:main',
        ],
    },
)
