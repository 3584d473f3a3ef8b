"""Setup configuration for snapctl."""

from setuptools import setup, find_packages

setup(
    name="snapctl",
    version="1.0.0",
    description="Bulk VM snapshot creation and pruning for Proxmox VE",
    author="Your Name",
    packages=find_packages(exclude=["tests"]),
    install_requires=[
        "click>=8.1.7",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "requests>=2.31.0",
        "urllib3",
        "loguru>=0.7.0",
    ],
    extras_require={
        "test": ["pytest>=7.4"],
    },
    entry_points={
        "console_scripts": [
            "snapctl=snapctl.cli:cli",
        ],
    },
    python_requires=">=3.9",
)
