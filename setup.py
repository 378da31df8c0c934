"""
MediLink Tracker Setup Configuration

Makes the MediLink emergency tracker installable as a Python package.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read the README file
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

# Read requirements
requirements_file = Path(__file__).parent / "requirements.txt"
requirements = []
if requirements_file.exists():
    requirements = [
        line.strip()
        for line in requirements_file.read_text(encoding="utf-8").splitlines()
        if line.strip() and not line.startswith("#")
    ]

setup(
    name="medilink-tracker",
    version="1.0.0",
    description="Live emergency response tracking for the MediLink healthcare portal",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="MediLink Team",
    license="MIT",

    # Package discovery
    packages=find_packages(include=["medilink", "medilink.*"]),

    # Dependencies
    install_requires=requirements or [
        "aiohttp>=3.9.0",
        "PyYAML>=6.0",
        "structlog>=23.1.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "hypothesis>=6.90.0",
        ],
    },

    # Python version requirement
    python_requires=">=3.10",

    # Entry points
    entry_points={
        "console_scripts": [
            "medilink-tracker=medilink.main:run",
        ],
    },

    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Healthcare Industry",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Scientific/Engineering :: Medical Science Apps.",
    ],

    keywords="healthcare emergency ambulance tracking",
)
