"""
Setup script for photoindex
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README
readme_path = Path(__file__).parent / "README.md"
long_description = readme_path.read_text() if readme_path.exists() else ""

setup(
    name="photoindex",
    version="0.1.0",
    author="Sam",
    description="Duplicate detection, semantic search and safe deletion for personal photo libraries",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["photoindex", "photoindex.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: End Users/Desktop",
        "Topic :: Multimedia :: Graphics",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
    python_requires=">=3.8",
    install_requires=[
        "SQLAlchemy>=2.0.0",
        "numpy>=1.24.0",
        "Pillow>=10.0.0",
        "ImageHash>=4.3.1",
        "click>=8.1.0",
        "PyYAML>=6.0",
        "tqdm>=4.65.0",
        "colorlog>=6.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-cov>=4.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "photoindex=photoindex.cli.main:main",
        ],
    },
    include_package_data=True,
    package_data={
        "photoindex": ["config.yaml"],
    },
)
