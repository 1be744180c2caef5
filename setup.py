#!/usr/bin/env python3
"""
Setup script for nas-mount

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU Affero General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU Affero General Public License for more details.

You should have received a copy of the GNU Affero General Public License
along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""

from setuptools import setup, find_namespace_packages

setup(
    name="nas-mount",
    version="0.1.0",
    description="Mount, persist and repair SMB and NFS shares from a NAS on Linux",
    package_dir={"": "src"},
    packages=find_namespace_packages(where="src", include=["nasmount", "nasmount.*"]),
    entry_points={
        "console_scripts": [
            "nas-mount=nasmount.__main__:main",
        ],
    },
    install_requires=[
        "distro>=1.5.0",  # For install hints on missing tools
        "tqdm>=4.60.0",   # For progress bars
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.8",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Environment :: Console",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: GNU Affero General Public License v3",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: System :: Filesystems",
        "Topic :: System :: Systems Administration",
    ],
)
