"""Setup script for Snap Sync."""

from setuptools import setup, find_packages

setup(
    name="snap-sync",
    version="1.0.0",
    description="Uploads Frigate snapshots and recording clips to local folders and SFTP servers",
    long_description=open("README.md", encoding="utf-8").read(),
    long_description_content_type="text/markdown",
    author="Snap Sync contributors",
    python_requires=">=3.11",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "paho-mqtt>=2.0.0",
        "paramiko>=3.2.0",
        "requests>=2.31.0",
        "Pillow>=10.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "snap-sync=snap_sync.__main__:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: No Input/Output (Daemon)",
        "Intended Audience :: System Administrators",
        "Operating System :: POSIX :: Linux",
        "Operating System :: MacOS :: MacOS X",
        "Operating System :: Microsoft :: Windows",
        "Programming Language :: Python :: 3",
        "Topic :: Multimedia :: Video",
        "Topic :: System :: Archiving :: Backup",
    ],
)
