"""Setup script for tkey-random-generator."""

from setuptools import setup, find_packages
from pathlib import Path

here = Path(__file__).parent
readme = (here / "README.md").read_text() if (here / "README.md").exists() else ""

setup(
    name="tkey-random-generator",
    version="0.1.0",
    description="Fetch and verify signed true-random data from a Tillitis TKey",
    long_description=readme,
    long_description_content_type="text/markdown",
    license="GPL-2.0-only",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "pydantic>=2.0.0",
        "cryptography>=41.0.0",
        "pyserial>=3.5",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "tkey-random=tkey_random.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: GNU General Public License v2 (GPLv2)",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Security :: Cryptography",
        "Typing :: Typed",
    ],
    package_data={
        "tkey_random": ["py.typed", "app.bin"],
    },
)
