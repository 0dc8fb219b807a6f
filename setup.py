#!/usr/bin/env python3
"""
Packaging for msgrecover.

Installs the common and extraction packages plus the msgrecover.py script,
exposed as the ``msgrecover`` console command.

Development install: pip install -e ".[test]"
"""

from pathlib import Path
from setuptools import setup, find_packages

HERE = Path(__file__).parent


def read_requirements(name="requirements.txt"):
    """Requirement lines from requirements.txt, skipping comments and pip options."""
    path = HERE / name
    if not path.exists():
        return []
    lines = (line.strip() for line in path.read_text(encoding="utf-8").splitlines())
    return [line for line in lines if line and not line.startswith(("#", "-"))]


setup(
    name="msgrecover",
    version="0.1.0",
    description="Extraction, normalization and integrity diagnostics for chat.db message databases",
    packages=find_packages(include=["common", "common.*", "extraction", "extraction.*"]),
    py_modules=["msgrecover"],
    python_requires=">=3.9",
    install_requires=read_requirements(),
    extras_require={"test": ["pytest>=7.0"]},
    entry_points={"console_scripts": ["msgrecover=msgrecover:main"]},
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "Topic :: Communications :: Chat",
        "Topic :: System :: Archiving",
        "Programming Language :: Python :: 3 :: Only",
        "Operating System :: OS Independent",
    ],
    keywords="imessage chat.db typedstream attributedbody diagnostics",
)
