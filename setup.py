import os
import re

from setuptools import find_packages, setup

here = os.path.abspath(os.path.dirname(__file__))

# The version is defined once, in the package itself
with open(os.path.join(here, "justls", "__init__.py"), encoding="utf-8") as f:
    version = re.search(r'^__version__ = "([^"]+)"', f.read(), re.M).group(1)

setup(
    name="justls",
    version=version,
    description="A language server for justfiles: go to definition and hover",
    python_requires=">=3.10",
    packages=find_packages(include=["justls", "justls.*"]),
    entry_points={
        "console_scripts": [
            "justls=justls.cli:main",
        ],
    },
    extras_require={
        "test": ["pytest"],
    },
)
