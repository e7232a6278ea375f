#/usr/bin/env python

""" Setup goftools.

Based on: https://python-packaging.readthedocs.io/en/latest/index.html
"""

# Always prefer setuptools over distutils
from setuptools import setup, find_packages
# To use a consistent encoding
from codecs import open
import os
from typing import Any, cast, Dict

def get_version() -> str:
    version_module: Dict[str, Any] = {}
    with open(os.path.join("goftools", "version.py")) as f:
        exec(f.read(), version_module)
    return cast(str, version_module["__version__"])

# Get the long description from the README file
here = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(here, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name = "goftools",
    version = get_version(),

    description = "Goodness-of-fit tests and toy studies for one dimensional models",
    long_description = long_description,
    long_description_content_type = "text/markdown",

    license = "BSD 3-Clause",

    # See https://pypi.python.org/pypi?%3Aaction=list_classifiers
    classifiers = [
        # How mature is this project? Common values are
        #   3 - Alpha
        #   4 - Beta
        #   5 - Production/Stable
        'Development Status :: 3 - Alpha',

        # Indicate who your project is intended for
        'Intended Audience :: Science/Research',

        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
    ],

    # What does your project relate to?
    keywords = 'HEP statistics goodness-of-fit',

    packages = find_packages(exclude=(".git", "tests", "tests.*")),
    python_requires = ">=3.8",

    # This is usually the minimal set of the required packages.
    install_requires = [
        "ruamel.yaml",
        "numpy",
        # trapezoid and cumulative_trapezoid are needed for the integration.
        "scipy>=1.6",
        # For the fitting of the model
        "iminuit>=2",
    ],

    # Include additional files
    include_package_data = True,
    package_data = {
        "goftools": ["py.typed"],
    },
    # Apparently this is required to be compatiable with mypy.
    # See: https://mypy.readthedocs.io/en/latest/installed_packages.html
    zip_safe = False,

    extras_require = {
        "tests": [
            "pytest",
            "pytest-cov",
            "pytest-mock",
        ],
        "dev": [
            "pre-commit",
            "flake8",
            # Makes flake8 easier to parse
            "flake8-colors",
            # Type checking
            "mypy",
        ]
    }
)
