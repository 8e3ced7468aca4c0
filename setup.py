#!/usr/bin/env python3

# python setup.py sdist --format=zip,gztar

import os
import re
import sys

from setuptools import setup

if sys.version_info[:3] < (3, 9, 0):
    sys.exit("Error: walletdb requires Python version >= 3.9.0...")

with open('contrib/requirements/requirements.txt') as f:
    requirements = f.read().splitlines()

with open('contrib/requirements/requirements-pytest.txt') as f:
    requirements_pytest = f.read().splitlines()

with open(os.path.join('walletdb', 'version.py')) as f:
    version = re.search(r"^PACKAGE_VERSION = '([^']+)'", f.read(), re.M).group(1)

setup(
    name="walletdb",
    version=version,
    python_requires='>=3.9',
    install_requires=requirements,
    extras_require={
        'test': requirements_pytest,
    },
    packages=[
        'walletdb',
        'walletdb.tests',
    ],
    package_dir={
        'walletdb': 'walletdb'
    },
    description="Wallet record storage, recovery and backup rotation",
    license="MIT Licence",
    long_description="""Wallet record storage, recovery and backup rotation"""
)
