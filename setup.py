# copyright ################################# #
# This file is part of the rfqfield Package.  #
# Copyright (c) CERN, 2025.                   #
# ########################################### #

from setuptools import setup, find_packages
from pathlib import Path

# read version
version_file = Path(__file__).parent / 'rfqfield/_version.py'
dd = {}
with open(version_file.absolute(), 'r') as fp:
    exec(fp.read(), dd)
__version__ = dd['__version__']

# read long_description
long_description = (Path(__file__).parent / "README.md").read_text()

# read requirements.txt for extras_require
with open('requirements.txt') as f:
    notebook_required = f.read().splitlines()

setup(
    name='rfqfield',
    version=__version__,
    description="Cell-by-cell electrostatic field map builder for Radio-Frequency Quadrupoles",
    long_description=long_description,
    long_description_content_type='text/markdown',
    license='Apache 2.0',
    packages=find_packages(exclude=['tests', 'tests.*', 'examples']),
    include_package_data=True,
    classifiers=[
        "Development Status :: 4 - Beta",
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Physics",
        ],
    install_requires=[
        'numpy',
        'scipy',
        'pyvista',
        'h5py',
        'tqdm',
        ],
    extras_require={
        'notebook': notebook_required,
        'test': ['pytest'],
        },
    tests_require=['pytest'],
    )
