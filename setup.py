#!/usr/bin/env python
"""Setup script for SRA2Mothur package.

Installs the sra2mothur package and the SRA2Mothur command. The external
tools it drives (SRA Toolkit, mothur) are not Python packages and must be
on PATH separately.
"""
from setuptools import setup
import os

# Get the directory containing this setup.py
here = os.path.abspath(os.path.dirname(__file__))

# Prepare data files
data_files = []

# Example run configuration
example_config = os.path.join(here, 'docs', 'example_config.json')
if os.path.exists(example_config):
    data_files.append(('share/SRA2Mothur/docs', ['docs/example_config.json']))

setup(
    name='SRA2Mothur',
    version='0.1.0',
    description='Rebuild mothur input and metadata tables for an SRA BioProject',
    packages=['sra2mothur'],
    python_requires='>=3.8',
    install_requires=[
        'biopython',
        'pandas',
        'numpy',
        'requests',
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'SRA2Mothur = sra2mothur.pipeline:main',
        ],
    },
    data_files=data_files,
)
