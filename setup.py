#!/usr/bin/env python3
"""
Setup script for ClusterEvo - geometry engine and genetic operators for cluster structure search.

Installation:
    pip install -e .                    # Development install
    pip install .                       # Regular install

Usage after installation:
    cluster-evo mutate -i cluster.xyz -p 3 3 3 -o mutated.xyz
    python -m clusterevo crossover -m mother.xyz -f father.xyz -p 3 3 3 -o child
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README for long description
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding='utf-8') if readme_file.exists() else ""

# Read requirements if exists
requirements_file = Path(__file__).parent / "requirements.txt"
if requirements_file.exists():
    requirements = [line.strip() for line in requirements_file.read_text().splitlines()
                   if line.strip() and not line.startswith('#')]
else:
    # Fallback: specify requirements directly
    requirements = [
        'numpy>=1.20.0',
        'scipy>=1.14.0',  # COBYQA
        'openmm>=7.7.0',
    ]

setup(
    name="clusterevo",
    version="1.0.0",
    description="Cluster geometry representation, directed mutation and merging crossover for evolutionary structure search",
    long_description=long_description,
    long_description_content_type="text/markdown",

    author="Marco Foscato",
    author_email="marco.foscato@uib.no",

    # Package configuration
    packages=find_packages(include=['clusterevo', 'clusterevo.*']),
    package_dir={'': '.'},

    # Dependencies
    install_requires=requirements,
    extras_require={
        'test': ['pytest'],
    },

    python_requires='>=3.10',

    # Entry points for command-line tools
    entry_points={
        'console_scripts': [
            'cluster-evo=clusterevo.__main__:main',
        ],
    },

    # Classifiers for PyPI
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Science/Research',
        'Topic :: Scientific/Engineering :: Chemistry',
        'Topic :: Scientific/Engineering :: Physics',
        'License :: OSI Approved :: GNU General Public License v3 (GPLv3)',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Programming Language :: Python :: 3.13',
    ],

    # Keywords for PyPI
    keywords='cluster-structure global-optimization genetic-algorithm directed-mutation crossover openmm chemistry',
)
