"""
ClusterEvo

This package provides the geometry engine and structure-aware genetic
operators of an evolutionary search for low-energy molecular clusters:
- Cartesian, Z-matrix and rigid-body (COM + Euler) molecular coordinates
- Kearsley rigid alignment and radius-based bond/collision/dissociation detection
- Graph-based directed mutation (grid, continuous and water-specific placement)
- Merging phenotype crossover with rigid re-docking of the exchanged halves
"""

__version__ = "1.0.0"

__author__ = "Marco Foscato"

# Import main classes for easier access
from .Geometry import (Atom, BondInfo, BondType, CartesianCoordinates, Environment,
                       Geometry, GeometryError, Molecule)
from .ZMatrix import ZMatrix
from .CoordinateConversion import (cartesian_to_geometry, geometry_to_cartesian,
                                   zmatrix_to_cartesian)
from .RigidAlignment import AlignmentError, kearsley_align
from .DirectedMutation import DirMutStrategy, DirectedMutation
from .MergeCrossover import CuttingPlaneMode, MergeCrossover
from .EnergyModel import NONCONVERGED_ENERGY, OpenMMEnergyModel
from .LocalOptimizer import RigidBodyRelaxer
from . import IOTools

__all__ = [
    'Atom',
    'BondInfo',
    'BondType',
    'CartesianCoordinates',
    'Environment',
    'Geometry',
    'GeometryError',
    'Molecule',
    'ZMatrix',
    'cartesian_to_geometry',
    'geometry_to_cartesian',
    'zmatrix_to_cartesian',
    'AlignmentError',
    'kearsley_align',
    'DirMutStrategy',
    'DirectedMutation',
    'CuttingPlaneMode',
    'MergeCrossover',
    'NONCONVERGED_ENERGY',
    'OpenMMEnergyModel',
    'RigidBodyRelaxer',
    'IOTools',
]
