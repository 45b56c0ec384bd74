#!/usr/bin/env python3
"""
Shared builders for the unit tests: small synthetic clusters and a
deterministic numpy pair potential standing in for the OpenMM energy model.
"""

import sys
from pathlib import Path

import numpy as np

# Add parent directory to path for package imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from clusterevo.AtomicProperties import get_masses
from clusterevo.CoordinateConversion import center_of_mass
from clusterevo.Geometry import Geometry, Molecule


# Water monomer, COM close to the origin, H atoms in the yz plane
WATER_ELEMENTS = ['O', 'H', 'H']
WATER_FRAME = np.array([
    [0.0, 0.0, 0.0656],
    [0.0, 0.7572, -0.5207],
    [0.0, -0.7572, -0.5207],
])


def centered(xyz, elements):
    """Shift a block to its center of mass."""
    return xyz - center_of_mass(xyz, get_masses(elements))


def water(com=(0.0, 0.0, 0.0), eulers=(0.0, 0.0, 0.0)) -> Molecule:
    frame = centered(WATER_FRAME, WATER_ELEMENTS)
    return Molecule(WATER_ELEMENTS, frame, com=com, eulers=eulers)


def atom(element: str, position) -> Molecule:
    return Molecule([element], np.zeros((1, 3)), com=position)


def argon_cluster(positions) -> Geometry:
    return Geometry([atom('Ar', p) for p in positions])


def water_triangle_with_stray(side: float = 2.8, stray=(0.0, 0.0, 20.0)) -> Geometry:
    """
    Three waters on an equilateral triangle in the xy plane, H atoms pointing
    away from the triangle center, plus one distant water.
    """
    radius = side / np.sqrt(3.0)
    molecules = []
    for k in range(3):
        angle = 2.0 * np.pi * k / 3.0
        com = (radius * np.cos(angle), radius * np.sin(angle), 0.0)
        # rotate the monomer so that its H atoms point radially outwards
        frame = np.array([[-0.0656, 0.0, 0.0],
                          [0.5207, 0.0, 0.7572],
                          [0.5207, 0.0, -0.7572]])
        c, s = np.cos(angle), np.sin(angle)
        rot = np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])
        xyz = (rot @ frame.T).T
        molecules.append(Molecule(WATER_ELEMENTS, centered(xyz, WATER_ELEMENTS), com=com))
    molecules.append(water(com=stray))
    return Geometry(molecules)


class PairPotential:
    """
    Lennard-Jones between atoms of different molecules.

    Provides the energy(cartesian, bonds) / energy_and_forces(cartesian)
    interface of the OpenMM energy model.
    """

    def __init__(self, sigma: float = 3.4, epsilon: float = 0.24):
        self.sigma = sigma
        self.epsilon = epsilon
        self.n_calls = 0

    def energy(self, cartesian, bonds=None) -> float:
        return self.energy_and_forces(cartesian)[0]

    def energy_and_forces(self, cartesian):
        self.n_calls += 1
        xyz = cartesian.xyz
        mol_idx = cartesian.molecule_index()
        diff = xyz[:, np.newaxis, :] - xyz[np.newaxis, :, :]
        r2 = np.einsum('ijk,ijk->ij', diff, diff)
        inter = mol_idx[:, np.newaxis] != mol_idx[np.newaxis, :]
        r2 = np.where(inter, r2, 1.0)
        sr6 = (self.sigma * self.sigma / r2) ** 3
        pair = np.where(inter, 4.0 * self.epsilon * (sr6 * sr6 - sr6), 0.0)
        coef = np.where(inter, 24.0 * self.epsilon * (2.0 * sr6 * sr6 - sr6) / r2, 0.0)
        forces = np.einsum('ij,ijk->ik', coef, diff)
        return 0.5 * float(pair.sum()), forces
