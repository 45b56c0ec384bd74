#!/usr/bin/env python3
"""
Atomic Properties

Element lookups used by the geometry engine. Atomic numbers and masses come
from OpenMM's element table; covalent radii (used for bond, collision and
dissociation detection) come from the table below.

Conventions:
    - Radii are returned in Angstrom
    - Masses are returned in dalton
    - Dummy atoms ('X', 'Du', '*') have atomic number 0, zero mass and the
      radius of a hydrogen atom
"""

from typing import List

import numpy as np
from openmm import unit
from openmm.app import Element


BOHR_TO_ANGSTROM = 0.52917721092
ANGSTROM_TO_BOHR = 1.0 / BOHR_TO_ANGSTROM

DUMMY_SYMBOLS = ('X', 'DU', '*')

# Radii in bohr, indexed by atomic number. Entries not listed fall back to
# _DEFAULT_RADIUS_BOHR.
_DEFAULT_RADIUS_BOHR = 5.0
_RADII_BOHR = {
    0: 0.47, 1: 0.47, 2: 0.53, 3: 2.42, 4: 1.81, 5: 1.59, 6: 1.32, 7: 1.23,
    8: 1.13, 9: 1.08, 10: 1.10, 11: 3.15, 12: 2.67, 13: 2.29, 14: 2.08,
    15: 2.02, 16: 1.89, 17: 1.89, 18: 1.85, 19: 3.19, 20: 3.29, 21: 3.21,
    22: 3.02, 23: 2.36, 24: 2.63, 25: 2.83, 26: 2.68, 27: 2.61, 28: 2.34,
    29: 2.55, 30: 2.31, 31: 2.31, 32: 2.31, 33: 2.25, 34: 2.28, 35: 2.28,
    36: 2.19, 37: 4.16, 38: 3.68, 39: 3.59, 40: 3.31, 41: 3.10, 42: 2.91,
    43: 2.78, 44: 2.76, 45: 2.68, 46: 2.63, 47: 2.74, 48: 2.72, 49: 2.68,
    50: 2.63, 51: 2.61, 52: 2.61, 53: 2.63, 54: 2.65, 55: 4.61, 56: 4.06,
    57: 3.91, 58: 3.86, 59: 3.84, 60: 3.80, 61: 3.76, 62: 3.74, 63: 3.74,
    64: 3.71, 65: 3.67, 66: 3.63, 67: 3.63, 68: 3.57, 69: 3.59, 70: 3.53,
    71: 3.53, 72: 3.31, 73: 3.21, 74: 2.55, 75: 2.85, 76: 2.72, 77: 2.66,
    78: 2.57, 79: 2.57, 80: 2.49, 81: 3.21, 82: 2.76, 83: 2.80, 84: 2.65,
    85: 2.83, 86: 2.83, 87: 4.91, 88: 4.18, 92: 3.70,
}


def is_dummy(element_symbol: str) -> bool:
    """Return True for dummy-atom symbols."""
    return element_symbol.strip().upper() in DUMMY_SYMBOLS


def get_atomic_number(element_symbol: str) -> int:
    """
    Get atomic number from element symbol.

    Parameters
    ----------
    element_symbol : str
        Element symbol (e.g., 'H', 'C', 'N'); case-insensitive

    Returns
    -------
    int
        Atomic number (0 for dummy atoms)

    Raises
    ------
    ValueError
        If the symbol is not a known element
    """
    if is_dummy(element_symbol):
        return 0
    try:
        return Element.getBySymbol(element_symbol.strip().capitalize()).atomic_number
    except KeyError:
        raise ValueError(f"Unknown element symbol: {element_symbol}")


def get_mass(element_symbol: str) -> float:
    """Atomic mass in dalton (0.0 for dummy atoms)."""
    if is_dummy(element_symbol):
        return 0.0
    try:
        elem = Element.getBySymbol(element_symbol.strip().capitalize())
    except KeyError:
        raise ValueError(f"Unknown element symbol: {element_symbol}")
    return elem.mass.value_in_unit(unit.dalton)


def get_radius(atomic_number: int) -> float:
    """Covalent radius in Angstrom for the given atomic number."""
    return _RADII_BOHR.get(int(atomic_number), _DEFAULT_RADIUS_BOHR) * BOHR_TO_ANGSTROM


def get_masses(elements: List[str]) -> np.ndarray:
    """Masses for a list of element symbols."""
    return np.array([get_mass(e) for e in elements], dtype=float)


def get_radii(atomic_numbers) -> np.ndarray:
    """Radii (Angstrom) for a sequence of atomic numbers."""
    return np.array([get_radius(z) for z in atomic_numbers], dtype=float)
