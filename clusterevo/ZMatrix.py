#!/usr/bin/env python3
"""
Z-Matrix Data Structure

This module provides the ZMatrix class holding the internal coordinates of a
flexible molecule.

Conventions:
    - Atom 0 has no internal coordinates
    - Atom 1 has a bond length only
    - Atom 2 has a bond length and a bond angle
    - Atom 3+: bond length, bond angle and dihedral
    - Every internal coordinate refers to previously placed atoms through an
      explicit connectivity index (0-based)
    - Bond lengths in Angstrom, angles and dihedrals in radians

Classes:
    ZMatrix: Encapsulates Z-matrix atoms
"""

import copy
from typing import List, Dict, Tuple

import numpy as np


class ZMatrix:
    """
    Encapsulates the Z-matrix of one molecule.

    Attributes
    ----------
    atoms : List[Dict]
        List of atom dictionaries containing Z-matrix data:
        - 'id': atom index (0-based)
        - 'element': element symbol
        - 'atomic_num': atomic number
        - 'bond_ref': reference atom for bond (atoms 1+)
        - 'bond_length': bond length in Angstrom (atoms 1+)
        - 'angle_ref': reference atom for angle (atoms 2+)
        - 'angle': bond angle in radians (atoms 2+)
        - 'dihedral_ref': reference atom for dihedral (atoms 3+)
        - 'dihedral': dihedral angle in radians (atoms 3+)

    Examples
    --------
    >>> zmat = ZMatrix(atoms=[...])
    >>> zmat[3][ZMatrix.FIELD_DIHEDRAL]
    >>> zmat.update_dof(3, 2, np.pi)
    """

    FIELD_ID = 'id'
    FIELD_ELEMENT = 'element'
    FIELD_ATOMIC_NUM = 'atomic_num'
    FIELD_BOND_REF = 'bond_ref'
    FIELD_BOND_LENGTH = 'bond_length'
    FIELD_ANGLE_REF = 'angle_ref'
    FIELD_ANGLE = 'angle'
    FIELD_DIHEDRAL_REF = 'dihedral_ref'
    FIELD_DIHEDRAL = 'dihedral'

    # DOF names mapping: 0=bond_length, 1=angle, 2=dihedral
    DOF_NAMES = [FIELD_BOND_LENGTH, FIELD_ANGLE, FIELD_DIHEDRAL]
    REF_NAMES = [FIELD_BOND_REF, FIELD_ANGLE_REF, FIELD_DIHEDRAL_REF]

    def __init__(self, atoms: List[Dict]):
        """
        Initialize Z-matrix from atom dictionaries.

        Parameters
        ----------
        atoms : List[Dict]
            List of atom dictionaries with Z-matrix data (0-based indices)

        Raises
        ------
        ValueError
            If atoms contain invalid data
        """
        self._atoms = copy.deepcopy(atoms)
        self._validate()

    def _validate(self) -> None:
        """Validate Z-matrix data integrity."""
        if not isinstance(self._atoms, list):
            raise ValueError("atoms must be a list")

        for i, atom in enumerate(self._atoms):
            if not isinstance(atom, dict):
                raise ValueError(f"Atom {i} must be a dictionary")
            if self.FIELD_ID in atom and atom[self.FIELD_ID] != i:
                raise ValueError(f"Atom {i} has inconsistent id: {atom[self.FIELD_ID]} (expected {i})")
            atom[self.FIELD_ID] = i

            # Atom i carries min(i, 3) internal coordinates
            for dof in range(min(i, 3)):
                ref_key = self.REF_NAMES[dof]
                dof_key = self.DOF_NAMES[dof]
                if ref_key not in atom or dof_key not in atom:
                    raise ValueError(f"Atom {i} is missing {ref_key}/{dof_key}")
                ref_idx = atom[ref_key]
                if not isinstance(ref_idx, (int, np.integer)):
                    raise ValueError(f"Atom {i} {ref_key} must be an integer")
                if ref_idx < 0 or ref_idx >= i:
                    raise ValueError(f"Atom {i} {ref_key} index {ref_idx} must refer to a previous atom")

            refs = [atom[self.REF_NAMES[dof]] for dof in range(min(i, 3))]
            if len(set(refs)) != len(refs):
                raise ValueError(f"Atom {i} uses the same reference atom twice: {refs}")

    def __len__(self) -> int:
        """Return number of atoms."""
        return len(self._atoms)

    def __getitem__(self, index: int) -> Dict:
        """Get atom dictionary by index (reference, not copy)."""
        return self._atoms[index]

    def __iter__(self):
        """Iterate over atoms."""
        return iter(self._atoms)

    def __repr__(self) -> str:
        """String representation."""
        return f"ZMatrix(n_atoms={len(self._atoms)})"

    @property
    def atoms(self) -> List[Dict]:
        """Get list of atoms (returns copy)."""
        return copy.deepcopy(self._atoms)

    def update_dof(self, atom_idx: int, dof_type: int, value: float):
        """
        Update a degree of freedom value.

        Parameters
        ----------
        atom_idx : int
            Atom index (0-based)
        dof_type : int
            Degree of freedom type: 0=bond_length, 1=angle, 2=dihedral
        value : float
            New value (Angstrom or radians)

        Raises
        ------
        IndexError
            If atom_idx is out of range
        ValueError
            If dof_type is invalid or the atom has no such DOF
        """
        dof_name = self._dof_name(atom_idx, dof_type)
        self._atoms[atom_idx][dof_name] = float(value)

    def get_dof(self, atom_idx: int, dof_type: int) -> float:
        """
        Get a degree of freedom value.

        Parameters
        ----------
        atom_idx : int
            Atom index (0-based)
        dof_type : int
            Degree of freedom type: 0=bond_length, 1=angle, 2=dihedral

        Returns
        -------
        float
            Value of the degree of freedom
        """
        dof_name = self._dof_name(atom_idx, dof_type)
        return self._atoms[atom_idx][dof_name]

    def _dof_name(self, atom_idx: int, dof_type: int) -> str:
        if atom_idx < 0 or atom_idx >= len(self._atoms):
            raise IndexError(f"Atom index {atom_idx} out of range [0, {len(self._atoms)-1}]")
        if dof_type < 0 or dof_type >= len(self.DOF_NAMES):
            raise ValueError(f"DOF type {dof_type} must be in [0, {len(self.DOF_NAMES)-1}]")
        dof_name = self.DOF_NAMES[dof_type]
        if dof_name not in self._atoms[atom_idx]:
            raise ValueError(f"Atom {atom_idx} does not have {dof_name}")
        return dof_name

    def get_connectivity(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Connectivity indices as three integer arrays (bond, angle, dihedral).

        Entries that do not exist for an atom (e.g., the bond reference of
        atom 0) are -1.
        """
        n = len(self._atoms)
        conns = np.full((3, n), -1, dtype=int)
        for i, atom in enumerate(self._atoms):
            for dof in range(min(i, 3)):
                conns[dof, i] = atom[self.REF_NAMES[dof]]
        return conns[0], conns[1], conns[2]

    def get_values(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Internal coordinate values as three float arrays (bonds, angles, dihedrals).

        Entries that do not exist for an atom are 0.0.
        """
        n = len(self._atoms)
        values = np.zeros((3, n))
        for i, atom in enumerate(self._atoms):
            for dof in range(min(i, 3)):
                values[dof, i] = atom[self.DOF_NAMES[dof]]
        return values[0], values[1], values[2]

    def copy(self) -> 'ZMatrix':
        """Create a deep copy of the Z-matrix."""
        return ZMatrix(self._atoms)

    def get_elements(self) -> List[str]:
        """Element symbols of all atoms."""
        return [atom[self.FIELD_ELEMENT] for atom in self._atoms]
