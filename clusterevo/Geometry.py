#!/usr/bin/env python3
"""
Geometry Data Model

Value types for molecular clusters:

    - Atom: a single atom with its absolute position
    - Molecule: external (center of mass, Euler angles) and internal (reference
      frame, optional Z-matrix) degrees of freedom of one molecule
    - Environment: a fixed block of atoms surrounding the cluster
    - CartesianCoordinates: flat Cartesian representation of a whole cluster
    - BondInfo: symmetric tri-state bond table
    - Geometry: ordered molecules plus identity and fitness

Invariants:
    - the reference frame of a molecule is centered at its own center of mass
    - Euler angles are kept canonical (phi, psi in [-pi, pi], omega in
      [-pi/2, pi/2])
    - the sum of atoms per molecule equals the number of atoms
    - BondInfo is symmetric and its diagonal is UNCERTAIN
"""

import copy
import math
from enum import IntEnum
from typing import List, Optional, Sequence

import numpy as np

from .AtomicProperties import get_atomic_number, get_masses, get_radii
from .ZMatrix import ZMatrix


DEFAULT_BLOW_BONDS = 1.2


class GeometryError(ValueError):
    """Raised when a geometric invariant is violated."""


# =============================================================================
# Euler angle canonicalization
# =============================================================================

def sanitize_periodic(value: float, lower: float, upper: float, period: float) -> float:
    """
    Wrap a periodic value into [lower, upper].

    Values above the range are reflected in from the lower end, values below
    from the upper end. Values already in range are returned unchanged, which
    makes the operation idempotent.

    Raises
    ------
    ValueError
        If value is not finite
    """
    if not math.isfinite(value):
        raise ValueError(f"Cannot canonicalize non-finite angle {value}")
    if value > upper:
        return lower + abs(math.fmod(value - lower, period))
    if value < lower:
        return upper - abs(math.fmod(value + lower, period))
    return value


def sanitize_eulers(eulers: Sequence[float]) -> np.ndarray:
    """Canonicalize Euler angles (phi, omega, psi)."""
    return np.array([
        sanitize_periodic(float(eulers[0]), -math.pi, math.pi, 2.0 * math.pi),
        sanitize_periodic(float(eulers[1]), -0.5 * math.pi, 0.5 * math.pi, math.pi),
        sanitize_periodic(float(eulers[2]), -math.pi, math.pi, 2.0 * math.pi),
    ])


# =============================================================================
# Bond table
# =============================================================================

class BondType(IntEnum):
    """Tri-state entries of a bond table."""
    UNCERTAIN = -1
    NO_BOND = 0
    BONDED = 1


class BondInfo:
    """
    Symmetric N x N bond table with tri-state entries.

    Self-entries are always UNCERTAIN.
    """

    def __init__(self, n_atoms: int):
        self._table = np.full((n_atoms, n_atoms), BondType.NO_BOND, dtype=np.int8)
        np.fill_diagonal(self._table, BondType.UNCERTAIN)

    @classmethod
    def from_coordinates(cls, xyz: np.ndarray, atomic_numbers: Sequence[int],
                         blow_factor: float) -> 'BondInfo':
        """
        Radius-based bond detection.

        Atoms i and j are bonded when their squared distance does not exceed
        (blow_factor * (r_i + r_j))**2.

        Parameters
        ----------
        xyz : np.ndarray
            Nx3 coordinates in Angstrom
        atomic_numbers : Sequence[int]
            Atomic numbers of the N atoms
        blow_factor : float
            Scaling of the summed radii

        Returns
        -------
        BondInfo
        """
        xyz = np.asarray(xyz, dtype=float)
        radii = get_radii(atomic_numbers)
        diff = xyz[:, np.newaxis, :] - xyz[np.newaxis, :, :]
        dist_sq = np.einsum('ijk,ijk->ij', diff, diff)
        threshold = blow_factor * (radii[:, np.newaxis] + radii[np.newaxis, :])
        bonded = dist_sq <= threshold * threshold

        bonds = cls(len(xyz))
        bonds._table[bonded] = BondType.BONDED
        np.fill_diagonal(bonds._table, BondType.UNCERTAIN)
        return bonds

    @property
    def n_atoms(self) -> int:
        return self._table.shape[0]

    def set_bond(self, i: int, j: int, kind: BondType) -> None:
        """Set the entry for (i, j) and (j, i)."""
        if i == j:
            raise ValueError(f"Cannot set a bond of atom {i} to itself")
        self._table[i, j] = kind
        self._table[j, i] = kind

    def bond_type(self, i: int, j: int) -> BondType:
        return BondType(int(self._table[i, j]))

    def has_bond(self, i: int, j: int) -> bool:
        return self._table[i, j] == BondType.BONDED

    def bonded_matrix(self) -> np.ndarray:
        """Boolean matrix, True where the entry is BONDED."""
        return self._table == BondType.BONDED

    def as_array(self) -> np.ndarray:
        return self._table.copy()

    def is_symmetric(self) -> bool:
        return bool(np.array_equal(self._table, self._table.T))

    def copy(self) -> 'BondInfo':
        other = BondInfo(0)
        other._table = self._table.copy()
        return other

    def __repr__(self) -> str:
        n_bonds = int(np.count_nonzero(np.triu(self.bonded_matrix(), k=1)))
        return f"BondInfo(n_atoms={self.n_atoms}, n_bonds={n_bonds})"


# =============================================================================
# Atoms, molecules and environment
# =============================================================================

class Atom:
    """A single atom with an absolute position."""

    def __init__(self, element: str, position: Sequence[float],
                 charge: float = 0.0, spin: int = 0,
                 atomic_number: Optional[int] = None):
        self.element = element
        self.atomic_number = get_atomic_number(element) if atomic_number is None else int(atomic_number)
        self.charge = float(charge)
        self.spin = int(spin)
        self.position = np.array(position, dtype=float)

    def __repr__(self) -> str:
        x, y, z = self.position
        return f"Atom({self.element}, {x:.4f}, {y:.4f}, {z:.4f})"


class Molecule:
    """
    One molecule of a cluster.

    The absolute Cartesian coordinates of the molecule are
    ``R(eulers) @ reference + com`` for rigid molecules. Flexible molecules
    additionally carry a Z-matrix which is the authoritative description of
    their internal shape; the reference frame then only fixes the orientation.

    Attributes
    ----------
    elements : List[str]
        Element symbols
    atomic_numbers : np.ndarray
        Atomic numbers
    charges : np.ndarray
        Partial charges
    spins : np.ndarray
        Spins
    reference : np.ndarray
        Nx3 reference frame centered at the center of mass
    sid : str
        Molecular type identifier
    flexible : bool
        Whether the Z-matrix is used to build the internal coordinates
    zmatrix : Optional[ZMatrix]
        Internal coordinates (flexible molecules only)
    constraints : np.ndarray
        Per-atom constraint flags
    mol_id : int
        Slot index of the molecule in its geometry
    energy : float
        Cached energy of the molecule
    """

    def __init__(self, elements: List[str], reference: np.ndarray,
                 com: Sequence[float] = (0.0, 0.0, 0.0),
                 eulers: Sequence[float] = (0.0, 0.0, 0.0),
                 charges: Optional[Sequence[float]] = None,
                 spins: Optional[Sequence[int]] = None,
                 sid: str = "",
                 flexible: bool = False,
                 zmatrix: Optional[ZMatrix] = None,
                 constraints: Optional[Sequence[bool]] = None,
                 mol_id: int = 0,
                 energy: float = 0.0):
        n_atoms = len(elements)
        reference = np.array(reference, dtype=float).reshape(n_atoms, 3)
        if flexible and zmatrix is None and n_atoms > 1:
            raise GeometryError("A flexible molecule needs a Z-matrix")
        if zmatrix is not None and len(zmatrix) != n_atoms:
            raise GeometryError(f"Z-matrix has {len(zmatrix)} atoms, molecule has {n_atoms}")

        self.elements = list(elements)
        self.atomic_numbers = np.array([get_atomic_number(e) for e in elements], dtype=int)
        self.masses = get_masses(self.elements)
        self.charges = np.zeros(n_atoms) if charges is None else np.array(charges, dtype=float)
        self.spins = np.zeros(n_atoms, dtype=int) if spins is None else np.array(spins, dtype=int)
        self.constraints = np.zeros(n_atoms, dtype=bool) if constraints is None else np.array(constraints, dtype=bool)
        self.sid = sid if sid else "".join(self.elements)
        self.flexible = bool(flexible) and n_atoms > 1
        self.zmatrix = zmatrix
        self.mol_id = mol_id
        self.energy = energy
        self._com = np.array(com, dtype=float)
        self._eulers = sanitize_eulers(eulers)
        self.reference = reference

    @property
    def n_atoms(self) -> int:
        return len(self.elements)

    @property
    def com(self) -> np.ndarray:
        """Center of mass (copy)."""
        return self._com.copy()

    @com.setter
    def com(self, value: Sequence[float]):
        self._com = np.array(value, dtype=float)

    @property
    def eulers(self) -> np.ndarray:
        """Euler angles phi, omega, psi (copy)."""
        return self._eulers.copy()

    @eulers.setter
    def eulers(self, value: Sequence[float]):
        self._eulers = sanitize_eulers(value)

    def ext_coords(self) -> np.ndarray:
        """External coordinates: COM for single atoms, COM + Euler angles otherwise."""
        if self.n_atoms == 1:
            return self.com
        return np.concatenate([self._com, self._eulers])

    def set_ext_coords(self, point: Sequence[float]) -> None:
        """Set COM (and Euler angles if given)."""
        if len(point) not in (3, 6):
            raise ValueError(f"External coordinates must have 3 or 6 values, got {len(point)}")
        self.com = point[:3]
        if len(point) == 6 and self.n_atoms > 1:
            self.eulers = point[3:]

    def atoms(self, xyz: np.ndarray) -> List[Atom]:
        """Atoms of this molecule placed at the given absolute positions."""
        return [Atom(e, p, c, s, z) for e, p, c, s, z in
                zip(self.elements, xyz, self.charges, self.spins, self.atomic_numbers)]

    def copy(self) -> 'Molecule':
        return copy.deepcopy(self)

    def __repr__(self) -> str:
        return (f"Molecule(id={self.mol_id}, sid={self.sid!r}, n_atoms={self.n_atoms}, "
                f"flexible={self.flexible})")


class Environment:
    """
    Fixed block of atoms surrounding the cluster (e.g., a surface).

    The environment never moves; it is merged into the cluster's Cartesian
    coordinates for energy evaluation and collision detection.
    """

    def __init__(self, elements: List[str], xyz: np.ndarray,
                 charges: Optional[Sequence[float]] = None,
                 spins: Optional[Sequence[int]] = None):
        n_atoms = len(elements)
        self.elements = list(elements)
        self.atomic_numbers = np.array([get_atomic_number(e) for e in elements], dtype=int)
        self.xyz = np.array(xyz, dtype=float).reshape(n_atoms, 3)
        self.charges = np.zeros(n_atoms) if charges is None else np.array(charges, dtype=float)
        self.spins = np.zeros(n_atoms, dtype=int) if spins is None else np.array(spins, dtype=int)

    @property
    def n_atoms(self) -> int:
        return len(self.elements)

    def copy(self) -> 'Environment':
        return copy.deepcopy(self)


# =============================================================================
# Cartesian representation
# =============================================================================

class CartesianCoordinates:
    """
    Flat Cartesian representation of a cluster.

    Attributes
    ----------
    xyz : np.ndarray
        Nx3 positions in Angstrom
    elements : List[str]
        Element symbols
    atomic_numbers : np.ndarray
        Atomic numbers
    charges, spins : np.ndarray
        Per-atom charges and spins
    atoms_per_molecule : List[int]
        Partition of the atoms into molecules
    partial_energies : np.ndarray
        Per-molecule energies
    energy : float
        Total energy
    environment : Optional[Environment]
        Attached (not merged) environment
    n_environment_atoms : int
        Number of trailing atoms that belong to a merged environment
    """

    def __init__(self, xyz: np.ndarray, elements: List[str],
                 atoms_per_molecule: Sequence[int],
                 charges: Optional[Sequence[float]] = None,
                 spins: Optional[Sequence[int]] = None,
                 atomic_numbers: Optional[Sequence[int]] = None,
                 partial_energies: Optional[Sequence[float]] = None,
                 energy: float = 0.0,
                 environment: Optional[Environment] = None):
        n_atoms = len(elements)
        self.xyz = np.array(xyz, dtype=float).reshape(n_atoms, 3)
        self.elements = list(elements)
        self.atoms_per_molecule = [int(n) for n in atoms_per_molecule]
        if sum(self.atoms_per_molecule) != n_atoms:
            raise GeometryError(f"Atoms per molecule sum to {sum(self.atoms_per_molecule)}, "
                                f"but there are {n_atoms} atoms")
        if atomic_numbers is None:
            self.atomic_numbers = np.array([get_atomic_number(e) for e in elements], dtype=int)
        else:
            self.atomic_numbers = np.array(atomic_numbers, dtype=int)
        self.charges = np.zeros(n_atoms) if charges is None else np.array(charges, dtype=float)
        self.spins = np.zeros(n_atoms, dtype=int) if spins is None else np.array(spins, dtype=int)
        n_mols = len(self.atoms_per_molecule)
        self.partial_energies = np.zeros(n_mols) if partial_energies is None else np.array(partial_energies, dtype=float)
        self.energy = energy
        self.environment = environment
        self.n_environment_atoms = 0

    @property
    def n_atoms(self) -> int:
        return len(self.elements)

    @property
    def n_molecules(self) -> int:
        return len(self.atoms_per_molecule)

    def molecule_offsets(self) -> np.ndarray:
        """Index of the first atom of every molecule."""
        return np.concatenate([[0], np.cumsum(self.atoms_per_molecule)[:-1]]).astype(int)

    def molecule_slice(self, mol: int) -> slice:
        start = int(self.molecule_offsets()[mol])
        return slice(start, start + self.atoms_per_molecule[mol])

    def molecule_index(self) -> np.ndarray:
        """Molecule index of every atom."""
        return np.repeat(np.arange(self.n_molecules), self.atoms_per_molecule)

    def molecule_xyz(self, mol: int) -> np.ndarray:
        return self.xyz[self.molecule_slice(mol)].copy()

    def set_molecule_xyz(self, mol: int, xyz: np.ndarray) -> None:
        sl = self.molecule_slice(mol)
        xyz = np.asarray(xyz, dtype=float)
        if xyz.shape != (sl.stop - sl.start, 3):
            raise GeometryError(f"Molecule {mol} has {sl.stop - sl.start} atoms, got block of shape {xyz.shape}")
        self.xyz[sl] = xyz

    def molecule_com(self, mol: int, masses: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Center of mass of one molecule block.

        ``masses`` are per-atom masses of the whole set; looked up from the
        element symbols when omitted. Blocks without mass use the geometric
        center.
        """
        sl = self.molecule_slice(mol)
        m = get_masses(self.elements[sl]) if masses is None else np.asarray(masses, dtype=float)[sl]
        xyz = self.xyz[sl]
        if m.sum() <= 0.0:
            return xyz.mean(axis=0)
        return m @ xyz / m.sum()

    def molecule_elements(self, mol: int) -> List[str]:
        return self.elements[self.molecule_slice(mol)]

    def merged_with_environment(self) -> 'CartesianCoordinates':
        """
        Copy with the attached environment appended as a trailing block.

        Returns a plain copy if no environment is attached.
        """
        if self.environment is None:
            return self.copy()
        env = self.environment
        merged = CartesianCoordinates(
            np.vstack([self.xyz, env.xyz]),
            self.elements + env.elements,
            self.atoms_per_molecule + [env.n_atoms],
            charges=np.concatenate([self.charges, env.charges]),
            spins=np.concatenate([self.spins, env.spins]),
            atomic_numbers=np.concatenate([self.atomic_numbers, env.atomic_numbers]),
            partial_energies=np.concatenate([self.partial_energies, [0.0]]),
            energy=self.energy)
        merged.n_environment_atoms = env.n_atoms
        return merged

    def split_environment(self) -> 'CartesianCoordinates':
        """Inverse of merged_with_environment()."""
        if self.n_environment_atoms == 0:
            return self.copy()
        n_env = self.n_environment_atoms
        n_cluster = self.n_atoms - n_env
        if self.atoms_per_molecule[-1] != n_env:
            raise GeometryError("Trailing block does not match the merged environment")
        env = Environment(self.elements[n_cluster:], self.xyz[n_cluster:],
                          self.charges[n_cluster:], self.spins[n_cluster:])
        return CartesianCoordinates(
            self.xyz[:n_cluster], self.elements[:n_cluster], self.atoms_per_molecule[:-1],
            charges=self.charges[:n_cluster], spins=self.spins[:n_cluster],
            atomic_numbers=self.atomic_numbers[:n_cluster],
            partial_energies=self.partial_energies[:-1], energy=self.energy,
            environment=env)

    def copy(self) -> 'CartesianCoordinates':
        return copy.deepcopy(self)

    def __repr__(self) -> str:
        return f"CartesianCoordinates(n_atoms={self.n_atoms}, n_molecules={self.n_molecules})"


# =============================================================================
# Geometry
# =============================================================================

def assign_molecular_types(molecules: List[Molecule]) -> List[int]:
    """
    Type index per molecule, numbered by first appearance of the
    (case-insensitive) molecular type identifier.
    """
    seen = {}
    types = []
    for mol in molecules:
        key = mol.sid.lower()
        if key not in seen:
            seen[key] = len(seen)
        types.append(seen[key])
    return types


class Geometry:
    """
    A cluster: ordered molecules, optional environment, fitness and identity.

    Attributes
    ----------
    molecules : List[Molecule]
        Molecules in slot order
    environment : Optional[Environment]
        Fixed surrounding atoms
    fitness : float
        Energy of the geometry (inf until evaluated)
    geom_id, mother_id, father_id : int
        Identity and parentage (-1 when unknown)
    synced : bool
        True while the fitness corresponds to the current coordinates
    bonds : BondInfo
        Molecule-internal bonds, used to tell bonded atoms from collisions
    """

    def __init__(self, molecules: List[Molecule],
                 environment: Optional[Environment] = None,
                 fitness: float = float('inf'),
                 geom_id: int = 0,
                 mother_id: int = -1,
                 father_id: int = -1,
                 bonds: Optional[BondInfo] = None):
        self.molecules = list(molecules)
        for i, mol in enumerate(self.molecules):
            mol.mol_id = i
        self.environment = environment
        self.fitness = fitness
        self.geom_id = geom_id
        self.mother_id = mother_id
        self.father_id = father_id
        self.synced = math.isfinite(fitness)
        if bonds is None:
            bonds = self.compute_bonds(DEFAULT_BLOW_BONDS)
        elif bonds.n_atoms != self.n_atoms:
            raise GeometryError(f"Bond table covers {bonds.n_atoms} atoms, geometry has {self.n_atoms}")
        self.bonds = bonds

    @property
    def n_molecules(self) -> int:
        return len(self.molecules)

    @property
    def n_atoms(self) -> int:
        return sum(mol.n_atoms for mol in self.molecules)

    def atoms_per_molecule(self) -> List[int]:
        return [mol.n_atoms for mol in self.molecules]

    def get_com(self, mol: int) -> np.ndarray:
        return self.molecules[mol].com

    def get_eulers(self, mol: int) -> np.ndarray:
        return self.molecules[mol].eulers

    def set_ext_coords(self, mol: int, point: Sequence[float]) -> None:
        """Place molecule ``mol`` at the given external coordinates."""
        self.molecules[mol].set_ext_coords(point)
        self.synced = False

    def set_molecule(self, mol: int, molecule: Molecule) -> None:
        molecule.mol_id = mol
        self.molecules[mol] = molecule
        self.synced = False

    def set_fitness(self, fitness: float) -> None:
        self.fitness = fitness
        self.synced = True

    def sids(self) -> List[str]:
        return [mol.sid for mol in self.molecules]

    def flexies(self) -> List[bool]:
        return [mol.flexible for mol in self.molecules]

    def molecule_types(self) -> List[int]:
        return assign_molecular_types(self.molecules)

    def compute_bonds(self, blow_factor: float) -> BondInfo:
        """
        Molecule-internal bond table from the reference frames.

        Pairs of atoms in different molecules are NO_BOND.
        """
        bonds = BondInfo(self.n_atoms)
        offset = 0
        for mol in self.molecules:
            local = BondInfo.from_coordinates(mol.reference, mol.atomic_numbers, blow_factor)
            block = local.as_array()
            n = mol.n_atoms
            bonds._table[offset:offset + n, offset:offset + n] = block
            offset += n
        return bonds

    def copy(self) -> 'Geometry':
        return copy.deepcopy(self)

    def __repr__(self) -> str:
        return (f"Geometry(id={self.geom_id}, n_molecules={self.n_molecules}, "
                f"n_atoms={self.n_atoms}, fitness={self.fitness})")
