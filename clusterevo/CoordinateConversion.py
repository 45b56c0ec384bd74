#!/usr/bin/env python3
"""
Coordinate Conversion Utilities

This module converts between the representations of a molecular cluster:
composite geometries (external + internal coordinates per molecule), flat
Cartesian coordinates, and Z-matrices of flexible molecules.

Conventions:
    - Euler angles (phi, omega, psi) in yaw-pitch-roll convention; the
      rotation matrix is applied to column vectors (R @ x)
    - Z-matrix atom 0 at origin, atom 1 along +Z, atom 2 placed against a
      fictitious dihedral reference with a fixed 90 degree dihedral
    - Bond lengths in Angstrom, angles and dihedrals in radians
    - Reference frames are centered at the center of mass

Main Functions:
    geometry_to_cartesian: Composite geometry to flat Cartesian coordinates
    cartesian_to_geometry: Flat Cartesian coordinates to composite geometry
    update_geometry_from_cartesian: In-place variant of cartesian_to_geometry
    update_molecule_from_cartesian: Reset one molecule from absolute positions
    zmatrix_to_cartesian: Build Cartesian coordinates from a Z-matrix
    update_zmatrix_from_cartesian: Recompute Z-matrix values from coordinates
    cartesian_to_zmatrix: Generate a Z-matrix from Cartesian coordinates
    rotation_matrix / rotation_derivatives: Euler rotation and its derivatives
    rotate_xyz / rotate_xyz_around_z: Rotate coordinate blocks
    detect_bonds: Radius-based bond table
    center_of_mass: Mass-weighted center

Helper Functions:
    _calc_distance: Calculate distance between two points
    _calc_angle: Calculate angle between three points
    _calc_dihedral: Calculate dihedral angle between four points
"""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .AtomicProperties import get_atomic_number, get_masses
from .Geometry import (BondInfo, CartesianCoordinates, Geometry, GeometryError,
                       Molecule, sanitize_eulers, sanitize_periodic)
from .RigidAlignment import AlignmentError, kearsley_align
from .ZMatrix import ZMatrix

logger = logging.getLogger(__name__)

__all__ = [
    'geometry_to_cartesian', 'cartesian_to_geometry', 'update_geometry_from_cartesian',
    'update_molecule_from_cartesian', 'zmatrix_to_cartesian', 'update_zmatrix_from_cartesian',
    'cartesian_to_zmatrix', 'rotation_matrix', 'rotation_derivatives', 'rotate_xyz',
    'rotate_xyz_around_z', 'sanitize_periodic', 'sanitize_eulers', 'detect_bonds', 'molecule_frame',
    'center_of_mass',
]

_NORM_TOLERANCE = 1e-10


# =============================================================================
# Geometry Calculation Helpers
# =============================================================================

def _calc_distance(p1: np.ndarray, p2: np.ndarray) -> float:
    """Distance between two points."""
    return float(np.linalg.norm(p2 - p1))


def _calc_angle(p1: np.ndarray, p2: np.ndarray, p3: np.ndarray) -> float:
    """
    Calculate angle at p2 between p1-p2-p3.

    Returns
    -------
    float
        Angle in radians (0.0 for zero-length arms)
    """
    v1 = p1 - p2
    v2 = p3 - p2
    norm1 = np.linalg.norm(v1)
    norm2 = np.linalg.norm(v2)
    if norm1 < _NORM_TOLERANCE or norm2 < _NORM_TOLERANCE:
        return 0.0
    cos_angle = np.clip(np.dot(v1, v2) / (norm1 * norm2), -1.0, 1.0)
    return float(np.arccos(cos_angle))


def _calc_dihedral(p1: np.ndarray, p2: np.ndarray, p3: np.ndarray, p4: np.ndarray) -> float:
    """
    Signed dihedral angle p1-p2-p3-p4 in radians.

    Uses the double cross product construction. When the result vector
    degenerates the angle is 0 or pi depending on the alignment of the two
    plane normals, never NaN.
    """
    s1 = p1 - p2
    s2 = p2 - p3
    s3 = p3 - p4
    s4 = np.cross(s1, s2)
    t = np.cross(s2, s3)
    if np.linalg.norm(s4) < _NORM_TOLERANCE or np.linalg.norm(t) < _NORM_TOLERANCE:
        return 0.0
    s5 = np.cross(s4, t)
    dihedral = float(np.arctan2(np.linalg.norm(s5), np.dot(s4, t)))
    if np.dot(s2, s5) > 0.0:
        return -dihedral
    return dihedral


def _unit(vec: np.ndarray, what: str) -> np.ndarray:
    norm = np.linalg.norm(vec)
    if not np.isfinite(norm) or norm < _NORM_TOLERANCE:
        raise GeometryError(f"Zero-length {what} vector (colinear reference atoms)")
    return vec / norm


def center_of_mass(xyz: np.ndarray, masses: Sequence[float]) -> np.ndarray:
    """
    Mass-weighted center of a block of coordinates.

    Falls back to the geometric center when the total mass is not positive
    (e.g., a block of dummy atoms).
    """
    xyz = np.asarray(xyz, dtype=float)
    masses = np.asarray(masses, dtype=float)
    total = masses.sum()
    if total <= 0.0:
        return xyz.mean(axis=0)
    return masses @ xyz / total


# =============================================================================
# Euler Rotations
# =============================================================================

def rotation_matrix(eulers: Sequence[float]) -> np.ndarray:
    """
    3x3 rotation matrix for Euler angles (phi, omega, psi).

    Parameters
    ----------
    eulers : Sequence[float]
        phi, omega, psi in radians

    Returns
    -------
    np.ndarray
        Orthogonal matrix with determinant 1, acting on column vectors
    """
    phi, omega, psi = eulers
    pc, ps = np.cos(phi), np.sin(phi)
    oc, os_ = np.cos(omega), np.sin(omega)
    sc, ss = np.cos(psi), np.sin(psi)

    rot = np.empty((3, 3))
    rot[0, 0] = oc * sc
    rot[1, 0] = ps * os_ * sc - pc * ss
    rot[2, 0] = pc * os_ * sc + ps * ss
    rot[0, 1] = oc * ss
    rot[1, 1] = ps * os_ * ss + pc * sc
    rot[2, 1] = pc * os_ * ss - ps * sc
    rot[0, 2] = -os_
    rot[1, 2] = ps * oc
    rot[2, 2] = pc * oc
    return rot


def rotation_derivatives(eulers: Sequence[float]) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Partial derivatives of rotation_matrix() with respect to phi, omega and psi.

    Returns
    -------
    Tuple[np.ndarray, np.ndarray, np.ndarray]
        (dR/dphi, dR/domega, dR/dpsi), each 3x3
    """
    phi, omega, psi = eulers
    pc, ps = np.cos(phi), np.sin(phi)
    oc, os_ = np.cos(omega), np.sin(omega)
    sc, ss = np.cos(psi), np.sin(psi)

    d_phi = np.zeros((3, 3))
    d_phi[1, 0] = pc * os_ * sc + ps * ss
    d_phi[2, 0] = -ps * os_ * sc + pc * ss
    d_phi[1, 1] = pc * os_ * ss - ps * sc
    d_phi[2, 1] = -ps * os_ * ss - pc * sc
    d_phi[1, 2] = pc * oc
    d_phi[2, 2] = -ps * oc

    d_omega = np.empty((3, 3))
    d_omega[0, 0] = -os_ * sc
    d_omega[1, 0] = ps * oc * sc
    d_omega[2, 0] = pc * oc * sc
    d_omega[0, 1] = -os_ * ss
    d_omega[1, 1] = ps * oc * ss
    d_omega[2, 1] = pc * oc * ss
    d_omega[0, 2] = -oc
    d_omega[1, 2] = -ps * os_
    d_omega[2, 2] = -pc * os_

    d_psi = np.zeros((3, 3))
    d_psi[0, 0] = -oc * ss
    d_psi[1, 0] = -ps * os_ * ss - pc * sc
    d_psi[2, 0] = -pc * os_ * ss + ps * sc
    d_psi[0, 1] = oc * sc
    d_psi[1, 1] = ps * os_ * sc - pc * ss
    d_psi[2, 1] = pc * os_ * sc + ps * ss

    return d_phi, d_omega, d_psi


def rotate_xyz(xyz: np.ndarray, eulers: Sequence[float]) -> np.ndarray:
    """Rotate an Nx3 block about the origin by the given Euler angles."""
    return (rotation_matrix(eulers) @ np.asarray(xyz, dtype=float).T).T


def rotate_xyz_around_z(xyz: np.ndarray, angle: float) -> np.ndarray:
    """Rotate an Nx3 block about the z axis by ``angle`` radians."""
    c, s = np.cos(angle), np.sin(angle)
    rot = np.array([[c, -s, 0.0],
                    [s, c, 0.0],
                    [0.0, 0.0, 1.0]])
    return (rot @ np.asarray(xyz, dtype=float).T).T


# =============================================================================
# Bonds
# =============================================================================

def detect_bonds(cartesian: CartesianCoordinates, blow_factor: float) -> BondInfo:
    """
    Bond table of all atom pairs of a Cartesian set.

    Pairs closer than blow_factor * (r_i + r_j) are BONDED, self-entries
    UNCERTAIN and everything else NO_BOND.
    """
    return BondInfo.from_coordinates(cartesian.xyz, cartesian.atomic_numbers, blow_factor)


# =============================================================================
# Z-Matrix <-> Cartesian
# =============================================================================

def zmatrix_to_cartesian(zmatrix: ZMatrix, masses: Optional[Sequence[float]] = None) -> np.ndarray:
    """
    Convert Z-matrix to Cartesian coordinates.

    Atoms are placed sequentially. Atom 0 goes to the origin, atom 1 to
    (0, 0, bond). Every further atom is placed from a local frame built from
    the bond and dihedral reference vectors; atom 2 uses a fictitious
    dihedral reference one unit along -y of its bond partner and a fixed
    dihedral of 90 degrees. The result is re-centered at its center of mass.

    Parameters
    ----------
    zmatrix : ZMatrix
        Internal coordinates (radians, Angstrom)
    masses : Optional[Sequence[float]]
        Atomic masses used for re-centering; taken from the element symbols
        when omitted

    Returns
    -------
    np.ndarray
        Nx3 Cartesian coordinates in Angstrom

    Raises
    ------
    GeometryError
        If colinear references make the local frame undefined or a
        non-finite position results
    """
    n_atoms = len(zmatrix)
    xyz = np.zeros((n_atoms, 3))
    if n_atoms == 0:
        return xyz
    bond_refs, angle_refs, dihedral_refs = zmatrix.get_connectivity()
    bonds, angles, dihedrals = zmatrix.get_values()

    if n_atoms > 1:
        xyz[1] = [0.0, 0.0, bonds[1]]

    for i in range(2, n_atoms):
        a = xyz[bond_refs[i]]
        vec2 = a - xyz[angle_refs[i]]
        if i == 2:
            vec3 = np.array([a[0], a[1] - 1.0, a[2]])
            dihedral = 0.5 * np.pi
        else:
            vec3 = a - xyz[dihedral_refs[i]]
            dihedral = dihedrals[i]

        n = np.cross(vec2, vec3)
        nn = np.cross(vec2, n)
        n = _unit(n, f"normal (atom {i})")
        nn = _unit(nn, f"in-plane (atom {i})")
        vec1 = _unit(-np.sin(dihedral) * n + np.cos(dihedral) * nn, f"placement (atom {i})")
        vec2 = _unit(vec2, f"bond (atom {i})")

        pos = a + bonds[i] * np.sin(angles[i]) * vec1 - bonds[i] * np.cos(angles[i]) * vec2
        if not np.all(np.isfinite(pos)):
            raise GeometryError(f"Non-finite position for atom {i}")
        xyz[i] = pos

    if masses is None:
        masses = get_masses(zmatrix.get_elements())
    return xyz - center_of_mass(xyz, masses)


def update_zmatrix_from_cartesian(xyz: np.ndarray, zmatrix: ZMatrix) -> ZMatrix:
    """
    Recompute internal coordinates from Cartesian coordinates.

    The reference atoms of the template are preserved.

    Parameters
    ----------
    xyz : np.ndarray
        Nx3 Cartesian coordinates in Angstrom
    zmatrix : ZMatrix
        Z-matrix template defining the connectivity

    Returns
    -------
    ZMatrix
        Updated copy of the Z-matrix
    """
    xyz = np.asarray(xyz, dtype=float)
    if len(xyz) != len(zmatrix):
        raise GeometryError(f"Z-matrix has {len(zmatrix)} atoms, got {len(xyz)} positions")
    new_zmatrix = zmatrix.copy()
    for i in range(1, len(new_zmatrix)):
        atom = new_zmatrix[i]
        bond_ref = atom[ZMatrix.FIELD_BOND_REF]
        atom[ZMatrix.FIELD_BOND_LENGTH] = _calc_distance(xyz[bond_ref], xyz[i])
        if i >= 2:
            angle_ref = atom[ZMatrix.FIELD_ANGLE_REF]
            atom[ZMatrix.FIELD_ANGLE] = _calc_angle(xyz[angle_ref], xyz[bond_ref], xyz[i])
        if i >= 3:
            atom[ZMatrix.FIELD_DIHEDRAL] = _calc_dihedral(
                xyz[i], xyz[bond_ref], xyz[atom[ZMatrix.FIELD_ANGLE_REF]],
                xyz[atom[ZMatrix.FIELD_DIHEDRAL_REF]])
    return new_zmatrix


def _is_colinear(p1: np.ndarray, p2: np.ndarray, p3: np.ndarray, tolerance: float = 1e-3) -> bool:
    angle = _calc_angle(p1, p2, p3)
    return angle < tolerance or abs(angle - np.pi) < tolerance


def _nearest_previous(xyz: np.ndarray, atom_idx: int, exclude: List[int],
                      accept=None) -> int:
    """
    Closest previously placed atom to ``atom_idx``, not in ``exclude`` and
    passing ``accept``; -1 if none qualifies.
    """
    dists = np.linalg.norm(xyz[:atom_idx] - xyz[atom_idx], axis=1)
    for j in np.argsort(dists, kind='stable'):
        j = int(j)
        if j in exclude:
            continue
        if accept is None or accept(j):
            return j
    return -1


def cartesian_to_zmatrix(xyz: np.ndarray, elements: List[str]) -> ZMatrix:
    """
    Generate a Z-matrix from Cartesian coordinates.

    Every atom refers to the nearest previously placed atom for its bond. The
    angle reference is the nearest remaining previous atom; the dihedral
    reference is the nearest remaining previous atom that is not colinear
    with the bond and angle references.

    Parameters
    ----------
    xyz : np.ndarray
        Nx3 Cartesian coordinates in Angstrom
    elements : List[str]
        Element symbols

    Returns
    -------
    ZMatrix

    Raises
    ------
    GeometryError
        If no non-colinear dihedral reference exists (linear molecules with
        more than three atoms)
    """
    xyz = np.asarray(xyz, dtype=float)
    if len(xyz) != len(elements):
        raise GeometryError(f"Got {len(xyz)} positions for {len(elements)} elements")

    atoms = []
    for i, element in enumerate(elements):
        atom_data = {
            ZMatrix.FIELD_ID: i,
            ZMatrix.FIELD_ELEMENT: element,
            ZMatrix.FIELD_ATOMIC_NUM: get_atomic_number(element),
        }
        if i >= 1:
            bond_ref = _nearest_previous(xyz, i, [])
            atom_data[ZMatrix.FIELD_BOND_REF] = bond_ref
            atom_data[ZMatrix.FIELD_BOND_LENGTH] = _calc_distance(xyz[bond_ref], xyz[i])
        if i >= 2:
            angle_ref = _nearest_previous(xyz, i, [bond_ref])
            atom_data[ZMatrix.FIELD_ANGLE_REF] = angle_ref
            atom_data[ZMatrix.FIELD_ANGLE] = _calc_angle(xyz[angle_ref], xyz[bond_ref], xyz[i])
        if i >= 3:
            dihedral_ref = _nearest_previous(
                xyz, i, [bond_ref, angle_ref],
                accept=lambda j: not _is_colinear(xyz[j], xyz[angle_ref], xyz[bond_ref]))
            if dihedral_ref < 0:
                raise GeometryError(f"Unable to make internal coordinates for atom {i}: "
                                    f"all previous atoms are colinear")
            atom_data[ZMatrix.FIELD_DIHEDRAL_REF] = dihedral_ref
            atom_data[ZMatrix.FIELD_DIHEDRAL] = _calc_dihedral(
                xyz[i], xyz[bond_ref], xyz[angle_ref], xyz[dihedral_ref])
        atoms.append(atom_data)

    return ZMatrix(atoms)


# =============================================================================
# Geometry <-> Cartesian
# =============================================================================

def molecule_frame(molecule: Molecule) -> np.ndarray:
    """
    Internal Cartesian frame of a molecule, centered at its center of mass.

    Rigid molecules use the stored reference frame. Flexible molecules are
    rebuilt from their Z-matrix and aligned onto the reference orientation;
    if the alignment fails the unaligned frame is used.
    """
    if not molecule.flexible:
        return molecule.reference.copy()
    built = zmatrix_to_cartesian(molecule.zmatrix, molecule.masses)
    try:
        frame, _, _ = kearsley_align(molecule.reference, built)
    except AlignmentError as e:
        logger.warning(f"Alignment of molecule {molecule.mol_id} failed, using unaligned frame: {e}")
        frame = built
    return frame


def _molecule_xyz(molecule: Molecule) -> np.ndarray:
    if molecule.n_atoms == 1:
        return molecule.com.reshape(1, 3)
    return rotate_xyz(molecule_frame(molecule), molecule.eulers) + molecule.com


def geometry_to_cartesian(geometry: Geometry, merge_environment: bool = False) -> CartesianCoordinates:
    """
    Convert a composite geometry to flat Cartesian coordinates.

    Parameters
    ----------
    geometry : Geometry
        Geometry to convert
    merge_environment : bool
        Append the environment atoms as a trailing block

    Returns
    -------
    CartesianCoordinates
        Positions, per-atom data, per-molecule partial energies and the
        geometry fitness as total energy
    """
    blocks = [_molecule_xyz(mol) for mol in geometry.molecules]
    xyz = np.vstack(blocks) if blocks else np.zeros((0, 3))

    elements, charges, spins, atomic_numbers = [], [], [], []
    for mol in geometry.molecules:
        elements.extend(mol.elements)
        charges.append(mol.charges)
        spins.append(mol.spins)
        atomic_numbers.append(mol.atomic_numbers)

    cartesian = CartesianCoordinates(
        xyz, elements, geometry.atoms_per_molecule(),
        charges=np.concatenate(charges) if charges else None,
        spins=np.concatenate(spins) if spins else None,
        atomic_numbers=np.concatenate(atomic_numbers) if atomic_numbers else None,
        partial_energies=[mol.energy for mol in geometry.molecules],
        energy=geometry.fitness,
        environment=geometry.environment.copy() if geometry.environment is not None else None)

    if merge_environment:
        return cartesian.merged_with_environment()
    return cartesian


def update_molecule_from_cartesian(molecule: Molecule, xyz: np.ndarray) -> None:
    """
    Reset a molecule from absolute positions.

    The center of mass becomes the new COM, the shifted block the new
    reference frame and the Euler angles are zeroed. Flexible molecules get
    their Z-matrix values recomputed.

    Raises
    ------
    GeometryError
        If the number of positions differs from the molecule's atom count
    """
    xyz = np.asarray(xyz, dtype=float)
    if xyz.shape != (molecule.n_atoms, 3):
        raise GeometryError(f"Molecule {molecule.mol_id} has {molecule.n_atoms} atoms, "
                            f"got block of shape {xyz.shape}")
    if molecule.n_atoms == 1:
        molecule.com = xyz[0]
        molecule.reference = np.zeros((1, 3))
    else:
        com = center_of_mass(xyz, molecule.masses)
        molecule.com = com
        molecule.reference = xyz - com
    molecule.eulers = (0.0, 0.0, 0.0)
    if molecule.flexible:
        molecule.zmatrix = update_zmatrix_from_cartesian(molecule.reference, molecule.zmatrix)


def update_geometry_from_cartesian(cartesian: CartesianCoordinates, geometry: Geometry) -> None:
    """
    Write Cartesian coordinates back into an existing geometry, in place.

    A merged environment block is ignored.

    Raises
    ------
    GeometryError
        If the molecule partition does not match the geometry
    """
    if cartesian.n_environment_atoms > 0:
        cartesian = cartesian.split_environment()
    if cartesian.atoms_per_molecule != geometry.atoms_per_molecule():
        raise GeometryError(f"Atom partition {cartesian.atoms_per_molecule} does not match "
                            f"geometry partition {geometry.atoms_per_molecule()}")
    for i, mol in enumerate(geometry.molecules):
        update_molecule_from_cartesian(mol, cartesian.molecule_xyz(i))
    geometry.synced = False


def cartesian_to_geometry(cartesian: CartesianCoordinates,
                          template: Optional[Geometry] = None,
                          flexies: Optional[Sequence[bool]] = None,
                          sids: Optional[Sequence[str]] = None,
                          constraints: Optional[Sequence[Sequence[bool]]] = None,
                          bonds: Optional[BondInfo] = None) -> Geometry:
    """
    Convert flat Cartesian coordinates to a composite geometry.

    Each molecule block is shifted to its center of mass to form the
    reference frame and gets zero Euler angles. Flexibility flags, type ids,
    constraints and the bond table come from the template geometry when
    given, otherwise from the explicit arguments.

    Parameters
    ----------
    cartesian : CartesianCoordinates
        Input coordinates (a merged environment is split off)
    template : Optional[Geometry]
        Geometry providing per-molecule metadata and Z-matrix connectivity
    flexies : Optional[Sequence[bool]]
        Per-molecule flexibility flags (without template)
    sids : Optional[Sequence[str]]
        Per-molecule type ids (without template)
    constraints : Optional[Sequence[Sequence[bool]]]
        Per-molecule per-atom constraint flags (without template)
    bonds : Optional[BondInfo]
        Molecule-internal bond table; computed when omitted

    Returns
    -------
    Geometry

    Raises
    ------
    GeometryError
        If the Cartesian partition does not match the template
    """
    if cartesian.n_environment_atoms > 0:
        cartesian = cartesian.split_environment()

    if template is not None:
        if cartesian.atoms_per_molecule != template.atoms_per_molecule():
            raise GeometryError(f"Atom partition {cartesian.atoms_per_molecule} does not match "
                                f"template partition {template.atoms_per_molecule()}")

    molecules = []
    for i in range(cartesian.n_molecules):
        sl = cartesian.molecule_slice(i)
        xyz = cartesian.xyz[sl]
        elements = cartesian.elements[sl]
        if template is not None:
            tmpl = template.molecules[i]
            flexible, sid, mol_constraints = tmpl.flexible, tmpl.sid, tmpl.constraints
            zmatrix = tmpl.zmatrix
        else:
            flexible = bool(flexies[i]) if flexies is not None else False
            sid = sids[i] if sids is not None else ""
            mol_constraints = constraints[i] if constraints is not None else None
            zmatrix = None

        if len(elements) == 1:
            com = xyz[0]
            reference = np.zeros((1, 3))
            flexible = False
            zmatrix = None
        else:
            com = center_of_mass(xyz, get_masses(elements))
            reference = xyz - com
            if flexible:
                if zmatrix is None:
                    zmatrix = cartesian_to_zmatrix(reference, elements)
                else:
                    zmatrix = update_zmatrix_from_cartesian(reference, zmatrix)
            else:
                zmatrix = None

        molecules.append(Molecule(
            elements, reference, com=com,
            charges=cartesian.charges[sl], spins=cartesian.spins[sl],
            sid=sid, flexible=flexible, zmatrix=zmatrix,
            constraints=mol_constraints, mol_id=i,
            energy=float(cartesian.partial_energies[i])))

    environment = cartesian.environment
    if environment is None and template is not None:
        environment = template.environment
    if bonds is None and template is not None:
        bonds = template.bonds.copy()

    geometry = Geometry(molecules,
                        environment=environment.copy() if environment is not None else None,
                        bonds=bonds)
    if template is not None:
        geometry.geom_id = template.geom_id
        geometry.mother_id = template.mother_id
        geometry.father_id = template.father_id
    return geometry
