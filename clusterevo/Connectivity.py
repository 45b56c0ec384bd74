#!/usr/bin/env python3
"""
Connectivity Analysis

Radius-based predicates on Cartesian clusters:

    - connection_counts: per molecule, bonded contacts to atoms outside it
    - select_least_connected: molecule to relocate and the anchor to place it at
    - check_for_collision: overlapping atoms between (or inside) molecules
    - check_for_dissociation: whether the cluster falls apart into fragments

Two atoms i and j are in contact when their distance does not exceed
blow * (r_i + r_j), with r the covalent radii of AtomicProperties.
"""

from typing import Optional, Tuple

import numpy as np
from scipy.sparse import csr_matrix
from scipy.sparse.csgraph import connected_components

from .AtomicProperties import get_radii
from .Geometry import BondInfo, CartesianCoordinates


def _contact_matrix(cartesian: CartesianCoordinates, blow_factor: float) -> np.ndarray:
    """Boolean N x N matrix of atom pairs within blow * (r_i + r_j)."""
    xyz = cartesian.xyz
    radii = get_radii(cartesian.atomic_numbers)
    diff = xyz[:, np.newaxis, :] - xyz[np.newaxis, :, :]
    dist_sq = np.einsum('ijk,ijk->ij', diff, diff)
    threshold = blow_factor * (radii[:, np.newaxis] + radii[np.newaxis, :])
    return dist_sq <= threshold * threshold


def connection_counts(cartesian: CartesianCoordinates, bonds: BondInfo,
                      n_molecules: Optional[int] = None) -> np.ndarray:
    """
    Count bonded contacts of every molecule with atoms outside of it.

    Molecule-internal bonds are not counted; several contacts of the same
    atom are counted individually.

    Parameters
    ----------
    cartesian : CartesianCoordinates
        Cluster coordinates (possibly with a merged environment block)
    bonds : BondInfo
        Bond table over all atoms of ``cartesian`` (see detect_bonds)
    n_molecules : Optional[int]
        Only report the first n molecules (e.g., to leave out a merged
        environment block); all molecules by default

    Returns
    -------
    np.ndarray
        Integer count per molecule
    """
    if bonds.n_atoms != cartesian.n_atoms:
        raise ValueError(f"Bond table covers {bonds.n_atoms} atoms, cartesian has {cartesian.n_atoms}")
    if n_molecules is None:
        n_molecules = cartesian.n_molecules
    mol_idx = cartesian.molecule_index()
    inter = mol_idx[:, np.newaxis] != mol_idx[np.newaxis, :]
    contacts = bonds.bonded_matrix() & inter
    per_atom = contacts.sum(axis=1)
    counts = np.bincount(mol_idx, weights=per_atom, minlength=cartesian.n_molecules).astype(int)
    return counts[:n_molecules]


def select_least_connected(counts) -> Tuple[int, int]:
    """
    Pick the molecule to relocate and its anchor.

    Returns
    -------
    Tuple[int, int]
        (target, anchor): target is the first molecule with the minimal
        count, anchor the first molecule with the lowest count among the
        remaining ones
    """
    counts = np.asarray(counts)
    if len(counts) < 2:
        raise ValueError("Need at least two molecules to select a target and an anchor")
    target = int(np.argmin(counts))
    others = counts.astype(float)
    others[target] = np.inf
    anchor = int(np.argmin(others))
    return target, anchor


def check_for_collision(cartesian: CartesianCoordinates, bonds: BondInfo, blow_factor: float) -> bool:
    """
    Whether any two atoms overlap.

    Atoms of different blocks collide when within blow * (r_i + r_j). Atoms
    of the same molecule collide only when close and not bonded according to
    ``bonds`` (the molecule-internal bond table). Pairs inside a merged
    environment block are never tested.

    Parameters
    ----------
    cartesian : CartesianCoordinates
        Cluster coordinates, optionally with a merged environment block
    bonds : BondInfo
        Molecule-internal bond table over the cluster atoms
    blow_factor : float
        Scaling of the summed radii

    Returns
    -------
    bool
        True if a collision was detected
    """
    n_atoms = cartesian.n_atoms
    n_cluster = n_atoms - cartesian.n_environment_atoms
    if bonds.n_atoms != n_cluster:
        raise ValueError(f"Bond table covers {bonds.n_atoms} atoms, cluster has {n_cluster}")

    close = _contact_matrix(cartesian, blow_factor)
    close &= np.triu(np.ones((n_atoms, n_atoms), dtype=bool), k=1)

    mol_idx = cartesian.molecule_index()
    same = mol_idx[:, np.newaxis] == mol_idx[np.newaxis, :]
    bonded = np.zeros((n_atoms, n_atoms), dtype=bool)
    bonded[:n_cluster, :n_cluster] = bonds.bonded_matrix()

    is_env = np.arange(n_atoms) >= n_cluster
    env_pair = is_env[:, np.newaxis] & is_env[np.newaxis, :]

    collide = close & ~env_pair & ~(same & bonded)
    return bool(np.any(collide))


def check_for_dissociation(cartesian: CartesianCoordinates, blow_factor: float) -> bool:
    """
    Whether the cluster consists of more than one connected fragment.

    Atoms are connected when their distance does not exceed
    blow * (r_i + r_j).
    """
    if cartesian.n_atoms < 2:
        return False
    adjacency = csr_matrix(_contact_matrix(cartesian, blow_factor))
    n_components, _ = connected_components(adjacency, directed=False)
    return n_components > 1

