#!/usr/bin/env python3
"""
I/O Tools for Cluster Structure Files

This module reads and writes clusters in XYZ format. XYZ files carry no
molecule partition, so reading a cluster needs the number of atoms of each
molecule; trailing atoms may be declared as a fixed environment.
"""

from typing import List, Optional, Sequence, Tuple

import numpy as np

from .CoordinateConversion import cartesian_to_geometry, geometry_to_cartesian
from .Geometry import CartesianCoordinates, Environment, Geometry, GeometryError


def read_xyz_file(pathname: str) -> Tuple[List[str], np.ndarray, str]:
    """
    Read the first frame of an XYZ file.

    Returns
    -------
    Tuple[List[str], np.ndarray, str]
        Element symbols, Nx3 coordinates in Angstrom, and the comment line

    Raises
    ------
    ValueError
        If the file is truncated or a coordinate line is malformed
    """
    with open(pathname, 'r') as f:
        lines = f.readlines()

    if len(lines) < 2:
        raise ValueError(f"File {pathname} is not in XYZ format")
    try:
        num_atoms = int(lines[0].strip().split()[0])
    except (ValueError, IndexError):
        raise ValueError(f"First line of {pathname} must contain the number of atoms")
    if len(lines) < num_atoms + 2:
        raise ValueError(f"File {pathname} declares {num_atoms} atoms but has {len(lines) - 2} coordinate lines")

    comment = lines[1].rstrip('\n')
    elements = []
    coords = np.zeros((num_atoms, 3))
    for i, line in enumerate(lines[2:2 + num_atoms]):
        parts = line.split()
        if len(parts) < 4:
            raise ValueError(f"Malformed coordinate line {i + 3} in {pathname}: {line.strip()}")
        elements.append(parts[0])
        coords[i] = [float(parts[1]), float(parts[2]), float(parts[3])]
    return elements, coords, comment


def write_xyz_file(coords: np.ndarray, elements: List[str], filepath: str, comment: str = "", append: bool = False) -> None:
    """
    Write XYZ file.

    Parameters
    ----------
    coords : np.ndarray
        Coordinates of the atoms (Nx3 array) in Angstroms
    elements : List[str]
        Elements of the atoms
    filepath : str
        Output file path
    comment : str
        Comment line for XYZ file
    append : bool
        If True, append to existing file instead of overwriting (default: False)
    """
    mode = 'a' if append else 'w'
    with open(filepath, mode) as f:
        f.write(f"{len(elements)}\n")
        f.write(f"{comment}\n")
        for element, coord in zip(elements, coords):
            symbol = 'X' if element.upper() in ('DU', '*') else element
            f.write(f"{symbol:<4s} {coord[0]:12.6f} {coord[1]:12.6f} {coord[2]:12.6f}\n")


def geometry_from_xyz(pathname: str, atoms_per_molecule: Sequence[int],
                      flexies: Optional[Sequence[bool]] = None,
                      sids: Optional[Sequence[str]] = None,
                      charges: Optional[Sequence[float]] = None,
                      n_environment_atoms: int = 0) -> Geometry:
    """
    Read a cluster from an XYZ file.

    Parameters
    ----------
    pathname : str
        XYZ file
    atoms_per_molecule : Sequence[int]
        Number of atoms of each molecule, in file order
    flexies : Optional[Sequence[bool]]
        Per-molecule flexibility flags (rigid by default)
    sids : Optional[Sequence[str]]
        Per-molecule type ids (the concatenated element symbols by default)
    charges : Optional[Sequence[float]]
        Per-atom partial charges of the cluster atoms
    n_environment_atoms : int
        Number of trailing atoms forming a fixed environment

    Returns
    -------
    Geometry

    Raises
    ------
    GeometryError
        If the partition does not cover the atoms of the file
    """
    elements, coords, _ = read_xyz_file(pathname)
    n_cluster = len(elements) - n_environment_atoms
    if n_environment_atoms < 0 or sum(atoms_per_molecule) != n_cluster:
        raise GeometryError(f"Partition {list(atoms_per_molecule)} plus {n_environment_atoms} environment "
                            f"atoms does not match the {len(elements)} atoms of {pathname}")

    environment = None
    if n_environment_atoms > 0:
        environment = Environment(elements[n_cluster:], coords[n_cluster:])

    cartesian = CartesianCoordinates(coords[:n_cluster], elements[:n_cluster], atoms_per_molecule,
                                     charges=charges, environment=environment)
    return cartesian_to_geometry(cartesian, flexies=flexies, sids=sids)


def write_geometry_xyz(geometry: Geometry, filepath: str, comment: Optional[str] = None,
                       append: bool = False, include_environment: bool = True) -> None:
    """
    Write a geometry as XYZ; the comment defaults to identity and fitness.
    """
    cartesian = geometry_to_cartesian(geometry, merge_environment=include_environment)
    if comment is None:
        comment = (f"geometry {geometry.geom_id} mother {geometry.mother_id} "
                   f"father {geometry.father_id} E={geometry.fitness:.6f}")
    write_xyz_file(cartesian.xyz, cartesian.elements, filepath, comment=comment, append=append)
