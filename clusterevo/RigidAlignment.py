#!/usr/bin/env python3
"""
Rigid-Body Alignment

Least-squares superposition of two point sets following Kearsley's
quaternion method: the optimal rotation is the unit quaternion given by the
eigenvector of the smallest eigenvalue of a symmetric 4x4 matrix built from
sum and difference vectors of the paired points.

Both point sets must already be centered at the origin.

Functions:
    kearsley_align: Rotate a point set onto a reference
    quaternion_to_rotation_matrix: Convert a unit quaternion to a 3x3 matrix
"""

from typing import Tuple

import numpy as np


class AlignmentError(RuntimeError):
    """Raised when a rigid alignment cannot be computed."""


def quaternion_to_rotation_matrix(q: np.ndarray) -> np.ndarray:
    """
    Rotation matrix for the unit quaternion q = (q1, q2, q3, q4).

    The matrix rotates column vectors of the moving set onto the reference.
    """
    q1, q2, q3, q4 = q
    return np.array([
        [q1 * q1 + q2 * q2 - q3 * q3 - q4 * q4,
         2.0 * (q2 * q3 + q1 * q4),
         2.0 * (q2 * q4 - q1 * q3)],
        [2.0 * (q2 * q3 - q1 * q4),
         q1 * q1 + q3 * q3 - q2 * q2 - q4 * q4,
         2.0 * (q3 * q4 + q1 * q2)],
        [2.0 * (q2 * q4 + q1 * q3),
         2.0 * (q3 * q4 - q1 * q2),
         q1 * q1 + q4 * q4 - q2 * q2 - q3 * q3],
    ])


def _kearsley_matrix(reference: np.ndarray, moving: np.ndarray) -> np.ndarray:
    d = reference - moving
    s = reference + moving
    d0, d1, d2 = d[:, 0], d[:, 1], d[:, 2]
    s0, s1, s2 = s[:, 0], s[:, 1], s[:, 2]

    k = np.zeros((4, 4))
    k[0, 0] = np.sum(d0 * d0 + d1 * d1 + d2 * d2)
    k[0, 1] = np.sum(s1 * d2 - d1 * s2)
    k[0, 2] = np.sum(d0 * s2 - s0 * d2)
    k[0, 3] = np.sum(s0 * d1 - d0 * s1)
    k[1, 1] = np.sum(s1 * s1 + s2 * s2 + d0 * d0)
    k[1, 2] = np.sum(d0 * d1 - s0 * s1)
    k[1, 3] = np.sum(d0 * d2 - s0 * s2)
    k[2, 2] = np.sum(s0 * s0 + s2 * s2 + d1 * d1)
    k[2, 3] = np.sum(d1 * d2 - s1 * s2)
    k[3, 3] = np.sum(s0 * s0 + s1 * s1 + d2 * d2)

    # mirror the upper triangle
    return k + np.triu(k, 1).T


def kearsley_align(reference: np.ndarray, moving: np.ndarray) -> Tuple[np.ndarray, np.ndarray, float]:
    """
    Rotate ``moving`` onto ``reference`` in the least-squares sense.

    Parameters
    ----------
    reference : np.ndarray
        Nx3 reference coordinates, centered at the origin
    moving : np.ndarray
        Nx3 coordinates to rotate, centered at the origin

    Returns
    -------
    Tuple[np.ndarray, np.ndarray, float]
        (aligned Nx3 coordinates, 3x3 rotation matrix, RMSD)

    Raises
    ------
    AlignmentError
        On shape mismatch, non-finite input or a failed eigen-decomposition
    """
    reference = np.asarray(reference, dtype=float)
    moving = np.asarray(moving, dtype=float)
    if reference.ndim != 2 or reference.shape[1] != 3 or reference.shape != moving.shape:
        raise AlignmentError(f"Cannot align point sets of shape {moving.shape} onto {reference.shape}")
    if len(reference) == 0:
        raise AlignmentError("Cannot align empty point sets")
    if not (np.all(np.isfinite(reference)) and np.all(np.isfinite(moving))):
        raise AlignmentError("Non-finite coordinates in alignment input")

    k = _kearsley_matrix(reference, moving)
    try:
        eigenvalues, eigenvectors = np.linalg.eigh(k)
    except np.linalg.LinAlgError as e:
        raise AlignmentError(f"Eigen-decomposition failed: {e}") from e
    if not np.all(np.isfinite(eigenvalues)):
        raise AlignmentError("Non-finite eigenvalues in alignment")

    # eigh sorts eigenvalues in ascending order
    q = eigenvectors[:, 0]
    rot = quaternion_to_rotation_matrix(q)
    aligned = (rot @ moving.T).T
    rmsd = float(np.sqrt(max(eigenvalues[0], 0.0) / len(reference)))
    return aligned, rot, rmsd
