#!/usr/bin/env python3
"""
Rigid-Body Local Relaxation

Relaxes a cluster by moving every molecule as a rigid body. The degrees of
freedom are the external coordinates of the molecules (center of mass and,
for multi-atom molecules, the Euler angles); internal frames are kept fixed.
Minimization uses scipy's L-BFGS-B with the analytic gradient assembled from
the atomic forces:

    dE/dCOM     = -sum_a F_a
    dE/dEuler_k = -sum_a F_a . (dR/dEuler_k @ frame_a)

Molecules whose atoms are all constrained do not move. The tilt angle omega
is bounded to [-pi/2, pi/2]. Non-finite energies count as NONCONVERGED_ENERGY
and a relaxation that ends above the starting energy keeps the start.

Classes:
    RigidBodyRelaxer: relax(geometry) -> Geometry
"""

import logging
from typing import List, Tuple

import numpy as np
from scipy.optimize import minimize

from .CoordinateConversion import (geometry_to_cartesian, molecule_frame,
                                   rotation_derivatives, rotation_matrix)
from .EnergyModel import NONCONVERGED_ENERGY
from .Geometry import Geometry

logger = logging.getLogger(__name__)


DEFAULT_RELAX_ITERATIONS = 200
DEFAULT_GRADIENT_TOLERANCE = 1e-4


class RigidBodyRelaxer:
    """
    Local optimizer over the external coordinates of all molecules.

    Parameters
    ----------
    energy_model : object
        Provides ``energy_and_forces(cartesian) -> (float, np.ndarray)``
    max_iterations : int
        L-BFGS-B iteration cap
    gradient_tolerance : float
        L-BFGS-B projected gradient tolerance
    """

    def __init__(self, energy_model,
                 max_iterations: int = DEFAULT_RELAX_ITERATIONS,
                 gradient_tolerance: float = DEFAULT_GRADIENT_TOLERANCE):
        self.energy_model = energy_model
        self.max_iterations = max_iterations
        self.gradient_tolerance = gradient_tolerance

    def relax(self, geometry: Geometry) -> Geometry:
        """
        Relaxed copy of ``geometry`` with its fitness set to the final energy.

        The input geometry is never modified.
        """
        work = geometry.copy()
        cartesian = geometry_to_cartesian(work, merge_environment=True)

        offsets = cartesian.molecule_offsets()
        movable = [i for i, mol in enumerate(work.molecules) if not np.all(mol.constraints)]
        frames = [molecule_frame(mol) if mol.n_atoms > 1 else np.zeros((1, 3))
                  for mol in work.molecules]

        # (molecule, first parameter index, number of parameters)
        layout: List[Tuple[int, int, int]] = []
        x0, bounds = [], []
        for i in movable:
            mol = work.molecules[i]
            n_par = 3 if mol.n_atoms == 1 else 6
            layout.append((i, len(x0), n_par))
            x0.extend(mol.ext_coords())
            bounds.extend([(None, None)] * 3)
            if n_par == 6:
                bounds.extend([(None, None), (-0.5 * np.pi, 0.5 * np.pi), (None, None)])

        start_energy, _ = self._energy_and_forces(cartesian)
        if not layout:
            work.set_fitness(start_energy)
            return work
        x0 = np.array(x0, dtype=float)

        xyz = cartesian.xyz.copy()

        def place(x: np.ndarray) -> None:
            for i, start, n_par in layout:
                begin = offsets[i]
                end = begin + work.molecules[i].n_atoms
                com = x[start:start + 3]
                if n_par == 3:
                    xyz[begin:end] = com
                else:
                    rot = rotation_matrix(x[start + 3:start + 6])
                    xyz[begin:end] = (rot @ frames[i].T).T + com

        def objective(x: np.ndarray):
            place(x)
            cartesian.xyz = xyz
            energy, forces = self._energy_and_forces(cartesian)
            grad = np.zeros_like(x)
            for i, start, n_par in layout:
                begin = offsets[i]
                end = begin + work.molecules[i].n_atoms
                f = forces[begin:end]
                grad[start:start + 3] = -f.sum(axis=0)
                if n_par == 6:
                    for k, d_rot in enumerate(rotation_derivatives(x[start + 3:start + 6])):
                        grad[start + 3 + k] = -np.sum(f * (d_rot @ frames[i].T).T)
            return energy, grad

        result = minimize(
            objective,
            x0,
            method='L-BFGS-B',
            jac=True,
            bounds=bounds,
            options={
                'maxiter': self.max_iterations,
                'gtol': self.gradient_tolerance,
            }
        )
        logger.debug(f"Rigid-body relaxation: nfev={result.nfev}, nit={result.nit}, "
                     f"E={result.fun:.6f}, success={result.success}")

        for i, start, n_par in layout:
            work.set_ext_coords(i, result.x[start:start + n_par])

        final = geometry_to_cartesian(work, merge_environment=True)
        energy, _ = self._energy_and_forces(final)
        if energy > start_energy:
            logger.debug(f"Relaxation ended above the start ({energy:.6f} vs {start_energy:.6f}), "
                         f"keeping the starting positions")
            for i, start, n_par in layout:
                work.set_ext_coords(i, x0[start:start + n_par])
            energy = start_energy
        work.set_fitness(energy)
        return work

    def _energy_and_forces(self, cartesian) -> Tuple[float, np.ndarray]:
        """Backend energy and forces, NONCONVERGED_ENERGY and zero forces if not finite."""
        energy, forces = self.energy_model.energy_and_forces(cartesian)
        forces = np.asarray(forces, dtype=float)
        if not np.isfinite(energy) or not np.all(np.isfinite(forces)):
            return NONCONVERGED_ENERGY, np.zeros((cartesian.n_atoms, 3))
        return float(energy), forces
