#!/usr/bin/env python3
"""
Merging Phenotype Crossover

Cuts both parents with a plane perpendicular to z and exchanges the
molecules above the plane. The father's plane height is sampled (ZEROZ,
GAUSSDISTR, NORMDISTR) until molecules lie on both sides; the mother's plane
is put between the COM heights such that the same number of molecules lies
underneath. If the molecular types above the two planes differ, molecules of
the mother child swap places until they match. The exchanged block of each
child is then re-docked by a bounded derivative-free optimization over a
rigid-body transformation:

    - 6D: translation (x, y, z) and Euler rotation about the origin
    - 2D: shift along z and rotation around the z axis

Colliding placements score NONCONVERGED_ENERGY, dissociated ones half of it;
a child whose best docking is still infeasible fails the crossover.

Classes:
    CuttingPlaneMode: plane height sampling mode
    MergeCrossover: crossover(mother, father) -> (child1, child2) | None
"""

import logging
import math
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .BoundedOptimizer import BoundedOptimizer
from .Connectivity import check_for_collision, check_for_dissociation
from .CoordinateConversion import (geometry_to_cartesian, rotate_xyz, rotate_xyz_around_z,
                                   update_geometry_from_cartesian)
from .EnergyModel import NONCONVERGED_ENERGY
from .Geometry import Geometry
from .RandomUtils import clipped_gaussian, half_gaussian, make_rng

logger = logging.getLogger(__name__)


DEFAULT_BLOW_COLLISION = 1.2
DEFAULT_BLOW_DISSOCIATION = 3.0
MAX_PLANE_ATTEMPTS = 100
MIN_PLANE_GAP = 1e-8
INFEASIBLE_ENERGY = 0.5 * NONCONVERGED_ENERGY

DEFAULT_BOUNDS_6D = ([-5.0, -5.0, -5.0, -math.pi, -0.5 * math.pi, -math.pi],
                     [10.0, 10.0, 10.0, math.pi, 0.5 * math.pi, math.pi])
DEFAULT_INITIAL_TRUST_RADIUS_6D = 5e-2
DEFAULT_FINAL_TRUST_RADIUS_6D = 1e-4
DEFAULT_MAX_EVALUATIONS_6D = 200

DEFAULT_BOUNDS_2D = ([-1.0, 0.0], [15.0, 2.0 * math.pi])
DEFAULT_INITIAL_TRUST_RADIUS_2D = 0.1
DEFAULT_FINAL_TRUST_RADIUS_2D = 1e-5
DEFAULT_MAX_EVALUATIONS_2D = 100

TRANSLATION_GUESS_STD = 0.1
HEIGHT_GUESS_STD = 1.0


class CuttingPlaneMode(Enum):
    ZEROZ = 'zeroz'
    GAUSSDISTR = 'gaussdistr'
    NORMDISTR = 'normdistr'


def random_cutting_plane(mode: CuttingPlaneMode, heights: Sequence[float],
                         rng: np.random.Generator) -> float:
    """
    Sample a cutting plane height.

    ZEROZ always gives 0. GAUSSDISTR draws g from a gaussian clipped to
    [-1, 1] and scales it by the largest height (g >= 0) or the lowest
    height (g < 0). NORMDISTR is uniform between the lowest and largest
    height.
    """
    mode = CuttingPlaneMode(mode)
    if mode is CuttingPlaneMode.ZEROZ:
        return 0.0
    low = float(np.min(heights))
    high = float(np.max(heights))
    if mode is CuttingPlaneMode.GAUSSDISTR:
        g = clipped_gaussian(rng)
        return g * high if g >= 0.0 else abs(g) * low
    return low + rng.random() * (high - low)


def optimal_plane_height(heights: Sequence[float], n_under: int) -> Optional[float]:
    """
    Height with exactly ``n_under`` values at or below it.

    The plane is put halfway between the neighbouring sorted heights. None if
    these two heights are closer than MIN_PLANE_GAP.
    """
    values = np.sort(np.asarray(heights, dtype=float))
    if not 0 < n_under < len(values):
        raise ValueError(f"Cannot put {n_under} of {len(values)} molecules under a plane")
    below = values[n_under - 1]
    above = values[n_under]
    if abs(above - below) < MIN_PLANE_GAP:
        logger.info(f"Absolute difference {abs(above - below)} too small for {n_under} molecules underneath")
        return None
    return below + 0.5 * (above - below)


def split_by_plane(heights: Sequence[float], plane: float) -> Tuple[List[int], List[int]]:
    """Indices under (z <= plane) and above the plane."""
    under = [i for i, z in enumerate(heights) if z <= plane]
    above = [i for i, z in enumerate(heights) if z > plane]
    return under, above


def are_geometries_still_correct(original: Geometry, offspring: Geometry) -> bool:
    """Same molecule count, atom counts and (case-insensitive) element order."""
    if original.n_molecules != offspring.n_molecules:
        return False
    for mol_or, mol_of in zip(original.molecules, offspring.molecules):
        if mol_of is None or mol_or.n_atoms != mol_of.n_atoms:
            return False
        for e_or, e_of in zip(mol_or.elements, mol_of.elements):
            if e_or.upper() != e_of.upper():
                return False
    return True


def _type_profile(types: Sequence[int], indices: Sequence[int], n_types: int) -> np.ndarray:
    counts = np.zeros(n_types, dtype=int)
    for i in indices:
        counts[types[i]] += 1
    return counts


class MergeCrossover:
    """
    Plane-cutting crossover with rigid re-docking of the exchanged halves.

    Parameters
    ----------
    energy_model : object
        Provides ``energy(cartesian, bonds) -> float``
    plane_mode : CuttingPlaneMode
        Sampling mode of the father's cutting plane
    use_6d : bool
        6D (translation + Euler) instead of 2D (z shift + z rotation) docking
    blow_collision : float
        Blow factor of the collision gate
    blow_dissociation : float
        Blow factor of the dissociation gate
    collision_check : callable
        ``(cartesian, bonds, blow) -> bool``
    dissociation_check : callable
        ``(cartesian, blow) -> bool``
    check_feasibility : bool
        Apply the collision and dissociation gates in the objective
    random_translation : bool
        Start the 6D translation from a half-gaussian draw instead of zero
    lower, upper : Sequence[float], optional
        Docking bounds (the 2D or 6D defaults otherwise)
    initial_trust_radius, final_trust_radius : float, optional
        Trust region radii in normalized units
    max_evaluations : int, optional
        Evaluation cap per child
    seed : int or numpy.random.Generator, optional
        Source of randomness
    """

    def __init__(self, energy_model,
                 plane_mode: CuttingPlaneMode = CuttingPlaneMode.NORMDISTR,
                 use_6d: bool = True,
                 blow_collision: float = DEFAULT_BLOW_COLLISION,
                 blow_dissociation: float = DEFAULT_BLOW_DISSOCIATION,
                 collision_check=check_for_collision,
                 dissociation_check=check_for_dissociation,
                 check_feasibility: bool = True,
                 random_translation: bool = False,
                 lower: Optional[Sequence[float]] = None,
                 upper: Optional[Sequence[float]] = None,
                 initial_trust_radius: Optional[float] = None,
                 final_trust_radius: Optional[float] = None,
                 max_evaluations: Optional[int] = None,
                 seed=None):
        self.energy_model = energy_model
        self.plane_mode = CuttingPlaneMode(plane_mode)
        self.use_6d = use_6d
        self.blow_collision = blow_collision
        self.blow_dissociation = blow_dissociation
        self.collision_check = collision_check
        self.dissociation_check = dissociation_check
        self.check_feasibility = check_feasibility
        self.random_translation = random_translation
        self.rng = make_rng(seed)

        if use_6d:
            defaults = (DEFAULT_BOUNDS_6D, DEFAULT_INITIAL_TRUST_RADIUS_6D,
                        DEFAULT_FINAL_TRUST_RADIUS_6D, DEFAULT_MAX_EVALUATIONS_6D)
        else:
            defaults = (DEFAULT_BOUNDS_2D, DEFAULT_INITIAL_TRUST_RADIUS_2D,
                        DEFAULT_FINAL_TRUST_RADIUS_2D, DEFAULT_MAX_EVALUATIONS_2D)
        (def_lower, def_upper), def_initial, def_final, def_evals = defaults
        self.optimizer = BoundedOptimizer(
            def_lower if lower is None else lower,
            def_upper if upper is None else upper,
            def_initial if initial_trust_radius is None else initial_trust_radius,
            def_final if final_trust_radius is None else final_trust_radius,
            def_evals if max_evaluations is None else max_evaluations)
        if self.optimizer.n_parameters != (6 if use_6d else 2):
            raise ValueError(f"{'6D' if use_6d else '2D'} docking needs "
                             f"{6 if use_6d else 2} bounds, got {self.optimizer.n_parameters}")

    # ------------------------------------------------------------------
    # Cutting and exchanging
    # ------------------------------------------------------------------

    def _father_plane(self, heights: np.ndarray) -> Optional[Tuple[float, List[int], List[int]]]:
        n_mols = len(heights)
        for _ in range(MAX_PLANE_ATTEMPTS):
            plane = random_cutting_plane(self.plane_mode, heights, self.rng)
            under, above = split_by_plane(heights, plane)
            if 0 < len(under) < n_mols:
                return plane, under, above
        return None

    def _balance_types(self, child: Geometry, types: List[int], mother_above: List[int],
                       target_profile: np.ndarray) -> List[int]:
        """
        Swap COM and orientation between molecules of ``child`` until the
        types above the plane match ``target_profile``. Returns the new
        above-plane indices.
        """
        n_types = len(target_profile)
        above = list(mother_above)
        discrepancy = target_profile - _type_profile(types, above, n_types)

        for t in range(n_types):
            while discrepancy[t] > 0:
                ups = [i for i in range(len(types)) if types[i] == t and i not in above]
                surplus = [s for s in range(n_types) if discrepancy[s] < 0]
                down_type = surplus[self.rng.integers(len(surplus))]
                downs = [i for i in above if types[i] == down_type]
                mol_up = ups[self.rng.integers(len(ups))]
                mol_down = downs[self.rng.integers(len(downs))]

                up_com, up_eulers = child.get_com(mol_up), child.get_eulers(mol_up)
                child.molecules[mol_up].com = child.get_com(mol_down)
                child.molecules[mol_up].eulers = child.get_eulers(mol_down)
                child.molecules[mol_down].com = up_com
                child.molecules[mol_down].eulers = up_eulers
                child.synced = False

                above.remove(mol_down)
                above.append(mol_up)
                discrepancy[t] -= 1
                discrepancy[down_type] += 1
        return above

    @staticmethod
    def _shift_z(molecule, dz: float):
        com = molecule.com
        com[2] += dz
        molecule.com = com
        return molecule

    def _exchange(self, child1: Geometry, child2: Geometry, types: List[int],
                  father_above: List[int], mother_above: List[int],
                  plane_father: float, plane_mother: float) -> bool:
        """Swap the above-plane molecules slot by slot by type."""
        father_mols = [mol for mol in child1.molecules]
        mother_mols = [mol for mol in child2.molecules]
        free = list(sorted(mother_above))
        for f in father_above:
            match = next((m for m in free if types[m] == types[f]), None)
            if match is None:
                return False
            free.remove(match)
            into_child1 = self._shift_z(mother_mols[match].copy(), plane_father - plane_mother)
            into_child2 = self._shift_z(father_mols[f].copy(), plane_mother - plane_father)
            child1.set_molecule(f, into_child1)
            child2.set_molecule(match, into_child2)
        return True

    # ------------------------------------------------------------------
    # Re-docking
    # ------------------------------------------------------------------

    def initial_guess(self) -> np.ndarray:
        lower, upper = self.optimizer.lower, self.optimizer.upper
        guess = np.zeros(self.optimizer.n_parameters)
        if self.use_6d:
            if self.random_translation:
                for k in range(3):
                    guess[k] = half_gaussian(self.rng, lower[k], upper[k], TRANSLATION_GUESS_STD)
            for k in range(3, 6):
                guess[k] = lower[k] + self.rng.random() * (upper[k] - lower[k])
        else:
            guess[0] = half_gaussian(self.rng, lower[0], upper[0], HEIGHT_GUESS_STD)
            guess[1] = lower[1] + self.rng.random() * (upper[1] - lower[1])
        return guess

    def merge(self, base_xyz: np.ndarray, up_atoms: np.ndarray, point: Sequence[float]) -> np.ndarray:
        """Coordinates with the ``up_atoms`` block moved by the docking ``point``."""
        xyz = base_xyz.copy()
        block = base_xyz[up_atoms]
        if self.use_6d:
            xyz[up_atoms] = rotate_xyz(block, point[3:6]) + np.asarray(point[:3])
        else:
            shifted = block + np.array([0.0, 0.0, point[0]])
            xyz[up_atoms] = rotate_xyz_around_z(shifted, point[1])
        return xyz

    def _dock(self, child: Geometry, up_ids: List[int]) -> Tuple[float, Dict]:
        cartesian = geometry_to_cartesian(child, merge_environment=True)
        base_xyz = cartesian.xyz.copy()
        up_atoms = np.concatenate([np.arange(cartesian.n_atoms)[cartesian.molecule_slice(i)]
                                   for i in sorted(up_ids)])

        def objective(point: np.ndarray) -> float:
            cartesian.xyz = self.merge(base_xyz, up_atoms, point)
            if self.check_feasibility:
                if self.collision_check(cartesian, child.bonds, self.blow_collision):
                    return NONCONVERGED_ENERGY
                if self.dissociation_check(cartesian, self.blow_dissociation):
                    return INFEASIBLE_ENERGY
            return self.energy_model.energy(cartesian, child.bonds)

        best_x, best_f, info = self.optimizer.minimize(objective, self.initial_guess())
        cartesian.xyz = self.merge(base_xyz, up_atoms, best_x)
        update_geometry_from_cartesian(cartesian, child)
        child.set_fitness(best_f)
        return best_f, info

    # ------------------------------------------------------------------

    def crossover(self, mother: Geometry, father: Geometry,
                  future_id: Optional[int] = None) -> Optional[Tuple[Geometry, Geometry]]:
        """
        Merge mother and father into two children.

        Returns
        -------
        Optional[Tuple[Geometry, Geometry]]
            (child1, child2); child1 is based on the father, child2 on the
            mother, both with geom_id ``future_id`` (-1 when not given).
            None if no valid cut or exchange was found, or if the
            feasibility gates rejected every docking of a child.

        Raises
        ------
        ValueError
            If the parents do not have the same molecular type at every index
        """
        if mother.n_molecules != father.n_molecules:
            raise ValueError(f"Parents differ in molecule count: {mother.n_molecules} vs {father.n_molecules}")
        if mother.n_molecules < 2:
            raise ValueError("Merge crossover needs at least two molecules")
        types = father.molecule_types()
        if [s.upper() for s in mother.sids()] != [s.upper() for s in father.sids()]:
            raise ValueError("Parents must have the same molecular type at every index")

        child1 = father.copy()
        child2 = mother.copy()
        child_id = -1 if future_id is None else future_id
        child1.geom_id = child_id
        child2.geom_id = child_id

        father_heights = np.array([child1.get_com(i)[2] for i in range(child1.n_molecules)])
        mother_heights = np.array([child2.get_com(i)[2] for i in range(child2.n_molecules)])

        cut = self._father_plane(father_heights)
        if cut is None:
            logger.warning("Too many attempts in finding a cutting plane for the father")
            return None
        plane_father, father_under, father_above = cut

        plane_mother = optimal_plane_height(mother_heights, len(father_under))
        if plane_mother is None:
            logger.warning("Could not find a cutting plane for the mother, two COMs too close")
            return None
        mother_under, mother_above = split_by_plane(mother_heights, plane_mother)
        if len(mother_under) != len(father_under):
            logger.warning(f"Plane height mismatch: {len(father_under)} vs {len(mother_under)} underneath")
            return None
        logger.debug(f"Cutting planes: father {plane_father:.4f} ({len(father_under)} under), "
                     f"mother {plane_mother:.4f}")

        n_types = max(types) + 1
        father_profile = _type_profile(types, father_above, n_types)
        self._balance_types(child2, types, mother_above, father_profile)

        mother_heights = np.array([child2.get_com(i)[2] for i in range(child2.n_molecules)])
        mother_under, mother_above = split_by_plane(mother_heights, plane_mother)
        if len(mother_under) != len(father_under):
            logger.warning(f"Lost the plane partition while balancing types: "
                           f"{len(mother_under)} vs {len(father_under)} underneath")
            return None
        if not np.array_equal(_type_profile(types, mother_above, n_types), father_profile):
            logger.warning("Type profiles above the planes still differ after balancing")
            return None

        if not self._exchange(child1, child2, types, father_above, mother_above,
                              plane_father, plane_mother):
            logger.warning("No molecule of matching type to exchange")
            return None
        if child1.molecule_types() != types or child2.molecule_types() != types:
            logger.warning(f"Molecular types changed in the exchange: {child1.molecule_types()} "
                           f"and {child2.molecule_types()} vs {types}")
            return None

        energy1, info1 = self._dock(child1, father_above)
        energy2, info2 = self._dock(child2, mother_above)
        logger.debug(f"Docking: child1 E={energy1:.6f} ({info1['nfev']} evaluations), "
                     f"child2 E={energy2:.6f} ({info2['nfev']} evaluations)")
        if self.check_feasibility and max(energy1, energy2) >= INFEASIBLE_ENERGY:
            logger.warning(f"No feasible docking found: child1 E={energy1:.6f}, child2 E={energy2:.6f}")
            return None

        for child in (child1, child2):
            child.mother_id = mother.geom_id
            child.father_id = father.geom_id

        child1_fine = are_geometries_still_correct(mother, child1)
        child2_fine = are_geometries_still_correct(mother, child2)
        if not child1_fine or not child2_fine:
            logger.warning(f"After crossover, child1 is {child1_fine} and child2 is {child2_fine}")
            return None
        return child1, child2
