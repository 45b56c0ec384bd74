#!/usr/bin/env python3
"""
Graph-Based Directed Mutation

Relocates the least connected molecule of a cluster. The connectivity graph
between molecules is built from radius-based bond detection with a generous
blow factor; the molecule with the fewest contacts to other molecules is
moved, using the next-least connected molecule as the anchor around which a
new place is searched.

Search strategies (chosen once at construction):
    - GRID: exhaustive grid over COM positions around the anchor crossed with
      a grid of Euler angles
    - CONTINUOUS: bounded derivative-free optimization of the 6 external
      coordinates (3 for single atoms), optionally fully relaxed
    - WATER: geometric heuristic for water clusters that places the oxygen
      atop or below triangles of neighbouring molecules

Every candidate is rejected on collision and otherwise scored with the energy
backend; the lowest energy wins. The best placement is accepted even if it is
worse than the energy before the mutation.

Classes:
    DirMutStrategy: strategy selector
    PlacementTask: scores candidate placements and tracks the best one
    GridSearch, ContinuousSearch, WaterSearch: the search strategies
    DirectedMutation: the operator, mutate(geometry) -> Geometry | None
"""

import logging
import math
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np

from .AtomicProperties import BOHR_TO_ANGSTROM
from .BoundedOptimizer import BoundedOptimizer
from .Connectivity import check_for_collision, connection_counts, select_least_connected
from .CoordinateConversion import (center_of_mass, detect_bonds, geometry_to_cartesian, molecule_frame,
                                   update_molecule_from_cartesian)
from .EnergyModel import NONCONVERGED_ENERGY
from .Geometry import CartesianCoordinates, Geometry
from .RandomUtils import make_rng, signed_uniform
from .RigidAlignment import kearsley_align
from .Tracing import MutationObserver

logger = logging.getLogger(__name__)


DEFAULT_BLOW_BONDS = 3.05
DEFAULT_BLOW_COLLISION = 1.2
DEFAULT_GRID_HALF_LENGTH = 5.0 * BOHR_TO_ANGSTROM
DEFAULT_GRID_INCREMENT = 0.5 * BOHR_TO_ANGSTROM
DEFAULT_EULER_INCREMENT = math.radians(30.0)
DEFAULT_INITIAL_TRUST_RADIUS = 0.1
DEFAULT_FINAL_TRUST_RADIUS = 1e-5
DEFAULT_MAX_EVALUATIONS = 500

JUMP_DETECT_FACTOR = 3.0
DIST_SCALE_FACTOR = 1.042
NEIGHBOURHOOD_FACTOR = 1.5
OD_DISTANCE = 0.5898
DH_DISTANCE = 0.7827

_INDEX_PAIRS = ((0, 1), (0, 2), (1, 2))
_GRID_TOLERANCE = 1e-9


class DirMutStrategy(Enum):
    GRID = 'grid'
    CONTINUOUS = 'continuous'
    WATER = 'water'


class PlacementTask:
    """
    Relocation of one target molecule within a working geometry.

    Scores candidates (collision gate, then energy) and keeps the strictly
    best one.

    Attributes
    ----------
    work : Geometry
        Working copy whose target molecule is moved
    target, anchor : int
        Molecule to relocate and the molecule to place it around
    best_energy : float
        Lowest energy seen (NONCONVERGED_ENERGY while none is feasible)
    best_geometry : Optional[Geometry]
        Copy of the geometry with the best placement
    """

    def __init__(self, work: Geometry, target: int, anchor: int, energy_model,
                 blow_collision: float, collision_check=check_for_collision,
                 observer: Optional[MutationObserver] = None):
        self.work = work
        self.target = target
        self.anchor = anchor
        self.energy_model = energy_model
        self.blow_collision = blow_collision
        self.collision_check = collision_check
        self.observer = observer or MutationObserver()
        self.best_energy = NONCONVERGED_ENERGY
        self.best_geometry: Optional[Geometry] = None
        self.n_evaluations = 0
        self.n_collisions = 0

    @property
    def target_atoms(self) -> int:
        return self.work.molecules[self.target].n_atoms

    def anchor_com(self) -> np.ndarray:
        return self.work.get_com(self.anchor)

    def cartesian(self) -> CartesianCoordinates:
        return geometry_to_cartesian(self.work, merge_environment=True)

    def place(self, point) -> CartesianCoordinates:
        """Move the target to external coordinates ``point``."""
        self.work.set_ext_coords(self.target, point)
        return self.cartesian()

    def evaluate(self, cartesian: CartesianCoordinates) -> float:
        """NONCONVERGED_ENERGY on collision, the single-point energy otherwise."""
        if self.collision_check(cartesian, self.work.bonds, self.blow_collision):
            self.n_collisions += 1
            return NONCONVERGED_ENERGY
        energy = self.energy_model.energy(cartesian, self.work.bonds)
        self.n_evaluations += 1
        self.observer.on_candidate(cartesian, energy)
        return energy

    def is_improvement(self, energy: float) -> bool:
        return energy < self.best_energy

    def consider(self, energy: float, geometry: Geometry) -> bool:
        """Keep a copy of ``geometry`` if ``energy`` is strictly the best so far."""
        if not self.is_improvement(energy):
            return False
        self.best_energy = energy
        self.best_geometry = geometry.copy()
        return True


class GridSearch:
    """Exhaustive search on a COM grid around the anchor times an Euler grid."""

    def __init__(self, half_length: float = DEFAULT_GRID_HALF_LENGTH,
                 increment: float = DEFAULT_GRID_INCREMENT,
                 euler_increment: float = DEFAULT_EULER_INCREMENT):
        if increment <= 0.0 or euler_increment <= 0.0:
            raise ValueError("Grid increments must be positive")
        self.half_length = half_length
        self.increment = increment
        self.euler_increment = euler_increment

    @staticmethod
    def _n_steps(span: float, increment: float) -> int:
        return int(math.floor(span / increment + _GRID_TOLERANCE))

    def euler_points(self, n_atoms: int) -> List[Tuple[float, float, float]]:
        if n_atoms == 1:
            return [(0.0, 0.0, 0.0)]
        n_phi = self._n_steps(2.0 * math.pi, self.euler_increment)
        n_omega = self._n_steps(math.pi, self.euler_increment)
        n_psi = n_phi
        return [(-math.pi + i * self.euler_increment,
                 -0.5 * math.pi + j * self.euler_increment,
                 -math.pi + k * self.euler_increment)
                for i in range(n_phi) for j in range(n_omega) for k in range(n_psi)]

    def com_axis(self, center: float) -> np.ndarray:
        n_points = int(math.ceil(2.0 * self.half_length / self.increment - _GRID_TOLERANCE))
        return center - self.half_length + np.arange(n_points) * self.increment

    def search(self, task: PlacementTask) -> None:
        com = task.anchor_com()
        eulers = self.euler_points(task.target_atoms)
        for x in self.com_axis(com[0]):
            for y in self.com_axis(com[1]):
                for z in self.com_axis(com[2]):
                    for euler in eulers:
                        point = [x, y, z] if task.target_atoms == 1 else [x, y, z, *euler]
                        energy = task.evaluate(task.place(point))
                        task.consider(energy, task.work)


class ContinuousSearch:
    """
    Bounded optimization of the target's external coordinates.

    The COM is bounded by the anchor COM +/- half_length, the Euler angles by
    their canonical ranges. With ``fully_relaxed`` every collision-free pose
    is locally relaxed before scoring.
    """

    def __init__(self, half_length: float = DEFAULT_GRID_HALF_LENGTH,
                 initial_trust_radius: float = DEFAULT_INITIAL_TRUST_RADIUS,
                 final_trust_radius: float = DEFAULT_FINAL_TRUST_RADIUS,
                 max_evaluations: int = DEFAULT_MAX_EVALUATIONS,
                 local_optimizer=None, fully_relaxed: bool = False,
                 rng: Optional[np.random.Generator] = None):
        if fully_relaxed and local_optimizer is None:
            raise ValueError("Fully relaxed search needs a local optimizer")
        self.half_length = half_length
        self.initial_trust_radius = initial_trust_radius
        self.final_trust_radius = final_trust_radius
        self.max_evaluations = max_evaluations
        self.local_optimizer = local_optimizer
        self.fully_relaxed = fully_relaxed
        self.rng = make_rng(rng)

    def optimizer_for(self, task: PlacementTask) -> BoundedOptimizer:
        com = task.anchor_com()
        lower = list(com - self.half_length)
        upper = list(com + self.half_length)
        if task.target_atoms > 1:
            lower += [-math.pi, -0.5 * math.pi, -math.pi]
            upper += [math.pi, 0.5 * math.pi, math.pi]
        return BoundedOptimizer(lower, upper, self.initial_trust_radius,
                                self.final_trust_radius, self.max_evaluations)

    def initial_guess(self, task: PlacementTask) -> np.ndarray:
        com = task.anchor_com()
        guess = [c + signed_uniform(self.rng, 2.0) for c in com]
        if task.target_atoms > 1:
            guess += [signed_uniform(self.rng, math.pi),
                      signed_uniform(self.rng, 0.5 * math.pi),
                      signed_uniform(self.rng, math.pi)]
        return np.array(guess)

    def search(self, task: PlacementTask) -> None:
        optimizer = self.optimizer_for(task)

        def objective(point: np.ndarray) -> float:
            cartesian = task.place(point)
            if not self.fully_relaxed:
                energy = task.evaluate(cartesian)
                task.consider(energy, task.work)
                return energy
            if task.collision_check(cartesian, task.work.bonds, task.blow_collision):
                task.n_collisions += 1
                return NONCONVERGED_ENERGY
            relaxed = self.local_optimizer.relax(task.work)
            task.n_evaluations += 1
            task.consider(relaxed.fitness, relaxed)
            return relaxed.fitness

        _, best, info = optimizer.minimize(objective, self.initial_guess(task))
        logger.debug(f"Continuous placement search: best={best:.6f}, nfev={info['nfev']}")


def give_new_positions(a: np.ndarray, b: np.ndarray, c: np.ndarray,
                       dist: float) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    """
    The two points at distance ``dist`` from all of a, b and c.

    Returns None if a pair of the triangle is 2 * dist or more apart, the
    triangle is degenerate, or its circumradius exceeds ``dist``.
    """
    limit = 2.0 * dist
    ab_dist = np.linalg.norm(b - a)
    ac_dist = np.linalg.norm(c - a)
    bc_dist = np.linalg.norm(c - b)
    if ab_dist >= limit or ac_dist >= limit or bc_dist >= limit:
        return None
    if ab_dist < 1e-10 or ac_dist < 1e-10:
        return None

    ab = (b - a) / ab_dist
    ac = (c - a) / ac_dist
    cos_a = float(np.clip(np.dot(ab, ac), -1.0, 1.0))
    sin_a = math.sqrt(1.0 - cos_a * cos_a)
    if sin_a < 1e-8:
        return None
    r_circ = 0.5 * bc_dist / sin_a
    if r_circ > dist:
        return None

    # circumcenter p of the triangle
    half_b = math.sqrt(max(r_circ * r_circ - 0.25 * ab_dist * ab_dist, 0.0))
    n = a + ac_dist * cos_a * ab
    nc = c - n
    nc_dist = np.linalg.norm(nc)
    if nc_dist < 1e-10:
        return None
    nc = nc / nc_dist
    # the circumcenter lies on the far side of ab when the angle at c is obtuse
    if np.dot(a - c, b - c) < 0.0:
        half_b = -half_b
    p = a + 0.5 * ab_dist * ab + half_b * nc

    # height above the triangle plane
    e_sq = dist * dist - 0.25 * ab_dist * ab_dist
    h = math.sqrt(max(e_sq - half_b * half_b, 0.0))
    normal = np.cross(ab, ac)
    normal = normal / np.linalg.norm(normal)
    return p + h * normal, p - h * normal


def give_new_hydrogens(o: np.ndarray, b: np.ndarray, c: np.ndarray) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    """
    Hydrogen positions for an oxygen at ``o`` pointing towards b and c.

    Both hydrogens lie in the o, b, c plane, symmetric around the bisector of
    the angle b-o-c, using the O-D / D-H distances of a relaxed water monomer
    (D being the midpoint of the two hydrogens).
    """
    ob = b - o
    oc = c - o
    ob_dist = np.linalg.norm(ob)
    oc_dist = np.linalg.norm(oc)
    if ob_dist < 1e-10 or oc_dist < 1e-10:
        return None
    ob = ob / ob_dist
    oc = oc / oc_dist
    w = 0.5 * (ob + oc)
    w_norm = np.linalg.norm(w)
    mn = oc - ob
    mn_norm = np.linalg.norm(mn)
    if w_norm < 1e-10 or mn_norm < 1e-10:
        return None
    d = o + OD_DISTANCE * w / w_norm
    mn = mn / mn_norm
    return d + DH_DISTANCE * mn, d - DH_DISTANCE * mn


class WaterSearch:
    """
    Placement heuristic for water clusters (O, H, H atom order).

    A representative COM-COM distance is estimated from the sorted distance
    list (mean up to the first jump). For every pair of molecules near the
    anchor, the oxygen is put at one of the two points at that distance from
    the anchor and the pair, and the hydrogens are placed towards two of the
    three triangle corners. The monomer keeps its own rigid shape: its frame
    is superposed onto each ideal placement and the fitted pose is scored.
    """

    @staticmethod
    def fit_frame(frame: np.ndarray, xyz: np.ndarray, masses: np.ndarray) -> np.ndarray:
        """Rigid copy of ``frame`` superposed onto ``xyz``, centered at its center of mass."""
        com = center_of_mass(xyz, masses)
        centered = frame - center_of_mass(frame, masses)
        aligned, _, _ = kearsley_align(xyz - com, centered)
        return aligned + com

    @staticmethod
    def check_water(geometry: Geometry) -> None:
        for mol in geometry.molecules:
            elements = [e.upper() for e in mol.elements]
            if elements != ['O', 'H', 'H']:
                raise ValueError("Water directed mutation needs a water system in O/H/H order; "
                                 f"molecule {mol.mol_id} has {mol.elements}")

    @staticmethod
    def representative_distance(coms: List[np.ndarray]) -> float:
        dists = sorted(float(np.linalg.norm(coms[i] - coms[j]))
                       for i in range(len(coms)) for j in range(i))
        if not dists:
            raise ValueError("Need at least two molecules")
        max_diff = 0.0
        max_diff_old = 0.0
        jump = -1
        for i in range(len(dists) - 1):
            diff = abs(dists[i + 1] - dists[i])
            if diff > max_diff:
                max_diff_old = max_diff
                max_diff = diff
            if max_diff_old > 0.0 and max_diff > JUMP_DETECT_FACTOR * max_diff_old:
                jump = i
                break
        if jump > 0:
            return float(np.mean(dists[:jump]))
        return dists[0] * DIST_SCALE_FACTOR

    def search(self, task: PlacementTask) -> None:
        work = task.work
        self.check_water(work)
        coms = [work.get_com(i) for i in range(work.n_molecules)]
        dist = self.representative_distance(coms)
        anchor_com = coms[task.anchor]
        neighbourhood = [i for i in range(work.n_molecules)
                         if i != task.anchor
                         and np.linalg.norm(coms[i] - anchor_com) < NEIGHBOURHOOD_FACTOR * dist]
        logger.debug(f"Water placement: distance {dist:.4f}, neighbourhood {neighbourhood}")

        target = work.molecules[task.target]
        frame = molecule_frame(target)
        cartesian = task.cartesian()
        for ii, i in enumerate(neighbourhood):
            for j in neighbourhood[ii + 1:]:
                triple = (anchor_com, coms[i], coms[j])
                positions = give_new_positions(triple[0], triple[1], triple[2], dist)
                if positions is None:
                    continue
                for o in positions:
                    for n, m in _INDEX_PAIRS:
                        hydrogens = give_new_hydrogens(o, triple[n], triple[m])
                        if hydrogens is None:
                            continue
                        ideal = np.vstack([o, hydrogens[0], hydrogens[1]])
                        xyz = self.fit_frame(frame, ideal, target.masses)
                        cartesian.set_molecule_xyz(task.target, xyz)
                        energy = task.evaluate(cartesian)
                        if task.is_improvement(energy):
                            candidate = work.copy()
                            update_molecule_from_cartesian(candidate.molecules[task.target], xyz)
                            task.consider(energy, candidate)


class DirectedMutation:
    """
    Graph-based directed mutation operator.

    Parameters
    ----------
    energy_model : object
        Provides ``energy(cartesian, bonds) -> float``
    strategy : DirMutStrategy
        Placement search strategy
    local_optimizer : object, optional
        Provides ``relax(geometry) -> Geometry``; needed for
        ``relax_first`` and ``fully_relaxed``
    blow_bonds : float
        Blow factor of the connectivity detection
    blow_collision : float
        Blow factor of the collision detection
    collision_check : callable
        ``(cartesian, bonds, blow) -> bool``
    relax_first : bool
        Locally relax the geometry before mutating it
    check_collision_first : bool
        Return None if the input (after optional relaxation) has a collision
    fully_relaxed : bool
        Score continuous-search poses after local relaxation
    grid_half_length, grid_increment, euler_increment : float
        Grid (and continuous COM box) parameters
    initial_trust_radius, final_trust_radius : float
        Continuous search trust radii (normalized units)
    max_evaluations : int
        Continuous search evaluation cap
    observer : MutationObserver, optional
        Receives selection, candidates and the result
    seed : int or numpy.random.Generator, optional
        Source of randomness
    """

    def __init__(self, energy_model, strategy: DirMutStrategy = DirMutStrategy.GRID,
                 local_optimizer=None,
                 blow_bonds: float = DEFAULT_BLOW_BONDS,
                 blow_collision: float = DEFAULT_BLOW_COLLISION,
                 collision_check=check_for_collision,
                 relax_first: bool = False,
                 check_collision_first: bool = False,
                 fully_relaxed: bool = False,
                 grid_half_length: float = DEFAULT_GRID_HALF_LENGTH,
                 grid_increment: float = DEFAULT_GRID_INCREMENT,
                 euler_increment: float = DEFAULT_EULER_INCREMENT,
                 initial_trust_radius: float = DEFAULT_INITIAL_TRUST_RADIUS,
                 final_trust_radius: float = DEFAULT_FINAL_TRUST_RADIUS,
                 max_evaluations: int = DEFAULT_MAX_EVALUATIONS,
                 observer: Optional[MutationObserver] = None,
                 seed=None):
        if relax_first and local_optimizer is None:
            raise ValueError("relax_first needs a local optimizer")
        self.energy_model = energy_model
        self.strategy = DirMutStrategy(strategy)
        self.local_optimizer = local_optimizer
        self.blow_bonds = blow_bonds
        self.blow_collision = blow_collision
        self.collision_check = collision_check
        self.relax_first = relax_first
        self.check_collision_first = check_collision_first
        self.observer = observer or MutationObserver()
        self.rng = make_rng(seed)

        if self.strategy is DirMutStrategy.GRID:
            self.search = GridSearch(grid_half_length, grid_increment, euler_increment)
        elif self.strategy is DirMutStrategy.CONTINUOUS:
            self.search = ContinuousSearch(grid_half_length, initial_trust_radius, final_trust_radius,
                                           max_evaluations, local_optimizer, fully_relaxed, self.rng)
        else:
            self.search = WaterSearch()

    def mutate(self, geometry: Geometry) -> Optional[Geometry]:
        """
        Relocate the least connected molecule of ``geometry``.

        Returns
        -------
        Optional[Geometry]
            The mutated copy with its fitness set to the best energy, an
            unmodified copy if no feasible place was found, or None if the
            input was rejected by the initial collision check
        """
        if geometry.n_molecules < 2:
            raise ValueError("Directed mutation needs at least two molecules")

        work = geometry.copy()
        if self.relax_first:
            work = self.local_optimizer.relax(work)

        cartesian = geometry_to_cartesian(work, merge_environment=True)
        if self.check_collision_first and self.collision_check(cartesian, work.bonds, self.blow_collision):
            logger.debug("Input geometry has a collision, rejecting it")
            return None

        energy_before = self.energy_model.energy(cartesian, work.bonds)

        full_bonds = detect_bonds(cartesian, self.blow_bonds)
        counts = connection_counts(cartesian, full_bonds, n_molecules=work.n_molecules)
        target, anchor = select_least_connected(counts)
        logger.debug(f"Connections per molecule {list(counts)}: moving {target}, anchor {anchor}")
        self.observer.on_selection(target, anchor, counts)

        task = PlacementTask(work, target, anchor, self.energy_model, self.blow_collision,
                             self.collision_check, self.observer)
        self.search.search(task)
        logger.debug(f"Placement search: {task.n_evaluations} energy evaluations, "
                     f"{task.n_collisions} collisions")

        if task.best_geometry is None or task.best_energy >= NONCONVERGED_ENERGY:
            logger.info("Could not find any place that was collision free and had a reasonable energy.")
            result = geometry.copy()
            self.observer.on_result(result)
            return result

        if task.best_energy >= energy_before:
            logger.info(f"No place better than before ({task.best_energy:.6f} vs {energy_before:.6f}), "
                        f"accepting the worse placement.")

        result = task.best_geometry
        result.set_fitness(task.best_energy)
        self.observer.on_result(result)
        return result
