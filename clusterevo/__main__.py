#!/usr/bin/env python3
"""
Command-line interface for the ClusterEvo genetic operators.

Reads clusters from XYZ files (the molecule partition is given explicitly as
the number of atoms of each molecule), applies a directed mutation or a
merging crossover using the OpenMM nonbonded energy model, and writes the
resulting structures as XYZ.

Example usage:
    # Relocate the least connected water of a (H2O)3 cluster
    cluster-evo mutate -i water3.xyz -p 3 3 3 --strategy water -o mutated.xyz

    # Merge two parents with 2D docking
    python -m clusterevo crossover -m mother.xyz -f father.xyz -p 3 3 3 --docking 2d -o child
"""

import argparse
import logging
import math
import sys
from typing import Optional

from . import __version__
from .AtomicProperties import BOHR_TO_ANGSTROM
from .DirectedMutation import (DEFAULT_BLOW_BONDS, DEFAULT_BLOW_COLLISION, DEFAULT_MAX_EVALUATIONS,
                               DirMutStrategy, DirectedMutation)
from .EnergyModel import OpenMMEnergyModel
from .IOTools import geometry_from_xyz, write_geometry_xyz
from .LocalOptimizer import DEFAULT_RELAX_ITERATIONS, RigidBodyRelaxer
from .MergeCrossover import DEFAULT_BLOW_DISSOCIATION, CuttingPlaneMode, MergeCrossover
from .Tracing import XYZTrajectoryObserver


# Custom formatter that removes "(default: False)" from boolean flags
class CustomHelpFormatter(argparse.ArgumentDefaultsHelpFormatter):
    def _get_help_string(self, action: argparse.Action) -> Optional[str]:
        help_str = super()._get_help_string(action)
        if help_str and "(default: False)" in help_str:
            help_str = help_str.replace(" (default: False)", "")
        return help_str


# Default configuration values (grid values in bohr and degrees, as commonly quoted)
DEFAULT_GRID_HALF_LENGTH_BOHR = 5.0
DEFAULT_GRID_INCREMENT_BOHR = 0.5
DEFAULT_EULER_INCREMENT_DEG = 30.0
DEFAULT_PLATFORM = 'CPU'

logger = logging.getLogger('clusterevo')


def setup_logging(verbose: bool) -> None:
    """Send package log records to stdout."""
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if logger.handlers:
        return
    log_stream_handler = logging.StreamHandler(sys.stdout)
    log_stream_handler.setLevel(logging.DEBUG)
    log_formatter = logging.Formatter(
        "%(name)s %(asctime)s %(levelname)s %(message)s")
    log_stream_handler.setFormatter(log_formatter)
    logger.addHandler(log_stream_handler)


def _add_cluster_arguments(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group('Cluster Definition')
    group.add_argument('-p', '--partition', required=True, nargs='+', type=int,
                       help='Number of atoms of each molecule, in file order. Example: -p 3 3 3')
    group.add_argument('--flexible', nargs='+', type=int, default=None,
                       help='Indices (0-based) of molecules treated as flexible (Z-matrix based)')
    group.add_argument('--environment-atoms', type=int, default=0,
                       help='Number of trailing atoms forming a fixed environment')
    group.add_argument('--platform', default=DEFAULT_PLATFORM,
                       help='OpenMM platform used for energy evaluations')
    group.add_argument('--blow-collision', type=float, default=DEFAULT_BLOW_COLLISION,
                       help='Blow factor of the collision detection')
    group.add_argument('--seed', type=int, default=None,
                       help='Seed of the random number generator')


def parse_arguments(argv=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description='Genetic operators for molecular cluster structure search',
        formatter_class=CustomHelpFormatter,
        epilog='For more information, see the DirectedMutation and MergeCrossover module documentation.'
    )
    parser.add_argument('--version', action='version',
                        version=f'%(prog)s {__version__}',
                        help='Show version number and exit')
    parser.add_argument('-v', '--verbose', action='store_true',
                        default=False,
                        help='Print verbose progress output')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # Directed mutation
    mutate = subparsers.add_parser('mutate', formatter_class=CustomHelpFormatter,
                                   help='Relocate the least connected molecule of a cluster')
    io_group = mutate.add_argument_group('Input/Output Files')
    io_group.add_argument('-i', '--input', required=True,
                          help='Input cluster (.xyz)')
    io_group.add_argument('-o', '--output', default='mutated.xyz',
                          help='Output cluster file')
    io_group.add_argument('--trajectory-file', type=str,
                          help='Write every feasible candidate to this XYZ trajectory')
    _add_cluster_arguments(mutate)
    mut_group = mutate.add_argument_group('Directed Mutation Parameters')
    mut_group.add_argument('--strategy', default=DirMutStrategy.GRID.value,
                           choices=[s.value for s in DirMutStrategy],
                           help='Placement search strategy')
    mut_group.add_argument('--blow-bonds', type=float, default=DEFAULT_BLOW_BONDS,
                           help='Blow factor of the connectivity detection')
    mut_group.add_argument('--grid-half-length', type=float, default=DEFAULT_GRID_HALF_LENGTH_BOHR,
                           help='Half-length (bohr) of the search cube around the anchor')
    mut_group.add_argument('--grid-increment', type=float, default=DEFAULT_GRID_INCREMENT_BOHR,
                           help='Grid step (bohr) of the COM positions')
    mut_group.add_argument('--euler-increment', type=float, default=DEFAULT_EULER_INCREMENT_DEG,
                           help='Grid step (degrees) of the Euler angles')
    mut_group.add_argument('--max-evaluations', type=int, default=DEFAULT_MAX_EVALUATIONS,
                           help='Evaluation cap of the continuous search')
    mut_group.add_argument('--relax-first', action='store_true',
                           help='Relax the cluster before mutating it')
    mut_group.add_argument('--fully-relaxed', action='store_true',
                           help='Relax every candidate of the continuous search')
    mut_group.add_argument('--collision-first', action='store_true',
                           help='Reject input clusters that already have a collision')
    mut_group.add_argument('--relax-iterations', type=int, default=DEFAULT_RELAX_ITERATIONS,
                           help='Iteration cap of the rigid-body relaxation')

    # Merging crossover
    crossover = subparsers.add_parser('crossover', formatter_class=CustomHelpFormatter,
                                      help='Merge two parent clusters cut by a plane')
    io_group = crossover.add_argument_group('Input/Output Files')
    io_group.add_argument('-m', '--mother', required=True,
                          help='Mother cluster (.xyz)')
    io_group.add_argument('-f', '--father', required=True,
                          help='Father cluster (.xyz)')
    io_group.add_argument('-o', '--output', default='child',
                          help='Output prefix; children go to <prefix>_1.xyz and <prefix>_2.xyz')
    _add_cluster_arguments(crossover)
    xo_group = crossover.add_argument_group('Merging Crossover Parameters')
    xo_group.add_argument('--plane-mode', default=CuttingPlaneMode.NORMDISTR.value,
                          choices=[m.value for m in CuttingPlaneMode],
                          help='Sampling of the cutting plane height')
    xo_group.add_argument('--docking', default='6d', choices=['6d', '2d'],
                          help='Rigid-body docking of the exchanged halves')
    xo_group.add_argument('--blow-dissociation', type=float, default=DEFAULT_BLOW_DISSOCIATION,
                          help='Blow factor of the dissociation detection')
    xo_group.add_argument('--random-translation', action='store_true',
                          help='Start the 6D docking from a random translation')
    xo_group.add_argument('--no-feasibility-check', action='store_true',
                          help='Do not score collisions and dissociations in the docking')

    args = parser.parse_args(argv)

    if any(n < 1 for n in args.partition):
        parser.error("Every molecule needs at least one atom")
    if args.flexible and any(not 0 <= i < len(args.partition) for i in args.flexible):
        parser.error(f"Flexible molecule indices must be in [0, {len(args.partition) - 1}]")
    return args


def _read_cluster(pathname: str, args: argparse.Namespace):
    flexies = None
    if args.flexible:
        flexies = [i in args.flexible for i in range(len(args.partition))]
    return geometry_from_xyz(pathname, args.partition, flexies=flexies,
                             n_environment_atoms=args.environment_atoms)


def run_mutation(args: argparse.Namespace) -> int:
    energy_model = OpenMMEnergyModel(platform_name=args.platform)
    relaxer = None
    if args.relax_first or args.fully_relaxed:
        relaxer = RigidBodyRelaxer(energy_model, max_iterations=args.relax_iterations)
    observer = XYZTrajectoryObserver(args.trajectory_file) if args.trajectory_file else None

    geometry = _read_cluster(args.input, args)
    mutation = DirectedMutation(
        energy_model,
        strategy=DirMutStrategy(args.strategy),
        local_optimizer=relaxer,
        blow_bonds=args.blow_bonds,
        blow_collision=args.blow_collision,
        relax_first=args.relax_first,
        check_collision_first=args.collision_first,
        fully_relaxed=args.fully_relaxed,
        grid_half_length=args.grid_half_length * BOHR_TO_ANGSTROM,
        grid_increment=args.grid_increment * BOHR_TO_ANGSTROM,
        euler_increment=math.radians(args.euler_increment),
        max_evaluations=args.max_evaluations,
        observer=observer,
        seed=args.seed)

    print("=" * 70)
    print("Directed Mutation")
    print("=" * 70)
    print(f"\nInput cluster: {args.input}")
    print(f"Molecules: {geometry.n_molecules} ({geometry.n_atoms} atoms)")
    print(f"Strategy: {args.strategy}")

    result = mutation.mutate(geometry)
    if result is None:
        print("\nInput cluster has a collision, nothing to mutate.")
        return 1

    write_geometry_xyz(result, args.output)
    print(f"\nFinal energy: {result.fitness:.4f} kcal/mol")
    print(f"Mutated cluster saved to: {args.output}")
    if observer is not None:
        print(f"Trajectory ({observer.n_frames} frames) saved to: {args.trajectory_file}")
    print("=" * 70)
    return 0


def run_crossover(args: argparse.Namespace) -> int:
    energy_model = OpenMMEnergyModel(platform_name=args.platform)
    mother = _read_cluster(args.mother, args)
    father = _read_cluster(args.father, args)
    father.geom_id = 1

    operator = MergeCrossover(
        energy_model,
        plane_mode=CuttingPlaneMode(args.plane_mode),
        use_6d=(args.docking == '6d'),
        blow_collision=args.blow_collision,
        blow_dissociation=args.blow_dissociation,
        check_feasibility=not args.no_feasibility_check,
        random_translation=args.random_translation,
        seed=args.seed)

    print("=" * 70)
    print("Merging Crossover")
    print("=" * 70)
    print(f"\nMother: {args.mother}")
    print(f"Father: {args.father}")
    print(f"Plane mode: {args.plane_mode}, docking: {args.docking}")

    children = operator.crossover(mother, father, future_id=2)
    if children is None:
        print("\nCrossover failed, no children produced.")
        return 1

    for k, child in enumerate(children, start=1):
        pathname = f"{args.output}_{k}.xyz"
        write_geometry_xyz(child, pathname)
        print(f"Child {k}: E = {child.fitness:.4f} kcal/mol, saved to {pathname}")
    print("=" * 70)
    return 0


def main(argv=None) -> int:
    """Main execution function."""
    args = parse_arguments(argv)
    setup_logging(args.verbose)

    try:
        if args.command == 'mutate':
            return run_mutation(args)
        return run_crossover(args)
    except Exception as e:
        print(f"\nError: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
