#!/usr/bin/env python3
"""
OpenMM Energy Backend

Single-point energies and forces of molecular clusters evaluated with an
OpenMM NonbondedForce (Lennard-Jones + Coulomb, no cutoff). All pairs within
the same molecule block are excluded, so the energy is purely
intermolecular and depends only on the placement of the molecules.

Lennard-Jones parameters default to the UFF van der Waals parameters
(sigma = x_i / 2**(1/6), epsilon = D_i) and can be overridden per element.

Classes:
    OpenMMEnergyModel: energy(cartesian, bonds) / energy_and_forces(cartesian)

Constants:
    NONCONVERGED_ENERGY: sentinel energy for infeasible or failed evaluations
"""

import logging
from typing import Dict, Optional, Tuple

import numpy as np
import openmm as mm
import openmm.unit as unit
from openmm import Platform, VerletIntegrator

from .AtomicProperties import get_mass, is_dummy
from .Geometry import BondInfo, CartesianCoordinates

logger = logging.getLogger(__name__)


NONCONVERGED_ENERGY = 1e6

_SIXTH_ROOT_OF_TWO = 2.0 ** (1.0 / 6.0)

# UFF nonbond distance x_i (Angstrom) and well depth D_i (kcal/mol)
_UFF_VDW = {
    'H': (2.886, 0.044), 'He': (2.362, 0.056),
    'Li': (2.451, 0.025), 'Be': (2.745, 0.085), 'B': (4.083, 0.180),
    'C': (3.851, 0.105), 'N': (3.660, 0.069), 'O': (3.500, 0.060),
    'F': (3.364, 0.050), 'Ne': (3.243, 0.042),
    'Na': (2.983, 0.030), 'Mg': (3.021, 0.111), 'Al': (4.499, 0.505),
    'Si': (4.295, 0.402), 'P': (4.147, 0.305), 'S': (4.035, 0.274),
    'Cl': (3.947, 0.227), 'Ar': (3.868, 0.185),
    'K': (3.812, 0.035), 'Ca': (3.399, 0.238),
    'Cu': (3.495, 0.005), 'Zn': (2.763, 0.124),
    'Br': (4.189, 0.251), 'Kr': (4.141, 0.220),
    'Ag': (3.148, 0.036), 'I': (4.500, 0.339), 'Xe': (4.404, 0.332),
    'Pt': (2.754, 0.080), 'Au': (3.293, 0.039),
}
_DEFAULT_UFF_VDW = (3.851, 0.105)


def default_lj_parameters(element: str) -> Tuple[float, float]:
    """
    Lennard-Jones (sigma in Angstrom, epsilon in kcal/mol) for an element.

    Dummy atoms do not interact. Elements missing from the table get carbon
    parameters.
    """
    if is_dummy(element):
        return 1.0, 0.0
    x_i, d_i = _UFF_VDW.get(element.strip().capitalize(), _DEFAULT_UFF_VDW)
    return x_i / _SIXTH_ROOT_OF_TWO, d_i


class OpenMMEnergyModel:
    """
    Intermolecular energy of a cluster evaluated with OpenMM.

    One OpenMM Context is built per atom layout (elements, molecule
    partition, charges) and cached, so repeated evaluations of the same
    cluster only update positions.

    Parameters
    ----------
    lj_parameters : Optional[Dict[str, Tuple[float, float]]]
        Per-element overrides of (sigma [Angstrom], epsilon [kcal/mol])
    use_charges : bool
        Include Coulomb interactions of the partial charges
    platform_name : str
        OpenMM platform
    """

    def __init__(self, lj_parameters: Optional[Dict[str, Tuple[float, float]]] = None,
                 use_charges: bool = True,
                 platform_name: str = 'CPU'):
        self.lj_parameters = {k.capitalize(): v for k, v in (lj_parameters or {}).items()}
        self.use_charges = use_charges
        self.platform_name = platform_name
        self._context_cache = {}

    def _lj(self, element: str) -> Tuple[float, float]:
        key = element.strip().capitalize()
        if key in self.lj_parameters:
            return self.lj_parameters[key]
        return default_lj_parameters(element)

    def create_system(self, cartesian: CartesianCoordinates) -> mm.System:
        """
        OpenMM System with one NonbondedForce for the given layout.

        Molecule-internal pairs are turned into zero exceptions.
        """
        system = mm.System()
        force = mm.NonbondedForce()
        force.setNonbondedMethod(mm.NonbondedForce.NoCutoff)
        force.setName('ClusterNonbondedForce')

        for element, charge in zip(cartesian.elements, cartesian.charges):
            system.addParticle(get_mass(element) * unit.dalton)
            sigma, epsilon = self._lj(element)
            q = charge if self.use_charges else 0.0
            force.addParticle(q * unit.elementary_charge,
                              sigma * unit.angstrom,
                              epsilon * unit.kilocalories_per_mole)

        for offset, n_atoms in zip(cartesian.molecule_offsets(), cartesian.atoms_per_molecule):
            for i in range(offset, offset + n_atoms):
                for j in range(i + 1, offset + n_atoms):
                    force.addException(i, j, 0.0, 1.0, 0.0)

        system.addForce(force)
        return system

    def _get_or_create_context(self, cartesian: CartesianCoordinates) -> mm.Context:
        key = (tuple(cartesian.elements),
               tuple(cartesian.atoms_per_molecule),
               tuple(np.round(cartesian.charges, 8)))
        if key not in self._context_cache:
            system = self.create_system(cartesian)
            integrator = VerletIntegrator(0.001)
            platform = Platform.getPlatformByName(self.platform_name)
            # Context keeps references to system and integrator
            context = mm.Context(system, integrator, platform)
            self._context_cache[key] = (context, system, integrator)
        return self._context_cache[key][0]

    def energy(self, cartesian: CartesianCoordinates, bonds: Optional[BondInfo] = None) -> float:
        """
        Single-point energy in kcal/mol.

        Parameters
        ----------
        cartesian : CartesianCoordinates
            Cluster coordinates (merge the environment beforehand to include it)
        bonds : Optional[BondInfo]
            Accepted for interface compatibility; exclusions follow the
            molecule partition

        Returns
        -------
        float
            Energy, or NONCONVERGED_ENERGY if the evaluation failed
        """
        try:
            context = self._get_or_create_context(cartesian)
            context.setPositions(cartesian.xyz * 0.1 * unit.nanometer)
            state = context.getState(getEnergy=True)
            energy = state.getPotentialEnergy().value_in_unit(unit.kilocalories_per_mole)
        except Exception as e:
            logger.error(f"Error evaluating energy: {e}")
            return NONCONVERGED_ENERGY
        if not np.isfinite(energy):
            return NONCONVERGED_ENERGY
        return energy

    def energy_and_forces(self, cartesian: CartesianCoordinates) -> Tuple[float, np.ndarray]:
        """
        Energy (kcal/mol) and forces (kcal/mol/Angstrom, Nx3).

        Returns NONCONVERGED_ENERGY and zero forces if the evaluation failed.
        """
        try:
            context = self._get_or_create_context(cartesian)
            context.setPositions(cartesian.xyz * 0.1 * unit.nanometer)
            state = context.getState(getEnergy=True, getForces=True)
            energy = state.getPotentialEnergy().value_in_unit(unit.kilocalories_per_mole)
            forces = state.getForces(asNumpy=True).value_in_unit(
                unit.kilocalories_per_mole / unit.angstrom)
        except Exception as e:
            logger.error(f"Error evaluating energy and forces: {e}")
            return NONCONVERGED_ENERGY, np.zeros((cartesian.n_atoms, 3))
        forces = np.asarray(forces, dtype=float)
        if not np.isfinite(energy) or not np.all(np.isfinite(forces)):
            return NONCONVERGED_ENERGY, np.zeros((cartesian.n_atoms, 3))
        return energy, forces
