#!/usr/bin/env python3
"""
Unit tests for coordinate conversions.

Tests rotation math, Z-matrix <-> Cartesian conversion cycles, and the
composite geometry <-> Cartesian round trip for rigid and flexible molecules.
"""

import unittest
import sys
from unittest import mock
from pathlib import Path

import numpy as np

# Add parent directory to path for package imports
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from clusterevo import ZMatrix
from clusterevo.CoordinateConversion import (
    _calc_angle,
    _calc_dihedral,
    _calc_distance,
    cartesian_to_geometry,
    cartesian_to_zmatrix,
    center_of_mass,
    detect_bonds,
    geometry_to_cartesian,
    molecule_frame,
    rotate_xyz_around_z,
    rotation_derivatives,
    rotation_matrix,
    update_geometry_from_cartesian,
    update_zmatrix_from_cartesian,
    zmatrix_to_cartesian,
)
from clusterevo.AtomicProperties import get_masses
from clusterevo.Geometry import CartesianCoordinates, Environment, Geometry, GeometryError, Molecule
from clusterevo.RigidAlignment import AlignmentError
from cluster_fixtures import atom, water


def butane_like_zmatrix():
    atoms = [
        {'element': 'C', 'atomic_num': 6},
        {'element': 'C', 'atomic_num': 6, 'bond_ref': 0, 'bond_length': 1.54},
        {'element': 'C', 'atomic_num': 6, 'bond_ref': 1, 'bond_length': 1.54,
         'angle_ref': 0, 'angle': np.radians(111.0)},
        {'element': 'C', 'atomic_num': 6, 'bond_ref': 2, 'bond_length': 1.54,
         'angle_ref': 1, 'angle': np.radians(112.0),
         'dihedral_ref': 0, 'dihedral': np.radians(-65.0)},
        {'element': 'H', 'atomic_num': 1, 'bond_ref': 3, 'bond_length': 1.09,
         'angle_ref': 2, 'angle': np.radians(110.0),
         'dihedral_ref': 1, 'dihedral': np.radians(175.0)},
        {'element': 'H', 'atomic_num': 1, 'bond_ref': 0, 'bond_length': 1.09,
         'angle_ref': 1, 'angle': np.radians(109.0),
         'dihedral_ref': 2, 'dihedral': np.radians(60.0)},
    ]
    return ZMatrix(atoms)


class TestGeometryCalculations(unittest.TestCase):
    """Test basic geometry calculation functions."""

    def test_calc_distance(self):
        self.assertAlmostEqual(_calc_distance(np.zeros(3), np.array([3.0, 4.0, 0.0])), 5.0)

    def test_calc_angle(self):
        o = np.zeros(3)
        self.assertAlmostEqual(_calc_angle(np.array([1.0, 0, 0]), o, np.array([0, 1.0, 0])), np.pi / 2)
        self.assertAlmostEqual(_calc_angle(np.array([1.0, 0, 0]), o, np.array([-1.0, 0, 0])), np.pi)

    def test_calc_dihedral_sign(self):
        p1 = np.array([1.0, 0.0, 0.0])
        p2 = np.array([0.0, 0.0, 0.0])
        p3 = np.array([0.0, 0.0, 1.0])
        p4 = np.array([0.0, 1.0, 1.0])
        d = _calc_dihedral(p1, p2, p3, p4)
        self.assertAlmostEqual(abs(d), np.pi / 2)
        self.assertAlmostEqual(_calc_dihedral(p4, p3, p2, p1), d)
        self.assertAlmostEqual(_calc_dihedral(p1, p2, p3, np.array([0.0, -1.0, 1.0])), -d)

    def test_calc_dihedral_degenerate(self):
        # colinear first three points: no NaN
        d = _calc_dihedral(np.array([0.0, 0, -1]), np.zeros(3), np.array([0.0, 0, 1]), np.array([1.0, 0, 1]))
        self.assertTrue(np.isfinite(d))

    def test_center_of_mass(self):
        xyz = np.array([[0.0, 0.0, 0.0], [2.0, 0.0, 0.0]])
        np.testing.assert_allclose(center_of_mass(xyz, [1.0, 1.0]), [1.0, 0.0, 0.0])
        np.testing.assert_allclose(center_of_mass(xyz, [3.0, 1.0]), [0.5, 0.0, 0.0])
        np.testing.assert_allclose(center_of_mass(xyz, [0.0, 0.0]), [1.0, 0.0, 0.0])


class TestRotations(unittest.TestCase):
    """Test Euler rotation matrices."""

    def test_orthogonal_with_unit_determinant(self):
        rng = np.random.default_rng(3)
        for _ in range(50):
            eulers = rng.uniform([-np.pi, -np.pi / 2, -np.pi], [np.pi, np.pi / 2, np.pi])
            rot = rotation_matrix(eulers)
            np.testing.assert_allclose(rot @ rot.T, np.eye(3), atol=1e-12)
            self.assertAlmostEqual(np.linalg.det(rot), 1.0)

    def test_identity(self):
        np.testing.assert_allclose(rotation_matrix([0.0, 0.0, 0.0]), np.eye(3), atol=1e-15)

    def test_derivatives_match_finite_differences(self):
        eulers = np.array([0.4, -0.3, 1.1])
        h = 1e-6
        for k, d_rot in enumerate(rotation_derivatives(eulers)):
            step = np.zeros(3)
            step[k] = h
            numeric = (rotation_matrix(eulers + step) - rotation_matrix(eulers - step)) / (2 * h)
            np.testing.assert_allclose(d_rot, numeric, atol=1e-8)

    def test_rotate_around_z(self):
        rotated = rotate_xyz_around_z(np.array([[1.0, 0.0, 2.0]]), np.pi / 2)
        np.testing.assert_allclose(rotated, [[0.0, 1.0, 2.0]], atol=1e-12)


class TestZMatrixConversion(unittest.TestCase):
    """Test Z-matrix <-> Cartesian conversion cycles."""

    def test_build_places_first_atoms(self):
        zmat = butane_like_zmatrix()
        xyz = zmatrix_to_cartesian(zmat, masses=np.ones(len(zmat)))
        self.assertAlmostEqual(_calc_distance(xyz[0], xyz[1]), 1.54)
        self.assertAlmostEqual(_calc_angle(xyz[0], xyz[1], xyz[2]), np.radians(111.0))
        # centered at the center of mass used for building
        np.testing.assert_allclose(xyz.mean(axis=0), np.zeros(3), atol=1e-12)

    def test_round_trip(self):
        zmat = butane_like_zmatrix()
        xyz = zmatrix_to_cartesian(zmat)
        recovered = update_zmatrix_from_cartesian(xyz, zmat)
        for original_values, new_values in zip(zmat.get_values(), recovered.get_values()):
            np.testing.assert_allclose(new_values, original_values, atol=1e-8)

    def test_update_returns_copy(self):
        zmat = butane_like_zmatrix()
        xyz = zmatrix_to_cartesian(zmat) * 1.1
        updated = update_zmatrix_from_cartesian(xyz, zmat)
        self.assertAlmostEqual(zmat.get_dof(1, 0), 1.54)
        self.assertAlmostEqual(updated.get_dof(1, 0), 1.54 * 1.1)

    def test_generated_zmatrix_rebuilds_structure(self):
        zmat = butane_like_zmatrix()
        xyz = zmatrix_to_cartesian(zmat)
        generated = cartesian_to_zmatrix(xyz, zmat.get_elements())
        rebuilt = zmatrix_to_cartesian(generated)
        # same internal geometry: all pair distances agree
        d_orig = np.linalg.norm(xyz[:, None] - xyz[None], axis=2)
        d_new = np.linalg.norm(rebuilt[:, None] - rebuilt[None], axis=2)
        np.testing.assert_allclose(d_new, d_orig, atol=1e-8)

    def test_linear_molecule_raises(self):
        xyz = np.array([[0.0, 0.0, float(i)] for i in range(4)])
        with self.assertRaises(GeometryError):
            cartesian_to_zmatrix(xyz, ['C', 'C', 'C', 'C'])

    def test_colinear_references_raise(self):
        atoms = [
            {'element': 'C', 'atomic_num': 6},
            {'element': 'C', 'atomic_num': 6, 'bond_ref': 0, 'bond_length': 1.2},
            {'element': 'C', 'atomic_num': 6, 'bond_ref': 1, 'bond_length': 1.2,
             'angle_ref': 0, 'angle': np.pi},
            {'element': 'C', 'atomic_num': 6, 'bond_ref': 2, 'bond_length': 1.2,
             'angle_ref': 1, 'angle': np.radians(120.0),
             'dihedral_ref': 0, 'dihedral': 0.0},
        ]
        with self.assertRaises(GeometryError):
            zmatrix_to_cartesian(ZMatrix(atoms))


class TestGeometryConversion(unittest.TestCase):
    """Test composite geometry <-> Cartesian conversion."""

    def setUp(self):
        self.geometry = Geometry([
            water(com=(0.0, 0.0, 0.0), eulers=(0.3, -0.4, 1.2)),
            atom('Ar', (3.5, 0.0, 0.0)),
            water(com=(0.0, 3.0, 1.0), eulers=(-2.0, 1.0, 0.1)),
        ])

    def test_rigid_round_trip(self):
        cartesian = geometry_to_cartesian(self.geometry)
        self.assertEqual(cartesian.n_atoms, 7)
        self.assertEqual(cartesian.atoms_per_molecule, [3, 1, 3])
        back = cartesian_to_geometry(cartesian, template=self.geometry)
        for i in range(3):
            np.testing.assert_allclose(back.get_com(i), self.geometry.get_com(i), atol=1e-10)
        np.testing.assert_allclose(geometry_to_cartesian(back).xyz, cartesian.xyz, atol=1e-10)

    def test_placement_is_rotation_plus_translation(self):
        mol = self.geometry.molecules[0]
        cartesian = geometry_to_cartesian(self.geometry)
        expected = (rotation_matrix(mol.eulers) @ mol.reference.T).T + mol.com
        np.testing.assert_allclose(cartesian.molecule_xyz(0), expected)
        np.testing.assert_allclose(cartesian.molecule_xyz(1), [[3.5, 0.0, 0.0]])

    def test_com_preserved(self):
        cartesian = geometry_to_cartesian(self.geometry)
        com = center_of_mass(cartesian.molecule_xyz(2), get_masses(['O', 'H', 'H']))
        np.testing.assert_allclose(com, [0.0, 3.0, 1.0], atol=1e-10)

    def test_fitness_becomes_total_energy(self):
        self.geometry.set_fitness(-12.5)
        self.assertEqual(geometry_to_cartesian(self.geometry).energy, -12.5)

    def test_template_mismatch_raises(self):
        cartesian = CartesianCoordinates(np.zeros((4, 3)), ['O', 'H', 'H', 'Ar'], [3, 1])
        with self.assertRaises(GeometryError):
            cartesian_to_geometry(cartesian, template=self.geometry)

    def test_template_metadata_copied(self):
        self.geometry.geom_id = 17
        self.geometry.molecules[2].sid = 'water'
        back = cartesian_to_geometry(geometry_to_cartesian(self.geometry), template=self.geometry)
        self.assertEqual(back.geom_id, 17)
        self.assertEqual(back.molecules[2].sid, 'water')
        np.testing.assert_allclose(back.get_eulers(0), [0.0, 0.0, 0.0])

    def test_flexible_round_trip(self):
        zmat = butane_like_zmatrix()
        frame = zmatrix_to_cartesian(zmat)
        mol = Molecule(zmat.get_elements(), frame, com=(1.0, -1.0, 2.0), eulers=(0.2, 0.3, -0.4),
                       flexible=True, zmatrix=zmat)
        geometry = Geometry([mol, atom('Ne', (6.0, 0.0, 0.0))])
        cartesian = geometry_to_cartesian(geometry)

        rigid = (rotation_matrix(mol.eulers) @ frame.T).T + mol.com
        np.testing.assert_allclose(cartesian.molecule_xyz(0), rigid, atol=1e-8)

        back = cartesian_to_geometry(cartesian, template=geometry)
        self.assertTrue(back.molecules[0].flexible)
        for orig, new in zip(zmat.get_values(), back.molecules[0].zmatrix.get_values()):
            np.testing.assert_allclose(new, orig, atol=1e-8)

    def test_failed_alignment_falls_back_to_built_frame(self):
        zmat = butane_like_zmatrix()
        built = zmatrix_to_cartesian(zmat)
        reference = (rotation_matrix([0.5, 0.2, -0.7]) @ built.T).T
        mol = Molecule(zmat.get_elements(), reference, flexible=True, zmatrix=zmat)
        np.testing.assert_allclose(molecule_frame(mol), reference, atol=1e-8)

        with mock.patch('clusterevo.CoordinateConversion.kearsley_align',
                        side_effect=AlignmentError("eigen-decomposition failed")):
            with self.assertLogs('clusterevo.CoordinateConversion', level='WARNING'):
                frame = molecule_frame(mol)
        np.testing.assert_allclose(frame, built)

    def test_flexible_zmatrix_change_moves_atoms(self):
        zmat = butane_like_zmatrix()
        mol = Molecule(zmat.get_elements(), zmatrix_to_cartesian(zmat), flexible=True, zmatrix=zmat)
        geometry = Geometry([mol, atom('Ne', (6.0, 0.0, 0.0))])
        before = geometry_to_cartesian(geometry).xyz.copy()
        geometry.molecules[0].zmatrix.update_dof(3, 2, np.radians(180.0))
        after = geometry_to_cartesian(geometry).xyz
        d = np.linalg.norm(after[0] - after[3])
        self.assertFalse(np.allclose(before, after))
        self.assertGreater(d, np.linalg.norm(before[0] - before[3]))

    def test_environment_merge(self):
        env = Environment(['C', 'C'], [[0.0, 0.0, -6.0], [1.4, 0.0, -6.0]])
        geometry = Geometry(self.geometry.molecules, environment=env)
        merged = geometry_to_cartesian(geometry, merge_environment=True)
        self.assertEqual(merged.n_atoms, 9)
        self.assertEqual(merged.n_environment_atoms, 2)
        back = cartesian_to_geometry(merged, template=geometry)
        self.assertEqual(back.n_atoms, 7)
        self.assertIsNotNone(back.environment)

    def test_update_geometry_in_place(self):
        cartesian = geometry_to_cartesian(self.geometry)
        cartesian.xyz = cartesian.xyz + np.array([1.0, 0.0, 0.0])
        self.geometry.set_fitness(0.0)
        update_geometry_from_cartesian(cartesian, self.geometry)
        self.assertFalse(self.geometry.synced)
        np.testing.assert_allclose(self.geometry.get_com(1), [4.5, 0.0, 0.0])
        np.testing.assert_allclose(geometry_to_cartesian(self.geometry).xyz, cartesian.xyz, atol=1e-10)


class TestBondDetection(unittest.TestCase):
    """Test radius-based bond detection over all pairs."""

    def test_detects_intermolecular_contacts(self):
        geometry = Geometry([water(), water(com=(2.8, 0.0, 0.0))])
        cartesian = geometry_to_cartesian(geometry)
        bonds = detect_bonds(cartesian, 3.05)
        self.assertTrue(bonds.is_symmetric())
        self.assertTrue(bonds.has_bond(0, 3))
        tight = detect_bonds(cartesian, 1.2)
        self.assertFalse(tight.has_bond(0, 3))
        self.assertTrue(tight.has_bond(0, 1))


if __name__ == '__main__':
    unittest.main()
