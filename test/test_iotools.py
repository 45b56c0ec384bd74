#!/usr/bin/env python3
"""
Unit tests for IOTools module.

Tests reading and writing clusters in XYZ format and the XYZ trajectory
observer.
"""

import unittest
import numpy as np
import sys
import os
import tempfile
from pathlib import Path

# Add parent directory to path for package imports
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from clusterevo.CoordinateConversion import geometry_to_cartesian
from clusterevo.Geometry import Environment, Geometry, GeometryError
from clusterevo.IOTools import geometry_from_xyz, read_xyz_file, write_geometry_xyz, write_xyz_file
from clusterevo.Tracing import XYZTrajectoryObserver
from cluster_fixtures import atom, water


def temporary_path(suffix: str = '.xyz') -> str:
    with tempfile.NamedTemporaryFile(mode='w', suffix=suffix, delete=False) as f:
        return f.name


class TestXYZFiles(unittest.TestCase):
    """Test plain XYZ reading and writing."""

    def setUp(self):
        self.temp_path = temporary_path()

    def tearDown(self):
        if os.path.exists(self.temp_path):
            os.unlink(self.temp_path)

    def test_write_xyz_file(self):
        coords = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.5, 0.866, 0.0]])
        write_xyz_file(coords, ['O', 'H', 'H'], self.temp_path, comment="Test molecule")

        with open(self.temp_path, 'r') as f:
            lines = f.readlines()
        self.assertEqual(int(lines[0].strip()), 3)
        self.assertEqual(lines[1].strip(), "Test molecule")
        self.assertEqual(len(lines), 5)

    def test_append_mode(self):
        coords = np.zeros((2, 3))
        write_xyz_file(coords, ['Ar', 'Ar'], self.temp_path, comment="Frame 1")
        write_xyz_file(coords, ['Ar', 'Ar'], self.temp_path, comment="Frame 2", append=True)
        with open(self.temp_path, 'r') as f:
            lines = f.readlines()
        self.assertEqual(len(lines), 8)
        self.assertEqual(lines[5].strip(), "Frame 2")

    def test_read_back(self):
        coords = np.array([[0.1, -0.2, 0.3], [1.5, 2.5, -3.5]])
        write_xyz_file(coords, ['Ne', 'Ar'], self.temp_path, comment="pair")
        elements, read_coords, comment = read_xyz_file(self.temp_path)
        self.assertEqual(elements, ['Ne', 'Ar'])
        self.assertEqual(comment, "pair")
        np.testing.assert_allclose(read_coords, coords, atol=1e-6)

    def test_dummy_atoms_written_as_x(self):
        write_xyz_file(np.zeros((1, 3)), ['Du'], self.temp_path)
        elements, _, _ = read_xyz_file(self.temp_path)
        self.assertEqual(elements, ['X'])

    def test_truncated_file_raises(self):
        with open(self.temp_path, 'w') as f:
            f.write("3\ncomment\nAr 0.0 0.0 0.0\n")
        with self.assertRaises(ValueError):
            read_xyz_file(self.temp_path)

    def test_malformed_line_raises(self):
        with open(self.temp_path, 'w') as f:
            f.write("1\ncomment\nAr 0.0 0.0\n")
        with self.assertRaises(ValueError):
            read_xyz_file(self.temp_path)

    def test_bad_header_raises(self):
        with open(self.temp_path, 'w') as f:
            f.write("three\ncomment\n")
        with self.assertRaises(ValueError):
            read_xyz_file(self.temp_path)


class TestGeometryFiles(unittest.TestCase):
    """Test reading and writing whole clusters."""

    def setUp(self):
        self.temp_path = temporary_path()
        self.geometry = Geometry([water(), water(com=(2.9, 0.0, 0.0)), atom('Ar', (0.0, 4.0, 0.0))],
                                 fitness=-1.5, geom_id=7)

    def tearDown(self):
        if os.path.exists(self.temp_path):
            os.unlink(self.temp_path)

    def test_round_trip(self):
        write_geometry_xyz(self.geometry, self.temp_path)
        read = geometry_from_xyz(self.temp_path, [3, 3, 1])
        self.assertEqual(read.n_molecules, 3)
        np.testing.assert_allclose(read.get_com(1), [2.9, 0.0, 0.0], atol=1e-5)
        np.testing.assert_allclose(read.get_com(2), [0.0, 4.0, 0.0], atol=1e-6)
        original = geometry_to_cartesian(self.geometry).xyz
        np.testing.assert_allclose(geometry_to_cartesian(read).xyz, original, atol=1e-5)

    def test_default_comment(self):
        write_geometry_xyz(self.geometry, self.temp_path)
        _, _, comment = read_xyz_file(self.temp_path)
        self.assertIn("geometry 7", comment)
        self.assertIn("E=-1.500000", comment)

    def test_environment_block(self):
        environment = Environment(['C', 'C'], [[0.0, 0.0, -5.0], [1.4, 0.0, -5.0]])
        geometry = Geometry(self.geometry.molecules, environment=environment)
        write_geometry_xyz(geometry, self.temp_path)
        read = geometry_from_xyz(self.temp_path, [3, 3, 1], n_environment_atoms=2)
        self.assertEqual(read.n_atoms, 7)
        self.assertEqual(read.environment.elements, ['C', 'C'])
        np.testing.assert_allclose(read.environment.xyz, environment.xyz, atol=1e-6)

    def test_metadata(self):
        write_geometry_xyz(self.geometry, self.temp_path)
        read = geometry_from_xyz(self.temp_path, [3, 3, 1], sids=['w', 'w', 'ar'])
        self.assertEqual(read.sids(), ['w', 'w', 'ar'])
        self.assertEqual(read.flexies(), [False, False, False])

    def test_partition_mismatch_raises(self):
        write_geometry_xyz(self.geometry, self.temp_path)
        with self.assertRaises(GeometryError):
            geometry_from_xyz(self.temp_path, [3, 3])


class TestTrajectoryObserver(unittest.TestCase):
    """Test the XYZ trajectory of a directed mutation."""

    def setUp(self):
        self.temp_path = temporary_path()

    def tearDown(self):
        if os.path.exists(self.temp_path):
            os.unlink(self.temp_path)

    def test_frames_are_appended(self):
        observer = XYZTrajectoryObserver(self.temp_path)
        self.assertFalse(os.path.exists(self.temp_path))
        geometry = Geometry([atom('Ar', (0.0, 0.0, 0.0)), atom('Ar', (3.8, 0.0, 0.0))], fitness=-0.2)
        cartesian = geometry_to_cartesian(geometry)
        observer.on_candidate(cartesian, -0.1)
        observer.on_candidate(cartesian, -0.2)
        observer.on_result(geometry)
        observer.on_result(None)
        self.assertEqual(observer.n_frames, 3)
        with open(self.temp_path, 'r') as f:
            lines = f.readlines()
        self.assertEqual(len(lines), 12)
        self.assertTrue(lines[9].startswith("Result"))


if __name__ == '__main__':
    unittest.main()
