#!/usr/bin/env python3
"""
Tests for the command-line interface.
"""

import io
import os
import tempfile
import unittest
import sys
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path

import numpy as np

# Add parent directory to path for package imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from clusterevo.__main__ import main, parse_arguments
from clusterevo.IOTools import read_xyz_file, write_xyz_file


class TestArgumentParsing(unittest.TestCase):
    """Test command-line validation."""

    def test_mutate_defaults(self):
        args = parse_arguments(['mutate', '-i', 'in.xyz', '-p', '3', '3'])
        self.assertEqual(args.command, 'mutate')
        self.assertEqual(args.partition, [3, 3])
        self.assertEqual(args.strategy, 'grid')
        self.assertEqual(args.output, 'mutated.xyz')
        self.assertFalse(args.relax_first)

    def test_crossover_options(self):
        args = parse_arguments(['crossover', '-m', 'a.xyz', '-f', 'b.xyz', '-p', '1', '1',
                                '--docking', '2d', '--plane-mode', 'zeroz', '--no-feasibility-check'])
        self.assertEqual(args.docking, '2d')
        self.assertEqual(args.plane_mode, 'zeroz')
        self.assertTrue(args.no_feasibility_check)

    def test_invalid_partition(self):
        with redirect_stderr(io.StringIO()), self.assertRaises(SystemExit):
            parse_arguments(['mutate', '-i', 'in.xyz', '-p', '3', '0'])

    def test_invalid_flexible_index(self):
        with self.assertRaises(SystemExit):
            parse_arguments(['mutate', '-i', 'in.xyz', '-p', '3', '3', '--flexible', '2'])

    def test_unknown_strategy(self):
        with self.assertRaises(SystemExit):
            parse_arguments(['mutate', '-i', 'in.xyz', '-p', '1', '--strategy', 'random'])


class TestCommands(unittest.TestCase):
    """Run the operators end to end on small argon/neon clusters."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = self.tmp.name

    def tearDown(self):
        self.tmp.cleanup()

    def path(self, name: str) -> str:
        return os.path.join(self.dir, name)

    def test_mutate(self):
        write_xyz_file(np.array([[0.0, 0.0, 0.0], [3.8, 0.0, 0.0], [15.0, 0.0, 0.0]]),
                       ['Ar', 'Ar', 'Ar'], self.path('in.xyz'))
        with redirect_stdout(io.StringIO()):
            status = main(['mutate', '-i', self.path('in.xyz'), '-o', self.path('out.xyz'),
                           '-p', '1', '1', '1', '--platform', 'Reference',
                           '--grid-half-length', '4', '--grid-increment', '1',
                           '--trajectory-file', self.path('traj.xyz')])
        self.assertEqual(status, 0)
        elements, coords, _ = read_xyz_file(self.path('out.xyz'))
        self.assertEqual(elements, ['Ar', 'Ar', 'Ar'])
        self.assertLess(np.linalg.norm(coords[2]), 4.0)
        self.assertTrue(os.path.exists(self.path('traj.xyz')))

    def test_crossover(self):
        positions = np.array([[0.0, 0.0, 0.0], [3.5, 0.0, 0.0], [0.0, 3.5, 0.0], [3.5, 3.5, 0.0]])
        elements = ['Ar', 'Ar', 'Ne', 'Ne']
        father = positions + np.array([[0.0, 0.0, z] for z in (-1.5, -0.5, 0.5, 1.5)])
        mother = positions + np.array([[0.0, 0.0, z] for z in (1.5, 0.5, -0.5, -1.5)])
        write_xyz_file(father, elements, self.path('father.xyz'))
        write_xyz_file(mother, elements, self.path('mother.xyz'))
        with redirect_stdout(io.StringIO()):
            status = main(['crossover', '-m', self.path('mother.xyz'), '-f', self.path('father.xyz'),
                           '-o', self.path('child'), '-p', '1', '1', '1', '1',
                           '--platform', 'Reference', '--plane-mode', 'zeroz',
                           '--docking', '2d', '--no-feasibility-check', '--seed', '3'])
        self.assertEqual(status, 0)
        for k in (1, 2):
            elements_read, _, comment = read_xyz_file(self.path(f'child_{k}.xyz'))
            self.assertEqual(elements_read, elements)
            self.assertIn("geometry 2", comment)

    def test_missing_input_fails(self):
        with redirect_stdout(io.StringIO()), redirect_stderr(io.StringIO()):
            status = main(['mutate', '-i', self.path('missing.xyz'), '-p', '1', '1'])
        self.assertEqual(status, 1)


if __name__ == '__main__':
    unittest.main()
