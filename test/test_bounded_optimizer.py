#!/usr/bin/env python3
"""
Unit tests for the bounded derivative-free optimizer.
"""

import unittest
import sys
from pathlib import Path

import numpy as np

# Add parent directory to path for package imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from clusterevo.BoundedOptimizer import BoundedOptimizer
from clusterevo.RandomUtils import half_gaussian, make_rng, signed_uniform


class TestBoundedOptimizer(unittest.TestCase):
    """Test minimization within bounds."""

    def test_interior_minimum(self):
        opt = BoundedOptimizer([-1.0, -1.0], [1.0, 1.0], 0.1, 1e-6, 300)
        x, fx, info = opt.minimize(lambda p: float((p[0] - 0.3) ** 2 + (p[1] + 0.2) ** 2), [0.0, 0.0])
        np.testing.assert_allclose(x, [0.3, -0.2], atol=1e-3)
        self.assertLess(fx, 1e-5)
        self.assertLessEqual(info['nfev'], 300)

    def test_minimum_on_bound(self):
        opt = BoundedOptimizer([-1.0], [1.0], 0.1, 1e-6, 200)
        x, fx, _ = opt.minimize(lambda p: float((p[0] - 2.0) ** 2), [0.0])
        self.assertAlmostEqual(x[0], 1.0, places=3)
        self.assertTrue(-1.0 <= x[0] <= 1.0)

    def test_returns_best_evaluated_point(self):
        seen = []

        def objective(p):
            value = float(np.sum((p - 0.5) ** 2))
            seen.append(value)
            return value

        opt = BoundedOptimizer([0.0, 0.0, 0.0], [2.0, 2.0, 2.0], 0.2, 1e-4, 40)
        x, fx, info = opt.minimize(objective, [1.5, 1.5, 1.5])
        self.assertEqual(fx, min(seen))
        self.assertEqual(info['nfev'], len(seen))
        self.assertLessEqual(len(seen), 40)
        self.assertAlmostEqual(objective(x), fx)

    def test_guess_is_clipped(self):
        opt = BoundedOptimizer([0.0], [1.0], 0.1, 1e-5, 5)
        evaluated = []
        opt.minimize(lambda p: evaluated.append(p[0]) or 0.0, [5.0])
        self.assertTrue(all(0.0 <= v <= 1.0 for v in evaluated))

    def test_normalization(self):
        opt = BoundedOptimizer([-2.0, 0.0], [2.0, 10.0])
        np.testing.assert_allclose(opt.to_normalized([0.0, 5.0]), [0.5, 0.5])
        np.testing.assert_allclose(opt.from_normalized([1.0, 0.0]), [2.0, 0.0])

    def test_invalid_setup(self):
        with self.assertRaises(ValueError):
            BoundedOptimizer([0.0, 0.0], [1.0])
        with self.assertRaises(ValueError):
            BoundedOptimizer([1.0], [1.0])
        with self.assertRaises(ValueError):
            BoundedOptimizer([0.0], [1.0], initial_trust_radius=1e-6, final_trust_radius=1e-3)
        with self.assertRaises(ValueError):
            BoundedOptimizer([0.0], [1.0], max_evaluations=0)

    def test_guess_length_checked(self):
        opt = BoundedOptimizer([0.0], [1.0])
        with self.assertRaises(ValueError):
            opt.minimize(lambda p: 0.0, [0.5, 0.5])


class TestRandomUtils(unittest.TestCase):
    """Test the random draw helpers."""

    def test_seeded_generators_agree(self):
        self.assertEqual(make_rng(5).random(), make_rng(5).random())
        rng = np.random.default_rng(1)
        self.assertIs(make_rng(rng), rng)

    def test_signed_uniform_range(self):
        rng = make_rng(3)
        values = [signed_uniform(rng, 2.0) for _ in range(500)]
        self.assertTrue(all(-2.0 <= v <= 2.0 for v in values))
        self.assertTrue(any(v < 0.0 for v in values))
        self.assertTrue(any(v > 0.0 for v in values))

    def test_half_gaussian_range(self):
        rng = make_rng(4)
        for _ in range(200):
            value = half_gaussian(rng, -5.0, 10.0, 0.1)
            self.assertTrue(-5.0 <= value < 10.0)
        self.assertEqual(half_gaussian(rng, 1.0, 1.0, 0.1), 1.0)


if __name__ == '__main__':
    unittest.main()
