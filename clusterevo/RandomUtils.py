#!/usr/bin/env python3
"""
Random Draws

Small helpers on top of numpy.random.Generator used by the genetic
operators. Each operator owns its own generator, so runs are reproducible
from a seed and no global random state is shared.
"""

from typing import Optional, Union

import numpy as np


MAX_HALF_GAUSS_TRIES = 1000


def make_rng(seed: Optional[Union[int, np.random.Generator]] = None) -> np.random.Generator:
    """Generator from a seed; an existing generator is passed through."""
    if isinstance(seed, np.random.Generator):
        return seed
    return np.random.default_rng(seed)


def random_sign(rng: np.random.Generator) -> float:
    """+1.0 or -1.0 with equal probability."""
    return 1.0 if rng.random() < 0.5 else -1.0


def signed_uniform(rng: np.random.Generator, scale: float) -> float:
    """Uniform draw in [-scale, scale] built as random sign times scale * U(0, 1)."""
    return random_sign(rng) * scale * rng.random()


def clipped_gaussian(rng: np.random.Generator) -> float:
    """Standard normal draw clipped to [-1, 1]."""
    return float(np.clip(rng.standard_normal(), -1.0, 1.0))


def half_gaussian(rng: np.random.Generator, low: float, high: float, std: float) -> float:
    """
    Draw from a half-gaussian anchored at ``low``.

    The value is low + |N(0, 1)| * std * (high - low), redrawn while it is
    not below ``high``. Gives ``low`` for a zero width.
    """
    width = std * (high - low)
    if width <= 0.0:
        return low
    for _ in range(MAX_HALF_GAUSS_TRIES):
        value = low + abs(rng.standard_normal()) * width
        if value < high:
            return value
    return low
