#!/usr/bin/env python3
"""
Bounded Derivative-Free Optimizer

Adaptor around scipy's COBYQA method, a derivative-free trust-region
optimizer on quadratic models that honours bound constraints. The caller
provides an objective over the physical parameters; the optimizer works on
parameters normalized to [0, 1] so that the trust radii are relative to the
bound widths.

The number of objective evaluations is hard-capped and the best point ever
evaluated is returned, whatever state the optimizer ends in.
"""

import logging
from typing import Any, Callable, Dict, Sequence, Tuple

import numpy as np
from scipy.optimize import minimize

logger = logging.getLogger(__name__)


class BoundedOptimizer:
    """
    Bound-constrained minimizer over normalized parameters.

    Parameters
    ----------
    lower, upper : Sequence[float]
        Bounds of the physical parameters
    initial_trust_radius : float
        Initial trust region radius in normalized units
    final_trust_radius : float
        Final trust region radius in normalized units
    max_evaluations : int
        Cap on objective evaluations

    Examples
    --------
    >>> opt = BoundedOptimizer([-1, -1], [1, 1], 0.1, 1e-5, 200)
    >>> x, fx, info = opt.minimize(lambda p: float(np.sum(p ** 2)), [0.5, 0.5])
    """

    def __init__(self, lower: Sequence[float], upper: Sequence[float],
                 initial_trust_radius: float = 0.1,
                 final_trust_radius: float = 1e-5,
                 max_evaluations: int = 500):
        self.lower = np.array(lower, dtype=float)
        self.upper = np.array(upper, dtype=float)
        if self.lower.shape != self.upper.shape:
            raise ValueError("Lower and upper bounds differ in length")
        if np.any(self.upper <= self.lower):
            raise ValueError("Upper bounds must exceed lower bounds")
        if not 0.0 < final_trust_radius <= initial_trust_radius:
            raise ValueError("Trust radii must satisfy 0 < final <= initial")
        if max_evaluations < 1:
            raise ValueError("At least one evaluation is required")
        self.initial_trust_radius = float(initial_trust_radius)
        self.final_trust_radius = float(final_trust_radius)
        self.max_evaluations = int(max_evaluations)

    @property
    def n_parameters(self) -> int:
        return len(self.lower)

    def to_normalized(self, x: Sequence[float]) -> np.ndarray:
        return (np.asarray(x, dtype=float) - self.lower) / (self.upper - self.lower)

    def from_normalized(self, u: Sequence[float]) -> np.ndarray:
        return self.lower + np.asarray(u, dtype=float) * (self.upper - self.lower)

    def minimize(self, objective: Callable[[np.ndarray], float],
                 guess: Sequence[float]) -> Tuple[np.ndarray, float, Dict[str, Any]]:
        """
        Minimize ``objective`` starting from ``guess``.

        Parameters
        ----------
        objective : Callable[[np.ndarray], float]
            Function of the physical parameters
        guess : Sequence[float]
            Starting point; clipped into the bounds

        Returns
        -------
        Tuple[np.ndarray, float, Dict[str, Any]]
            Best physical parameters, best objective value, and an info dict
            with 'nfev', 'success' and 'message'
        """
        guess = np.asarray(guess, dtype=float)
        if guess.shape != self.lower.shape:
            raise ValueError(f"Guess has {guess.size} parameters, bounds have {self.n_parameters}")
        u0 = np.clip(self.to_normalized(guess), 0.0, 1.0)

        best = {'x': self.from_normalized(u0), 'f': np.inf, 'nfev': 0}

        def normalized_objective(u: np.ndarray) -> float:
            x = self.from_normalized(np.clip(u, 0.0, 1.0))
            value = float(objective(x))
            best['nfev'] += 1
            if value < best['f']:
                best['f'] = value
                best['x'] = x.copy()
            return value

        result = minimize(
            normalized_objective,
            u0,
            method='COBYQA',
            bounds=[(0.0, 1.0)] * self.n_parameters,
            options={
                'initial_tr_radius': self.initial_trust_radius,
                'final_tr_radius': self.final_trust_radius,
                'maxfev': self.max_evaluations,
                'disp': False,
            }
        )

        logger.debug(f"COBYQA finished after {best['nfev']} evaluations: "
                     f"best={best['f']:.6f}, message={result.message}")
        info = {
            'nfev': best['nfev'],
            'success': bool(result.success),
            'message': str(result.message),
        }
        return best['x'], best['f'], info
