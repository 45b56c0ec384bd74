#!/usr/bin/env python3
"""
Operator Tracing

Observers that the genetic operators notify about their progress. The base
class does nothing; subclasses override the hooks they care about.
"""

import logging
from pathlib import Path
from typing import Optional

from .Geometry import CartesianCoordinates, Geometry
from .IOTools import write_geometry_xyz, write_xyz_file

logger = logging.getLogger(__name__)


class MutationObserver:
    """No-op observer of a directed mutation."""

    def on_selection(self, target: int, anchor: int, counts) -> None:
        pass

    def on_candidate(self, cartesian: CartesianCoordinates, energy: float) -> None:
        pass

    def on_result(self, geometry: Optional[Geometry]) -> None:
        pass


class XYZTrajectoryObserver(MutationObserver):
    """
    Appends every feasible candidate (and the result) to an XYZ trajectory.

    Parameters
    ----------
    filepath : str
        Trajectory file, truncated on construction
    """

    def __init__(self, filepath: str):
        self.filepath = filepath
        self.n_frames = 0
        Path(filepath).unlink(missing_ok=True)

    def on_selection(self, target: int, anchor: int, counts) -> None:
        logger.debug(f"Relocating molecule {target} around anchor {anchor}, connections {list(counts)}")

    def on_candidate(self, cartesian: CartesianCoordinates, energy: float) -> None:
        write_xyz_file(cartesian.xyz, cartesian.elements, self.filepath,
                       comment=f"Candidate {self.n_frames}, E={energy:.6f}", append=True)
        self.n_frames += 1

    def on_result(self, geometry: Optional[Geometry]) -> None:
        if geometry is None:
            return
        write_geometry_xyz(geometry, self.filepath,
                           comment=f"Result, E={geometry.fitness:.6f}", append=True)
        self.n_frames += 1
