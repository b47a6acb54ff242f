"""Solver settings shared by the iterative solver and the optimizer driver."""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass


@dataclass(frozen=True)
class IKSettings:
    perturbation: float = 1e-3     # finite-difference step, same for every parameter
    tolerance: float = 1e-4        # |Δ residual norm| below which the solver stops
    max_iterations: int = 1000
    rcond: float = 1e-9            # singular-value cutoff for the least-squares solve

    def __post_init__(self):
        if self.perturbation <= 0.0:
            raise ValueError(f"perturbation must be positive, got {self.perturbation}")
        if self.tolerance < 0.0:
            raise ValueError(f"tolerance must be non-negative, got {self.tolerance}")
        if self.max_iterations < 0:
            raise ValueError(f"max_iterations must be non-negative, got {self.max_iterations}")

    def replace(self, **changes) -> IKSettings:
        return dataclasses.replace(self, **changes)


DEFAULT_SETTINGS = IKSettings()
