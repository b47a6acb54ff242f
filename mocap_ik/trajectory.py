"""Solve IK frame by frame over a trial.

Frames run sequentially against the target's single model instance, so each
frame starts from whatever pose the previous one left behind for
coordinates that have no experimental column.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from mocap_ik.config import IKSettings
from mocap_ik.solver import SolveResult, iterative_optimization
from mocap_ik.target import IKTarget

logger = logging.getLogger(__name__)

METHODS = ("iterative", "scipy")


@dataclass
class IKTrajectory:
    """IK results for a run of frames."""
    times: np.ndarray                   # (N,)
    q_unprescribed: np.ndarray          # (N, n_unprescribed)
    q_prescribed: np.ndarray            # (N, n_prescribed)
    unprescribed_names: list[str]
    prescribed_names: list[str]
    marker_rms: np.ndarray              # (N,)
    worst_marker: list[str]             # (N,)
    worst_marker_error: np.ndarray      # (N,)
    converged: np.ndarray               # (N,) bool
    iterations: np.ndarray              # (N,) int

    @property
    def n_frames(self) -> int:
        return int(self.times.shape[0])


def solve_frame(
    target: IKTarget,
    frame: int,
    *,
    method: str = "iterative",
    settings: IKSettings | None = None,
    verbose: bool = False,
) -> SolveResult:
    """Bind ``frame`` and solve it with the chosen method."""
    guess = target.prepare_to_solve(frame)
    if method == "iterative":
        return iterative_optimization(target, guess, settings=settings, verbose=verbose)
    if method == "scipy":
        from mocap_ik.external import minimize_frame
        return minimize_frame(target, guess, settings=settings, verbose=verbose)
    raise ValueError(f"method must be one of {METHODS}, got {method!r}")


def solve_trial(
    target: IKTarget,
    *,
    start: int = 0,
    end: int | None = None,
    method: str = "iterative",
    settings: IKSettings | None = None,
    verbose: bool = True,
) -> IKTrajectory:
    """Solve frames ``start`` .. ``end - 1`` (``end`` defaults to the last frame)."""
    if end is None:
        end = target.storage.n_frames
    if not 0 <= start <= end <= target.storage.n_frames:
        raise ValueError(f"bad frame window [{start}, {end}) for {target.storage.n_frames} frames")

    n = end - start
    times = np.zeros(n, dtype=np.float64)
    q_un = np.zeros((n, target.num_parameters), dtype=np.float64)
    q_pre = np.zeros((n, len(target.maps.prescribed)), dtype=np.float64)
    rms = np.zeros(n, dtype=np.float64)
    worst_err = np.zeros(n, dtype=np.float64)
    worst: list[str] = []
    converged = np.zeros(n, dtype=bool)
    iters = np.zeros(n, dtype=int)

    if verbose:
        logger.info("Solving IK for %d frames …", n)
    for k, frame in enumerate(range(start, end)):
        res = solve_frame(target, frame, method=method, settings=settings)
        times[k] = target.time
        q_un[k] = res.x
        q_pre[k] = target.prescribed_coordinate_values()
        converged[k] = res.converged
        iters[k] = res.iterations
        if res.summary is not None:
            rms[k] = res.summary.marker_rms
            worst_err[k] = res.summary.worst_marker_error
            worst.append(res.summary.worst_marker)
        else:
            worst.append("")
        if verbose:
            logger.info(
                "  t=%.4f  iters=%d  marker RMS=%.4g  max=%.4g (%s)",
                times[k], res.iterations, rms[k], worst_err[k], worst[-1],
            )
    if verbose:
        logger.info("IK done.")

    return IKTrajectory(
        times=times,
        q_unprescribed=q_un,
        q_prescribed=q_pre,
        unprescribed_names=target.unprescribed_coordinate_names(),
        prescribed_names=target.prescribed_coordinate_names(),
        marker_rms=rms,
        worst_marker=worst,
        worst_marker_error=worst_err,
        converged=converged,
        iterations=iters,
    )
