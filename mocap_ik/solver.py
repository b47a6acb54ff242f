"""Gauss-Newton IK solve with backtracking on the weighted residual vector."""
from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass

import numpy as np

from mocap_ik.config import IKSettings
from mocap_ik.jacobian import residual_jacobian
from mocap_ik.target import ErrorSummary, EvalContext, IKTarget

logger = logging.getLogger(__name__)


class TerminationReason(enum.Enum):
    CONVERGED = "converged"
    ITERATION_LIMIT = "iteration_limit"


@dataclass(frozen=True)
class SolveResult:
    x: np.ndarray                   # (num_parameters,) final unprescribed values
    residual_norm: float
    iterations: int
    reason: TerminationReason
    summary: ErrorSummary | None

    @property
    def converged(self) -> bool:
        return self.reason is TerminationReason.CONVERGED


def finalize(
    target: IKTarget,
    x: np.ndarray,
    iterations: int,
    reason: TerminationReason,
    verbose: bool,
) -> SolveResult:
    # Pose the model at the result once more and refresh the diagnostics.
    e = target.residuals(x, context=EvalContext.SOLVE, verbose=verbose)
    return SolveResult(
        x=x,
        residual_norm=float(np.linalg.norm(e)),
        iterations=iterations,
        reason=reason,
        summary=target.error_summary,
    )


def iterative_optimization(
    target: IKTarget,
    x0: np.ndarray,
    *,
    settings: IKSettings | None = None,
    verbose: bool = False,
) -> SolveResult:
    """Drive the residual vector of ``target`` towards zero starting from ``x0``.

    Each iteration linearises the residual (``J·dq ≈ e``), solves it in the
    least-squares sense and halves ``dq`` until the residual norm no longer
    grows.  Stops once the norm changes by less than ``settings.tolerance``
    or after ``settings.max_iterations`` iterations.
    """
    settings = settings or target.settings
    x = np.array(x0, dtype=np.float64)
    n = target.num_parameters
    if x.shape != (n,):
        raise ValueError(f"initial guess must have shape ({n},), got {x.shape}")

    if n == 0:
        return finalize(target, x, 0, TerminationReason.CONVERGED, verbose)

    J = np.zeros((target.residual_size, n), dtype=np.float64)
    e = target.residuals(x)
    norm = float(np.linalg.norm(e))

    delta_norm = math.inf
    it = 0
    while delta_norm > settings.tolerance and it < settings.max_iterations:
        prev_norm = norm

        residual_jacobian(target, x, out=J)
        dq, _, rank, _ = np.linalg.lstsq(J, e, rcond=settings.rcond)
        if rank < n:
            logger.warning(
                "Jacobian is rank deficient (rank %d of %d, rcond=%g); results may be inaccurate",
                rank, n, settings.rcond,
            )

        e_trial = target.residuals(x + dq)
        trial_norm = float(np.linalg.norm(e_trial))
        while trial_norm > prev_norm:
            dq *= 0.5
            logger.debug("step halved: |e|=%g |dq|=%g", trial_norm, float(np.linalg.norm(dq)))
            e_trial = target.residuals(x + dq)
            trial_norm = float(np.linalg.norm(e_trial))

        x = x + dq
        e = e_trial
        norm = trial_norm
        delta_norm = abs(norm - prev_norm)
        it += 1

        if verbose:
            logger.info("iter %d: |e|=%.6g  |dq|=%.3g", it, norm, float(np.linalg.norm(dq)))

    reason = (
        TerminationReason.CONVERGED
        if delta_norm <= settings.tolerance
        else TerminationReason.ITERATION_LIMIT
    )
    return finalize(target, x, it, reason, verbose)
