"""Drive the IK objective with a generic optimizer (``scipy.optimize.minimize``).

An alternative to ``solver.iterative_optimization``: the optimizer only sees
the scalar objective and its forward-difference gradient.
"""
from __future__ import annotations

import logging

import numpy as np
from scipy.optimize import minimize

from mocap_ik.config import IKSettings
from mocap_ik.jacobian import objective_gradient
from mocap_ik.solver import SolveResult, TerminationReason, finalize
from mocap_ik.target import EvalContext, IKTarget

logger = logging.getLogger(__name__)


def minimize_frame(
    target: IKTarget,
    x0: np.ndarray,
    *,
    method: str = "BFGS",
    settings: IKSettings | None = None,
    verbose: bool = False,
    options: dict | None = None,
) -> SolveResult:
    """Minimise ``target.objective`` from ``x0`` with ``scipy.optimize.minimize``.

    ``mocap_ik.errors.Interrupted`` raised by an evaluation propagates
    unchanged out of the optimizer.
    """
    settings = settings or target.settings
    x0 = np.array(x0, dtype=np.float64)
    if target.num_parameters == 0:
        return finalize(target, x0, 0, TerminationReason.CONVERGED, verbose)

    opts = {"maxiter": settings.max_iterations}
    opts.update(options or {})

    res = minimize(
        lambda x: target.objective(x, context=EvalContext.OBJECTIVE),
        x0,
        jac=lambda x: objective_gradient(target, x),
        method=method,
        tol=settings.tolerance,
        options=opts,
    )
    if verbose:
        logger.info("%s: %s (nit=%d, f=%.6g)", method, res.message, int(res.get("nit", 0)), float(res.fun))

    reason = TerminationReason.CONVERGED if res.success else TerminationReason.ITERATION_LIMIT
    return finalize(target, np.asarray(res.x, dtype=np.float64), int(res.get("nit", 0)), reason, verbose)
