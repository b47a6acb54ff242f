"""Finite-difference derivatives of the IK objective.

``residual_jacobian`` is the solver's path: one forward step per parameter,
touching only the marker transforms.  ``objective_gradient`` is the coarser
path handed to generic optimizers: forward differences of the scalar
objective itself.
"""
from __future__ import annotations

import math

import numpy as np

from mocap_ik.target import EvalContext, IKTarget


def residual_jacobian(target: IKTarget, x: np.ndarray, out: np.ndarray | None = None) -> np.ndarray:
    """d(residual)/dx at ``x``, shape ``(residual_size, num_parameters)``.

    The model must already be posed at ``x`` with the markers' computed
    positions up to date (i.e. ``target.residuals(x)`` was the last
    evaluation); those positions are the forward-difference baseline.
    """
    target.check_interrupt()
    maps = target.maps
    model = target.model
    markers = maps.markers
    x = np.asarray(x, dtype=np.float64)

    if out is None:
        out = np.zeros((maps.residual_size, maps.num_parameters), dtype=np.float64)
    else:
        out[:] = 0.0

    sqrt_w = np.array([math.sqrt(m.weight) if m.valid else 0.0 for m in markers])
    row = 3 * len(markers)

    for i, info in enumerate(maps.unprescribed):
        dx = float(maps.perturbation[i])
        q0 = model.get_coordinate_value(info.index)
        clamped = model.get_clamped(info.index)
        model.set_clamped(info.index, False)
        try:
            model.set_coordinate_value(info.index, q0 + dx, True)
            for k, m in enumerate(markers):
                if not m.valid:
                    continue
                p = model.transform_local_point_to_world(m.body, m.offset)
                out[3 * k:3 * k + 3, i] = sqrt_w[k] * (np.asarray(p) - m.computed_position) / dx
        finally:
            model.set_coordinate_value(info.index, q0, False)
            model.set_clamped(info.index, clamped)

        # d(q_i)/d(x_i) = 1
        if info.weight:
            out[row, i] = math.sqrt(info.weight)
            row += 1

    return out


def objective_gradient(target: IKTarget, x: np.ndarray) -> np.ndarray:
    """Forward-difference gradient of ``target.objective`` at ``x``."""
    x = np.asarray(x, dtype=np.float64)
    f0 = target.objective(x, context=EvalContext.GRADIENT)
    grad = np.zeros_like(x)
    xp = x.copy()
    for i in range(x.shape[0]):
        dx = float(target.perturbation[i])
        xp[i] = x[i] + dx
        grad[i] = (target.objective(xp, context=EvalContext.GRADIENT) - f0) / dx
        xp[i] = x[i]
    # Leave the model posed at x.
    target.set_parameters(x)
    return grad


def pseudo_inverse(J: np.ndarray, rcond: float = 1e-9) -> np.ndarray:
    """Moore-Penrose pseudo-inverse of ``J`` through a thin SVD.

    Singular values below ``rcond * s_max`` are treated as zero.
    """
    U, s, Vt = np.linalg.svd(J, full_matrices=False)
    s_inv = np.zeros_like(s)
    if s.size:
        keep = s > rcond * s[0]
        s_inv[keep] = 1.0 / s[keep]
    return (Vt.T * s_inv) @ U.T
