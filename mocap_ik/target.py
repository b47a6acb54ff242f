"""Per-frame IK objective: weighted marker and coordinate tracking errors.

``IKTarget`` owns the classified task tables for one model / trial pair.  For
each frame it binds the experimental values (``prepare_to_solve``), then
evaluates candidate poses: either as a full residual vector for the
iterative solver, or as the scalar weighted sum of squared errors for a
generic optimizer.
"""
from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from mocap_ik.config import DEFAULT_SETTINGS, IKSettings
from mocap_ik.errors import Interrupted
from mocap_ik.model import KinematicModel
from mocap_ik.storage import MarkerStorage
from mocap_ik.tasks import IKTask, TaskMaps, classify_tasks

logger = logging.getLogger(__name__)


class EvalContext(enum.Enum):
    """Why an evaluation is being run.

    ``GRADIENT`` evaluations happen at perturbed poses, so they leave the
    error summary alone and never log.
    """
    SOLVE = "solve"
    OBJECTIVE = "objective"
    GRADIENT = "gradient"


@dataclass(frozen=True)
class ErrorSummary:
    """Unweighted error diagnostics of one evaluated pose."""
    total_weighted: float
    marker_rms: float
    worst_marker: str               # "" when no marker was evaluated
    worst_marker_sq_error: float
    coordinate_rms: float
    worst_coordinate: str
    worst_coordinate_sq_error: float

    @property
    def worst_marker_error(self) -> float:
        return math.sqrt(self.worst_marker_sq_error)

    @property
    def worst_coordinate_error(self) -> float:
        return math.sqrt(self.worst_coordinate_sq_error)

    def format(self) -> str:
        msg = f"total weighted squared error = {self.total_weighted:g}"
        if self.marker_rms > 0:
            msg += f", marker error: RMS={self.marker_rms:g}"
            if self.worst_marker:
                msg += f", max={self.worst_marker_error:g} ({self.worst_marker})"
        if self.coordinate_rms > 0:
            msg += f", coord error: RMS={self.coordinate_rms:g}"
            if self.worst_coordinate:
                msg += f", max={self.worst_coordinate_error:g} ({self.worst_coordinate})"
        return msg


class IKTarget:
    """Weighted least-squares IK objective for one frame at a time."""

    def __init__(
        self,
        model: KinematicModel,
        tasks: Sequence[IKTask],
        storage: MarkerStorage,
        *,
        settings: IKSettings | None = None,
    ):
        self.model = model
        self.storage = storage
        self.settings = settings or DEFAULT_SETTINGS
        self.maps: TaskMaps = classify_tasks(
            model, tasks, storage, perturbation=self.settings.perturbation
        )
        self.time: float | None = None
        self.error_summary: ErrorSummary | None = None
        self._interrupted = False

    # ── Sizes ─────────────────────────────────────────────────────────────

    @property
    def num_parameters(self) -> int:
        return self.maps.num_parameters

    @property
    def residual_size(self) -> int:
        return self.maps.residual_size

    @property
    def perturbation(self) -> np.ndarray:
        return self.maps.perturbation

    # ── Cancellation ──────────────────────────────────────────────────────

    def interrupt(self) -> None:
        """Ask any running evaluation loop to stop at its next evaluation."""
        self._interrupted = True

    def clear_interrupt(self) -> None:
        self._interrupted = False

    @property
    def interrupted(self) -> bool:
        return self._interrupted

    def check_interrupt(self) -> None:
        if self._interrupted:
            raise Interrupted("IK evaluation interrupted")

    # ── Frame binding ─────────────────────────────────────────────────────

    def prepare_to_solve(self, frame: int) -> np.ndarray:
        """Bind frame ``frame`` of the trial and return the initial guess.

        Prescribed coordinates are written to the model right away; the guess
        for unprescribed coordinates is only returned.
        """
        self.time = self.storage.get_time(frame)
        row = self.storage.get_row(frame)
        model = self.model

        for info in self.maps.prescribed:
            value = row[info.experimental_column] if info.from_file else info.constant_value
            locked = model.get_locked(info.index)
            model.set_locked(info.index, False)
            model.set_coordinate_value(info.index, float(value))
            model.set_locked(info.index, locked)

        guess = np.empty(self.num_parameters, dtype=np.float64)
        for i, info in enumerate(self.maps.unprescribed):
            if info.from_file:
                guess[i] = row[info.experimental_column]
            else:
                guess[i] = model.get_coordinate_value(info.index)
            if info.weight:
                info.experimental_value = float(guess[i]) if info.from_file else info.constant_value

        # NOTE: a NaN component marks the marker missing for this frame.
        for m in self.maps.markers:
            c = m.experimental_column
            m.experimental_position = np.array(row[c:c + 3], dtype=np.float64)
            m.valid = not bool(np.isnan(m.experimental_position).any())

        return guess

    # ── Evaluation ────────────────────────────────────────────────────────

    def set_parameters(self, x: np.ndarray) -> None:
        """Write ``x`` to the unprescribed coordinates; only the last write recomputes."""
        n = self.num_parameters
        for i, info in enumerate(self.maps.unprescribed):
            self.model.set_coordinate_value(info.index, float(x[i]), i == n - 1)

    def _update_computed_markers(self) -> None:
        for m in self.maps.markers:
            if not m.valid:
                continue
            m.computed_position = np.asarray(
                self.model.transform_local_point_to_world(m.body, m.offset), dtype=np.float64
            )

    def _fill_residual(self, out: np.ndarray) -> np.ndarray:
        for k, m in enumerate(self.maps.markers):
            r = 3 * k
            if not m.valid:
                out[r:r + 3] = 0.0
                continue
            out[r:r + 3] = math.sqrt(m.weight) * (m.experimental_position - m.computed_position)

        row = 3 * len(self.maps.markers)
        for info in self.maps.weighted_entries():
            value = self.model.get_coordinate_value(info.index)
            out[row] = math.sqrt(info.weight) * (info.experimental_value - value)
            row += 1
        return out

    def _summarize(self) -> ErrorSummary:
        total_weighted = 0.0
        total_marker = 0.0
        total_coord = 0.0
        max_marker, max_coord = 0.0, 0.0
        worst_marker, worst_coord = "", ""
        n_valid = 0

        for m in self.maps.markers:
            if not m.valid:
                continue
            n_valid += 1
            marker_error = 0.0
            for j in range(3):
                err = float(m.experimental_position[j]) - float(m.computed_position[j])
                marker_error += err * err
            total_marker += marker_error
            if marker_error > max_marker:
                max_marker, worst_marker = marker_error, m.name
            total_weighted += m.weight * marker_error

        weighted = self.maps.weighted_entries()
        for info in weighted:
            err = info.experimental_value - self.model.get_coordinate_value(info.index)
            coord_error = err * err
            total_coord += coord_error
            if coord_error > max_coord:
                max_coord, worst_coord = coord_error, info.name
            total_weighted += info.weight * coord_error

        return ErrorSummary(
            total_weighted=total_weighted,
            marker_rms=math.sqrt(total_marker / n_valid) if n_valid else 0.0,
            worst_marker=worst_marker,
            worst_marker_sq_error=max_marker,
            coordinate_rms=math.sqrt(total_coord / len(weighted)) if weighted else 0.0,
            worst_coordinate=worst_coord,
            worst_coordinate_sq_error=max_coord,
        )

    def _evaluate(self, x: np.ndarray, context: EvalContext, verbose: bool) -> ErrorSummary:
        self.check_interrupt()
        self.set_parameters(x)
        self._update_computed_markers()
        summary = self._summarize()
        if context is not EvalContext.GRADIENT:
            self.error_summary = summary
            if verbose:
                for info in self.maps.unprescribed:
                    logger.debug("%s = %g", info.name, self.model.get_coordinate_value(info.index))
                logger.info(summary.format())
        return summary

    def objective(
        self,
        x: np.ndarray,
        *,
        context: EvalContext = EvalContext.OBJECTIVE,
        verbose: bool = False,
    ) -> float:
        """Sum of weighted squared marker and coordinate errors at pose ``x``."""
        return self._evaluate(x, context, verbose).total_weighted

    def residuals(
        self,
        x: np.ndarray,
        *,
        context: EvalContext = EvalContext.SOLVE,
        verbose: bool = False,
        out: np.ndarray | None = None,
    ) -> np.ndarray:
        """Weighted residual vector at pose ``x``.

        Three rows per marker (zeros for a marker missing in this frame)
        followed by one row per weighted unprescribed coordinate.
        """
        self._evaluate(x, context, verbose)
        if out is None:
            out = np.zeros(self.residual_size, dtype=np.float64)
        return self._fill_residual(out)

    def print_performance(self, x: np.ndarray) -> ErrorSummary:
        self._evaluate(np.asarray(x, dtype=np.float64), EvalContext.OBJECTIVE, True)
        return self.error_summary

    # ── Reporting ─────────────────────────────────────────────────────────

    def computed_marker_locations(self) -> np.ndarray:
        return np.array([m.computed_position for m in self.maps.markers], dtype=np.float64).reshape(-1, 3)

    def experimental_marker_locations(self) -> np.ndarray:
        return np.array([m.experimental_position for m in self.maps.markers], dtype=np.float64).reshape(-1, 3)

    def prescribed_coordinate_values(self) -> np.ndarray:
        return np.array(
            [self.model.get_coordinate_value(c.index) for c in self.maps.prescribed], dtype=np.float64
        )

    def prescribed_coordinate_names(self) -> list[str]:
        return [c.name for c in self.maps.prescribed]

    def unprescribed_coordinate_names(self) -> list[str]:
        return [c.name for c in self.maps.unprescribed]

    def output_marker_names(self) -> list[str]:
        return [m.name for m in self.maps.markers]

    def describe_tasks(self) -> str:
        """Human-readable dump of the classified tasks."""
        lines: list[str] = []
        if self.maps.markers:
            lines.append("Marker Tasks:")
        for m in self.maps.markers:
            c = m.experimental_column
            lines.append(f"\t{m.name}: weight {m.weight:g} from file (columns {c}-{c + 2})")

        weighted = self.maps.weighted_entries()
        if weighted:
            lines.append("Unprescribed Coordinate Tasks (with nonzero weight):")
        for info in weighted:
            src = (
                f"from file (column {info.experimental_column})"
                if info.from_file
                else f"constant target value of {info.constant_value:g}"
            )
            lines.append(f"\t{info.name}: weight {info.weight:g} {src}")

        if self.maps.prescribed:
            lines.append("Prescribed Coordinate Tasks:")
        for info in self.maps.prescribed:
            src = (
                f"from file (column {info.experimental_column})"
                if info.from_file
                else f"constant target value of {info.constant_value:g}"
            )
            lines.append(f"\t{info.name}: {src}")
        return "\n".join(lines)
