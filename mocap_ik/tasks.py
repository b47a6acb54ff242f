"""IK tasks and their classification against a model and a trial.

A task says which marker or coordinate takes part in the fit, how strongly,
and where its experimental value comes from.  ``classify_tasks`` resolves the
tasks once, up front, into the tables the evaluator works on: prescribed and
unprescribed coordinates, the weighted subset of the unprescribed ones, and
the markers to solve for.
"""
from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Sequence, Union

import numpy as np

from mocap_ik.errors import ConfigurationError
from mocap_ik.model import KinematicModel
from mocap_ik.storage import AXIS_SUFFIXES, MarkerStorage

logger = logging.getLogger(__name__)


# ── Tasks ─────────────────────────────────────────────────────────────────

class ValueType(enum.Enum):
    DEFAULT_VALUE = "default_value"   # model default value for the coordinate
    MANUAL_VALUE = "manual_value"     # the task's own constant ``value``
    FROM_FILE = "from_file"           # column of the same name in the trial


@dataclass(frozen=True)
class MarkerTask:
    name: str
    weight: float = 1.0
    apply: bool = True


@dataclass(frozen=True)
class CoordinateTask:
    name: str
    weight: float = 0.0
    apply: bool = True
    value_type: ValueType = ValueType.DEFAULT_VALUE
    value: float = 0.0


IKTask = Union[MarkerTask, CoordinateTask]


# ── Classified entries ────────────────────────────────────────────────────

@dataclass
class CoordinateEntry:
    name: str
    index: int                          # position in the model's coordinate set
    prescribed: bool
    experimental_column: int | None     # row column, None → constant value
    constant_value: float
    weight: float = 0.0
    experimental_value: float = 0.0     # target for the current frame

    @property
    def from_file(self) -> bool:
        return self.experimental_column is not None


@dataclass
class MarkerEntry:
    name: str
    index: int                          # position in the model's marker set
    body: Any
    offset: np.ndarray                  # (3,) body frame
    experimental_column: int            # row column of the x component
    weight: float
    computed_position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    experimental_position: np.ndarray = field(default_factory=lambda: np.full(3, np.nan))
    valid: bool = False


@dataclass
class TaskMaps:
    """Static classification shared by every frame of a trial.

    ``weighted`` holds indices into ``unprescribed``; the entries themselves
    are owned by ``unprescribed`` only.
    """
    prescribed: list[CoordinateEntry]
    unprescribed: list[CoordinateEntry]
    weighted: tuple[int, ...]
    markers: list[MarkerEntry]
    perturbation: np.ndarray            # (num_parameters,)

    @property
    def num_parameters(self) -> int:
        return len(self.unprescribed)

    @property
    def residual_size(self) -> int:
        return 3 * len(self.markers) + len(self.weighted)

    def weighted_entries(self) -> list[CoordinateEntry]:
        return [self.unprescribed[i] for i in self.weighted]


# ── Classification ────────────────────────────────────────────────────────

def _check_weight(task: IKTask) -> None:
    # Residual rows scale by sqrt(weight).
    if not math.isfinite(task.weight) or task.weight < 0:
        raise ConfigurationError(
            f"task '{task.name}' has weight {task.weight}; weights must be finite and non-negative"
        )


def _build_markers(
    model: KinematicModel,
    tasks: Sequence[IKTask],
    storage: MarkerStorage,
) -> list[MarkerEntry]:
    marker_index = {n: i for i, n in enumerate(model.marker_names)}
    labels = storage.labels
    markers: list[MarkerEntry] = []
    for task in tasks:
        if not isinstance(task, MarkerTask) or not task.apply:
            continue
        mi = marker_index.get(task.name)
        if mi is None:
            raise ConfigurationError(f"marker '{task.name}' named in a marker task not found in model")
        _check_weight(task)
        if task.weight == 0:
            continue

        col = storage.find_column_index(f"{task.name}{AXIS_SUFFIXES[0]}")
        if col is None:
            raise ConfigurationError(f"experimental data for marker '{task.name}' not found in trial")
        expected = [f"{task.name}{s}" for s in AXIS_SUFFIXES]
        if labels[col:col + 3] != expected:
            raise ConfigurationError(
                f"marker '{task.name}' needs consecutive columns {expected}, "
                f"trial has {labels[col:col + 3]}"
            )

        markers.append(MarkerEntry(
            name=task.name,
            index=mi,
            body=model.marker_body(mi),
            offset=np.asarray(model.marker_offset(mi), dtype=np.float64),
            experimental_column=col - 1,     # time column
            weight=float(task.weight),
        ))
    return markers


def _build_coordinates(
    model: KinematicModel,
    tasks: Sequence[IKTask],
    storage: MarkerStorage,
) -> list[CoordinateEntry]:
    entries = [
        CoordinateEntry(
            name=name,
            index=i,
            prescribed=model.get_locked(i) or model.is_constrained(i),
            experimental_column=None,
            constant_value=model.get_default_value(i),
        )
        for i, name in enumerate(model.coordinate_names)
    ]
    by_name = {e.name: e for e in entries}

    for task in tasks:
        if not isinstance(task, CoordinateTask) or not task.apply:
            continue
        entry = by_name.get(task.name)
        if entry is None:
            raise ConfigurationError(
                f"coordinate '{task.name}' named in a coordinate task not found in model"
            )
        _check_weight(task)

        if task.value_type is ValueType.FROM_FILE:
            # Coordinate columns come after the marker columns, search from the end.
            col = storage.rfind_column_index(task.name)
            if col is None:
                raise ConfigurationError(
                    f"coordinate task '{task.name}' reads from file but the trial has no such column"
                )
            entry.experimental_column = col - 1
        elif task.value_type is ValueType.MANUAL_VALUE:
            entry.constant_value = float(task.value)

        entry.weight = float(task.weight)
    return entries


def classify_tasks(
    model: KinematicModel,
    tasks: Sequence[IKTask],
    storage: MarkerStorage,
    *,
    perturbation: float = 1e-3,
) -> TaskMaps:
    """Resolve ``tasks`` against ``model`` and the trial's column labels.

    Raises ``ConfigurationError`` for a task naming an unknown marker or
    coordinate, carrying a negative or non-finite weight, or whose
    experimental columns are missing from ``storage``.
    """
    markers = _build_markers(model, tasks, storage)
    coords = _build_coordinates(model, tasks, storage)

    prescribed = [c for c in coords if c.prescribed]
    unprescribed = [c for c in coords if not c.prescribed]
    weighted = tuple(i for i, c in enumerate(unprescribed) if c.weight != 0)

    logger.debug(
        "classified %d markers, %d prescribed / %d unprescribed coordinates (%d weighted)",
        len(markers), len(prescribed), len(unprescribed), len(weighted),
    )
    return TaskMaps(
        prescribed=prescribed,
        unprescribed=unprescribed,
        weighted=weighted,
        markers=markers,
        perturbation=np.full(len(unprescribed), float(perturbation), dtype=np.float64),
    )
