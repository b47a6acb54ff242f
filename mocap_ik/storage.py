"""Time-indexed experimental data (marker trajectories and coordinate values).

Column 0 of the label list is always ``time``; rows returned by
:meth:`MarkerStorage.get_row` hold only the data columns, so a label index
found with :meth:`MarkerStorage.find_column_index` must be decremented by one
to address a row.
"""
from __future__ import annotations

from typing import Mapping, Sequence

import numpy as np

TIME_LABEL = "time"
AXIS_SUFFIXES = ("_x", "_y", "_z")


class MarkerStorage:
    """In-memory table of experimental samples, one row per frame."""

    def __init__(self, labels: Sequence[str], data: np.ndarray):
        labels = list(labels)
        data = np.asarray(data, dtype=np.float64)
        if not labels or labels[0] != TIME_LABEL:
            raise ValueError(f"first column label must be '{TIME_LABEL}', got {labels[:1]}")
        if data.ndim != 2 or data.shape[1] != len(labels):
            raise ValueError(
                f"data shape {data.shape} does not match {len(labels)} column labels"
            )
        self._labels = labels
        self._data = data

    # ── Construction ──────────────────────────────────────────────────────

    @classmethod
    def from_markers(
        cls,
        times: np.ndarray,
        marker_names: Sequence[str],
        xyz: np.ndarray,
        *,
        coordinates: Mapping[str, np.ndarray] | None = None,
    ) -> MarkerStorage:
        """Assemble a table from ``(T, K, 3)`` marker positions.

        Markers get ``<name>_x/_y/_z`` columns; optional coordinate series are
        appended after them, one column each.
        """
        times = np.asarray(times, dtype=np.float64)
        xyz = np.asarray(xyz, dtype=np.float64)
        T = times.shape[0]
        if xyz.shape != (T, len(marker_names), 3):
            raise ValueError(
                f"marker array must be (T, K, 3) = ({T}, {len(marker_names)}, 3), got {xyz.shape}"
            )

        labels = [TIME_LABEL]
        cols = [times[:, None]]
        for k, name in enumerate(marker_names):
            labels.extend(f"{name}{s}" for s in AXIS_SUFFIXES)
            cols.append(xyz[:, k, :])
        for name, series in (coordinates or {}).items():
            series = np.asarray(series, dtype=np.float64)
            if series.shape != (T,):
                raise ValueError(f"coordinate '{name}' must have shape ({T},), got {series.shape}")
            labels.append(name)
            cols.append(series[:, None])

        return cls(labels, np.hstack(cols))

    # ── Access ────────────────────────────────────────────────────────────

    @property
    def labels(self) -> list[str]:
        return list(self._labels)

    @property
    def n_frames(self) -> int:
        return int(self._data.shape[0])

    def get_time(self, frame: int) -> float:
        return float(self._data[frame, 0])

    def get_row(self, frame: int) -> np.ndarray:
        """Data values for a frame, time column excluded (read-only view)."""
        row = self._data[frame, 1:]
        row.flags.writeable = False
        return row

    def find_column_index(self, name: str) -> int | None:
        try:
            return self._labels.index(name)
        except ValueError:
            return None

    def rfind_column_index(self, name: str) -> int | None:
        for i in range(len(self._labels) - 1, -1, -1):
            if self._labels[i] == name:
                return i
        return None
