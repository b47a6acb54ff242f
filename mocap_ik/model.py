"""Forward-kinematics model interface and its MuJoCo implementation.

The IK core only needs a handful of operations from a skeletal model: read and
write generalized coordinates, query their lock / constraint / clamp state,
and map a body-fixed point into the world frame.  ``KinematicModel`` spells
those out; ``MujocoModel`` provides them for an ``mujoco.MjModel`` where
hinge and slide joints are the coordinates and sites are the markers.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, Protocol, Sequence

import mujoco
import numpy as np

logger = logging.getLogger(__name__)


class KinematicModel(Protocol):
    """Operations the IK core consumes from a skeletal model."""

    @property
    def coordinate_names(self) -> Sequence[str]: ...

    @property
    def marker_names(self) -> Sequence[str]: ...

    def set_coordinate_value(self, index: int, value: float, recompute: bool = True) -> None: ...

    def get_coordinate_value(self, index: int) -> float: ...

    def get_default_value(self, index: int) -> float: ...

    def get_locked(self, index: int) -> bool: ...

    def set_locked(self, index: int, locked: bool) -> None: ...

    def is_constrained(self, index: int) -> bool: ...

    def get_clamped(self, index: int) -> bool: ...

    def set_clamped(self, index: int, clamped: bool) -> None: ...

    def marker_body(self, marker: int) -> Any: ...

    def marker_offset(self, marker: int) -> np.ndarray: ...

    def transform_local_point_to_world(self, body: Any, offset: np.ndarray) -> np.ndarray: ...


_COORDINATE_JOINT_TYPES = (int(mujoco.mjtJoint.mjJNT_HINGE), int(mujoco.mjtJoint.mjJNT_SLIDE))


class MujocoModel:
    """``KinematicModel`` over a MuJoCo model.

    Coordinates are the hinge and slide joints (free and ball joints carry
    quaternions and are left alone).  A joint that is the first object of an
    active joint-equality constraint counts as constrained.  Limited joints
    start out clamped to ``jnt_range``.  Locks are kept here since MuJoCo has
    no notion of them; a value written to a locked coordinate is ignored.
    """

    def __init__(
        self,
        model: mujoco.MjModel,
        data: mujoco.MjData | None = None,
        *,
        locked: Iterable[str] = (),
    ):
        self.model = model
        self.data = data if data is not None else mujoco.MjData(model)

        self._joint_ids = [
            j for j in range(model.njnt) if int(model.jnt_type[j]) in _COORDINATE_JOINT_TYPES
        ]
        self._qpos_adr = np.array([int(model.jnt_qposadr[j]) for j in self._joint_ids], dtype=int)
        self._coord_names = [model.joint(j).name for j in self._joint_ids]
        self._marker_names = [model.site(s).name for s in range(model.nsite)]

        name_to_index = {n: i for i, n in enumerate(self._coord_names)}
        unknown = [n for n in locked if n not in name_to_index]
        if unknown:
            raise ValueError(f"cannot lock unknown coordinates: {unknown}")
        self._locked = np.zeros(len(self._joint_ids), dtype=bool)
        for n in locked:
            self._locked[name_to_index[n]] = True

        self._clamped = np.array(
            [bool(model.jnt_limited[j]) for j in self._joint_ids], dtype=bool
        )

        constrained_joints = {
            int(model.eq_obj1id[e])
            for e in range(model.neq)
            if int(model.eq_type[e]) == int(mujoco.mjtEq.mjEQ_JOINT) and bool(model.eq_active0[e])
        }
        self._constrained = np.array(
            [j in constrained_joints for j in self._joint_ids], dtype=bool
        )

        mujoco.mj_kinematics(self.model, self.data)
        self._stale = False

    @classmethod
    def from_xml_string(cls, xml: str, **kwargs) -> MujocoModel:
        return cls(mujoco.MjModel.from_xml_string(xml), **kwargs)

    @classmethod
    def from_xml_path(cls, path, **kwargs) -> MujocoModel:
        return cls(mujoco.MjModel.from_xml_path(str(path)), **kwargs)

    # ── Sets ──────────────────────────────────────────────────────────────

    @property
    def coordinate_names(self) -> list[str]:
        return list(self._coord_names)

    @property
    def marker_names(self) -> list[str]:
        return list(self._marker_names)

    # ── Coordinates ───────────────────────────────────────────────────────

    def set_coordinate_value(self, index: int, value: float, recompute: bool = True) -> None:
        if self._locked[index]:
            logger.debug("ignoring write to locked coordinate %s", self._coord_names[index])
            return
        if self._clamped[index]:
            lo, hi = self.model.jnt_range[self._joint_ids[index]]
            value = min(max(float(value), float(lo)), float(hi))
        self.data.qpos[self._qpos_adr[index]] = value
        self._stale = True
        if recompute:
            self._forward()

    def get_coordinate_value(self, index: int) -> float:
        return float(self.data.qpos[self._qpos_adr[index]])

    def get_default_value(self, index: int) -> float:
        return float(self.model.qpos0[self._qpos_adr[index]])

    def get_locked(self, index: int) -> bool:
        return bool(self._locked[index])

    def set_locked(self, index: int, locked: bool) -> None:
        self._locked[index] = locked

    def is_constrained(self, index: int) -> bool:
        return bool(self._constrained[index])

    def get_clamped(self, index: int) -> bool:
        return bool(self._clamped[index])

    def set_clamped(self, index: int, clamped: bool) -> None:
        # Unlimited joints have no range to clamp to.
        self._clamped[index] = clamped and bool(self.model.jnt_limited[self._joint_ids[index]])

    # ── Markers ───────────────────────────────────────────────────────────

    def marker_body(self, marker: int) -> int:
        return int(self.model.site_bodyid[marker])

    def marker_offset(self, marker: int) -> np.ndarray:
        return np.array(self.model.site_pos[marker], dtype=np.float64)

    def transform_local_point_to_world(self, body: int, offset: np.ndarray) -> np.ndarray:
        if self._stale:
            self._forward()
        R = self.data.xmat[body].reshape(3, 3)
        return self.data.xpos[body] + R @ np.asarray(offset, dtype=np.float64)

    def _forward(self) -> None:
        mujoco.mj_kinematics(self.model, self.data)
        self._stale = False
