import numpy as np
import pytest

from chain import arm_storage
from mocap_ik.errors import Interrupted
from mocap_ik.external import minimize_frame
from mocap_ik.target import IKTarget
from mocap_ik.tasks import MarkerTask

TASKS = [MarkerTask("upper_mid"), MarkerTask("elbow_m"), MarkerTask("wrist")]


def test_bfgs_recovers_pose(arm):
    target = IKTarget(arm, TASKS, arm_storage(arm, [{"shoulder": 0.3, "elbow": 0.5}]))
    res = minimize_frame(target, target.prepare_to_solve(0))
    np.testing.assert_allclose(res.x, [0.3, 0.5], atol=1e-2)
    assert res.summary.total_weighted < 1e-4
    np.testing.assert_allclose(arm.q[1:], res.x)


def test_interrupt_propagates_through_optimizer(arm):
    target = IKTarget(arm, TASKS, arm_storage(arm, [{"shoulder": 0.3}]))
    guess = target.prepare_to_solve(0)
    target.interrupt()
    with pytest.raises(Interrupted):
        minimize_frame(target, guess)
