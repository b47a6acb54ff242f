import numpy as np
import pytest

from mocap_ik.storage import MarkerStorage


def _storage():
    times = np.array([0.0, 0.01])
    xyz = np.arange(2 * 2 * 3, dtype=float).reshape(2, 2, 3)
    return MarkerStorage.from_markers(times, ["A", "B"], xyz, coordinates={"knee": np.array([0.1, 0.2])})


def test_from_markers_layout():
    s = _storage()
    assert s.labels == ["time", "A_x", "A_y", "A_z", "B_x", "B_y", "B_z", "knee"]
    assert s.n_frames == 2
    assert s.get_time(1) == pytest.approx(0.01)


def test_row_excludes_time_column():
    s = _storage()
    row = s.get_row(1)
    col = s.find_column_index("B_x") - 1
    np.testing.assert_array_equal(row[col:col + 3], [9.0, 10.0, 11.0])
    assert row[s.find_column_index("knee") - 1] == pytest.approx(0.2)


def test_row_is_read_only():
    row = _storage().get_row(0)
    with pytest.raises(ValueError):
        row[0] = 1.0


def test_find_and_rfind():
    s = MarkerStorage(["time", "x", "y", "x"], np.zeros((1, 4)))
    assert s.find_column_index("x") == 1
    assert s.rfind_column_index("x") == 3
    assert s.find_column_index("missing") is None
    assert s.rfind_column_index("missing") is None


def test_rejects_missing_time_label():
    with pytest.raises(ValueError):
        MarkerStorage(["A_x"], np.zeros((1, 1)))


def test_rejects_shape_mismatch():
    with pytest.raises(ValueError):
        MarkerStorage.from_markers(np.zeros(3), ["A"], np.zeros((2, 1, 3)))
