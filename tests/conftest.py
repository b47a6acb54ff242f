from __future__ import annotations

import pytest

from chain import ChainModel, make_arm, make_pendulum


@pytest.fixture
def arm() -> ChainModel:
    return make_arm()


@pytest.fixture
def pendulum() -> ChainModel:
    return make_pendulum()
