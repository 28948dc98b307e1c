from __future__ import annotations

import pytest

from synthetic import SyntheticScene, make_scene


@pytest.fixture
def scene() -> SyntheticScene:
    return make_scene()
