import numpy as np
import pytest

from frustum import BoundingBox
from tests.helpers import box_planes


@pytest.fixture
def everything_planes():
    return box_planes(1.0e6)


@pytest.fixture
def write_raw(tmp_path):
    """Write samples to a headerless raw file and return its path."""
    def _write(samples, bits_per_sample=8, name="heightmap.raw"):
        dtype = '<u2' if bits_per_sample == 16 else 'u1'
        path = tmp_path / name
        path.write_bytes(np.asarray(samples, dtype=dtype).tobytes())
        return path
    return _write


@pytest.fixture
def unit_box():
    return BoundingBox((0.0, 0.0, 0.0), (1.0, 1.0, 1.0))
