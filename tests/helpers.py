import numpy as np


def box_planes(half_size):
    """Six inward-facing planes enclosing the cube [-half_size, half_size]^3."""
    return np.array([
        [1.0, 0.0, 0.0, half_size],
        [-1.0, 0.0, 0.0, half_size],
        [0.0, 1.0, 0.0, half_size],
        [0.0, -1.0, 0.0, half_size],
        [0.0, 0.0, 1.0, half_size],
        [0.0, 0.0, -1.0, half_size],
    ])
