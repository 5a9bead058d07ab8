"""
Frustum Culling Helpers for the Terrain Renderer
Axis-aligned bounding boxes, the box-vs-frustum test used by the quadtree,
and plane extraction from a combined view-projection matrix.
"""

import numpy as np


class BoundingBox:
    """Axis-aligned box stored as a center point and non-negative half extents."""

    def __init__(self, center, extents):
        self.center = np.array(center, dtype=np.float64)
        self.extents = np.array(extents, dtype=np.float64)

    def min_corner(self):
        return self.center - self.extents

    def max_corner(self):
        return self.center + self.extents

    def with_vertical_range(self, min_y, max_y, margin=0.0):
        """Return a copy spanning [min_y, max_y] vertically, padded by margin."""
        center = self.center.copy()
        extents = self.extents.copy()
        center[1] = (min_y + max_y) * 0.5
        extents[1] = (max_y - min_y) * 0.5 + margin
        return BoundingBox(center, extents)

    def intersects(self, planes):
        return intersects(self, planes)

    def __repr__(self):
        return f"BoundingBox(center={self.center.tolist()}, extents={self.extents.tolist()})"


def intersects(box, planes):
    """
    Conservative box-vs-frustum test.

    Args:
        box: BoundingBox to test
        planes: six (a, b, c, d) rows; a point is inside when a*x + b*y + c*z + d >= 0

    Returns:
        False as soon as the box lies entirely behind one plane, True otherwise.
        Boxes near a frustum corner may pass without touching the volume.
    """
    center = box.center
    extents = box.extents

    for plane in planes:
        a, b, c, d = plane[0], plane[1], plane[2], plane[3]

        # Positive vertex: the corner furthest along the plane normal
        vx = center[0] + extents[0] if a >= 0.0 else center[0] - extents[0]
        vy = center[1] + extents[1] if b >= 0.0 else center[1] - extents[1]
        vz = center[2] + extents[2] if c >= 0.0 else center[2] - extents[2]

        if a * vx + b * vy + c * vz + d < 0.0:
            return False

    return True


def extract_frustum_planes(view_proj, zero_to_one_depth=False):
    """
    Extract the six frustum planes from a view-projection matrix.

    The matrix is expected in column-vector form (clip = M @ [x, y, z, 1]).
    Planes come back as a (6, 4) array ordered left, right, bottom, top,
    near, far, with inward-facing normals normalized to unit length.

    Args:
        view_proj: 4x4 combined view-projection matrix
        zero_to_one_depth: True for clip spaces where 0 <= z <= w (Direct3D),
            False for -w <= z <= w (OpenGL)
    """
    m = np.asarray(view_proj, dtype=np.float64)
    row0, row1, row2, row3 = m[0], m[1], m[2], m[3]

    if zero_to_one_depth:
        near = row2
    else:
        near = row3 + row2

    planes = np.array([
        row3 + row0,  # left
        row3 - row0,  # right
        row3 + row1,  # bottom
        row3 - row1,  # top
        near,
        row3 - row2,  # far
    ])

    lengths = np.linalg.norm(planes[:, :3], axis=1)
    nonzero = lengths > 0.0
    planes[nonzero] /= lengths[nonzero, np.newaxis]

    return planes
