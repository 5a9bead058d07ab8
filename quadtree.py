"""
Quadtree LOD System for the Terrain Renderer
Builds a fixed hierarchy of square terrain patches once, then every frame
culls it against the view frustum and picks the patches to draw along with
their level of detail.
"""

import math

from frustum import BoundingBox

# Vertical padding added above and below every node's height range
BOUNDS_MARGIN = 10.0

# Placeholder vertical range assigned to every node at build time
DEFAULT_MIN_Y = 0.0
DEFAULT_MAX_Y = 100.0

# Camera closer than this multiple of a node's size (in XZ) forces a split
SUBDIVIDE_DISTANCE_FACTOR = 1.5


class TerrainNode:
    """Square patch of terrain; either a leaf or the parent of exactly four children."""

    def __init__(self, x, z, size, depth, min_y=DEFAULT_MIN_Y, max_y=DEFAULT_MAX_Y):
        self.x = x  # World space center of the footprint
        self.z = z
        self.size = size  # Footprint edge length
        self.depth = depth

        self.min_y = min_y
        self.max_y = max_y
        self.bounds = BoundingBox(
            (x, (min_y + max_y) * 0.5, z),
            (size * 0.5, (max_y - min_y) * 0.5 + BOUNDS_MARGIN, size * 0.5),
        )

        # Ordered NW, NE, SW, SE; empty for leaves
        self.children = []

        # Per-frame state, only meaningful while frame_id matches the tree's frame
        self.frame_id = -1
        self.is_visible = False
        self.lod_level = depth
        self.draw_index = 0

    @property
    def is_leaf(self):
        return not self.children

    @property
    def area(self):
        return self.size * self.size

    def set_vertical_range(self, min_y, max_y):
        self.min_y = min_y
        self.max_y = max_y
        self.bounds = self.bounds.with_vertical_range(min_y, max_y, BOUNDS_MARGIN)

    def __repr__(self):
        return (f"TerrainNode(x={self.x}, z={self.z}, size={self.size}, depth={self.depth}, "
                f"leaf={self.is_leaf})")


class QuadTree:
    """Frustum-culled LOD quadtree over a square terrain centered at the origin."""

    def __init__(self):
        self.root = None

        self.terrain_size = 0.0
        self.min_node_size = 0.0
        self.max_lod_levels = 0

        self.lod_distances = []

        self._visible_node_count = 0
        self._total_node_count = 0
        self._next_draw_index = 0
        self._frame_id = -1

    @property
    def visible_node_count(self):
        return self._visible_node_count

    @property
    def total_node_count(self):
        return self._total_node_count

    def set_lod_distances(self, distances):
        """Override the LOD distance bands. Only read by the next initialize()."""
        self.lod_distances = list(distances)

    def initialize(self, terrain_size, min_node_size, max_lod_levels):
        """Build the node hierarchy and, if none were supplied, the LOD distance bands."""
        self.terrain_size = terrain_size
        self.min_node_size = min_node_size
        self.max_lod_levels = max_lod_levels

        self._visible_node_count = 0
        self._total_node_count = 0
        self._next_draw_index = 0

        if not self.lod_distances:
            # Band 0 is the widest; each following band halves the distance
            self.lod_distances = [
                min_node_size * 2 ** (max_lod_levels - i)
                for i in range(max_lod_levels)
            ]

        self.root = self._build_tree(0.0, 0.0, terrain_size, 0)

    def _build_tree(self, x, z, size, depth):
        node = TerrainNode(x, z, size, depth)
        self._total_node_count += 1

        can_split = size > self.min_node_size and depth < self.max_lod_levels - 1
        if not can_split:
            return node

        half = size * 0.5
        quarter = size * 0.25

        node.children = [
            self._build_tree(x - quarter, z + quarter, half, depth + 1),  # NW
            self._build_tree(x + quarter, z + quarter, half, depth + 1),  # NE
            self._build_tree(x - quarter, z - quarter, half, depth + 1),  # SW
            self._build_tree(x + quarter, z - quarter, half, depth + 1),  # SE
        ]
        return node

    def _require_root(self):
        if self.root is None:
            raise RuntimeError("QuadTree.initialize() must be called before use")

    def set_height_range(self, min_y, max_y):
        """Apply the terrain's real elevation range to the root node only.

        Descendants keep the build-time placeholder range.
        """
        if self.root is None:
            return
        self.root.set_vertical_range(min_y, max_y)

    def update(self, camera_position, frustum_planes):
        """Re-evaluate visibility, LOD and draw slots for the current frame."""
        self._require_root()

        self._visible_node_count = 0
        self._next_draw_index = 0
        self._frame_id += 1

        self._update_node(self.root, camera_position, frustum_planes)

    def _update_node(self, node, camera_position, frustum_planes):
        node.frame_id = self._frame_id
        node.is_visible = node.bounds.intersects(frustum_planes)
        if not node.is_visible:
            return

        node.lod_level = self.calculate_lod(node, camera_position)

        if self.should_subdivide(node, camera_position):
            # A descendant is drawn instead of this node
            node.is_visible = False
            for child in node.children:
                self._update_node(child, camera_position, frustum_planes)
            return

        node.draw_index = self._next_draw_index
        self._next_draw_index += 1
        self._visible_node_count += 1

    def calculate_lod(self, node, camera_position):
        """Index of the first distance band containing the camera, else the coarsest LOD."""
        dx = camera_position[0] - node.x
        dy = camera_position[1] - (node.min_y + node.max_y) * 0.5
        dz = camera_position[2] - node.z

        dist = math.sqrt(dx * dx + dy * dy + dz * dz)

        for i, band in enumerate(self.lod_distances):
            if dist < band:
                return i

        return self.max_lod_levels - 1

    def should_subdivide(self, node, camera_position):
        if node.is_leaf:
            return False

        dx = camera_position[0] - node.x
        dz = camera_position[2] - node.z

        return math.sqrt(dx * dx + dz * dz) < node.size * SUBDIVIDE_DISTANCE_FACTOR

    def get_visible_nodes(self):
        """Nodes selected by the last update(), in draw slot order."""
        self._require_root()

        nodes = []
        self._collect_visible_nodes(self.root, nodes)
        return nodes

    def _collect_visible_nodes(self, node, out_nodes):
        # Subtrees pruned this frame still carry flags from older frames
        if node.frame_id != self._frame_id:
            return

        if node.is_visible:
            out_nodes.append(node)
            return

        if node.is_leaf:
            return

        for child in node.children:
            self._collect_visible_nodes(child, out_nodes)

    def iter_nodes(self):
        """Pre-order walk over every node in the tree."""
        if self.root is None:
            return
        stack = [self.root]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def iter_leaves(self):
        for node in self.iter_nodes():
            if node.is_leaf:
                yield node
