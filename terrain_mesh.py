"""
Terrain Mesh Builder
Unit grid meshes for each LOD tier and the per-node draw records that place
a grid over a quadtree node's footprint.
"""

import numpy as np

# Grid resolution (cells per side) for each LOD tier, finest first
LOD_GRID_SIZES = (256, 128, 64, 32, 16)

# Highest LOD index that has its own mesh
MAX_DRAW_LOD = len(LOD_GRID_SIZES) - 1


class GridMesh:
    """Flat unit grid centered at the origin with positions, normals, UVs and triangle indices."""

    def __init__(self, grid, positions, normals, uvs, indices):
        self.grid = grid
        self.positions = positions
        self.normals = normals
        self.uvs = uvs
        self.indices = indices

    @property
    def vertex_count(self):
        return len(self.positions)

    @property
    def index_count(self):
        return len(self.indices)


class NodeDrawRecord:
    """Per-object render data for one visible quadtree node."""

    def __init__(self, draw_index, world, tex_transform, lod_level, mesh_name):
        self.draw_index = draw_index
        self.world = world
        self.tex_transform = tex_transform
        self.lod_level = lod_level
        self.mesh_name = mesh_name


def lod_mesh_name(lod):
    """Mesh name for an LOD tier; anything out of range maps to the finest mesh."""
    if lod < 0 or lod >= len(LOD_GRID_SIZES):
        return "lod0"
    return f"lod{lod}"


def clamp_lod(lod):
    return lod if lod < MAX_DRAW_LOD else MAX_DRAW_LOD


def build_grid_mesh(grid):
    """Build a grid x grid cell mesh spanning [-0.5, 0.5] in X and Z at y = 0."""
    inv = 1.0 / grid
    steps = np.arange(grid + 1, dtype=np.float32) * inv

    # Row-major in z, so vertex (x, z) lives at z * (grid + 1) + x
    u, w = np.meshgrid(steps, steps)
    u = u.ravel()
    w = w.ravel()

    positions = np.zeros((u.size, 3), dtype=np.float32)
    positions[:, 0] = u - 0.5
    positions[:, 2] = w - 0.5

    normals = np.zeros_like(positions)
    normals[:, 1] = 1.0

    uvs = np.stack([u, w], axis=1).astype(np.float32)

    row_stride = grid + 1
    cx, cz = np.meshgrid(np.arange(grid, dtype=np.uint32), np.arange(grid, dtype=np.uint32))
    i0 = (cz * row_stride + cx).ravel()
    i1 = i0 + 1
    i2 = i0 + row_stride
    i3 = i2 + 1

    # Two triangles per cell: (i0, i2, i1) and (i1, i2, i3)
    indices = np.stack([i0, i2, i1, i1, i2, i3], axis=1).ravel().astype(np.uint32)

    return GridMesh(grid, positions, normals, uvs, indices)


def build_lod_meshes(grid_sizes=LOD_GRID_SIZES):
    """Build one grid mesh per LOD tier, keyed by mesh name."""
    return {lod_mesh_name(lod): build_grid_mesh(grid) for lod, grid in enumerate(grid_sizes)}


def _scaling(sx, sy, sz):
    return np.diag([sx, sy, sz, 1.0])


def _translation(tx, ty, tz):
    m = np.identity(4)
    m[:3, 3] = (tx, ty, tz)
    return m


def node_draw_record(node, terrain_size):
    """Place a unit LOD mesh over the node's footprint and map its UVs into the heightmap."""
    node_scale = node.size
    uv_scale = node.size / terrain_size
    uv_offset_x = node.x / terrain_size + 0.5 - uv_scale * 0.5
    uv_offset_z = node.z / terrain_size + 0.5 - uv_scale * 0.5

    # Column-vector convention: scale first, then translate
    world = _translation(node.x, 0.0, node.z) @ _scaling(node_scale, 1.0, node_scale)
    tex_transform = _translation(uv_offset_x, uv_offset_z, 0.0) @ _scaling(uv_scale, uv_scale, 1.0)

    lod = clamp_lod(node.lod_level)
    return NodeDrawRecord(node.draw_index, world, tex_transform, lod, lod_mesh_name(lod))


def build_draw_records(nodes, terrain_size):
    return [node_draw_record(node, terrain_size) for node in nodes]


def displace_mesh(mesh, record, heightfield, normal_map=None):
    """
    Transform a unit mesh into world space and lift it onto the heightfield.

    Args:
        mesh: GridMesh for the record's LOD tier
        record: NodeDrawRecord placing the mesh
        heightfield: Heightfield providing elevations
        normal_map: Optional result of heightfield.compute_normal_map(); when
            omitted the mesh keeps its flat up normals

    Returns:
        (positions, normals) float32 arrays with one row per mesh vertex
    """
    count = mesh.vertex_count
    homogeneous = np.ones((count, 4))
    homogeneous[:, :3] = mesh.positions
    world = (record.world @ homogeneous.T).T[:, :3]

    world[:, 1] = heightfield.get_heights(world[:, 0], world[:, 2])

    if normal_map is None or normal_map.size == 0:
        normals = mesh.normals.copy()
    else:
        # Nearest sample lookup in the normal map, using the same texel mapping as get_height
        rows, cols = normal_map.shape[:2]
        size = heightfield.terrain_size
        ix = np.clip(np.floor((world[:, 0] / size + 0.5) * cols).astype(np.int64), 0, cols - 1)
        iz = np.clip(np.floor((world[:, 2] / size + 0.5) * rows).astype(np.int64), 0, rows - 1)
        normals = normal_map[iz, ix]

    return world.astype(np.float32), np.asarray(normals, dtype=np.float32)
