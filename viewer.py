"""
Terrain Viewer
Free-flying camera over the quadtree LOD terrain, rendered with pygame and
fixed-function OpenGL. Hosts the heightfield and quadtree and draws the
nodes the quadtree selects every frame.
"""

import argparse
import math
import sys

import numpy as np
import pygame
from pygame.locals import *
from OpenGL.GL import *
from OpenGL.GLU import *

from frustum import extract_frustum_planes
from quadtree import QuadTree
from terrain import Heightfield
from terrain_mesh import build_draw_records, build_lod_meshes, displace_mesh

# Viewer settings, overridable from the command line
DEFAULT_SETTINGS = {
    'display': (1280, 720),
    'terrain_size': 512.0,
    'min_height': 0.0,
    'max_height': 150.0,
    'procedural_size': 256,
    'procedural_frequency': 4.0,
    'procedural_octaves': 6,
    'max_lod_levels': 5,
    'lod_distances': [100.0, 200.0, 400.0, 600.0, 1000.0],
    # Coarser than the GPU path; every vertex is displaced on the CPU
    'lod_grid_sizes': (64, 32, 16, 8, 4),
    'move_speed': 100.0,
    'near_plane': 1.0,
    'far_plane': 3000.0,
    'fov': 45.0,
}

# Height bands (as a fraction of the elevation range) and their colors
COLOR_BANDS = [
    (0.00, (0.0, 0.3, 0.8)),    # water
    (0.10, (0.8, 0.7, 0.4)),    # sand
    (0.30, (0.3, 0.6, 0.2)),    # grass
    (0.60, (0.5, 0.5, 0.5)),    # rock
    (1.00, (0.9, 0.9, 0.95)),   # snow
]


class FlyCamera:
    """Yaw/pitch camera that walks along its view direction."""

    def __init__(self, position, yaw=0.0, pitch=-0.3):
        self.position = np.array(position, dtype=np.float64)
        self.yaw = yaw
        self.pitch = pitch

    def forward(self):
        return np.array([
            math.cos(self.pitch) * math.sin(self.yaw),
            math.sin(self.pitch),
            -math.cos(self.pitch) * math.cos(self.yaw),
        ])

    def right(self):
        return np.array([math.cos(self.yaw), 0.0, math.sin(self.yaw)])

    def walk(self, distance):
        self.position += self.forward() * distance

    def strafe(self, distance):
        self.position += self.right() * distance

    def rotate(self, d_yaw, d_pitch):
        self.yaw += d_yaw
        # Keep away from straight up/down so the look-at up vector stays valid
        self.pitch = max(-1.5, min(1.5, self.pitch - d_pitch))

    def apply(self):
        target = self.position + self.forward()
        gluLookAt(self.position[0], self.position[1], self.position[2],
                  target[0], target[1], target[2],
                  0.0, 1.0, 0.0)


def height_colors(heights, min_height, max_height):
    """Blend the color bands by normalized height."""
    span = max(max_height - min_height, 1e-6)
    t = np.clip((heights - min_height) / span, 0.0, 1.0)

    stops = np.array([band[0] for band in COLOR_BANDS])
    colors = np.array([band[1] for band in COLOR_BANDS])

    return np.stack([np.interp(t, stops, colors[:, c]) for c in range(3)], axis=1).astype(np.float32)


def build_heightfield(settings, args):
    """Load the heightfield requested on the command line, falling back to fBm."""
    heightfield = Heightfield(settings['terrain_size'], settings['min_height'],
                              settings['max_height'], seed=args.seed)

    loaded = False
    if args.heightmap:
        print(f"Loading raw heightmap {args.heightmap}...")
        loaded = heightfield.load_raw(args.heightmap, args.width, args.height, args.bits)
    elif args.image:
        print(f"Loading heightmap image {args.image}...")
        loaded = heightfield.load_image(args.image)

    if not loaded:
        print("Generating procedural heightmap...")
        heightfield.generate(settings['procedural_size'], settings['procedural_size'],
                             settings['procedural_frequency'], settings['procedural_octaves'])

    return heightfield


def build_quadtree(settings, heightfield):
    quadtree = QuadTree()
    quadtree.set_lod_distances(settings['lod_distances'])
    quadtree.initialize(heightfield.terrain_size, heightfield.terrain_size / 8.0,
                        settings['max_lod_levels'])
    quadtree.set_height_range(heightfield.min_height, heightfield.max_height)
    return quadtree


class TerrainRenderer:
    """Compiles and caches one display list per (node, LOD tier)."""

    def __init__(self, heightfield, grid_sizes):
        self.heightfield = heightfield
        self.meshes = build_lod_meshes(grid_sizes)
        self.normal_map = heightfield.compute_normal_map()
        self.display_lists = {}

    def _compile(self, record):
        mesh = self.meshes[record.mesh_name]
        positions, normals = displace_mesh(mesh, record, self.heightfield, self.normal_map)
        colors = height_colors(positions[:, 1], self.heightfield.min_height,
                               self.heightfield.max_height)

        display_list = glGenLists(1)
        glNewList(display_list, GL_COMPILE)

        glEnableClientState(GL_VERTEX_ARRAY)
        glEnableClientState(GL_NORMAL_ARRAY)
        glEnableClientState(GL_COLOR_ARRAY)
        glVertexPointer(3, GL_FLOAT, 0, positions)
        glNormalPointer(GL_FLOAT, 0, normals)
        glColorPointer(3, GL_FLOAT, 0, colors)
        glDrawElements(GL_TRIANGLES, mesh.index_count, GL_UNSIGNED_INT, mesh.indices)
        glDisableClientState(GL_COLOR_ARRAY)
        glDisableClientState(GL_NORMAL_ARRAY)
        glDisableClientState(GL_VERTEX_ARRAY)

        glEndList()
        return display_list

    def draw(self, records, wireframe=False):
        if wireframe:
            glPolygonMode(GL_FRONT_AND_BACK, GL_LINE)

        for record in records:
            # Node centers are unique across the tree, so they key the cache
            key = (record.world[0, 3], record.world[2, 3], record.world[0, 0], record.mesh_name)
            display_list = self.display_lists.get(key)
            if display_list is None:
                display_list = self._compile(record)
                self.display_lists[key] = display_list
            glCallList(display_list)

        if wireframe:
            glPolygonMode(GL_FRONT_AND_BACK, GL_FILL)

    def cleanup(self):
        """Free OpenGL resources."""
        for display_list in self.display_lists.values():
            glDeleteLists(display_list, 1)
        self.display_lists.clear()


def current_view_proj():
    """Read the fixed-function matrices back and combine them (column-vector form)."""
    modelview = np.array(glGetDoublev(GL_MODELVIEW_MATRIX)).reshape(4, 4).T
    projection = np.array(glGetDoublev(GL_PROJECTION_MATRIX)).reshape(4, 4).T
    return projection @ modelview


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Quadtree LOD terrain viewer")
    parser.add_argument('--heightmap', help="Raw headerless heightmap file")
    parser.add_argument('--width', type=int, default=256, help="Raw heightmap width in samples")
    parser.add_argument('--height', type=int, default=256, help="Raw heightmap height in samples")
    parser.add_argument('--bits', type=int, choices=(8, 16), default=16, help="Bits per raw sample")
    parser.add_argument('--image', help="Image whose dimensions size a noise heightmap")
    parser.add_argument('--seed', type=int, default=None, help="Noise seed (default: random)")
    parser.add_argument('--terrain-size', type=float, default=DEFAULT_SETTINGS['terrain_size'])
    parser.add_argument('--max-height', type=float, default=DEFAULT_SETTINGS['max_height'])
    return parser.parse_args(argv)


def main(argv=None):
    """Main function for the terrain viewer."""
    args = parse_args(argv)

    settings = dict(DEFAULT_SETTINGS)
    settings['terrain_size'] = args.terrain_size
    settings['max_height'] = args.max_height

    print("Initializing terrain system...")
    heightfield = build_heightfield(settings, args)
    quadtree = build_quadtree(settings, heightfield)
    print(f"Heightmap: {heightfield.width}x{heightfield.height}, "
          f"quadtree nodes: {quadtree.total_node_count}")

    print("Initializing Pygame...")
    pygame.init()
    display = settings['display']
    try:
        pygame.display.set_mode(display, DOUBLEBUF | OPENGL)
        pygame.display.set_caption("Terrain Demo - LOD + Frustum Culling")
    except pygame.error as e:
        print(f"Error setting up display: {e}")
        sys.exit(1)

    # Set up the projection matrix
    glMatrixMode(GL_PROJECTION)
    glLoadIdentity()
    gluPerspective(settings['fov'], display[0] / display[1],
                   settings['near_plane'], settings['far_plane'])
    glMatrixMode(GL_MODELVIEW)
    glEnable(GL_DEPTH_TEST)
    glClearColor(0.5, 0.7, 1.0, 1.0)

    # Setup lighting
    print("Setting up lighting...")
    glEnable(GL_LIGHTING)
    glEnable(GL_LIGHT0)
    glEnable(GL_COLOR_MATERIAL)
    glEnable(GL_NORMALIZE)
    glLightfv(GL_LIGHT0, GL_AMBIENT, [0.3, 0.3, 0.35, 1.0])
    glLightfv(GL_LIGHT0, GL_DIFFUSE, [0.9, 0.85, 0.8, 1.0])

    renderer = TerrainRenderer(heightfield, settings['lod_grid_sizes'])

    start_height = heightfield.get_height(0.0, 0.0) + 80.0
    camera = FlyCamera([0.0, start_height, heightfield.terrain_size * 0.5])

    clock = pygame.time.Clock()
    running = True
    wireframe_mode = False

    print("Entering main loop...")
    while running:
        dt = clock.tick(60) / 1000.0

        for event in pygame.event.get():
            if event.type == QUIT:
                running = False
            elif event.type == KEYDOWN:
                if event.key == K_ESCAPE:
                    running = False
                elif event.key in (K_TAB, K_1):
                    wireframe_mode = not wireframe_mode
            elif event.type == MOUSEMOTION and event.buttons[0]:
                dx, dy = event.rel
                camera.rotate(math.radians(0.25 * dx), math.radians(0.25 * dy))

        keys = pygame.key.get_pressed()
        move_speed = settings['move_speed']
        if keys[K_LSHIFT] or keys[K_RSHIFT]:
            move_speed *= 3.0

        if keys[K_w]:
            camera.walk(move_speed * dt)
        if keys[K_s]:
            camera.walk(-move_speed * dt)
        if keys[K_a]:
            camera.strafe(-move_speed * dt)
        if keys[K_d]:
            camera.strafe(move_speed * dt)
        if keys[K_q]:
            camera.position[1] += move_speed * dt
        if keys[K_e]:
            camera.position[1] -= move_speed * dt

        glClear(GL_COLOR_BUFFER_BIT | GL_DEPTH_BUFFER_BIT)
        glLoadIdentity()
        camera.apply()
        glLightfv(GL_LIGHT0, GL_POSITION, [-0.57735, 0.57735, -0.57735, 0.0])

        planes = extract_frustum_planes(current_view_proj())
        quadtree.update(camera.position, planes)
        visible_nodes = quadtree.get_visible_nodes()

        records = build_draw_records(visible_nodes, heightfield.terrain_size)
        renderer.draw(records, wireframe_mode)

        pygame.display.set_caption(
            f"Terrain Demo - LOD + Frustum Culling | nodes {quadtree.visible_node_count}"
            f"/{quadtree.total_node_count}")
        pygame.display.flip()

    # Clean up resources
    renderer.cleanup()
    pygame.quit()


if __name__ == "__main__":
    main()
