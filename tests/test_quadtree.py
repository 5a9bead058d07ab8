"""Tests for the quadtree build, per-frame update and visible node collection."""

import numpy as np
import pytest

from quadtree import BOUNDS_MARGIN, QuadTree
from tests.helpers import box_planes


def build(terrain_size=512.0, min_node_size=64.0, max_lod_levels=5, distances=None):
    tree = QuadTree()
    if distances is not None:
        tree.set_lod_distances(distances)
    tree.initialize(terrain_size, min_node_size, max_lod_levels)
    return tree


class TestBuild:
    def test_reference_scenario_node_count(self):
        tree = build(512.0, 64.0, 5)

        assert tree.total_node_count == 85
        leaves = list(tree.iter_leaves())
        assert len(leaves) == 64
        assert all(leaf.depth == 3 and leaf.size == 64.0 for leaf in leaves)

    def test_nodes_carry_no_lod_cap(self):
        tree = build(512.0, 64.0, 5)
        assert not any(hasattr(node, "max_lod") for node in tree.iter_nodes())

    def test_iter_nodes_visits_every_node_once(self):
        tree = build(512.0, 64.0, 5)
        nodes = list(tree.iter_nodes())
        assert len(nodes) == tree.total_node_count
        assert len({id(n) for n in nodes}) == len(nodes)

    def test_depth_limit_stops_before_size_floor(self):
        tree = build(1024.0, 1.0, 3)
        assert tree.total_node_count == 1 + 4 + 16
        assert {leaf.size for leaf in tree.iter_leaves()} == {256.0}

    @pytest.mark.parametrize("terrain_size,min_node_size,max_lod_levels", [
        (512.0, 64.0, 5),
        (1000.0, 30.0, 4),
        (300.0, 100.0, 6),
        (64.0, 64.0, 5),
    ])
    def test_depth_bound(self, terrain_size, min_node_size, max_lod_levels):
        tree = build(terrain_size, min_node_size, max_lod_levels)

        for node in tree.iter_nodes():
            assert node.depth < max_lod_levels
        for leaf in tree.iter_leaves():
            assert leaf.size <= min_node_size or leaf.depth == max_lod_levels - 1

    def test_single_node_when_root_is_small_enough(self):
        tree = build(64.0, 64.0, 5)
        assert tree.total_node_count == 1
        assert tree.root.is_leaf

    @pytest.mark.parametrize("terrain_size,min_node_size,max_lod_levels", [
        (512.0, 64.0, 5),
        (1000.0, 30.0, 4),
    ])
    def test_children_tile_parent(self, terrain_size, min_node_size, max_lod_levels):
        tree = build(terrain_size, min_node_size, max_lod_levels)

        for node in tree.iter_nodes():
            if node.is_leaf:
                assert node.children == []
                continue

            assert len(node.children) == 4
            assert sum(child.area for child in node.children) == pytest.approx(node.area)

            quarter = node.size / 4.0
            offsets = [(c.x - node.x, c.z - node.z) for c in node.children]
            assert offsets == [(-quarter, quarter), (quarter, quarter),
                               (-quarter, -quarter), (quarter, -quarter)]
            assert all(c.size == node.size / 2.0 for c in node.children)

    def test_leaves_cover_root_footprint(self):
        tree = build(512.0, 64.0, 5)

        cells = set()
        for leaf in tree.iter_leaves():
            ix = int((leaf.x - leaf.size / 2.0 + 256.0) // 64.0)
            iz = int((leaf.z - leaf.size / 2.0 + 256.0) // 64.0)
            cells.add((ix, iz))

        assert cells == {(i, j) for i in range(8) for j in range(8)}
        assert sum(leaf.area for leaf in tree.iter_leaves()) == pytest.approx(tree.root.area)

    def test_build_time_bounds(self):
        tree = build(512.0, 64.0, 5)

        for node in tree.iter_nodes():
            assert node.min_y == 0.0 and node.max_y == 100.0
            assert node.bounds.center.tolist() == [node.x, 50.0, node.z]
            assert node.bounds.extents.tolist() == [node.size / 2.0, 50.0 + BOUNDS_MARGIN, node.size / 2.0]

    def test_lod_level_starts_at_depth(self):
        tree = build(512.0, 64.0, 5)
        assert all(node.lod_level == node.depth for node in tree.iter_nodes())

    def test_reinitialize_rebuilds(self):
        tree = build(512.0, 64.0, 5)
        tree.initialize(512.0, 128.0, 5)
        assert tree.total_node_count == 21


class TestLodDistances:
    def test_default_bands(self):
        tree = build(512.0, 64.0, 5)
        assert tree.lod_distances == [2048.0, 1024.0, 512.0, 256.0, 128.0]

    def test_supplied_bands_used_verbatim(self):
        bands = [100.0, 200.0, 400.0, 600.0, 1000.0]
        tree = build(512.0, 64.0, 5, distances=bands)
        assert tree.lod_distances == bands

    def test_set_after_initialize_waits_for_rebuild(self):
        tree = build(512.0, 64.0, 5)
        tree.set_lod_distances([1.0, 2.0, 3.0, 4.0, 5.0])
        tree.initialize(512.0, 64.0, 5)
        assert tree.lod_distances == [1.0, 2.0, 3.0, 4.0, 5.0]


class TestCalculateLod:
    def test_first_matching_band(self):
        tree = build(distances=[100.0, 200.0, 400.0, 600.0, 1000.0])
        root = tree.root

        assert tree.calculate_lod(root, (0.0, 50.0, 0.0)) == 0
        assert tree.calculate_lod(root, (150.0, 50.0, 0.0)) == 1
        assert tree.calculate_lod(root, (0.0, 50.0, 500.0)) == 3
        assert tree.calculate_lod(root, (0.0, 50.0, 5000.0)) == 4

    def test_uses_vertical_midpoint(self):
        tree = build(distances=[100.0, 200.0, 400.0, 600.0, 1000.0])
        # 50 units above the midpoint of [0, 100] -> distance 50
        assert tree.calculate_lod(tree.root, (0.0, 100.0, 0.0)) == 0
        # 150 units above -> distance 150
        assert tree.calculate_lod(tree.root, (0.0, 200.0, 0.0)) == 1

    def test_monotonic_in_distance(self):
        tree = build(distances=[100.0, 200.0, 400.0, 600.0, 1000.0])
        node = tree.root.children[1]

        lods = [tree.calculate_lod(node, (node.x + d, 50.0, node.z)) for d in np.linspace(0.0, 3000.0, 301)]
        assert lods == sorted(lods)
        assert lods[0] == 0 and lods[-1] == 4

    def test_no_match_returns_coarsest(self):
        tree = build(distances=[1.0, 2.0])
        assert tree.calculate_lod(tree.root, (1000.0, 0.0, 0.0)) == 4


class TestUpdate:
    def test_far_camera_draws_root_only(self, everything_planes):
        tree = build()
        tree.update((10000.0, 50.0, 10000.0), everything_planes)

        nodes = tree.get_visible_nodes()
        assert nodes == [tree.root]
        assert tree.visible_node_count == 1
        assert tree.root.draw_index == 0

    def test_children_drawn_in_nw_ne_sw_se_order(self, everything_planes):
        tree = build()
        # Close enough to split the root (< 768) but not its children (>= 384)
        tree.update((700.0, 50.0, 0.0), everything_planes)

        nodes = tree.get_visible_nodes()
        assert [(n.x, n.z) for n in nodes] == [(-128.0, 128.0), (128.0, 128.0),
                                              (-128.0, -128.0), (128.0, -128.0)]
        assert [n.draw_index for n in nodes] == [0, 1, 2, 3]
        assert not tree.root.is_visible

    def test_draw_slot_bijection(self, everything_planes):
        tree = build()
        tree.update((10.0, 50.0, -20.0), everything_planes)

        nodes = tree.get_visible_nodes()
        assert len(nodes) == tree.visible_node_count
        assert [n.draw_index for n in nodes] == list(range(len(nodes)))
        assert all(n.is_visible for n in nodes)

    def test_unculled_selection_covers_terrain(self, everything_planes):
        tree = build()
        tree.update((10.0, 50.0, -20.0), everything_planes)

        nodes = tree.get_visible_nodes()
        assert sum(n.area for n in nodes) == pytest.approx(tree.root.area)
        # Nodes near the camera are refined to the leaf level
        assert any(n.is_leaf for n in nodes)
        assert any(not n.is_leaf for n in nodes)

    def test_selected_nodes_obey_subdivision_rule(self, everything_planes):
        tree = build()
        camera = (-90.0, 30.0, 150.0)
        tree.update(camera, everything_planes)

        for node in tree.get_visible_nodes():
            assert node.is_leaf or not tree.should_subdivide(node, camera)

    def test_half_space_culls_west_half(self):
        tree = build()
        planes = box_planes(1.0e6)
        planes[0] = [1.0, 0.0, 0.0, -10.0]  # x >= 10

        tree.update((0.0, 50.0, 0.0), planes)
        nodes = tree.get_visible_nodes()

        assert nodes
        assert len(nodes) == tree.visible_node_count
        assert all(n.x + n.size / 2.0 >= 10.0 for n in nodes)
        assert all(n.x > 0.0 for n in nodes)

    def test_everything_culled(self):
        tree = build()
        planes = box_planes(1.0e6)
        planes[0] = [1.0, 0.0, 0.0, -1.0e5]

        tree.update((0.0, 50.0, 0.0), planes)

        assert tree.visible_node_count == 0
        assert tree.get_visible_nodes() == []
        assert not tree.root.is_visible

    def test_stale_flags_from_previous_frame_are_ignored(self, everything_planes):
        tree = build()
        tree.update((0.0, 50.0, 0.0), everything_planes)
        assert tree.visible_node_count > 1

        planes = box_planes(1.0e6)
        planes[0] = [1.0, 0.0, 0.0, -1.0e5]
        tree.update((0.0, 50.0, 0.0), planes)

        assert tree.get_visible_nodes() == []
        assert tree.visible_node_count == 0

    def test_counters_reset_each_frame(self, everything_planes):
        tree = build()
        tree.update((0.0, 50.0, 0.0), everything_planes)
        first = tree.visible_node_count
        tree.update((0.0, 50.0, 0.0), everything_planes)

        assert tree.visible_node_count == first
        assert [n.draw_index for n in tree.get_visible_nodes()] == list(range(first))

    def test_visible_nodes_before_any_update(self):
        tree = build()
        assert tree.get_visible_nodes() == []

    def test_requires_initialize(self, everything_planes):
        tree = QuadTree()
        with pytest.raises(RuntimeError):
            tree.update((0.0, 0.0, 0.0), everything_planes)
        with pytest.raises(RuntimeError):
            tree.get_visible_nodes()


class TestSetHeightRange:
    def test_only_root_is_updated(self):
        tree = build()
        tree.set_height_range(-20.0, 180.0)

        root = tree.root
        assert (root.min_y, root.max_y) == (-20.0, 180.0)
        assert root.bounds.center[1] == 80.0
        assert root.bounds.extents[1] == 100.0 + BOUNDS_MARGIN
        assert root.bounds.extents[0] == 256.0

        for node in tree.iter_nodes():
            if node is root:
                continue
            assert (node.min_y, node.max_y) == (0.0, 100.0)
            assert node.bounds.center[1] == 50.0

    def test_takes_only_the_vertical_range(self):
        tree = build()
        with pytest.raises(TypeError):
            tree.set_height_range(0.0, 10.0, x=0.0, z=0.0, size=512.0)

    def test_ignored_before_initialize(self):
        tree = QuadTree()
        tree.set_height_range(0.0, 10.0)
        assert tree.root is None

    def test_root_culling_uses_real_range(self):
        tree = build()
        tree.set_height_range(500.0, 600.0)

        planes = box_planes(1.0e6)
        planes[2] = [0.0, 1.0, 0.0, -300.0]  # y >= 300

        tree.update((10000.0, 550.0, 10000.0), planes)
        assert tree.get_visible_nodes() == [tree.root]
