import math

import numpy as np
import pytest
from shapely.geometry import LineString, Polygon

from ..errors import SceneFrozenError, SceneNotReadyError
from ..geometry import cross2d
from ..scene.api import Wall
from ..scene.index import WIDE_ANGLE_EPSILON, WIDE_ANGLE_TRANSLATION_EPSILON, SceneIndex


def _rect(x0, y0, x1, y1):
    return [(x0, y0), (x1, y0), (x1, y1), (x0, y1)]


def test_mutation_after_freeze_fails() -> None:
    scene = SceneIndex()
    scene.add_building(_rect(0, 0, 10, 10), 5.0)
    scene.finish_feeding()
    with pytest.raises(SceneFrozenError):
        scene.add_building(_rect(20, 0, 30, 10), 5.0)
    with pytest.raises(SceneFrozenError):
        scene.add_wall([(0, 20), (10, 20)], 2.0)
    with pytest.raises(SceneFrozenError):
        scene.add_topographic_point((0.0, 0.0, 1.0))
    with pytest.raises(SceneFrozenError):
        scene.add_topographic_line([(0.0, 0.0, 1.0), (10.0, 0.0, 2.0)])
    with pytest.raises(SceneFrozenError):
        scene.add_ground_effect(_rect(0, 0, 5, 5), 0.5)
    with pytest.raises(SceneFrozenError):
        scene.finish_feeding()


def test_implicit_building_ids_skip_explicit_ones() -> None:
    scene = SceneIndex()
    assert scene.add_building(_rect(0, 0, 10, 10), 5.0, id=2) == 2
    assert scene.add_building(_rect(20, 0, 30, 10), 5.0) == 3
    assert scene.add_building(_rect(40, 0, 50, 10), 5.0, id=1) == 1
    assert scene.add_building(_rect(60, 0, 70, 10), 5.0) == 4
    assert scene.add_building(_rect(80, 0, 90, 10), 5.0, id=3) is None
    assert scene.warnings == ["building 3 skipped: duplicate id"]
    scene.finish_feeding()
    assert sorted(b.id for b in scene.buildings) == [1, 2, 3, 4]
    assert scene.get_building(3).polygon.bounds == (20.0, 0.0, 30.0, 10.0)


def test_query_before_freeze_fails() -> None:
    scene = SceneIndex()
    scene.add_building(_rect(0, 0, 10, 10), 5.0)
    with pytest.raises(SceneNotReadyError):
        scene.get_profile((0, 0, 1), (10, 10, 1))
    with pytest.raises(SceneNotReadyError):
        scene.query((0, 0, 1, 1))


def test_malformed_geometry_is_skipped_with_warning() -> None:
    scene = SceneIndex()
    assert not scene.add_wall(Polygon(_rect(0, 0, 1, 1)), 2.0, id=7)
    assert not scene.add_topographic_line(Polygon(_rect(0, 0, 1, 1)))
    assert scene.add_building([(0, 0), (1, 1), (0, 1), (1, 0)], 3.0) is None
    assert not scene.add_ground_effect(_rect(0, 0, 5, 5), 1.5)
    assert scene.add_building(_rect(0, 0, 10, 10), 5.0) == 1
    assert len(scene.warnings) == 4
    scene.finish_feeding()
    assert len(scene.buildings) == 1


def test_building_walls_face_outwards() -> None:
    scene = SceneIndex()
    # clockwise input ring
    bid = scene.add_building(list(reversed(_rect(0, 0, 10, 6))), 8.0)
    scene.finish_feeding()
    walls = scene.building_walls(bid)
    assert len(walls) == 4
    centre = (5.0, 3.0)
    for wall in walls:
        assert wall.building_id == bid
        assert cross2d(wall.p0, wall.p1, centre) > 0
        assert wall.p0[2] == pytest.approx(8.0)


def test_courtyard_walls_face_the_courtyard() -> None:
    scene = SceneIndex()
    bid = scene.add_building(Polygon(_rect(0, 0, 40, 40), [_rect(10, 10, 30, 30)]), 10.0)
    scene.finish_feeding()
    walls = scene.building_walls(bid)
    assert len(walls) == 8
    centre = (20.0, 20.0)
    for wall in walls[:4]:
        assert cross2d(wall.p0, wall.p1, centre) > 0
    for wall in walls[4:]:
        assert wall.building_id == bid
        assert cross2d(wall.p0, wall.p1, centre) < 0
        assert wall.p0[2] == pytest.approx(10.0)


def test_free_wall_segments() -> None:
    scene = SceneIndex()
    assert scene.add_wall(LineString([(0, 0), (10, 0), (10, 10)]), 3.0, id=42)
    scene.finish_feeding()
    assert len(scene.walls) == 2
    for wall in scene.walls:
        assert wall.building_id == -1
        assert wall.origin_id == 42
        assert wall.top_z(0.5) == pytest.approx(3.0)
    first = scene.walls[0]
    assert Wall(99, first.p1, first.p0).key == first.key
    hits = scene.walls_on_path((5, -5), (5, 5))
    assert [w.id for w in hits] == [0]


def test_roof_elevation_follows_topography() -> None:
    scene = SceneIndex()
    for x, y in _rect(-100, -100, 100, 100):
        scene.add_topographic_point((x, y, 5.0))
    bid = scene.add_building(_rect(0, 0, 10, 10), 7.0)
    scene.finish_feeding()
    assert scene.get_building(bid).roof_z == pytest.approx(12.0)
    assert scene.ground_z(50.0, -20.0) == pytest.approx(5.0)


def test_range_and_nearest_queries() -> None:
    scene = SceneIndex()
    a = scene.add_building(_rect(0, 0, 10, 10), 5.0)
    b = scene.add_building(_rect(50, 50, 60, 60), 5.0)
    scene.add_ground_effect(_rect(-5, -5, 20, 20), "G")
    scene.finish_feeding()
    found = scene.query((40, 40, 55, 55))
    assert [x.id for x in found.buildings] == [b]
    assert found.ground_effects == []
    found = scene.query((-1, -1, 1, 1))
    assert [x.id for x in found.buildings] == [a]
    assert found.ground_effects[0].g == 0.0
    assert scene.nearest_building((70, 70)).id == b
    assert scene.nearest_building((-3, 2)).id == a
    assert scene.envelope == (-5.0, -5.0, 60.0, 60.0)


def test_wide_angle_points() -> None:
    scene = SceneIndex()
    scene.add_building([(5, 5), (7, 5), (7, 6), (8, 6), (8, 8), (5, 8), (5, 5)], 4.3)
    scene.finish_feeding()
    points = scene.get_wide_angle_points(
        1, math.pi * (1 + 1 / 16.0), math.pi * (2 - 1 / 16.0)
    )
    expected = [(5, 5), (7, 5), (8, 6), (8, 8), (5, 8), (5, 5)]
    assert len(points) == len(expected)
    for p, e in zip(points, expected):
        assert math.hypot(p[0] - e[0], p[1] - e[1]) == pytest.approx(
            WIDE_ANGLE_TRANSLATION_EPSILON, abs=1e-9
        )
        assert p[2] == pytest.approx(4.3)
    assert WIDE_ANGLE_EPSILON == pytest.approx(math.pi / 16)


def test_wide_angle_skips_collinear_vertices() -> None:
    scene = SceneIndex()
    scene.add_building([(0, 0), (5, 0), (10, 0), (10, 10), (0, 10)], 4.0)
    scene.finish_feeding()
    points = scene.get_wide_angle_points(1)
    assert len(points) == 5
    assert not any(np.allclose(p[:2], (5, 0), atol=0.05) for p in points)
