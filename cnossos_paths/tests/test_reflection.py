import numpy as np
import pytest
from shapely.geometry import Polygon

from ..paths import PointRole
from ..reflection import MirrorArena, ReflectionEnumerator
from ..scene.index import SceneIndex


def _rect(x0, y0, x1, y1):
    return [(x0, y0), (x1, y0), (x1, y1), (x0, y1)]


def _canyon() -> SceneIndex:
    scene = SceneIndex()
    scene.add_building(_rect(0, 10, 40, 20), 10.0)
    scene.add_building(_rect(0, -20, 40, -10), 10.0)
    scene.finish_feeding()
    return scene


def test_first_order_reflection_point() -> None:
    scene = SceneIndex()
    scene.add_building(_rect(10, 10, 20, 20), 10.0)
    scene.finish_feeding()
    paths = ReflectionEnumerator(scene, max_order=1).enumerate((5.0, 0.0, 1.0), (25.0, 0.0, 1.0))
    assert len(paths) == 1
    refl = paths[0].points_with_role(PointRole.REFLECTION)
    assert len(refl) == 1
    assert np.allclose(refl[0].position, (15.0, 10.0, 1.0))
    assert refl[0].building_id == 1
    wall = scene.get_wall(refl[0].wall_id)
    assert wall.p0[1] == pytest.approx(10.0)
    assert wall.p1[1] == pytest.approx(10.0)
    assert paths[0].kind == "reflection"


def test_reflection_over_low_wall_is_rejected() -> None:
    scene = SceneIndex()
    scene.add_building(_rect(10, 10, 20, 20), 2.0)
    scene.finish_feeding()
    assert ReflectionEnumerator(scene).enumerate((5.0, 0.0, 4.0), (25.0, 0.0, 4.0)) == []


def test_reflection_order_zero() -> None:
    assert ReflectionEnumerator(_canyon(), max_order=0).enumerate((5, 0, 1), (35, 0, 1)) == []


def test_street_canyon_orders() -> None:
    scene = _canyon()
    src, rcv = (5.0, 0.0, 1.0), (35.0, 0.0, 1.0)
    first = ReflectionEnumerator(scene, max_order=1).enumerate(src, rcv)
    assert len(first) == 2
    second = ReflectionEnumerator(scene, max_order=2).enumerate(src, rcv)
    assert len(second) == 4
    orders = sorted(len(p.points_with_role(PointRole.REFLECTION)) for p in second)
    assert orders == [1, 1, 2, 2]
    double = [p for p in second if len(p.points) == 4]
    xs = sorted(round(p.points[1].position[0], 6) for p in double)
    assert xs == [12.5, 12.5]
    assert sorted(round(p.points[2].position[0], 6) for p in double) == [27.5, 27.5]


def test_chains_respect_order_and_never_reuse_a_wall() -> None:
    scene = _canyon()
    for order in (1, 2, 3):
        paths = ReflectionEnumerator(scene, max_order=order).enumerate((5.0, 0.0, 1.0), (35.0, 0.0, 1.0))
        for path in paths:
            walls = [p.wall_id for p in path.points_with_role(PointRole.REFLECTION)]
            assert 1 <= len(walls) <= order
            assert len(set(walls)) == len(walls)


def test_out_of_range_walls_are_ignored() -> None:
    scene = _canyon()
    paths = ReflectionEnumerator(scene, max_order=1, max_dist=5.0).enumerate((5.0, 0.0, 1.0), (8.0, 0.0, 1.0))
    assert paths == []


def test_mirror_arena_deduplicates_chains() -> None:
    scene = _canyon()
    south, north = scene.building_walls(1)[0], scene.building_walls(2)[2]
    arena = MirrorArena()
    a = arena.add((1.0, 2.0, 0.0), south)
    b = arena.add((3.0, 4.0, 0.0), north, parent=a)
    assert arena.add((1.0, 2.0, 0.0), south) == a
    assert arena.add((3.0, 4.0, 0.0), north, parent=a) == b
    assert len(arena) == 2
    assert arena[b].order == 2
    assert arena.wall_ids(b) == [south.id, north.id]
    c = arena.add((3.0, 4.0, 0.0), north)
    assert c != b
    assert arena.key(c) != arena.key(b)
    assert [n.wall_id for n in arena.chain(b)] == [south.id, north.id]


def test_building_on_a_leg_rejects_the_reflection() -> None:
    scene = SceneIndex()
    scene.add_building(_rect(10, 10, 20, 20), 10.0)
    scene.add_building(_rect(8, 4, 12, 6), 10.0)
    scene.finish_feeding()
    assert ReflectionEnumerator(scene).enumerate((5.0, 0.0, 1.0), (25.0, 0.0, 1.0)) == []


def test_free_walls_reflect_on_both_sides() -> None:
    scene = SceneIndex()
    scene.add_wall([(0, 10), (20, 10)], 5.0)
    scene.finish_feeding()
    enumerator = ReflectionEnumerator(scene)
    for y in (0.0, 20.0):
        paths = enumerator.enumerate((5.0, y, 1.0), (15.0, y, 1.0))
        assert len(paths) == 1
        refl = paths[0].points_with_role(PointRole.REFLECTION)
        assert np.allclose(refl[0].position, (10.0, 10.0, 1.0))
        assert refl[0].building_id == -1


def test_facades_reflect_on_the_outside_only() -> None:
    scene = SceneIndex()
    scene.add_building(_rect(0, 0, 20, 20), 5.0)
    scene.finish_feeding()
    enumerator = ReflectionEnumerator(scene)
    walls = scene.building_walls(1)
    outside = enumerator.mirror_receivers((10.0, -5.0, 1.0), walls)
    assert len(outside) == 1
    assert np.allclose(outside[0].position, (10.0, 5.0, 1.0))
    assert len(enumerator.mirror_receivers((10.0, 5.0, 1.0), walls)) == 0


def test_courtyard_facades_reflect() -> None:
    scene = SceneIndex()
    bid = scene.add_building(Polygon(_rect(0, 0, 40, 40), [_rect(10, 10, 30, 30)]), 10.0)
    scene.finish_feeding()
    paths = ReflectionEnumerator(scene).enumerate((15.0, 20.0, 1.0), (25.0, 20.0, 1.0))
    points = sorted(
        tuple(round(c, 6) for c in p.points_with_role(PointRole.REFLECTION)[0].position[:2])
        for p in paths
    )
    assert points == [(10.0, 20.0), (20.0, 10.0), (20.0, 30.0), (30.0, 20.0)]
    courtyard = {w.id for w in scene.building_walls(bid)[4:]}
    for path in paths:
        assert path.points_with_role(PointRole.REFLECTION)[0].wall_id in courtyard
