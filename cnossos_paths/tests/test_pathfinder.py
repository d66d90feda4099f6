import pytest

from ..errors import SceneNotReadyError
from ..pathfinder import PathFinder, PathFinderConfig, Receiver, Source
from ..paths import PointRole, ProgressToken, QueuePathSink
from ..scene.index import SceneIndex


def _rect(x0, y0, x1, y1):
    return [(x0, y0), (x1, y0), (x1, y1), (x0, y1)]


def _scene() -> SceneIndex:
    scene = SceneIndex()
    scene.add_building(_rect(10, -5, 20, 5), 10.0)
    scene.add_ground_effect(_rect(-50, -50, 100, 100), 1.0)
    scene.finish_feeding()
    return scene


def test_direct_path_in_free_field() -> None:
    scene = _scene()
    finder = PathFinder(scene, [], [], PathFinderConfig(reflection_order=0))
    paths = finder.compute_pair((0.0, 20.0, 1.0), (30.0, 20.0, 4.0))
    assert len(paths) == 1
    path = paths[0]
    assert path.kind == "direct"
    assert [p.role for p in path.points] == [PointRole.SOURCE, PointRole.RECEIVER]
    assert path.mean_plane is not None
    assert path.mean_plane.slope == pytest.approx(0.0)
    assert path.g_path == pytest.approx(1.0)


def test_blocked_pair_gets_diffraction_paths() -> None:
    scene = _scene()
    finder = PathFinder(scene, [], [], PathFinderConfig(reflection_order=0))
    paths = finder.compute_pair((0.0, 0.0, 1.0), (30.0, 0.0, 1.0))
    kinds = [p.kind for p in paths]
    assert kinds == ["horizontal_edge", "vertical_edge", "vertical_edge"]

    finder = PathFinder(
        scene,
        [],
        [],
        PathFinderConfig(reflection_order=0, compute_vertical_diffraction=False),
    )
    assert [p.kind for p in finder.compute_pair((0.0, 0.0, 1.0), (30.0, 0.0, 1.0))] == ["horizontal_edge"]

    finder = PathFinder(
        scene,
        [],
        [],
        PathFinderConfig(reflection_order=0, compute_horizontal_diffraction=False, compute_vertical_diffraction=False),
    )
    assert finder.compute_pair((0.0, 0.0, 1.0), (30.0, 0.0, 1.0)) == []


def test_missing_z_is_placed_on_the_ground() -> None:
    scene = SceneIndex()
    for x, y in _rect(-100, -100, 100, 100):
        scene.add_topographic_point((x, y, 3.0))
    scene.finish_feeding()
    finder = PathFinder(scene, [], [], PathFinderConfig(reflection_order=0))
    path = finder.compute_pair((0.0, 0.0), (10.0, 0.0, 5.0))[0]
    assert path.points[0].position[2] == pytest.approx(3.0)
    assert path.mean_plane.intercept == pytest.approx(3.0)


def test_run_collects_every_pair() -> None:
    scene = _scene()
    sources = [Source(1, (0.0, 0.0, 1.0)), Source(2, (0.0, 30.0, 1.0))]
    receivers = [Receiver(10, (30.0, 0.0, 4.0)), Receiver(11, (30.0, 30.0, 4.0))]
    finder = PathFinder(scene, sources, receivers, PathFinderConfig(reflection_order=1))
    sink = QueuePathSink()
    report = finder.run(sink)
    assert report.receivers == 2
    assert report.pairs == 4
    assert report.failed_pairs == 0
    assert not report.cancelled
    paths = sink.drain()
    assert {(p.receiver_id, p.source_id) for p in paths} == {(10, 1), (10, 2), (11, 1), (11, 2)}
    assert sink.drain() == []


def test_results_do_not_depend_on_thread_count() -> None:
    scene = _scene()
    sources = [Source(i, (float(i), -10.0 + i, 1.0)) for i in range(6)]
    receivers = [Receiver(j, (35.0, -12.0 + 4 * j, 2.0)) for j in range(6)]

    def collect(threads):
        sink = QueuePathSink()
        PathFinder(scene, sources, receivers, PathFinderConfig(thread_count=threads)).run(sink)
        out = {}
        for p in sink.drain():
            key = (p.receiver_id, p.source_id)
            out.setdefault(key, []).append([pt.position for pt in p.points])
        return out

    single = collect(1)
    multi = collect(4)
    assert single.keys() == multi.keys()
    for key in single:
        assert sorted(single[key]) == sorted(multi[key])


class _FailingFinder(PathFinder):
    def compute_source(self, source, receiver):
        if source.id == 2:
            raise RuntimeError("boom")
        return super().compute_source(source, receiver)


def test_pair_failure_is_isolated() -> None:
    scene = _scene()
    sources = [Source(1, (0.0, 0.0, 1.0)), Source(2, (0.0, 30.0, 1.0))]
    receivers = [Receiver(10, (30.0, 0.0, 4.0)), Receiver(11, (30.0, 30.0, 4.0))]
    sink = QueuePathSink()
    report = _FailingFinder(scene, sources, receivers, PathFinderConfig(thread_count=2)).run(sink)
    assert report.pairs == 4
    assert report.failed_pairs == 2
    failures = sink.failures()
    assert sorted((f.receiver_id, f.source_id) for f in failures) == [(10, 2), (11, 2)]
    assert all("boom" in f.error for f in failures)
    assert {p.source_id for p in sink.drain()} == {1}


def test_cancelled_run_stops_before_next_receiver() -> None:
    scene = _scene()
    finder = PathFinder(scene, [Source(1, (0.0, 0.0, 1.0))], [Receiver(1, (30.0, 0.0, 4.0))])
    token = ProgressToken()
    token.cancel()
    sink = QueuePathSink()
    report = finder.run(sink, token)
    assert report.cancelled
    assert report.receivers == 0
    assert sink.drain() == []


def test_progress_reaches_one() -> None:
    scene = _scene()
    receivers = [Receiver(j, (30.0, float(j), 4.0)) for j in range(3)]
    token = ProgressToken()
    PathFinder(scene, [Source(1, (0.0, 40.0, 1.0))], receivers).run(QueuePathSink(), token)
    assert token.done == 3
    assert token.progress == pytest.approx(1.0)


def test_far_sources_are_skipped() -> None:
    scene = _scene()
    finder = PathFinder(
        scene,
        [Source(1, (0.0, 0.0, 1.0)), Source(2, (900.0, 0.0, 1.0))],
        [Receiver(1, (30.0, 0.0, 4.0))],
        PathFinderConfig(max_src_dist=100.0),
    )
    assert [s.id for s in finder.sources_in_range((30.0, 0.0, 4.0))] == [1]


def test_line_source_weights() -> None:
    scene = SceneIndex()
    scene.finish_feeding()
    source = Source(5, [(0.0, 10.0, 1.0), (10.0, 10.0, 1.0)], emission={"lw": 90.0})
    finder = PathFinder(scene, [source], [Receiver(1, (5.0, 0.0, 1.0))], PathFinderConfig(reflection_order=0))
    paths = finder.compute_source(source, Receiver(1, (5.0, 0.0, 1.0)))
    # 10 m source seen from 10 m: pieces of at most 5 m
    assert len(paths) == 2
    assert all(p.source_weight == pytest.approx(5.0) for p in paths)
    assert sorted(p.points[0].position[0] for p in paths) == [pytest.approx(2.5), pytest.approx(7.5)]
    assert source.emission == {"lw": 90.0}


def test_config_validation() -> None:
    with pytest.raises(ValueError):
        PathFinderConfig(reflection_order=-1)
    with pytest.raises(ValueError):
        PathFinderConfig(gs=1.5)
    with pytest.raises(ValueError):
        PathFinderConfig(thread_count=0)
    assert PathFinderConfig(max_src_dist=200.0).max_ref_dist == 200.0


def test_unfrozen_scene_is_rejected() -> None:
    with pytest.raises(SceneNotReadyError):
        PathFinder(SceneIndex(), [], [])
