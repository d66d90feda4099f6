"""Compute propagation paths for a small street scene and print them."""

import logging

from cnossos_paths import (
    PathFinder,
    PathFinderConfig,
    QueuePathSink,
    Receiver,
    SceneIndex,
    Source,
)


def build_scene() -> SceneIndex:
    scene = SceneIndex()
    scene.add_building([(10, 10), (40, 10), (40, 20), (10, 20)], height=12.0)
    scene.add_building([(10, -20), (40, -20), (40, -10), (10, -10)], height=9.0)
    scene.add_building([(20, -5), (26, -5), (26, 5), (20, 5)], height=6.0)
    scene.add_wall([(50, -15), (50, 15)], height=3.0, id=1)
    for x, y, z in [(-50, -50, 0.0), (120, -50, 2.0), (120, 50, 2.0), (-50, 50, 0.0)]:
        scene.add_topographic_point((x, y, z))
    scene.add_ground_effect([(-50, -50), (120, -50), (120, 50), (-50, 50)], "D")
    scene.add_ground_effect([(0, -8), (60, -8), (60, 8), (0, 8)], "G")
    scene.finish_feeding()
    return scene


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    scene = build_scene()

    # Example 1: point source behind a low building
    # Example 2: road segment as a line source
    sources = [
        Source(1, (0.0, 0.0, 0.05)),
        Source(2, [(0.0, 5.0, 0.05), (60.0, 5.0, 0.05)], emission={"lw_dba": 95.0}),
    ]
    receivers = [Receiver(1, (45.0, 0.0, 4.0)), Receiver(2, (70.0, 2.0, 1.5))]
    config = PathFinderConfig(reflection_order=2, max_src_dist=500.0, gs=0.5, thread_count=2)

    sink = QueuePathSink()
    report = PathFinder(scene, sources, receivers, config).run(sink)
    print(report)
    for path in sink.drain():
        roles = " -> ".join(p.role.value for p in path.points)
        print(
            f"rcv={path.receiver_id} src={path.source_id} {path.kind:16s} "
            f"len={path.length:7.2f} G={path.g_path:.2f} {roles}"
        )


if __name__ == "__main__":
    main()
