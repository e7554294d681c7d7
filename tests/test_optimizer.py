import pytest

from inkplot.geometry import Stroke, segment_count
from inkplot.optimizer import (
    NearestNeighborOrder,
    OptimizeOptions,
    OrderStrategy,
    PathOptimizer,
    merge_connected_paths,
    optimize,
    optimize_path_order,
    remove_duplicate_segments,
    simplify_path,
    simplify_paths,
)


def _points(strokes):
    return [s.points for s in strokes]


def test_remove_duplicates_drops_reversed_segments():
    paths = [[(0, 0), (10, 0), (10, 10)], [(10, 0), (0, 0)]]
    once = remove_duplicate_segments(paths)
    assert _points(once) == [((0.0, 0.0), (10.0, 0.0), (10.0, 10.0))]


def test_remove_duplicates_is_idempotent():
    paths = [
        [(0, 0), (5, 0), (5, 5), (0, 5)],
        [(5, 0), (5, 5), (10, 5)],
        [(0, 5), (0, 0)],
    ]
    once = remove_duplicate_segments(paths)
    assert remove_duplicate_segments(once) == once


def test_remove_duplicates_splits_stroke():
    paths = [[(0, 0), (1, 0)], [(-1, 0), (0, 0), (1, 0), (2, 0)]]
    result = remove_duplicate_segments(paths)
    assert _points(result) == [
        ((0.0, 0.0), (1.0, 0.0)),
        ((-1.0, 0.0), (0.0, 0.0)),
        ((1.0, 0.0), (2.0, 0.0)),
    ]


def test_remove_duplicates_respects_colour():
    paths = [Stroke.of([(0, 0), (1, 0)], color=1), Stroke.of([(0, 0), (1, 0)], color=2)]
    assert len(remove_duplicate_segments(paths)) == 2


def test_simplify_straight_path_keeps_endpoints():
    result = simplify_path([(0, 0), (1, 1), (2, 2), (3, 3), (4, 4)])
    assert result.points == ((0.0, 0.0), (4.0, 4.0))


def test_simplify_keeps_corners():
    corner = [(0, 0), (5, 0), (5, 5)]
    assert simplify_path(corner).points == tuple((float(x), float(y)) for x, y in corner)


def test_simplify_paths_methods():
    line = [(0, 0), (1, 0), (2, 0)]
    assert _points(simplify_paths([line], method="rdp")) == [((0.0, 0.0), (2.0, 0.0))]
    with pytest.raises(ValueError):
        simplify_paths([line], method="bogus")


def test_merge_connected_paths_joins_end_to_start():
    a = [(0, 0), (1, 0), (2, 0)]
    b = [(2, 0), (2, 1), (2, 2)]
    merged = merge_connected_paths([a, b])
    assert len(merged) == 1
    assert len(merged[0].points) == len(a) + len(b) - 1


def test_merge_connected_paths_reverses_candidate():
    merged = merge_connected_paths([[(0, 0), (2, 0)], [(2, 2), (2, 0)]])
    assert merged[0].points == ((0.0, 0.0), (2.0, 0.0), (2.0, 2.0))


def test_merge_keeps_colours_apart():
    a = Stroke.of([(0, 0), (2, 0)], color=1)
    b = Stroke.of([(2, 0), (4, 0)], color=2)
    assert len(merge_connected_paths([a, b])) == 2


def test_order_picks_nearest_endpoint_and_reverses():
    ordered = optimize_path_order([[(10, 0), (11, 0)], [(5, 0), (1, 0)]], (0, 0))
    assert _points(ordered) == [
        ((1.0, 0.0), (5.0, 0.0)),
        ((10.0, 0.0), (11.0, 0.0)),
    ]


def test_order_never_changes_the_set_of_paths():
    paths = [[(i * 3.0, (i * 7) % 5), (i * 3.0 + 1, 2.0)] for i in range(12)]
    ordered = optimize_path_order(paths, (0, 0))
    assert len(ordered) == len(paths)

    def norm(pts):
        return sorted((float(x), float(y)) for x, y in pts)

    assert sorted(norm(p) for p in _points(ordered)) == sorted(norm(p) for p in paths)


def test_order_tie_prefers_start():
    ordered = optimize_path_order([[(1, 0), (-1, 0)], [(5, 5), (6, 6)]], (0, 0))
    assert ordered[0].points[0] == (1.0, 0.0)


def test_optimize_reports_stats():
    paths = [
        [(0, 0), (10, 0)],
        [(10, 0), (0, 0)],
        [(50, 0), (60, 0)],
        [(10, 0), (10, 10)],
    ]
    result, stats = optimize(paths)
    assert stats.original_paths == 4
    assert stats.duplicates_removed == 1
    assert stats.paths_merged == 1
    assert stats.optimized_paths == len(result) == 2
    assert stats.optimized_segments == segment_count(result)
    assert stats.drawing_distance == pytest.approx(30.0)
    assert stats.travel_distance <= stats.original_travel_distance
    assert "duplicates removed 1" in stats.summary()


def test_optimize_groups_colours():
    strokes = [
        Stroke.of([(100, 0), (101, 0)], color=1),
        Stroke.of([(1, 0), (2, 0)], color=2),
        Stroke.of([(3, 0), (4, 0)], color=1),
    ]
    options = OptimizeOptions(merge_paths=False)
    grouped, _ = optimize(strokes, options)
    assert [s.start for s in grouped] == [(3.0, 0.0), (100.0, 0.0), (1.0, 0.0)]

    options.group_by_color = False
    mixed, _ = optimize(strokes, options)
    assert [s.start for s in mixed] == [(1.0, 0.0), (3.0, 0.0), (100.0, 0.0)]


def test_custom_order_strategy_is_used():
    class KeepOrder(OrderStrategy):
        def __init__(self):
            self.calls = 0

        def order(self, strokes, start_point):
            self.calls += 1
            return list(strokes)

    strategy = KeepOrder()
    paths = [[(50, 0), (60, 0)], [(0, 0), (1, 0)]]
    result, _ = PathOptimizer(order_strategy=strategy).optimize(paths)
    assert strategy.calls == 1
    assert result[0].start == (50.0, 0.0)
    assert isinstance(PathOptimizer().order_strategy, NearestNeighborOrder)


def test_options_from_dict():
    opts = OptimizeOptions.from_dict({"simplify": False, "start_point": [5, 6]})
    assert opts.simplify is False
    assert opts.start_point == (5.0, 6.0)
    assert OptimizeOptions.from_dict(opts.to_dict()) == opts
    with pytest.raises(ValueError):
        OptimizeOptions.from_dict({"nope": 1})


def test_options_from_dict_coerces_strings():
    opts = OptimizeOptions.from_dict({"simplify": "false", "group_by_color": "yes", "simplify_tolerance": "0.5"})
    assert opts.simplify is False
    assert opts.group_by_color is True
    assert opts.simplify_tolerance == 0.5
