import math
import pytest

from sntracker.config.schemas import PreClusteringCfg
from sntracker.errors import InputError, SetupError
from sntracker.physics.hits import GeomId, TrackerHit
from sntracker.reco.pre_clusterizer import PreClusterizer, check_input


def _hit(hit_id, side=0, layer=1, row=10, delayed_time_ns=None, **kw):
    return TrackerHit(
        hit_id=hit_id,
        geom_id=GeomId(type=1204, module=0, side=side, layer=layer, row=row),
        x_mm=(-1.0 if side == 0 else 1.0) * (52.0 + 44.0 * layer),
        y_mm=44.0 * (row - 56),
        delayed=delayed_time_ns is not None,
        delayed_time_ns=delayed_time_ns,
        **kw,
    )


def _setup(**kw):
    return PreClusteringCfg(cell_size_mm=44.0, **kw)


def _assert_partition(hits, out):
    # every input hit appears exactly once across ignored + clusters
    ids = [id(h) for h in out.all_hits()]
    assert len(ids) == len(set(ids))
    assert set(ids) == {id(h) for h in hits}


def test_setup_undefined_cell_size():
    with pytest.raises(SetupError, match="Undefined cell size"):
        PreClusterizer(PreClusteringCfg())
    with pytest.raises(SetupError, match="Undefined cell size"):
        PreClusterizer(PreClusteringCfg(cell_size_mm=math.nan))


def test_setup_negative_cell_size():
    with pytest.raises(SetupError, match="Negative cell size"):
        PreClusterizer(PreClusteringCfg(cell_size_mm=-44.0))
    with pytest.raises(SetupError):
        PreClusterizer(PreClusteringCfg(cell_size_mm=0.0))


def test_input_contract_violations():
    good = _hit(0)
    with pytest.raises(InputError, match="Null hit"):
        check_input([good, None])
    with pytest.raises(InputError, match="Double referenced"):
        check_input([good, good])
    with pytest.raises(InputError, match="Missing GID"):
        check_input([TrackerHit(hit_id=1, x_mm=0.0, y_mm=0.0)])
    with pytest.raises(InputError, match="Missing XY"):
        check_input([TrackerHit(hit_id=2, geom_id=GeomId(type=1204, module=0, side=0))])
    with pytest.raises(InputError, match="Missing delayed time"):
        check_input([TrackerHit(
            hit_id=3, geom_id=GeomId(type=1204, module=0, side=0),
            x_mm=0.0, y_mm=0.0, delayed=True,
        )])


def test_input_error_rejects_whole_batch():
    pc = PreClusterizer(_setup())
    with pytest.raises(InputError):
        pc.process([_hit(0), _hit(1), TrackerHit(hit_id=2, x_mm=1.0, y_mm=1.0)])


def test_prompt_cluster_split_chamber():
    # 3 prompt hits on side 0, split enabled
    hits = [_hit(i, side=0, layer=i) for i in range(3)]
    out = PreClusterizer(_setup(split_chamber=True)).process(hits)
    assert len(out.prompt_clusters) == 1
    assert len(out.prompt_clusters[0]) == 3
    assert out.ignored_hits == []
    assert out.delayed_clusters == []
    _assert_partition(hits, out)


def test_prompt_singleton_is_ignored():
    hits = [_hit(0, side=0), _hit(1, side=1), _hit(2, side=1, layer=2)]
    out = PreClusterizer(_setup(split_chamber=True)).process(hits)
    assert len(out.prompt_clusters) == 1
    assert [h.hit_id for h in out.prompt_clusters[0]] == [1, 2]
    assert [h.hit_id for h in out.ignored_hits] == [0]

    # unsplit chamber merges both sides into a single cluster
    out = PreClusterizer(_setup(split_chamber=False)).process(hits)
    assert len(out.prompt_clusters) == 1
    assert len(out.prompt_clusters[0]) == 3
    assert out.ignored_hits == []


def test_sterile_noisy_and_bad_side_are_ignored():
    hits = [
        _hit(0), _hit(1, layer=2),
        _hit(2, sterile=True), _hit(3, noisy=True),
        _hit(4, side=2),
    ]
    out = PreClusterizer(_setup()).process(hits)
    assert sorted(h.hit_id for h in out.ignored_hits) == [2, 3, 4]
    assert [h.hit_id for h in out.prompt_clusters[0]] == [0, 1]
    _assert_partition(hits, out)


def test_disabled_categories_route_to_ignored():
    hits = [_hit(0), _hit(1), _hit(2, delayed_time_ns=0.0), _hit(3, delayed_time_ns=100.0)]
    out = PreClusterizer(_setup(processing_prompt_hits=False)).process(hits)
    assert out.prompt_clusters == []
    assert len(out.delayed_clusters) == 1
    assert sorted(h.hit_id for h in out.ignored_hits) == [0, 1]

    out = PreClusterizer(_setup(processing_delayed_hits=False)).process(hits)
    assert out.delayed_clusters == []
    assert len(out.prompt_clusters) == 1
    assert sorted(h.hit_id for h in out.ignored_hits) == [2, 3]


def test_delayed_window_trailing_reference():
    # times in us -> ns, window 10 us
    times_us = [40, 0, 9, 5]
    hits = [_hit(i, delayed_time_ns=t * 1000.0) for i, t in enumerate(times_us)]
    out = PreClusterizer(_setup(delayed_hit_cluster_time_ns=10000.0)).process(hits)
    assert len(out.delayed_clusters) == 1
    assert [h.delayed_time_ns for h in out.delayed_clusters[0]] == [0.0, 5000.0, 9000.0]
    assert [h.hit_id for h in out.ignored_hits] == [0]
    _assert_partition(hits, out)


def test_delayed_reference_never_advances():
    # 15 is within W of 8 but not of the cluster's first member 0
    hits = [_hit(i, delayed_time_ns=t) for i, t in enumerate([0.0, 8.0, 15.0, 20.0])]
    out = PreClusterizer(_setup(delayed_hit_cluster_time_ns=10.0)).process(hits)
    assert [[h.delayed_time_ns for h in cl] for cl in out.delayed_clusters] == [[0.0, 8.0], [15.0, 20.0]]
    assert out.ignored_hits == []

    hits = [_hit(i, delayed_time_ns=t) for i, t in enumerate([0.0, 8.0, 15.0])]
    out = PreClusterizer(_setup(delayed_hit_cluster_time_ns=10.0)).process(hits)
    assert [[h.delayed_time_ns for h in cl] for cl in out.delayed_clusters] == [[0.0, 8.0]]
    assert [h.delayed_time_ns for h in out.ignored_hits] == [15.0]


def test_delayed_isolated_leading_hit():
    hits = [_hit(i, delayed_time_ns=t) for i, t in enumerate([0.0, 50.0, 55.0])]
    out = PreClusterizer(_setup(delayed_hit_cluster_time_ns=10.0)).process(hits)
    assert [[h.delayed_time_ns for h in cl] for cl in out.delayed_clusters] == [[50.0, 55.0]]
    assert [h.delayed_time_ns for h in out.ignored_hits] == [0.0]


def test_single_delayed_hit_per_side():
    hits = [_hit(0, side=0, delayed_time_ns=0.0), _hit(1, side=1, delayed_time_ns=1.0)]
    out = PreClusterizer(_setup(split_chamber=True)).process(hits)
    assert out.delayed_clusters == []
    assert len(out.ignored_hits) == 2

    out = PreClusterizer(_setup(split_chamber=False)).process(hits)
    assert len(out.delayed_clusters) == 1
    assert out.ignored_hits == []


def test_process_is_reentrant():
    pc = PreClusterizer(_setup())
    a = [_hit(0), _hit(1)]
    b = [_hit(10)]
    out_a = pc.process(a)
    out_b = pc.process(b)
    assert len(out_a.prompt_clusters) == 1
    assert out_b.prompt_clusters == []
    assert [h.hit_id for h in out_b.ignored_hits] == [10]
    assert "Prompt clusters: 1" in out_a.dump()


def test_empty_input():
    out = PreClusterizer(_setup()).process([])
    assert out.ignored_hits == [] and out.prompt_clusters == [] and out.delayed_clusters == []
