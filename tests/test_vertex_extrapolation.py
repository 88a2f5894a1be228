import logging
import math

import numpy as np
import pytest

from sntracker.config.schemas import ExtrapolationCfg, GeometryCfg
from sntracker.geometry.boundaries import DetectorBoundaries, GeigerLayout, Surface
from sntracker.physics.hits import GeomId, TrackerHit
from sntracker.physics.particles import ParticleTrack
from sntracker.physics.trajectories import HelixPattern, LinePattern, TrackerTrajectory
from sntracker.reco.vertex_extrapolation import (
    UsableSurfaces,
    VertexExtrapolator,
    determine_usable_surfaces,
    helix_intersections,
    line_intersections,
    select_endpoint_candidates,
)

LAYOUT = GeigerLayout(n_layers=(9, 9), n_rows=(113, 113))


def _cell(side, layer, row, hit_id=0):
    return TrackerHit(
        hit_id=hit_id,
        geom_id=GeomId(type=1204, module=0, side=side, layer=layer, row=row),
        x_mm=0.0,
        y_mm=0.0,
    )


def _extrapolator(policy=None):
    geo = GeometryCfg()
    cfg = ExtrapolationCfg() if policy is None else ExtrapolationCfg(endpoint_assignment=policy)
    return VertexExtrapolator(DetectorBoundaries.from_cfg(geo), GeigerLayout.from_cfg(geo), cfg)


def _traj(pattern, side, cluster=None):
    return TrackerTrajectory(
        traj_id=7,
        pattern=pattern,
        geom_id=GeomId(type=1234, module=0, side=side),
        cluster=cluster,
    )


def test_usable_surfaces_from_cluster():
    assert determine_usable_surfaces(None, LAYOUT) == UsableSurfaces()

    u = determine_usable_surfaces([_cell(0, 0, 50)], LAYOUT)
    assert u.foil and not u.calo and not u.xcalo and not u.gveto

    u = determine_usable_surfaces([_cell(1, 8, 50)], LAYOUT)
    assert u.calo and not u.foil

    assert determine_usable_surfaces([_cell(0, 4, 1)], LAYOUT).xcalo
    assert determine_usable_surfaces([_cell(0, 4, 112)], LAYOUT).xcalo
    assert not determine_usable_surfaces([_cell(0, 4, 111)], LAYOUT).xcalo
    assert not determine_usable_surfaces([_cell(0, 4, 2)], LAYOUT).xcalo

    # gamma-veto is never enabled from cells
    u = determine_usable_surfaces([_cell(0, 0, 0), _cell(0, 8, 112)], LAYOUT)
    assert u.foil and u.calo and u.xcalo and not u.gveto


def test_line_intersection_at_x5():
    pat = LinePattern(first=(0.0, 0.0, 0.0), last=(10.0, 4.0, -2.0))
    cands = line_intersections(pat, [Surface("foil", "x", 5.0)])
    assert len(cands) == 1
    p, cat = cands[0]
    assert cat == "foil"
    assert p[0] == 5.0
    np.testing.assert_allclose(p[1], 0.4 * p[0])
    np.testing.assert_allclose(p[2], -0.2 * p[0])


def test_line_parallel_plane_skipped():
    pat = LinePattern(first=(-10.0, 0.0, 0.0), last=(10.0, 0.0, 0.0))
    cands = line_intersections(pat, [Surface("xcalo", "y", 100.0), Surface("gveto", "z", 10.0)])
    assert cands == []


def test_line_candidates_deduplicated_and_sorted():
    pat = LinePattern(first=(-10.0, 0.0, 0.0), last=(10.0, 0.0, 0.0))
    surfaces = [
        Surface("calo", "x", 435.0),
        Surface("foil", "x", 0.0),
        Surface("calo", "x", 0.0),
        Surface("calo", "x", -435.0),
    ]
    cands = line_intersections(pat, surfaces)
    assert [c for _, c in cands] == ["calo", "foil", "calo"]
    assert [p[0] for p, _ in cands] == [-435.0, 0.0, 435.0]


def test_helix_tangent_plane_single_candidate():
    pat = HelixPattern(center=(0.0, 0.0, 0.0), radius=100.0, step=10.0, t1=-0.1, t2=0.1)
    cands = helix_intersections(pat, [Surface("calo", "x", 100.0)])
    assert len(cands) == 1
    assert cands[0][0] == 0.0

    assert helix_intersections(pat, [Surface("calo", "x", 100.5)]) == []


def test_helix_y_plane_mirror_follows_arc_side():
    up = HelixPattern(center=(0.0, 0.0, 0.0), radius=100.0, step=0.0, t1=0.0, t2=0.1)
    ts = [t for t, _ in helix_intersections(up, [Surface("xcalo", "y", 50.0)])]
    np.testing.assert_allclose(ts, [1.0 / 12.0, 5.0 / 12.0])

    down = HelixPattern(center=(0.0, 0.0, 0.0), radius=100.0, step=0.0, t1=-0.1, t2=-0.05)
    ts = [t for t, _ in helix_intersections(down, [Surface("xcalo", "y", 50.0)])]
    np.testing.assert_allclose(ts, [-7.0 / 12.0, 1.0 / 12.0])


def test_helix_z_plane():
    pat = HelixPattern(center=(0.0, 0.0, 10.0), radius=100.0, step=20.0, t1=0.0, t2=1.0)
    cands = helix_intersections(pat, [Surface("gveto", "z", 50.0)])
    assert cands == [(2.0, "gveto")]

    flat = HelixPattern(center=(0.0, 0.0, 10.0), radius=100.0, step=0.0, t1=0.0, t2=1.0)
    assert helix_intersections(flat, [Surface("gveto", "z", 50.0)]) == []


def test_select_endpoint_candidates_policies():
    assert select_endpoint_candidates([], []) == (None, None)
    # closest_endpoint: a candidate only competes for the end it is closer to
    assert select_endpoint_candidates([1.0, 1.0, 3.0], [5.0, 2.0, 2.0]) == (0, 2)
    assert select_endpoint_candidates([10.0], [10.0], "closest_endpoint") == (None, 0)
    assert select_endpoint_candidates([1.0, 9.0], [9.0, 1.0], "closest_endpoint") == (0, 1)
    # nearest: ties within an end resolve to the first candidate in sorted order
    assert select_endpoint_candidates([1.0, 1.0, 3.0], [5.0, 2.0, 2.0], "nearest") == (0, 1)
    # nearest: a shared candidate stays with the closer end, the other rescans
    assert select_endpoint_candidates([1.0, 5.0], [2.0, 9.0], "nearest") == (0, 1)
    assert select_endpoint_candidates([3.0], [3.0], "nearest") == (None, 0)
    assert select_endpoint_candidates([1.0], [2.0], "nearest") == (0, None)
    with pytest.raises(ValueError):
        select_endpoint_candidates([1.0], [1.0], "bogus")


def test_line_through_foil_both_ends():
    ext = _extrapolator()
    pat = LinePattern(first=(-10.0, 0.0, 0.0), last=(10.0, 0.0, 0.0))
    traj = _traj(pat, side=0, cluster=[_cell(0, 0, 50)])
    particle = ParticleTrack(track_id=0, trajectory=traj)

    res = ext.process(traj, particle)
    assert res.ok
    # the foil crossing is claimed by one end only; the other keeps its wire
    assert [v.category for v in particle.vertices] == ["wire", "foil"]
    np.testing.assert_array_equal(particle.vertices[0].position, [-10.0, 0.0, 0.0])
    np.testing.assert_array_equal(particle.vertices[1].position, [0.0, 0.0, 0.0])
    assert [v.hit_id for v in particle.vertices] == [0, 1]
    np.testing.assert_array_equal(res.pattern.first, [-10.0, 0.0, 0.0])
    np.testing.assert_array_equal(res.pattern.last, [0.0, 0.0, 0.0])
    # the input trajectory is not shortened in place
    np.testing.assert_array_equal(traj.pattern.last, [10.0, 0.0, 0.0])


def test_line_through_foil_nearest_policy():
    ext = _extrapolator("nearest")
    pat = LinePattern(first=(-10.0, 0.0, 0.0), last=(10.0, 0.0, 0.0))
    traj = _traj(pat, side=0, cluster=[_cell(0, 0, 50)])
    particle = ParticleTrack(track_id=0)
    ext.process(traj, particle)
    # first end falls back to the (unusable) back calorimeter wall
    assert [v.category for v in particle.vertices] == ["wire", "foil"]
    np.testing.assert_array_equal(particle.vertices[0].position, [-10.0, 0.0, 0.0])


@pytest.mark.parametrize("policy", ["closest_endpoint", "nearest"])
def test_short_line_ends_do_not_share_foil(policy):
    ext = _extrapolator(policy)
    pat = LinePattern(first=(30.0, 0.0, 0.0), last=(150.0, 60.0, 0.0))
    traj = _traj(pat, side=1, cluster=[_cell(1, 0, 60), _cell(1, 2, 60)])
    particle = ParticleTrack(track_id=0)
    res = ext.process(traj, particle)
    assert [v.category for v in particle.vertices] == ["foil", "wire"]
    np.testing.assert_allclose(particle.vertices[0].position, [0.0, -15.0, 0.0])
    np.testing.assert_array_equal(particle.vertices[1].position, [150.0, 60.0, 0.0])
    assert res.pattern.length > 0.0


def test_line_without_cluster_stays_on_wire():
    ext = _extrapolator()
    pat = LinePattern(first=(50.0, 10.0, 0.0), last=(400.0, 30.0, 5.0))
    traj = _traj(pat, side=1, cluster=None)
    particle = ParticleTrack(track_id=0)
    res = ext.process(traj, particle)
    assert res.ok and not res.usable.foil
    assert [v.category for v in particle.vertices] == ["wire", "wire"]
    np.testing.assert_array_equal(particle.vertices[0].position, pat.first)
    np.testing.assert_array_equal(particle.vertices[1].position, pat.last)


def test_line_foil_and_calo():
    ext = _extrapolator()
    pat = LinePattern(first=(52.0, 0.0, 0.0), last=(404.0, 88.0, 35.2))
    traj = _traj(pat, side=1, cluster=[_cell(1, 0, 56), _cell(1, 8, 58)])
    particle = ParticleTrack(track_id=0)
    ext.process(traj, particle)
    assert [v.category for v in particle.vertices] == ["foil", "calo"]
    foil, calo = (v.position for v in particle.vertices)
    assert foil[0] == 0.0 and calo[0] == 435.0
    np.testing.assert_allclose(foil[1:], [-13.0, -5.2])
    np.testing.assert_allclose(calo[1:], [95.75, 38.3])


def test_helix_length_guard_keeps_wire():
    ext = _extrapolator()
    pat = HelixPattern(center=(0.0, 0.0, 0.0), radius=100.0, step=0.0, t1=0.0, t2=0.02)
    traj = _traj(pat, side=1, cluster=[_cell(1, 0, 50)])
    particle = ParticleTrack(track_id=0)
    res = ext.process(traj, particle)
    # the only candidates (t = +/-0.25) lie further than the whole arc
    assert [v.category for v in particle.vertices] == ["wire", "wire"]
    np.testing.assert_allclose(particle.vertices[0].position, pat.position(0.0))
    np.testing.assert_allclose(particle.vertices[1].position, pat.position(0.02))
    assert (res.pattern.t1, res.pattern.t2) == (0.0, 0.02)


def test_helix_length_guard_per_end():
    ext = _extrapolator()
    pat = HelixPattern(center=(0.0, 0.0, 0.0), radius=100.0, step=0.0, t1=0.0, t2=0.24)
    traj = _traj(pat, side=1, cluster=[_cell(1, 0, 50)])
    particle = ParticleTrack(track_id=0)
    res = ext.process(traj, particle)
    assert [v.category for v in particle.vertices] == ["wire", "foil"]
    np.testing.assert_allclose(particle.vertices[1].position, [0.0, 100.0, 0.0], atol=1e-9)
    assert res.pattern.t1 == 0.0
    assert math.isclose(res.pattern.t2, 0.25)
    assert pat.t2 == 0.24


def test_missing_geom_id_is_logged(caplog):
    ext = _extrapolator()
    traj = TrackerTrajectory(traj_id=3, pattern=LinePattern(first=(0, 0, 0), last=(1, 0, 0)))
    particle = ParticleTrack(track_id=0)
    with caplog.at_level(logging.ERROR, logger="sntracker.reco.vertex_extrapolation"):
        res = ext.process(traj, particle)
    assert not res.ok
    assert particle.vertices == []
    assert "[VED]" in caplog.text and "no geom_id" in caplog.text


def test_missing_side_is_logged(caplog):
    ext = _extrapolator()
    traj = TrackerTrajectory(
        traj_id=4,
        pattern=LinePattern(first=(0, 0, 0), last=(1, 0, 0)),
        geom_id=GeomId(type=1234, module=0),
    )
    particle = ParticleTrack(track_id=0)
    with caplog.at_level(logging.ERROR, logger="sntracker.reco.vertex_extrapolation"):
        res = ext.process(traj, particle)
    assert not res.ok
    assert particle.vertices == []
    assert "'module' or 'side'" in caplog.text


def test_unknown_pattern_type_raises():
    ext = _extrapolator()
    traj = _traj(object(), side=0)
    with pytest.raises(TypeError):
        ext.process(traj, ParticleTrack(track_id=0))
