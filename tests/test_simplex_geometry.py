import numpy as np
import pytest

from dfogeo import (
    NO_DROP,
    GeometryConfig,
    GeometryContractError,
    assess_geo,
    geostep,
    setdrop_geo,
    simplex_distances,
)

from simplex_helpers import identity_simplex, random_simplex

DEBUG = GeometryConfig(debugging=True)


def simplex_from_edges(edges, x0=None):
    edges = np.asarray(edges, dtype=float)
    n = edges.shape[0]
    x0 = np.zeros(n) if x0 is None else np.asarray(x0, dtype=float)
    return np.column_stack([edges, x0]), np.linalg.inv(edges)


# ---------------------------- distances & assessment ---------------------------- #
@pytest.mark.parametrize("seed", range(5))
def test_face_distance_never_exceeds_edge_length(seed):
    sim, simi = random_simplex(4, delta=0.7, seed=seed)
    vsig, veta = simplex_distances(sim, simi)
    assert np.all(vsig <= veta * (1 + 1e-12))


def test_identity_simplex_is_acceptable():
    sim, simi = identity_simplex(2)
    assert assess_geo(1.0, 0.25, 2.1, sim, simi, cfg=DEBUG)


def test_long_edge_is_not_acceptable():
    sim, simi = simplex_from_edges(np.diag([3.0, 1.0]))
    assert not assess_geo(1.0, 0.25, 2.1, sim, simi)


def test_thin_face_is_not_acceptable():
    sim, simi = simplex_from_edges([[1.0, 0.9], [0.0, 0.1]])
    assert not assess_geo(1.0, 0.25, 2.1, sim, simi)


@pytest.mark.parametrize("seed", range(5))
def test_assessment_is_monotone_in_the_factors(seed):
    sim, simi = random_simplex(3, delta=1.0, seed=seed, spread=0.6)
    alphas = [0.05, 0.1, 0.25, 0.5, 0.9]
    betas = [1.1, 1.5, 2.1, 3.0, 5.0]
    for i, a in enumerate(alphas):
        for j, b in enumerate(betas):
            if assess_geo(1.0, a, b, sim, simi):
                for a2 in alphas[: i + 1]:
                    for b2 in betas[j:]:
                        assert assess_geo(1.0, a2, b2, sim, simi)


def test_assess_debugging_rejects_wrong_inverse():
    sim, simi = identity_simplex(3)
    with pytest.raises(GeometryContractError, match="ASSESS_GEO"):
        assess_geo(1.0, 0.25, 2.1, sim, 2.0 * simi, cfg=DEBUG)


# ---------------------------- setdrop_geo ---------------------------- #
def test_setdrop_geo_ties_go_to_lowest_index():
    sim, simi = identity_simplex(2)
    assert setdrop_geo(1.0, 0.25, 0.5, sim, simi) == 1


def test_setdrop_geo_prefers_longest_edge():
    sim, simi = simplex_from_edges(np.diag([1.0, 3.0]))
    assert setdrop_geo(1.0, 0.25, 2.1, sim, simi, cfg=DEBUG) == 2


def test_setdrop_geo_thin_face():
    sim, simi = simplex_from_edges([[1.0, 0.9], [0.0, 0.1]])
    assert setdrop_geo(1.0, 0.25, 2.1, sim, simi, cfg=DEBUG) == 2


def test_setdrop_geo_acceptable_simplex():
    sim, simi = identity_simplex(3)
    assert setdrop_geo(1.0, 0.25, 2.1, sim, simi) == NO_DROP
    with pytest.raises(GeometryContractError, match="JDROP"):
        setdrop_geo(1.0, 0.25, 2.1, sim, simi, cfg=DEBUG)


def test_setdrop_geo_all_nan():
    sim = np.full((2, 3), np.nan)
    simi = np.full((2, 2), np.nan)
    assert setdrop_geo(1.0, 0.25, 2.1, sim, simi) == NO_DROP


@pytest.mark.parametrize("seed", range(5))
def test_setdrop_geo_in_range_for_bad_simplex(seed):
    sim, simi = random_simplex(4, delta=3.0, seed=seed)
    assert not assess_geo(1.0, 0.25, 2.1, sim, simi)
    assert 1 <= setdrop_geo(1.0, 0.25, 2.1, sim, simi, cfg=DEBUG) <= 4


# ---------------------------- geostep ---------------------------- #
def linear_merit(s, cpen, conmat, fval, simi):
    n = simi.shape[0]
    gf = (fval[:n] - fval[n]) @ simi
    gc = (conmat[:, :n] - conmat[:, n][:, np.newaxis]) @ simi
    viol = np.max(-(conmat[:, n] + gc @ s), initial=0.0)
    return gf @ s + cpen * viol


@pytest.mark.parametrize("seed", range(8))
def test_geostep_length_direction_and_sign(seed):
    rng = np.random.default_rng(seed)
    n, m = 4, 3
    delta, gamma, cpen = 0.8, 0.5, float(rng.uniform(0.0, 10.0))
    sim, simi = random_simplex(n, delta=delta, seed=seed)
    conmat = rng.standard_normal((m, n + 1))
    cval = np.max(-conmat, axis=0, initial=0.0)
    fval = rng.standard_normal(n + 1)
    jdrop = int(rng.integers(1, n + 1))

    d = geostep(jdrop, cpen, conmat, cval, delta, gamma, fval, simi, cfg=DEBUG)

    assert d.shape == (n,)
    assert np.linalg.norm(d) == pytest.approx(gamma * delta)
    row = simi[jdrop - 1]
    assert abs(d @ row) == pytest.approx(np.linalg.norm(d) * np.linalg.norm(row))
    assert linear_merit(d, cpen, conmat, fval, simi) <= (
        linear_merit(-d, cpen, conmat, fval, simi) + 1e-12
    )


def test_geostep_unconstrained_follows_objective():
    sim, simi = identity_simplex(2)
    empty = np.zeros((0, 3))
    cval = np.zeros(3)
    # f grows towards vertex 1, so the step moves away from it
    d = geostep(1, 1.0, empty, cval, 1.0, 0.5, [2.0, 0.0, 1.0], simi, cfg=DEBUG)
    np.testing.assert_allclose(d, [-0.5, 0.0])
    d = geostep(1, 1.0, empty, cval, 1.0, 0.5, [0.0, 0.0, 1.0], simi, cfg=DEBUG)
    np.testing.assert_allclose(d, [0.5, 0.0])


def test_geostep_penalty_trades_objective_for_feasibility():
    # c(x) = x1 - 0.1, so the best vertex (origin) is infeasible and +e1 restores feasibility
    sim, simi = identity_simplex(2)
    conmat = np.array([[0.9, -0.1, -0.1]])
    cval = np.array([0.0, 0.1, 0.1])
    fval = np.array([10.0, 0.0, 0.0])
    d = geostep(1, 1.0, conmat, cval, 1.0, 0.5, fval, simi, cfg=DEBUG)
    np.testing.assert_allclose(d, [-0.5, 0.0])
    d = geostep(1, 100.0, conmat, cval, 1.0, 0.5, fval, simi, cfg=DEBUG)
    np.testing.assert_allclose(d, [0.5, 0.0])


def test_geostep_debugging_preconditions():
    sim, simi = identity_simplex(2)
    conmat = np.zeros((1, 3))
    fval = np.zeros(3)
    with pytest.raises(GeometryContractError, match="JDROP"):
        geostep(0, 1.0, conmat, np.zeros(3), 1.0, 0.5, fval, simi, cfg=DEBUG)
    with pytest.raises(GeometryContractError, match="CVAL"):
        geostep(1, 1.0, conmat, -np.ones(3), 1.0, 0.5, fval, simi, cfg=DEBUG)
    with pytest.raises(GeometryContractError, match="FACTOR_GAMMA"):
        geostep(1, 1.0, conmat, np.zeros(3), 1.0, 1.5, fval, simi, cfg=DEBUG)
