"""
Simplex geometry kernels (COBYLA-style).

The interpolation set is a simplex with vertices x_0 (the best point) and x_0 + sim[:, j],
j = 0..n-1. `sim` is n-by-(n+1): its first n columns are the edges from the best vertex,
its last column is the best vertex itself. `simi` is the inverse of sim[:, :n].

For vertex j (1-based at the public API):
  vsig[j] = 1 / ||simi[j, :]||   distance from the vertex to the opposite face,
  veta[j] = ||sim[:, j]||        distance from the vertex to the best vertex,
so vsig <= veta. The simplex is acceptable when no vsig is below factor_alpha * delta
and no veta exceeds factor_beta * delta.

Vertex indices returned or accepted here are 1-based; NO_DROP (0) means "no vertex".
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np

from .blocks.aux import NO_DROP, GeometryConfig, _as_matrix, _as_vector, _resolve_cfg
from .blocks.debug import require
from .blocks.linalg import (
    col_norms,
    isinv,
    masked_argmax,
    masked_argmin,
    matprod,
    norm,
    row_norms,
    subtract_from_columns,
)


# ---------------------------- Shared pieces ---------------------------- #
def simplex_distances(sim: np.ndarray, simi: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Return (vsig, veta) for the n non-best vertices."""
    n = sim.shape[0]
    with np.errstate(divide="ignore"):
        vsig = 1.0 / row_norms(simi)
    veta = col_norms(sim[:, :n])
    return vsig, veta


def _to_api_index(j: Optional[int]) -> int:
    return NO_DROP if j is None else j + 1


def _check_simplex(sim: np.ndarray, simi: np.ndarray, cfg: GeometryConfig, srname: str) -> None:
    n = sim.shape[0]
    require(n >= 1, "N >= 1", srname)
    require(sim.ndim == 2 and sim.shape == (n, n + 1), "SIZE(SIM) == [N, N+1]", srname)
    require(bool(np.all(np.isfinite(sim))), "SIM is finite", srname)
    require(
        bool(np.all(np.max(np.abs(sim[:, :n]), axis=0) > 0)),
        "SIM(:, 1:N) has no zero column",
        srname,
    )
    require(simi.shape == (n, n), "SIZE(SIMI) == [N, N]", srname)
    require(bool(np.all(np.isfinite(simi))), "SIMI is finite", srname)
    require(isinv(sim[:, :n], simi, cfg.itol), "SIMI = SIM(:, 1:N)^{-1}", srname)


# ---------------------------- Assessment ---------------------------- #
def assess_geo(
    delta: float,
    factor_alpha: float,
    factor_beta: float,
    sim,
    simi,
    *,
    cfg: Optional[GeometryConfig] = None,
) -> bool:
    """True if the simplex is acceptable, i.e. no geometry step is needed."""
    srname = "ASSESS_GEO"
    cfg = _resolve_cfg(cfg)
    sim = _as_matrix(sim)
    simi = _as_matrix(simi)

    if cfg.debugging:
        _check_simplex(sim, simi, cfg, srname)
        require(delta > 0, "DELTA > 0", srname)
        require(0 < factor_alpha < 1, "0 < FACTOR_ALPHA < 1", srname)
        require(factor_beta > 1, "FACTOR_BETA > 1", srname)

    vsig, veta = simplex_distances(sim, simi)
    return bool(np.all(vsig >= factor_alpha * delta) and np.all(veta <= factor_beta * delta))


# ---------------------------- Drop selection ---------------------------- #
def _setdrop_tr_threshold(
    ximproved: bool,
    d: np.ndarray,
    delta: float,
    factor_alpha: float,
    factor_delta: float,
    sim: np.ndarray,
    simi: np.ndarray,
    simid: np.ndarray,
) -> Optional[int]:
    """Powell's rule, equations (19)--(22) of the COBYLA paper. Returns a 0-based index or None."""
    n = sim.shape[0]
    jdrop = None

    abs_simid = np.abs(simid)
    if np.any(abs_simid > 1) or (ximproved and np.any(~np.isnan(simid))):
        jdrop = masked_argmax(abs_simid)

    if ximproved:
        veta = col_norms(subtract_from_columns(sim[:, :n], d))
    else:
        veta = col_norms(sim[:, :n])
    with np.errstate(divide="ignore"):
        vsig = 1.0 / row_norms(simi)
    sigbar = abs_simid * vsig

    # Overrides the previous choice if some far vertex is not nearly on the face of d.
    mask = (veta > factor_delta * delta) & ((sigbar >= factor_alpha * delta) | (sigbar >= vsig))
    if np.any(mask):
        jdrop = masked_argmax(veta, mask)

    # Not in Powell's code: without it, an all-NaN SIMID would give no vertex although the
    # step improved the merit function.
    if ximproved and jdrop is None:
        jdrop = masked_argmax(veta)
        logging.debug(f"[SetdropTR] no candidate from SIMID; dropping the farthest vertex (j={jdrop})")
    return jdrop


def _setdrop_tr_score(
    ximproved: bool,
    d: np.ndarray,
    sim: np.ndarray,
    simid: np.ndarray,
    jdrop: Optional[int],
) -> Optional[int]:
    """
    Score pass: score[j] = ||x_j - x_new||^2 * |simid[j]| over the n vertices, plus a
    virtual slot for the best vertex weighted by |1 - sum(simid)|. The virtual slot means
    "keep the threshold choice".
    """
    n = sim.shape[0]
    if ximproved:
        distsq = np.sum(subtract_from_columns(sim[:, :n], d) ** 2, axis=0)
        distsq_best = float(d @ d)
    else:
        distsq = np.sum(sim[:, :n] ** 2, axis=0)
        distsq_best = 0.0
    score = np.append(distsq, distsq_best) * np.abs(np.append(simid, 1.0 - np.sum(simid)))

    if np.any(distsq > 0):
        j = masked_argmax(score)
        if j is None or j == n:
            logging.debug(f"[SetdropTR] score pass kept the threshold choice (slot={j})")
            return jdrop
        return j
    if ximproved:
        j = masked_argmax(distsq)
        logging.debug(f"[SetdropTR] every vertex coincides with x_0 + d; dropping j={j} by distance")
        return j
    return None


def setdrop_tr(
    ximproved: bool,
    d,
    delta: float,
    factor_alpha: float,
    factor_delta: float,
    sim,
    simi,
    *,
    cfg: Optional[GeometryConfig] = None,
) -> int:
    """
    Index (1-based) of the vertex to be replaced by the trust-region trial point x_0 + d.

    Returns NO_DROP only if `ximproved` is False. With cfg.drop_scheme == "score" (default)
    the score pass overrides the threshold pass whenever some vertex is away from x_0.
    """
    srname = "SETDROP_TR"
    cfg = _resolve_cfg(cfg)
    d = _as_vector(d)
    sim = _as_matrix(sim)
    simi = _as_matrix(simi)
    n = sim.shape[0]

    if cfg.debugging:
        require(d.size == n and bool(np.all(np.isfinite(d))), "SIZE(D) == N, D is finite", srname)
        _check_simplex(sim, simi, cfg, srname)
        require(0 < factor_alpha < 1, "0 < FACTOR_ALPHA < 1", srname)
        require(factor_delta > 1, "FACTOR_DELTA > 1", srname)

    simid = matprod(simi, d)
    jdrop = _setdrop_tr_threshold(
        ximproved, d, delta, factor_alpha, factor_delta, sim, simi, simid
    )
    if cfg.drop_scheme == "score":
        jdrop = _setdrop_tr_score(ximproved, d, sim, simid, jdrop)

    if ximproved and jdrop is None:
        logging.warning("[SetdropTR] no vertex to drop although the step improved the merit")

    jdrop = _to_api_index(jdrop)
    if cfg.debugging:
        require(
            jdrop >= 1 or not ximproved,
            "JDROP >= 1 unless the trust-region step failed",
            srname,
        )
    return jdrop


def setdrop_geo(
    delta: float,
    factor_alpha: float,
    factor_beta: float,
    sim,
    simi,
    *,
    cfg: Optional[GeometryConfig] = None,
) -> int:
    """
    Index (1-based) of the vertex to be replaced by a geometry-improving point, following
    equations (15)--(16) of the COBYLA paper: the longest edge beyond factor_beta * delta,
    else the thinnest face below factor_alpha * delta. NO_DROP if neither exists.
    """
    srname = "SETDROP_GEO"
    cfg = _resolve_cfg(cfg)
    sim = _as_matrix(sim)
    simi = _as_matrix(simi)
    n = sim.shape[0]

    if cfg.debugging:
        _check_simplex(sim, simi, cfg, srname)
        require(0 < factor_alpha < 1, "0 < FACTOR_ALPHA < 1", srname)
        require(factor_beta > 1, "FACTOR_BETA > 1", srname)

    vsig, veta = simplex_distances(sim, simi)
    if np.any(veta > factor_beta * delta):
        jdrop = masked_argmax(veta)
    elif np.any(vsig < factor_alpha * delta):
        jdrop = masked_argmin(vsig)
    else:
        # Only reachable with an acceptable simplex or NaN in SIM/SIMI.
        jdrop = None
        logging.warning("[SetdropGeo] no vertex violates the geometry thresholds")

    jdrop = _to_api_index(jdrop)
    if cfg.debugging:
        require(1 <= jdrop <= n, "1 <= JDROP <= N", srname)
    return jdrop


# ---------------------------- Geometry step ---------------------------- #
def geostep(
    jdrop: int,
    cpen: float,
    conmat,
    cval,
    delta: float,
    factor_gamma: float,
    fval,
    simi,
    *,
    cfg: Optional[GeometryConfig] = None,
) -> np.ndarray:
    """
    Geometry step d that improves the simplex when vertex `jdrop` (1-based) is replaced by
    x_0 + d.

    d points along the normal of the face opposite vertex `jdrop` and has length
    factor_gamma * delta. Its sign is chosen by the linearized merit
    f + cpen * max(0, -c) (constraints are feasible when c >= 0): -d is taken when
    2 * (decrease of f along d) < cpen * (violation at +d - violation at -d).

    Parameters
    ----------
    conmat : array_like, shape (m, n+1)
        Constraint values at the vertices; column n is the best vertex.
    cval : array_like, shape (n+1,)
        Constraint violation at the vertices (only checked in debugging mode).
    fval : array_like, shape (n+1,)
        Objective values at the vertices; entry n is the best vertex.
    simi : array_like, shape (n, n)
        Inverse of sim[:, :n].
    """
    srname = "GEOSTEP"
    cfg = _resolve_cfg(cfg)
    simi = _as_matrix(simi)
    n = simi.shape[0]
    conmat = np.array(conmat, dtype=np.float64)
    if conmat.size == 0:
        conmat = conmat.reshape(0, n + 1)
    elif conmat.ndim == 1:
        conmat = conmat.reshape(1, -1)
    m = conmat.shape[0]
    cval = _as_vector(cval)
    fval = _as_vector(fval)

    if cfg.debugging:
        require(n >= 1, "N >= 1", srname)
        require(cpen >= 0, "CPEN >= 0", srname)
        require(simi.shape == (n, n), "SIZE(SIMI) == [N, N]", srname)
        require(bool(np.all(np.isfinite(simi))), "SIMI is finite", srname)
        require(
            fval.size == n + 1 and not np.any(np.isnan(fval) | np.isposinf(fval)),
            "SIZE(FVAL) == N+1 and FVAL is not NaN/+Inf",
            srname,
        )
        require(conmat.shape == (m, n + 1), "SIZE(CONMAT) == [M, N+1]", srname)
        require(
            not np.any(np.isnan(conmat) | np.isneginf(conmat)),
            "CONMAT does not contain NaN/-Inf",
            srname,
        )
        require(
            cval.size == n + 1 and not np.any((cval < 0) | np.isnan(cval) | np.isposinf(cval)),
            "SIZE(CVAL) == N+1 and CVAL does not contain negative values or NaN/+Inf",
            srname,
        )
        require(1 <= jdrop <= n, "1 <= JDROP <= N", srname)
        require(delta > 0, "DELTA > 0", srname)
        require(0 < factor_gamma < 1, "0 < FACTOR_GAMMA < 1", srname)

    j = int(jdrop) - 1

    # simi[j, :] is normal to the face opposite vertex j; vsigj * simi[j, :] has unit length.
    vsigj = 1.0 / norm(simi[j, :])
    d = factor_gamma * delta * (vsigj * simi[j, :])

    # Linear models: column i < m is the gradient of constraint i, column m is minus the
    # gradient of the objective.
    A = np.empty((n, m + 1))
    A[:, :m] = matprod(subtract_from_columns(conmat[:, :n], conmat[:, n]), simi).T
    A[:, m] = matprod(fval[n] - fval[:n], simi)

    dA = matprod(d, A[:, :m])
    cvmaxp = float(np.max(-dA - conmat[:, n], initial=0.0))
    cvmaxn = float(np.max(dA - conmat[:, n], initial=0.0))
    if 2.0 * float(d @ A[:, m]) < cpen * (cvmaxp - cvmaxn):
        d = -d

    if cfg.debugging:
        require(d.size == n and bool(np.all(np.isfinite(d))), "SIZE(D) == N, D is finite", srname)
        dnorm = norm(d)
        require(
            0.9 * factor_gamma * delta < dnorm <= 1.1 * factor_gamma * delta,
            "|D| == FACTOR_GAMMA*DELTA",
            srname,
        )
    return d
