"""
Quadratic-model geometry step (UOBYQA-style).

Given a quadratic Q(d) = g^T d + 0.5 d^T H d and a radius delbar, `qgeostep` returns a
step d with ||d|| <= delbar and vmax >= 0 such that |Q(0) - Q(d)| = vmax is close to its
maximum over the ball. The exact maximizer needs O(n^3) work; this routine needs O(n^2)
and, in practice, reaches about 0.9 of the optimal value.

The search proceeds in three stages:
  1. a direction d of large |d^T H d| / d^T d in span{v, Hv}, v a column of H;
  2. a scaled multiple of d, returned at once when span{g, d} offers nothing better;
  3. an exact two-dimensional choice in span{g, d} among d, v, d + v and d - v,
     after rotating the basis so that the cross term d^T H v vanishes.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np

from .blocks.aux import (
    CombinationBranch,
    CurvatureBranch,
    GeometryConfig,
    QGeoStatus,
    RotationBranch,
    _as_matrix,
    _as_vector,
    _resolve_cfg,
)
from .blocks.debug import require
from .blocks.linalg import issymmetric, matprod, zero_nan

_SQRT_HALF = np.sqrt(0.5)


# ---------------------------- Closed-form helpers ---------------------------- #
def _extremal_curvature_direction(
    h: np.ndarray, v: np.ndarray, parallel_tol: float = 0.9999
) -> Tuple[np.ndarray, CurvatureBranch]:
    """
    Direction in span{v, Hv} maximizing |d^T H d| / d^T d.
    Returns Hv unchanged when v and Hv are nearly parallel.
    """
    vv = v @ v
    d = matprod(h, v)
    vhv = v @ d
    if not (vhv * vhv <= parallel_tol * (d @ d) * vv):
        return d, CurvatureBranch.PARALLEL

    with np.errstate(divide="ignore", invalid="ignore"):
        d = d - (vhv / vv) * v
        dd = d @ d
        ratio = np.sqrt(dd / vv)
        dhd = d @ matprod(h, d)
        v = ratio * v
        vhv = ratio * ratio * vhv
        vhd = ratio * dd
        temp = 0.5 * (dhd - vhv)
        if dhd + vhv < 0:
            return vhd * v + (temp - np.sqrt(temp**2 + vhd**2)) * d, CurvatureBranch.NEGATIVE
        return vhd * v + (temp + np.sqrt(temp**2 + vhd**2)) * d, CurvatureBranch.POSITIVE


def _cross_term_rotation(
    ghg: float, vhg: float, vhv: float, tol: float = 0.01
) -> Tuple[float, float, float, RotationBranch]:
    """
    Rotation (wcos, wsin) of an orthonormal pair {g^, v^} that removes the cross term of
    the normalized 2x2 Hessian [[ghg, vhg], [vhg, vhv]]. Returns (vmu, wcos, wsin, branch),
    where vmu + vhv is the curvature along the rotated first basis vector.
    """
    if abs(vhg) <= tol * max(abs(ghg), abs(vhv)):
        return ghg - vhv, 1.0, 0.0, RotationBranch.ALIGNED
    temp = 0.5 * (ghg - vhv)
    if temp < 0:
        vmu = temp - np.sqrt(temp**2 + vhg**2)
    else:
        vmu = temp + np.sqrt(temp**2 + vhg**2)
    r = np.sqrt(vmu**2 + vhg**2)
    return float(vmu), float(vmu / r), float(vhg / r), RotationBranch.ROTATED


def _best_combination(
    dlin: float, vlin: float, vmu: float, ghg: float, vhv: float, delbar: float
) -> Tuple[float, float, float, CombinationBranch]:
    """
    Pick the best of +-d, +-v, and +-d +-v (scaled to length delbar) in the rotated basis.
    Returns (coef_d, coef_v, vmax, branch) with step = coef_d * d + coef_v * v.
    """
    tempa = abs(dlin) + 0.5 * abs(vmu + vhv)
    tempb = abs(vlin) + 0.5 * abs(ghg - vmu)
    tempc = _SQRT_HALF * (abs(dlin) + abs(vlin)) + 0.25 * abs(ghg + vhv)
    vmax = delbar * delbar * max(tempa, tempb, tempc)

    if tempa >= tempb and tempa >= tempc:
        coef_d = -delbar if dlin * (vmu + vhv) < 0 else delbar
        return coef_d, 0.0, vmax, CombinationBranch.D_ONLY
    if tempb >= tempc:
        coef_v = -delbar if vlin * (ghg - vmu) < 0 else delbar
        return 0.0, coef_v, vmax, CombinationBranch.V_ONLY
    coef_d = -_SQRT_HALF * delbar if dlin * (ghg + vhv) < 0 else _SQRT_HALF * delbar
    coef_v = -_SQRT_HALF * delbar if vlin * (ghg + vhv) < 0 else _SQRT_HALF * delbar
    return coef_d, coef_v, vmax, CombinationBranch.DIAGONAL


def _cauchy_direction(g: np.ndarray, h: np.ndarray, delbar: float) -> np.ndarray:
    """g scaled to length delbar, negated when g^T H g < 0; NaN components zeroed."""
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        gg = float(g @ g)
        ghg = float(g @ (h @ g))
        dcauchy = (delbar / np.sqrt(gg)) * g
        if ghg < 0:
            dcauchy = -dcauchy
    return _zero_nan_logged(dcauchy, "Cauchy direction")


def _zero_nan_logged(x: np.ndarray, what: str) -> np.ndarray:
    nnan = int(np.count_nonzero(np.isnan(x)))
    if nnan:
        logging.debug(f"[QGeo] zeroed {nnan} NaN component(s) of the {what}")
        return zero_nan(x)
    return x


def _model_change(g: np.ndarray, h: np.ndarray, d: np.ndarray) -> float:
    with np.errstate(over="ignore", invalid="ignore"):
        val = abs(float(g @ d) + 0.5 * float(d @ (h @ d)))
    return val if np.isfinite(val) else 0.0


# ---------------------------- Main routine ---------------------------- #
def _qgeostep(
    g: np.ndarray, h: np.ndarray, delbar: float, cfg: GeometryConfig
) -> Tuple[np.ndarray, float, QGeoStatus]:
    dcauchy = _cauchy_direction(g, h, delbar)

    if not (np.all(np.isfinite(g)) and np.all(np.isfinite(h))):
        logging.debug("[QGeo] non-finite g or H; returning the Cauchy direction")
        return dcauchy, 0.0, QGeoStatus.NONFINITE_INPUT

    # Pick v such that ||Hv|| / ||v|| is large.
    k = int(np.argmax(np.sum(h**2, axis=0)))
    d, _ = _extremal_curvature_direction(h, h[:, k].copy(), cfg.parallel_tol)

    # Now work in span{g, d}; a multiple of d is returned if it seems adequate.
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        gg = float(g @ g)
        gd = float(g @ d)
        dd = float(d @ d)
        dhd = float(d @ (h @ d))

        if not (gg > 0 and dd > 0):
            vmax = _model_change(g, h, dcauchy)
            logging.debug(
                f"[QGeo] degenerate subspace (gg={gg:.3e}, dd={dd:.3e}); "
                f"returning the Cauchy direction, vmax={vmax:.3e}"
            )
            return dcauchy, vmax, QGeoStatus.DEGENERATE

        v = d - (gd / gg) * g
        vv = float(v @ v)
        scaling = -delbar / np.sqrt(dd) if gd * dhd < 0 else delbar / np.sqrt(dd)
        d = _zero_nan_logged(scaling * d, "scaled step")
        gnorm = np.sqrt(gg)

        if not (gnorm * dd > cfg.curv_ratio_tol * delbar * abs(dhd) and vv > cfg.orth_tol * dd):
            vmax = abs(scaling * (gd + 0.5 * scaling * dhd))
            vmax = float(vmax) if np.isfinite(vmax) else 0.0
            logging.debug(
                f"[QGeo] span{{g, d}} adds nothing (vv={vv:.3e}, dd={dd:.3e}); "
                f"returning the scaled curvature direction, vmax={vmax:.3e}"
            )
            if float(d @ d) <= 0:
                logging.debug("[QGeo] scaled step vanished; returning the Cauchy direction")
                d = dcauchy
            return d, vmax, QGeoStatus.SCALED

        # g and v are orthogonal in span{g, d}. Build an orthonormal basis {d, v} of that
        # subspace in which d^T H v is negligible or zero.
        hv = h @ v
        vnorm = np.sqrt(vv)
        ghg = float(g @ (h @ g)) / gg
        vhg = float(g @ hv) / (vnorm * gnorm)
        vhv = float(v @ hv) / vv

        vmu, wcos, wsin, _ = _cross_term_rotation(ghg, vhg, vhv, cfg.cross_term_tol)
        d = (wcos / gnorm) * g + (wsin / vnorm) * v
        v = (wcos / vnorm) * v - (wsin / gnorm) * g

        # The final d is a multiple of d, v, d + v or d - v.
        dlin = wcos * gnorm / delbar
        vlin = -wsin * gnorm / delbar
        coef_d, coef_v, vmax, _ = _best_combination(dlin, vlin, vmu, ghg, vhv, delbar)
        d = _zero_nan_logged(coef_d * d + coef_v * v, "two-dimensional step")

    if float(d @ d) <= 0:
        logging.debug("[QGeo] two-dimensional step vanished; returning the Cauchy direction")
        d = dcauchy
    return d, (float(vmax) if np.isfinite(vmax) else 0.0), QGeoStatus.TWO_DIM


def qgeostep(
    g, h, delbar: float, *, cfg: Optional[GeometryConfig] = None
) -> Tuple[np.ndarray, float]:
    """
    Approximately maximize |Q(0) - Q(d)| subject to ||d|| <= delbar.

    Parameters
    ----------
    g : array_like, shape (n,)
        Gradient of Q at the origin.
    h : array_like, shape (n, n)
        Symmetric Hessian of Q.
    delbar : float
        Trust-region radius (> 0).
    cfg : GeometryConfig, optional
        Thresholds and the debugging switch.

    Returns
    -------
    d : numpy.ndarray, shape (n,)
        The step.
    vmax : float
        Achieved (or, in the two-dimensional stage, estimated) value of |Q(0) - Q(d)|, >= 0.
    """
    d, vmax, _ = _qgeostep_checked(g, h, delbar, _resolve_cfg(cfg))
    return d, vmax


def _qgeostep_checked(
    g, h, delbar: float, cfg: GeometryConfig
) -> Tuple[np.ndarray, float, QGeoStatus]:
    srname = "QGEOSTEP"
    g = _as_vector(g)
    h = _as_matrix(h)
    delbar = float(delbar)
    n = g.size

    if cfg.debugging:
        require(n >= 1, "N >= 1", srname)
        require(delbar > 0, "DELBAR > 0", srname)
        require(
            h.shape == (n, n) and issymmetric(h, cfg.sym_tol),
            "H is n-by-n and symmetric",
            srname,
        )

    d, vmax, status = _qgeostep(g, h, delbar, cfg)

    if cfg.debugging:
        require(d.shape == (n,), "SIZE(D) == N", srname)
        require(
            np.sqrt(float(d @ d)) <= delbar * (1.0 + 1e-6) + 1e-300,
            "||D|| <= DELBAR",
            srname,
        )
        require(vmax >= 0, "VMAX >= 0", srname)
    return d, vmax, status
