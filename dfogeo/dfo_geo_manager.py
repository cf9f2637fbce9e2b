from __future__ import annotations

from typing import Dict, Optional, Tuple

import numpy as np

from .blocks.aux import NO_DROP, GeometryConfig, _as_matrix
from .dfo_geo import assess_geo, geostep, setdrop_geo, setdrop_tr, simplex_distances
from .dfo_qgeo import _qgeostep_checked


class GeometryManager:
    """
    Geometry control for a DFO trust-region driver.

    Binds a GeometryConfig (factors, debugging, drop scheme) to the stateless kernels and
    reports each call as (result, info), info being a plain dict. Holds no per-call state,
    so one manager may serve several independent solvers.

    Typical simplex iteration:
        if not mgr.assess(delta, sim, simi):
            jdrop, _ = mgr.drop_for_geometry(delta, sim, simi)
            d, _ = mgr.simplex_step(jdrop, cpen, conmat, cval, delta, fval, simi)
    """

    def __init__(self, config: Optional[GeometryConfig] = None):
        self.cfg = GeometryConfig() if config is None else config

    # ------------------------- helpers ------------------------- #
    @staticmethod
    def _distance_info(sim, simi) -> Dict:
        sim = _as_matrix(sim)
        simi = _as_matrix(simi)
        vsig, veta = simplex_distances(sim, simi)
        return dict(
            vsig_min=float(np.min(vsig)) if vsig.size else float("nan"),
            veta_max=float(np.max(veta)) if veta.size else float("nan"),
        )

    # ------------------------- simplex ------------------------- #
    def assess(self, delta: float, sim, simi) -> bool:
        cfg = self.cfg
        return assess_geo(delta, cfg.factor_alpha, cfg.factor_beta, sim, simi, cfg=cfg)

    def drop_for_step(self, ximproved: bool, d, delta: float, sim, simi) -> Tuple[int, Dict]:
        cfg = self.cfg
        jdrop = setdrop_tr(
            ximproved, d, delta, cfg.factor_alpha, cfg.factor_delta, sim, simi, cfg=cfg
        )
        info = dict(
            jdrop=jdrop,
            dropped=jdrop != NO_DROP,
            ximproved=bool(ximproved),
            scheme=cfg.drop_scheme,
        )
        info.update(self._distance_info(sim, simi))
        return jdrop, info

    def drop_for_geometry(self, delta: float, sim, simi) -> Tuple[int, Dict]:
        cfg = self.cfg
        jdrop = setdrop_geo(delta, cfg.factor_alpha, cfg.factor_beta, sim, simi, cfg=cfg)
        info = dict(jdrop=jdrop, dropped=jdrop != NO_DROP)
        info.update(self._distance_info(sim, simi))
        info["reason"] = (
            "long_edge"
            if info["veta_max"] > cfg.factor_beta * delta
            else ("thin_face" if info["vsig_min"] < cfg.factor_alpha * delta else "none")
        )
        info["adequate"] = info["reason"] == "none"
        return jdrop, info

    def simplex_step(
        self, jdrop: int, cpen: float, conmat, cval, delta: float, fval, simi
    ) -> Tuple[np.ndarray, Dict]:
        cfg = self.cfg
        d = geostep(jdrop, cpen, conmat, cval, delta, cfg.factor_gamma, fval, simi, cfg=cfg)
        info = dict(
            jdrop=int(jdrop),
            step_norm=float(np.linalg.norm(d)),
            target_norm=cfg.factor_gamma * delta,
        )
        return d, info

    # ------------------------- quadratic ------------------------- #
    def quadratic_step(self, g, h, delbar: float) -> Tuple[np.ndarray, Dict]:
        d, vmax, status = _qgeostep_checked(g, h, delbar, self.cfg)
        info = dict(
            status=status.value,
            vmax=vmax,
            step_norm=float(np.linalg.norm(d)),
            radius=float(delbar),
        )
        return d, info
