from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

# Sentinel returned by the drop selectors when no vertex qualifies (1-based API).
NO_DROP = 0


# ======================================
# Enums
# ======================================
class QGeoStatus(Enum):
    """Exit path taken by the quadratic geometry step."""

    NONFINITE_INPUT = "nonfinite_input"
    DEGENERATE = "degenerate"
    SCALED = "scaled"
    TWO_DIM = "two_dimensional"


class CurvatureBranch(Enum):
    PARALLEL = "parallel"
    POSITIVE = "positive_root"
    NEGATIVE = "negative_root"


class RotationBranch(Enum):
    ALIGNED = "aligned"
    ROTATED = "rotated"


class CombinationBranch(Enum):
    D_ONLY = "d_only"
    V_ONLY = "v_only"
    DIAGONAL = "diagonal"


# ======================================
# Global configuration
# ======================================
@dataclass
class GeometryConfig:
    """
    Configuration for the interpolation-set geometry kernels.

    Notes
    -----
    • The simplex factors must satisfy 0 < factor_alpha < factor_gamma < 1 < factor_beta
      and factor_delta > 1.
    • debugging=False skips every precondition/postcondition check.
    """

    # ---------------- Simplex thresholds ----------------
    factor_alpha: float = 0.25  # minimal vertex-to-face distance, relative to delta
    factor_beta: float = 2.1  # maximal edge length, relative to delta
    factor_delta: float = 1.1  # edge length that forces a replacement after a TR step
    factor_gamma: float = 0.5  # length of a new geometry step, relative to delta

    # ---------------- Debugging ----------------
    debugging: bool = False
    itol: float = 0.1  # tolerance of SIMI = SIM(:, :N)^{-1}
    sym_tol: float = 1e-10  # relative tolerance of H = H^T

    # ---------------- Drop selection ----------------
    drop_scheme: str = "score"  # {"score","powell"}

    # ---------------- Quadratic geometry step ----------------
    parallel_tol: float = 0.9999  # (vHv)^2 > tol*|Hv|^2|v|^2 => v, Hv parallel
    curv_ratio_tol: float = 5e-3  # |g|*dd > tol*delbar*|dHd| to refine in span{g, d}
    orth_tol: float = 1e-4  # vv > tol*dd to refine in span{g, d}
    cross_term_tol: float = 0.01  # |vHg| <= tol*max(|gHg|, |vHv|) => no rotation

    def __post_init__(self):
        if self.drop_scheme not in ("score", "powell"):
            raise ValueError(
                f"drop_scheme must be 'score' or 'powell', got {self.drop_scheme!r}"
            )


def _resolve_cfg(cfg: Optional[GeometryConfig]) -> GeometryConfig:
    return GeometryConfig() if cfg is None else cfg


# ======================================
# Array helpers
# ======================================
def _as_vector(a) -> np.ndarray:
    return np.array(a, dtype=np.float64).reshape(-1)


def _as_matrix(a) -> np.ndarray:
    out = np.array(a, dtype=np.float64)
    if out.ndim == 1:
        out = out.reshape(1, -1)
    return out
