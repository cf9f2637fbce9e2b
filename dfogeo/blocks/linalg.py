from __future__ import annotations

from typing import Optional

import numpy as np
import scipy.linalg as la

Vec = np.ndarray


# ---------------------------- Products & norms ---------------------------- #
def matprod(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Matrix-matrix / matrix-vector / vector-matrix product with shape checking."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    inner_a = a.shape[-1]
    inner_b = b.shape[0]
    if inner_a != inner_b:
        raise ValueError(f"matprod: inner dimensions differ, {a.shape} vs {b.shape}")
    return a @ b


def inprod(x: Vec, y: Vec) -> float:
    x = np.asarray(x, dtype=np.float64).reshape(-1)
    y = np.asarray(y, dtype=np.float64).reshape(-1)
    if x.size != y.size:
        raise ValueError(f"inprod: sizes differ, {x.size} vs {y.size}")
    return float(x @ y)


def norm(x: Vec) -> float:
    x = np.asarray(x, dtype=np.float64)
    return float(np.sqrt(np.sum(x**2))) if x.size > 0 else 0.0


def row_norms(a: np.ndarray) -> np.ndarray:
    return np.sqrt(np.sum(np.asarray(a, dtype=np.float64) ** 2, axis=1))


def col_norms(a: np.ndarray) -> np.ndarray:
    return np.sqrt(np.sum(np.asarray(a, dtype=np.float64) ** 2, axis=0))


def subtract_from_columns(a: np.ndarray, v: Vec) -> np.ndarray:
    """Return A - v 1^T, i.e. v subtracted from every column of A (v has A.shape[0] entries)."""
    a = np.asarray(a, dtype=np.float64)
    v = np.asarray(v, dtype=np.float64)
    if a.ndim != 2 or v.shape != (a.shape[0],):
        raise ValueError(
            f"subtract_from_columns: expected v of shape ({a.shape[0]},), got {v.shape}"
        )
    return a - v[:, np.newaxis]


# ---------------------------- Matrix predicates ---------------------------- #
def issymmetric(h: np.ndarray, tol: float = 1e-10) -> bool:
    """True if H is square and symmetric to relative tolerance `tol`."""
    h = np.asarray(h, dtype=np.float64)
    if h.ndim != 2 or h.shape[0] != h.shape[1]:
        return False
    if h.size == 0:
        return True
    # Non-finite entries must mirror each other exactly: H(i,j) NaN iff H(j,i) NaN, same infinities.
    bad = ~np.isfinite(h)
    if not np.array_equal(bad, bad.T):
        return False
    infs = bad & ~np.isnan(h)
    if np.any(h[infs] != h.T[infs]):
        return False
    hf = np.where(bad, 0.0, h)
    scale = max(1.0, float(np.max(np.abs(hf))))
    return bool(la.issymmetric(hf, atol=tol * scale, rtol=tol))


def isinv(a: np.ndarray, b: np.ndarray, tol: float) -> bool:
    """True if B is an inverse of the square matrix A up to relative tolerance `tol`."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    n = a.shape[0]
    if a.shape != (n, n) or b.shape != (n, n):
        return False
    if not (np.all(np.isfinite(a)) and np.all(np.isfinite(b))):
        return False
    eye = np.eye(n)
    scale = max(tol, tol * max(la.norm(a, np.inf), la.norm(b, np.inf)))
    return bool(
        la.norm(a @ b - eye, np.inf) <= scale and la.norm(b @ a - eye, np.inf) <= scale
    )


# ---------------------------- NaN handling ---------------------------- #
def zero_nan(x: Vec) -> Vec:
    """Copy of x with NaN components replaced by zero."""
    x = np.array(x, dtype=np.float64)
    x[np.isnan(x)] = 0.0
    return x


def masked_argmax(values: Vec, mask: Optional[np.ndarray] = None) -> Optional[int]:
    """
    Index of the largest valid entry, lowest index on ties.
    An entry is valid if it is not NaN and mask (when given) is True there.
    Returns None when no entry is valid.
    """
    values = np.asarray(values, dtype=np.float64).reshape(-1)
    valid = ~np.isnan(values)
    if mask is not None:
        valid &= np.asarray(mask, dtype=bool).reshape(-1)
    if not np.any(valid):
        return None
    idx = np.flatnonzero(valid)
    # np.argmax returns the first occurrence of the maximum.
    return int(idx[np.argmax(values[idx])])


def masked_argmin(values: Vec, mask: Optional[np.ndarray] = None) -> Optional[int]:
    """Index of the smallest valid entry, lowest index on ties (see masked_argmax)."""
    values = np.asarray(values, dtype=np.float64).reshape(-1)
    valid = ~np.isnan(values)
    if mask is not None:
        valid &= np.asarray(mask, dtype=bool).reshape(-1)
    if not np.any(valid):
        return None
    idx = np.flatnonzero(valid)
    return int(idx[np.argmin(values[idx])])
