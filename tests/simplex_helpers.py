from __future__ import annotations

import numpy as np


def random_simplex(n: int, delta: float = 1.0, seed: int = 0, spread: float = 0.3):
    """A well-conditioned simplex (sim, simi) with edges of length about delta."""
    rng = np.random.default_rng(seed)
    edges = delta * (np.eye(n) + spread * rng.standard_normal((n, n)))
    x0 = rng.standard_normal(n)
    sim = np.column_stack([edges, x0])
    simi = np.linalg.inv(edges)
    return sim, simi


def identity_simplex(n: int):
    sim = np.column_stack([np.eye(n), np.zeros(n)])
    return sim, np.eye(n)
