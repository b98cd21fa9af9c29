from __future__ import annotations

from collections.abc import Sequence
from typing import TypeAlias

import numpy as np
from numpy.typing import NDArray

from feedlens.constants import SIMILARITY_MAX, SIMILARITY_MIN

Vector: TypeAlias = Sequence[float] | NDArray[np.floating]


def cosine_similarity(a: Vector, b: Vector) -> float:
    """Cosine similarity between two equal-length vectors.

    Returns NaN when either vector has zero norm.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(
            f"Vector length mismatch: {va.shape[0] if va.ndim else 0} != "
            f"{vb.shape[0] if vb.ndim else 0}"
        )
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return float("nan")
    sim = float(np.dot(va, vb)) / denom
    return float(np.clip(sim, SIMILARITY_MIN, SIMILARITY_MAX))
