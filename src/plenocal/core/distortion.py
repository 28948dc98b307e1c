from __future__ import annotations

from dataclasses import dataclass

import numpy as np

N_DISTORTION_PARAMS = 5


@dataclass(frozen=True)
class DirectionDistortion:
    """
    Radial distortion applied to ray directions (u,v) of a lenslet camera.

    Parameters, in storage order:
      centre of distortion: b1, b2
      radial: k1, k2, k3
    """

    b1: float = 0.0
    b2: float = 0.0
    k1: float = 0.0
    k2: float = 0.0
    k3: float = 0.0

    def distort(self, u: np.ndarray, v: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        u = np.asarray(u, dtype=np.float64) - self.b1
        v = np.asarray(v, dtype=np.float64) - self.b2
        r2 = u * u + v * v
        r4 = r2 * r2
        r6 = r4 * r2
        radial = 1.0 + self.k1 * r2 + self.k2 * r4 + self.k3 * r6
        return u * radial + self.b1, v * radial + self.b2


def distortion_from_vector(vec: np.ndarray) -> DirectionDistortion | None:
    """None for an empty vector (no distortion modelled)."""
    vec = np.asarray(vec, dtype=np.float64).reshape(-1)
    if vec.size == 0:
        return None
    if vec.size != N_DISTORTION_PARAMS:
        raise ValueError(f"distortion vector must have 0 or {N_DISTORTION_PARAMS} elements, got {vec.size}")
    return DirectionDistortion(*(float(x) for x in vec))
