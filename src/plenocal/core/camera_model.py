from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np

from plenocal.core.distortion import N_DISTORTION_PARAMS

# The 8 intrinsics refined by calibration: two 2x2 blocks coupling (i,k)->(s,u) and (j,l)->(t,v).
# Order matters, it fixes the layout of the intrinsics block in the optimization vector.
FREE_INTRINSICS_ROWS = np.array([0, 2, 1, 3, 0, 2, 1, 3], dtype=np.intp)
FREE_INTRINSICS_COLS = np.array([0, 0, 1, 1, 2, 2, 3, 3], dtype=np.intp)


@dataclass(frozen=True)
class LensletCameraModel:
    """
    Intrinsic model of a lenslet-based plenoptic camera.

    - `intrinsics_h`: (5,5) homogeneous matrix mapping sample indices [i,j,k,l,1]
      to a relative two-plane ray [s,t,u,v,1]
    - `distortion`: (0,) or (5,) direction distortion vector [b1,b2,k1,k2,k3]
    """

    intrinsics_h: np.ndarray
    distortion: np.ndarray = field(default_factory=lambda: np.zeros((0,), dtype=np.float64))

    def __post_init__(self) -> None:
        H = np.asarray(self.intrinsics_h, dtype=np.float64)
        if H.shape != (5, 5):
            raise ValueError(f"intrinsics_h must be (5,5), got {H.shape}")
        dist = np.asarray(self.distortion, dtype=np.float64).reshape(-1)
        if dist.size not in (0, N_DISTORTION_PARAMS):
            raise ValueError(f"distortion must have 0 or {N_DISTORTION_PARAMS} elements, got {dist.size}")
        object.__setattr__(self, "intrinsics_h", H.copy())
        object.__setattr__(self, "distortion", dist.copy())

    def to_dict(self) -> dict[str, Any]:
        return {
            "intrinsics_h": self.intrinsics_h.tolist(),
            "distortion": self.distortion.tolist(),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> LensletCameraModel:
        H = np.asarray(d["intrinsics_h"], dtype=np.float64)
        dist = np.asarray(d.get("distortion", []), dtype=np.float64).reshape(-1)
        if not (np.all(np.isfinite(H)) and np.all(np.isfinite(dist))):
            raise ValueError("non-finite values in camera model")
        return cls(intrinsics_h=H, distortion=dist)


def sample_center(lf_size: tuple[int, int, int, int]) -> np.ndarray:
    """
    Central sample [i,j,k,l,1] (0-based) for a light field of shape (n_j, n_i, n_l, n_k).
    """
    n_j, n_i, n_l, n_k = (int(n) for n in lf_size)
    return np.array([(n_i - 1) / 2.0, (n_j - 1) / 2.0, (n_k - 1) / 2.0, (n_l - 1) / 2.0, 1.0], dtype=np.float64)


def recenter_intrinsics(H: np.ndarray, lf_size: tuple[int, int, int, int]) -> np.ndarray:
    """
    Set H[2:4,4] so the central sample of the light field maps to a ray with u=v=0.

    These two entries are redundant with the pose of the calibration target and
    are therefore never optimized directly.
    """
    H = np.array(H, dtype=np.float64, copy=True)
    H[2:4, 4] = 0.0
    offset = -H @ sample_center(lf_size)
    H[2:4, 4] = offset[2:4]
    return H
