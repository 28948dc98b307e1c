from __future__ import annotations

from typing import Protocol

import numpy as np

from plenocal.core.camera_model import LensletCameraModel
from plenocal.core.distortion import distortion_from_vector


class ObservationToRayStrategy(Protocol):
    def __call__(self, obs_idx: np.ndarray, camera: LensletCameraModel) -> np.ndarray:
        """Map (K,5) homogeneous sample indices [i,j,k,l,1] to (K,4) rays [s,t,u,v]."""
        ...


def homogeneous_sample_indices(cell: np.ndarray, s_idx: int, t_idx: int) -> np.ndarray:
    """
    Complete one observation cell to (K,5) indices [i,j,k,l,1].

    A (K,2) cell only holds [k,l]; its [i,j] come from the cell's grid position.
    A (K,4) cell already holds [i,j,k,l].
    """
    cell = np.asarray(cell, dtype=np.float64)
    if cell.ndim != 2 or cell.shape[1] not in (2, 4):
        raise ValueError(f"observation cell must be (K,2) or (K,4), got {cell.shape}")
    K = cell.shape[0]
    out = np.ones((K, 5), dtype=np.float64)
    if cell.shape[1] == 2:
        out[:, 0] = float(s_idx)
        out[:, 1] = float(t_idx)
        out[:, 2:4] = cell
    else:
        out[:, :4] = cell
    return out


class FreeIntrinsicsRayModel:
    """
    Rays from the full 5x5 intrinsic matrix followed by direction distortion.

    ray = H [i,j,k,l,1]^T, then (u,v) <- distort(u,v) when distortion is modelled.
    """

    def __call__(self, obs_idx: np.ndarray, camera: LensletCameraModel) -> np.ndarray:
        obs_idx = np.asarray(obs_idx, dtype=np.float64).reshape(-1, 5)
        rays = (obs_idx @ camera.intrinsics_h.T)[:, :4]
        dist = distortion_from_vector(camera.distortion)
        if dist is not None:
            u, v = dist.distort(rays[:, 2], rays[:, 3])
            rays[:, 2] = u
            rays[:, 3] = v
        return rays


RAY_MODELS: dict[str, type] = {
    "free_intrinsics_h": FreeIntrinsicsRayModel,
}


def build_ray_model(name: str) -> ObservationToRayStrategy:
    try:
        cls = RAY_MODELS[name]
    except KeyError:
        raise ValueError(f"unknown ray model: {name!r} (expected one of {sorted(RAY_MODELS)})") from None
    return cls()
