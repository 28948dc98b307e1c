from __future__ import annotations

from typing import Protocol

import numpy as np

from plenocal.core.camera_model import LensletCameraModel
from plenocal.core.geometry import point_ray_offsets
from plenocal.core.rays import ObservationToRayStrategy, build_ray_model


class PerObservationErrorStrategy(Protocol):
    def offsets(self, obs_idx: np.ndarray, camera: LensletCameraModel, target_cam: np.ndarray) -> np.ndarray:
        """(K,5) sample indices, camera model, (K,3) target points in camera frame -> (K,3) error vectors."""
        ...

    def __call__(self, obs_idx: np.ndarray, camera: LensletCameraModel, target_cam: np.ndarray) -> np.ndarray:
        """Same inputs -> (K,) errors, the norms of `offsets`."""
        ...


class PointRayError:
    """
    Distance between each observation's ray and its checkerboard corner.

    Rays use a relative two-plane parameterization: the origin (s,t) lies on the
    z=0 plane and the direction (u,v) is taken per unit step in depth, so the ray
    is (s,t,0) + z (u,v,1). Distances share the calibration target's units.
    """

    def __init__(self, ray_model: ObservationToRayStrategy) -> None:
        self.ray_model = ray_model

    def offsets(self, obs_idx: np.ndarray, camera: LensletCameraModel, target_cam: np.ndarray) -> np.ndarray:
        rays = self.ray_model(obs_idx, camera)
        K = rays.shape[0]
        origins = np.zeros((K, 3), dtype=np.float64)
        origins[:, :2] = rays[:, :2]
        directions = np.ones((K, 3), dtype=np.float64)
        directions[:, :2] = rays[:, 2:4]
        return point_ray_offsets(origins, directions, target_cam)

    def __call__(self, obs_idx: np.ndarray, camera: LensletCameraModel, target_cam: np.ndarray) -> np.ndarray:
        return np.linalg.norm(self.offsets(obs_idx, camera, target_cam), axis=-1)


OBSERVATION_ERRORS: dict[str, type] = {
    "point_ray": PointRayError,
}


def build_observation_error(name: str, ray_model: str) -> PerObservationErrorStrategy:
    try:
        cls = OBSERVATION_ERRORS[name]
    except KeyError:
        raise ValueError(
            f"unknown observation error: {name!r} (expected one of {sorted(OBSERVATION_ERRORS)})"
        ) from None
    return cls(build_ray_model(ray_model))
