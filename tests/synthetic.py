from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from plenocal.core.camera_model import LensletCameraModel, recenter_intrinsics
from plenocal.core.features import FeatureObservations
from plenocal.core.geometry import checkerboard_points, pose_to_transform, transform_points

LF_SIZE = (4, 4, 200, 200)  # (n_j, n_i, n_l, n_k)
CHECKER_SIZE = (3, 4)


@dataclass(frozen=True)
class SyntheticScene:
    camera: LensletCameraModel
    poses: np.ndarray
    features: FeatureObservations
    cal_target: np.ndarray


def ground_truth_camera() -> LensletCameraModel:
    H = np.zeros((5, 5), dtype=np.float64)
    H[4, 4] = 1.0
    H[0, 0], H[0, 2], H[2, 0], H[2, 2] = 2.0e-4, -2.0e-6, -5.0e-4, 1.0e-3
    H[1, 1], H[1, 3], H[3, 1], H[3, 3] = 2.2e-4, -1.5e-6, -4.0e-4, 1.1e-3
    H[0, 4] = -(H[0, 0] * 1.5 + H[0, 2] * 99.5)
    H[1, 4] = -(H[1, 1] * 1.5 + H[1, 3] * 99.5)
    return LensletCameraModel(intrinsics_h=recenter_intrinsics(H, LF_SIZE))


def ground_truth_poses() -> np.ndarray:
    return np.array(
        [
            [0.10, -0.20, 0.05, 0.010, -0.005, 0.50],
            [-0.15, 0.10, -0.10, -0.010, 0.010, 0.45],
        ],
        dtype=np.float64,
    )


def project_to_samples(camera: LensletCameraModel, P_cam: np.ndarray, i: int, j: int) -> np.ndarray:
    """
    Exact (K,2) [k,l] observations for sample (i,j): solve for the pixel whose ray
    passes through each camera-frame point.
    """
    H = camera.intrinsics_h
    kl = np.zeros((P_cam.shape[0], 2), dtype=np.float64)
    for n, (X, Y, Z) in enumerate(P_cam):
        rows = np.stack([H[0] + Z * H[2], H[1] + Z * H[3]], axis=0)  # x(Z), y(Z) as functions of [i,j,k,l,1]
        A = rows[:, 2:4]
        b = np.array([X, Y]) - rows @ np.array([i, j, 0.0, 0.0, 1.0])
        kl[n] = np.linalg.solve(A, b)
    return kl


def make_scene() -> SyntheticScene:
    camera = ground_truth_camera()
    poses = ground_truth_poses()
    target = checkerboard_points(CHECKER_SIZE, 0.02)
    target -= target.mean(axis=0, keepdims=True)

    features = FeatureObservations.empty(poses.shape[0], LF_SIZE)
    for p in range(poses.shape[0]):
        P_cam = transform_points(pose_to_transform(poses[p]), target)
        for t in range(LF_SIZE[0]):
            for s in range(LF_SIZE[1]):
                features.cells[p, t, s] = project_to_samples(camera, P_cam, i=s, j=t)
    return SyntheticScene(camera=camera, poses=poses, features=features, cal_target=target)

