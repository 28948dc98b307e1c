from __future__ import annotations

import numpy as np


def rotvec_to_matrix(rvec: np.ndarray) -> np.ndarray:
    """Axis-angle (Rodrigues) vector -> (3,3) rotation matrix."""
    from scipy.spatial.transform import Rotation as R  # type: ignore

    return R.from_rotvec(np.asarray(rvec, dtype=np.float64).reshape(3)).as_matrix()


def pose_to_transform(pose: np.ndarray) -> np.ndarray:
    """
    Homogeneous (4,4) transform from a pose row `[rx, ry, rz, tx, ty, tz]`.

    The transform maps calibration-target coordinates into the camera frame:
      P_cam = R P_target + t
    """
    pose = np.asarray(pose, dtype=np.float64).reshape(6)
    T = np.eye(4, dtype=np.float64)
    T[:3, :3] = rotvec_to_matrix(pose[:3])
    T[:3, 3] = pose[3:]
    return T


def transform_points(T: np.ndarray, P: np.ndarray) -> np.ndarray:
    """Apply a (4,4) rigid transform to (N,3) points."""
    P = np.asarray(P, dtype=np.float64).reshape(-1, 3)
    return P @ T[:3, :3].T + T[:3, 3].reshape(1, 3)


def point_ray_offsets(origins: np.ndarray, directions: np.ndarray, points: np.ndarray) -> np.ndarray:
    """
    Perpendicular offset from the line through `origins` along `directions` to each point.

    All inputs are (N,3); directions need not be normalized. Returns (N,3) vectors
    orthogonal to the directions. Unlike its norm, the offset is smooth where it vanishes.
    """
    origins = np.asarray(origins, dtype=np.float64).reshape(-1, 3)
    directions = np.asarray(directions, dtype=np.float64).reshape(-1, 3)
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    if not (origins.shape == directions.shape == points.shape):
        raise ValueError("origins, directions and points must have the same shape")

    d = directions / np.linalg.norm(directions, axis=-1, keepdims=True)
    w = points - origins
    return w - np.sum(w * d, axis=-1, keepdims=True) * d


def point_ray_distance(origins: np.ndarray, directions: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Euclidean distance from each point to its ray, (N,) >= 0."""
    return np.linalg.norm(point_ray_offsets(origins, directions, points), axis=-1)


def checkerboard_points(checker_size: tuple[int, int], spacing: float) -> np.ndarray:
    """
    Planar checkerboard corners (z=0) in the target frame, shape (rows*cols, 3).

    Corners are ordered row-major: the column index varies fastest.
    """
    rows, cols = (int(c) for c in checker_size)
    if rows <= 0 or cols <= 0:
        raise ValueError("checker_size entries must be > 0")
    yy, xx = np.meshgrid(np.arange(rows, dtype=np.float64), np.arange(cols, dtype=np.float64), indexing="ij")
    P = np.zeros((rows * cols, 3), dtype=np.float64)
    P[:, 0] = xx.reshape(-1) * float(spacing)
    P[:, 1] = yy.reshape(-1) * float(spacing)
    return P
