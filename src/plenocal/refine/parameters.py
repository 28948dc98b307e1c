from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Literal

import numpy as np

from plenocal.core.camera_model import (
    FREE_INTRINSICS_COLS,
    FREE_INTRINSICS_ROWS,
    LensletCameraModel,
    recenter_intrinsics,
)
from plenocal.core.distortion import N_DISTORTION_PARAMS
from plenocal.refine.codec import ParamLayout, split_bounds, unbounded

IterationMode = Literal["no_distortion", "with_distortion"]

POSES_BLOCK = "cam_poses"
INTRINSICS_BLOCK = "intrinsics"
DISTORTION_BLOCK = "distortion"

# Sensitivity tag for parameters shared by every pose.
GLOBAL_TAG = 0


@dataclass(frozen=True)
class FreeParameters:
    """Which intrinsics (5x5 entries) and distortion coefficients a refinement pass optimizes."""

    intrinsics_rows: np.ndarray
    intrinsics_cols: np.ndarray
    distortion: np.ndarray

    def to_dict(self) -> dict[str, Any]:
        return {
            "intrinsics": [[int(r), int(c)] for r, c in zip(self.intrinsics_rows, self.intrinsics_cols)],
            "distortion": [int(i) for i in self.distortion],
        }


def select_free_parameters(
    iteration_mode: IterationMode, camera: LensletCameraModel
) -> tuple[FreeParameters, LensletCameraModel]:
    """
    Pick the free parameter sets for one refinement pass.

    The intrinsics set is fixed; distortion is excluded on a "no_distortion" pass.
    When distortion becomes free and the model has none yet, it starts at zero.
    """
    if iteration_mode == "no_distortion":
        distortion = np.zeros((0,), dtype=np.intp)
    elif iteration_mode == "with_distortion":
        distortion = np.arange(N_DISTORTION_PARAMS, dtype=np.intp)
    else:
        raise ValueError(f"unknown iteration mode: {iteration_mode!r}")

    if camera.distortion.size == 0 and distortion.size > 0:
        camera = replace(camera, distortion=np.zeros((N_DISTORTION_PARAMS,), dtype=np.float64))

    free = FreeParameters(
        intrinsics_rows=FREE_INTRINSICS_ROWS.copy(),
        intrinsics_cols=FREE_INTRINSICS_COLS.copy(),
        distortion=distortion,
    )
    return free, camera


@dataclass(frozen=True)
class ParameterEncoding:
    """
    Everything needed to go back and forth between the model and the solver's vector.

    Computed once before optimization and reused for every decode.
    """

    layout: ParamLayout
    sensitivity: np.ndarray  # (P,) int: 0 = all poses, p+1 = pose p only
    bounds: np.ndarray  # (2P,) interleaved (low, high)
    free: FreeParameters
    previous_camera: LensletCameraModel
    lf_size: tuple[int, int, int, int]

    @property
    def n_poses(self) -> int:
        return int(self.layout.block(POSES_BLOCK).shape[0])

    @property
    def lower(self) -> np.ndarray:
        return split_bounds(self.bounds)[0]

    @property
    def upper(self) -> np.ndarray:
        return split_bounds(self.bounds)[1]

    def decode(self, params: np.ndarray) -> tuple[np.ndarray, LensletCameraModel]:
        return decode_parameters(params, self)


def encode_parameters(
    *,
    poses: np.ndarray,
    camera: LensletCameraModel,
    free: FreeParameters,
    lf_size: tuple[int, int, int, int],
) -> tuple[np.ndarray, ParameterEncoding]:
    """
    Flatten poses and free camera parameters into the optimization vector.

    Alongside the values, a sensitivity bundle with the same layout tags each
    parameter with the pose it affects (or 0 for shared intrinsics/distortion),
    and a bounds bundle holds (-inf, +inf) pairs.
    """
    poses = np.asarray(poses, dtype=np.float64)
    if poses.ndim != 2 or poses.shape[1] != 6:
        raise ValueError(f"poses must be (N,6), got {poses.shape}")
    n_poses = poses.shape[0]

    values = {
        POSES_BLOCK: poses,
        INTRINSICS_BLOCK: camera.intrinsics_h[free.intrinsics_rows, free.intrinsics_cols],
        DISTORTION_BLOCK: camera.distortion[free.distortion],
    }
    layout = ParamLayout.from_shapes((name, arr.shape) for name, arr in values.items())

    tags = {
        POSES_BLOCK: np.repeat(np.arange(1, n_poses + 1, dtype=np.int64)[:, None], 6, axis=1),
        INTRINSICS_BLOCK: np.full(values[INTRINSICS_BLOCK].shape, GLOBAL_TAG, dtype=np.int64),
        DISTORTION_BLOCK: np.full(values[DISTORTION_BLOCK].shape, GLOBAL_TAG, dtype=np.int64),
    }
    bounds = {b.name: unbounded(b.size) for b in layout.blocks}

    encoding = ParameterEncoding(
        layout=layout,
        sensitivity=layout.flatten(tags, dtype=np.int64),
        bounds=layout.flatten_bounds(bounds),
        free=free,
        previous_camera=camera,
        lf_size=tuple(int(n) for n in lf_size),  # type: ignore[arg-type]
    )
    return layout.flatten(values), encoding


def decode_parameters(params: np.ndarray, encoding: ParameterEncoding) -> tuple[np.ndarray, LensletCameraModel]:
    """
    Inverse of `encode_parameters`.

    Starts from the previous camera model so parameters left out of this pass keep
    their values, then recenters H[2:4,4]. Round trips are exact except for those
    two recentered entries.
    """
    P = encoding.layout.unflatten(params)
    free = encoding.free
    prev = encoding.previous_camera

    H = prev.intrinsics_h.copy()
    H[free.intrinsics_rows, free.intrinsics_cols] = P[INTRINSICS_BLOCK]
    distortion = prev.distortion.copy()
    distortion[free.distortion] = P[DISTORTION_BLOCK]

    H = recenter_intrinsics(H, encoding.lf_size)
    return P[POSES_BLOCK], LensletCameraModel(intrinsics_h=H, distortion=distortion)


def parameter_scale(params: np.ndarray, encoding: ParameterEncoding) -> np.ndarray:
    """
    Typical magnitude of each parameter, used to size finite-difference steps.

    Intrinsics span several orders of magnitude (sub-micron to millimetre per sample)
    and take their own absolute value; poses and distortion take at least 1.
    """
    P = encoding.layout.unflatten(params)
    intrinsics = np.abs(P[INTRINSICS_BLOCK])
    scale = {
        POSES_BLOCK: np.maximum(np.abs(P[POSES_BLOCK]), 1.0),
        INTRINSICS_BLOCK: np.where(intrinsics > 0, intrinsics, 1.0),
        DISTORTION_BLOCK: np.maximum(np.abs(P[DISTORTION_BLOCK]), 1.0),
    }
    return encoding.layout.flatten(scale)
