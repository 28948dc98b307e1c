from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np

from plenocal.core.camera_model import LensletCameraModel
from plenocal.core.features import FeatureObservations

CAL_INFO_SCHEMA = "plenocal.calinfo.v0"
FEATURES_SCHEMA = "plenocal.checker_obs.v0"


def _to_float_matrix(x: Any, shape: tuple[int, ...]) -> np.ndarray:
    x = np.asarray(x, dtype=np.float64)
    x = x.reshape(shape)
    if not np.all(np.isfinite(x)):
        raise ValueError("non-finite values")
    return x


@dataclass(frozen=True)
class CalibrationInfo:
    """
    Calibration state shared between calibration steps.

    `lf_metadata` and `cam_info` are carried through untouched. `extra` holds whatever
    a previous step recorded (refinement provenance, error statistics, ...).
    """

    poses: np.ndarray  # (N,6) [rvec, tvec]
    camera: LensletCameraModel
    lf_metadata: dict[str, Any] = field(default_factory=dict)
    cam_info: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)


def save_calibration_info(path: Path, info: CalibrationInfo) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    poses = np.asarray(info.poses, dtype=np.float64).reshape(-1, 6)
    meta: dict[str, Any] = {
        **info.extra,
        "schema_version": CAL_INFO_SCHEMA,
        "poses": poses.tolist(),
        "camera_model": info.camera.to_dict(),
        "lf_metadata": info.lf_metadata,
        "cam_info": info.cam_info,
    }
    path.write_text(json.dumps(meta, indent=2, sort_keys=True), encoding="utf-8")
    return path


def load_calibration_info(path: Path) -> CalibrationInfo:
    meta = json.loads(Path(path).read_text(encoding="utf-8"))
    if str(meta.get("schema_version")) != CAL_INFO_SCHEMA:
        raise ValueError("unsupported calibration info schema")

    poses_raw = meta.pop("poses")
    n_poses = len(poses_raw)
    poses = _to_float_matrix(poses_raw, (n_poses, 6))
    camera = LensletCameraModel.from_dict(meta.pop("camera_model"))
    lf_metadata = meta.pop("lf_metadata", {}) or {}
    cam_info = meta.pop("cam_info", {}) or {}
    meta.pop("schema_version")
    return CalibrationInfo(poses=poses, camera=camera, lf_metadata=lf_metadata, cam_info=cam_info, extra=meta)


def save_feature_observations(path: Path, features: FeatureObservations, cal_target: np.ndarray) -> Path:
    """
    Store observation cells as stacked rows plus per-cell offsets:

      cell_index[c] = (pose, t, s); points[cell_offsets[c]:cell_offsets[c+1]] = cell rows
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    index: list[tuple[int, int, int]] = []
    offsets = [0]
    chunks: list[np.ndarray] = []
    width = None
    for pose, t, s, cell in features.iter_cells():
        if width is None:
            width = cell.shape[1]
        if cell.shape[1] != width:
            raise ValueError("all observation cells must have the same number of columns")
        index.append((pose, t, s))
        chunks.append(cell)
        offsets.append(offsets[-1] + cell.shape[0])
    width = 2 if width is None else width

    np.savez_compressed(
        path,
        schema_version=np.asarray(FEATURES_SCHEMA),
        lf_size=np.asarray(features.lf_size, dtype=np.int64),
        grid_shape=np.asarray(features.cells.shape, dtype=np.int64),
        cell_index=np.asarray(index, dtype=np.int64).reshape(-1, 3),
        cell_offsets=np.asarray(offsets, dtype=np.int64),
        points=np.concatenate(chunks, axis=0) if chunks else np.zeros((0, width), dtype=np.float64),
        cal_target=np.asarray(cal_target, dtype=np.float64).reshape(-1, 3),
    )
    return path


def load_feature_observations(path: Path) -> tuple[FeatureObservations, np.ndarray]:
    with np.load(str(path)) as w:
        if str(w["schema_version"]) != FEATURES_SCHEMA:
            raise ValueError("unsupported feature observations schema")
        lf_size = tuple(int(n) for n in w["lf_size"])
        grid_shape = tuple(int(n) for n in w["grid_shape"])
        index = np.asarray(w["cell_index"], dtype=np.int64).reshape(-1, 3)
        offsets = np.asarray(w["cell_offsets"], dtype=np.int64).reshape(-1)
        points = np.asarray(w["points"], dtype=np.float64)
        cal_target = _to_float_matrix(w["cal_target"], (-1, 3))

    if len(lf_size) != 4 or grid_shape[1:] != lf_size[:2]:
        raise ValueError("grid shape does not match light field size")
    if offsets.size != index.shape[0] + 1 or offsets[-1] != points.shape[0]:
        raise ValueError("inconsistent cell offsets")

    features = FeatureObservations.empty(grid_shape[0], lf_size)  # type: ignore[arg-type]
    for c, (pose, t, s) in enumerate(index):
        features.cells[pose, t, s] = points[offsets[c] : offsets[c + 1]].copy()
    return features, cal_target
