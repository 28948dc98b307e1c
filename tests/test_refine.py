from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest

from plenocal.api.model_io import CalibrationInfo, save_calibration_info, save_feature_observations
from plenocal.core.camera_model import FREE_INTRINSICS_COLS, FREE_INTRINSICS_ROWS, LensletCameraModel, recenter_intrinsics
from plenocal.core.features import FeatureObservations
from plenocal.options import RefineOptions
from plenocal.refine.driver import refine_calibration, refine_calibration_files
from plenocal.refine.residuals import NoValidObservationsError

from synthetic import CHECKER_SIZE, LF_SIZE


def _tight_options(**kw) -> RefineOptions:
    return RefineOptions(
        expected_checker_size=CHECKER_SIZE,
        lenslet_border_size=1,
        param_tolerance=1e-12,
        gradient_tolerance=1e-15,
        **kw,
    )


def _perturbed(scene, seed: int = 0) -> tuple[np.ndarray, LensletCameraModel]:
    rng = np.random.default_rng(seed)
    H = scene.camera.intrinsics_h.copy()
    H[FREE_INTRINSICS_ROWS, FREE_INTRINSICS_COLS] *= 1.0 + 1e-3 * rng.normal(size=8)
    poses = scene.poses.copy()
    poses += 1e-3 * rng.normal(size=poses.shape)
    return poses, LensletCameraModel(intrinsics_h=recenter_intrinsics(H, LF_SIZE))


def test_refine_recovers_ground_truth_from_noiseless_observations(scene):
    poses0, cam0 = _perturbed(scene)
    result = refine_calibration(
        poses=poses0,
        camera=cam0,
        features=scene.features,
        cal_target=scene.cal_target,
        options=_tight_options(),
    )

    assert result.residuals0.shape == (2 * 4 * 12,)
    assert result.start_sse > 1e-12
    assert result.start_rmse > 1e-6
    assert result.rmse < 1e-10
    assert result.sse < 1e-12 * result.start_sse
    assert result.diagnostics["n_params"] == 12 + 8
    assert result.diagnostics["opt_success"] == 1.0

    np.testing.assert_allclose(result.camera.intrinsics_h, scene.camera.intrinsics_h, rtol=1e-6, atol=1e-12)
    np.testing.assert_allclose(result.poses[:, :3], scene.poses[:, :3], atol=1e-7)
    np.testing.assert_allclose(result.poses[:, 3:], scene.poses[:, 3:], atol=1e-7)
    assert result.camera.distortion.size == 0


def test_refine_with_distortion_pass_keeps_zero_distortion_fit(scene):
    poses0, cam0 = _perturbed(scene, seed=1)
    result = refine_calibration(
        poses=poses0,
        camera=cam0,
        features=scene.features,
        cal_target=scene.cal_target,
        options=_tight_options(iteration_mode="with_distortion"),
    )
    assert result.free.distortion.tolist() == [0, 1, 2, 3, 4]
    assert result.camera.distortion.shape == (5,)
    np.testing.assert_array_equal(result.previous_camera.distortion, np.zeros(5))
    assert result.rmse < 1e-8
    assert result.rmse < 1e-3 * result.start_rmse


@pytest.mark.parametrize("n_kept", [0, 5])
def test_refine_without_complete_cells_raises(scene, n_kept):
    features = FeatureObservations.empty(scene.features.n_poses, scene.features.lf_size)
    if n_kept:
        for pose, t, s, cell in scene.features.iter_cells():
            features.cells[pose, t, s] = cell[:n_kept]
    with pytest.raises(NoValidObservationsError):
        refine_calibration(
            poses=scene.poses,
            camera=scene.camera,
            features=features,
            cal_target=scene.cal_target,
            options=_tight_options(),
        )


def test_refine_rejects_pose_count_mismatch(scene):
    with pytest.raises(ValueError):
        refine_calibration(
            poses=scene.poses[:1],
            camera=scene.camera,
            features=scene.features,
            cal_target=scene.cal_target,
            options=_tight_options(),
        )


def _write_working_dir(root: Path, scene) -> None:
    poses0, cam0 = _perturbed(scene, seed=2)
    save_feature_observations(root / "checker_obs.npz", scene.features, scene.cal_target)
    save_calibration_info(
        root / "cal_info.json",
        CalibrationInfo(poses=poses0, camera=cam0, lf_metadata={"serial": "X"}, cam_info={"f": 1}),
    )


def test_refine_files_writes_result(tmp_path: Path, scene) -> None:
    _write_working_dir(tmp_path, scene)
    result = refine_calibration_files(tmp_path, _tight_options())

    meta = json.loads((tmp_path / "cal_info.json").read_text(encoding="utf-8"))
    assert meta["lf_metadata"] == {"serial": "X"}
    assert meta["cam_info"] == {"f": 1}
    assert meta["reprojection_error"]["rmse"] == pytest.approx(result.rmse)
    assert meta["generated_by"]["module"] == "plenocal.refine.driver"
    assert meta["refine_options"]["expected_checker_size"] == list(CHECKER_SIZE)
    assert meta["lf_size"] == list(LF_SIZE)
    assert len(meta["free_parameters"]["intrinsics"]) == 8
    np.testing.assert_allclose(np.asarray(meta["poses"]), result.poses)


def test_refine_files_dry_run_leaves_file_untouched(tmp_path: Path, scene) -> None:
    _write_working_dir(tmp_path, scene)
    before = (tmp_path / "cal_info.json").read_text(encoding="utf-8")
    refine_calibration_files(tmp_path, _tight_options(save_result=False))
    assert (tmp_path / "cal_info.json").read_text(encoding="utf-8") == before
