from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import numpy as np

from plenocal.api.model_io import (
    CalibrationInfo,
    load_calibration_info,
    load_feature_observations,
    save_calibration_info,
)
from plenocal.core.camera_model import LensletCameraModel
from plenocal.core.features import FeatureObservations
from plenocal.options import RefineOptions
from plenocal.refine.observation_error import build_observation_error
from plenocal.refine.parameters import (
    FreeParameters,
    encode_parameters,
    parameter_scale,
    select_free_parameters,
)
from plenocal.refine.residuals import NoValidObservationsError, ResidualAssembler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefinementResult:
    poses: np.ndarray  # (N,6)
    camera: LensletCameraModel
    previous_camera: LensletCameraModel
    free: FreeParameters
    residuals0: np.ndarray
    residuals: np.ndarray
    diagnostics: dict[str, float]

    @property
    def start_sse(self) -> float:
        return float(np.sum(self.residuals0**2))

    @property
    def start_rmse(self) -> float:
        return float(np.sqrt(np.mean(self.residuals0**2)))

    @property
    def sse(self) -> float:
        return float(np.sum(self.residuals**2))

    @property
    def rmse(self) -> float:
        return float(np.sqrt(np.mean(self.residuals**2)))


def _tol(value: float) -> float | None:
    # least_squares disables a termination criterion with None, not 0.
    return None if value == 0 else float(value)


def refine_calibration(
    *,
    poses: np.ndarray,
    camera: LensletCameraModel,
    features: FeatureObservations,
    cal_target: np.ndarray,
    options: RefineOptions,
) -> RefinementResult:
    """
    Refine intrinsics, distortion and per-image poses by minimizing point-to-ray distances.

    Each complete checkerboard observation is unprojected to a ray with the current
    camera model and compared with its corner, placed in the camera frame by the
    pose. Poses only influence their own observations: the Jacobian is evaluated
    on that sparsity pattern. Parameters span several orders of magnitude, so
    difference steps and solver variable scaling follow each one's typical size.
    """
    from scipy.optimize import least_squares  # type: ignore

    poses = np.asarray(poses, dtype=np.float64).reshape(-1, 6)
    if poses.shape[0] != features.n_poses:
        raise ValueError(f"{poses.shape[0]} poses but observations for {features.n_poses}")

    logger.info("Calibration refinement step")
    free, camera = select_free_parameters(options.iteration_mode, camera)
    params0, encoding = encode_parameters(poses=poses, camera=camera, free=free, lf_size=features.lf_size)

    assembler = ResidualAssembler.build(
        features=features,
        cal_target=cal_target,
        encoding=encoding,
        observation_error=build_observation_error(options.observation_error, options.ray_model),
        expected_checker_size=options.expected_checker_size,
        border=options.lenslet_border_size,
    )
    logger.info("IJ range: t=%s s=%s", list(assembler.t_range), list(assembler.s_range))
    logger.info("Intrinsics: %s", list(zip(free.intrinsics_rows.tolist(), free.intrinsics_cols.tolist())))
    if free.distortion.size > 0:
        logger.info("Distortion: %s", free.distortion.tolist())

    residuals0, sparsity = assembler.evaluate(params0, with_sparsity=True)
    if residuals0.size == 0:
        raise NoValidObservationsError("No valid grid points found -- possible grid parameter mismatch")

    sse0 = float(np.sum(residuals0**2))
    rmse0 = float(np.sqrt(np.mean(residuals0**2)))
    logger.info("Start SSE: %g m^2, RMSE: %g m", sse0, rmse0)

    scale = parameter_scale(params0, encoding)
    steps = np.sqrt(np.finfo(np.float64).eps) * scale

    def jac(x: np.ndarray):
        return assembler.jacobian(x, steps, sparsity)

    sol = least_squares(
        assembler,
        params0,
        jac=jac,
        bounds=(encoding.lower, encoding.upper),
        method="trf",
        x_scale=scale,
        xtol=_tol(options.param_tolerance),
        ftol=_tol(options.residual_tolerance),
        gtol=_tol(options.gradient_tolerance),
        max_nfev=options.max_nfev,
        verbose=int(options.solver_verbose),
    )

    poses_opt, camera_opt = encoding.decode(sol.x)
    residuals = np.asarray(sol.fun, dtype=np.float64)
    logger.info("Finished calibration refinement: %s", sol.message)

    diag = {
        "opt_cost": float(sol.cost),
        "opt_nfev": float(sol.nfev),
        "opt_njev": float(sol.njev or 0),
        "opt_status": float(sol.status),
        "opt_success": float(bool(sol.success)),
        "n_poses": float(poses.shape[0]),
        "n_residuals": float(residuals0.size),
        "n_params": float(params0.size),
    }
    result = RefinementResult(
        poses=poses_opt,
        camera=camera_opt,
        previous_camera=camera,
        free=free,
        residuals0=residuals0,
        residuals=residuals,
        diagnostics=diag,
    )
    logger.info(
        "Start SSE: %g m^2, RMSE: %g m / Finish SSE: %g m^2, RMSE: %g m",
        result.start_sse,
        result.start_rmse,
        result.sse,
        result.rmse,
    )
    return result


def refine_calibration_files(working_path: Path, options: RefineOptions) -> RefinementResult:
    """
    Load observations and the current calibration from `working_path`, refine, and
    write the calibration back in place unless `options.save_result` is false.
    """
    from plenocal import __version__

    working_path = Path(working_path)
    features, cal_target = load_feature_observations(working_path / options.features_fname)
    cal_info_path = working_path / options.cal_info_fname
    info = load_calibration_info(cal_info_path)

    result = refine_calibration(
        poses=info.poses,
        camera=info.camera,
        features=features,
        cal_target=cal_target,
        options=options,
    )

    if not options.save_result:
        logger.info("Dry run, not saving")
        return result

    extra = {
        **info.extra,
        "generated_by": {
            "module": __name__,
            "time": datetime.now().strftime("%d%b%Y_%H%M%S"),
            "version": __version__,
        },
        "reprojection_error": {"sse": result.sse, "rmse": result.rmse},
        "refine_options": options.to_dict(),
        "lf_size": list(features.lf_size),
        "free_parameters": result.free.to_dict(),
        "previous_camera_model": result.previous_camera.to_dict(),
    }
    logger.info("Saving to %s", cal_info_path)
    save_calibration_info(
        cal_info_path,
        CalibrationInfo(
            poses=result.poses,
            camera=result.camera,
            lf_metadata=info.lf_metadata,
            cam_info=info.cam_info,
            extra=extra,
        ),
    )
    return result
