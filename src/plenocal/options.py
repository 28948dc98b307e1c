from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import numpy as np

from plenocal.core.rays import RAY_MODELS
from plenocal.refine.observation_error import OBSERVATION_ERRORS
from plenocal.refine.parameters import IterationMode

SCHEMA_VERSION = "plenocal.refine_options.v0"


class OptionsValidationError(ValueError):
    pass


@dataclass(frozen=True)
class RefineOptions:
    """
    Options for one calibration refinement pass.

    `param_tolerance` and `residual_tolerance` stop the solver when parameter steps or
    the relative change of the cost fall below them; 0 disables a criterion.
    """

    expected_checker_size: tuple[int, int]
    lenslet_border_size: int = 1
    iteration_mode: IterationMode = "no_distortion"
    param_tolerance: float = 5e-5
    residual_tolerance: float = 0.0
    gradient_tolerance: float = 1e-8
    max_nfev: int | None = None
    solver_verbose: int = 0
    ray_model: str = "free_intrinsics_h"
    observation_error: str = "point_ray"
    save_result: bool = True
    features_fname: str = "checker_obs.npz"
    cal_info_fname: str = "cal_info.json"

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["expected_checker_size"] = list(self.expected_checker_size)
        d["schema_version"] = SCHEMA_VERSION
        return d


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise OptionsValidationError(msg)


def load_refine_options(path: Path) -> RefineOptions:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return parse_refine_options(data)


def parse_refine_options(data: dict[str, Any]) -> RefineOptions:
    schema_version = data.get("schema_version", SCHEMA_VERSION)
    _require(schema_version == SCHEMA_VERSION, f"schema_version must be {SCHEMA_VERSION}")

    checker = data.get("expected_checker_size")
    _require(
        isinstance(checker, (list, tuple)) and len(checker) == 2,
        "expected_checker_size must be [rows, cols] (inner corners)",
    )
    rows, cols = int(checker[0]), int(checker[1])
    _require(rows > 0 and cols > 0, "expected_checker_size values must be > 0")

    border = int(data.get("lenslet_border_size", 1))
    _require(border >= 0, "lenslet_border_size must be >= 0")

    mode = str(data.get("iteration_mode", "no_distortion"))
    _require(mode in ("no_distortion", "with_distortion"), "iteration_mode must be no_distortion or with_distortion")

    tol_x = float(data.get("param_tolerance", 5e-5))
    tol_fun = float(data.get("residual_tolerance", 0.0))
    tol_g = float(data.get("gradient_tolerance", 1e-8))
    _require(tol_x >= 0 and tol_fun >= 0 and tol_g >= 0, "solver tolerances must be >= 0")
    eps = float(np.finfo(np.float64).eps)
    _require(max(tol_x, tol_fun, tol_g) > eps, f"at least one solver tolerance must be > {eps:g}")

    max_nfev_raw = data.get("max_nfev")
    max_nfev = None if max_nfev_raw is None else int(max_nfev_raw)
    _require(max_nfev is None or max_nfev > 0, "max_nfev must be > 0")

    verbose = int(data.get("solver_verbose", 0))
    _require(verbose in (0, 1, 2), "solver_verbose must be 0, 1 or 2")

    ray_model = str(data.get("ray_model", "free_intrinsics_h"))
    _require(ray_model in RAY_MODELS, f"ray_model must be one of {sorted(RAY_MODELS)}")
    obs_error = str(data.get("observation_error", "point_ray"))
    _require(obs_error in OBSERVATION_ERRORS, f"observation_error must be one of {sorted(OBSERVATION_ERRORS)}")

    return RefineOptions(
        expected_checker_size=(rows, cols),
        lenslet_border_size=border,
        iteration_mode=mode,  # type: ignore[arg-type]
        param_tolerance=tol_x,
        residual_tolerance=tol_fun,
        gradient_tolerance=tol_g,
        max_nfev=max_nfev,
        solver_verbose=verbose,
        ray_model=ray_model,
        observation_error=obs_error,
        save_result=bool(data.get("save_result", True)),
        features_fname=str(data.get("features_fname", "checker_obs.npz")),
        cal_info_fname=str(data.get("cal_info_fname", "cal_info.json")),
    )
