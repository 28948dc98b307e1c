__version__ = "0.1.0"

from plenocal.api import (
    CalibrationInfo,
    load_calibration_info,
    load_feature_observations,
    save_calibration_info,
    save_feature_observations,
)
from plenocal.core.camera_model import LensletCameraModel, recenter_intrinsics
from plenocal.core.features import FeatureObservations
from plenocal.core.logging import setup_logging
from plenocal.options import OptionsValidationError, RefineOptions, load_refine_options, parse_refine_options
from plenocal.refine.codec import ShapeMismatchError
from plenocal.refine.driver import RefinementResult, refine_calibration, refine_calibration_files
from plenocal.refine.residuals import NoValidObservationsError, ObservationCountMismatchError

__all__ = [
    "__version__",
    "CalibrationInfo",
    "FeatureObservations",
    "LensletCameraModel",
    "NoValidObservationsError",
    "ObservationCountMismatchError",
    "OptionsValidationError",
    "RefineOptions",
    "RefinementResult",
    "ShapeMismatchError",
    "load_calibration_info",
    "load_feature_observations",
    "load_refine_options",
    "parse_refine_options",
    "recenter_intrinsics",
    "refine_calibration",
    "refine_calibration_files",
    "save_calibration_info",
    "save_feature_observations",
    "setup_logging",
]
