from plenocal.api.model_io import (
    CalibrationInfo,
    load_calibration_info,
    load_feature_observations,
    save_calibration_info,
    save_feature_observations,
)

__all__ = [
    "CalibrationInfo",
    "load_calibration_info",
    "save_calibration_info",
    "load_feature_observations",
    "save_feature_observations",
]
