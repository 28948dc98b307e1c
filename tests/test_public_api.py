from __future__ import annotations


def test_public_api_exports() -> None:
    import plenocal as pc

    assert hasattr(pc, "refine_calibration")
    assert hasattr(pc, "refine_calibration_files")
    assert hasattr(pc, "RefineOptions")
    assert hasattr(pc, "LensletCameraModel")
    assert hasattr(pc, "FeatureObservations")
    assert hasattr(pc, "NoValidObservationsError")
    assert hasattr(pc, "ObservationCountMismatchError")
    assert hasattr(pc, "ShapeMismatchError")
    assert isinstance(pc.__version__, str)
