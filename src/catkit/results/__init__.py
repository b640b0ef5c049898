from catkit.results.calibration_result import CalibrationResult, IterationRecord

__all__ = ["CalibrationResult", "IterationRecord"]
