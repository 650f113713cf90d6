"""Periodic end-to-end checks of the cancellation logging pipeline."""

from cancellation_service.quality.checker import (
    QualityChecker,
    QualityCheckError,
    QualityReport,
    StepResult,
)

__all__ = ["QualityCheckError", "QualityChecker", "QualityReport", "StepResult"]
