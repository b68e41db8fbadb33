"""Data quality services."""

from barsync.core.services.quality.validator import (
    NO_DATA_ISSUE,
    DataQualityValidator,
    QualityThresholds,
    count_gaps,
)

__all__ = ["DataQualityValidator", "NO_DATA_ISSUE", "QualityThresholds", "count_gaps"]
