"""Summary statistics, sample correlation and confound detection."""

from exprqc.stats.summary import (
    value_range,
    has_missing,
    missing_fraction,
    count_by,
    cross_tabulate,
    cross_tabulate_frame,
    sample_summary,
    metadata_summary,
)
from exprqc.stats.correlation import (
    CorrelationMatrix,
    ConfoundLevel,
    ConfoundReport,
    ConfoundType,
    correlation_matrix,
    max_correlation,
    detect_outliers,
    detect_confound,
)

__all__ = [
    'value_range',
    'has_missing',
    'missing_fraction',
    'count_by',
    'cross_tabulate',
    'cross_tabulate_frame',
    'sample_summary',
    'metadata_summary',
    'CorrelationMatrix',
    'ConfoundLevel',
    'ConfoundReport',
    'ConfoundType',
    'correlation_matrix',
    'max_correlation',
    'detect_outliers',
    'detect_confound',
]
