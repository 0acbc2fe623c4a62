"""
Distributional summaries used to sanity-check an aligned dataset.

These are plain reducers over a Table or a metadata collection. The only
failure mode is empty input, which raises EmptyInputError instead of
returning a degenerate number (0, NaN) that could be mistaken for a result.

`cross_tabulate` is how design confounds are surfaced (e.g. each sequencing
batch containing a single developmental stage). Its output keeps every cell
of the full level grid, with explicit zeros, so callers can compute a
contingency statistic or draw the complete grid.

Examples:
    >>> from exprqc.stats.summary import value_range, cross_tabulate
    >>> lo, hi = value_range(table)
    >>> counts = cross_tabulate(metadata, 'batch', 'time')
    >>> counts[('run1', 2.0)]
    4
"""

from __future__ import annotations

import logging
import warnings
from typing import Any, Optional, Sequence

import numpy as np
import pandas as pd

from exprqc.core.errors import EmptyInputError
from exprqc.core.records import METADATA_FIELDS, MetadataRecord, NUMERIC_FIELDS
from exprqc.core.table import Table

__all__ = [
    'value_range',
    'has_missing',
    'missing_fraction',
    'count_by',
    'cross_tabulate',
    'cross_tabulate_frame',
    'sample_summary',
    'metadata_summary',
]

logger = logging.getLogger(__name__)


def _require_table(table: Table, what: str) -> None:
    if table.n_features == 0 or table.n_samples == 0:
        raise EmptyInputError(
            f"Cannot compute {what} of an empty table "
            f"({table.n_features} features × {table.n_samples} samples)"
        )


def _require_records(metadata: Sequence[MetadataRecord], what: str) -> None:
    if len(metadata) == 0:
        raise EmptyInputError(f"Cannot compute {what} of an empty metadata collection")


def _check_field(field_name: str) -> None:
    if field_name not in METADATA_FIELDS:
        raise KeyError(f"Unknown metadata field '{field_name}'. Choose from: {list(METADATA_FIELDS)}")


def _sort_levels(levels: set) -> list:
    try:
        return sorted(levels)
    except TypeError:
        return sorted(levels, key=str)


def value_range(table: Table) -> tuple[float, float]:
    """
    Minimum and maximum expression value (NaN cells ignored).

    Raises:
        EmptyInputError: If the table has no cells or only NaN cells
    """
    _require_table(table, "range")
    if np.isnan(table.data).all():
        raise EmptyInputError("Cannot compute range: every cell is NaN")
    return float(np.nanmin(table.data)), float(np.nanmax(table.data))


def has_missing(table: Table) -> bool:
    """
    Whether any cell is NaN.

    Raises:
        EmptyInputError: If the table has no cells
    """
    _require_table(table, "missingness")
    return bool(np.isnan(table.data).any())


def missing_fraction(table: Table) -> pd.Series:
    """
    Fraction of NaN cells per sample.

    Raises:
        EmptyInputError: If the table has no cells
    """
    _require_table(table, "missingness")
    return pd.Series(np.isnan(table.data).mean(axis=0), index=table.sample_ids, name='missing_fraction')


def count_by(metadata: Sequence[MetadataRecord], field_name: str) -> dict[Any, int]:
    """
    Number of samples per level of one metadata field.

    Raises:
        EmptyInputError: If metadata is empty
        KeyError: If field_name is not a metadata field
    """
    _require_records(metadata, "group counts")
    _check_field(field_name)
    counts: dict[Any, int] = {}
    for record in metadata:
        level = record.get(field_name)
        counts[level] = counts.get(level, 0) + 1
    return {level: counts[level] for level in _sort_levels(set(counts))}


def cross_tabulate(
    metadata: Sequence[MetadataRecord],
    field_a: str,
    field_b: str,
    levels_a: Optional[Sequence[Any]] = None,
    levels_b: Optional[Sequence[Any]] = None,
) -> dict[tuple[Any, Any], int]:
    """
    Count samples for every (level of field_a, level of field_b) pair.

    The result covers the full grid of levels, with zero counts kept as
    explicit entries. Counts sum to the number of samples.

    Args:
        metadata: Metadata records
        field_a: First metadata field (e.g. 'batch')
        field_b: Second metadata field (e.g. 'time')
        levels_a: Declared levels of field_a (observed levels are always
            included; declared-but-unobserved levels add zero rows)
        levels_b: Declared levels of field_b

    Raises:
        EmptyInputError: If metadata is empty
        KeyError: If either field is not a metadata field
    """
    _require_records(metadata, "cross-tabulation")
    _check_field(field_a)
    _check_field(field_b)

    pairs = [(record.get(field_a), record.get(field_b)) for record in metadata]
    all_a = _sort_levels({a for a, _ in pairs} | set(levels_a or ()))
    all_b = _sort_levels({b for _, b in pairs} | set(levels_b or ()))

    counts = {(a, b): 0 for a in all_a for b in all_b}
    for pair in pairs:
        counts[pair] += 1
    return counts


def cross_tabulate_frame(
    metadata: Sequence[MetadataRecord],
    field_a: str,
    field_b: str,
    levels_a: Optional[Sequence[Any]] = None,
    levels_b: Optional[Sequence[Any]] = None,
) -> pd.DataFrame:
    """`cross_tabulate` as a DataFrame (rows = field_a levels, columns = field_b levels)."""
    counts = cross_tabulate(metadata, field_a, field_b, levels_a, levels_b)
    rows = list(dict.fromkeys(a for a, _ in counts))
    cols = list(dict.fromkeys(b for _, b in counts))
    frame = pd.DataFrame(0, index=pd.Index(rows, name=field_a), columns=pd.Index(cols, name=field_b))
    for (a, b), n in counts.items():
        frame.loc[a, b] = n
    return frame


def sample_summary(table: Table) -> pd.DataFrame:
    """
    Per-sample distribution summary: min, quartiles, max, mean, n_missing.

    This is the numeric input for per-sample density / box plots.

    Raises:
        EmptyInputError: If the table has no cells
    """
    _require_table(table, "sample summary")
    data = table.data
    # all-NaN columns produce NaN summaries, reported via n_missing
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', category=RuntimeWarning)
        q = np.nanpercentile(data, [0, 25, 50, 75, 100], axis=0)
        mean = np.nanmean(data, axis=0)
    return pd.DataFrame(
        {
            'min': q[0],
            'q25': q[1],
            'median': q[2],
            'q75': q[3],
            'max': q[4],
            'mean': mean,
            'n_missing': np.isnan(data).sum(axis=0),
        },
        index=pd.Index(table.sample_ids, name='sample_id'),
    )


def metadata_summary(metadata: Sequence[MetadataRecord]) -> pd.DataFrame:
    """
    Range and mean of the numeric metadata fields (time and QC counters).

    Raises:
        EmptyInputError: If metadata is empty
    """
    _require_records(metadata, "metadata summary")
    rows = []
    for name in NUMERIC_FIELDS:
        values = np.array([record.get(name) for record in metadata], dtype=float)
        rows.append({
            'field': name,
            'min': float(values.min()),
            'max': float(values.max()),
            'mean': float(values.mean()),
            'n_levels': int(len(np.unique(values))),
        })
    return pd.DataFrame(rows).set_index('field')
