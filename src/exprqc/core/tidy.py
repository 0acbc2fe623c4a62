"""
Wide-to-long conversion of the expression table joined with sample metadata.

`melt` emits one LongRecord per (feature, sample) cell carrying the value and
the full metadata of that sample. The join is keyed on the sample ID and must
be complete in both directions: a sample without metadata, or metadata
without a sample, raises JoinError instead of silently shrinking the result.

`melt_frame` returns the same relation as a long pandas DataFrame (one column
per metadata field), which is what plotting layers consume. `widen` inverts
`melt` and rebuilds the original Table.

Examples:
    >>> from exprqc.core.tidy import melt, widen
    >>> records = melt(table, metadata)
    >>> assert len(records) == table.n_features * table.n_samples
    >>> assert widen(records) == table
"""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

import numpy as np
import pandas as pd

from exprqc.core.errors import JoinError
from exprqc.core.records import LongRecord, MetadataRecord, METADATA_FIELDS
from exprqc.core.table import Table

__all__ = ['index_metadata', 'melt', 'melt_frame', 'widen']

logger = logging.getLogger(__name__)


def index_metadata(
    table: Table,
    metadata: Sequence[MetadataRecord],
    context: str = "join",
) -> dict[str, MetadataRecord]:
    """
    Key metadata records by sample ID and check they cover the table exactly.

    Raises:
        JoinError: On samples missing from either side or duplicated records
    """
    by_sample: dict[str, MetadataRecord] = {}
    duplicated = set()
    for record in metadata:
        if record.sample_id in by_sample:
            duplicated.add(record.sample_id)
        by_sample[record.sample_id] = record

    columns = set(table.sample_ids)
    missing_metadata = columns - by_sample.keys()
    missing_columns = by_sample.keys() - columns

    if missing_metadata or missing_columns or duplicated:
        raise JoinError(
            missing_metadata=missing_metadata,
            missing_columns=missing_columns,
            duplicated=duplicated,
            context=context,
        )
    return by_sample


def melt(table: Table, metadata: Sequence[MetadataRecord]) -> list[LongRecord]:
    """
    Convert the wide table into one LongRecord per cell.

    Records of a sample are emitted contiguously (sample-major order), but
    callers must not rely on any ordering.

    Raises:
        JoinError: If the table columns and metadata sample keys differ
    """
    by_sample = index_metadata(table, metadata, context="melt")

    records = []
    for j, sample_id in enumerate(table.sample_ids):
        record = by_sample[sample_id]
        column = table.data[:, j]
        for i, feature_id in enumerate(table.feature_ids):
            records.append(LongRecord(sample_id, feature_id, float(column[i]), record))

    logger.info(
        f"Melted {table.n_features} features × {table.n_samples} samples "
        f"into {len(records)} long records"
    )
    return records


def melt_frame(table: Table, metadata: Sequence[MetadataRecord]) -> pd.DataFrame:
    """
    Long DataFrame with columns sample_id, feature_id, value and one column per
    metadata field. Same content as `melt`.

    Raises:
        JoinError: If the table columns and metadata sample keys differ
    """
    by_sample = index_metadata(table, metadata, context="melt")

    wide = table.to_frame()
    wide.index.name = 'feature_id'
    wide.columns.name = 'sample_id'
    long = wide.melt(ignore_index=False, value_name='value').reset_index()
    long = long[['sample_id', 'feature_id', 'value']]

    meta = pd.DataFrame(
        [by_sample[s].as_dict() for s in table.sample_ids],
        columns=list(METADATA_FIELDS),
    )
    return long.merge(meta, on='sample_id', how='inner', validate='many_to_one')


def widen(records: Iterable[LongRecord]) -> Table:
    """
    Rebuild a Table from long records (inverse of `melt`).

    Raises:
        ValueError: If a (feature, sample) cell appears twice or the records
            do not cover a full rectangle
    """
    cells: dict[tuple[str, str], float] = {}
    feature_order: dict[str, None] = {}
    sample_order: dict[str, None] = {}
    for record in records:
        key = (record.feature_id, record.sample_id)
        if key in cells:
            raise ValueError(f"Duplicate cell for feature '{key[0]}', sample '{key[1]}'")
        cells[key] = record.value
        feature_order.setdefault(record.feature_id)
        sample_order.setdefault(record.sample_id)

    features = list(feature_order)
    samples = list(sample_order)
    if len(cells) != len(features) * len(samples):
        raise ValueError(
            f"Records cover {len(cells)} cells, expected "
            f"{len(features)} features × {len(samples)} samples"
        )

    data = np.empty((len(features), len(samples)), dtype=np.float64)
    for i, feature_id in enumerate(features):
        for j, sample_id in enumerate(samples):
            data[i, j] = cells[(feature_id, sample_id)]
    return Table(data, features, samples)
