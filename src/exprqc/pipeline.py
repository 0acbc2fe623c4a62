"""
End-to-end QC run: align, recode, tidy, summarize, correlate, check markers.

    DataSource ──► read_matrix()   ──┐
               └─► read_metadata() ──┤
                                     ▼
          IdentifierReconciler (matrix columns vs metadata sample column)
                                     ▼
          MetadataNormalizer (strict code maps) ──► canonical Table + records
                                     ▼
          melt ──► long relation (for plotting layers)
          summary statistics, cross-tabulations
          sample correlation matrix ──► outliers
          confound report (factor A vs factor B)
          marker concordance verdicts

Each stage raises its own error type on bad data; the run stops at the first
one. The result object holds every artifact; nothing is written to disk here
(see exprqc.cli.check for file output).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import pandas as pd

from exprqc.cli.config import PipelineConfig
from exprqc.core.records import ConcordanceVerdict, MetadataRecord
from exprqc.core.table import Table
from exprqc.core.tidy import index_metadata, melt_frame
from exprqc.io.identifiers import IdentifierReconciler
from exprqc.io.metadata import MetadataNormalizer
from exprqc.io.sources import DataSource
from exprqc.quality.concordance import (
    MarkerConcordanceDetector,
    derive_separation_threshold,
)
from exprqc.stats import summary
from exprqc.stats.correlation import (
    ConfoundReport,
    CorrelationMatrix,
    correlation_matrix,
    detect_confound,
    detect_outliers,
    max_correlation,
)

__all__ = ['QCResult', 'align', 'run_pipeline']

logger = logging.getLogger(__name__)


@dataclass
class QCResult:
    """All artifacts of one QC run."""
    table: Table
    metadata: list[MetadataRecord]
    sample_id_map: dict[str, str]
    long: pd.DataFrame
    value_range: tuple[float, float]
    has_missing: bool
    sample_summary: pd.DataFrame
    metadata_summary: pd.DataFrame
    group_counts: dict[str, dict[Any, int]]
    cross_tabs: dict[tuple[str, str], pd.DataFrame]
    correlation: Optional[CorrelationMatrix] = None
    max_correlation: Optional[pd.Series] = None
    outliers: set[str] = field(default_factory=set)
    confounds: list[ConfoundReport] = field(default_factory=list)
    separation_thresholds: Optional[tuple[float, float]] = None
    verdicts: dict[str, ConcordanceVerdict] = field(default_factory=dict)

    @property
    def mislabeled(self) -> list[str]:
        return sorted(s for s, v in self.verdicts.items() if v.is_mismatch)

    def to_dict(self) -> dict:
        """JSON-compatible summary (large artifacts excluded)."""
        return {
            'n_features': self.table.n_features,
            'n_samples': self.table.n_samples,
            'value_range': list(self.value_range),
            'has_missing': self.has_missing,
            'group_counts': {
                name: {str(k): v for k, v in counts.items()}
                for name, counts in self.group_counts.items()
            },
            'outliers': sorted(self.outliers),
            'confounds': [report.to_dict() for report in self.confounds],
            'separation_thresholds': (
                list(self.separation_thresholds) if self.separation_thresholds else None
            ),
            'concordance': {
                status: sum(1 for v in self.verdicts.values() if v.status.value == status)
                for status in ('consistent', 'inconsistent', 'indeterminate')
            },
            'mislabeled': self.mislabeled,
        }


def align(
    table: Table,
    raw_metadata: pd.DataFrame,
    config: PipelineConfig,
) -> tuple[Table, list[MetadataRecord], dict[str, str]]:
    """
    Reconcile identifiers, rename matrix columns to canonical keys and recode
    the metadata.

    Returns:
        (canonical table, metadata records, matrix raw ID -> canonical ID)

    Raises:
        AlignmentError, UnknownCodeError, MissingFieldError, JoinError
    """
    id_column = config.metadata.field_names.get('sample_id', 'sample_id')
    if id_column not in raw_metadata.columns:
        raise KeyError(f"Metadata has no sample identifier column '{id_column}'")

    reconciler = IdentifierReconciler(
        delimiter=config.reconcile.delimiter,
        n_prefix_fields=config.reconcile.n_prefix_fields,
        pattern=config.reconcile.pattern,
    )
    raw_meta_ids = [str(s) for s in raw_metadata[id_column]]
    matrix_map, meta_map = reconciler.reconcile(list(table.sample_ids), raw_meta_ids)

    canonical_table = table.rename_samples(matrix_map)
    raw_metadata = raw_metadata.copy()
    raw_metadata[id_column] = [meta_map[s] for s in raw_meta_ids]

    normalizer = MetadataNormalizer(config.metadata.code_maps, config.metadata.field_names)
    records = normalizer.normalize(raw_metadata)

    # Same sample order on both sides
    by_sample = index_metadata(canonical_table, records, context="alignment")
    records = [by_sample[s] for s in canonical_table.sample_ids]
    return canonical_table, records, matrix_map


def run_pipeline(source: DataSource, config: PipelineConfig) -> QCResult:
    """
    Run every QC stage configured in `config` over `source`.

    Stages without configuration (no outlier threshold, no confound pairs,
    no markers) are skipped; thresholds are never defaulted.
    """
    table = source.read_matrix()
    raw_metadata = source.read_metadata()
    logger.info(f"Starting QC run: {table.n_features:,} features × {table.n_samples:,} samples, "
                f"{len(raw_metadata)} metadata rows")

    table, records, id_map = align(table, raw_metadata, config)
    long = melt_frame(table, records)

    result = QCResult(
        table=table,
        metadata=records,
        sample_id_map=id_map,
        long=long,
        value_range=summary.value_range(table),
        has_missing=summary.has_missing(table),
        sample_summary=summary.sample_summary(table),
        metadata_summary=summary.metadata_summary(records),
        group_counts={name: summary.count_by(records, name) for name in config.count_fields},
        cross_tabs={
            (a, b): summary.cross_tabulate_frame(records, a, b)
            for a, b in config.cross_tabulate
        },
    )

    if config.outliers.threshold is not None or config.outliers.compute_matrix:
        corr = correlation_matrix(table, n_jobs=config.outliers.n_jobs)
        result.correlation = corr
        result.max_correlation = max_correlation(corr)
        if config.outliers.threshold is not None:
            result.outliers = detect_outliers(corr, config.outliers.threshold)

    for factor_a, factor_b in config.confounds.pairs:
        result.confounds.append(
            detect_confound(records, factor_a, factor_b, config.confounds.skew_threshold)
        )

    markers = config.concordance
    if markers is not None:
        if markers.separation_threshold is not None:
            threshold = markers.separation_threshold
        else:
            threshold = (
                derive_separation_threshold(table, markers.positive_marker, markers.threshold_method),
                derive_separation_threshold(table, markers.negative_marker, markers.threshold_method),
            )
        detector = MarkerConcordanceDetector(
            positive_marker=markers.positive_marker,
            negative_marker=markers.negative_marker,
            high_category=markers.high_category,
            low_category=markers.low_category,
            separation_threshold=threshold,
        )
        labels = {r.sample_id: r.get(markers.label_field) for r in records}
        result.verdicts = detector.check(table, labels)
        result.separation_thresholds = detector.thresholds

    logger.info(f"QC run complete: {len(result.outliers)} outlier(s), "
                f"{len(result.mislabeled)} label mismatch(es)")
    return result
