"""
Sample-sample correlation structure, outlier samples and design confounds.

Pearson correlation between every pair of samples (columns) over the shared
feature index is the standard first look at a new expression dataset: a
sample that correlates poorly with every other sample is a likely technical
failure (degraded RNA, swapped library, failed run).

Numeric conventions:
    - A zero-variance sample has an undefined correlation. It is stored as
      NaN, never coerced to 0 or 1.
    - The diagonal is masked (NaN). Self-correlation is excluded from every
      aggregate, including outlier detection.
    - Columns containing NaN cells yield NaN correlations; check
      `exprqc.stats.summary.has_missing` first.

Computation:
    Columns are standardized once; each block of columns is then correlated
    with all columns by a single matrix product. Blocks write disjoint slices
    of a fresh output array and can be spread across a thread pool
    (`n_jobs`), so completion order does not matter.

Confounds:
    `detect_confound` cross-tabulates two metadata factors. A level of
    factor A found with exactly one level of factor B is a full confound;
    a level whose largest share of any B level reaches `skew_threshold`
    is a partial confound.

Examples:
    >>> from exprqc.stats.correlation import correlation_matrix, detect_confound, detect_outliers
    >>> corr = correlation_matrix(table, n_jobs=4)
    >>> outliers = detect_outliers(corr, threshold=0.9)
    >>> report = detect_confound(metadata, 'batch', 'time', skew_threshold=0.8)
    >>> report.fully_confounded
    ['run1', 'run2', 'run3']
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Sequence

import numpy as np
import pandas as pd
from scipy import stats
from tqdm import tqdm

from exprqc.core.errors import EmptyInputError
from exprqc.core.records import MetadataRecord
from exprqc.core.table import Table
from exprqc.stats.summary import cross_tabulate

__all__ = [
    'CorrelationMatrix',
    'ConfoundLevel',
    'ConfoundReport',
    'ConfoundType',
    'correlation_matrix',
    'max_correlation',
    'detect_outliers',
    'detect_confound',
]

logger = logging.getLogger(__name__)


class CorrelationMatrix:
    """
    Square, symmetric sample x sample correlation matrix with a masked diagonal.

    Attributes:
        values: Read-only float array (n_samples x n_samples), NaN diagonal
        sample_ids: Row and column labels
    """

    def __init__(self, values: np.ndarray, sample_ids: Sequence[str] | pd.Index):
        values = np.array(values, dtype=np.float64)
        if values.ndim != 2 or values.shape[0] != values.shape[1]:
            raise ValueError(f"Correlation matrix must be square, got shape {values.shape}")
        sample_index = pd.Index([str(s) for s in sample_ids], dtype=object)
        if len(sample_index) != values.shape[0]:
            raise ValueError(
                f"{len(sample_index)} sample IDs for a {values.shape[0]}x{values.shape[0]} matrix"
            )
        if sample_index.has_duplicates:
            raise ValueError("sample_ids must be unique")
        np.fill_diagonal(values, np.nan)
        values.setflags(write=False)
        self._values = values
        self._sample_ids = sample_index

    @property
    def values(self) -> np.ndarray:
        return self._values

    @property
    def sample_ids(self) -> pd.Index:
        return self._sample_ids

    @property
    def n_samples(self) -> int:
        return len(self._sample_ids)

    def __getitem__(self, pair: tuple[str, str]) -> float:
        a, b = pair
        i = self._sample_ids.get_loc(a)
        j = self._sample_ids.get_loc(b)
        return float(self._values[i, j])

    def off_diagonal(self, sample_id: str) -> pd.Series:
        """Correlations of one sample with every other sample."""
        i = self._sample_ids.get_loc(sample_id)
        keep = np.arange(self.n_samples) != i
        return pd.Series(self._values[i, keep], index=self._sample_ids[keep], name=sample_id)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            self._values.copy(),
            index=pd.Index(self._sample_ids, name='sample_id'),
            columns=pd.Index(self._sample_ids, name='sample_id'),
        )

    def is_symmetric(self) -> bool:
        return bool(np.array_equal(self._values, self._values.T, equal_nan=True))

    def __repr__(self) -> str:
        return f"CorrelationMatrix({self.n_samples} × {self.n_samples} samples)"


def _standardize_columns(data: np.ndarray) -> np.ndarray:
    """Center and scale each column to unit norm; zero-variance columns become NaN."""
    centered = data - data.mean(axis=0, keepdims=True)
    norms = np.sqrt((centered ** 2).sum(axis=0, keepdims=True))
    with np.errstate(invalid='ignore', divide='ignore'):
        scaled = centered / norms
    # exact test on the raw values; the centered mean of a constant column
    # can carry rounding residue
    constant = data.max(axis=0) == data.min(axis=0)
    scaled[:, constant] = np.nan
    return scaled


def correlation_matrix(
    table: Table,
    n_jobs: int = 1,
    chunk_size: int = 256,
    verbose: bool = False,
) -> CorrelationMatrix:
    """
    Pearson correlation between every pair of samples.

    Args:
        table: Expression table (features x samples)
        n_jobs: Worker threads for block computation (1 = serial)
        chunk_size: Number of sample columns per block
        verbose: Show a progress bar over blocks

    Returns:
        CorrelationMatrix with NaN diagonal; NaN wherever either sample has
        zero variance

    Raises:
        EmptyInputError: If the table has fewer than 2 features or 2 samples
    """
    if table.n_samples < 2 or table.n_features < 2:
        raise EmptyInputError(
            f"Correlation needs at least 2 features and 2 samples, got "
            f"{table.n_features} features × {table.n_samples} samples"
        )
    if n_jobs < 1:
        raise ValueError(f"n_jobs must be >= 1, got {n_jobs}")
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")

    n_samples = table.n_samples
    z = _standardize_columns(table.data)
    result = np.empty((n_samples, n_samples), dtype=np.float64)

    blocks = [(start, min(start + chunk_size, n_samples)) for start in range(0, n_samples, chunk_size)]

    def compute_block(bounds: tuple[int, int]) -> None:
        start, end = bounds
        block = z[:, start:end].T @ z
        result[start:end, :] = np.clip(block, -1.0, 1.0)

    progress = tqdm(total=len(blocks), desc="Correlating samples", unit="block", disable=not verbose)
    try:
        if n_jobs == 1:
            for bounds in blocks:
                compute_block(bounds)
                progress.update(1)
        else:
            with ThreadPoolExecutor(max_workers=n_jobs) as executor:
                futures = [executor.submit(compute_block, bounds) for bounds in blocks]
                for future in as_completed(futures):
                    future.result()
                    progress.update(1)
    finally:
        progress.close()

    # Floating-point summation order can differ between (i, j) and (j, i)
    result = (result + result.T) / 2

    n_undefined = int((np.isnan(z).all(axis=0)).sum())
    if n_undefined:
        logger.warning(f"{n_undefined} sample(s) have zero variance or missing values; "
                       f"their correlations are undefined (NaN)")
    logger.info(f"Computed {n_samples} × {n_samples} sample correlation matrix "
                f"({len(blocks)} blocks, n_jobs={n_jobs})")
    return CorrelationMatrix(result, table.sample_ids)


def max_correlation(matrix: CorrelationMatrix) -> pd.Series:
    """
    Maximum off-diagonal correlation per sample (NaN entries ignored).

    A sample whose correlations are all undefined gets NaN.
    """
    values = matrix.values
    defined = ~np.isnan(values)
    filled = np.where(defined, values, -np.inf)
    best = filled.max(axis=1)
    best[~defined.any(axis=1)] = np.nan
    return pd.Series(best, index=matrix.sample_ids, name='max_correlation')


def detect_outliers(matrix: CorrelationMatrix, threshold: float) -> set[str]:
    """
    Samples whose best correlation to any other sample is below `threshold`.

    There is no default threshold: an appropriate cutoff depends on platform
    and tissue, so callers must choose one.

    Args:
        matrix: Sample correlation matrix
        threshold: Correlation cutoff in [-1, 1]

    Returns:
        Set of outlier sample IDs. Samples with no defined off-diagonal
        correlation are not flagged (they are logged instead).

    Raises:
        ValueError: If threshold is outside [-1, 1] or not a number
    """
    if threshold is None or isinstance(threshold, bool) or not -1.0 <= float(threshold) <= 1.0:
        raise ValueError(f"threshold must be a correlation in [-1, 1], got {threshold!r}")

    best = max_correlation(matrix)
    undefined = best.index[best.isna()]
    if len(undefined):
        logger.warning(f"Cannot assess {len(undefined)} sample(s) with undefined correlations: "
                       f"{list(undefined)[:10]}")

    flagged = set(best.index[best < threshold])
    if flagged:
        logger.warning(f"Flagged {len(flagged)} low-correlation sample(s) "
                       f"(max r < {threshold}): {sorted(flagged)}")
    return flagged


class ConfoundType(str, Enum):
    """Degree to which one level of factor A is tied to factor B."""
    FULL = 'full'
    PARTIAL = 'partial'
    NONE = 'none'

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ConfoundLevel:
    """
    Confound assessment for one level of factor A.

    Attributes:
        level: Level of factor A
        n_samples: Samples at this level
        counts: Level of factor B -> count (zeros included)
        dominant_level: Most frequent factor B level
        dominant_share: Fraction of this level's samples at the dominant level
        kind: FULL, PARTIAL or NONE
    """
    level: Any
    n_samples: int
    counts: dict
    dominant_level: Any
    dominant_share: float
    kind: ConfoundType


@dataclass
class ConfoundReport:
    """
    Confound structure between two metadata factors.

    Attributes:
        factor_a: Factor assessed level by level (e.g. batch)
        factor_b: Factor it may be confounded with (e.g. developmental time)
        skew_threshold: Share at or above which a level is partially confounded
        levels: Per-level assessment of factor A
        contingency: Full cross-tabulation (zeros included)
        chi2: Pearson chi-square statistic of the contingency table
        p_value: Chi-square p-value
        cramers_v: Cramer's V association (0 = none, 1 = complete)
    """
    factor_a: str
    factor_b: str
    skew_threshold: float
    levels: dict[Any, ConfoundLevel]
    contingency: dict[tuple[Any, Any], int]
    chi2: float = float('nan')
    p_value: float = float('nan')
    cramers_v: float = float('nan')

    @property
    def fully_confounded(self) -> list:
        return [lvl for lvl, res in self.levels.items() if res.kind is ConfoundType.FULL]

    @property
    def partially_confounded(self) -> list:
        return [lvl for lvl, res in self.levels.items() if res.kind is ConfoundType.PARTIAL]

    @property
    def is_confounded(self) -> bool:
        return any(res.kind is not ConfoundType.NONE for res in self.levels.values())

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {
                self.factor_a: res.level,
                'n_samples': res.n_samples,
                'dominant_level': res.dominant_level,
                'dominant_share': res.dominant_share,
                'n_levels_observed': sum(1 for n in res.counts.values() if n > 0),
                'confound': res.kind.value,
            }
            for res in self.levels.values()
        ]
        return pd.DataFrame(rows)

    def to_dict(self) -> dict:
        """Serialize to JSON-compatible dict."""
        def _num(x: float) -> Optional[float]:
            return None if math.isnan(x) else float(x)

        return {
            'factor_a': self.factor_a,
            'factor_b': self.factor_b,
            'skew_threshold': self.skew_threshold,
            'fully_confounded': [str(x) for x in self.fully_confounded],
            'partially_confounded': [str(x) for x in self.partially_confounded],
            'chi2': _num(self.chi2),
            'p_value': _num(self.p_value),
            'cramers_v': _num(self.cramers_v),
        }


def _association(contingency: dict[tuple[Any, Any], int]) -> tuple[float, float, float]:
    """Chi-square, p-value and Cramer's V; NaN when undefined."""
    rows = list(dict.fromkeys(a for a, _ in contingency))
    cols = list(dict.fromkeys(b for _, b in contingency))
    observed = np.array([[contingency[(a, b)] for b in cols] for a in rows], dtype=float)
    # declared-but-unobserved levels carry no information
    observed = observed[observed.sum(axis=1) > 0][:, observed.sum(axis=0) > 0]
    n_rows, n_cols = observed.shape
    n = observed.sum()
    if n_rows < 2 or n_cols < 2 or n == 0:
        return float('nan'), float('nan'), float('nan')

    chi2, p_value, _, _ = stats.chi2_contingency(observed, correction=False)
    k = min(n_rows, n_cols) - 1
    cramers_v = math.sqrt(chi2 / (n * k)) if k > 0 else float('nan')
    return float(chi2), float(p_value), float(min(cramers_v, 1.0))


def detect_confound(
    metadata: Sequence[MetadataRecord],
    factor_a: str,
    factor_b: str,
    skew_threshold: float,
    levels_a: Optional[Sequence[Any]] = None,
    levels_b: Optional[Sequence[Any]] = None,
) -> ConfoundReport:
    """
    Assess, level by level, whether factor A is confounded with factor B.

    Args:
        metadata: Metadata records
        factor_a: Factor to assess (e.g. 'batch')
        factor_b: Factor to compare against (e.g. 'time')
        skew_threshold: Share in (0, 1] at or above which a non-exclusive
            level counts as partially confounded. No default.
        levels_a: Declared levels of factor_a; unobserved ones are kept in the
            contingency table but not assessed
        levels_b: Declared levels of factor_b; unobserved ones add zero columns

    Returns:
        ConfoundReport

    Raises:
        EmptyInputError: If metadata is empty
        ValueError: If skew_threshold is outside (0, 1]
        KeyError: If a factor is not a metadata field
    """
    if skew_threshold is None or isinstance(skew_threshold, bool) or not 0.0 < float(skew_threshold) <= 1.0:
        raise ValueError(f"skew_threshold must be in (0, 1], got {skew_threshold!r}")

    contingency = cross_tabulate(metadata, factor_a, factor_b, levels_a, levels_b)
    levels_a = list(dict.fromkeys(a for a, _ in contingency))
    levels_b = list(dict.fromkeys(b for _, b in contingency))

    levels: dict[Any, ConfoundLevel] = {}
    for a in levels_a:
        counts = {b: contingency[(a, b)] for b in levels_b}
        total = sum(counts.values())
        if total == 0:
            continue
        dominant = max(levels_b, key=lambda b: counts[b])
        share = counts[dominant] / total
        observed = sum(1 for n in counts.values() if n > 0)

        if observed == 1:
            kind = ConfoundType.FULL
        elif share >= skew_threshold:
            kind = ConfoundType.PARTIAL
        else:
            kind = ConfoundType.NONE
        levels[a] = ConfoundLevel(a, total, counts, dominant, share, kind)

    chi2, p_value, cramers_v = _association(contingency)
    report = ConfoundReport(
        factor_a=factor_a,
        factor_b=factor_b,
        skew_threshold=float(skew_threshold),
        levels=levels,
        contingency=contingency,
        chi2=chi2,
        p_value=p_value,
        cramers_v=cramers_v,
    )

    if report.fully_confounded:
        logger.warning(f"{factor_a} fully confounded with {factor_b} at level(s): "
                       f"{report.fully_confounded}")
    if report.partially_confounded:
        logger.warning(f"{factor_a} partially confounded with {factor_b} at level(s): "
                       f"{report.partially_confounded}")
    return report
