"""
Two-cluster thresholds and separation effect sizes for marker genes.

Marker genes used for label checks (Xist against the Y-linked Ddx3y, Kdm5d,
Eif2s3y, Uty) are bimodal across a mixed cohort. The helpers here place a
cutoff between the two modes and measure how far apart the modes are.

Functions:
    otsu_threshold: Cutoff maximizing between-class variance (Otsu, 1979)
    kmeans_threshold: Midpoint between the two centers of a 1-D 2-means split
    cohens_d: Standardized mean difference between two groups
"""

from __future__ import annotations

import numpy as np

__all__ = [
    'otsu_threshold',
    'kmeans_threshold',
    'cohens_d',
]

# below this many values a histogram has too few counts per bin
_MIN_HISTOGRAM_VALUES = 10


def _finite(values: np.ndarray) -> np.ndarray:
    values = np.asarray(values, dtype=float).ravel()
    return values[~np.isnan(values)]


def _largest_gap_midpoint(values: np.ndarray) -> float:
    ordered = np.sort(values)
    if ordered[0] == ordered[-1]:
        return float(ordered[0])
    i = int(np.argmax(np.diff(ordered)))
    return float((ordered[i] + ordered[i + 1]) / 2)


def otsu_threshold(values: np.ndarray) -> float:
    """
    Bimodal cutoff by Otsu's method.

    The values are binned and every bin edge is tried as a split; the edge
    whose two classes have the largest between-class variance
    w0 * w1 * (mu0 - mu1)^2 wins. Ties go to the lowest edge.

    Args:
        values: 1D array. NaN values are excluded.

    Returns:
        Threshold on the scale of `values`.

    Raises:
        ValueError: If no finite values remain

    Note:
        With fewer than 10 values the midpoint of the widest gap between
        sorted values is returned instead.

    Example:
        >>> xist = table.row("Xist").to_numpy()
        >>> is_female = xist > otsu_threshold(xist)

    References:
        Otsu, N. (1979). "A Threshold Selection Method from Gray-Level Histograms"
        IEEE Trans. Sys. Man. Cyber. 9 (1): 62-66.
    """
    values = _finite(values)
    if values.size == 0:
        raise ValueError("Cannot threshold an empty set of values")
    if values.size < _MIN_HISTOGRAM_VALUES:
        return _largest_gap_midpoint(values)

    counts, edges = np.histogram(values, bins=min(100, values.size // 5))
    centers = (edges[:-1] + edges[1:]) / 2
    p = counts / counts.sum()

    # split k puts bins [0, k) in the lower class, for k = 1 .. n_bins - 1
    w0 = np.cumsum(p)[:-1]
    w1 = 1.0 - w0
    m0 = np.cumsum(p * centers)[:-1]
    m_total = (p * centers).sum()

    with np.errstate(invalid='ignore', divide='ignore'):
        between = w0 * w1 * (m0 / w0 - (m_total - m0) / w1) ** 2
    between[(w0 < 1e-10) | (w1 < 1e-10)] = -np.inf

    if not np.isfinite(between).any():
        return float(edges[0])
    k = int(np.argmax(between)) + 1
    return float(edges[k])


def kmeans_threshold(values: np.ndarray, random_state: int = 42) -> float:
    """
    Two-cluster split of 1-D values; returns the midpoint between centers.

    Args:
        values: 1D array. NaN values are excluded.
        random_state: Seed for k-means initialization

    Raises:
        ValueError: If fewer than two distinct finite values are present
    """
    from sklearn.cluster import KMeans

    values = _finite(values)
    if np.unique(values).size < 2:
        raise ValueError("Need at least two distinct values for a two-cluster split")

    km = KMeans(n_clusters=2, n_init=10, random_state=random_state)
    km.fit(values.reshape(-1, 1))
    return float(km.cluster_centers_.ravel().mean())


def cohens_d(values: np.ndarray, labels: np.ndarray) -> float:
    """
    Absolute Cohen's d between the groups labeled 1 (or True) and 0.

    A clean marker on correctly labeled samples gives d well above 2.

    Returns:
        Non-negative effect size, or NaN when either group has fewer than
        two finite values or the pooled standard deviation is ~0.

    References:
        Cohen, J. (1988). Statistical Power Analysis for the Behavioral Sciences.
    """
    values = np.asarray(values, dtype=float)
    labels = np.asarray(labels).astype(int)

    groups = []
    for level in (0, 1):
        group = values[labels == level]
        groups.append(group[~np.isnan(group)])
    low, high = groups

    if low.size < 2 or high.size < 2:
        return float('nan')

    dof = low.size + high.size - 2
    pooled_var = ((low.size - 1) * low.var(ddof=1) + (high.size - 1) * high.var(ddof=1)) / dof
    pooled_sd = np.sqrt(pooled_var)
    if pooled_sd < 1e-10:
        return float('nan')
    return float(abs(high.mean() - low.mean()) / pooled_sd)
