"""
Marker-gene concordance check for categorical sample labels.

Some genes track a categorical attribute almost perfectly. For biological sex
in mouse, Xist is expressed in females and essentially absent in males, while
Y-linked genes (Ddx3y, Kdm5d, Eif2s3y, Uty) show the opposite pattern. Reading
one gene from each side gives an independent check of the recorded sex of
every sample, and a mislabeled sample shows up as a sample whose two markers
both contradict its label.

Verdict rules, per sample:
    A marker value is "high" when strictly above its separation threshold and
    "low" when strictly below; a value equal to the threshold, or NaN, is
    undetermined.

    When the asserted label is `high_category`, the positive marker is
    expected high and the negative marker low; when it is `low_category`,
    the reverse.

    CONSISTENT     both markers agree with the expectation
    INCONSISTENT   both markers contradict it (label swap)
    INDETERMINATE  the markers disagree with each other, or one is undetermined

INDETERMINATE is kept apart from the two determinate outcomes so that noisy
data can be told apart from a wrong label.

The separation threshold has no default. It is dataset-specific; derive it
from the bimodal distribution of the marker with
`derive_separation_threshold` or supply it directly. A missing marker is a
configuration error (MarkerNotFoundError), not an ambiguous sample.

Only detection is performed. How to correct or flag a mislabeled record is
left to the caller.

Examples:
    >>> from exprqc.quality.concordance import check_concordance, summarize_verdicts
    >>> labels = {r.sample_id: r.sex for r in metadata}
    >>> verdicts = check_concordance(
    ...     table,
    ...     positive_marker="Xist",
    ...     negative_marker="Ddx3y",
    ...     asserted_label=labels,
    ...     high_category=Sex.FEMALE,
    ...     low_category=Sex.MALE,
    ...     separation_threshold=5.0,
    ... )
    >>> [s for s, v in verdicts.items() if v.is_mismatch]
    ['Sample_7', 'Sample_21']
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Literal, Mapping, Optional, Union

import numpy as np
import pandas as pd

from exprqc.core.errors import JoinError, MarkerNotFoundError, UnknownCodeError
from exprqc.core.records import Concordance, ConcordanceVerdict
from exprqc.core.table import Table
from exprqc.utils.statistics import cohens_d, kmeans_threshold, otsu_threshold

__all__ = [
    'MarkerConcordanceDetector',
    'check_concordance',
    'derive_separation_threshold',
    'marker_separation',
    'summarize_verdicts',
]

logger = logging.getLogger(__name__)

Threshold = Union[float, tuple[float, float]]


def _require_markers(table: Table, *markers: str) -> None:
    missing = [m for m in markers if not table.has_feature(m)]
    if missing:
        raise MarkerNotFoundError(missing)


def _split_threshold(separation_threshold: Threshold) -> tuple[float, float]:
    if separation_threshold is None:
        raise ValueError("separation_threshold is required")
    if isinstance(separation_threshold, (tuple, list)):
        if len(separation_threshold) != 2:
            raise ValueError(
                "separation_threshold must be a number or a (positive, negative) pair, "
                f"got {separation_threshold!r}"
            )
        pos, neg = (float(t) for t in separation_threshold)
    else:
        pos = neg = float(separation_threshold)
    if math.isnan(pos) or math.isnan(neg):
        raise ValueError("separation_threshold must not be NaN")
    return pos, neg


def _call(value: float, threshold: float) -> Optional[bool]:
    """True = high, False = low, None = undetermined."""
    if math.isnan(value) or value == threshold:
        return None
    return value > threshold


def derive_separation_threshold(
    table: Table,
    marker: str,
    method: Literal["otsu", "kmeans"] = "otsu",
) -> float:
    """
    Threshold splitting a marker's values into two clusters.

    Args:
        table: Expression table
        marker: Feature ID of the marker
        method: "otsu" (Otsu's method; largest-gap midpoint for < 10 samples)
            or "kmeans" (midpoint of a 2-means split)

    Raises:
        MarkerNotFoundError: If the marker is absent
        ValueError: If method is unknown or the marker has no usable values
    """
    _require_markers(table, marker)
    values = table.row(marker).to_numpy()
    if method == "otsu":
        threshold = otsu_threshold(values)
    elif method == "kmeans":
        threshold = kmeans_threshold(values)
    else:
        raise ValueError(f"method must be 'otsu' or 'kmeans', got '{method}'")
    logger.info(f"Derived separation threshold for {marker} ({method}): {threshold:.3f}")
    return threshold


def marker_separation(
    table: Table,
    marker: str,
    asserted_label: Mapping[str, Any],
    high_category: Any,
) -> float:
    """
    Cohen's d between samples labeled `high_category` and all others.

    A well-behaved marker on correctly labeled data separates the two groups
    with d well above 2; a low value hints at mislabeling or a poor marker.
    Samples absent from `asserted_label` are ignored.
    """
    _require_markers(table, marker)
    row = table.row(marker)
    samples = [s for s in row.index if s in asserted_label]
    values = row.loc[samples].to_numpy()
    labels = np.array([asserted_label[s] == high_category for s in samples])
    return cohens_d(values, labels)


@dataclass
class MarkerConcordanceDetector:
    """
    Configured concordance check for one marker pair and two categories.

    Attributes:
        positive_marker: Feature expected high in `high_category`
        negative_marker: Feature expected high in `low_category`
        high_category: Category in which the positive marker is high
        low_category: The other category
        separation_threshold: Cutoff on the marker scale, a single value for
            both markers or a (positive, negative) pair
    """
    positive_marker: str
    negative_marker: str
    high_category: Any
    low_category: Any
    separation_threshold: Threshold

    def __post_init__(self):
        if self.positive_marker == self.negative_marker:
            raise ValueError("positive_marker and negative_marker must differ")
        if self.high_category == self.low_category:
            raise ValueError("high_category and low_category must differ")
        self._pos_threshold, self._neg_threshold = _split_threshold(self.separation_threshold)

    @property
    def thresholds(self) -> tuple[float, float]:
        """(positive marker threshold, negative marker threshold)."""
        return self._pos_threshold, self._neg_threshold

    def _implied(self, pos_high: Optional[bool], neg_high: Optional[bool]) -> Optional[Any]:
        if pos_high is None or neg_high is None or pos_high == neg_high:
            return None
        return self.high_category if pos_high else self.low_category

    def verdict(
        self,
        sample_id: str,
        label: Any,
        positive_value: float,
        negative_value: float,
    ) -> ConcordanceVerdict:
        """Classify one sample from its two marker values."""
        if label == self.high_category:
            expect_pos_high = True
        elif label == self.low_category:
            expect_pos_high = False
        else:
            raise UnknownCodeError(
                'asserted_label', label,
                f"Asserted label {label!r} for sample '{sample_id}' is neither "
                f"{self.high_category!r} nor {self.low_category!r}"
            )

        pos_high = _call(positive_value, self._pos_threshold)
        neg_high = _call(negative_value, self._neg_threshold)

        if pos_high is None or neg_high is None:
            status = Concordance.INDETERMINATE
        else:
            pos_agrees = pos_high == expect_pos_high
            neg_agrees = neg_high != expect_pos_high
            if pos_agrees and neg_agrees:
                status = Concordance.CONSISTENT
            elif not pos_agrees and not neg_agrees:
                status = Concordance.INCONSISTENT
            else:
                status = Concordance.INDETERMINATE

        return ConcordanceVerdict(
            sample_id=sample_id,
            status=status,
            asserted_label=label,
            positive_value=positive_value,
            negative_value=negative_value,
            implied_label=self._implied(pos_high, neg_high),
        )

    def check(self, table: Table, asserted_label: Mapping[str, Any]) -> dict[str, ConcordanceVerdict]:
        """
        Verdict for every sample in the table.

        Raises:
            MarkerNotFoundError: If either marker row is absent from the table
            JoinError: If a table sample has no asserted label
            UnknownCodeError: If an asserted label is neither category
        """
        _require_markers(table, self.positive_marker, self.negative_marker)

        missing = [s for s in table.sample_ids if s not in asserted_label]
        if missing:
            raise JoinError(missing_metadata=missing, context="concordance label lookup")

        pos_row = table.row(self.positive_marker)
        neg_row = table.row(self.negative_marker)

        verdicts = {
            sample_id: self.verdict(
                sample_id,
                asserted_label[sample_id],
                float(pos_row[sample_id]),
                float(neg_row[sample_id]),
            )
            for sample_id in table.sample_ids
        }

        n_by_status = {c: 0 for c in Concordance}
        for v in verdicts.values():
            n_by_status[v.status] += 1
        logger.info(
            f"Concordance {self.positive_marker}/{self.negative_marker}: "
            f"{n_by_status[Concordance.CONSISTENT]} consistent, "
            f"{n_by_status[Concordance.INCONSISTENT]} inconsistent, "
            f"{n_by_status[Concordance.INDETERMINATE]} indeterminate"
        )
        mismatched = sorted(s for s, v in verdicts.items() if v.is_mismatch)
        if mismatched:
            logger.warning(f"Label inconsistent with marker expression for: {mismatched}")
        return verdicts


def check_concordance(
    table: Table,
    positive_marker: str,
    negative_marker: str,
    asserted_label: Mapping[str, Any],
    high_category: Any,
    low_category: Any,
    separation_threshold: Threshold,
) -> dict[str, ConcordanceVerdict]:
    """
    Per-sample concordance between marker expression and asserted labels.

    See the module docstring for the verdict rules.

    Raises:
        MarkerNotFoundError: If either marker row is absent from the table
        JoinError: If a table sample has no asserted label
        UnknownCodeError: If an asserted label is neither category
    """
    detector = MarkerConcordanceDetector(
        positive_marker=positive_marker,
        negative_marker=negative_marker,
        high_category=high_category,
        low_category=low_category,
        separation_threshold=separation_threshold,
    )
    return detector.check(table, asserted_label)


def summarize_verdicts(verdicts: Mapping[str, ConcordanceVerdict]) -> pd.DataFrame:
    """One row per sample: asserted/implied label, marker values and status."""
    rows = [
        {
            'sample_id': v.sample_id,
            'asserted_label': str(v.asserted_label),
            'implied_label': None if v.implied_label is None else str(v.implied_label),
            'positive_value': v.positive_value,
            'negative_value': v.negative_value,
            'status': v.status.value,
        }
        for v in verdicts.values()
    ]
    columns = ['sample_id', 'asserted_label', 'implied_label', 'positive_value', 'negative_value', 'status']
    return pd.DataFrame(rows, columns=columns).set_index('sample_id')
