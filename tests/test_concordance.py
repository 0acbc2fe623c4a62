"""Tests for the marker-gene concordance check."""

import numpy as np
import pandas as pd
import pytest

from exprqc.core.errors import JoinError, MarkerNotFoundError, UnknownCodeError
from exprqc.core.records import Concordance, Sex
from exprqc.core.table import Table
from exprqc.quality.concordance import (
    MarkerConcordanceDetector,
    check_concordance,
    derive_separation_threshold,
    marker_separation,
    summarize_verdicts,
)


@pytest.fixture
def marker_table():
    """
    S1: male profile     (Xist low,  Ddx3y high)
    S2: female profile   (Xist high, Ddx3y low)
    S3: female profile
    S4: ambiguous        (both low)
    """
    data = np.array([
        [0.2, 9.1, 8.7, 0.3],   # Xist
        [7.9, 0.1, 0.4, 0.2],   # Ddx3y
        [5.0, 5.1, 4.9, 5.2],   # housekeeping
    ])
    return Table(data, ["Xist", "Ddx3y", "Actb"], ["S1", "S2", "S3", "S4"])


def _check(table, labels, threshold=5.0):
    return check_concordance(
        table,
        positive_marker="Xist",
        negative_marker="Ddx3y",
        asserted_label=labels,
        high_category="F",
        low_category="M",
        separation_threshold=threshold,
    )


class TestVerdicts:

    def test_swapped_label_is_inconsistent(self, marker_table):
        verdicts = _check(marker_table, {"S1": "M", "S2": "F", "S3": "M", "S4": "F"})
        assert verdicts["S1"].status is Concordance.CONSISTENT
        assert verdicts["S2"].status is Concordance.CONSISTENT
        assert verdicts["S3"].status is Concordance.INCONSISTENT
        assert verdicts["S3"].implied_label == "F"
        assert verdicts["S3"].is_mismatch

    def test_markers_disagree_is_indeterminate(self, marker_table):
        verdicts = _check(marker_table, {"S1": "M", "S2": "F", "S3": "F", "S4": "M"})
        assert verdicts["S4"].status is Concordance.INDETERMINATE
        assert verdicts["S4"].implied_label is None
        assert not verdicts["S4"].is_mismatch

    def test_every_sample_gets_a_verdict(self, marker_table):
        verdicts = _check(marker_table, {"S1": "M", "S2": "F", "S3": "F", "S4": "F"})
        assert set(verdicts) == {"S1", "S2", "S3", "S4"}

    def test_value_at_threshold_is_indeterminate(self):
        table = Table(np.array([[5.0, 9.0], [0.1, 0.1]]), ["Xist", "Ddx3y"], ["A", "B"])
        verdicts = _check(table, {"A": "F", "B": "F"})
        assert verdicts["A"].status is Concordance.INDETERMINATE
        assert verdicts["B"].status is Concordance.CONSISTENT

    def test_nan_marker_is_indeterminate(self):
        table = Table(np.array([[np.nan, 9.0], [0.1, 0.1]]), ["Xist", "Ddx3y"], ["A", "B"])
        assert _check(table, {"A": "F", "B": "F"})["A"].status is Concordance.INDETERMINATE

    def test_per_marker_thresholds(self, marker_table):
        # Ddx3y cutoff below S4's 0.2: S4 now reads as male
        verdicts = _check(marker_table, {"S1": "M", "S2": "F", "S3": "F", "S4": "M"},
                          threshold=(5.0, 0.15))
        assert verdicts["S4"].status is Concordance.CONSISTENT

    def test_sex_enum_labels(self, marker_table):
        labels = {"S1": Sex.MALE, "S2": Sex.FEMALE, "S3": Sex.FEMALE, "S4": Sex.FEMALE}
        verdicts = check_concordance(
            marker_table, "Xist", "Ddx3y", labels,
            high_category=Sex.FEMALE, low_category=Sex.MALE, separation_threshold=5.0,
        )
        assert verdicts["S2"].status is Concordance.CONSISTENT


class TestErrors:

    def test_missing_marker(self, marker_table):
        with pytest.raises(MarkerNotFoundError) as exc_info:
            check_concordance(marker_table, "Xist", "Kdm5d", {"S1": "M"}, "F", "M", 5.0)
        assert exc_info.value.markers == ("Kdm5d",)

    def test_sample_without_label(self, marker_table):
        with pytest.raises(JoinError):
            _check(marker_table, {"S1": "M", "S2": "F"})

    def test_label_outside_categories(self, marker_table):
        with pytest.raises(UnknownCodeError):
            _check(marker_table, {"S1": "M", "S2": "F", "S3": "U", "S4": "F"})

    def test_threshold_required(self):
        with pytest.raises(ValueError):
            MarkerConcordanceDetector("Xist", "Ddx3y", "F", "M", None)

    def test_same_marker_twice(self):
        with pytest.raises(ValueError):
            MarkerConcordanceDetector("Xist", "Xist", "F", "M", 5.0)

    def test_bad_threshold_pair(self):
        with pytest.raises(ValueError):
            MarkerConcordanceDetector("Xist", "Ddx3y", "F", "M", (1.0, 2.0, 3.0))


class TestThresholds:

    def test_derive_otsu_small_sample(self, marker_table):
        threshold = derive_separation_threshold(marker_table, "Xist")
        assert 0.3 < threshold < 8.7

    def test_derive_kmeans(self, marker_table):
        threshold = derive_separation_threshold(marker_table, "Ddx3y", method="kmeans")
        assert 0.4 < threshold < 7.9

    def test_derive_otsu_large_sample(self):
        rng = np.random.RandomState(0)
        values = np.concatenate([rng.normal(0.5, 0.2, 20), rng.normal(9.0, 0.3, 20)])
        table = Table(values[None, :], ["Xist"], [f"S{i}" for i in range(40)])
        threshold = derive_separation_threshold(table, "Xist")
        assert values[:20].max() < threshold < values[20:].min()

    def test_unknown_method(self, marker_table):
        with pytest.raises(ValueError):
            derive_separation_threshold(marker_table, "Xist", method="gmm")

    def test_missing_marker(self, marker_table):
        with pytest.raises(MarkerNotFoundError):
            derive_separation_threshold(marker_table, "Uty")

    def test_detector_exposes_thresholds(self):
        detector = MarkerConcordanceDetector("Xist", "Ddx3y", "F", "M", (4.0, 2.5))
        assert detector.thresholds == (4.0, 2.5)


def test_marker_separation(table, records):
    labels = {r.sample_id: r.sex for r in records}
    assert marker_separation(table, "Xist", labels, Sex.FEMALE) > 10


def test_summarize_verdicts(marker_table):
    verdicts = _check(marker_table, {"S1": "M", "S2": "F", "S3": "M", "S4": "F"})
    frame = summarize_verdicts(verdicts)
    assert isinstance(frame, pd.DataFrame)
    assert frame.loc["S3", "status"] == "inconsistent"
    assert frame.loc["S3", "implied_label"] == "F"
    assert frame.loc["S1", "positive_value"] == pytest.approx(0.2)


def test_marker_profile_contradicting_label():
    table = Table(
        np.array([[4.0, 4.0, 0.2], [0.1, 0.1, 3.5]]),
        ["Xist", "Ddx3y"],
        ["S1", "S2", "S3"],
    )
    verdicts = _check(table, {"S1": "M", "S2": "F", "S3": "M"}, threshold=1.0)
    assert verdicts["S1"].status is Concordance.INCONSISTENT
    assert verdicts["S2"].status is Concordance.CONSISTENT
    assert verdicts["S3"].status is Concordance.CONSISTENT
