"""Tests for sample correlation, outlier detection and confound detection."""

import numpy as np
import pytest

from exprqc.core.errors import EmptyInputError
from exprqc.core.records import MetadataRecord, Sex
from exprqc.core.table import Table
from exprqc.stats.correlation import (
    ConfoundType,
    CorrelationMatrix,
    correlation_matrix,
    detect_confound,
    detect_outliers,
    max_correlation,
)


class TestCorrelationMatrix:

    def test_symmetric_with_masked_diagonal(self, table):
        corr = correlation_matrix(table)
        assert corr.n_samples == table.n_samples
        assert corr.is_symmetric()
        assert np.isnan(np.diag(corr.values)).all()

    def test_matches_numpy(self, table):
        corr = correlation_matrix(table)
        expected = np.corrcoef(table.data, rowvar=False)
        off = ~np.eye(table.n_samples, dtype=bool)
        np.testing.assert_allclose(corr.values[off], expected[off], atol=1e-10)

    def test_bounded(self, table):
        values = correlation_matrix(table).values
        finite = values[~np.isnan(values)]
        assert (finite >= -1.0).all() and (finite <= 1.0).all()

    def test_parallel_matches_serial(self, table):
        serial = correlation_matrix(table)
        parallel = correlation_matrix(table, n_jobs=3, chunk_size=2)
        np.testing.assert_allclose(serial.values, parallel.values, equal_nan=True)

    def test_constant_sample_is_nan(self):
        data = np.array([[1.0, 5.0, 2.0], [2.0, 5.0, 4.0], [3.0, 5.0, 7.0]])
        corr = correlation_matrix(Table(data, ["G1", "G2", "G3"], ["A", "B", "C"]))
        assert np.isnan(corr["A", "B"])
        assert np.isnan(corr["C", "B"])
        assert not np.isnan(corr["A", "C"])

    def test_identical_constant_samples_are_nan(self):
        data = np.array([[3.0, 3.0, 1.0], [3.0, 3.0, 2.0], [3.0, 3.0, 4.0]])
        corr = correlation_matrix(Table(data, ["G1", "G2", "G3"], ["A", "B", "C"]))
        assert np.isnan(corr["A", "B"])

    def test_lookup_by_pair(self, table):
        corr = correlation_matrix(table)
        assert corr["S1", "S2"] == corr["S2", "S1"]

    def test_too_small(self):
        with pytest.raises(EmptyInputError):
            correlation_matrix(Table(np.ones((5, 1)), [f"G{i}" for i in range(5)], ["A"]))
        with pytest.raises(EmptyInputError):
            correlation_matrix(Table(np.ones((1, 5)), ["G1"], list("ABCDE")))

    def test_to_frame(self, table):
        frame = correlation_matrix(table).to_frame()
        assert list(frame.index) == list(frame.columns) == list(table.sample_ids)

    def test_values_read_only(self, table):
        corr = correlation_matrix(table)
        with pytest.raises(ValueError):
            corr.values[0, 1] = 0.0

    def test_non_square_rejected(self):
        with pytest.raises(ValueError, match="square"):
            CorrelationMatrix(np.ones((2, 3)), ["A", "B"])


class TestOutliers:

    @pytest.fixture
    def corr(self):
        values = np.array([
            [1.0, 0.95, 0.92, 0.40],
            [0.95, 1.0, 0.93, 0.35],
            [0.92, 0.93, 1.0, 0.50],
            [0.40, 0.35, 0.50, 1.0],
        ])
        return CorrelationMatrix(values, ["A", "B", "C", "D"])

    def test_max_correlation_ignores_diagonal(self, corr):
        best = max_correlation(corr)
        assert best["A"] == 0.95
        assert best["D"] == 0.50

    def test_flags_low_correlation_sample(self, corr):
        assert detect_outliers(corr, 0.9) == {"D"}

    def test_strict_threshold(self, corr):
        assert detect_outliers(corr, 0.5) == set()

    def test_threshold_out_of_range(self, corr):
        with pytest.raises(ValueError):
            detect_outliers(corr, 1.5)
        with pytest.raises(ValueError):
            detect_outliers(corr, None)

    def test_undefined_sample_not_flagged(self):
        values = np.array([
            [1.0, 0.9, np.nan],
            [0.9, 1.0, np.nan],
            [np.nan, np.nan, 1.0],
        ])
        corr = CorrelationMatrix(values, ["A", "B", "C"])
        assert detect_outliers(corr, 0.95) == {"A", "B"}

    def test_planted_outlier(self, expression_frame):
        frame = expression_frame.copy()
        rng = np.random.RandomState(7)
        frame["S3"] = rng.normal(loc=6.0, scale=2.0, size=len(frame))
        corr = correlation_matrix(Table.from_frame(frame))
        assert detect_outliers(corr, 0.8) == {"S3"}


def _record(sample_id, batch, time):
    return MetadataRecord(sample_id, Sex.MALE, "wild_type", time, batch, 1000, 100)


class TestConfound:

    def test_batch_fully_confounded_with_time(self, records):
        report = detect_confound(records, "batch", "time", skew_threshold=0.8)
        assert sorted(report.fully_confounded) == ["run1", "run2", "run3"]
        assert report.is_confounded
        assert report.levels["run1"].dominant_level == 2.0
        assert report.cramers_v == pytest.approx(1.0)

    def test_three_batches_against_five_declared_stages(self):
        stages = [-4.0, 2.0, 6.0, 10.0, 28.0]
        records = [
            _record(f"{batch}_{i}", batch, time)
            for batch, time in (("run1", 2.0), ("run2", 6.0), ("run3", 10.0))
            for i in range(3)
        ]
        report = detect_confound(records, "batch", "time", skew_threshold=0.8, levels_b=stages)

        assert len(report.contingency) == 15
        assert report.contingency[("run1", -4.0)] == 0
        assert report.contingency[("run2", 6.0)] == 3
        assert report.fully_confounded == ["run1", "run2", "run3"]
        assert report.partially_confounded == []
        assert all(len(level.counts) == 5 for level in report.levels.values())
        assert report.cramers_v == pytest.approx(1.0)

    def test_declared_batch_without_samples_not_assessed(self):
        records = [_record("a", "run1", 2.0), _record("b", "run2", 6.0)]
        report = detect_confound(records, "batch", "time", skew_threshold=0.8,
                                 levels_a=["run1", "run2", "run3"])
        assert set(report.levels) == {"run1", "run2"}
        assert report.contingency[("run3", 2.0)] == 0

    def test_partial_confound(self):
        records = (
            [_record(f"a{i}", "run1", 2.0) for i in range(9)]
            + [_record("a9", "run1", 6.0)]
            + [_record(f"b{i}", "run2", 2.0 if i % 2 else 6.0) for i in range(10)]
        )
        report = detect_confound(records, "batch", "time", skew_threshold=0.8)
        assert report.partially_confounded == ["run1"]
        assert report.fully_confounded == []
        assert report.levels["run1"].dominant_share == pytest.approx(0.9)
        assert report.levels["run2"].kind is ConfoundType.NONE

    def test_balanced_design(self, records):
        report = detect_confound(records, "sex", "batch", skew_threshold=0.8)
        assert not report.is_confounded

    def test_skew_threshold_required(self, records):
        with pytest.raises(ValueError):
            detect_confound(records, "batch", "time", skew_threshold=None)
        with pytest.raises(ValueError):
            detect_confound(records, "batch", "time", skew_threshold=0.0)

    def test_empty(self):
        with pytest.raises(EmptyInputError):
            detect_confound([], "batch", "time", skew_threshold=0.8)

    def test_report_serializes(self, records):
        report = detect_confound(records, "batch", "time", skew_threshold=0.8)
        payload = report.to_dict()
        assert payload["fully_confounded"] == ["run1", "run2", "run3"]
        frame = report.to_frame()
        assert set(frame["confound"]) == {"full"}
