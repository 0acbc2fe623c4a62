"""Tests for sample identifier reconciliation."""

import pytest

from exprqc.core.errors import AlignmentError
from exprqc.io.identifiers import IdentifierReconciler


class TestCanonicalize:

    def test_strips_positional_prefix(self):
        assert IdentifierReconciler().canonicalize("X12.5.2.2.1.SampleA") == "SampleA"

    def test_idempotent(self):
        reconciler = IdentifierReconciler()
        once = reconciler.canonicalize("X12.5.2.2.1.SampleA")
        assert reconciler.canonicalize(once) == once

    def test_already_canonical(self):
        assert IdentifierReconciler().canonicalize("SampleA") == "SampleA"

    def test_whitespace_trimmed(self):
        assert IdentifierReconciler().canonicalize("  SampleA ") == "SampleA"

    def test_fixed_prefix_keeps_dotted_names(self):
        reconciler = IdentifierReconciler(n_prefix_fields=3)
        assert reconciler.canonicalize("r1.p2.w3.Sample.A") == "Sample.A"
        # too few fields to carry the prefix: unchanged
        assert reconciler.canonicalize("Sample.A") == "Sample.A"

    def test_pattern(self):
        reconciler = IdentifierReconciler(pattern=r"(Sample[A-Z]+)$")
        assert reconciler.canonicalize("run7_SampleB") == "SampleB"

    def test_pattern_without_group_rejected(self):
        with pytest.raises(ValueError, match="capture group"):
            IdentifierReconciler(pattern=r"Sample")

    def test_empty_delimiter_rejected(self):
        with pytest.raises(ValueError):
            IdentifierReconciler(delimiter="")


class TestReconcile:

    def test_prefixed_against_bare(self):
        map_a, map_b = IdentifierReconciler().reconcile(["X12.5.2.2.1.SampleA"], ["SampleA"])
        assert map_a == {"X12.5.2.2.1.SampleA": "SampleA"}
        assert map_b == {"SampleA": "SampleA"}

    def test_many_samples(self, prefixed_frame, raw_metadata):
        map_a, map_b = IdentifierReconciler().reconcile(
            list(prefixed_frame.columns), list(raw_metadata["sidChar"])
        )
        assert sorted(map_a.values()) == sorted(map_b.values())
        assert len(map_a) == 6

    def test_symmetric_difference_reported(self):
        with pytest.raises(AlignmentError) as exc_info:
            IdentifierReconciler().reconcile(
                ["X1.S1", "X2.S2", "X3.S3"],
                ["S1", "S2", "S4"],
            )
        err = exc_info.value
        assert err.only_in_a == {"S3"}
        assert err.only_in_b == {"S4"}
        assert err.symmetric_difference == {"S3", "S4"}

    def test_collapsing_prefixes_rejected(self):
        with pytest.raises(AlignmentError) as exc_info:
            IdentifierReconciler().reconcile(["X1.S1", "X2.S1"], ["S1"])
        assert exc_info.value.duplicates == {"S1": ["X1.S1", "X2.S1"]}

    def test_alignment_error_is_value_error(self):
        with pytest.raises(ValueError):
            IdentifierReconciler().reconcile(["S1"], ["S2"])

    def test_reconcile_twice_is_stable(self):
        reconciler = IdentifierReconciler()
        map_a, _ = reconciler.reconcile(["X1.S1", "X2.S2"], ["S1", "S2"])
        again_a, _ = reconciler.reconcile(list(map_a.values()), ["S1", "S2"])
        assert all(k == v for k, v in again_a.items())
