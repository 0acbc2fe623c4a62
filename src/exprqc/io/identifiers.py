"""
Sample identifier reconciliation between two independently named sources.

Expression matrices and metadata sheets rarely agree on sample names. Here
the matrix columns carry a positional prefix from the sequencing facility,
while the metadata uses the bare sample name:

    Matrix column:   X12.5.2.2.1.SampleA   (<run>.<plate>.<well>...<suffix>)
    Metadata row:    SampleA

IdentifierReconciler reduces both sides to a canonical key and requires an
exact 1:1 correspondence. Any identifier present on one side only, or two raw
identifiers collapsing to the same canonical key, raises AlignmentError with
the full symmetric difference so the naming mismatch can be diagnosed.

Canonicalization is idempotent: an identifier that is already canonical maps
to itself.

Examples:
    >>> reconciler = IdentifierReconciler()
    >>> map_a, map_b = reconciler.reconcile(["X12.5.2.2.1.SampleA"], ["SampleA"])
    >>> map_a
    {'X12.5.2.2.1.SampleA': 'SampleA'}
    >>> map_b
    {'SampleA': 'SampleA'}
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from typing import Optional, Sequence

from exprqc.core.errors import AlignmentError

__all__ = ['IdentifierReconciler']

logger = logging.getLogger(__name__)


@dataclass
class IdentifierReconciler:
    """
    Canonicalize and align sample identifiers from two sources.

    Canonicalization rules, in order:
        1. If `pattern` is set and matches, its first capture group is the key.
        2. Otherwise split on `delimiter`. With `n_prefix_fields` set, drop that
           many leading fields (only when more fields than that are present);
           without it, keep the last field.

    Attributes:
        delimiter: Separator between positional prefix fields
        n_prefix_fields: Number of leading fields forming the prefix, or None
            to keep only the final field
        pattern: Optional regex with one capture group for the canonical key
        strip_whitespace: Trim surrounding whitespace before parsing

    Examples:
        >>> IdentifierReconciler().canonicalize("X12.5.2.2.1.SampleA")
        'SampleA'
        >>> IdentifierReconciler(n_prefix_fields=3).canonicalize("r1.p2.w3.Sample.A")
        'Sample.A'
        >>> IdentifierReconciler(pattern=r'(Sample[A-Z]+)$').canonicalize("run7_SampleB")
        'SampleB'
    """
    delimiter: str = '.'
    n_prefix_fields: Optional[int] = None
    pattern: Optional[str] = None
    strip_whitespace: bool = True

    def __post_init__(self):
        if not self.delimiter:
            raise ValueError("delimiter must be a non-empty string")
        if self.n_prefix_fields is not None and self.n_prefix_fields < 0:
            raise ValueError(f"n_prefix_fields must be >= 0, got {self.n_prefix_fields}")
        self._compiled_pattern = re.compile(self.pattern) if self.pattern else None
        if self._compiled_pattern is not None and self._compiled_pattern.groups < 1:
            raise ValueError(f"pattern must contain a capture group: {self.pattern!r}")

    def canonicalize(self, sample_id: str) -> str:
        """Reduce one raw identifier to its canonical key."""
        sid = str(sample_id)
        if self.strip_whitespace:
            sid = sid.strip()

        if self._compiled_pattern is not None:
            match = self._compiled_pattern.search(sid)
            if match:
                return match.group(1)

        parts = sid.split(self.delimiter)
        if self.n_prefix_fields is None:
            return parts[-1]
        if len(parts) > self.n_prefix_fields:
            return self.delimiter.join(parts[self.n_prefix_fields:])
        return sid

    def canonical_map(self, raw_ids: Sequence[str]) -> dict[str, str]:
        """
        Map each raw identifier of one source to its canonical key.

        Raises:
            AlignmentError: If two raw identifiers collapse onto one key
        """
        mapping: dict[str, str] = {}
        collisions: dict[str, list[str]] = defaultdict(list)
        for raw in raw_ids:
            canonical = self.canonicalize(raw)
            collisions[canonical].append(str(raw))
            mapping[str(raw)] = canonical

        duplicates = {k: v for k, v in collisions.items() if len(v) > 1}
        if duplicates:
            raise AlignmentError(duplicates=duplicates)
        return mapping

    def reconcile(
        self,
        raw_a: Sequence[str],
        raw_b: Sequence[str],
    ) -> tuple[dict[str, str], dict[str, str]]:
        """
        Canonicalize both identifier sets and require exact correspondence.

        Args:
            raw_a: Identifiers from source A (e.g. expression matrix columns)
            raw_b: Identifiers from source B (e.g. metadata sample column)

        Returns:
            (mapping A raw -> canonical, mapping B raw -> canonical)

        Raises:
            AlignmentError: If the canonical sets differ, or if identifiers
                within one source are not unique after canonicalization
        """
        duplicates: dict[str, list[str]] = {}
        maps = []
        for raw_ids in (raw_a, raw_b):
            try:
                maps.append(self.canonical_map(raw_ids))
            except AlignmentError as e:
                duplicates.update(e.duplicates)
                maps.append({str(r): self.canonicalize(r) for r in raw_ids})
        map_a, map_b = maps

        keys_a = set(map_a.values())
        keys_b = set(map_b.values())
        only_a = keys_a - keys_b
        only_b = keys_b - keys_a

        if only_a or only_b or duplicates:
            logger.error(
                f"Identifier reconciliation failed: {len(only_a)} only in A, "
                f"{len(only_b)} only in B, {len(duplicates)} non-unique keys"
            )
            raise AlignmentError(only_in_a=only_a, only_in_b=only_b, duplicates=duplicates)

        n_renamed = sum(raw != canonical for raw, canonical in map_a.items())
        n_renamed += sum(raw != canonical for raw, canonical in map_b.items())
        logger.info(
            f"Reconciled {len(keys_a)} sample identifiers "
            f"({n_renamed} raw identifiers rewritten)"
        )
        return map_a, map_b
