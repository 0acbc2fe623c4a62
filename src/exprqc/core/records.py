"""
Typed per-sample records shared across the QC pipeline.

MetadataRecord is the canonical, recoded form of one sample's annotations
(see exprqc.io.metadata for the recoding). LongRecord is one cell of the
expression table joined with that sample's metadata (see exprqc.core.tidy).
ConcordanceVerdict is the per-sample result of the marker concordance check
(see exprqc.quality.concordance).

All records are frozen dataclasses: they are derived values, never mutated
after creation.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, asdict
from enum import Enum
from typing import Any, Optional

__all__ = [
    'Sex',
    'Concordance',
    'MetadataRecord',
    'LongRecord',
    'ConcordanceVerdict',
    'METADATA_FIELDS',
    'CATEGORICAL_FIELDS',
    'NUMERIC_FIELDS',
]


class Sex(str, Enum):
    """Biological sex enumeration."""
    MALE = 'M'
    FEMALE = 'F'

    def __str__(self) -> str:
        return self.value


class Concordance(str, Enum):
    """Outcome of a marker concordance check for one sample."""
    CONSISTENT = 'consistent'
    INCONSISTENT = 'inconsistent'
    INDETERMINATE = 'indeterminate'

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class MetadataRecord:
    """
    Canonical metadata for one sample.

    Attributes:
        sample_id: Canonical sample key (matches an expression table column)
        sex: Biological sex
        group: Experimental group category (e.g. genotype)
        time: Developmental time (continuous, e.g. days relative to birth)
        batch: Sequencing run / batch identifier
        mapped_reads: Number of reads mapped to the reference
        feature_count: Number of features detected
    """
    sample_id: str
    sex: Sex
    group: str
    time: float
    batch: str
    mapped_reads: int
    feature_count: int

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def get(self, field_name: str) -> Any:
        if field_name not in METADATA_FIELDS:
            raise KeyError(f"Unknown metadata field '{field_name}'")
        return getattr(self, field_name)


METADATA_FIELDS = tuple(f.name for f in fields(MetadataRecord))
CATEGORICAL_FIELDS = ('sex', 'group', 'batch')
NUMERIC_FIELDS = ('time', 'mapped_reads', 'feature_count')


@dataclass(frozen=True)
class LongRecord:
    """One (sample, feature) cell of the expression table plus sample metadata."""
    sample_id: str
    feature_id: str
    value: float
    metadata: MetadataRecord

    def as_dict(self) -> dict[str, Any]:
        row = {
            'sample_id': self.sample_id,
            'feature_id': self.feature_id,
            'value': self.value,
        }
        for name in METADATA_FIELDS:
            if name != 'sample_id':
                row[name] = getattr(self.metadata, name)
        return row


@dataclass(frozen=True)
class ConcordanceVerdict:
    """
    Marker concordance result for one sample.

    Attributes:
        sample_id: Sample key
        status: CONSISTENT, INCONSISTENT or INDETERMINATE
        asserted_label: Category recorded in the metadata
        positive_value: Expression of the positive marker
        negative_value: Expression of the negative marker
        implied_label: Category the two markers jointly point to, or None
            when the markers disagree with each other or are undetermined
    """
    sample_id: str
    status: Concordance
    asserted_label: Any
    positive_value: float
    negative_value: float
    implied_label: Optional[Any] = None

    @property
    def is_mismatch(self) -> bool:
        return self.status is Concordance.INCONSISTENT
