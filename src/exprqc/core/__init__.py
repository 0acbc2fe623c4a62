"""
Core data structures shared by every exprqc stage.

1. Table: Immutable features x samples expression matrix
2. MetadataRecord / LongRecord / ConcordanceVerdict: typed per-sample records
3. Error taxonomy: one exception per way a dataset can fail to line up
4. Tidy conversions between the wide Table and the long relation

Examples:
    >>> from exprqc.core import Table, melt, widen
    >>> table = Table(data, feature_ids=genes, sample_ids=samples)
    >>> long = melt(table, metadata)
    >>> widen(long) == table
    True
"""

from exprqc.core.errors import (
    ExprQCError,
    AlignmentError,
    UnknownCodeError,
    MissingFieldError,
    JoinError,
    EmptyInputError,
    MarkerNotFoundError,
)
from exprqc.core.records import (
    Sex,
    Concordance,
    MetadataRecord,
    LongRecord,
    ConcordanceVerdict,
    METADATA_FIELDS,
    CATEGORICAL_FIELDS,
    NUMERIC_FIELDS,
)
from exprqc.core.table import Table
from exprqc.core.tidy import index_metadata, melt, melt_frame, widen

__all__ = [
    'ExprQCError',
    'AlignmentError',
    'UnknownCodeError',
    'MissingFieldError',
    'JoinError',
    'EmptyInputError',
    'MarkerNotFoundError',
    'Sex',
    'Concordance',
    'MetadataRecord',
    'LongRecord',
    'ConcordanceVerdict',
    'METADATA_FIELDS',
    'CATEGORICAL_FIELDS',
    'NUMERIC_FIELDS',
    'Table',
    'index_metadata',
    'melt',
    'melt_frame',
    'widen',
]
