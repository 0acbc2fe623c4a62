"""
Input side of the pipeline: reading files, reconciling sample identifiers
and recoding raw metadata.
"""

from exprqc.io.identifiers import IdentifierReconciler
from exprqc.io.metadata import MetadataNormalizer, normalize, records_to_frame
from exprqc.io.sources import (
    DataSource,
    InMemoryDataSource,
    DelimitedFileSource,
    sniff_delimiter,
)

__all__ = [
    'IdentifierReconciler',
    'MetadataNormalizer',
    'normalize',
    'records_to_frame',
    'DataSource',
    'InMemoryDataSource',
    'DelimitedFileSource',
    'sniff_delimiter',
]
