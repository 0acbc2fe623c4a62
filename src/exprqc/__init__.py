"""
exprqc - Quality control for expression matrices and their sample metadata

Aligns the sample identifiers of an expression matrix with a metadata sheet,
recodes the metadata into canonical values, and runs the checks that catch
a broken dataset before any downstream analysis: value ranges, group
counts, design confounds, sample correlation outliers, and marker-gene
concordance of categorical labels.
"""

__version__ = "0.1.0"

from exprqc.core.table import Table
from exprqc.core.records import MetadataRecord, LongRecord, Sex, Concordance
from exprqc.io.identifiers import IdentifierReconciler
from exprqc.io.metadata import MetadataNormalizer
from exprqc.quality.concordance import MarkerConcordanceDetector

__all__ = [
    "Table",
    "MetadataRecord",
    "LongRecord",
    "Sex",
    "Concordance",
    "IdentifierReconciler",
    "MetadataNormalizer",
    "MarkerConcordanceDetector",
]
