"""
Quality checks that compare expression against recorded annotations.

Available:
- MarkerConcordanceDetector: per-sample check of a categorical label against
  two marker genes with opposite expression patterns
"""

from exprqc.quality.concordance import (
    MarkerConcordanceDetector,
    check_concordance,
    derive_separation_threshold,
    marker_separation,
    summarize_verdicts,
)

__all__ = [
    'MarkerConcordanceDetector',
    'check_concordance',
    'derive_separation_threshold',
    'marker_separation',
    'summarize_verdicts',
]
