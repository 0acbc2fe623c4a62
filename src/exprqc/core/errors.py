"""
Error taxonomy for alignment, recoding, joining and QC statistics.

Every error here is fatal and carries the offending keys or values so the
upstream data can be fixed. Nothing in exprqc drops, truncates or imputes
data to get around one of these.

Each class also derives from the builtin exception a caller would naturally
catch (ValueError for bad values, KeyError for absent keys).
"""

from __future__ import annotations

from typing import Any, Iterable

__all__ = [
    'ExprQCError',
    'AlignmentError',
    'UnknownCodeError',
    'MissingFieldError',
    'JoinError',
    'EmptyInputError',
    'MarkerNotFoundError',
]


def _preview(keys: Iterable[Any], limit: int = 10) -> str:
    keys = sorted(str(k) for k in keys)
    shown = ", ".join(keys[:limit])
    if len(keys) > limit:
        shown += f", ... ({len(keys) - limit} more)"
    return f"[{shown}]"


class ExprQCError(Exception):
    """Base class for all data-quality errors raised by exprqc."""
    pass


class AlignmentError(ExprQCError, ValueError):
    """
    Identifier sets from two sources do not correspond 1:1.

    Attributes:
        only_in_a: Canonical identifiers present only in source A
        only_in_b: Canonical identifiers present only in source B
        duplicates: Canonical identifier -> raw identifiers that collapsed
            onto it within a single source
    """

    def __init__(
        self,
        only_in_a: Iterable[str] = (),
        only_in_b: Iterable[str] = (),
        duplicates: dict[str, list[str]] | None = None,
    ):
        self.only_in_a = frozenset(only_in_a)
        self.only_in_b = frozenset(only_in_b)
        self.duplicates = dict(duplicates or {})

        parts = []
        if self.only_in_a:
            parts.append(f"{len(self.only_in_a)} only in A: {_preview(self.only_in_a)}")
        if self.only_in_b:
            parts.append(f"{len(self.only_in_b)} only in B: {_preview(self.only_in_b)}")
        if self.duplicates:
            dup = "; ".join(
                f"{key} <- {sorted(raws)}" for key, raws in sorted(self.duplicates.items())
            )
            parts.append(f"non-unique canonical identifiers: {dup}")
        super().__init__("Sample identifiers do not align: " + "; ".join(parts))

    @property
    def symmetric_difference(self) -> frozenset[str]:
        return self.only_in_a | self.only_in_b


class UnknownCodeError(ExprQCError, ValueError):
    """A raw metadata value has no entry in the code map for its field."""

    def __init__(self, field: str, value: Any, message: str | None = None):
        self.field = field
        self.value = value
        if message is None:
            message = f"Unknown code {value!r} for metadata field '{field}'"
        super().__init__(message)


class MissingFieldError(ExprQCError, KeyError):
    """A raw metadata record lacks a required field."""

    def __init__(self, field: str, record_index: int | None = None):
        self.field = field
        self.record_index = record_index
        where = f" (record {record_index})" if record_index is not None else ""
        super().__init__(f"Required metadata field '{field}' is missing{where}")

    def __str__(self) -> str:
        return str(self.args[0])


class JoinError(ExprQCError, ValueError):
    """
    Samples present on one side of a keyed join but not the other.

    Attributes:
        missing_metadata: Sample keys in the matrix without a metadata record
        missing_columns: Sample keys with metadata but no matrix column
        duplicated: Sample keys appearing more than once in the metadata
    """

    def __init__(
        self,
        missing_metadata: Iterable[str] = (),
        missing_columns: Iterable[str] = (),
        duplicated: Iterable[str] = (),
        context: str = "join",
    ):
        self.missing_metadata = frozenset(missing_metadata)
        self.missing_columns = frozenset(missing_columns)
        self.duplicated = frozenset(duplicated)

        parts = []
        if self.missing_metadata:
            parts.append(
                f"{len(self.missing_metadata)} sample(s) without metadata: "
                f"{_preview(self.missing_metadata)}"
            )
        if self.missing_columns:
            parts.append(
                f"{len(self.missing_columns)} metadata record(s) without a matrix column: "
                f"{_preview(self.missing_columns)}"
            )
        if self.duplicated:
            parts.append(f"duplicated metadata sample keys: {_preview(self.duplicated)}")
        super().__init__(f"Incomplete {context}: " + "; ".join(parts))


class EmptyInputError(ExprQCError, ValueError):
    """A statistic was requested over zero rows, columns or records."""
    pass


class MarkerNotFoundError(ExprQCError, KeyError):
    """One or more marker features are absent from the expression table."""

    def __init__(self, markers: Iterable[str]):
        self.markers = tuple(markers)
        super().__init__(
            f"Marker feature(s) not found in expression table: {list(self.markers)}"
        )

    def __str__(self) -> str:
        return str(self.args[0])
