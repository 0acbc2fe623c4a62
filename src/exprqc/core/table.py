"""
Immutable expression table: features (rows) x samples (columns).

Table pairs a dense float matrix with unique row and column labels. It is the
input of every QC step in exprqc and is never modified in place: subsetting,
renaming and reordering all return new instances.

Biological Context:
    - Rows = features (genes, identified by symbol or probe ID)
    - Columns = samples (one animal / library each)
    - Values = expression measurements

    The matrix is assumed complete. A ragged or misshaped input is a
    construction error, not missing data. NaN cells are representable so
    that `exprqc.stats.summary.has_missing` can report them.

Examples:
    >>> import numpy as np
    >>> import pandas as pd
    >>> from exprqc.core.table import Table
    >>>
    >>> table = Table(
    ...     data=np.array([[9.8, 0.1], [0.1, 9.5]]),
    ...     feature_ids=pd.Index(["Xist", "Ddx3y"]),
    ...     sample_ids=pd.Index(["S1", "S2"]),
    ... )
    >>> table.row("Xist")["S1"]
    9.8
    >>> subset = table.select_samples(["S2"])
"""

from __future__ import annotations

from typing import Mapping, Sequence

import numpy as np
import pandas as pd

__all__ = ['Table']


def _as_index(labels: Sequence[str] | pd.Index, what: str) -> pd.Index:
    index = labels if isinstance(labels, pd.Index) else pd.Index(list(labels))
    index = pd.Index([str(label) for label in index], dtype=object)
    if index.has_duplicates:
        dups = sorted(set(index[index.duplicated()]))
        raise ValueError(f"{what} must be unique, duplicated: {dups[:10]}")
    return index


class Table:
    """
    Immutable container for a features x samples expression matrix.

    Attributes:
        data: Read-only float matrix (features x samples)
        feature_ids: Row identifiers
        sample_ids: Column identifiers

    Shape Invariants:
        - data.shape == (len(feature_ids), len(sample_ids))
        - feature_ids and sample_ids are unique
    """

    def __init__(
        self,
        data: np.ndarray,
        feature_ids: Sequence[str] | pd.Index,
        sample_ids: Sequence[str] | pd.Index,
    ):
        """
        Initialize Table with validation.

        Args:
            data: Expression matrix (features x samples), coerced to float64
            feature_ids: Row identifiers (genes)
            sample_ids: Column identifiers (samples)

        Raises:
            TypeError: If data is not array-like numeric
            ValueError: If shapes are inconsistent or labels are not unique
        """
        try:
            array = np.array(data, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise TypeError(f"data must be a numeric 2D array: {e}") from e

        if array.ndim != 2:
            raise ValueError(f"data must be 2D, got shape {array.shape}")

        feature_index = _as_index(feature_ids, "feature_ids")
        sample_index = _as_index(sample_ids, "sample_ids")

        n_features, n_samples = array.shape
        if len(feature_index) != n_features:
            raise ValueError(
                f"feature_ids length ({len(feature_index)}) must match data rows ({n_features})"
            )
        if len(sample_index) != n_samples:
            raise ValueError(
                f"sample_ids length ({len(sample_index)}) must match data columns ({n_samples})"
            )

        array.setflags(write=False)
        self._data = array
        self._feature_ids = feature_index
        self._sample_ids = sample_index

    @classmethod
    def from_frame(cls, frame: pd.DataFrame) -> Table:
        """Build a Table from a DataFrame indexed by feature with one column per sample."""
        if not isinstance(frame, pd.DataFrame):
            raise TypeError(f"frame must be pd.DataFrame, got {type(frame)}")
        non_numeric = [c for c in frame.columns if not pd.api.types.is_numeric_dtype(frame[c])]
        if non_numeric:
            raise TypeError(f"Non-numeric sample columns: {[str(c) for c in non_numeric[:10]]}")
        return cls(frame.to_numpy(dtype=np.float64), frame.index, frame.columns)

    def to_frame(self) -> pd.DataFrame:
        """Copy of the table as a feature-indexed DataFrame."""
        return pd.DataFrame(
            self._data.copy(),
            index=self._feature_ids.copy(),
            columns=self._sample_ids.copy(),
        )

    @property
    def data(self) -> np.ndarray:
        """Expression matrix (features x samples), read-only."""
        return self._data

    @property
    def feature_ids(self) -> pd.Index:
        """Row identifiers."""
        return self._feature_ids

    @property
    def sample_ids(self) -> pd.Index:
        """Column identifiers."""
        return self._sample_ids

    @property
    def shape(self) -> tuple[int, int]:
        """Matrix dimensions (n_features, n_samples)."""
        return self._data.shape

    @property
    def n_features(self) -> int:
        return self._data.shape[0]

    @property
    def n_samples(self) -> int:
        return self._data.shape[1]

    @property
    def is_empty(self) -> bool:
        return self._data.size == 0

    def has_feature(self, feature_id: str) -> bool:
        return feature_id in self._feature_ids

    def row(self, feature_id: str) -> pd.Series:
        """
        Expression of one feature across all samples.

        Raises:
            KeyError: If the feature is not in the table
        """
        if feature_id not in self._feature_ids:
            raise KeyError(feature_id)
        i = self._feature_ids.get_loc(feature_id)
        return pd.Series(self._data[i, :].copy(), index=self._sample_ids, name=feature_id)

    def column(self, sample_id: str) -> pd.Series:
        """
        Expression of all features in one sample.

        Raises:
            KeyError: If the sample is not in the table
        """
        if sample_id not in self._sample_ids:
            raise KeyError(sample_id)
        j = self._sample_ids.get_loc(sample_id)
        return pd.Series(self._data[:, j].copy(), index=self._feature_ids, name=sample_id)

    def select_samples(self, sample_ids: Sequence[str]) -> Table:
        """
        Subset columns, in the given order.

        Raises:
            KeyError: If any requested sample is absent
        """
        missing = [s for s in sample_ids if s not in self._sample_ids]
        if missing:
            raise KeyError(f"Samples not in table: {missing[:10]}")
        positions = self._sample_ids.get_indexer(list(sample_ids))
        return Table(self._data[:, positions], self._feature_ids, self._sample_ids[positions])

    def select_features(self, feature_ids: Sequence[str]) -> Table:
        """
        Subset rows, in the given order.

        Raises:
            KeyError: If any requested feature is absent
        """
        missing = [f for f in feature_ids if f not in self._feature_ids]
        if missing:
            raise KeyError(f"Features not in table: {missing[:10]}")
        positions = self._feature_ids.get_indexer(list(feature_ids))
        return Table(self._data[positions, :], self._feature_ids[positions], self._sample_ids)

    def rename_samples(self, mapping: Mapping[str, str]) -> Table:
        """
        Rename columns through a complete mapping (e.g. raw -> canonical IDs).

        Raises:
            KeyError: If a column has no entry in the mapping
            ValueError: If the renamed columns are not unique
        """
        missing = [s for s in self._sample_ids if s not in mapping]
        if missing:
            raise KeyError(f"No new name for samples: {missing[:10]}")
        return Table(self._data, self._feature_ids, [mapping[s] for s in self._sample_ids])

    def reorder_samples(self, order: Sequence[str]) -> Table:
        """Permute columns. `order` must contain exactly the current sample IDs."""
        if len(order) != self.n_samples or set(order) != set(self._sample_ids):
            raise ValueError("order must be a permutation of the table's sample IDs")
        return self.select_samples(order)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Table):
            return NotImplemented
        return (
            self._feature_ids.equals(other._feature_ids)
            and self._sample_ids.equals(other._sample_ids)
            and np.array_equal(self._data, other._data, equal_nan=True)
        )

    __hash__ = None

    def __repr__(self) -> str:
        if self.is_empty:
            return f"Table({self.n_features} features × {self.n_samples} samples)"
        return (
            f"Table({self.n_features} features × {self.n_samples} samples)\n"
            f"  Features: {self.feature_ids[0]}...{self.feature_ids[-1]}\n"
            f"  Samples: {self.sample_ids[0]}...{self.sample_ids[-1]}"
        )
