"""
Tabular data sources feeding the QC pipeline.

The QC core never parses files. It consumes a DataSource, which returns the
expression matrix as a Table and the raw (not yet recoded) metadata as a
DataFrame with one row per sample. Two implementations are provided:

    InMemoryDataSource   wraps objects already in memory (tests, notebooks)
    DelimitedFileSource  reads CSV/TSV files (optionally gzip-compressed)

Expected matrix layout for DelimitedFileSource:
    First column: feature IDs (gene symbols / probe IDs)
    Remaining columns: one per sample, numeric

    ```
    "gene","X12.5.2.2.1.SampleA","X12.5.2.2.2.SampleB"
    "Xist",9.81,0.12
    "Ddx3y",0.10,9.53
    ```
"""

from __future__ import annotations

import csv
import gzip
import itertools
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import pandas as pd

from exprqc.core.table import Table

__all__ = [
    'DataSource',
    'InMemoryDataSource',
    'DelimitedFileSource',
    'sniff_delimiter',
]

logger = logging.getLogger(__name__)


_CANDIDATES = ('\t', ',', ';', '|')


def _head_lines(path: Path, n_lines: int) -> list[str]:
    opener = gzip.open if path.suffix == '.gz' else open
    with opener(path, 'rt', encoding='utf-8', errors='ignore') as f:
        return [line for line in itertools.islice(f, n_lines) if line.strip()]


def sniff_delimiter(path: Path, n_lines: int = 20) -> str:
    """
    Pick the field separator of a delimited matrix or metadata file.

    A candidate qualifies when it splits every data line among the first
    `n_lines` into the same number (> 1) of fields, and the header into that
    number or one fewer (R's write.table leaves out the row-name header).
    The qualifying candidate giving the most fields wins.

    Raises:
        ValueError: If the file is empty or no candidate qualifies
    """
    path = Path(path)
    lines = _head_lines(path, n_lines)
    if not lines:
        raise ValueError(f"Cannot detect delimiter of empty file {path}")

    best, best_width = None, 1
    for sep in _CANDIDATES:
        widths = [len(row) for row in csv.reader(lines, delimiter=sep)]
        body = widths[1:] or widths
        width = body[0]
        if width <= best_width or any(w != width for w in body):
            continue
        if widths[0] not in (width, width - 1):
            continue
        best, best_width = sep, width

    if best is None:
        raise ValueError(
            f"Could not detect delimiter in {path} (tried {list(_CANDIDATES)}); "
            "pass it explicitly"
        )
    return best


class DataSource(ABC):
    """Abstract provider of the expression matrix and the raw metadata."""

    @abstractmethod
    def read_matrix(self) -> Table:
        """Expression table (features x samples) with raw sample identifiers."""

    @abstractmethod
    def read_metadata(self) -> pd.DataFrame:
        """Raw metadata, one row per sample, values not yet recoded."""


class InMemoryDataSource(DataSource):
    """DataSource over objects already in memory."""

    def __init__(self, matrix: Table | pd.DataFrame, metadata: pd.DataFrame):
        self._matrix = matrix if isinstance(matrix, Table) else Table.from_frame(matrix)
        self._metadata = metadata.copy()

    def read_matrix(self) -> Table:
        return self._matrix

    def read_metadata(self) -> pd.DataFrame:
        return self._metadata.copy()


class DelimitedFileSource(DataSource):
    """
    DataSource reading a delimited matrix file and a delimited metadata file.

    Args:
        matrix_path: Expression matrix (features in first column)
        metadata_path: Metadata sheet (one row per sample, header row)
        delimiter: Field separator; sniffed per file when None
        metadata_delimiter: Separator for the metadata file if it differs
    """

    def __init__(
        self,
        matrix_path: Path,
        metadata_path: Path,
        delimiter: Optional[str] = None,
        metadata_delimiter: Optional[str] = None,
    ):
        self.matrix_path = Path(matrix_path)
        self.metadata_path = Path(metadata_path)
        self.delimiter = delimiter
        self.metadata_delimiter = metadata_delimiter

    def _check_exists(self, path: Path) -> None:
        if not path.exists():
            raise FileNotFoundError(f"File not found: {path}")

    def _check_unique_header(self, header: list[str]) -> None:
        # pandas renames a repeated column to "S1.1", which would otherwise
        # surface later as a bogus identifier mismatch
        counts = pd.Series([name for name in header if name]).value_counts()
        duplicated = sorted(counts[counts > 1].index)
        if duplicated:
            raise ValueError(
                f"Matrix file {self.matrix_path} repeats sample header(s): {duplicated}"
            )

    def read_matrix(self) -> Table:
        """
        Raises:
            FileNotFoundError: If the matrix file does not exist
            ValueError: If the file is empty, not rectangular, non-numeric
                or repeats a sample header
        """
        self._check_exists(self.matrix_path)
        sep = self.delimiter or sniff_delimiter(self.matrix_path)

        try:
            header = pd.read_csv(self.matrix_path, sep=sep, header=None, nrows=1,
                                 dtype=str, keep_default_na=False).iloc[0]
            self._check_unique_header(header.tolist())
            frame = pd.read_csv(self.matrix_path, sep=sep, index_col=0)
        except pd.errors.EmptyDataError as e:
            raise ValueError(f"Matrix file is empty: {self.matrix_path}") from e
        except pd.errors.ParserError as e:
            raise ValueError(f"Malformed matrix file {self.matrix_path}: {e}") from e

        frame.index = frame.index.astype(str)
        frame.columns = frame.columns.astype(str)
        try:
            table = Table.from_frame(frame)
        except TypeError as e:
            raise ValueError(f"Matrix file {self.matrix_path} has non-numeric values: {e}") from e

        logger.info(
            f"Loaded matrix {self.matrix_path.name}: "
            f"{table.n_features:,} features × {table.n_samples:,} samples"
        )
        return table

    def read_metadata(self) -> pd.DataFrame:
        """
        Raises:
            FileNotFoundError: If the metadata file does not exist
            ValueError: If the file is empty or malformed
        """
        self._check_exists(self.metadata_path)
        sep = self.metadata_delimiter or self.delimiter or sniff_delimiter(self.metadata_path)

        try:
            frame = pd.read_csv(self.metadata_path, sep=sep)
        except pd.errors.EmptyDataError as e:
            raise ValueError(f"Metadata file is empty: {self.metadata_path}") from e
        except pd.errors.ParserError as e:
            raise ValueError(f"Malformed metadata file {self.metadata_path}: {e}") from e

        logger.info(f"Loaded metadata {self.metadata_path.name}: {len(frame)} rows")
        return frame
