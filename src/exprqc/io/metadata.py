"""
Recoding of raw sample metadata into canonical MetadataRecord objects.

Metadata sheets encode attributes inconsistently: sex as 1/2 or "male"/"F",
developmental stage as "E16"/"P2"/"4_weeks", batch as free text. Miscoded
categorical metadata is the failure mode this pipeline exists to catch, so
recoding is strict:

    - Every field with a code map must find each raw value in that map.
      An unmapped value raises UnknownCodeError naming field and value.
    - Categorical fields (sex, group, batch) require a code map.
    - Numeric fields (time, mapped_reads, feature_count) may have a code map
      (e.g. stage label -> days); otherwise values are parsed as numbers and
      a non-numeric value raises UnknownCodeError.

Nothing is passed through unmapped.

Examples:
    >>> code_maps = {
    ...     'sex': {1: 'M', 2: 'F'},
    ...     'group': {'wt': 'wild_type', 'NrlKO': 'knockout'},
    ...     'batch': {'HWI-EAS00184': 'run1', 'HWI-EAS00214': 'run2'},
    ...     'time': {'E16': -4.0, 'P2': 2.0, 'P6': 6.0},
    ... }
    >>> records = MetadataNormalizer(code_maps).normalize(raw_frame)
    >>> records[0].sex
    <Sex.MALE: 'M'>
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from exprqc.core.errors import MissingFieldError, UnknownCodeError
from exprqc.core.records import (
    CATEGORICAL_FIELDS,
    METADATA_FIELDS,
    MetadataRecord,
    Sex,
)

__all__ = ['MetadataNormalizer', 'normalize', 'records_to_frame']

logger = logging.getLogger(__name__)

RawRecords = Union[pd.DataFrame, Sequence[Mapping[str, Any]]]


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return value is pd.NA or value is pd.NaT


def _lookup_keys(value: Any) -> list[Any]:
    """
    Candidate keys for a raw value: itself, then its canonical string form.

    Strings are never parsed as numbers, so "01" does not reach code 1; the
    code table carries str(1) == "1" for string input instead.
    """
    keys = [value]
    if isinstance(value, (np.generic,)):
        value = value.item()
        keys.append(value)
    if isinstance(value, float) and value.is_integer():
        keys.append(int(value))
    if isinstance(value, str):
        keys.append(value.strip())
    else:
        keys.append(str(value))
        if isinstance(value, float) and value.is_integer():
            keys.append(str(int(value)))
    return keys


def _to_sex(value: Any, field_name: str) -> Sex:
    if isinstance(value, Sex):
        return value
    text = str(value).strip().upper()
    if text in Sex.__members__:
        return Sex[text]
    try:
        return Sex(text)
    except ValueError:
        raise UnknownCodeError(
            field_name, value,
            f"Code map for '{field_name}' maps to {value!r}, which is not a Sex "
            f"(expected one of {[s.value for s in Sex]})"
        ) from None


@dataclass
class MetadataNormalizer:
    """
    Strict recoder from raw metadata rows to MetadataRecord.

    Attributes:
        code_maps: Field name -> {raw code: canonical value}
        field_names: Canonical field name -> column name in the raw rows, for
            fields whose raw column is named differently
    """
    code_maps: Mapping[str, Mapping[Any, Any]]
    field_names: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        unknown = set(self.code_maps) - set(METADATA_FIELDS)
        if unknown:
            raise ValueError(f"Code maps given for unknown metadata fields: {sorted(unknown)}")
        if 'sample_id' in self.code_maps:
            raise ValueError("sample_id cannot be recoded; reconcile identifiers instead")
        for name in CATEGORICAL_FIELDS:
            if name not in self.code_maps:
                raise UnknownCodeError(
                    name, None,
                    f"Categorical field '{name}' has no code map; "
                    "every categorical field must be recoded explicitly"
                )

        # Normalize lookup tables once: each raw key is also reachable via its
        # integer and string forms.
        self._tables: dict[str, dict[Any, Any]] = {}
        for name, mapping in self.code_maps.items():
            table: dict[Any, Any] = {}
            for raw, canonical in mapping.items():
                if name == 'sex':
                    canonical = _to_sex(canonical, name)
                for key in _lookup_keys(raw):
                    table.setdefault(key, canonical)
            self._tables[name] = table

    def _raw_value(self, row: Mapping[str, Any], name: str, index: int) -> Any:
        column = self.field_names.get(name, name)
        if column not in row:
            raise MissingFieldError(name, index)
        return row[column]

    def _recode(self, name: str, value: Any) -> Any:
        if _is_missing(value):
            raise UnknownCodeError(name, value, f"Missing value for metadata field '{name}'")

        table = self._tables.get(name)
        if table is not None:
            for key in _lookup_keys(value):
                try:
                    if key in table:
                        return table[key]
                except TypeError:
                    continue
            raise UnknownCodeError(name, value)

        try:
            number = float(value)
        except (TypeError, ValueError):
            raise UnknownCodeError(
                name, value, f"Non-numeric value {value!r} for numeric field '{name}'"
            ) from None
        if math.isnan(number):
            raise UnknownCodeError(name, value, f"Missing value for metadata field '{name}'")
        return number

    def _to_int(self, name: str, raw: Any, value: Any) -> int:
        number = float(value)
        if not number.is_integer():
            raise UnknownCodeError(
                name, raw, f"Non-integer value {raw!r} for count field '{name}'"
            )
        return int(number)

    def normalize_record(self, row: Mapping[str, Any], index: int = 0) -> MetadataRecord:
        """Recode one raw row."""
        sample_id = self._raw_value(row, 'sample_id', index)
        if _is_missing(sample_id):
            raise MissingFieldError('sample_id', index)

        raw = {name: self._raw_value(row, name, index) for name in METADATA_FIELDS[1:]}
        values = {name: self._recode(name, raw[name]) for name in raw}

        return MetadataRecord(
            sample_id=str(sample_id).strip(),
            sex=_to_sex(values['sex'], 'sex'),
            group=str(values['group']),
            time=float(values['time']),
            batch=str(values['batch']),
            mapped_reads=self._to_int('mapped_reads', raw['mapped_reads'], values['mapped_reads']),
            feature_count=self._to_int('feature_count', raw['feature_count'], values['feature_count']),
        )

    def normalize(self, raw_records: RawRecords) -> list[MetadataRecord]:
        """
        Recode all raw rows.

        Args:
            raw_records: DataFrame (one row per sample) or sequence of mappings

        Returns:
            One MetadataRecord per input row, in input order

        Raises:
            UnknownCodeError: On any value not covered by its code map
            MissingFieldError: If a required field is absent from a row
        """
        rows: Iterable[Mapping[str, Any]]
        if isinstance(raw_records, pd.DataFrame):
            rows = raw_records.to_dict(orient='records')
        else:
            rows = raw_records

        records = [self.normalize_record(row, i) for i, row in enumerate(rows)]
        logger.info(f"Normalized metadata for {len(records)} samples")
        return records


def normalize(
    raw_records: RawRecords,
    code_maps: Mapping[str, Mapping[Any, Any]],
    field_names: Optional[Mapping[str, str]] = None,
) -> list[MetadataRecord]:
    """Convenience wrapper around MetadataNormalizer(code_maps).normalize()."""
    return MetadataNormalizer(code_maps, dict(field_names or {})).normalize(raw_records)


def records_to_frame(records: Sequence[MetadataRecord]) -> pd.DataFrame:
    """Sample-indexed DataFrame of metadata records."""
    frame = pd.DataFrame([r.as_dict() for r in records], columns=list(METADATA_FIELDS))
    return frame.set_index('sample_id')
