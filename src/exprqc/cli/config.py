"""
Configuration file support for the exprqc pipeline and CLI.

Supports YAML and JSON config files. CLI arguments override file values.

Thresholds have no defaults: a stage whose threshold is not configured is
skipped rather than run with an arbitrary cutoff.

Example (YAML):

    reconcile:
      delimiter: "."
    metadata:
      field_names:
        sample_id: sidChar
        group: gType
        time: devStage
      code_maps:
        sex: {1: M, 2: F}
        group: {wt: wild_type, NrlKO: knockout}
        batch: {HWI-EAS00184: run1, HWI-EAS00214: run2, HWI-EAS00215: run3}
        time: {E16: -4, P2: 2, P6: 6, P10: 10, 4_weeks: 28}
    outliers:
      threshold: 0.9
    confounds:
      skew_threshold: 0.8
      pairs: [[batch, time]]
    concordance:
      positive_marker: Xist
      negative_marker: Ddx3y
      high_category: F
      low_category: M
      threshold_method: otsu
"""

from __future__ import annotations

import json
import logging
from argparse import Namespace
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from exprqc.core.records import METADATA_FIELDS

__all__ = [
    'ReconcileConfig',
    'MetadataConfig',
    'OutlierConfig',
    'ConfoundConfig',
    'ConcordanceConfig',
    'PipelineConfig',
    'load_config',
    'validate_config',
    'merge_config_with_args',
]

logger = logging.getLogger(__name__)


@dataclass
class ReconcileConfig:
    """Sample identifier canonicalization."""
    delimiter: str = "."
    n_prefix_fields: Optional[int] = None
    pattern: Optional[str] = None


@dataclass
class MetadataConfig:
    """Metadata recoding: code maps and raw column names."""
    code_maps: Dict[str, Dict[Any, Any]] = field(default_factory=dict)
    field_names: Dict[str, str] = field(default_factory=dict)


@dataclass
class OutlierConfig:
    """Sample correlation outlier detection."""
    threshold: Optional[float] = None
    n_jobs: int = 1
    compute_matrix: bool = True


@dataclass
class ConfoundConfig:
    """Confound checks between metadata factors."""
    skew_threshold: Optional[float] = None
    pairs: List[Tuple[str, str]] = field(default_factory=list)


@dataclass
class ConcordanceConfig:
    """Marker-gene concordance check."""
    positive_marker: str
    negative_marker: str
    high_category: Any
    low_category: Any
    separation_threshold: Optional[Any] = None
    threshold_method: str = "otsu"
    label_field: str = "sex"


@dataclass
class PipelineConfig:
    """
    Complete configuration for a QC run.

    Mirrors the YAML structure section by section.
    """
    matrix: Optional[Path] = None
    metadata_path: Optional[Path] = None
    output: Optional[Path] = None
    reconcile: ReconcileConfig = field(default_factory=ReconcileConfig)
    metadata: MetadataConfig = field(default_factory=MetadataConfig)
    outliers: OutlierConfig = field(default_factory=OutlierConfig)
    confounds: ConfoundConfig = field(default_factory=ConfoundConfig)
    concordance: Optional[ConcordanceConfig] = None
    count_fields: List[str] = field(default_factory=lambda: ['sex', 'group', 'batch', 'time'])
    cross_tabulate: List[Tuple[str, str]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> PipelineConfig:
        """
        Build a PipelineConfig from a loaded config dictionary.

        Raises:
            ValueError: If the configuration is invalid (see validate_config)
        """
        validate_config(config)

        reconcile = ReconcileConfig(**_section(config, 'reconcile'))
        meta = _section(config, 'metadata')
        metadata = MetadataConfig(
            code_maps=dict(meta.get('code_maps') or {}),
            field_names=dict(meta.get('field_names') or {}),
        )
        outliers = OutlierConfig(**_section(config, 'outliers'))

        conf = _section(config, 'confounds')
        confounds = ConfoundConfig(
            skew_threshold=conf.get('skew_threshold'),
            pairs=[tuple(p) for p in conf.get('pairs') or []],
        )

        concordance = None
        if config.get('concordance'):
            concordance = ConcordanceConfig(**config['concordance'])

        kwargs: Dict[str, Any] = {}
        if 'count_fields' in config:
            kwargs['count_fields'] = list(config['count_fields'])

        return cls(
            matrix=Path(config['matrix']) if config.get('matrix') else None,
            metadata_path=Path(config['metadata_path']) if config.get('metadata_path') else None,
            output=Path(config['output']) if config.get('output') else None,
            reconcile=reconcile,
            metadata=metadata,
            outliers=outliers,
            confounds=confounds,
            concordance=concordance,
            cross_tabulate=[tuple(p) for p in config.get('cross_tabulate') or []],
            **kwargs,
        )


_PARSERS = {
    '.yaml': (yaml.safe_load, yaml.YAMLError, 'YAML'),
    '.yml': (yaml.safe_load, yaml.YAMLError, 'YAML'),
    '.json': (json.load, json.JSONDecodeError, 'JSON'),
}


def load_config(config_path: Path) -> Dict[str, Any]:
    """
    Read a YAML (.yaml/.yml) or JSON (.json) config file into a dictionary.

    An empty file gives an empty dictionary.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: On an unknown suffix, a parse error, or a top level that
            is not a mapping
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()
    if suffix not in _PARSERS:
        raise ValueError(f"Unsupported config format: {suffix}. Use one of {sorted(_PARSERS)}")
    parse, parse_error, kind = _PARSERS[suffix]

    with open(config_path, 'r') as f:
        try:
            config = parse(f)
        except parse_error as e:
            raise ValueError(f"Invalid {kind} in config file {config_path}: {e}") from e

    config = {} if config is None else config
    if not isinstance(config, dict):
        raise ValueError(f"Config file {config_path} must hold a mapping at top level, "
                         f"got {type(config).__name__}")
    logger.info(f"Loaded config {config_path.name} with sections: {sorted(config)}")
    return config


_SECTIONS = {
    'reconcile': ReconcileConfig,
    'metadata': MetadataConfig,
    'outliers': OutlierConfig,
    'confounds': ConfoundConfig,
    'concordance': ConcordanceConfig,
}


def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    # an empty YAML section (`outliers:`) loads as None
    return config.get(name) or {}


def _check_sections(config: Dict[str, Any]) -> None:
    for name, schema in _SECTIONS.items():
        section = config.get(name)
        if section is None:
            continue
        if not isinstance(section, dict):
            raise ValueError(f"Config section '{name}' must be a mapping, "
                             f"got {type(section).__name__}")
        unknown = set(section) - {f.name for f in fields(schema)}
        if unknown:
            raise ValueError(f"Unknown key(s) in config section '{name}': {sorted(unknown)}")


def _check_pairs(pairs: Any, section: str) -> None:
    if not isinstance(pairs, list):
        raise ValueError(f"{section} must be a list of [field_a, field_b] pairs")
    for pair in pairs:
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            raise ValueError(f"{section} entries must be [field_a, field_b], got: {pair}")
        unknown = [p for p in pair if p not in METADATA_FIELDS]
        if unknown:
            raise ValueError(f"Unknown metadata field(s) in {section}: {unknown}")


def validate_config(config: Dict[str, Any]) -> None:
    """
    Validate configuration structure and values.

    Performs basic validation:
    - Known metadata fields in code maps, field names and factor pairs
    - Thresholds in range where given
    - Confound pairs require a skew threshold
    - Concordance section complete

    Parameters:
        config: Configuration dictionary

    Raises:
        ValueError: If configuration is invalid
    """
    _check_sections(config)

    meta = _section(config, 'metadata')
    for section in ('code_maps', 'field_names'):
        unknown = set(meta.get(section) or {}) - set(METADATA_FIELDS)
        if unknown:
            raise ValueError(f"Unknown metadata field(s) in metadata.{section}: {sorted(unknown)}")

    outliers = _section(config, 'outliers')
    threshold = outliers.get('threshold')
    if threshold is not None:
        if not isinstance(threshold, (int, float)) or not -1 <= threshold <= 1:
            raise ValueError(f"Outlier threshold must be a correlation in [-1, 1], got: {threshold}")
    n_jobs = outliers.get('n_jobs', 1)
    if not isinstance(n_jobs, int) or n_jobs < 1:
        raise ValueError(f"outliers.n_jobs must be a positive integer, got: {n_jobs}")

    confounds = _section(config, 'confounds')
    pairs = confounds.get('pairs') or []
    _check_pairs(pairs, 'confounds.pairs')
    skew = confounds.get('skew_threshold')
    if pairs and skew is None:
        raise ValueError("confounds.skew_threshold is required when confounds.pairs are given")
    if skew is not None and (not isinstance(skew, (int, float)) or not 0 < skew <= 1):
        raise ValueError(f"Confound skew threshold must be in (0, 1], got: {skew}")

    _check_pairs(config.get('cross_tabulate') or [], 'cross_tabulate')

    concordance = config.get('concordance')
    if concordance:
        required = ['positive_marker', 'negative_marker', 'high_category', 'low_category']
        missing = [k for k in required if k not in concordance]
        if missing:
            raise ValueError(f"concordance section missing: {missing}")
        method = concordance.get('threshold_method', 'otsu')
        if method not in ('otsu', 'kmeans'):
            raise ValueError(f"Invalid threshold_method '{method}'. Choose from: otsu, kmeans")
        label_field = concordance.get('label_field', 'sex')
        if label_field not in METADATA_FIELDS:
            raise ValueError(f"Unknown concordance label_field '{label_field}'")


def merge_config_with_args(config: Dict[str, Any], args: Namespace) -> Dict[str, Any]:
    """
    Overlay explicitly given CLI arguments onto a config dictionary.

    Priority (highest to lowest):
    1. CLI arguments that were given (not None)
    2. Config file values

    Returns:
        New config dictionary (input is not modified)
    """
    merged = {key: (dict(value) if isinstance(value, dict) else value) for key, value in config.items()}

    for arg_name, key in (('matrix', 'matrix'), ('metadata', 'metadata_path'), ('output', 'output')):
        value = getattr(args, arg_name, None)
        if value is not None:
            merged[key] = str(value)

    if getattr(args, 'outlier_threshold', None) is not None:
        merged['outliers'] = dict(_section(merged, 'outliers'), threshold=args.outlier_threshold)
    if getattr(args, 'workers', None) is not None:
        merged['outliers'] = dict(_section(merged, 'outliers'), n_jobs=args.workers)

    if getattr(args, 'skew_threshold', None) is not None:
        merged['confounds'] = dict(_section(merged, 'confounds'), skew_threshold=args.skew_threshold)

    if getattr(args, 'separation_threshold', None) is not None:
        if not merged.get('concordance'):
            raise ValueError("--separation-threshold given but config has no concordance section")
        merged['concordance'] = dict(merged['concordance'])
        merged['concordance']['separation_threshold'] = args.separation_threshold

    return merged
