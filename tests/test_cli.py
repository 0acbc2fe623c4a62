"""Tests for the exprqc command-line interface."""

import json

import pandas as pd
import pytest
import yaml

from exprqc.cli import main


@pytest.fixture
def inputs(tmp_path, prefixed_frame, raw_metadata, code_maps, field_names):
    matrix_path = tmp_path / "counts.txt"
    metadata_path = tmp_path / "design.txt"
    config_path = tmp_path / "qc.yaml"

    prefixed_frame.to_csv(matrix_path, sep="\t")
    raw_metadata.to_csv(metadata_path, sep="\t", index=False)
    config_path.write_text(yaml.safe_dump({
        'metadata': {'code_maps': code_maps, 'field_names': field_names},
        'outliers': {'threshold': 0.9},
        'confounds': {'skew_threshold': 0.8, 'pairs': [['batch', 'time']]},
        'cross_tabulate': [['batch', 'time']],
        'concordance': {
            'positive_marker': 'Xist',
            'negative_marker': 'Ddx3y',
            'high_category': 'F',
            'low_category': 'M',
        },
    }))
    return matrix_path, metadata_path, config_path


def test_no_command_prints_help(capsys):
    assert main([]) == 0
    assert "check" in capsys.readouterr().out


def test_check_writes_outputs(tmp_path, inputs):
    matrix_path, metadata_path, config_path = inputs
    output = tmp_path / "qc"

    code = main([
        "check",
        "--config", str(config_path),
        "--matrix", str(matrix_path),
        "--metadata", str(metadata_path),
        "--output", str(output),
    ])

    assert code == 0
    for name in ("long.csv", "sample_summary.csv", "metadata_summary.csv", "correlation.csv",
                 "crosstab_batch_time.csv", "confounds.csv", "concordance.csv", "summary.json"):
        assert (output / name).exists(), name

    summary = json.loads((output / "summary.json").read_text())
    assert summary["n_samples"] == 6
    assert summary["mislabeled"] == []
    assert summary["confounds"][0]["fully_confounded"] == ["run1", "run2", "run3"]

    long = pd.read_csv(output / "long.csv")
    assert set(long["sample_id"]) == {"S1", "S2", "S3", "S4", "S5", "S6"}
    assert not list(tmp_path.glob("qc/*.tmp"))


def test_check_fails_on_unknown_code(tmp_path, inputs):
    matrix_path, metadata_path, config_path = inputs
    raw = pd.read_csv(metadata_path, sep="\t")
    raw.loc[0, "batch"] = "HWI-UNKNOWN"
    raw.to_csv(metadata_path, sep="\t", index=False)

    code = main(["check", "-c", str(config_path), "-m", str(matrix_path),
                 "--metadata", str(metadata_path), "-o", str(tmp_path / "qc")])
    assert code == 1
    assert not (tmp_path / "qc" / "summary.json").exists()


def test_check_requires_matrix(tmp_path, inputs):
    _, metadata_path, config_path = inputs
    code = main(["check", "-c", str(config_path), "--metadata", str(metadata_path),
                 "-o", str(tmp_path / "qc")])
    assert code == 1


def test_check_bad_config(tmp_path, inputs):
    matrix_path, metadata_path, _ = inputs
    config_path = tmp_path / "bad.yaml"
    config_path.write_text(yaml.safe_dump({'outliers': {'threshold': 3}}))
    code = main(["check", "-c", str(config_path), "-m", str(matrix_path),
                 "--metadata", str(metadata_path), "-o", str(tmp_path / "qc")])
    assert code == 1


def test_missing_matrix_file(tmp_path, inputs):
    _, metadata_path, config_path = inputs
    code = main(["check", "-c", str(config_path), "-m", str(tmp_path / "absent.txt"),
                 "--metadata", str(metadata_path), "-o", str(tmp_path / "qc")])
    assert code == 1
