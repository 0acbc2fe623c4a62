"""
Pytest configuration and shared fixtures.

The fixtures model a small developmental time course: six samples over three
sequencing runs, one run per developmental stage (batch fully confounded with
time), sexes alternating, plus the Xist / Ddx3y sex marker pair.
"""

import numpy as np
import pandas as pd
import pytest

from exprqc.core.records import MetadataRecord, Sex
from exprqc.core.table import Table

SAMPLES = ["S1", "S2", "S3", "S4", "S5", "S6"]
SEXES = ["M", "F", "M", "F", "M", "F"]
STAGES = ["P2", "P2", "P6", "P6", "P10", "P10"]
RUNS = ["HWI-EAS00184", "HWI-EAS00184", "HWI-EAS00214", "HWI-EAS00214",
        "HWI-EAS00215", "HWI-EAS00215"]
GENOTYPES = ["wt", "NrlKO", "wt", "NrlKO", "wt", "NrlKO"]


@pytest.fixture
def code_maps():
    """Code maps from raw sheet codes to canonical values."""
    return {
        'sex': {1: 'M', 2: 'F'},
        'group': {'wt': 'wild_type', 'NrlKO': 'knockout'},
        'batch': {'HWI-EAS00184': 'run1', 'HWI-EAS00214': 'run2', 'HWI-EAS00215': 'run3'},
        'time': {'E16': -4, 'P2': 2, 'P6': 6, 'P10': 10, '4_weeks': 28},
    }


@pytest.fixture
def field_names():
    """Raw column names that differ from the canonical field names."""
    return {'sample_id': 'sidChar', 'group': 'gType', 'time': 'devStage'}


@pytest.fixture
def raw_metadata():
    """Raw metadata sheet as it would be read from disk."""
    return pd.DataFrame({
        'sidChar': SAMPLES,
        'sex': [1 if s == "M" else 2 for s in SEXES],
        'gType': GENOTYPES,
        'devStage': STAGES,
        'batch': RUNS,
        'mapped_reads': [21_000_000, 19_500_000, 23_100_000, 18_800_000, 20_200_000, 22_400_000],
        'feature_count': [14_210, 14_050, 14_390, 13_980, 14_120, 14_300],
    })


def generate_expression(n_genes: int = 50, seed: int = 42) -> pd.DataFrame:
    """
    Log-scale expression with a shared gene profile plus per-sample noise,
    and the Xist / Ddx3y markers following each sample's sex.
    """
    rng = np.random.RandomState(seed)
    profile = rng.normal(loc=6.0, scale=2.0, size=n_genes)
    data = profile[:, None] + rng.normal(scale=0.3, size=(n_genes, len(SAMPLES)))

    female = np.array([s == "F" for s in SEXES])
    xist = np.where(female, 9.0, 0.5) + rng.uniform(-0.2, 0.2, size=len(SAMPLES))
    ddx3y = np.where(female, 0.4, 7.5) + rng.uniform(-0.2, 0.2, size=len(SAMPLES))

    genes = [f"Gene{i:03d}" for i in range(n_genes)]
    frame = pd.DataFrame(data, index=genes, columns=SAMPLES)
    frame.loc["Xist"] = xist
    frame.loc["Ddx3y"] = ddx3y
    return frame


@pytest.fixture
def expression_frame():
    """Expression matrix with canonical sample columns."""
    return generate_expression()


@pytest.fixture
def prefixed_frame(expression_frame):
    """Same matrix with facility-prefixed column names."""
    frame = expression_frame.copy()
    frame.columns = [f"X{i + 10}.5.2.2.1.{s}" for i, s in enumerate(frame.columns)]
    return frame


@pytest.fixture
def table(expression_frame):
    return Table.from_frame(expression_frame)


@pytest.fixture
def records():
    """Canonical metadata records matching the `table` fixture."""
    time = {'P2': 2.0, 'P6': 6.0, 'P10': 10.0}
    batch = {'HWI-EAS00184': 'run1', 'HWI-EAS00214': 'run2', 'HWI-EAS00215': 'run3'}
    group = {'wt': 'wild_type', 'NrlKO': 'knockout'}
    return [
        MetadataRecord(
            sample_id=s,
            sex=Sex(sex),
            group=group[g],
            time=time[stage],
            batch=batch[run],
            mapped_reads=20_000_000 + i,
            feature_count=14_000 + i,
        )
        for i, (s, sex, g, stage, run) in enumerate(zip(SAMPLES, SEXES, GENOTYPES, STAGES, RUNS))
    ]


@pytest.fixture
def small_table():
    """2 features x 3 samples."""
    return Table(
        np.array([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]]),
        feature_ids=["G1", "G2"],
        sample_ids=["A", "B", "C"],
    )
