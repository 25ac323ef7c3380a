# tests/conftest.py
# Ensure project root is importable as a module during pytest runs
import pathlib
import sys

import numpy as np
import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from scripts.cart.trainer import train  # noqa: E402

BANDS = ["blue", "green", "red", "nir", "swir1", "swir2"]


@pytest.fixture
def bands():
    return list(BANDS)


@pytest.fixture
def water_urban():
    return [
        (1, [0.1, 0.2, 0.05, 0.6, 0.3, 0.1], "water"),
        (2, [0.3, 0.35, 0.3, 0.2, 0.25, 0.2], "urban"),
    ]


@pytest.fixture
def nir_model():
    # only nir varies, so every split is on nir
    samples = []
    for i, nir in enumerate([0.02, 0.04, 0.05, 0.06]):
        samples.append((i, [0.1, 0.1, 0.1, nir], "water"))
    for i, nir in enumerate([0.35, 0.4, 0.45, 0.5]):
        samples.append((10 + i, [0.1, 0.1, 0.1, nir], "vegetation"))
    return train(samples, ["blue", "green", "red", "nir"])


@pytest.fixture
def three_class_samples():
    rng = np.random.default_rng(7)
    centres = {
        "water": [0.05, 0.06, 0.04, 0.03, 0.02, 0.01],
        "vegetation": [0.04, 0.08, 0.05, 0.45, 0.22, 0.11],
        "urban": [0.12, 0.14, 0.16, 0.22, 0.26, 0.24],
    }
    samples = []
    i = 0
    for label, centre in centres.items():
        for _ in range(40):
            samples.append((i, list(rng.normal(centre, 0.04)), label))
            i += 1
    return samples
