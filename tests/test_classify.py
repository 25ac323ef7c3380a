# tests/test_classify.py
import threading

import numpy as np
import pytest

from scripts.cart.classify import classify, confidence_map, row_chunks
from scripts.cart.config import MISSING_CODE, TreeParams
from scripts.cart.model import BandMismatchError, ClassificationCancelled
from scripts.cart.raster import LabelGrid, RasterGrid
from scripts.cart.trainer import train

NIR_BANDS = ["blue", "green", "red", "nir"]


def make_grid(rows=6, cols=5, band_names=NIR_BANDS, seed=0):
    rng = np.random.default_rng(seed)
    data = np.full((len(band_names), rows, cols), 0.1, dtype="float32")
    data[band_names.index("nir")] = rng.uniform(0.0, 0.6, size=(rows, cols))
    return RasterGrid(data, band_names)


def test_all_missing_nir_gives_all_missing_output(nir_model):
    grid = make_grid()
    grid.data[grid.band_index("nir")] = np.nan

    for policy in ("any", "path"):
        labels = classify(nir_model, grid, mask_policy=policy)
        assert labels.dimensions() == grid.dimensions()
        assert np.all(labels.codes == MISSING_CODE)
        assert all(v is None for v in labels.labels().ravel())


def test_labels_follow_nir_threshold(nir_model):
    grid = make_grid()
    labels = classify(nir_model, grid)
    threshold = nir_model.node(0).threshold
    nir = grid.data[grid.band_index("nir")].astype("float64")

    expected = np.where(nir <= threshold, "water", "vegetation")
    assert np.array_equal(labels.labels().astype(str), expected)


def test_bands_are_matched_by_name(nir_model):
    grid = make_grid()
    reordered = RasterGrid(grid.data[::-1].copy(), NIR_BANDS[::-1])
    assert classify(nir_model, reordered) == classify(nir_model, grid)


def test_extra_bands_are_ignored(nir_model):
    grid = make_grid()
    extra = RasterGrid(
        np.concatenate([grid.data, np.zeros((1,) + grid.data.shape[1:], dtype="float32")]),
        NIR_BANDS + ["swir1"],
    )
    assert classify(nir_model, extra) == classify(nir_model, grid)


def test_grid_lacking_a_trained_band_raises(nir_model):
    grid = make_grid(band_names=["blue", "green", "red", "swir1"])
    with pytest.raises(BandMismatchError, match="nir"):
        classify(nir_model, grid)


def test_classification_is_idempotent(three_class_samples, bands):
    model = train(three_class_samples, bands, TreeParams(max_depth=4))
    rng = np.random.default_rng(3)
    grid = RasterGrid(rng.uniform(0, 0.5, size=(6, 20, 15)), bands)
    grid.data[:, 0, 0] = np.nan

    first = classify(model, grid)
    second = classify(model, grid)
    assert first == second


def test_chunking_and_workers_do_not_change_output(three_class_samples, bands):
    model = train(three_class_samples, bands)
    rng = np.random.default_rng(11)
    grid = RasterGrid(rng.uniform(0, 0.5, size=(6, 37, 9)), bands)
    grid.data[2, 5:9, 3] = np.nan

    whole = classify(model, grid, chunk_rows=1000)
    pieces = classify(model, grid, chunk_rows=4, n_workers=3)
    single_rows = classify(model, grid, chunk_rows=1, n_workers=1)

    assert whole == pieces == single_rows


def test_row_chunks_cover_grid_once():
    chunks = row_chunks(10, 4)
    assert chunks == [(0, 4), (4, 8), (8, 10)]
    with pytest.raises(ValueError):
        row_chunks(10, 0)


@pytest.mark.parametrize("workers", [1, 3])
def test_cancel_event_stops_classification(nir_model, workers):
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(ClassificationCancelled):
        classify(nir_model, make_grid(rows=12), chunk_rows=2, n_workers=workers, cancel=cancel)


def test_unset_cancel_event_runs_to_completion(nir_model):
    labels = classify(nir_model, make_grid(), cancel=threading.Event(), chunk_rows=2)
    assert not labels.missing.any()


def test_mask_policies_differ_on_unused_bands(nir_model):
    grid = make_grid()
    grid.data[grid.band_index("blue"), 2, 3] = np.nan

    strict = classify(nir_model, grid, mask_policy="any")
    lenient = classify(nir_model, grid, mask_policy="path")

    assert strict.label_at(2, 3) is None
    assert lenient.label_at(2, 3) in ("water", "vegetation")
    other = np.ones(grid.dimensions(), dtype=bool)
    other[2, 3] = False
    assert np.array_equal(strict.codes[other], lenient.codes[other])


def test_unknown_mask_policy_raises(nir_model):
    with pytest.raises(ValueError):
        classify(nir_model, make_grid(), mask_policy="guess")


def test_input_grid_is_not_modified(nir_model):
    grid = make_grid()
    before = grid.data.copy()
    classify(nir_model, grid, chunk_rows=2, n_workers=2)
    assert np.array_equal(grid.data, before)


def test_confidence_map(three_class_samples, bands):
    model = train(three_class_samples, bands, TreeParams(max_depth=2))
    rng = np.random.default_rng(5)
    grid = RasterGrid(rng.uniform(0, 0.5, size=(6, 8, 8)), bands)
    grid.data[0, 1, 1] = np.nan

    conf = confidence_map(model, grid, chunk_rows=3)
    assert np.isnan(conf[1, 1])
    finite = conf[np.isfinite(conf)]
    assert finite.size == 63
    assert np.all((finite > 0) & (finite <= 1))


def test_label_grid_raster_roundtrip():
    grid = LabelGrid(np.array([[0, 1], [-1, 2]]), ["soil", "urban", "water"])
    values = grid.to_raster()
    assert values.dtype == np.uint8
    assert values.tolist() == [[1, 2], [0, 3]]
    assert LabelGrid.from_raster(values, grid.classes) == grid
    assert grid.legend() == {1: "soil", 2: "urban", 3: "water"}
