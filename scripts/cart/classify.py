"""
Bulk classification of a band stack.

The grid is cut into row chunks; every chunk is classified on its own and
written into a disjoint slice of the output, so chunks can run on a
worker pool against the same (read-only) tree.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed

import numpy as np
from tqdm import tqdm

from scripts.cart.config import CHUNK_ROWS, MISSING_CODE
from scripts.cart.model import BandMismatchError, ClassificationCancelled
from scripts.cart.predict import predict_codes, predict_leaves
from scripts.cart.raster import LabelGrid

log = logging.getLogger(__name__)

MASK_POLICIES = ("any", "path")


def match_bands(model, grid):
    """Indices of the model's bands inside the grid, matched by name."""
    absent = [b for b in model.band_names if b not in grid.band_names]
    if absent:
        raise BandMismatchError(
            f"Grid bands {grid.band_names} lack trained band(s) {absent}"
        )
    return [grid.band_names.index(b) for b in model.band_names]


def row_chunks(rows, chunk_rows):
    if chunk_rows < 1:
        raise ValueError(f"chunk_rows must be >= 1, got {chunk_rows}")
    return [(start, min(start + chunk_rows, rows)) for start in range(0, rows, chunk_rows)]


def _chunk_pixels(grid, band_idx, start, stop):
    block = grid.data[band_idx, start:stop, :]
    return block.reshape(len(band_idx), -1).T


def _run_chunks(grid, chunk_rows, n_workers, cancel, progress, work, desc):
    rows, _ = grid.dimensions()
    chunks = row_chunks(rows, chunk_rows)

    def guarded(chunk):
        if cancel is not None and cancel.is_set():
            raise ClassificationCancelled(f"Cancelled before rows {chunk[0]}-{chunk[1]}")
        work(*chunk)
        return chunk

    bar = tqdm(total=len(chunks), disable=not progress, desc=desc)
    try:
        if n_workers <= 1:
            for chunk in chunks:
                guarded(chunk)
                bar.update(1)
        else:
            with ThreadPoolExecutor(max_workers=n_workers) as executor:
                futures = [executor.submit(guarded, chunk) for chunk in chunks]
                try:
                    for future in as_completed(futures):
                        future.result()
                        bar.update(1)
                except ClassificationCancelled:
                    for f in futures:
                        f.cancel()
                    raise
    finally:
        bar.close()

    log.info("Processed %d chunks of up to %d rows", len(chunks), chunk_rows)


def classify(
    model,
    grid,
    chunk_rows=CHUNK_ROWS,
    n_workers=1,
    cancel=None,
    mask_policy="any",
    progress=False,
):
    """
    Predict a label for every pixel of ``grid``.

    mask_policy "any": a pixel missing in any trained band is missing.
    mask_policy "path": only missing values read on the traversal path
    make the pixel missing.

    ``cancel`` is an optional threading.Event checked before each chunk.
    """
    if mask_policy not in MASK_POLICIES:
        raise ValueError(f"mask_policy must be one of {MASK_POLICIES}, got {mask_policy!r}")

    band_idx = match_bands(model, grid)
    rows, cols = grid.dimensions()
    codes = np.full((rows, cols), MISSING_CODE, dtype="int16")

    log.info(
        "Classifying %dx%d grid (%d bands, %d workers, mask=%s)",
        rows, cols, len(band_idx), n_workers, mask_policy,
    )

    def work(start, stop):
        X = _chunk_pixels(grid, band_idx, start, stop)
        out = predict_codes(model, X)
        if mask_policy == "any":
            out[np.isnan(X).any(axis=1)] = MISSING_CODE
        codes[start:stop, :] = out.reshape(stop - start, cols)

    _run_chunks(grid, chunk_rows, n_workers, cancel, progress, work, "Classifying")

    missing = int(np.count_nonzero(codes == MISSING_CODE))
    log.info("Classified %d pixels, %d missing", codes.size - missing, missing)
    return LabelGrid(codes, model.classes, transform=grid.transform, crs=grid.crs)


def confidence_map(model, grid, chunk_rows=CHUNK_ROWS, n_workers=1, cancel=None, progress=False):
    """Training purity of the leaf each pixel lands in (NaN where missing)."""
    band_idx = match_bands(model, grid)
    rows, cols = grid.dimensions()
    conf = np.full((rows, cols), np.nan, dtype="float32")

    purity = np.zeros(model.n_nodes, dtype="float32")
    for leaf, p in model.leaf_purity().items():
        purity[leaf] = p

    def work(start, stop):
        X = _chunk_pixels(grid, band_idx, start, stop)
        leaves = predict_leaves(model, X)
        out = np.full(leaves.shape, np.nan, dtype="float32")
        ok = (leaves >= 0) & ~np.isnan(X).any(axis=1)
        out[ok] = purity[leaves[ok]]
        conf[start:stop, :] = out.reshape(stop - start, cols)

    _run_chunks(grid, chunk_rows, n_workers, cancel, progress, work, "Confidence")
    return conf
