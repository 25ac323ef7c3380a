"""
Feature table builder.

Turns a band stack plus labeled polygons/points into one row per sampled
pixel: sample_id, geometry_id, row, col, label, <one column per band>.
"""
import logging

import numpy as np
import pandas as pd
from rasterio import windows
from rasterio.errors import WindowError
from rasterio.features import geometry_mask
from rasterio.transform import rowcol
from tqdm import tqdm

from scripts.cart.model import TrainingDataError

log = logging.getLogger(__name__)

META_COLUMNS = ["sample_id", "geometry_id", "row", "col", "label"]


def align_crs(gdf, crs):
    """Reproject training geometries onto the raster CRS when they differ."""
    if crs is None or gdf.crs is None:
        return gdf
    if gdf.crs != crs:
        log.info("Reprojecting %d geometries from %s to %s", len(gdf), gdf.crs, crs)
        return gdf.to_crs(crs)
    return gdf


def _cells_for_point(grid, geom):
    rows, cols = grid.dimensions()
    r, c = rowcol(grid.transform, geom.x, geom.y)
    if 0 <= r < rows and 0 <= c < cols:
        return np.array([r]), np.array([c])
    return None


def _cells_for_multipoint(grid, geom):
    hits = [_cells_for_point(grid, p) for p in geom.geoms]
    hits = [h for h in hits if h is not None]
    if not hits:
        return None
    return np.concatenate([h[0] for h in hits]), np.concatenate([h[1] for h in hits])


def _cells_for_polygon(grid, geom, all_touched):
    rows, cols = grid.dimensions()
    win = windows.from_bounds(*geom.bounds, transform=grid.transform)
    # one extra cell on each side covers partial pixels at the edges
    win = windows.Window(
        int(np.floor(win.col_off)) - 1,
        int(np.floor(win.row_off)) - 1,
        int(np.ceil(win.width)) + 2,
        int(np.ceil(win.height)) + 2,
    )
    try:
        win = win.intersection(windows.Window(0, 0, cols, rows))
    except WindowError:
        return None

    height, width = int(win.height), int(win.width)
    if height <= 0 or width <= 0:
        return None

    inside = geometry_mask(
        [geom],
        out_shape=(height, width),
        transform=windows.transform(win, grid.transform),
        all_touched=all_touched,
        invert=True,
    )
    r, c = np.nonzero(inside)
    if r.size == 0:
        return None
    return r + int(win.row_off), c + int(win.col_off)


def sample_geometries(grid, gdf, label_column, all_touched=False, progress=False):
    """
    Sample every cell whose centre falls inside each labeled geometry.

    Point geometries sample the single cell that contains them. Cells with
    missing band values are kept; use ``drop_missing`` before training.
    """
    if grid.transform is None:
        raise ValueError("RasterGrid needs an affine transform to sample geometries")
    if label_column not in gdf.columns:
        raise TrainingDataError(
            f"Label column '{label_column}' not found (columns: {list(gdf.columns)})"
        )

    gdf = align_crs(gdf, grid.crs)

    frames = []
    skipped = 0
    items = gdf[[label_column, gdf.geometry.name]].itertuples(index=True, name=None)
    for geometry_id, label, geom in tqdm(items, total=len(gdf), disable=not progress, desc="Sampling"):
        if geom is None or geom.is_empty or pd.isna(label):
            continue

        if geom.geom_type == "Point":
            cells = _cells_for_point(grid, geom)
        elif geom.geom_type == "MultiPoint":
            cells = _cells_for_multipoint(grid, geom)
        else:
            cells = _cells_for_polygon(grid, geom, all_touched)

        if cells is None:
            skipped += 1
            continue

        r, c = cells
        values = grid.data[:, r, c].T
        frame = pd.DataFrame(values, columns=grid.band_names)
        frame.insert(0, "label", label)
        frame.insert(0, "col", c)
        frame.insert(0, "row", r)
        frame.insert(0, "geometry_id", geometry_id)
        frames.append(frame)

    if skipped:
        log.warning("Skipped %d geometries outside the raster", skipped)

    if not frames:
        table = pd.DataFrame(columns=META_COLUMNS[1:] + grid.band_names)
    else:
        table = pd.concat(frames, ignore_index=True)
    table.insert(0, "sample_id", np.arange(len(table)))

    log.info(
        "Sampled %d pixels from %d geometries (%d with missing values)",
        len(table), len(frames), int(table[grid.band_names].isna().any(axis=1).sum()),
    )
    return table


def drop_missing(table, bands):
    bands = list(bands)
    unknown = [b for b in bands if b not in table.columns]
    if unknown:
        raise TrainingDataError(f"Unknown band(s) {unknown}; table has {list(table.columns)}")

    missing = table[bands].isna().any(axis=1)
    if missing.any():
        log.warning("Dropped %d of %d samples with missing band values", int(missing.sum()), len(table))
    return table.loc[~missing]


def training_arrays(table, bands, label_column="label"):
    bands = list(bands)
    if len(set(bands)) != len(bands):
        raise TrainingDataError(f"Duplicate band names: {bands}")
    if label_column not in table.columns:
        raise TrainingDataError(f"Feature table has no '{label_column}' column")
    unknown = [b for b in bands if b not in table.columns]
    if unknown:
        raise TrainingDataError(f"Unknown band(s) {unknown}; table has {list(table.columns)}")
    if table.empty:
        raise TrainingDataError("Training set is empty")

    try:
        X = table[bands].to_numpy(dtype="float64")
    except (TypeError, ValueError) as e:
        raise TrainingDataError(f"Non-numeric band values: {e}") from None
    if np.isnan(X).any():
        raise TrainingDataError("Feature table still has missing values; call drop_missing first")

    labels = table[label_column].to_numpy(dtype=object)
    if pd.isna(labels).any():
        raise TrainingDataError("Feature table has samples without a label")
    return X, labels
