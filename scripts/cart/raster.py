"""
In-memory raster grids.

RasterGrid is the band stack the classifier reads (float, NaN = missing).
LabelGrid is what the classifier writes (class codes, MISSING_CODE = missing).
"""
import numpy as np
import rasterio

from scripts.cart.config import FEATURE_DTYPE, MISSING_CODE


class RasterGrid:
    def __init__(self, data, band_names, transform=None, crs=None):
        data = np.asarray(data, dtype=FEATURE_DTYPE)
        if data.ndim != 3:
            raise ValueError(f"Expected (bands, rows, cols) array, got shape {data.shape}")

        band_names = [str(b) for b in band_names]
        if len(band_names) != data.shape[0]:
            raise ValueError(
                f"{data.shape[0]} bands in data but {len(band_names)} band names"
            )
        if len(set(band_names)) != len(band_names):
            raise ValueError(f"Duplicate band names: {band_names}")

        self.data = data
        self.band_names = band_names
        self.transform = transform
        self.crs = crs

    @classmethod
    def from_file(cls, path, band_names=None):
        """Read a band stack; names come from the band descriptions unless given."""
        with rasterio.open(path) as src:
            data = src.read().astype(FEATURE_DTYPE)
            nodata = src.nodata
            transform = src.transform
            crs = src.crs
            descriptions = list(src.descriptions)

        if nodata is not None and not np.isnan(nodata):
            data[data == nodata] = np.nan

        if band_names is None:
            if any(d is None for d in descriptions):
                raise ValueError(
                    f"{path} has unnamed bands; pass band_names explicitly"
                )
            band_names = descriptions

        return cls(data, band_names, transform=transform, crs=crs)

    def bands(self):
        return list(self.band_names)

    def dimensions(self):
        return self.data.shape[1], self.data.shape[2]

    def band_index(self, name):
        try:
            return self.band_names.index(name)
        except ValueError:
            raise KeyError(f"Band not in grid: {name}") from None

    def value_at(self, row, col, band):
        v = float(self.data[self.band_index(band), row, col])
        return None if np.isnan(v) else v

    def select(self, band_names):
        """Stack of the named bands, in the order given."""
        idx = [self.band_index(b) for b in band_names]
        return self.data[idx]

    def __repr__(self):
        rows, cols = self.dimensions()
        return f"RasterGrid({rows}x{cols}, bands={self.band_names})"


class LabelGrid:
    def __init__(self, codes, classes, transform=None, crs=None):
        self.codes = np.asarray(codes, dtype="int16")
        self.classes = list(classes)
        self.transform = transform
        self.crs = crs

    def dimensions(self):
        return self.codes.shape

    @property
    def missing(self):
        return self.codes == MISSING_CODE

    def label_at(self, row, col):
        code = int(self.codes[row, col])
        return None if code == MISSING_CODE else self.classes[code]

    def labels(self):
        lookup = np.array(self.classes + [None], dtype=object)
        return lookup[self.codes]

    def to_raster(self):
        # uint8 with 0 as nodata, class i -> i + 1
        if len(self.classes) > 254:
            raise ValueError("Too many classes for a uint8 raster")
        return (self.codes + 1).astype("uint8")

    @classmethod
    def from_raster(cls, values, classes, transform=None, crs=None):
        return cls(values.astype("int16") - 1, classes, transform=transform, crs=crs)

    def legend(self):
        return {i + 1: c for i, c in enumerate(self.classes)}

    def __eq__(self, other):
        if not isinstance(other, LabelGrid):
            return NotImplemented
        return self.classes == other.classes and np.array_equal(self.codes, other.codes)

    def __repr__(self):
        rows, cols = self.dimensions()
        return f"LabelGrid({rows}x{cols}, classes={self.classes})"
