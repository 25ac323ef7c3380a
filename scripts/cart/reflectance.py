import logging

import numpy as np

from scripts.cart.config import (
    BOA_ADD_OFFSET,
    DN_NODATA,
    QUANTIFICATION_VALUE,
    VALID_REFLECTANCE,
)

log = logging.getLogger(__name__)


def dn_to_reflectance(
    dn,
    scale=1.0 / QUANTIFICATION_VALUE,
    offset=BOA_ADD_OFFSET,
    nodata=DN_NODATA,
    valid_range=VALID_REFLECTANCE,
):
    """
    Convert sensor digital numbers to surface reflectance.

    reflectance = (dn + offset) * scale

    Pixels equal to `nodata`, and reflectances outside `valid_range`
    (saturated or negative after the offset), come back as NaN.
    """
    dn = np.asarray(dn)
    refl = (dn.astype("float32") + np.float32(offset)) * np.float32(scale)

    invalid = np.zeros(dn.shape, dtype=bool)
    if nodata is not None:
        invalid |= dn == nodata
    if np.issubdtype(dn.dtype, np.floating):
        invalid |= np.isnan(dn)
    if valid_range is not None:
        lo, hi = valid_range
        with np.errstate(invalid="ignore"):
            invalid |= (refl < lo) | (refl > hi)

    refl[invalid] = np.nan
    if invalid.any():
        log.debug("Masked %d of %d pixels as invalid reflectance", invalid.sum(), invalid.size)
    return refl


def normalized_difference(a, b):
    with np.errstate(divide="ignore", invalid="ignore"):
        nd = (a - b) / (a + b)
    nd[~np.isfinite(nd)] = np.nan
    return nd.astype("float32")


# index name -> (band a, band b) for (a - b) / (a + b)
INDICES = {
    "ndvi": ("nir", "red"),
    "ndwi": ("green", "nir"),
    "ndbi": ("swir1", "nir"),
    "mndwi": ("green", "swir1"),
}


def spectral_indices(stack, band_names, names=None):
    """
    Normalized-difference indices from a named reflectance stack.

    Returns (layers, layer_names). Indices whose source bands are absent
    are skipped.
    """
    band_names = list(band_names)
    names = list(INDICES) if names is None else list(names)

    layers = []
    out_names = []
    for name in names:
        if name not in INDICES:
            raise ValueError(f"Unknown index: {name}")
        a, b = INDICES[name]
        if a not in band_names or b not in band_names:
            log.warning("Skipping %s: needs bands %s and %s", name, a, b)
            continue
        layers.append(
            normalized_difference(stack[band_names.index(a)], stack[band_names.index(b)])
        )
        out_names.append(name)

    if not layers:
        return np.empty((0,) + stack.shape[1:], dtype="float32"), []
    return np.stack(layers), out_names
