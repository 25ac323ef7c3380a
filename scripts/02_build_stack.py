import argparse
from pathlib import Path

import numpy as np
import rasterio
from rasterio.warp import Resampling, reproject

from scripts.cart.config import (
    BAND_NAMES,
    BOA_ADD_OFFSET,
    DN_NODATA,
    QUANTIFICATION_VALUE,
    SENTINEL_BANDS,
)
from scripts.cart.reflectance import dn_to_reflectance, spectral_indices

parser = argparse.ArgumentParser()
parser.add_argument("--aoi", required=True)
parser.add_argument("--year", required=True)
parser.add_argument("--offset", type=float, default=BOA_ADD_OFFSET,
                    help="Additive DN offset (0 for scenes before baseline 04.00)")
parser.add_argument("--indices", nargs="*", default=None,
                    help="Append spectral indices (e.g. ndvi ndwi ndbi mndwi)")
args = parser.parse_args()

IN_DIR = Path("data/raw/sentinel2_clipped") / args.aoi / args.year
OUT_DIR = Path("data/processed") / args.aoi
OUT = OUT_DIR / f"stack_{args.year}.tif"

OUT_DIR.mkdir(parents=True, exist_ok=True)

print(f"Building stack: {args.year}_{args.aoi}")

# -----------------------------------
# Reference grid (B02, 10 m)
# -----------------------------------
ref_path = IN_DIR / f"{SENTINEL_BANDS[0]}.tif"
if not ref_path.exists():
    raise FileNotFoundError(f"Missing reference band: {ref_path}")

with rasterio.open(ref_path) as ref:
    ref_meta = ref.meta.copy()
    H, W = ref.height, ref.width

layers = []
names = []

# -----------------------------------
# DN -> reflectance, 20 m bands resampled onto the 10 m grid
# -----------------------------------
for band in SENTINEL_BANDS:
    band_path = IN_DIR / f"{band}.tif"

    if not band_path.exists():
        raise FileNotFoundError(f"Missing band: {band_path}")

    with rasterio.open(band_path) as src:
        dn = src.read(1)

        if dn.shape != (H, W):
            res = np.full((H, W), DN_NODATA, dtype=dn.dtype)
            reproject(
                dn,
                res,
                src_transform=src.transform,
                src_crs=src.crs,
                src_nodata=DN_NODATA,
                dst_transform=ref_meta["transform"],
                dst_crs=ref_meta["crs"],
                dst_nodata=DN_NODATA,
                resampling=Resampling.bilinear,
            )
            dn = res

    refl = dn_to_reflectance(
        dn,
        scale=1.0 / QUANTIFICATION_VALUE,
        offset=args.offset,
        nodata=DN_NODATA,
    )
    layers.append(refl)
    names.append(BAND_NAMES[band])

    valid = np.isfinite(refl)
    print(f"   {band} ({BAND_NAMES[band]}): {valid.mean() * 100:.1f}% valid, "
          f"mean {np.nanmean(refl) if valid.any() else float('nan'):.4f}")

stack = np.stack(layers).astype("float32")

# -----------------------------------
# Optional indices
# -----------------------------------
if args.indices is not None:
    idx, idx_names = spectral_indices(stack, names, args.indices or None)
    if idx_names:
        stack = np.concatenate([stack, idx])
        names += idx_names
        print("   Indices:", ", ".join(idx_names))

# -----------------------------------
# Write float32 stack, band descriptions carry the names
# -----------------------------------
ref_meta.update(count=len(names), dtype="float32", nodata=np.nan, compress="deflate")

with rasterio.open(OUT, "w", **ref_meta) as dst:
    dst.write(stack)
    for i, name in enumerate(names, start=1):
        dst.set_band_description(i, name)

print(f"✅ {len(names)}-band stack written: {OUT}")
