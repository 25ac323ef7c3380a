import argparse
from pathlib import Path

import geopandas as gpd
import rasterio
from rasterio.io import MemoryFile
from rasterio.mask import mask
from rasterio.merge import merge

from scripts.cart.config import DN_NODATA, SENTINEL_BANDS

# ---------------------------------------
# ARGUMENTS
# ---------------------------------------
parser = argparse.ArgumentParser()
parser.add_argument("--aoi", required=True, help="AOI name (without path)")
parser.add_argument("--year", required=True, help="Year to process")
parser.add_argument("--all_touched", action="store_true",
                    help="Keep every pixel touched by the AOI boundary")
args = parser.parse_args()

AOI_PATH = Path(f"data/raw/boundaries/{args.aoi}.shp")
RAW_DIR = Path("data/raw/sentinel2") / args.aoi / args.year
OUT_DIR = Path("data/raw/sentinel2_clipped") / args.aoi / args.year

if not AOI_PATH.exists():
    raise FileNotFoundError(AOI_PATH)

OUT_DIR.mkdir(parents=True, exist_ok=True)

print(f"\nStudy area: {args.aoi} | {args.year}")

# ---------------------------------------
# Load + fix AOI
# ---------------------------------------
aoi = gpd.read_file(AOI_PATH)
aoi["geometry"] = aoi.geometry.buffer(0)

written = []

for band in SENTINEL_BANDS:

    # tiles may sit in per-tile subfolders (T44PLV/B02.tif ...)
    band_files = sorted(RAW_DIR.glob(f"**/*{band}.tif"))

    if not band_files:
        print(f"❌ No tiles for {band}")
        continue

    print(f"\n{band}: {len(band_files)} tile(s)")

    # ---------------------------------------
    # Mosaic tiles (DN 0 = nodata)
    # ---------------------------------------
    srcs = [rasterio.open(f) for f in band_files]
    try:
        mosaic, transform = merge(srcs, nodata=DN_NODATA)
        meta = srcs[0].meta.copy()
    finally:
        for s in srcs:
            s.close()

    meta.update(
        driver="GTiff",
        transform=transform,
        height=mosaic.shape[1],
        width=mosaic.shape[2],
        nodata=DN_NODATA,
    )

    # ---------------------------------------
    # Clip to AOI in the band's CRS
    # ---------------------------------------
    geoms = list(aoi.to_crs(meta["crs"]).geometry)

    with MemoryFile() as memfile:
        with memfile.open(**meta) as tmp:
            tmp.write(mosaic)
            clipped, clipped_transform = mask(
                tmp,
                geoms,
                crop=True,
                nodata=DN_NODATA,
                all_touched=args.all_touched,
            )

    meta.update(
        transform=clipped_transform,
        height=clipped.shape[1],
        width=clipped.shape[2],
        compress="deflate",
    )

    out_path = OUT_DIR / f"{band}.tif"
    with rasterio.open(out_path, "w", **meta) as dst:
        dst.write(clipped)

    written.append(band)
    print(f"✔ {band} clipped: {clipped.shape[2]}x{clipped.shape[1]} px")

if not written:
    raise RuntimeError(f"No Sentinel-2 bands found under {RAW_DIR}")

print(f"\n✅ AOI clipping complete: {', '.join(written)}")
