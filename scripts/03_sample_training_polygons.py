import argparse
import logging
from pathlib import Path

import geopandas as gpd
import pandas as pd
from shapely import wkt

from scripts.cart.config import LABEL_COLUMN
from scripts.cart.raster import RasterGrid
from scripts.cart.samples import sample_geometries

# ---------------------------------------
# ARGUMENTS
# ---------------------------------------
parser = argparse.ArgumentParser()
parser.add_argument("--year", required=True)
parser.add_argument("--aoi", required=True)
parser.add_argument("--training", default=None,
                    help="Labeled polygons/points (default: data/raw/training/<aoi>.shp). "
                         "A .csv needs a WKT 'geometry' column.")
parser.add_argument("--csv_crs", default="EPSG:4326", help="CRS of WKT geometries in a CSV")
parser.add_argument("--label", default=LABEL_COLUMN, help="Class attribute column")
parser.add_argument("--all_touched", action="store_true",
                    help="Sample every pixel a polygon touches, not only pixel centres inside")
args = parser.parse_args()

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

YEAR = args.year
AOI = args.aoi

TRAINING = Path(args.training or f"data/raw/training/{AOI}.shp")
STACK = Path(f"data/processed/{AOI}/stack_{YEAR}.tif")
OUT = Path(f"data/training/samples_{YEAR}_{AOI}.csv")

for p in (TRAINING, STACK):
    if not p.exists():
        raise FileNotFoundError(p)

# ---------------------------------------
# 1️⃣ Read training geometries
# ---------------------------------------
print("Reading training geometries...")
if TRAINING.suffix.lower() == ".csv":
    df = pd.read_csv(TRAINING)
    if "geometry" not in df.columns:
        raise ValueError("CSV must contain a 'geometry' column (WKT format).")
    df = df[df["geometry"].notna()]
    df["geometry"] = df["geometry"].apply(wkt.loads)
    gdf = gpd.GeoDataFrame(df, geometry="geometry", crs=args.csv_crs)
else:
    gdf = gpd.read_file(TRAINING)
gdf = gdf[gdf.geometry.notna()]

# fix invalid polygons
polys = gdf.geom_type.isin(["Polygon", "MultiPolygon"])
gdf.loc[polys, "geometry"] = gdf.loc[polys].geometry.buffer(0)

print("Geometries:", len(gdf))
if args.label in gdf.columns:
    print("Per class:\n" + gdf[args.label].value_counts().to_string())

# ---------------------------------------
# 2️⃣ Sample the stack
# ---------------------------------------
grid = RasterGrid.from_file(STACK)
print(grid)

table = sample_geometries(grid, gdf, args.label, all_touched=args.all_touched, progress=True)

if table.empty:
    raise RuntimeError("No pixels sampled. Check that training geometries overlap the stack.")

# ---------------------------------------
# 3️⃣ Save (missing pixels kept, dropped at training time)
# ---------------------------------------
OUT.parent.mkdir(parents=True, exist_ok=True)
table.to_csv(OUT, index=False)

incomplete = int(table[grid.band_names].isna().any(axis=1).sum())
print(f"Pixels sampled: {len(table)} ({incomplete} with missing bands)")
print("Pixels per class:\n" + table["label"].value_counts().to_string())
print("✅ Feature table saved:", OUT)
