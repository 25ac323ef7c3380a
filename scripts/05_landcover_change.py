import argparse
import json
import logging
from pathlib import Path

import rasterio

from scripts.cart.change import change_matrix, net_change
from scripts.cart.raster import LabelGrid

parser = argparse.ArgumentParser()
parser.add_argument("--aoi", required=True)
parser.add_argument("--before", required=True, help="Earlier year")
parser.add_argument("--after", required=True, help="Later year")
parser.add_argument("--units", choices=["pixels", "ha", "km2"], default="ha")
args = parser.parse_args()

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

OUT_DIR = Path("outputs/cart/change")
OUT_DIR.mkdir(parents=True, exist_ok=True)

UNIT_M2 = {"pixels": None, "ha": 1e4, "km2": 1e6}


def load_map(year):
    path = Path(f"outputs/cart/{year}/landcover_{year}_{args.aoi}.tif")
    legend_path = Path(f"outputs/cart/{year}/landcover_{year}_{args.aoi}_legend.json")
    if not path.exists():
        raise FileNotFoundError(path)
    if not legend_path.exists():
        raise FileNotFoundError(legend_path)

    with open(legend_path) as f:
        legend = {int(k): v for k, v in json.load(f).items()}

    with rasterio.open(path) as src:
        grid = LabelGrid.from_raster(
            src.read(1), [legend[k] for k in sorted(legend)], transform=src.transform, crs=src.crs
        )
    return grid


before = load_map(args.before)
after = load_map(args.after)

# -------------------------------------------------
# PIXEL AREA
# -------------------------------------------------
if UNIT_M2[args.units] is None:
    pixel_area = 1.0
else:
    if before.crs is not None and before.crs.is_geographic:
        raise ValueError("Area units need a projected CRS; use --units pixels")
    pixel_area = abs(before.transform.a * before.transform.e) / UNIT_M2[args.units]

print(f"\nChange: {args.before} → {args.after} | {args.aoi} ({args.units})")

matrix = change_matrix(before, after, pixel_area=pixel_area)
summary = net_change(matrix)

print("\n===== FROM / TO =====")
print(matrix.round(2).to_string())
print("\n===== NET CHANGE =====")
print(summary.round(2).to_string())

stem = f"{args.aoi}_{args.before}_{args.after}"
matrix.to_csv(OUT_DIR / f"change_matrix_{stem}.csv")
summary.to_csv(OUT_DIR / f"net_change_{stem}.csv")

print("\n✅ Change tables saved in", OUT_DIR)
