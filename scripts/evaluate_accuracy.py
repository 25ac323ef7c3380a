import argparse
import json
import logging
from pathlib import Path

import pandas as pd
import rasterio

from scripts.cart.metrics import accuracy_report, format_report, holdout_split
from scripts.cart.model import TreeModel
from scripts.cart.raster import LabelGrid
from scripts.cart.samples import drop_missing

# -------------------------------------------------
# ARGUMENTS
# -------------------------------------------------
parser = argparse.ArgumentParser()
parser.add_argument("--year", required=True)
parser.add_argument("--aoi", required=True)
parser.add_argument("--samples", default=None,
                    help="Reference sample table (default: data/training/samples_<year>_<aoi>.csv)")
parser.add_argument("--holdout_only", action="store_true",
                    help="Score only the hold-out geometries used by train_tree")
parser.add_argument("--test_size", type=float, default=0.2)
parser.add_argument("--seed", type=int, default=42)
args = parser.parse_args()

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

YEAR = args.year
AOI = args.aoi

MAP = Path(f"outputs/cart/{YEAR}/landcover_{YEAR}_{AOI}.tif")
LEGEND = Path(f"outputs/cart/{YEAR}/landcover_{YEAR}_{AOI}_legend.json")
SAMPLES = Path(args.samples or f"data/training/samples_{YEAR}_{AOI}.csv")
OUT = MAP.parent / f"accuracy_{YEAR}_{AOI}.txt"

for p in (MAP, LEGEND, SAMPLES):
    if not p.exists():
        raise FileNotFoundError(p)

print(f"\nEvaluating: {YEAR} | {AOI}")


# -------------------------------------------------
# LOAD MAP
# -------------------------------------------------
with open(LEGEND) as f:
    legend = {int(k): v for k, v in json.load(f).items()}
classes = [str(legend[k]) for k in sorted(legend)]

with rasterio.open(MAP) as src:
    labels = LabelGrid.from_raster(src.read(1), classes, transform=src.transform, crs=src.crs)


# -------------------------------------------------
# REFERENCE SAMPLES
# -------------------------------------------------
table = pd.read_csv(SAMPLES)
if args.holdout_only:
    # same filtering as train_tree so the split lands on the same geometries
    MODEL = Path(f"models/cart_{YEAR}_{AOI}.json")
    if not MODEL.exists():
        raise FileNotFoundError(MODEL)
    table = drop_missing(table, TreeModel.load(MODEL).band_names)
    _, table = holdout_split(table, test_size=args.test_size, seed=args.seed)

rows, cols = labels.dimensions()
inside = table["row"].between(0, rows - 1) & table["col"].between(0, cols - 1)
if not inside.all():
    print(f"⚠ {int((~inside).sum())} samples fall outside the map")
table = table[inside]

y_true = table["label"].astype(str).tolist()
y_pred = [labels.label_at(r, c) for r, c in zip(table["row"], table["col"])]


# -------------------------------------------------
# METRICS
# -------------------------------------------------
report = accuracy_report(y_true, y_pred, classes)
text = format_report(report)

print("\n===== ACCURACY =====")
print(text)

with open(OUT, "w") as f:
    f.write(text + "\n")

print("\n✅ Accuracy report saved:", OUT)
