import argparse
import json
import logging
import signal
import threading
from pathlib import Path

import numpy as np
import rasterio

from scripts.cart.classify import classify, confidence_map
from scripts.cart.config import CHUNK_ROWS
from scripts.cart.model import TreeModel
from scripts.cart.raster import RasterGrid

# -------------------------------------------------
# ARGUMENTS
# -------------------------------------------------
parser = argparse.ArgumentParser()
parser.add_argument("--year", required=True, help="Year of the stack to classify (e.g. 2025)")
parser.add_argument("--aoi", required=True, help="AOI name (e.g. auroville)")
parser.add_argument("--model_year", default=None,
                    help="Year the model was trained on (default: --year)")
parser.add_argument("--chunk", type=int, default=CHUNK_ROWS, help="Rows per chunk")
parser.add_argument("--workers", type=int, default=4)
parser.add_argument("--mask", choices=["any", "path"], default="any",
                    help="Missing-pixel policy: any trained band, or only bands on the tree path")
parser.add_argument("--confidence", action="store_true",
                    help="Also write a leaf-purity confidence raster")
args = parser.parse_args()

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

YEAR = args.year
AOI = args.aoi
MODEL_YEAR = args.model_year or YEAR


# -------------------------------------------------
# PATHS
# -------------------------------------------------
STACK = Path(f"data/processed/{AOI}/stack_{YEAR}.tif")
MODEL = Path(f"models/cart_{MODEL_YEAR}_{AOI}.json")
OUT_DIR = Path(f"outputs/cart/{YEAR}")
OUT_DIR.mkdir(parents=True, exist_ok=True)

OUT_MAP = OUT_DIR / f"landcover_{YEAR}_{AOI}.tif"
OUT_CONF = OUT_DIR / f"confidence_{YEAR}_{AOI}.tif"
OUT_LEGEND = OUT_DIR / f"landcover_{YEAR}_{AOI}_legend.json"


# -------------------------------------------------
# VALIDATION
# -------------------------------------------------
if not STACK.exists():
    raise FileNotFoundError(f"Stack not found: {STACK}")

if not MODEL.exists():
    raise FileNotFoundError(f"Model not found: {MODEL}")

print("Stack:", STACK)
print("Model:", MODEL)


# -------------------------------------------------
# LOAD
# -------------------------------------------------
model = TreeModel.load(MODEL)
grid = RasterGrid.from_file(STACK)

with rasterio.open(STACK) as src:
    meta = src.meta.copy()

print(model)
print(grid)


# -------------------------------------------------
# CTRL-C stops between chunks
# -------------------------------------------------
cancel = threading.Event()


def _stop(signum, frame):
    print("\n⏹ Cancelling after current chunks...")
    cancel.set()


signal.signal(signal.SIGINT, _stop)


# -------------------------------------------------
# CLASSIFY
# -------------------------------------------------
labels = classify(
    model,
    grid,
    chunk_rows=args.chunk,
    n_workers=args.workers,
    cancel=cancel,
    mask_policy=args.mask,
    progress=True,
)

meta.update(count=1, dtype="uint8", nodata=0)

with rasterio.open(OUT_MAP, "w", **meta) as dst:
    dst.write(labels.to_raster(), 1)
    dst.set_band_description(1, "landcover")

with open(OUT_LEGEND, "w") as f:
    json.dump(labels.legend(), f, indent=2)

print("✅ Land-cover map saved:", OUT_MAP)
print("✅ Legend saved:", OUT_LEGEND)


# -------------------------------------------------
# CLASS SUMMARY
# -------------------------------------------------
codes, counts = np.unique(labels.codes, return_counts=True)
for code, n in zip(codes, counts):
    name = "missing" if code < 0 else labels.classes[code]
    print(f"   {name:<15} {n:>10} px")


# -------------------------------------------------
# OPTIONAL CONFIDENCE OUTPUT
# -------------------------------------------------
if args.confidence:
    conf = confidence_map(
        model, grid, chunk_rows=args.chunk, n_workers=args.workers, cancel=cancel, progress=True
    )
    meta.update(dtype="float32", nodata=np.nan)

    with rasterio.open(OUT_CONF, "w", **meta) as dst:
        dst.write(conf, 1)

    print("✅ Confidence raster saved:", OUT_CONF)
