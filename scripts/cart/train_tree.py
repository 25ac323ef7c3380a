import argparse
import logging
from pathlib import Path

import pandas as pd

from scripts.cart.config import BANDS, TreeParams
from scripts.cart.metrics import accuracy_report, format_report, holdout_split
from scripts.cart.predict import predict_codes
from scripts.cart.samples import drop_missing
from scripts.cart.trainer import train

# -------------------------------------------------
# ARGUMENTS
# -------------------------------------------------
parser = argparse.ArgumentParser()
parser.add_argument("--year", required=True, help="Year to train (e.g., 2025)")
parser.add_argument("--aoi", required=True, help="AOI name (e.g., auroville)")
parser.add_argument("--bands", nargs="+", default=BANDS)
parser.add_argument("--max_depth", type=int, default=None)
parser.add_argument("--min_samples_split", type=int, default=2)
parser.add_argument("--min_samples_leaf", type=int, default=1)
parser.add_argument("--min_gain", type=float, default=1e-7)
parser.add_argument("--jobs", type=int, default=1)
parser.add_argument("--test_size", type=float, default=0.2,
                    help="Fraction of geometries held out (0 = train on all)")
parser.add_argument("--seed", type=int, default=42)
args = parser.parse_args()

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

YEAR = args.year
AOI = args.aoi
BAND_LIST = args.bands

SAMPLES = Path(f"data/training/samples_{YEAR}_{AOI}.csv")
MODEL_DIR = Path("models")
MODEL_DIR.mkdir(exist_ok=True)
MODEL = MODEL_DIR / f"cart_{YEAR}_{AOI}.json"
REPORT = MODEL_DIR / f"cart_{YEAR}_{AOI}_report.txt"

if not SAMPLES.exists():
    raise FileNotFoundError(f"Samples not found: {SAMPLES}")

params = TreeParams(
    max_depth=args.max_depth,
    min_samples_split=args.min_samples_split,
    min_samples_leaf=args.min_samples_leaf,
    min_impurity_gain=args.min_gain,
    n_jobs=args.jobs,
)

# -------------------------------------------------
# LOAD SAMPLES
# -------------------------------------------------
table = pd.read_csv(SAMPLES)
table = drop_missing(table, BAND_LIST)

print(f"\nTraining: {YEAR} | {AOI}")
print(f"Samples: {len(table)}")
print("Class counts:\n" + table["label"].value_counts().to_string())

# -------------------------------------------------
# HOLD-OUT SPLIT
# -------------------------------------------------
if args.test_size > 0:
    train_df, test_df = holdout_split(table, test_size=args.test_size, seed=args.seed)
else:
    train_df, test_df = table, table.iloc[0:0]

print(f"Train samples: {len(train_df)}")
print(f"Test samples:  {len(test_df)}")

# -------------------------------------------------
# TRAIN
# -------------------------------------------------
model = train(train_df, BAND_LIST, params)

print(f"\nTree: {model.n_nodes} nodes | {model.n_leaves} leaves | depth {model.depth}")
print(f"Bands used: {', '.join(model.used_bands())}")
print(f"Training purity: {model.weighted_purity():.4f}")

# -------------------------------------------------
# EVALUATE
# -------------------------------------------------
if len(test_df):
    codes = predict_codes(model, test_df[BAND_LIST].to_numpy(dtype="float64"))
    y_pred = [model.classes[c] if c >= 0 else None for c in codes]
    report = accuracy_report(test_df["label"].tolist(), y_pred, model.classes)

    text = format_report(report)
    print("\n===== HOLD-OUT ACCURACY =====")
    print(text)

    with open(REPORT, "w") as f:
        f.write(text + "\n\n" + model.export_text() + "\n")
    print("✅ Report saved:", REPORT)

# -------------------------------------------------
# SAVE
# -------------------------------------------------
model.save(MODEL)

print("✅ Model saved:", MODEL)
