import subprocess
import argparse
import sys


# --------------------------------
# ARGUMENTS
# --------------------------------
parser = argparse.ArgumentParser()

parser.add_argument("--year", required=True)
parser.add_argument("--aoi", required=True)

# optional training geometries + class column
parser.add_argument("--training", default=None)
parser.add_argument("--label", default="class")

# tree tuning
parser.add_argument("--max_depth", type=int, default=None)
parser.add_argument("--min_samples_split", type=int, default=2)
parser.add_argument("--min_gain", type=float, default=1e-7)
parser.add_argument("--test_size", type=float, default=0.2)

# classification
parser.add_argument("--workers", type=int, default=4)
parser.add_argument("--indices", action="store_true", help="Add NDVI/NDWI/NDBI/MNDWI to the stack")

# optional change analysis against an earlier classified year
parser.add_argument("--compare", default=None, help="Earlier year for the change matrix")

# optional skip flags
parser.add_argument("--skip_clip", action="store_true")
parser.add_argument("--skip_train", action="store_true")
parser.add_argument("--model_year", default=None, help="Reuse a model trained on another year")

args = parser.parse_args()

YEAR = args.year
AOI = args.aoi
PY = sys.executable


# --------------------------------
# Helper
# --------------------------------
def run(cmd):
    print("\n🚀 Running:", " ".join(cmd))
    subprocess.run(cmd, check=True)


# --------------------------------
# PIPELINE
# --------------------------------

# 1️⃣ Clip bands to the study area
if not args.skip_clip:
    run([PY, "-m", "scripts.01_prepare_aoi_raw", "--aoi", AOI, "--year", YEAR])


# 2️⃣ Reflectance stack
stack_cmd = [PY, "-m", "scripts.02_build_stack", "--aoi", AOI, "--year", YEAR]
if args.indices:
    stack_cmd.append("--indices")
run(stack_cmd)


# 3️⃣ Training samples
if not args.skip_train:
    sample_cmd = [
        PY, "-m", "scripts.03_sample_training_polygons",
        "--year", YEAR, "--aoi", AOI, "--label", args.label,
    ]
    if args.training:
        sample_cmd += ["--training", args.training]
    run(sample_cmd)


# 4️⃣ Train tree
if not args.skip_train:
    train_cmd = [
        PY, "-m", "scripts.cart.train_tree",
        "--year", YEAR, "--aoi", AOI,
        "--min_samples_split", str(args.min_samples_split),
        "--min_gain", str(args.min_gain),
        "--test_size", str(args.test_size),
    ]
    if args.max_depth is not None:
        train_cmd += ["--max_depth", str(args.max_depth)]
    if args.indices:
        train_cmd += ["--bands", "blue", "green", "red", "nir", "swir1", "swir2",
                      "ndvi", "ndwi", "ndbi", "mndwi"]
    run(train_cmd)


# 5️⃣ Classify
predict_cmd = [
    PY, "-m", "scripts.cart.predict_tree",
    "--year", YEAR, "--aoi", AOI,
    "--workers", str(args.workers),
    "--confidence",
]
if args.model_year:
    predict_cmd += ["--model_year", args.model_year]
run(predict_cmd)


# 6️⃣ Accuracy on the hold-out geometries
if not args.skip_train:
    run([
        PY, "-m", "scripts.evaluate_accuracy",
        "--year", YEAR, "--aoi", AOI,
        "--holdout_only", "--test_size", str(args.test_size),
    ])


# 7️⃣ Land-cover change
if args.compare:
    run([
        PY, "-m", "scripts.05_landcover_change",
        "--aoi", AOI, "--before", args.compare, "--after", YEAR,
    ])


print("\n🎉 FULL PIPELINE COMPLETE")
