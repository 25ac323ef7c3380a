"""
CART induction.

Greedy recursive binary partitioning on Gini impurity. Every feature is
scanned at every node: values are sorted once, class counts accumulated,
and each boundary between two distinct values is a candidate threshold
(the midpoint). The (feature, threshold) with the lowest weighted child
impurity wins; the node becomes a leaf when it is pure, too small, too
deep, or when no candidate improves impurity by more than
``min_impurity_gain``.
"""
import logging
from collections import namedtuple
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pandas as pd

from scripts.cart.config import FEATURE_DTYPE, TreeParams
from scripts.cart.model import LEAF, TrainingDataError, TreeModel
from scripts.cart.samples import drop_missing, training_arrays

log = logging.getLogger(__name__)

LabeledSample = namedtuple("LabeledSample", ["id", "features", "label"])

Split = namedtuple("Split", ["impurity", "feature", "threshold"])


def gini(counts):
    """Gini impurity 1 - sum(p_c^2) of class counts along the last axis."""
    counts = np.asarray(counts, dtype="float64")
    total = counts.sum(axis=-1, keepdims=True)
    with np.errstate(divide="ignore", invalid="ignore"):
        g = 1.0 - ((counts / total) ** 2).sum(axis=-1)
    return np.where(total[..., 0] > 0, g, 0.0)


def best_threshold(x, y, n_classes, min_samples_leaf=1):
    """
    Best split of one feature column.

    Returns (weighted_impurity, threshold), or None when the column holds
    no usable boundary (all values identical, or every boundary would leave
    fewer than ``min_samples_leaf`` samples on one side).
    """
    n = len(x)
    order = np.argsort(x, kind="mergesort")
    xs = x[order]
    ys = y[order]

    # boundary i separates xs[:i+1] from xs[i+1:]
    boundary = xs[:-1] < xs[1:]
    n_left = np.arange(1, n)
    boundary &= (n_left >= min_samples_leaf) & (n - n_left >= min_samples_leaf)
    if not boundary.any():
        return None

    onehot = np.zeros((n, n_classes), dtype="int64")
    onehot[np.arange(n), ys] = 1
    left_counts = np.cumsum(onehot, axis=0)[:-1]
    right_counts = left_counts[-1] + onehot[-1] - left_counts

    weighted = (n_left * gini(left_counts) + (n - n_left) * gini(right_counts)) / n
    weighted = np.where(boundary, weighted, np.inf)

    i = int(np.argmin(weighted))
    lo, hi = xs[i], xs[i + 1]
    # kept in the column dtype so the stored value is exactly representable
    ftype = xs.dtype.type if np.issubdtype(xs.dtype, np.floating) else np.float64
    threshold = ftype(lo / 2.0 + hi / 2.0)
    if threshold >= hi:
        # midpoint of adjacent floats can round up onto the upper value
        threshold = lo
    return float(weighted[i]), float(threshold)


def _find_split(X, y, n_classes, params, pool=None):
    n_features = X.shape[1]

    def scan(j):
        return best_threshold(X[:, j], y, n_classes, params.min_samples_leaf)

    if pool is not None:
        results = list(pool.map(scan, range(n_features)))
    else:
        results = [scan(j) for j in range(n_features)]

    best = None
    for j, res in enumerate(results):
        if res is None:
            continue
        impurity, threshold = res
        # strict < keeps the earliest feature on ties
        if best is None or impurity < best.impurity:
            best = Split(impurity, j, threshold)
    return best


def _as_arrays(training_set, band_names):
    band_names = list(band_names)
    if not band_names:
        raise TrainingDataError("No band names given")
    if len(set(band_names)) != len(band_names):
        raise TrainingDataError(f"Duplicate band names: {band_names}")

    if isinstance(training_set, pd.DataFrame):
        return training_arrays(drop_missing(training_set, band_names), band_names)

    rows = []
    labels = []
    for sample in training_set:
        try:
            sample = LabeledSample(*sample)
        except TypeError:
            raise TrainingDataError(f"Expected (id, features, label), got {sample!r}") from None
        features = list(sample.features)
        if len(features) != len(band_names):
            raise TrainingDataError(
                f"Sample {sample.id} has {len(features)} values, expected {len(band_names)} "
                f"({', '.join(band_names)})"
            )
        if sample.label is None:
            raise TrainingDataError(f"Sample {sample.id} has no label")
        rows.append([np.nan if v is None else v for v in features])
        labels.append(sample.label)

    if not rows:
        raise TrainingDataError("Training set is empty")

    try:
        X = np.asarray(rows, dtype="float64")
    except (TypeError, ValueError) as e:
        raise TrainingDataError(f"Non-numeric feature values: {e}") from None
    labels = np.asarray(labels, dtype=object)

    keep = ~np.isnan(X).any(axis=1)
    dropped = int((~keep).sum())
    if dropped:
        log.warning("Dropped %d of %d samples with missing band values", dropped, len(X))
    if not keep.any():
        raise TrainingDataError("Training set is empty after removing samples with missing values")
    return X[keep], labels[keep]


def train(training_set, band_names, params=None):
    """
    Grow a decision tree.

    training_set: feature table (DataFrame with a ``label`` column and one
    column per band) or an iterable of (id, feature_vector, label).
    """
    params = params if params is not None else TreeParams()
    band_names = list(band_names)

    X, labels = _as_arrays(training_set, band_names)
    # same precision as RasterGrid, so predict() and classify() agree at thresholds
    X = X.astype(FEATURE_DTYPE)
    try:
        classes = sorted(set(labels.tolist()))
    except TypeError:
        kinds = sorted({type(c).__name__ for c in labels.tolist()})
        raise TrainingDataError(f"Labels of mixed types cannot be ordered: {kinds}") from None
    code_of = {c: i for i, c in enumerate(classes)}
    y = np.array([code_of[c] for c in labels], dtype="int64")
    n_classes = len(classes)

    log.info(
        "Training tree on %d samples, %d bands, %d classes (%s)",
        len(y), len(band_names), n_classes, ", ".join(map(str, classes)),
    )

    feature, threshold, left, right, counts = [], [], [], [], []

    def new_node(idx):
        feature.append(LEAF)
        threshold.append(np.nan)
        left.append(LEAF)
        right.append(LEAF)
        counts.append(np.bincount(y[idx], minlength=n_classes))
        return len(feature) - 1

    pool = ThreadPoolExecutor(max_workers=params.n_jobs) if params.n_jobs > 1 else None
    try:
        root = np.arange(len(y))
        stack = [(new_node(root), root, 0)]
        while stack:
            node, idx, depth = stack.pop()
            node_counts = counts[node]
            n = len(idx)

            if (
                np.count_nonzero(node_counts) <= 1
                or n < params.min_samples_split
                or (params.max_depth is not None and depth >= params.max_depth)
            ):
                continue

            split = _find_split(X[idx], y[idx], n_classes, params, pool)
            if split is None:
                continue
            gain = float(gini(node_counts)) - split.impurity
            if gain <= params.min_impurity_gain:
                continue

            go_left = X[idx, split.feature] <= split.threshold
            left_idx, right_idx = idx[go_left], idx[~go_left]

            feature[node] = split.feature
            threshold[node] = split.threshold
            left[node] = new_node(left_idx)
            right[node] = new_node(right_idx)
            log.debug(
                "node %d: %s <= %.6g (n=%d, gain=%.4f)",
                node, band_names[split.feature], split.threshold, n, gain,
            )

            # right pushed first so the left subtree is grown first
            stack.append((right[node], right_idx, depth + 1))
            stack.append((left[node], left_idx, depth + 1))
    finally:
        if pool is not None:
            pool.shutdown()

    model = TreeModel(band_names, classes, feature, threshold, left, right, counts, params=params)
    log.info(
        "Tree grown: %d nodes, %d leaves, depth %d, training purity %.4f",
        model.n_nodes, model.n_leaves, model.depth, model.weighted_purity(),
    )
    return model
