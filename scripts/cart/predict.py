import numpy as np
from collections.abc import Mapping

from scripts.cart.config import FEATURE_DTYPE, MISSING_CODE
from scripts.cart.model import LEAF, BandMismatchError


def _as_vector(model, feature_vector):
    if isinstance(feature_vector, Mapping):
        absent = [b for b in model.band_names if b not in feature_vector]
        if absent:
            raise BandMismatchError(f"Feature vector lacks trained band(s): {absent}")
        values = [feature_vector[b] for b in model.band_names]
    else:
        values = list(feature_vector)
        if len(values) != len(model.band_names):
            raise BandMismatchError(
                f"Feature vector has {len(values)} values, model expects "
                f"{len(model.band_names)} ({', '.join(model.band_names)})"
            )
    x = np.array([np.nan if v is None else v for v in values], dtype="float64")
    return x.astype(FEATURE_DTYPE)


def predict_leaf(model, feature_vector):
    """Leaf reached by one feature vector, or None if a split feature is missing."""
    x = _as_vector(model, feature_vector)
    i = 0
    while model.feature[i] != LEAF:
        v = x[model.feature[i]]
        if np.isnan(v):
            return None
        i = model.left[i] if v <= model.threshold[i] else model.right[i]
    return int(i)


def predict(model, feature_vector, return_distribution=False):
    """
    Predicted label for one feature vector.

    feature_vector is either a {band: value} mapping or a sequence in the
    model's band order. Returns None when the traversal meets a missing
    value; with return_distribution, returns (label, {class: fraction}).
    """
    leaf = predict_leaf(model, feature_vector)
    if leaf is None:
        return (None, None) if return_distribution else None

    label = model.classes[model.value[leaf]]
    if not return_distribution:
        return label

    counts = model.counts[leaf]
    total = counts.sum()
    dist = {c: float(n / total) if total else 0.0 for c, n in zip(model.classes, counts)}
    return label, dist


def predict_leaves(model, X):
    """
    Vectorised traversal of an (n, bands) array in model band order.

    Returns the leaf id per row, -1 where a split on the path reads NaN.
    """
    X = np.asarray(X, dtype=FEATURE_DTYPE)
    n = X.shape[0]
    node = np.zeros(n, dtype="int32")
    active = np.ones(n, dtype=bool)
    rows = np.arange(n)

    while True:
        active &= model.feature[node] != LEAF
        if not active.any():
            break
        at = rows[active]
        f = model.feature[node[at]]
        v = X[at, f]
        missing = np.isnan(v)
        if missing.any():
            node[at[missing]] = LEAF
            active[at[missing]] = False
            at, f, v = at[~missing], f[~missing], v[~missing]
        cur = node[at]
        node[at] = np.where(v <= model.threshold[cur], model.left[cur], model.right[cur])

    return node


def predict_codes(model, X):
    """Class code per row (index into model.classes), MISSING_CODE where undefined."""
    leaves = predict_leaves(model, X)
    codes = np.full(leaves.shape, MISSING_CODE, dtype="int16")
    ok = leaves != LEAF
    codes[ok] = model.value[leaves[ok]]
    return codes
