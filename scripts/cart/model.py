"""
Trained decision tree.

Nodes live in flat arrays (an arena) indexed by node id; node 0 is the root.
A split node has feature >= 0 and two child ids; a leaf has feature == -1.
"""
import json
import logging
from collections import namedtuple
from pathlib import Path

import numpy as np

from scripts.cart.config import TreeParams

log = logging.getLogger(__name__)

LEAF = -1

SplitNode = namedtuple("SplitNode", ["feature", "threshold", "left", "right"])
LeafNode = namedtuple("LeafNode", ["label", "distribution"])


class TrainingDataError(ValueError):
    pass


class BandMismatchError(ValueError):
    pass


class ClassificationCancelled(RuntimeError):
    pass


class TreeModel:
    def __init__(self, band_names, classes, feature, threshold, left, right, counts, params=None):
        self.band_names = list(band_names)
        # numpy scalars (e.g. int64 labels read back from CSV) are not JSON serialisable
        self.classes = [c.item() if isinstance(c, np.generic) else c for c in classes]
        self.params = params if params is not None else TreeParams()

        self.feature = np.asarray(feature, dtype="int32")
        self.threshold = np.asarray(threshold, dtype="float64")
        self.left = np.asarray(left, dtype="int32")
        self.right = np.asarray(right, dtype="int32")
        self.counts = np.asarray(counts, dtype="int64").reshape(len(self.feature), len(self.classes))

        # majority class per node; argmax keeps the first (sorted) class on ties
        self.value = self.counts.argmax(axis=1).astype("int16")

        for arr in (self.feature, self.threshold, self.left, self.right, self.counts, self.value):
            arr.setflags(write=False)

    # -------------------------------------------------
    # STRUCTURE
    # -------------------------------------------------
    @property
    def n_nodes(self):
        return len(self.feature)

    def is_leaf(self, i):
        return self.feature[i] == LEAF

    @property
    def n_leaves(self):
        return int(np.count_nonzero(self.feature == LEAF))

    @property
    def depth(self):
        depth = 0
        stack = [(0, 0)]
        while stack:
            i, d = stack.pop()
            depth = max(depth, d)
            if not self.is_leaf(i):
                stack.append((int(self.left[i]), d + 1))
                stack.append((int(self.right[i]), d + 1))
        return depth

    def node(self, i):
        if self.is_leaf(i):
            dist = {c: int(n) for c, n in zip(self.classes, self.counts[i])}
            return LeafNode(self.classes[self.value[i]], dist)
        return SplitNode(
            int(self.feature[i]), float(self.threshold[i]), int(self.left[i]), int(self.right[i])
        )

    def used_bands(self):
        used = sorted(set(int(f) for f in self.feature if f != LEAF))
        return [self.band_names[f] for f in used]

    def leaf_purity(self):
        """Majority-class fraction of every leaf, keyed by node id."""
        leaves = np.flatnonzero(self.feature == LEAF)
        totals = self.counts[leaves].sum(axis=1)
        majority = self.counts[leaves].max(axis=1)
        return {int(i): float(m / t) if t else 0.0 for i, m, t in zip(leaves, majority, totals)}

    def weighted_purity(self):
        """Training-sample-weighted mean leaf purity (1.0 = perfect fit)."""
        leaves = self.feature == LEAF
        total = self.counts[leaves].sum()
        if total == 0:
            return 0.0
        return float(self.counts[leaves].max(axis=1).sum() / total)

    # -------------------------------------------------
    # PERSISTENCE
    # -------------------------------------------------
    def _node_record(self, i):
        dist = [int(n) for n in self.counts[i]]
        if self.is_leaf(i):
            return {"label": self.classes[self.value[i]], "distribution": dist}
        return {
            "feature": self.band_names[self.feature[i]],
            "threshold": float(self.threshold[i]),
            "left": int(self.left[i]),
            "right": int(self.right[i]),
            "distribution": dist,
        }

    def to_dict(self):
        """
        Plain-JSON form. Nodes are a flat list indexed by node id, so deep
        trees serialise without nesting; distributions follow ``classes``.
        """
        params = self.params.to_dict()
        # runtime setting, not part of the model
        params.pop("n_jobs", None)
        return {
            "bands": self.band_names,
            "classes": self.classes,
            "params": params,
            "nodes": [self._node_record(i) for i in range(self.n_nodes)],
        }

    @classmethod
    def from_dict(cls, d):
        band_names = list(d["bands"])
        classes = list(d["classes"])
        records = d["nodes"]
        n = len(records)
        if n == 0:
            raise ValueError("Model has no nodes")

        feature = np.full(n, LEAF, dtype="int32")
        threshold = np.full(n, np.nan)
        left = np.full(n, LEAF, dtype="int32")
        right = np.full(n, LEAF, dtype="int32")
        counts = np.zeros((n, len(classes)), dtype="int64")

        for i, record in enumerate(records):
            dist = record["distribution"]
            if len(dist) != len(classes):
                raise ValueError(
                    f"Node {i} has {len(dist)} class counts, expected {len(classes)}"
                )
            counts[i] = dist
            if "feature" not in record:
                continue
            if record["feature"] not in band_names:
                raise BandMismatchError(f"Node splits on unknown band {record['feature']}")
            l, r = int(record["left"]), int(record["right"])
            if not (i < l < n and i < r < n):
                raise ValueError(f"Node {i} has invalid children ({l}, {r})")
            feature[i] = band_names.index(record["feature"])
            threshold[i] = float(record["threshold"])
            left[i], right[i] = l, r

        params = TreeParams.from_dict(d.get("params", {}))
        return cls(band_names, classes, feature, threshold, left, right, counts, params=params)

    def save(self, path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
        log.info("Saved tree (%d nodes) to %s", self.n_nodes, path)

    @classmethod
    def load(cls, path):
        with open(path, "r") as f:
            model = cls.from_dict(json.load(f))
        log.info("Loaded tree (%d nodes) from %s", model.n_nodes, path)
        return model

    # -------------------------------------------------
    # DISPLAY
    # -------------------------------------------------
    def export_text(self, decimals=4):
        lines = []
        stack = [(0, 0, "")]
        while stack:
            i, d, prefix = stack.pop()
            pad = "|   " * d
            if self.is_leaf(i):
                total = int(self.counts[i].sum())
                lines.append(f"{pad}{prefix}class: {self.classes[self.value[i]]} (n={total})")
                continue
            band = self.band_names[self.feature[i]]
            t = round(float(self.threshold[i]), decimals)
            stack.append((int(self.right[i]), d + 1, f"{band} >  {t} -> "))
            stack.append((int(self.left[i]), d + 1, f"{band} <= {t} -> "))
            if prefix:
                lines.append(f"{pad}{prefix}")
        return "\n".join(lines)

    def __repr__(self):
        return (
            f"TreeModel(nodes={self.n_nodes}, leaves={self.n_leaves}, depth={self.depth}, "
            f"classes={self.classes})"
        )
