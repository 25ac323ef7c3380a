# tests/test_trainer.py
import numpy as np
import pandas as pd
import pytest

from scripts.cart.config import TreeParams
from scripts.cart.model import LEAF, LeafNode, SplitNode, TrainingDataError
from scripts.cart.predict import predict
from scripts.cart.trainer import LabeledSample, best_threshold, gini, train


def test_gini_values():
    assert gini([5, 0]) == pytest.approx(0.0)
    assert gini([5, 5]) == pytest.approx(0.5)
    assert gini([1, 1, 1, 1]) == pytest.approx(0.75)
    assert gini([0, 0]) == pytest.approx(0.0)
    np.testing.assert_allclose(gini([[2, 2], [4, 0]]), [0.5, 0.0])


def test_single_label_gives_single_leaf(bands):
    samples = [(i, [0.1 * i] * 6, "water") for i in range(5)]
    model = train(samples, bands)

    assert model.n_nodes == 1
    node = model.node(0)
    assert isinstance(node, LeafNode)
    assert node.label == "water"
    assert node.distribution == {"water": 5}


def test_two_sample_example_depth_one(water_urban, bands):
    model = train(water_urban, bands, TreeParams(max_depth=1))

    assert model.n_nodes == 3
    root = model.node(0)
    assert isinstance(root, SplitNode)
    # every band separates the pair equally well; the first one wins
    assert model.band_names[root.feature] == "blue"
    assert root.threshold == pytest.approx(0.2)

    assert model.node(root.left).label == "water"
    assert model.node(root.right).label == "urban"
    assert predict(model, water_urban[0][1]) == "water"
    assert predict(model, water_urban[1][1]) == "urban"


def test_threshold_is_midpoint_of_distinct_values():
    x = np.array([3.0, 1.0, 1.0, 3.0])
    y = np.array([1, 0, 0, 1])
    impurity, threshold = best_threshold(x, y, 2)
    assert threshold == pytest.approx(2.0)
    assert impurity == pytest.approx(0.0)


def test_threshold_on_adjacent_floats_keeps_partition():
    lo = 1.0
    hi = np.nextafter(lo, 2.0)
    _, threshold = best_threshold(np.array([lo, hi]), np.array([0, 1]), 2)
    assert lo <= threshold < hi


def test_constant_feature_is_skipped():
    samples = [
        (1, [0.5, 0.1], "a"),
        (2, [0.5, 0.2], "a"),
        (3, [0.5, 0.8], "b"),
        (4, [0.5, 0.9], "b"),
    ]
    model = train(samples, ["flat", "useful"])
    assert model.band_names[model.node(0).feature] == "useful"
    assert best_threshold(np.array([0.5] * 4), np.array([0, 0, 1, 1]), 2) is None


def test_identical_vectors_with_mixed_labels_force_a_leaf():
    samples = [
        (1, [0.3, 0.3], "urban"),
        (2, [0.3, 0.3], "soil"),
    ]
    model = train(samples, ["red", "nir"])
    assert model.n_nodes == 1
    # tie broken by sorted class order
    assert model.node(0).label == "soil"
    assert model.node(0).distribution == {"soil": 1, "urban": 1}


def test_majority_label_at_leaf():
    samples = [
        (1, [0.1], "water"),
        (2, [0.1], "water"),
        (3, [0.1], "urban"),
    ]
    model = train(samples, ["nir"])
    assert model.node(0).label == "water"


def test_purity_non_decreasing_with_depth(three_class_samples, bands):
    purities = []
    for depth in range(0, 8):
        model = train(three_class_samples, bands, TreeParams(max_depth=depth))
        assert model.depth <= depth
        purities.append(model.weighted_purity())

    assert all(b >= a - 1e-12 for a, b in zip(purities, purities[1:]))


def test_unconstrained_tree_fits_training_set(three_class_samples, bands):
    model = train(three_class_samples, bands)
    assert model.weighted_purity() == pytest.approx(1.0)
    for _, features, label in three_class_samples:
        assert predict(model, features) == label


def test_max_depth_zero_is_a_single_leaf(three_class_samples, bands):
    model = train(three_class_samples, bands, TreeParams(max_depth=0))
    assert model.n_nodes == 1
    assert model.node(0).distribution == {"urban": 40, "vegetation": 40, "water": 40}
    assert model.node(0).label == "urban"


def test_min_samples_split_stops_growth(water_urban, bands):
    model = train(water_urban, bands, TreeParams(min_samples_split=3))
    assert model.n_nodes == 1


def test_min_impurity_gain_stops_growth(water_urban, bands):
    # the only split gains exactly 0.5
    assert train(water_urban, bands, TreeParams(min_impurity_gain=0.5)).n_nodes == 1
    assert train(water_urban, bands, TreeParams(min_impurity_gain=0.49)).n_nodes == 3


def test_min_samples_leaf_limits_candidates():
    samples = [(i, [float(i)], "a") for i in range(4)] + [(9, [9.0], "b")]
    loose = train(samples, ["nir"])
    assert loose.node(0).threshold == pytest.approx(6.0)

    strict = train(samples, ["nir"], TreeParams(min_samples_leaf=2))
    root = strict.node(0)
    assert isinstance(root, SplitNode)
    left = strict.counts[root.left].sum()
    right = strict.counts[root.right].sum()
    assert min(left, right) >= 2


def test_parallel_split_search_builds_the_same_tree(three_class_samples, bands):
    serial = train(three_class_samples, bands)
    threaded = train(three_class_samples, bands, TreeParams(n_jobs=4))
    assert serial.to_dict() == threaded.to_dict()


def test_training_is_deterministic(three_class_samples, bands):
    a = train(three_class_samples, bands, TreeParams(max_depth=4))
    b = train(list(three_class_samples), bands, TreeParams(max_depth=4))
    assert a.to_dict() == b.to_dict()


def test_samples_with_missing_values_are_dropped(water_urban, bands):
    samples = water_urban + [
        (3, [np.nan, 0.2, 0.05, 0.6, 0.3, 0.1], "urban"),
        (4, [0.1, None, 0.05, 0.6, 0.3, 0.1], "urban"),
    ]
    model = train(samples, bands)
    assert model.counts[0].sum() == 2


def test_feature_length_mismatch_raises(bands):
    with pytest.raises(TrainingDataError, match="expected 6"):
        train([(1, [0.1, 0.2], "water")], bands)


def test_empty_training_set_raises(bands):
    with pytest.raises(TrainingDataError, match="empty"):
        train([], bands)


def test_all_missing_training_set_raises(bands):
    with pytest.raises(TrainingDataError, match="empty"):
        train([(1, [np.nan] * 6, "water")], bands)


def test_duplicate_band_names_raise():
    with pytest.raises(TrainingDataError, match="Duplicate"):
        train([(1, [0.1, 0.2], "water")], ["nir", "nir"])


def test_non_numeric_values_raise():
    with pytest.raises(TrainingDataError, match="Non-numeric"):
        train([(1, ["bright", 0.2], "water")], ["red", "nir"])


def test_train_from_feature_table(water_urban, bands):
    rows = []
    for sid, features, label in water_urban:
        rows.append({"sample_id": sid, "geometry_id": sid, "label": label, **dict(zip(bands, features))})
    rows.append({"sample_id": 3, "geometry_id": 3, "label": "urban", **dict.fromkeys(bands, np.nan)})
    table = pd.DataFrame(rows)

    # columns looked up by name, so order in the table does not matter
    table = table[["label", "sample_id", "geometry_id"] + bands[::-1]]
    model = train(table, bands, TreeParams(max_depth=1))

    assert model.band_names == bands
    assert model.counts[0].sum() == 2
    assert predict(model, dict(zip(bands, water_urban[0][1]))) == "water"


def test_feature_table_with_unknown_band_raises(bands):
    table = pd.DataFrame({"label": ["water"], **{b: [0.1] for b in bands}})
    with pytest.raises(TrainingDataError, match="Unknown band"):
        train(table, bands + ["thermal"])


def test_trained_arrays_are_read_only(water_urban, bands):
    model = train(water_urban, bands)
    with pytest.raises(ValueError):
        model.threshold[0] = 0.0
    assert model.feature[model.left[0]] == LEAF


def test_mixed_label_types_raise(bands):
    samples = [
        (1, [0.1] * 6, 1),
        (2, [0.3] * 6, "water"),
    ]
    with pytest.raises(TrainingDataError, match="mixed types"):
        train(samples, bands)


def test_labeled_samples_and_malformed_tuples(water_urban, bands):
    samples = [LabeledSample(*s) for s in water_urban]
    assert train(samples, bands).to_dict() == train(water_urban, bands).to_dict()

    with pytest.raises(TrainingDataError, match="Expected"):
        train([(1, [0.1] * 6)], bands)
