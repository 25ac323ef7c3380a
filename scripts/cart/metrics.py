import logging

import numpy as np
import pandas as pd
from sklearn.metrics import (
    accuracy_score,
    cohen_kappa_score,
    confusion_matrix,
    precision_recall_fscore_support,
)
from sklearn.model_selection import GroupShuffleSplit, train_test_split

log = logging.getLogger(__name__)


def holdout_split(table, test_size=0.2, seed=42):
    """
    Train/test split of a feature table.

    Pixels sampled from the same geometry stay on the same side, otherwise
    neighbouring pixels of one polygon would leak into the test set.
    """
    groups = table["geometry_id"].to_numpy()
    if len(np.unique(groups)) < 2:
        log.warning("Single training geometry: falling back to a pixel-wise split")
        train_idx, test_idx = train_test_split(
            np.arange(len(table)), test_size=test_size, random_state=seed
        )
    else:
        splitter = GroupShuffleSplit(n_splits=1, test_size=test_size, random_state=seed)
        train_idx, test_idx = next(splitter.split(table, groups=groups))

    train, test = table.iloc[np.sort(train_idx)], table.iloc[np.sort(test_idx)]
    log.info("Hold-out split: %d train / %d test samples", len(train), len(test))
    return train, test


def accuracy_report(y_true, y_pred, classes):
    """
    Overall accuracy, kappa, per-class scores and a confusion matrix.

    Predictions equal to None are counted as unclassified and left out of
    the scores.
    """
    y_true = np.asarray(y_true, dtype=object)
    y_pred = np.asarray(y_pred, dtype=object)
    classified = np.array([p is not None for p in y_pred], dtype=bool)
    yt, yp = y_true[classified], y_pred[classified]

    report = {
        "n_samples": int(len(y_true)),
        "n_unclassified": int((~classified).sum()),
    }
    if len(yt) == 0:
        log.warning("No classified samples to score")
        report.update(overall_accuracy=float("nan"), kappa=float("nan"))
        report["per_class"] = pd.DataFrame(columns=["precision", "recall", "f1", "support"])
        report["confusion"] = pd.DataFrame(0, index=classes, columns=classes)
        return report

    labels = list(classes)
    precision, recall, f1, support = precision_recall_fscore_support(
        yt, yp, labels=labels, zero_division=0
    )
    cm = confusion_matrix(yt, yp, labels=labels)

    report["overall_accuracy"] = float(accuracy_score(yt, yp))
    report["kappa"] = float(cohen_kappa_score(yt, yp, labels=labels))
    report["per_class"] = pd.DataFrame(
        {"precision": precision, "recall": recall, "f1": f1, "support": support},
        index=labels,
    )
    report["confusion"] = pd.DataFrame(
        cm,
        index=pd.Index(labels, name="reference"),
        columns=pd.Index(labels, name="predicted"),
    )
    return report


def format_report(report):
    lines = [
        f"Samples:           {report['n_samples']}",
        f"Unclassified:      {report['n_unclassified']}",
        f"Overall accuracy:  {report['overall_accuracy']:.4f}",
        f"Kappa:             {report['kappa']:.4f}",
        "",
        report["per_class"].to_string(float_format=lambda v: f"{v:.4f}"),
        "",
        report["confusion"].to_string(),
    ]
    return "\n".join(lines)
